"""Privacy module gating access to resource analytics.

This module handles:
- Per-resource privacy modes (private, public, monetizable)
- Access decisions for owners and other accounts
- The append-only audit trail of mode changes

Modes are read from the database on every check. A mode change is visible to
the next check as soon as its transaction commits.
"""
import logging
from typing import Any, Dict, List, Mapping, Optional, Sequence
from uuid import UUID

from asyncpg.pool import Pool

from database import get_pool, run_in_transaction
from ledger.exceptions import NotFoundError, PermissionDeniedError
from .access import (
    AccessDecision,
    DataLevel,
    PrivacyMode,
    SHARED_MODES,
    anonymize,
    anonymize_batch,
    apply_decision,
    decide_access
)
from .grants import has_live_grant, list_grants, upsert_grant

logger = logging.getLogger(__name__)

class PrivacyGate:
    """Holds privacy modes and decides who may read what."""

    def __init__(self, pool: Optional[Pool] = None) -> None:
        """Initialize privacy gate.

        Args:
            pool: Optional database connection pool. If not provided, will get from database module.
        """
        self.pool = pool

    async def ensure_pool(self):
        """Ensure we have a database pool."""
        if not self.pool:
            self.pool = await get_pool()

    async def register_resource(
        self,
        resource_id: str,
        owner_account_id: UUID,
        mode: str = PrivacyMode.PRIVATE.value
    ) -> Dict[str, Any]:
        """Put a resource under privacy control.

        The caller vouches for ownership; the API checks the token's resources
        claim first. Registering an already registered resource returns its
        current setting if the caller owns it.

        Raises:
            PermissionDeniedError: If the resource is registered to another account
        """
        mode = PrivacyMode(mode).value
        await self.ensure_pool()

        async def work(conn):
            row = await conn.fetchrow(
                '''
                INSERT INTO privacy_settings (resource_id, owner_account_id, mode, updated_by)
                VALUES ($1, $2, $3, $2)
                ON CONFLICT (resource_id) DO NOTHING
                RETURNING *
                ''',
                resource_id,
                owner_account_id,
                mode
            )
            if row is None:
                existing = await self._fetch_setting(conn, resource_id)
                if existing['owner_account_id'] != owner_account_id:
                    raise PermissionDeniedError(
                        f"Resource {resource_id} is registered to another account"
                    )
                return existing

            await self._append_audit(conn, resource_id, mode, None, owner_account_id)
            logger.info(f"Registered resource {resource_id} in {mode} mode")
            return dict(row)

        return await run_in_transaction(self.pool, work)

    async def get_setting(self, resource_id: str) -> Dict[str, Any]:
        """Get the privacy setting for a resource.

        Raises:
            NotFoundError: If the resource is not registered
        """
        await self.ensure_pool()
        async with self.pool.acquire() as conn:
            return await self._fetch_setting(conn, resource_id)

    async def set_mode(self, resource_id: str, new_mode: str, changed_by: UUID) -> Dict[str, Any]:
        """Change a resource's privacy mode and audit the change.

        Any mode may move to any other mode. Only the owner may change it.

        Raises:
            NotFoundError: If the resource is not registered
            PermissionDeniedError: If ``changed_by`` is not the owner
        """
        new_mode = PrivacyMode(new_mode).value
        await self.ensure_pool()

        async def work(conn):
            current = await self._fetch_setting(conn, resource_id, for_update=True)
            if current['owner_account_id'] != changed_by:
                logger.warning(
                    f"Account {changed_by} denied mode change on resource {resource_id}"
                )
                raise PermissionDeniedError(
                    f"Only the owner can change the privacy mode of {resource_id}"
                )

            row = await conn.fetchrow(
                '''
                UPDATE privacy_settings
                SET mode = $2,
                    updated_at = now(),
                    updated_by = $3
                WHERE resource_id = $1
                RETURNING *
                ''',
                resource_id,
                new_mode,
                changed_by
            )
            await self._append_audit(conn, resource_id, new_mode, current['mode'], changed_by)
            return dict(row)

        setting = await run_in_transaction(self.pool, work)
        logger.info(f"Resource {resource_id} privacy mode set to {new_mode}")
        return setting

    async def check_access(self, resource_id: str, requester: UUID) -> AccessDecision:
        """Decide what ``requester`` may see of a resource.

        Raises:
            NotFoundError: If the resource is not registered
        """
        await self.ensure_pool()
        async with self.pool.acquire() as conn:
            setting = await self._fetch_setting(conn, resource_id)
            is_owner = setting['owner_account_id'] == requester
            has_grant = False
            if not is_owner and setting['mode'] == PrivacyMode.MONETIZABLE.value:
                has_grant = await has_live_grant(conn, requester, resource_id)

        return decide_access(setting['mode'], is_owner, has_grant)

    async def read(
        self,
        resource_id: str,
        requester: UUID,
        record: Mapping[str, Any]
    ) -> Optional[Dict[str, Any]]:
        """Gate a single analytics record for a requester; None when denied."""
        decision = await self.check_access(resource_id, requester)
        return apply_decision(decision, record)

    async def filter_shared(self, resource_ids: Sequence[str]) -> List[str]:
        """Keep only resources whose data may appear in shared views."""
        if not resource_ids:
            return []
        await self.ensure_pool()
        async with self.pool.acquire() as conn:
            rows = await conn.fetch(
                '''
                SELECT resource_id FROM privacy_settings
                WHERE resource_id = ANY($1::TEXT[])
                AND mode = ANY($2::TEXT[])
                ''',
                list(resource_ids),
                list(SHARED_MODES)
            )
        shared = {row['resource_id'] for row in rows}
        return [resource_id for resource_id in resource_ids if resource_id in shared]

    async def get_audit_trail(
        self,
        resource_id: str,
        requester: Optional[UUID] = None
    ) -> List[Dict[str, Any]]:
        """Get a resource's mode changes, oldest first.

        Raises:
            NotFoundError: If the resource is not registered
            PermissionDeniedError: If ``requester`` is given and is not the owner
        """
        await self.ensure_pool()
        async with self.pool.acquire() as conn:
            setting = await self._fetch_setting(conn, resource_id)
            if requester is not None and setting['owner_account_id'] != requester:
                raise PermissionDeniedError(f"Only the owner can read the audit trail of {resource_id}")
            rows = await conn.fetch(
                '''
                SELECT resource_id, mode, previous_mode, changed_by, changed_at
                FROM privacy_audit_log
                WHERE resource_id = $1
                ORDER BY changed_at, id
                ''',
                resource_id
            )
            return [dict(row) for row in rows]

    async def get_grants(self, buyer_account_id: UUID) -> List[Dict[str, Any]]:
        await self.ensure_pool()
        async with self.pool.acquire() as conn:
            return await list_grants(conn, buyer_account_id)

    async def _fetch_setting(self, conn, resource_id: str, for_update: bool = False) -> Dict[str, Any]:
        lock = ' FOR UPDATE' if for_update else ''
        row = await conn.fetchrow(
            f'''
            SELECT resource_id, owner_account_id, mode, updated_at, updated_by
            FROM privacy_settings
            WHERE resource_id = $1{lock}
            ''',
            resource_id
        )
        if not row:
            raise NotFoundError(f"Resource {resource_id} not found")
        return dict(row)

    async def _append_audit(self, conn, resource_id, mode, previous_mode, changed_by) -> None:
        await conn.execute(
            '''
            INSERT INTO privacy_audit_log (resource_id, mode, previous_mode, changed_by)
            VALUES ($1, $2, $3, $4)
            ''',
            resource_id,
            mode,
            previous_mode,
            changed_by
        )

__all__ = [
    'PrivacyGate',
    'PrivacyMode',
    'DataLevel',
    'AccessDecision',
    'decide_access',
    'anonymize',
    'anonymize_batch',
    'apply_decision',
    'upsert_grant',
    'has_live_grant'
]
