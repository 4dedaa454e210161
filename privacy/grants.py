"""Data access grants created by paid data_access invoices."""
import logging
from decimal import Decimal
from typing import Any, Dict, List
from uuid import UUID

from asyncpg import Connection

logger = logging.getLogger(__name__)

async def upsert_grant(
    conn: Connection,
    *,
    buyer_account_id: UUID,
    owner_account_id: UUID,
    resource_id: str,
    invoice_id: UUID,
    amount: Decimal,
    days: int
) -> Dict[str, Any]:
    """Create a grant or extend the buyer's existing one.

    A repeat purchase adds ``days`` to whichever is later, now or the current
    expiry, and accumulates the amount paid.
    """
    row = await conn.fetchrow(
        '''
        INSERT INTO data_access_grants (
            buyer_account_id, owner_account_id, resource_id,
            invoice_id, amount_paid, expires_at
        ) VALUES ($1, $2, $3, $4, $5, now() + $6::INT * INTERVAL '1 day')
        ON CONFLICT (buyer_account_id, resource_id) DO UPDATE SET
            invoice_id = EXCLUDED.invoice_id,
            amount_paid = data_access_grants.amount_paid + EXCLUDED.amount_paid,
            expires_at = GREATEST(data_access_grants.expires_at, now())
                + $6::INT * INTERVAL '1 day'
        RETURNING *
        ''',
        buyer_account_id,
        owner_account_id,
        resource_id,
        invoice_id,
        amount,
        days
    )
    logger.info(
        f"Granted account {buyer_account_id} access to {resource_id} "
        f"until {row['expires_at']}"
    )
    return dict(row)

async def has_live_grant(conn: Connection, buyer_account_id: UUID, resource_id: str) -> bool:
    """Check whether a buyer holds an unexpired grant for a resource."""
    return bool(await conn.fetchval(
        '''
        SELECT EXISTS (
            SELECT 1 FROM data_access_grants
            WHERE buyer_account_id = $1
            AND resource_id = $2
            AND expires_at > now()
        )
        ''',
        buyer_account_id,
        resource_id
    ))

async def list_grants(conn: Connection, buyer_account_id: UUID) -> List[Dict[str, Any]]:
    rows = await conn.fetch(
        '''
        SELECT * FROM data_access_grants
        WHERE buyer_account_id = $1
        ORDER BY expires_at DESC
        ''',
        buyer_account_id
    )
    return [dict(row) for row in rows]
