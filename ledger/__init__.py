"""Ledger module holding account balances and their journal.

Every balance change goes through LedgerStore.debit or LedgerStore.credit.
Each one updates the account row and writes a ledger_entries row in the same
transaction, so an account's balance always equals the sum of its journal.

Callers that need a balance change to commit together with their own writes
pass their open connection as ``conn``. Without ``conn`` the change runs in its
own serializable transaction.
"""
import logging
from decimal import Decimal
from typing import Dict, List, Optional, Any, Awaitable, Callable, TypeVar
from uuid import UUID

from asyncpg import Connection
from asyncpg.pool import Pool

from database import get_pool, run_in_transaction
from .amounts import parse_amount, to_decimal, ZERO, AmountLike
from .exceptions import (
    LedgerError,
    NotFoundError,
    InvalidAmountError,
    InsufficientFundsError,
    InvalidTransitionError,
    PermissionDeniedError
)

logger = logging.getLogger(__name__)

T = TypeVar('T')

# Journal entry types
ENTRY_OPENING = 'opening_balance'
ENTRY_CREDIT = 'credit'
ENTRY_DEBIT = 'debit'

class LedgerStore:
    """Authoritative store for account balances."""

    def __init__(self, pool: Optional[Pool] = None) -> None:
        """Initialize ledger store.

        Args:
            pool: Optional database connection pool. If not provided, will get from database module.
        """
        self.pool = pool

    async def ensure_pool(self):
        """Ensure we have a database pool."""
        if not self.pool:
            self.pool = await get_pool()

    async def transaction(self, work: Callable[[Connection], Awaitable[T]]) -> T:
        """Run ``work(conn)`` as one serializable, retried unit."""
        await self.ensure_pool()
        return await run_in_transaction(self.pool, work)

    async def open_account(
        self,
        account_id: UUID,
        initial_balance: AmountLike = ZERO
    ) -> Dict[str, Any]:
        """Create an account if it does not exist yet.

        A non-zero opening balance is journaled as an opening credit. Opening an
        existing account returns it unchanged.
        """
        opening = to_decimal(initial_balance)
        if opening != ZERO:
            opening = parse_amount(opening)

        async def work(conn):
            created = await conn.fetchrow(
                '''
                INSERT INTO accounts (id, balance)
                VALUES ($1, 0)
                ON CONFLICT (id) DO NOTHING
                RETURNING id
                ''',
                account_id
            )
            if created and opening > ZERO:
                await self._apply(conn, account_id, opening, ENTRY_OPENING, None)
            return await self._fetch_account(conn, account_id)

        account = await self.transaction(work)
        logger.info(f"Opened account {account_id} with balance {account['balance']}")
        return account

    async def ensure_account(self, conn: Connection, account_id: UUID) -> None:
        """Create a zero-balance account inside the caller's transaction if missing."""
        await conn.execute(
            'INSERT INTO accounts (id, balance) VALUES ($1, 0) ON CONFLICT (id) DO NOTHING',
            account_id
        )

    async def get_account(self, account_id: UUID) -> Dict[str, Any]:
        """Get an account row.

        Raises:
            NotFoundError: If the account does not exist
        """
        await self.ensure_pool()
        async with self.pool.acquire() as conn:
            return await self._fetch_account(conn, account_id)

    async def get_balance(self, account_id: UUID) -> Decimal:
        """Get the current balance of an account."""
        account = await self.get_account(account_id)
        return account['balance']

    async def debit(
        self,
        account_id: UUID,
        amount: AmountLike,
        *,
        entry_type: str = ENTRY_DEBIT,
        reference_id: Optional[UUID] = None,
        conn: Optional[Connection] = None
    ) -> Decimal:
        """Take ``amount`` out of an account.

        Returns:
            The new balance

        Raises:
            InsufficientFundsError: If the balance is below ``amount``; nothing is changed
            NotFoundError: If the account does not exist
        """
        value = parse_amount(amount)
        if conn is not None:
            return await self._apply(conn, account_id, -value, entry_type, reference_id)
        return await self.transaction(
            lambda c: self._apply(c, account_id, -value, entry_type, reference_id)
        )

    async def credit(
        self,
        account_id: UUID,
        amount: AmountLike,
        *,
        entry_type: str = ENTRY_CREDIT,
        reference_id: Optional[UUID] = None,
        conn: Optional[Connection] = None
    ) -> Decimal:
        """Add ``amount`` to an account.

        Returns:
            The new balance

        Raises:
            NotFoundError: If the account does not exist
        """
        value = parse_amount(amount)
        if conn is not None:
            return await self._apply(conn, account_id, value, entry_type, reference_id)
        return await self.transaction(
            lambda c: self._apply(c, account_id, value, entry_type, reference_id)
        )

    async def get_entries(
        self,
        account_id: UUID,
        limit: int = 50,
        offset: int = 0
    ) -> List[Dict[str, Any]]:
        """Get journal entries for an account, newest first."""
        await self.ensure_pool()
        async with self.pool.acquire() as conn:
            rows = await conn.fetch(
                '''
                SELECT id, account_id, delta, balance_after, entry_type,
                       reference_id, created_at
                FROM ledger_entries
                WHERE account_id = $1
                ORDER BY created_at DESC, id
                LIMIT $2 OFFSET $3
                ''',
                account_id,
                limit,
                offset
            )
            return [dict(row) for row in rows]

    async def reconcile(self, account_id: UUID) -> Dict[str, Any]:
        """Compare an account's balance with the sum of its journal.

        Returns:
            Dict with balance, journal_total, drift and consistent
        """
        await self.ensure_pool()
        async with self.pool.acquire() as conn:
            async with conn.transaction(isolation='repeatable_read', readonly=True):
                account = await self._fetch_account(conn, account_id)
                total = await conn.fetchval(
                    'SELECT COALESCE(SUM(delta), 0) FROM ledger_entries WHERE account_id = $1',
                    account_id
                )

        drift = account['balance'] - total
        if drift != ZERO:
            logger.error(
                f"Ledger drift on account {account_id}: balance {account['balance']}, "
                f"journal {total}"
            )
        return {
            'account_id': account_id,
            'balance': account['balance'],
            'journal_total': total,
            'drift': drift,
            'consistent': drift == ZERO
        }

    async def _fetch_account(self, conn: Connection, account_id: UUID) -> Dict[str, Any]:
        row = await conn.fetchrow(
            '''
            SELECT id, balance, subscription_expires_at, created_at, updated_at
            FROM accounts
            WHERE id = $1
            ''',
            account_id
        )
        if not row:
            raise NotFoundError(f"Account {account_id} not found")
        return dict(row)

    async def _apply(
        self,
        conn: Connection,
        account_id: UUID,
        delta: Decimal,
        entry_type: str,
        reference_id: Optional[UUID]
    ) -> Decimal:
        """Apply a signed delta and journal it.

        The balance guard is part of the UPDATE itself, so two concurrent debits
        cannot both pass it.
        """
        new_balance = await conn.fetchval(
            '''
            UPDATE accounts
            SET balance = balance + $2,
                updated_at = now()
            WHERE id = $1
            AND balance + $2 >= 0
            RETURNING balance
            ''',
            account_id,
            delta
        )

        if new_balance is None:
            current = await conn.fetchval(
                'SELECT balance FROM accounts WHERE id = $1',
                account_id
            )
            if current is None:
                raise NotFoundError(f"Account {account_id} not found")
            logger.warning(
                f"Rejected debit of {-delta} from account {account_id}: balance {current}"
            )
            raise InsufficientFundsError(account_id, current, -delta)

        await conn.execute(
            '''
            INSERT INTO ledger_entries (
                account_id, delta, balance_after, entry_type, reference_id
            ) VALUES ($1, $2, $3, $4, $5)
            ''',
            account_id,
            delta,
            new_balance,
            entry_type,
            reference_id
        )
        logger.debug(f"Applied {entry_type} {delta} to account {account_id}: now {new_balance}")
        return new_balance

__all__ = [
    'LedgerStore',
    'LedgerError',
    'NotFoundError',
    'InvalidAmountError',
    'InsufficientFundsError',
    'InvalidTransitionError',
    'PermissionDeniedError',
    'ENTRY_OPENING',
    'ENTRY_CREDIT',
    'ENTRY_DEBIT'
]
