"""Withdrawals module for moving funds out of the ledger.

A withdrawal debits the full requested amount when it is created, before
anything is sent. It then moves pending -> processing -> sent or failed.
A failed withdrawal credits the requested amount back in the same transaction
that marks it failed.

Fees are fixed_fee + amount * fee_rate, never less than fee_floor, rounded up
to the next zatoshi. A request whose fee would leave nothing to send is refused.
"""
import logging
from decimal import Decimal
from typing import Any, Dict, List, NamedTuple, Optional
from uuid import UUID, uuid4

from asyncpg.pool import Pool

from addresses import InvalidAddressError, validate_address
from config import settings_conf
from database import get_pool, run_in_transaction
from ledger import LedgerStore
from ledger.amounts import parse_amount, quantize_up, to_decimal, ZERO, AmountLike
from ledger.exceptions import LedgerError, NotFoundError, InvalidTransitionError
from ledger.states import WithdrawalStatus, ensure_withdrawal_transition

logger = logging.getLogger(__name__)

ENTRY_WITHDRAWAL = 'withdrawal'
ENTRY_WITHDRAWAL_REFUND = 'withdrawal_refund'

class WithdrawalError(LedgerError):
    """Base class for withdrawal errors."""
    pass

class AmountOutOfRangeError(WithdrawalError):
    """Raised when a withdrawal amount is outside the allowed range."""
    def __init__(self, amount: Decimal, minimum: Decimal, maximum: Decimal):
        self.amount = amount
        self.minimum = minimum
        self.maximum = maximum
        super().__init__(
            f"Withdrawal amount {amount} must be between {minimum} and {maximum} ZEC"
        )

class NonPositiveNetError(WithdrawalError):
    """Raised when the fee would consume the whole withdrawal."""
    def __init__(self, amount: Decimal, fee: Decimal):
        self.amount = amount
        self.fee = fee
        super().__init__(f"Fee {fee} leaves nothing to send from {amount} ZEC")

class FeeQuote(NamedTuple):
    amount: Decimal
    fee: Decimal
    net_amount: Decimal

def compute_fee(
    amount: AmountLike,
    fixed_fee: AmountLike = ZERO,
    fee_rate: AmountLike = Decimal('0.02'),
    fee_floor: AmountLike = Decimal('0.0002')
) -> FeeQuote:
    """Work out the fee and net amount for a withdrawal.

    Raises:
        NonPositiveNetError: If the net amount would be zero or negative
    """
    amount = to_decimal(amount)
    fee = quantize_up(max(
        to_decimal(fixed_fee) + amount * to_decimal(fee_rate),
        to_decimal(fee_floor)
    ))
    net = amount - fee
    if net <= ZERO:
        raise NonPositiveNetError(amount, fee)
    return FeeQuote(amount, fee, net)

class WithdrawalManager:
    """Manages withdrawal requests and their state transitions."""

    def __init__(
        self,
        pool: Optional[Pool] = None,
        ledger: Optional[LedgerStore] = None,
        network: Optional[str] = None
    ) -> None:
        """Initialize withdrawal manager.

        Args:
            pool: Optional database connection pool. If not provided, will get from database module.
            ledger: Ledger store used for the debit and refund
            network: Network destination addresses must belong to
        """
        self.pool = pool
        self.ledger = ledger or LedgerStore(pool)
        self.network = network or settings_conf['network']
        self.minimum = settings_conf['withdrawal_min']
        self.maximum = settings_conf['withdrawal_max']
        self.fixed_fee = settings_conf['withdrawal_fixed_fee']
        self.fee_rate = settings_conf['withdrawal_fee_rate']
        self.fee_floor = settings_conf['withdrawal_fee_floor']

    async def ensure_pool(self):
        """Ensure we have a database pool."""
        if not self.pool:
            self.pool = await get_pool()
        if not self.ledger.pool:
            self.ledger.pool = self.pool

    def estimate_fee(self, amount: AmountLike) -> Dict[str, Any]:
        """Quote the fee for an amount without touching any balance.

        Raises:
            AmountOutOfRangeError: If the amount is outside the allowed range
            NonPositiveNetError: If the fee would consume the whole amount
        """
        quote = self._quote(amount)
        return {
            'amount': quote.amount,
            'fee': quote.fee,
            'net_amount': quote.net_amount,
            'fixed_fee': self.fixed_fee,
            'fee_rate': self.fee_rate,
            'fee_floor': self.fee_floor
        }

    async def request(
        self,
        account_id: UUID,
        requested_amount: AmountLike,
        destination_address: str
    ) -> Dict[str, Any]:
        """Reserve funds and create a pending withdrawal.

        Raises:
            InvalidAddressError: If the destination is not a valid address for the network
            AmountOutOfRangeError: If the amount is outside the allowed range
            NonPositiveNetError: If the fee would consume the whole amount
            InsufficientFundsError: If the balance cannot cover the amount; nothing is changed
        """
        check = validate_address(destination_address, self.network)
        if not check.valid:
            raise InvalidAddressError(str(destination_address), check.error)
        destination = destination_address.strip()

        quote = self._quote(requested_amount)
        await self.ensure_pool()
        withdrawal_id = uuid4()

        async def work(conn):
            await self.ledger.debit(
                account_id,
                quote.amount,
                entry_type=ENTRY_WITHDRAWAL,
                reference_id=withdrawal_id,
                conn=conn
            )
            return await conn.fetchrow(
                '''
                INSERT INTO withdrawals (
                    id, account_id, requested_amount, fee, net_amount,
                    destination_address, address_type, status
                ) VALUES ($1, $2, $3, $4, $5, $6, $7, 'pending')
                RETURNING *
                ''',
                withdrawal_id,
                account_id,
                quote.amount,
                quote.fee,
                quote.net_amount,
                destination,
                check.address_type
            )

        withdrawal = dict(await run_in_transaction(self.pool, work))
        logger.info(
            f"Withdrawal {withdrawal_id} requested by {account_id}: "
            f"{quote.amount} ZEC (fee {quote.fee}, net {quote.net_amount})"
        )
        return withdrawal

    async def begin_processing(self, withdrawal_id: UUID) -> Dict[str, Any]:
        """Claim a pending withdrawal for sending.

        Only one caller can claim a given withdrawal.

        Raises:
            NotFoundError: If the withdrawal does not exist
            InvalidTransitionError: If it is not pending
        """
        await self.ensure_pool()

        async def work(conn):
            row = await conn.fetchrow(
                '''
                UPDATE withdrawals
                SET status = 'processing'
                WHERE id = $1
                AND status = 'pending'
                RETURNING *
                ''',
                withdrawal_id
            )
            if row is None:
                current = await self._fetch_withdrawal(conn, withdrawal_id)
                raise InvalidTransitionError(
                    'withdrawal', withdrawal_id, current['status'], WithdrawalStatus.PROCESSING.value
                )
            return dict(row)

        withdrawal = await run_in_transaction(self.pool, work)
        logger.info(f"Withdrawal {withdrawal_id} processing")
        return withdrawal

    async def complete(self, withdrawal_id: UUID, external_reference: str) -> Dict[str, Any]:
        """Record a successful send.

        Completing a sent withdrawal again with the same reference returns it
        unchanged.

        Raises:
            NotFoundError: If the withdrawal does not exist
            InvalidTransitionError: If it is not processing
        """
        await self.ensure_pool()

        async def work(conn):
            current = await self._fetch_withdrawal(conn, withdrawal_id, for_update=True)
            if (current['status'] == WithdrawalStatus.SENT.value
                    and current['external_reference'] == external_reference):
                return current
            ensure_withdrawal_transition(withdrawal_id, current['status'], WithdrawalStatus.SENT)

            row = await conn.fetchrow(
                '''
                UPDATE withdrawals
                SET status = 'sent',
                    external_reference = $2,
                    processed_at = now()
                WHERE id = $1
                AND status = 'processing'
                RETURNING *
                ''',
                withdrawal_id,
                external_reference
            )
            return dict(row)

        withdrawal = await run_in_transaction(self.pool, work)
        logger.info(f"Withdrawal {withdrawal_id} sent ({external_reference})")
        return withdrawal

    async def fail(self, withdrawal_id: UUID, reason: str) -> Dict[str, Any]:
        """Mark a processing withdrawal failed and refund it.

        Failing an already failed withdrawal returns it unchanged, so the
        refund is applied once.

        Raises:
            NotFoundError: If the withdrawal does not exist
            InvalidTransitionError: If it is not processing
        """
        await self.ensure_pool()

        async def work(conn):
            current = await self._fetch_withdrawal(conn, withdrawal_id, for_update=True)
            if current['status'] == WithdrawalStatus.FAILED.value:
                return current, False
            ensure_withdrawal_transition(withdrawal_id, current['status'], WithdrawalStatus.FAILED)

            row = await conn.fetchrow(
                '''
                UPDATE withdrawals
                SET status = 'failed',
                    failure_reason = $2,
                    processed_at = now()
                WHERE id = $1
                AND status = 'processing'
                RETURNING *
                ''',
                withdrawal_id,
                reason
            )
            await self.ledger.credit(
                current['account_id'],
                current['requested_amount'],
                entry_type=ENTRY_WITHDRAWAL_REFUND,
                reference_id=withdrawal_id,
                conn=conn
            )
            return dict(row), True

        withdrawal, refunded = await run_in_transaction(self.pool, work)
        if refunded:
            logger.warning(
                f"Withdrawal {withdrawal_id} failed ({reason}), "
                f"refunded {withdrawal['requested_amount']} ZEC"
            )
        return withdrawal

    async def get_withdrawal(self, withdrawal_id: UUID) -> Dict[str, Any]:
        """Get a withdrawal by ID.

        Raises:
            NotFoundError: If the withdrawal does not exist
        """
        await self.ensure_pool()
        async with self.pool.acquire() as conn:
            return await self._fetch_withdrawal(conn, withdrawal_id)

    async def list_withdrawals(
        self,
        account_id: UUID,
        status: Optional[str] = None,
        limit: int = 50,
        offset: int = 0
    ) -> List[Dict[str, Any]]:
        """List an account's withdrawals, newest first."""
        if status is not None:
            status = WithdrawalStatus(status).value
        await self.ensure_pool()
        async with self.pool.acquire() as conn:
            rows = await conn.fetch(
                '''
                SELECT * FROM withdrawals
                WHERE account_id = $1
                AND ($2::TEXT IS NULL OR status = $2)
                ORDER BY requested_at DESC
                LIMIT $3 OFFSET $4
                ''',
                account_id,
                status,
                limit,
                offset
            )
            return [dict(row) for row in rows]

    async def list_pending(self, limit: int = 10) -> List[Dict[str, Any]]:
        """List pending withdrawals, oldest first."""
        await self.ensure_pool()
        async with self.pool.acquire() as conn:
            rows = await conn.fetch(
                '''
                SELECT * FROM withdrawals
                WHERE status = 'pending'
                ORDER BY requested_at
                LIMIT $1
                ''',
                limit
            )
            return [dict(row) for row in rows]

    async def get_stats(self, account_id: UUID) -> Dict[str, Any]:
        """Summarize an account's withdrawals by status."""
        await self.ensure_pool()
        async with self.pool.acquire() as conn:
            rows = await conn.fetch(
                '''
                SELECT status,
                       COUNT(*) AS count,
                       COALESCE(SUM(requested_amount), 0) AS total_requested,
                       COALESCE(SUM(fee), 0) AS total_fees,
                       COALESCE(SUM(net_amount), 0) AS total_net
                FROM withdrawals
                WHERE account_id = $1
                GROUP BY status
                ''',
                account_id
            )

        stats = {
            'account_id': account_id,
            'counts': {status.value: 0 for status in WithdrawalStatus},
            'total_withdrawn': ZERO,
            'total_fees': ZERO,
            'total_net': ZERO
        }
        for row in rows:
            stats['counts'][row['status']] = row['count']
            if row['status'] == WithdrawalStatus.SENT.value:
                stats['total_withdrawn'] = row['total_requested']
                stats['total_fees'] = row['total_fees']
                stats['total_net'] = row['total_net']
        return stats

    def _quote(self, requested_amount: AmountLike) -> FeeQuote:
        # Range before precision, so zero and negatives are out of range
        value = to_decimal(requested_amount)
        if value.is_finite() and not self.minimum <= value <= self.maximum:
            raise AmountOutOfRangeError(value, self.minimum, self.maximum)
        amount = parse_amount(value)
        return compute_fee(amount, self.fixed_fee, self.fee_rate, self.fee_floor)

    async def _fetch_withdrawal(self, conn, withdrawal_id: UUID, for_update: bool = False) -> Dict[str, Any]:
        lock = ' FOR UPDATE' if for_update else ''
        row = await conn.fetchrow(f'SELECT * FROM withdrawals WHERE id = $1{lock}', withdrawal_id)
        if not row:
            raise NotFoundError(f"Withdrawal {withdrawal_id} not found")
        return dict(row)

__all__ = [
    'WithdrawalManager',
    'WithdrawalError',
    'AmountOutOfRangeError',
    'NonPositiveNetError',
    'InvalidAddressError',
    'FeeQuote',
    'compute_fee'
]
