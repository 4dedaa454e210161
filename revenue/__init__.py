"""Revenue split for data-access payments.

The data owner gets ``owner_share`` of the paid amount, floored to a zatoshi.
The platform keeps the rest, so the two shares always add up to the paid
amount exactly.
"""
import logging
from decimal import Decimal
from typing import Any, Dict, NamedTuple, Optional

from asyncpg import Connection

from config import settings_conf
from ledger import LedgerStore
from ledger.amounts import quantize_down, to_decimal, AmountLike
from ledger.exceptions import LedgerError
from ledger.states import InvoiceKind, InvoiceStatus

logger = logging.getLogger(__name__)

DEFAULT_OWNER_SHARE = Decimal('0.70')
ENTRY_EARNING = 'data_access_earning'

class RevenueSplitError(LedgerError):
    """Raised when an invoice cannot be split."""
    pass

class Split(NamedTuple):
    owner_share: Decimal
    platform_share: Decimal

def split_amount(paid_amount: AmountLike, owner_rate: AmountLike = DEFAULT_OWNER_SHARE) -> Split:
    """Divide a paid amount between data owner and platform."""
    paid = to_decimal(paid_amount)
    owner = quantize_down(paid * to_decimal(owner_rate))
    return Split(owner, paid - owner)

class RevenueSplitEngine:
    """Credits data owners for paid data-access invoices."""

    def __init__(self, ledger: Optional[LedgerStore] = None, owner_rate: Optional[Decimal] = None):
        self.ledger = ledger or LedgerStore()
        self.owner_rate = owner_rate if owner_rate is not None else settings_conf['owner_share']

    async def split(self, conn: Connection, invoice: Dict[str, Any]) -> Dict[str, Any]:
        """Split a paid data-access invoice inside the caller's transaction.

        The earnings row is unique per invoice, so a second call for the same
        invoice fails instead of paying the owner twice.

        Returns:
            The earnings row
        """
        if invoice['kind'] != InvoiceKind.DATA_ACCESS.value:
            raise RevenueSplitError(f"Invoice {invoice['id']} is not a data_access invoice")
        if invoice['status'] != InvoiceStatus.PAID.value or invoice['paid_amount'] is None:
            raise RevenueSplitError(f"Invoice {invoice['id']} is not paid")
        if invoice['counterparty_account_id'] is None:
            raise RevenueSplitError(f"Invoice {invoice['id']} has no data owner")

        shares = split_amount(invoice['paid_amount'], self.owner_rate)

        earning = await conn.fetchrow(
            '''
            INSERT INTO earnings (
                owner_account_id, buyer_account_id, invoice_id, resource_id,
                owner_share, platform_share
            ) VALUES ($1, $2, $3, $4, $5, $6)
            ON CONFLICT (invoice_id) DO NOTHING
            RETURNING *
            ''',
            invoice['counterparty_account_id'],
            invoice['owner_account_id'],
            invoice['id'],
            invoice['resource_id'],
            shares.owner_share,
            shares.platform_share
        )
        if earning is None:
            raise RevenueSplitError(f"Invoice {invoice['id']} was already split")

        if shares.owner_share > 0:
            await self.ledger.credit(
                invoice['counterparty_account_id'],
                shares.owner_share,
                entry_type=ENTRY_EARNING,
                reference_id=invoice['id'],
                conn=conn
            )

        logger.info(
            f"Split invoice {invoice['id']}: owner {shares.owner_share}, "
            f"platform {shares.platform_share}"
        )
        return dict(earning)

    async def get_earnings(self, owner_account_id, limit: int = 50, offset: int = 0):
        """List earnings for a data owner, newest first."""
        await self.ledger.ensure_pool()
        async with self.ledger.pool.acquire() as conn:
            rows = await conn.fetch(
                '''
                SELECT * FROM earnings
                WHERE owner_account_id = $1
                ORDER BY earned_at DESC
                LIMIT $2 OFFSET $3
                ''',
                owner_account_id,
                limit,
                offset
            )
            return [dict(row) for row in rows]

__all__ = [
    'RevenueSplitEngine',
    'RevenueSplitError',
    'Split',
    'split_amount',
    'DEFAULT_OWNER_SHARE'
]
