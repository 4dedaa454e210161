"""Invoices module for payment requests bound to receiving addresses.

This module handles invoice creation, payment confirmation, expiry and
cancellation. An invoice moves from pending to exactly one of paid, expired or
cancelled, and never leaves those states.

Confirmation runs in one transaction with everything it triggers:
- subscription: the owner's subscription is extended
- data_access: the data owner is credited their share and the buyer gets a grant
- one_time: no balance changes
"""
import asyncio
import json
import logging
from datetime import datetime, timezone, timedelta
from decimal import Decimal
from typing import Any, Dict, List, Optional, Tuple
from uuid import UUID

from asyncpg.pool import Pool

from addresses import AddressGateway, AddressAllocationError
from config import settings_conf
from database import get_pool, run_in_transaction
from ledger import LedgerStore
from ledger.amounts import parse_amount, AmountLike
from ledger.exceptions import (
    LedgerError,
    NotFoundError,
    InvalidTransitionError,
    PermissionDeniedError
)
from ledger.states import InvoiceKind, InvoiceStatus, ensure_invoice_transition
from privacy import PrivacyMode, upsert_grant
from revenue import RevenueSplitEngine

logger = logging.getLogger(__name__)

class InvoiceError(LedgerError):
    """Base class for invoice errors."""
    pass

class InvalidInvoiceError(InvoiceError):
    """Raised when invoice parameters are invalid."""
    pass

class AlreadyPaidError(InvoiceError):
    """Raised when an operation needs an unpaid invoice but it is paid."""
    def __init__(self, invoice_id):
        self.invoice_id = invoice_id
        super().__init__(f"Invoice {invoice_id} is already paid")

class AmountMismatchError(InvoiceError):
    """Raised when an observed payment is below the requested amount.

    The invoice stays pending, so a later, larger observation can still pay it.
    """
    def __init__(self, invoice_id, requested: Decimal, observed: Decimal):
        self.invoice_id = invoice_id
        self.requested = requested
        self.observed = observed
        super().__init__(
            f"Invoice {invoice_id} underpaid: requested {requested}, observed {observed}"
        )

def _invoice_dict(row) -> Dict[str, Any]:
    invoice = dict(row)
    metadata = invoice.get('address_metadata')
    if isinstance(metadata, str):
        invoice['address_metadata'] = json.loads(metadata)
    return invoice

class InvoiceManager:
    """Manages the invoice lifecycle."""

    def __init__(
        self,
        pool: Optional[Pool] = None,
        gateway: Optional[AddressGateway] = None,
        ledger: Optional[LedgerStore] = None,
        splitter: Optional[RevenueSplitEngine] = None
    ) -> None:
        """Initialize invoice manager.

        Args:
            pool: Optional database connection pool. If not provided, will get from database module.
            gateway: Address gateway used to allocate payment addresses
            ledger: Ledger store used for balance changes
            splitter: Revenue split engine for data_access invoices
        """
        self.pool = pool
        self.gateway = gateway or AddressGateway()
        self.ledger = ledger or LedgerStore(pool)
        self.splitter = splitter or RevenueSplitEngine(self.ledger)
        self.expiration_minutes = settings_conf['invoice_expiration_minutes']
        self.subscription_days = settings_conf['subscription_period_days']
        self.data_access_days = settings_conf['data_access_days']

    async def ensure_pool(self):
        """Ensure we have a database pool."""
        if not self.pool:
            self.pool = await get_pool()
        if not self.ledger.pool:
            self.ledger.pool = self.pool

    async def create(
        self,
        owner_account_id: UUID,
        kind: str,
        requested_amount: AmountLike,
        counterparty_account_id: Optional[UUID] = None,
        resource_id: Optional[str] = None,
        payment_method: str = 'auto'
    ) -> Dict[str, Any]:
        """Create a pending invoice with a fresh payment address.

        Args:
            owner_account_id: Account the invoice is issued to (the payer)
            kind: subscription, one_time or data_access
            requested_amount: Amount in ZEC
            counterparty_account_id: For data_access, the data owner (the payee)
            resource_id: For data_access, the resource being bought
            payment_method: auto, transparent, shielded or unified

        Raises:
            InvalidInvoiceError: If parameters are invalid
            AddressAllocationError: If no address could be allocated; nothing is stored
        """
        try:
            kind = InvoiceKind(kind)
        except ValueError:
            raise InvalidInvoiceError(f"Unknown invoice kind: {kind}")
        amount = parse_amount(requested_amount)
        await self.ensure_pool()

        if kind is InvoiceKind.DATA_ACCESS:
            counterparty_account_id = await self._check_data_access(
                owner_account_id, counterparty_account_id, resource_id
            )

        now = datetime.now(timezone.utc)
        if kind is InvoiceKind.SUBSCRIPTION:
            expires_at = now + timedelta(days=self.subscription_days)
        else:
            expires_at = now + timedelta(minutes=self.expiration_minutes)

        loop = asyncio.get_running_loop()
        try:
            allocation = await loop.run_in_executor(None, self.gateway.allocate, payment_method)
        except ValueError as e:
            raise InvalidInvoiceError(str(e))

        async def work(conn):
            await self.ledger.ensure_account(conn, owner_account_id)
            if counterparty_account_id is not None:
                await self.ledger.ensure_account(conn, counterparty_account_id)
            return await conn.fetchrow(
                '''
                INSERT INTO invoices (
                    owner_account_id, counterparty_account_id, resource_id, kind,
                    requested_amount, payment_method, payment_address, address_type,
                    address_metadata, status, expires_at
                ) VALUES ($1, $2, $3, $4, $5, $6, $7, $8, $9::JSONB, 'pending', $10)
                RETURNING *
                ''',
                owner_account_id,
                counterparty_account_id,
                resource_id,
                kind.value,
                amount,
                payment_method,
                allocation.address,
                allocation.address_type,
                json.dumps(allocation.metadata),
                expires_at
            )

        invoice = _invoice_dict(await run_in_transaction(self.pool, work))
        logger.info(
            f"Created {kind.value} invoice {invoice['id']} for {amount} ZEC "
            f"({allocation.address_type} address)"
        )
        return invoice

    async def confirm_payment(
        self,
        invoice_id: UUID,
        observed_amount: AmountLike,
        external_reference: str
    ) -> Dict[str, Any]:
        """Mark an invoice paid and apply its effects.

        Confirming an invoice that is already paid returns it unchanged and
        does nothing else, so payment observers may report the same payment
        any number of times.

        Raises:
            NotFoundError: If the invoice does not exist
            AmountMismatchError: If ``observed_amount`` is below the requested amount
            InvalidTransitionError: If the invoice is expired or cancelled
        """
        observed = parse_amount(observed_amount)
        await self.ensure_pool()

        async def work(conn) -> Tuple[Dict[str, Any], bool]:
            invoice = await self._fetch_invoice(conn, invoice_id, for_update=True)

            if invoice['status'] == InvoiceStatus.PAID.value:
                return invoice, False
            ensure_invoice_transition(invoice_id, invoice['status'], InvoiceStatus.PAID)

            if observed < invoice['requested_amount']:
                raise AmountMismatchError(invoice_id, invoice['requested_amount'], observed)

            row = await conn.fetchrow(
                '''
                UPDATE invoices
                SET status = 'paid',
                    paid_amount = $2,
                    paid_reference = $3,
                    paid_at = now(),
                    updated_at = now()
                WHERE id = $1
                AND status = 'pending'
                RETURNING *
                ''',
                invoice_id,
                observed,
                external_reference
            )
            if row is None:
                raise InvalidTransitionError('invoice', invoice_id, invoice['status'], 'paid')
            paid = _invoice_dict(row)

            if paid['kind'] == InvoiceKind.SUBSCRIPTION.value:
                await self._extend_subscription(conn, paid['owner_account_id'])
            elif paid['kind'] == InvoiceKind.DATA_ACCESS.value:
                await self.splitter.split(conn, paid)
                await upsert_grant(
                    conn,
                    buyer_account_id=paid['owner_account_id'],
                    owner_account_id=paid['counterparty_account_id'],
                    resource_id=paid['resource_id'],
                    invoice_id=paid['id'],
                    amount=paid['paid_amount'],
                    days=self.data_access_days
                )
            return paid, True

        try:
            invoice, applied = await run_in_transaction(self.pool, work)
        except AmountMismatchError as e:
            logger.warning(str(e))
            raise

        if applied:
            logger.info(f"Invoice {invoice_id} paid with {observed} ZEC ({external_reference})")
        else:
            logger.info(f"Invoice {invoice_id} already paid, ignoring repeat confirmation")
        return invoice

    async def expire_stale(self) -> int:
        """Expire pending invoices past their expiry time.

        Returns:
            Number of invoices expired
        """
        await self.ensure_pool()

        async def work(conn):
            return await conn.execute(
                '''
                UPDATE invoices
                SET status = 'expired',
                    updated_at = now()
                WHERE status = 'pending'
                AND expires_at <= now()
                '''
            )

        result = await run_in_transaction(self.pool, work)
        count = int(result.split()[-1]) if result else 0
        if count:
            logger.info(f"Expired {count} pending invoices")
        return count

    async def cancel(self, invoice_id: UUID, account_id: UUID) -> Dict[str, Any]:
        """Cancel a pending invoice on behalf of its owner.

        Cancelling an already cancelled invoice returns it unchanged.

        Raises:
            NotFoundError: If the invoice does not exist
            PermissionDeniedError: If ``account_id`` does not own the invoice
            AlreadyPaidError: If the invoice is paid
            InvalidTransitionError: If the invoice is expired
        """
        await self.ensure_pool()

        async def work(conn):
            invoice = await self._fetch_invoice(conn, invoice_id, for_update=True)
            if invoice['owner_account_id'] != account_id:
                raise PermissionDeniedError(f"Invoice {invoice_id} belongs to another account")
            if invoice['status'] == InvoiceStatus.PAID.value:
                raise AlreadyPaidError(invoice_id)
            if invoice['status'] == InvoiceStatus.CANCELLED.value:
                return invoice
            ensure_invoice_transition(invoice_id, invoice['status'], InvoiceStatus.CANCELLED)

            row = await conn.fetchrow(
                '''
                UPDATE invoices
                SET status = 'cancelled',
                    updated_at = now()
                WHERE id = $1
                AND status = 'pending'
                RETURNING *
                ''',
                invoice_id
            )
            return _invoice_dict(row)

        invoice = await run_in_transaction(self.pool, work)
        logger.info(f"Invoice {invoice_id} cancelled")
        return invoice

    async def get_invoice(self, invoice_id: UUID) -> Dict[str, Any]:
        """Get an invoice by ID.

        Raises:
            NotFoundError: If the invoice does not exist
        """
        await self.ensure_pool()
        async with self.pool.acquire() as conn:
            return await self._fetch_invoice(conn, invoice_id)

    async def list_invoices(
        self,
        owner_account_id: UUID,
        status: Optional[str] = None,
        limit: int = 50,
        offset: int = 0
    ) -> List[Dict[str, Any]]:
        """List an account's invoices, newest first."""
        if status is not None:
            status = InvoiceStatus(status).value
        await self.ensure_pool()
        async with self.pool.acquire() as conn:
            rows = await conn.fetch(
                '''
                SELECT * FROM invoices
                WHERE owner_account_id = $1
                AND ($2::TEXT IS NULL OR status = $2)
                ORDER BY created_at DESC
                LIMIT $3 OFFSET $4
                ''',
                owner_account_id,
                status,
                limit,
                offset
            )
            return [_invoice_dict(row) for row in rows]

    async def list_pending(
        self,
        limit: int = 100,
        after: Optional[Tuple[datetime, UUID]] = None
    ) -> List[Dict[str, Any]]:
        """List unexpired pending invoices, oldest first.

        Args:
            limit: Page size
            after: ``(created_at, id)`` of the last invoice of the previous page
        """
        after_created, after_id = after or (None, None)
        await self.ensure_pool()
        async with self.pool.acquire() as conn:
            rows = await conn.fetch(
                '''
                SELECT * FROM invoices
                WHERE status = 'pending'
                AND expires_at > now()
                AND ($2::TIMESTAMPTZ IS NULL OR (created_at, id) > ($2::TIMESTAMPTZ, $3::UUID))
                ORDER BY created_at, id
                LIMIT $1
                ''',
                limit,
                after_created,
                after_id
            )
            return [_invoice_dict(row) for row in rows]

    async def get_entitlement(self, account_id: UUID) -> Dict[str, Any]:
        """Report an account's subscription horizon."""
        account = await self.ledger.get_account(account_id)
        expires_at = account['subscription_expires_at']
        return {
            'account_id': account_id,
            'subscription_expires_at': expires_at,
            'active': expires_at is not None and expires_at > datetime.now(timezone.utc)
        }

    async def _check_data_access(
        self,
        buyer_account_id: UUID,
        counterparty_account_id: Optional[UUID],
        resource_id: Optional[str]
    ) -> UUID:
        """Validate a data_access purchase and return the data owner."""
        if not resource_id:
            raise InvalidInvoiceError("data_access invoices need a resource_id")

        async with self.pool.acquire() as conn:
            setting = await conn.fetchrow(
                'SELECT owner_account_id, mode FROM privacy_settings WHERE resource_id = $1',
                resource_id
            )
        if not setting:
            raise NotFoundError(f"Resource {resource_id} not found")
        if setting['mode'] != PrivacyMode.MONETIZABLE.value:
            raise InvalidInvoiceError(f"Resource {resource_id} is not available for purchase")
        if setting['owner_account_id'] == buyer_account_id:
            raise InvalidInvoiceError("Owners cannot buy access to their own resource")
        if counterparty_account_id is not None and counterparty_account_id != setting['owner_account_id']:
            raise InvalidInvoiceError(f"Account {counterparty_account_id} does not own {resource_id}")
        return setting['owner_account_id']

    async def _extend_subscription(self, conn, account_id: UUID) -> None:
        await conn.execute(
            '''
            UPDATE accounts
            SET subscription_expires_at =
                    GREATEST(COALESCE(subscription_expires_at, now()), now())
                    + $2::INT * INTERVAL '1 day',
                updated_at = now()
            WHERE id = $1
            ''',
            account_id,
            self.subscription_days
        )

    async def _fetch_invoice(self, conn, invoice_id: UUID, for_update: bool = False) -> Dict[str, Any]:
        lock = ' FOR UPDATE' if for_update else ''
        row = await conn.fetchrow(f'SELECT * FROM invoices WHERE id = $1{lock}', invoice_id)
        if not row:
            raise NotFoundError(f"Invoice {invoice_id} not found")
        return _invoice_dict(row)

__all__ = [
    'InvoiceManager',
    'InvoiceError',
    'InvalidInvoiceError',
    'AlreadyPaidError',
    'AmountMismatchError',
    'AddressAllocationError'
]
