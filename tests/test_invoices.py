"""Tests for the invoice lifecycle."""

import asyncio
import json
import uuid
from datetime import datetime, timedelta, timezone
from decimal import Decimal
from unittest.mock import AsyncMock, MagicMock

import pytest
import pytest_asyncio

from addresses import AddressAllocation, AddressAllocationError
from invoices import (
    InvoiceManager,
    InvalidInvoiceError,
    AlreadyPaidError,
    AmountMismatchError
)
from ledger import LedgerStore
from ledger.exceptions import InvalidTransitionError, NotFoundError, PermissionDeniedError
from fakes import sql_of

BUYER = uuid.UUID('00000000-0000-0000-0000-00000000000b')
OWNER = uuid.UUID('00000000-0000-0000-0000-00000000000a')
INVOICE_ID = uuid.UUID('00000000-0000-0000-0000-0000000000f1')
ADDRESS = 'ztestsapling' + 'q' * 80

def invoice_row(status='pending', kind='one_time', amount='0.0050', paid_amount=None, **extra):
    now = datetime.now(timezone.utc)
    row = {
        'id': INVOICE_ID,
        'owner_account_id': BUYER,
        'counterparty_account_id': None,
        'resource_id': None,
        'kind': kind,
        'requested_amount': Decimal(amount),
        'payment_method': 'shielded',
        'payment_address': ADDRESS,
        'address_type': 'shielded',
        'address_metadata': json.dumps({'pool': 'sapling'}),
        'status': status,
        'paid_amount': Decimal(paid_amount) if paid_amount else None,
        'paid_reference': None,
        'paid_at': None,
        'expires_at': now + timedelta(hours=1),
        'created_at': now,
        'updated_at': now
    }
    row.update(extra)
    return row

@pytest.fixture
def gateway():
    gateway = MagicMock()
    gateway.allocate.return_value = AddressAllocation(ADDRESS, 'shielded', {'pool': 'sapling'})
    return gateway

@pytest.fixture
def splitter():
    splitter = MagicMock()
    splitter.split = AsyncMock(return_value={})
    return splitter

@pytest.fixture
def manager(fake_pool, gateway, splitter):
    return InvoiceManager(
        pool=fake_pool,
        gateway=gateway,
        ledger=LedgerStore(fake_pool),
        splitter=splitter
    )

@pytest.mark.asyncio
async def test_create_one_time_invoice(manager, fake_conn, gateway):
    fake_conn.fetchrow.side_effect = [invoice_row()]

    invoice = await manager.create(BUYER, 'one_time', '0.0050', payment_method='shielded')

    gateway.allocate.assert_called_once_with('shielded')
    assert invoice['status'] == 'pending'
    assert invoice['address_metadata'] == {'pool': 'sapling'}

    # Account is created if missing, in the same transaction as the invoice
    assert 'INSERT INTO accounts' in sql_of(fake_conn.execute.call_args_list[0])
    insert = fake_conn.fetchrow.call_args_list[0]
    assert 'INSERT INTO invoices' in sql_of(insert)
    assert insert.args[1] == BUYER
    assert insert.args[4] == 'one_time'
    assert insert.args[5] == Decimal('0.0050')
    assert insert.args[7] == ADDRESS
    assert fake_conn.isolation == ['serializable']

@pytest.mark.asyncio
async def test_subscription_invoice_runs_for_a_period(manager, fake_conn):
    fake_conn.fetchrow.side_effect = [invoice_row(kind='subscription')]
    before = datetime.now(timezone.utc)

    await manager.create(BUYER, 'subscription', '1')

    expires_at = fake_conn.fetchrow.call_args_list[0].args[10]
    assert expires_at - before >= timedelta(days=manager.subscription_days)

@pytest.mark.asyncio
async def test_create_rejects_unknown_kind(manager, gateway):
    with pytest.raises(InvalidInvoiceError):
        await manager.create(BUYER, 'donation', '1')
    gateway.allocate.assert_not_called()

@pytest.mark.asyncio
async def test_create_rejects_unknown_payment_method(manager, gateway, fake_conn):
    gateway.allocate.side_effect = ValueError("Unknown payment method 'webzjs'")
    with pytest.raises(InvalidInvoiceError):
        await manager.create(BUYER, 'one_time', '1', payment_method='webzjs')
    fake_conn.fetchrow.assert_not_called()

@pytest.mark.asyncio
async def test_allocation_failure_stores_nothing(manager, gateway, fake_conn):
    gateway.allocate.side_effect = AddressAllocationError("node down")
    with pytest.raises(AddressAllocationError):
        await manager.create(BUYER, 'one_time', '1')
    fake_conn.execute.assert_not_called()
    fake_conn.fetchrow.assert_not_called()

@pytest.mark.asyncio
async def test_create_data_access_invoice(manager, fake_conn):
    fake_conn.fetchrow.side_effect = [
        {'owner_account_id': OWNER, 'mode': 'monetizable'},
        invoice_row(kind='data_access', counterparty_account_id=OWNER, resource_id='wallet-1')
    ]

    await manager.create(BUYER, 'data_access', '0.0050', resource_id='wallet-1')

    insert = fake_conn.fetchrow.call_args_list[1]
    assert insert.args[1] == BUYER
    assert insert.args[2] == OWNER
    assert insert.args[3] == 'wallet-1'
    # Both buyer and data owner accounts exist afterwards
    assert fake_conn.execute.call_count == 2

@pytest.mark.asyncio
@pytest.mark.parametrize("setting,resource_id", [
    ({'owner_account_id': OWNER, 'mode': 'private'}, 'wallet-1'),
    ({'owner_account_id': BUYER, 'mode': 'monetizable'}, 'wallet-1'),
    (None, None),
])
async def test_data_access_invoice_rules(manager, fake_conn, gateway, setting, resource_id):
    """Only monetizable resources of another account can be bought."""
    fake_conn.fetchrow.side_effect = [setting]
    with pytest.raises(InvalidInvoiceError):
        await manager.create(BUYER, 'data_access', '1', resource_id=resource_id)
    gateway.allocate.assert_not_called()

@pytest.mark.asyncio
async def test_data_access_unknown_resource(manager, fake_conn):
    fake_conn.fetchrow.side_effect = [None]
    with pytest.raises(NotFoundError):
        await manager.create(BUYER, 'data_access', '1', resource_id='missing')

@pytest.mark.asyncio
async def test_confirm_one_time_payment(manager, fake_conn, splitter):
    fake_conn.fetchrow.side_effect = [
        invoice_row(),
        invoice_row(status='paid', paid_amount='0.0060', paid_reference='tx1')
    ]

    invoice = await manager.confirm_payment(INVOICE_ID, '0.0060', 'tx1')

    assert invoice['status'] == 'paid'
    lock = fake_conn.fetchrow.call_args_list[0]
    assert 'FOR UPDATE' in sql_of(lock)
    update = fake_conn.fetchrow.call_args_list[1]
    assert "AND status = 'pending'" in sql_of(update)
    assert update.args[1:] == (INVOICE_ID, Decimal('0.0060'), 'tx1')
    # one_time payments move no balances
    fake_conn.execute.assert_not_called()
    splitter.split.assert_not_called()

@pytest.mark.asyncio
async def test_confirm_twice_is_a_no_op(manager, fake_conn, splitter):
    fake_conn.fetchrow.side_effect = [
        invoice_row(status='paid', kind='data_access', paid_amount='0.0050')
    ]

    invoice = await manager.confirm_payment(INVOICE_ID, '0.0050', 'tx1')

    assert invoice['status'] == 'paid'
    assert fake_conn.fetchrow.call_count == 1
    splitter.split.assert_not_called()

@pytest.mark.asyncio
async def test_confirm_underpayment(manager, fake_conn):
    fake_conn.fetchrow.side_effect = [invoice_row(amount='0.0050')]

    with pytest.raises(AmountMismatchError) as excinfo:
        await manager.confirm_payment(INVOICE_ID, '0.0049', 'tx1')

    assert excinfo.value.observed == Decimal('0.0049')
    assert fake_conn.fetchrow.call_count == 1

@pytest.mark.asyncio
@pytest.mark.parametrize("status", ['expired', 'cancelled'])
async def test_confirm_closed_invoice(manager, fake_conn, status):
    fake_conn.fetchrow.side_effect = [invoice_row(status=status)]
    with pytest.raises(InvalidTransitionError):
        await manager.confirm_payment(INVOICE_ID, '1', 'tx1')

@pytest.mark.asyncio
async def test_confirm_subscription_extends_entitlement(manager, fake_conn):
    fake_conn.fetchrow.side_effect = [
        invoice_row(kind='subscription'),
        invoice_row(kind='subscription', status='paid', paid_amount='0.0050')
    ]

    await manager.confirm_payment(INVOICE_ID, '0.0050', 'tx1')

    extend = fake_conn.execute.call_args_list[0]
    assert 'subscription_expires_at' in sql_of(extend)
    assert 'GREATEST' in sql_of(extend)
    assert extend.args[1:] == (BUYER, manager.subscription_days)

@pytest.mark.asyncio
async def test_confirm_data_access_splits_and_grants(manager, fake_conn, splitter):
    paid = invoice_row(
        kind='data_access',
        status='paid',
        paid_amount='0.0050',
        counterparty_account_id=OWNER,
        resource_id='wallet-1'
    )
    fake_conn.fetchrow.side_effect = [
        invoice_row(kind='data_access', counterparty_account_id=OWNER, resource_id='wallet-1'),
        paid,
        {'expires_at': datetime.now(timezone.utc) + timedelta(days=30)}
    ]

    await manager.confirm_payment(INVOICE_ID, '0.0050', 'tx1')

    splitter.split.assert_awaited_once()
    assert splitter.split.call_args.args[0] is fake_conn
    grant = fake_conn.fetchrow.call_args_list[2]
    assert 'INSERT INTO data_access_grants' in sql_of(grant)
    assert grant.args[1:] == (BUYER, OWNER, 'wallet-1', INVOICE_ID, Decimal('0.0050'), manager.data_access_days)

@pytest.mark.asyncio
async def test_expire_stale(manager, fake_conn):
    fake_conn.execute.return_value = 'UPDATE 3'
    assert await manager.expire_stale() == 3
    assert "status = 'pending'" in sql_of(fake_conn.execute.call_args)

@pytest.mark.asyncio
async def test_cancel_pending(manager, fake_conn):
    fake_conn.fetchrow.side_effect = [invoice_row(), invoice_row(status='cancelled')]
    invoice = await manager.cancel(INVOICE_ID, BUYER)
    assert invoice['status'] == 'cancelled'

@pytest.mark.asyncio
async def test_cancel_is_idempotent(manager, fake_conn):
    fake_conn.fetchrow.side_effect = [invoice_row(status='cancelled')]
    invoice = await manager.cancel(INVOICE_ID, BUYER)
    assert invoice['status'] == 'cancelled'
    assert fake_conn.fetchrow.call_count == 1

@pytest.mark.asyncio
async def test_cancel_paid_invoice(manager, fake_conn):
    fake_conn.fetchrow.side_effect = [invoice_row(status='paid', paid_amount='1')]
    with pytest.raises(AlreadyPaidError):
        await manager.cancel(INVOICE_ID, BUYER)

@pytest.mark.asyncio
async def test_cancel_someone_elses_invoice(manager, fake_conn):
    fake_conn.fetchrow.side_effect = [invoice_row()]
    with pytest.raises(PermissionDeniedError):
        await manager.cancel(INVOICE_ID, OWNER)

@pytest.mark.asyncio
async def test_entitlement(manager, fake_conn):
    fake_conn.fetchrow.return_value = {
        'id': BUYER,
        'balance': Decimal('0'),
        'subscription_expires_at': datetime.now(timezone.utc) + timedelta(days=3),
        'created_at': None,
        'updated_at': None
    }
    entitlement = await manager.get_entitlement(BUYER)
    assert entitlement['active']

@pytest_asyncio.fixture
async def live_manager(db_pool, gateway):
    counter = iter(range(1, 1000))
    gateway.allocate.side_effect = lambda method: AddressAllocation(
        f"ztestsapling{next(counter):080d}", 'shielded', {}
    )
    ledger = LedgerStore(db_pool)
    return InvoiceManager(pool=db_pool, gateway=gateway, ledger=ledger)

@pytest.mark.db
@pytest.mark.asyncio
async def test_confirm_races_expiry(live_manager, db_pool):
    """A confirmation and an expiry sweep on the same invoice never both succeed."""
    invoice = await live_manager.create(BUYER, 'one_time', '0.0050')
    async with db_pool.acquire() as conn:
        await conn.execute(
            "UPDATE invoices SET expires_at = now() - INTERVAL '1 second' WHERE id = $1",
            invoice['id']
        )

    confirmed, expired = await asyncio.gather(
        live_manager.confirm_payment(invoice['id'], '0.0050', 'tx1'),
        live_manager.expire_stale(),
        return_exceptions=True
    )

    final = await live_manager.get_invoice(invoice['id'])
    if final['status'] == 'paid':
        assert expired == 0
    else:
        assert final['status'] == 'expired'
        assert isinstance(confirmed, InvalidTransitionError)

@pytest.mark.db
@pytest.mark.asyncio
async def test_data_access_purchase_end_to_end(live_manager, db_pool):
    from privacy import PrivacyGate

    gate = PrivacyGate(db_pool)
    await gate.register_resource('wallet-e2e', OWNER, 'monetizable')

    denied = await gate.check_access('wallet-e2e', BUYER)
    assert not denied.allowed and denied.requires_payment

    invoice = await live_manager.create(BUYER, 'data_access', '0.0050', resource_id='wallet-e2e')
    await live_manager.confirm_payment(invoice['id'], '0.0050', 'tx-e2e')
    await live_manager.confirm_payment(invoice['id'], '0.0050', 'tx-e2e')

    assert await live_manager.ledger.get_balance(OWNER) == Decimal('0.0035')
    granted = await gate.check_access('wallet-e2e', BUYER)
    assert granted.allowed and granted.data_level == 'anonymized'

@pytest.mark.asyncio
async def test_list_pending_continues_after_cursor(manager, fake_conn):
    created_at = datetime(2026, 1, 1, tzinfo=timezone.utc)
    last_id = uuid.uuid4()

    await manager.list_pending(50, (created_at, last_id))

    call = fake_conn.fetch.call_args
    assert '(created_at, id) > ($2::TIMESTAMPTZ, $3::UUID)' in sql_of(call)
    assert 'ORDER BY created_at, id' in sql_of(call)
    assert call.args[1:] == (50, created_at, last_id)
