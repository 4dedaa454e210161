"""Tests for the payment observer and withdrawal sender workers."""

import uuid
from datetime import datetime, timedelta, timezone
from decimal import Decimal
from unittest.mock import AsyncMock, MagicMock

import pytest

from invoices import AmountMismatchError
from ledger.exceptions import InvalidTransitionError
from rpc import NodeConnectionError, ZcashError
from workers.payment_observer import check_invoice, process_pending_invoices, received_at_address
from workers.withdrawal_sender import (
    SendPending,
    process_pending_withdrawals,
    send_withdrawal,
    wait_for_operation
)

T_ADDRESS = 'tm' + 'a' * 33
Z_ADDRESS = 'ztestsapling' + 'q' * 80

def invoice(address=Z_ADDRESS, address_type='shielded'):
    return {
        'id': uuid.uuid4(),
        'payment_address': address,
        'address_type': address_type,
        'requested_amount': Decimal('0.0050')
    }

def withdrawal():
    return {
        'id': uuid.uuid4(),
        'destination_address': T_ADDRESS,
        'net_amount': Decimal('0.0008')
    }

def test_received_at_transparent_address():
    rpc = MagicMock()
    rpc.listreceivedbyaddress.return_value = [
        {'address': 'tm' + 'b' * 33, 'amount': 9, 'txids': ['zz']},
        {'address': T_ADDRESS, 'amount': 0.005, 'txids': ['b', 'a']},
    ]

    total, reference = received_at_address(rpc, invoice(T_ADDRESS, 'transparent'), 1)

    rpc.listreceivedbyaddress.assert_called_once_with(1, False, True)
    assert total == Decimal('0.005')
    assert reference == 'a,b'

def test_received_at_shielded_address():
    rpc = MagicMock()
    rpc.z_listreceivedbyaddress.return_value = [
        {'txid': 'tx2', 'amount': 0.003},
        {'txid': 'tx1', 'amount': 0.002},
    ]

    total, reference = received_at_address(rpc, invoice(), 3)

    rpc.z_listreceivedbyaddress.assert_called_once_with(Z_ADDRESS, 3)
    assert total == Decimal('0.005')
    assert reference == 'tx1,tx2'

def test_nothing_received():
    rpc = MagicMock()
    rpc.z_listreceivedbyaddress.return_value = []
    assert received_at_address(rpc, invoice(), 1) == (Decimal('0'), None)

@pytest.mark.asyncio
async def test_check_invoice_confirms():
    rpc = MagicMock()
    rpc.z_listreceivedbyaddress.return_value = [{'txid': 'tx1', 'amount': 0.005}]
    manager = MagicMock()
    manager.confirm_payment = AsyncMock()
    pending = invoice()

    assert await check_invoice(manager, rpc, pending, 1)
    manager.confirm_payment.assert_awaited_once_with(pending['id'], Decimal('0.005'), 'tx1')

@pytest.mark.asyncio
async def test_check_invoice_partial_payment():
    rpc = MagicMock()
    rpc.z_listreceivedbyaddress.return_value = [{'txid': 'tx1', 'amount': 0.001}]
    manager = MagicMock()
    manager.confirm_payment = AsyncMock(
        side_effect=AmountMismatchError('inv', Decimal('0.005'), Decimal('0.001'))
    )
    assert not await check_invoice(manager, rpc, invoice(), 1)

@pytest.mark.asyncio
async def test_check_invoice_skips_empty_address():
    rpc = MagicMock()
    rpc.z_listreceivedbyaddress.return_value = []
    manager = MagicMock()
    manager.confirm_payment = AsyncMock()
    assert not await check_invoice(manager, rpc, invoice(), 1)
    manager.confirm_payment.assert_not_called()

@pytest.mark.asyncio
async def test_process_pending_invoices_survives_node_errors():
    rpc = MagicMock()
    rpc.z_listreceivedbyaddress.side_effect = [
        ZcashError('bad address', -5, 'z_listreceivedbyaddress'),
        [{'txid': 'tx1', 'amount': 0.005}],
    ]
    manager = MagicMock()
    manager.list_pending = AsyncMock(return_value=[invoice(), invoice()])
    manager.confirm_payment = AsyncMock()

    assert await process_pending_invoices(manager, rpc, 1) == 1

def pending_invoices(count, address_type='shielded'):
    start = datetime(2026, 1, 1, tzinfo=timezone.utc)
    invoices = []
    for n in range(count):
        prefix = 'tm' if address_type == 'transparent' else 'ztestsapling'
        pending = invoice(f"{prefix}{n:04d}", address_type)
        pending['created_at'] = start + timedelta(minutes=n)
        invoices.append(pending)
    return invoices

def paged(invoices):
    """list_pending over a fixed set of invoices, honouring limit and cursor."""
    async def list_pending(limit, after=None):
        rows = [i for i in invoices if after is None or (i['created_at'], i['id']) > after]
        return rows[:limit]
    return AsyncMock(side_effect=list_pending)

@pytest.mark.asyncio
async def test_process_pending_invoices_reaches_past_first_page():
    invoices = pending_invoices(101)
    newest = invoices[-1]
    rpc = MagicMock()
    rpc.z_listreceivedbyaddress.side_effect = lambda address, minconf: (
        [{'txid': 'tx-newest', 'amount': 0.005}] if address == newest['payment_address'] else []
    )
    manager = MagicMock()
    manager.list_pending = paged(invoices)
    manager.confirm_payment = AsyncMock()

    assert await process_pending_invoices(manager, rpc, 1, batch_size=100) == 1

    manager.confirm_payment.assert_awaited_once_with(newest['id'], Decimal('0.005'), 'tx-newest')
    assert manager.list_pending.await_count == 2
    assert rpc.z_listreceivedbyaddress.call_count == 101

@pytest.mark.asyncio
async def test_transparent_receipts_fetched_once_per_round():
    invoices = pending_invoices(5, address_type='transparent')
    paid = invoices[2]
    rpc = MagicMock()
    rpc.listreceivedbyaddress.return_value = [
        {'address': paid['payment_address'], 'amount': 0.005, 'txids': ['t1']}
    ]
    manager = MagicMock()
    manager.list_pending = paged(invoices)
    manager.confirm_payment = AsyncMock()

    assert await process_pending_invoices(manager, rpc, 1, batch_size=2) == 1

    rpc.listreceivedbyaddress.assert_called_once_with(1, False, True)
    manager.confirm_payment.assert_awaited_once_with(paid['id'], Decimal('0.005'), 't1')

@pytest.fixture
def sender_manager():
    manager = MagicMock()
    manager.begin_processing = AsyncMock()
    manager.complete = AsyncMock()
    manager.fail = AsyncMock()
    return manager

@pytest.fixture
def rpc():
    rpc = MagicMock()
    rpc.z_sendmany.return_value = 'opid-1'
    rpc.z_getoperationstatus.return_value = [
        {'id': 'opid-1', 'status': 'success', 'result': {'txid': 'txid-1'}}
    ]
    return rpc

@pytest.mark.asyncio
async def test_send_withdrawal_success(sender_manager, rpc):
    pending = withdrawal()

    assert await send_withdrawal(sender_manager, rpc, pending) == 'sent'

    recipients = rpc.z_sendmany.call_args.args[1]
    assert recipients == [{'address': T_ADDRESS, 'amount': 0.0008}]
    sender_manager.complete.assert_awaited_once_with(pending['id'], 'txid-1')
    sender_manager.fail.assert_not_called()

@pytest.mark.asyncio
async def test_send_withdrawal_operation_failed(sender_manager, rpc):
    rpc.z_getoperationstatus.return_value = [
        {'id': 'opid-1', 'status': 'failed', 'error': {'code': -6, 'message': 'Insufficient funds'}}
    ]
    pending = withdrawal()

    assert await send_withdrawal(sender_manager, rpc, pending) == 'failed'
    sender_manager.fail.assert_awaited_once_with(pending['id'], 'Insufficient funds')
    sender_manager.complete.assert_not_called()

@pytest.mark.asyncio
async def test_send_withdrawal_rejected_by_node(sender_manager, rpc):
    rpc.z_sendmany.side_effect = ZcashError('Invalid address', -5, 'z_sendmany')
    assert await send_withdrawal(sender_manager, rpc, withdrawal()) == 'failed'
    sender_manager.fail.assert_awaited_once()

@pytest.mark.asyncio
async def test_send_withdrawal_unknown_outcome_stays_processing(sender_manager, rpc):
    """When the node may have received the send, nothing is refunded."""
    rpc.z_sendmany.side_effect = NodeConnectionError('timed out', method='z_sendmany')
    assert await send_withdrawal(sender_manager, rpc, withdrawal()) == 'processing'
    sender_manager.fail.assert_not_called()
    sender_manager.complete.assert_not_called()

@pytest.mark.asyncio
async def test_send_withdrawal_already_claimed(sender_manager, rpc):
    sender_manager.begin_processing.side_effect = InvalidTransitionError(
        'withdrawal', 'w', 'processing', 'processing'
    )
    assert await send_withdrawal(sender_manager, rpc, withdrawal()) is None
    rpc.z_sendmany.assert_not_called()

def test_wait_for_operation_times_out(rpc):
    rpc.z_getoperationstatus.return_value = [{'id': 'opid-1', 'status': 'executing'}]
    with pytest.raises(SendPending):
        wait_for_operation(rpc, 'opid-1', timeout=0.05, poll_interval=0.01)

@pytest.mark.asyncio
async def test_process_pending_withdrawals(sender_manager, rpc):
    sender_manager.list_pending = AsyncMock(return_value=[withdrawal(), withdrawal()])
    assert await process_pending_withdrawals(sender_manager, rpc, 10) == 2
    sender_manager.list_pending.assert_awaited_once_with(10)
