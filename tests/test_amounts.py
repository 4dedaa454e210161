"""Tests for money helpers and state transitions."""

from decimal import Decimal

import pytest

from ledger.amounts import parse_amount, quantize_down, quantize_up, to_decimal
from ledger.exceptions import InvalidAmountError, InvalidTransitionError
from ledger.states import (
    InvoiceStatus,
    WithdrawalStatus,
    ensure_invoice_transition,
    ensure_withdrawal_transition
)

def test_to_decimal_avoids_float_noise():
    """Floats are converted through their string form."""
    assert to_decimal(0.1) == Decimal('0.1')
    assert to_decimal('0.0010') == Decimal('0.0010')

def test_to_decimal_rejects_garbage():
    with pytest.raises(InvalidAmountError):
        to_decimal('ten zec')

def test_quantize_directions():
    assert quantize_down('0.123456789') == Decimal('0.12345678')
    assert quantize_up('0.123456781') == Decimal('0.12345679')
    assert quantize_up('0.12345678') == Decimal('0.12345678')

@pytest.mark.parametrize("value", ['0', '-1', '-0.00000001', 'NaN', 'Infinity', '0.000000001'])
def test_parse_amount_rejects(value):
    """Zero, negative, non-finite and sub-zatoshi amounts are refused."""
    with pytest.raises(InvalidAmountError):
        parse_amount(value)

def test_parse_amount_normalizes_to_eight_places():
    amount = parse_amount('1.5')
    assert amount == Decimal('1.5')
    assert amount.as_tuple().exponent == -8

def test_invoice_transitions():
    """Only pending invoices move, and only to terminal states."""
    for target in (InvoiceStatus.PAID, InvoiceStatus.EXPIRED, InvoiceStatus.CANCELLED):
        ensure_invoice_transition('inv', 'pending', target)

    for current in ('paid', 'expired', 'cancelled'):
        for target in InvoiceStatus:
            with pytest.raises(InvalidTransitionError):
                ensure_invoice_transition('inv', current, target)

def test_withdrawal_transitions():
    ensure_withdrawal_transition('w', 'pending', 'processing')
    ensure_withdrawal_transition('w', 'processing', 'sent')
    ensure_withdrawal_transition('w', 'processing', 'failed')

    with pytest.raises(InvalidTransitionError) as excinfo:
        ensure_withdrawal_transition('w', 'pending', WithdrawalStatus.SENT)
    assert excinfo.value.current == 'pending'
    assert excinfo.value.target == 'sent'

    with pytest.raises(InvalidTransitionError):
        ensure_withdrawal_transition('w', 'failed', 'processing')
