"""Invoice and withdrawal states and their allowed transitions."""
from enum import Enum

from .exceptions import InvalidTransitionError

class InvoiceKind(str, Enum):
    SUBSCRIPTION = 'subscription'
    ONE_TIME = 'one_time'
    DATA_ACCESS = 'data_access'

class InvoiceStatus(str, Enum):
    PENDING = 'pending'
    PAID = 'paid'
    EXPIRED = 'expired'
    CANCELLED = 'cancelled'

class WithdrawalStatus(str, Enum):
    PENDING = 'pending'
    PROCESSING = 'processing'
    SENT = 'sent'
    FAILED = 'failed'

INVOICE_TRANSITIONS = {
    InvoiceStatus.PENDING: {InvoiceStatus.PAID, InvoiceStatus.EXPIRED, InvoiceStatus.CANCELLED},
    InvoiceStatus.PAID: set(),
    InvoiceStatus.EXPIRED: set(),
    InvoiceStatus.CANCELLED: set(),
}

WITHDRAWAL_TRANSITIONS = {
    WithdrawalStatus.PENDING: {WithdrawalStatus.PROCESSING},
    WithdrawalStatus.PROCESSING: {WithdrawalStatus.SENT, WithdrawalStatus.FAILED},
    WithdrawalStatus.SENT: set(),
    WithdrawalStatus.FAILED: set(),
}

def ensure_invoice_transition(invoice_id, current, target) -> None:
    """Raise InvalidTransitionError unless current -> target is allowed for an invoice."""
    current, target = InvoiceStatus(current), InvoiceStatus(target)
    if target not in INVOICE_TRANSITIONS[current]:
        raise InvalidTransitionError('invoice', invoice_id, current.value, target.value)

def ensure_withdrawal_transition(withdrawal_id, current, target) -> None:
    """Raise InvalidTransitionError unless current -> target is allowed for a withdrawal."""
    current, target = WithdrawalStatus(current), WithdrawalStatus(target)
    if target not in WITHDRAWAL_TRANSITIONS[current]:
        raise InvalidTransitionError('withdrawal', withdrawal_id, current.value, target.value)
