"""Errors shared by the ledger, invoice, withdrawal and privacy modules."""
from decimal import Decimal
from typing import Optional

class LedgerError(Exception):
    """Base class for ledger errors."""
    pass

class NotFoundError(LedgerError):
    """Raised when a referenced account, invoice, withdrawal or resource does not exist."""
    pass

class InvalidAmountError(LedgerError):
    """Raised when an amount is not a positive number with at most 8 decimal places."""
    pass

class InsufficientFundsError(LedgerError):
    """Raised when a debit would take a balance below zero."""
    def __init__(self, account_id, available: Optional[Decimal], requested: Decimal):
        self.account_id = account_id
        self.available = available
        self.requested = requested
        super().__init__(
            f"Insufficient funds in account {account_id}: "
            f"available {available}, requested {requested}"
        )

class InvalidTransitionError(LedgerError):
    """Raised when a state change is not allowed from the current state."""
    def __init__(self, entity: str, entity_id, current: str, target: str):
        self.entity = entity
        self.entity_id = entity_id
        self.current = current
        self.target = target
        super().__init__(
            f"Cannot move {entity} {entity_id} from {current} to {target}"
        )

class PermissionDeniedError(LedgerError):
    """Raised when an account acts on something it does not own."""
    pass
