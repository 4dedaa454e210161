"""Fixed-point money helpers.

All amounts are ZEC held as Decimal with 8 decimal places (1 zatoshi).
"""
from decimal import Decimal, InvalidOperation, ROUND_DOWN, ROUND_CEILING
from typing import Union

from .exceptions import InvalidAmountError

ZATOSHI = Decimal('0.00000001')
ZERO = Decimal('0')

AmountLike = Union[Decimal, str, int, float]

def to_decimal(value: AmountLike) -> Decimal:
    """Convert a value to Decimal without going through binary float."""
    if isinstance(value, Decimal):
        return value
    try:
        return Decimal(str(value))
    except (InvalidOperation, ValueError) as e:
        raise InvalidAmountError(f"Invalid amount: {value!r}") from e

def quantize_down(value: AmountLike) -> Decimal:
    """Round toward zero to the nearest zatoshi."""
    return to_decimal(value).quantize(ZATOSHI, rounding=ROUND_DOWN)

def quantize_up(value: AmountLike) -> Decimal:
    """Round toward positive infinity to the nearest zatoshi."""
    return to_decimal(value).quantize(ZATOSHI, rounding=ROUND_CEILING)

def parse_amount(value: AmountLike) -> Decimal:
    """Validate a caller-supplied amount.

    The amount must be finite, positive and representable in zatoshis.
    Nothing is rounded; an amount with more than 8 decimal places is rejected.

    Raises:
        InvalidAmountError: If the amount fails any of the above
    """
    amount = to_decimal(value)
    if not amount.is_finite():
        raise InvalidAmountError(f"Amount must be finite: {value!r}")
    if amount <= ZERO:
        raise InvalidAmountError(f"Amount must be positive: {value!r}")
    if amount != amount.quantize(ZATOSHI, rounding=ROUND_DOWN):
        raise InvalidAmountError(f"Amount has more than 8 decimal places: {value!r}")
    return amount.quantize(ZATOSHI)
