"""Response shaping for ledger records."""
from decimal import Decimal
from typing import Any

def money_safe(value: Any) -> Any:
    """Render Decimals as strings so amounts keep all 8 decimal places in JSON."""
    if isinstance(value, Decimal):
        return format(value, 'f')
    if isinstance(value, dict):
        return {key: money_safe(item) for key, item in value.items()}
    if isinstance(value, (list, tuple)):
        return [money_safe(item) for item in value]
    return value
