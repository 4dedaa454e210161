"""Access decisions and anonymization for analytics records."""
from dataclasses import dataclass, asdict
from enum import Enum
from typing import Any, Dict, Iterable, List, Mapping, Optional

class PrivacyMode(str, Enum):
    PRIVATE = 'private'
    PUBLIC = 'public'
    MONETIZABLE = 'monetizable'

class DataLevel(str, Enum):
    FULL = 'full'
    ANONYMIZED = 'anonymized'
    NONE = 'none'

# Modes whose data may appear in shared or aggregate views
SHARED_MODES = (PrivacyMode.PUBLIC.value, PrivacyMode.MONETIZABLE.value)

IDENTIFYING_FIELDS = frozenset({
    'id',
    'wallet_id',
    'resource_id',
    'address',
    'project_id',
    'user_id',
    'account_id',
    'owner_account_id',
})

METRIC_FIELDS = (
    'active_days',
    'transaction_count',
    'total_volume',
    'avg_productivity_score',
    'retention_score',
    'adoption_score',
)

ANONYMIZED_NOTE = 'Data is anonymized for privacy protection'

@dataclass(frozen=True)
class AccessDecision:
    allowed: bool
    data_level: str
    requires_payment: bool
    reason: str

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

def decide_access(mode: str, is_owner: bool, has_grant: bool = False) -> AccessDecision:
    """Decide what a requester may see of a resource.

    Owners always see full data. For anyone else the privacy mode decides;
    a monetizable resource needs a live data access grant.
    """
    mode = PrivacyMode(mode)

    if is_owner:
        return AccessDecision(True, DataLevel.FULL.value, False, 'Owner access')

    if mode is PrivacyMode.PRIVATE:
        return AccessDecision(False, DataLevel.NONE.value, False, 'Resource is private')

    if mode is PrivacyMode.PUBLIC:
        return AccessDecision(True, DataLevel.ANONYMIZED.value, False, 'Public resource')

    if has_grant:
        return AccessDecision(True, DataLevel.ANONYMIZED.value, False, 'Paid access granted')
    return AccessDecision(False, DataLevel.NONE.value, True, 'Payment required for access')

def anonymize(record: Mapping[str, Any]) -> Dict[str, Any]:
    """Strip identifying fields from an analytics record.

    The result always has the same keys: the record type, the fixed set of
    behavioral metrics (0 when absent) and the anonymized marker.
    """
    kept = {k: v for k, v in record.items() if k not in IDENTIFYING_FIELDS}
    return {
        'record_type': kept.get('type') or kept.get('wallet_type') or kept.get('record_type'),
        'metrics': {name: kept.get(name) if kept.get(name) is not None else 0 for name in METRIC_FIELDS},
        'anonymized': True,
        'note': ANONYMIZED_NOTE,
    }

def anonymize_batch(records: Iterable[Mapping[str, Any]]) -> List[Dict[str, Any]]:
    return [anonymize(record) for record in records]

def apply_decision(decision: AccessDecision, record: Mapping[str, Any]) -> Optional[Dict[str, Any]]:
    """Shape a record according to an access decision; None when access is denied."""
    if not decision.allowed:
        return None
    if decision.data_level == DataLevel.FULL.value:
        return dict(record)
    return anonymize(record)
