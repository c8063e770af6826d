from .keys import approval_action_key, canonical_json, escalation_key
from .ledger import ExecutionLedger
from .schemas import LedgerRecord

__all__ = [
    "ExecutionLedger",
    "LedgerRecord",
    "canonical_json",
    "approval_action_key",
    "escalation_key",
]
