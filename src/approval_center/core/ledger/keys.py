from __future__ import annotations

import hashlib
import json
from typing import Any


def canonical_json(obj: Any) -> str:
    return json.dumps(obj, sort_keys=True, separators=(",", ":"), ensure_ascii=False)


def _stable_hash(parts: list[str]) -> str:
    return hashlib.sha256("|".join(parts).encode("utf-8")).hexdigest()


def approval_action_key(approval_id: str, action: str) -> str:
    """Shared by single and bulk approve so an approval runs its handler once."""
    return _stable_hash(["approval_action", approval_id, action])


def escalation_key(approval_id: str, extra: dict[str, Any] | None = None) -> str:
    return _stable_hash(["escalation", approval_id, canonical_json(extra or {})])
