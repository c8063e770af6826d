from __future__ import annotations

from typing import Any, Literal

from pydantic import BaseModel, Field

LedgerStatus = Literal["started", "succeeded", "failed"]


class LedgerRecord(BaseModel):
    key: str
    kind: Literal["approve", "reject", "escalate"]
    status: LedgerStatus
    ts_iso: str
    correlation_id: str | None = None
    meta: dict[str, Any] = Field(default_factory=dict)
