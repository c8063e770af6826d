from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, Literal
from uuid import uuid4

from pydantic import BaseModel, ConfigDict, Field

AuditAction = Literal["approve", "reject", "escalate", "bulk_approve", "cancel"]


class ApprovalAuditEntry(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: str = Field(default_factory=lambda: str(uuid4()))
    organization_id: str
    approval_request_id: str
    approval_type: str
    target_entity_id: str
    action: AuditAction
    actor_id: str
    previous_status: str
    new_status: str
    reason: str | None = None
    metadata: dict[str, Any] | None = None
    ip_address: str | None = None
    user_agent: str | None = None
    changes: dict[str, Any] = Field(default_factory=dict)
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
