from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, Generic, Literal, TypeVar

from pydantic import BaseModel, Field, model_validator

ApprovalStatus = Literal["pending", "approved", "rejected"]
ApprovalPriority = Literal["urgent", "high", "normal", "low"]
SLAStatus = Literal["on_time", "approaching", "overdue"]
TimelineEventType = Literal["created", "escalated", "approved", "rejected"]

# Centrally enumerated type tags. The registry accepts any tag; these are the built-in ones.
ABSENCE_ENTRY = "absence_entry"
TIME_ENTRY = "time_entry"

EntityT = TypeVar("EntityT")


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


class ApprovalRequestRow(BaseModel):
    id: str
    organization_id: str
    entity_type: str
    entity_id: str
    requested_by: str
    approver_id: str
    status: ApprovalStatus = "pending"
    reason: str | None = None
    notes: str | None = None
    approved_at: datetime | None = None
    rejection_reason: str | None = None
    created_at: datetime
    updated_at: datetime


class Requester(BaseModel):
    id: str
    user_id: str
    name: str
    email: str
    image: str | None = None
    team_id: str | None = None


class SLAInfo(BaseModel):
    deadline: datetime | None = None
    status: SLAStatus = "on_time"
    hours_remaining: int | None = None


class DisplayBadge(BaseModel):
    label: str
    color: str | None = None


class DisplayMetadata(BaseModel):
    title: str
    subtitle: str
    summary: str
    badge: DisplayBadge | None = None
    icon: str | None = None


class UnifiedApprovalItem(BaseModel):
    id: str
    approval_type: str
    entity_id: str
    type_name: str
    requester: Requester
    approver_id: str
    organization_id: str
    status: ApprovalStatus
    created_at: datetime
    resolved_at: datetime | None = None
    priority: ApprovalPriority
    sla: SLAInfo
    display: DisplayMetadata

    @model_validator(mode="after")
    def _resolved_iff_not_pending(self) -> "UnifiedApprovalItem":
        if self.status == "pending" and self.resolved_at is not None:
            raise ValueError("pending approvals cannot have resolved_at")
        if self.status != "pending" and self.resolved_at is None:
            raise ValueError(f"{self.status} approvals require resolved_at")
        return self


class TimelineActor(BaseModel):
    name: str
    image: str | None = None


class ApprovalTimelineEvent(BaseModel):
    id: str
    type: TimelineEventType
    performed_by: TimelineActor | None = None
    timestamp: datetime
    message: str


class ApprovalDetail(BaseModel, Generic[EntityT]):
    approval: UnifiedApprovalItem
    entity: EntityT
    timeline: list[ApprovalTimelineEvent] = Field(default_factory=list)


class ApprovalQueryParams(BaseModel):
    approver_id: str
    organization_id: str
    status: ApprovalStatus | None = None
    types: list[str] | None = None
    team_id: str | None = None
    search: str | None = None
    date_from: datetime | None = None
    date_to: datetime | None = None
    min_age_days: int | None = Field(default=None, ge=0)
    priority: ApprovalPriority | None = None
    cursor: str | None = None
    limit: int = Field(ge=1, le=100)


class ApprovalPage(BaseModel):
    items: list[UnifiedApprovalItem] = Field(default_factory=list)
    next_cursor: str | None = None
    has_more: bool = False
    total: int = 0


class BulkApproveFailure(BaseModel):
    id: str
    error: str


class BulkApproveResult(BaseModel):
    succeeded: list[str] = Field(default_factory=list)
    failed: list[BulkApproveFailure] = Field(default_factory=list)


class BulkApproveRequest(BaseModel):
    approval_ids: list[str]


class RejectRequest(BaseModel):
    reason: str = Field(min_length=1)


class RequestProvenance(BaseModel):
    ip_address: str | None = None
    user_agent: str | None = None
    extra: dict[str, Any] = Field(default_factory=dict)
