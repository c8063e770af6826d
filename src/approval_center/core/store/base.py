from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Protocol

from approval_center.core.approvals.schemas import ApprovalRequestRow
from approval_center.core.audit.schemas import ApprovalAuditEntry


@dataclass
class RequestFilter:
    """Predicate over approval-request rows; unset fields match everything."""

    entity_type: str | None = None
    approver_id: str | None = None
    organization_id: str | None = None
    status: str | None = None
    created_at_lte: datetime | None = None
    created_at_gte: datetime | None = None
    created_at_gt: datetime | None = None

    def matches(self, row: ApprovalRequestRow) -> bool:
        if self.entity_type is not None and row.entity_type != self.entity_type:
            return False
        if self.approver_id is not None and row.approver_id != self.approver_id:
            return False
        if self.organization_id is not None and row.organization_id != self.organization_id:
            return False
        if self.status is not None and row.status != self.status:
            return False
        if self.created_at_lte is not None and row.created_at > self.created_at_lte:
            return False
        if self.created_at_gte is not None and row.created_at < self.created_at_gte:
            return False
        if self.created_at_gt is not None and row.created_at <= self.created_at_gt:
            return False
        return True


class ApprovalRequestStore(Protocol):
    async def find_requests(
        self,
        request_filter: RequestFilter,
        limit: int,
        oldest_first: bool = False,
    ) -> list[ApprovalRequestRow]:
        """Rows matching the filter, newest ``created_at`` first unless ``oldest_first``."""
        ...

    async def count_requests(self, request_filter: RequestFilter) -> int: ...

    async def get_requests_by_ids(self, ids: list[str]) -> list[ApprovalRequestRow]: ...

    async def get_request_for_entity(self, entity_type: str, entity_id: str) -> ApprovalRequestRow | None: ...

    async def save_request(self, row: ApprovalRequestRow) -> None: ...


class AuditStore(Protocol):
    async def insert_audit_entries(self, entries: list[ApprovalAuditEntry]) -> None: ...
