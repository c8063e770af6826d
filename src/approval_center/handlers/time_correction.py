from __future__ import annotations

from datetime import datetime
from typing import Callable, Mapping

from pydantic import BaseModel

from approval_center.core.approvals.errors import ApprovalValidationError
from approval_center.core.approvals.handler import BaseApprovalHandler
from approval_center.core.approvals.schemas import (
    TIME_ENTRY,
    ApprovalPriority,
    ApprovalStatus,
    DisplayBadge,
    DisplayMetadata,
    Requester,
    utc_now,
)
from approval_center.core.approvals.sla_config import OrgSLARuleBook
from approval_center.core.store.base import ApprovalRequestStore
from approval_center.handlers.common import EmployeeRef, EntityRepository, format_duration


class WorkPeriod(BaseModel):
    id: str
    start_time: datetime
    end_time: datetime | None = None
    duration_minutes: int | None = None
    corrected_start_time: datetime | None = None
    corrected_end_time: datetime | None = None
    correction_status: ApprovalStatus = "pending"
    employee: EmployeeRef


def _minutes_between(start: datetime, end: datetime) -> int:
    return int((end - start).total_seconds() // 60)


class TimeCorrectionHandler(BaseApprovalHandler[WorkPeriod]):
    type = TIME_ENTRY
    display_name = "Time Correction"
    supports_bulk_approve = True
    noun = "Correction"

    def __init__(
        self,
        request_store: ApprovalRequestStore,
        work_periods: EntityRepository[WorkPeriod],
        sla_rules: OrgSLARuleBook | None = None,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        super().__init__(request_store, sla_rules=sla_rules, clock=clock)
        self.work_periods = work_periods

    async def load_entities_by_ids(self, entity_ids: list[str]) -> Mapping[str, WorkPeriod]:
        return await self.work_periods.load_many(entity_ids)

    def requester_of(self, entity: WorkPeriod) -> Requester:
        return entity.employee.as_requester()

    def organization_of(self, entity: WorkPeriod) -> str:
        return entity.employee.organization_id

    def describe_request(self, entity: WorkPeriod) -> str:
        return f"{entity.employee.user.name} requested a time correction"

    def calculate_priority(
        self,
        entity: WorkPeriod,
        created_at: datetime,
        now: datetime | None = None,
    ) -> ApprovalPriority:
        # Corrections feed payroll, so age alone drives urgency.
        request_age = ((now or self.clock()) - created_at).total_seconds() / 3600
        if request_age > 72:
            return "urgent"
        if request_age > 48:
            return "high"
        if request_age > 24:
            return "normal"
        return "low"

    def get_display_metadata(self, entity: WorkPeriod) -> DisplayMetadata:
        day = entity.start_time.strftime("%b %d, %Y")
        start = entity.start_time.strftime("%H:%M")
        end = entity.end_time.strftime("%H:%M") if entity.end_time else "ongoing"
        return DisplayMetadata(
            title="Time Correction",
            subtitle=f"{day} - {start} to {end}",
            summary=f"{format_duration(entity.duration_minutes)} on {day}",
            badge=DisplayBadge(label="Correction", color=None),
            icon="clock-edit",
        )

    async def apply_approval(self, entity: WorkPeriod, approver_id: str) -> None:
        if entity.corrected_start_time is None:
            raise ApprovalValidationError("Clock in correction not found", entity_type=self.type, entity_id=entity.id)

        start = entity.corrected_start_time
        end = entity.corrected_end_time or entity.end_time
        await self.work_periods.save(
            entity.model_copy(
                update={
                    "start_time": start,
                    "end_time": end,
                    "duration_minutes": _minutes_between(start, end) if end else None,
                    "correction_status": "approved",
                }
            )
        )

    async def apply_rejection(self, entity: WorkPeriod, approver_id: str, reason: str) -> None:
        # The original times stay in place; only the correction is marked.
        await self.work_periods.save(entity.model_copy(update={"correction_status": "rejected"}))
