from __future__ import annotations

from datetime import date, datetime, time, timezone
from typing import Callable, Mapping

from pydantic import BaseModel

from approval_center.core.approvals.handler import BaseApprovalHandler
from approval_center.core.approvals.schemas import (
    ABSENCE_ENTRY,
    ApprovalPriority,
    ApprovalStatus,
    DisplayBadge,
    DisplayMetadata,
    Requester,
    utc_now,
)
from approval_center.core.approvals.sla_config import OrgSLARuleBook
from approval_center.core.store.base import ApprovalRequestStore
from approval_center.handlers.common import (
    DayPeriod,
    EmployeeRef,
    EntityRepository,
    business_days_with_half_days,
    format_date_range,
    format_day_count,
)


class AbsenceCategory(BaseModel):
    id: str
    name: str
    type: str
    color: str | None = None


class AbsenceEntry(BaseModel):
    id: str
    start_date: date
    start_period: DayPeriod = "full_day"
    end_date: date
    end_period: DayPeriod = "full_day"
    notes: str | None = None
    status: ApprovalStatus = "pending"
    approved_at: datetime | None = None
    rejection_reason: str | None = None
    created_at: datetime
    employee: EmployeeRef
    category: AbsenceCategory


class AbsenceRequestHandler(BaseApprovalHandler[AbsenceEntry]):
    type = ABSENCE_ENTRY
    display_name = "Absence Request"
    supports_bulk_approve = True
    noun = "Request"

    def __init__(
        self,
        request_store: ApprovalRequestStore,
        absences: EntityRepository[AbsenceEntry],
        sla_rules: OrgSLARuleBook | None = None,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        super().__init__(request_store, sla_rules=sla_rules, clock=clock)
        self.absences = absences

    async def load_entities_by_ids(self, entity_ids: list[str]) -> Mapping[str, AbsenceEntry]:
        return await self.absences.load_many(entity_ids)

    def requester_of(self, entity: AbsenceEntry) -> Requester:
        return entity.employee.as_requester()

    def organization_of(self, entity: AbsenceEntry) -> str:
        return entity.employee.organization_id

    def describe_request(self, entity: AbsenceEntry) -> str:
        return f"{entity.employee.user.name} requested {entity.category.name}"

    def calculate_priority(
        self,
        entity: AbsenceEntry,
        created_at: datetime,
        now: datetime | None = None,
    ) -> ApprovalPriority:
        now = now or self.clock()
        starts_at = datetime.combine(entity.start_date, time.min, tzinfo=timezone.utc)
        hours_until_start = (starts_at - now).total_seconds() / 3600
        request_age = (now - created_at).total_seconds() / 3600

        if hours_until_start < 24:
            return "urgent"
        if hours_until_start < 72:
            return "high"
        if request_age > 48:
            return "high"
        if request_age > 24:
            return "normal"
        if hours_until_start < 168:
            return "normal"
        return "low"

    def get_display_metadata(self, entity: AbsenceEntry) -> DisplayMetadata:
        days = business_days_with_half_days(entity.start_date, entity.start_period, entity.end_date, entity.end_period)
        date_range = format_date_range(entity.start_date, entity.end_date)
        return DisplayMetadata(
            title=entity.category.name,
            subtitle=date_range,
            summary=f"{format_day_count(days)} off - {date_range}",
            badge=DisplayBadge(label=entity.category.name, color=entity.category.color),
            icon="calendar-off",
        )

    async def apply_approval(self, entity: AbsenceEntry, approver_id: str) -> None:
        await self.absences.save(entity.model_copy(update={"status": "approved", "approved_at": self.clock()}))

    async def apply_rejection(self, entity: AbsenceEntry, approver_id: str, reason: str) -> None:
        await self.absences.save(entity.model_copy(update={"status": "rejected", "rejection_reason": reason}))
