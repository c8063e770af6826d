from __future__ import annotations

import logging
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Iterator

import pytest
from pydantic import BaseModel

from approval_center.core.approvals.bulk import BulkApprovalCoordinator
from approval_center.core.approvals.handler import BaseApprovalHandler
from approval_center.core.approvals.registry import ApprovalTypeRegistry
from approval_center.core.approvals.schemas import (
    ApprovalPriority,
    ApprovalQueryParams,
    ApprovalRequestRow,
    ApprovalStatus,
    DisplayMetadata,
    Requester,
)
from approval_center.core.approvals.service import ApprovalInboxService
from approval_center.core.approvals.sla import SLARule
from approval_center.core.approvals.sla_config import OrgSLARuleBook
from approval_center.core.audit.logger import AuditLogger
from approval_center.core.ledger import ExecutionLedger
from approval_center.core.store.base import RequestFilter

FIXED_NOW = datetime(2026, 3, 10, 12, 0, tzinfo=timezone.utc)

WIDGET_SLA_RULES = OrgSLARuleBook(
    organizations={
        "org-1": [
            SLARule(
                approval_type="widget_request",
                priority="normal",
                deadline_hours=24,
                escalation_enabled=True,
                escalation_threshold_hours=20,
            )
        ]
    }
)


@pytest.fixture(autouse=True)
def isolated_environment(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("APPROVAL_CENTER_STATE_DIR", str(tmp_path / "state"))
    monkeypatch.setenv("APPROVAL_CENTER_TEST_MODE", "1")
    monkeypatch.setenv("APPROVAL_CENTER_LOG_TO_FILE", "off")
    for name in (
        "APPROVAL_CENTER_OVERFETCH_FACTOR",
        "APPROVAL_CENTER_BULK_CONCURRENCY",
        "APPROVAL_CENTER_SLA_RULES_PATH",
        "APPROVAL_CENTER_ESCALATION_BATCH",
        "APPROVAL_CENTER_ESCALATION_INTERVAL_MIN",
    ):
        monkeypatch.delenv(name, raising=False)


@pytest.fixture(autouse=True)
def restore_package_logger() -> Iterator[None]:
    logger = logging.getLogger("approval_center")
    handlers, propagate, level = list(logger.handlers), logger.propagate, logger.level
    yield
    for handler in logger.handlers:
        if handler not in handlers:
            handler.close()
    logger.handlers = handlers
    logger.propagate = propagate
    logger.setLevel(level)


class InMemoryRequestStore:
    def __init__(self) -> None:
        self.rows: dict[str, ApprovalRequestRow] = {}
        self.find_calls: list[tuple[RequestFilter, int]] = []
        self.count_calls = 0
        self.get_by_ids_calls: list[list[str]] = []

    async def find_requests(
        self,
        request_filter: RequestFilter,
        limit: int,
        oldest_first: bool = False,
    ) -> list[ApprovalRequestRow]:
        self.find_calls.append((request_filter, limit))
        rows = [row for row in self.rows.values() if request_filter.matches(row)]
        rows.sort(key=lambda row: row.created_at, reverse=not oldest_first)
        return rows[:limit]

    async def count_requests(self, request_filter: RequestFilter) -> int:
        self.count_calls += 1
        return sum(1 for row in self.rows.values() if request_filter.matches(row))

    async def get_requests_by_ids(self, ids: list[str]) -> list[ApprovalRequestRow]:
        self.get_by_ids_calls.append(list(ids))
        return [self.rows[approval_id] for approval_id in ids if approval_id in self.rows]

    async def get_request_for_entity(self, entity_type: str, entity_id: str) -> ApprovalRequestRow | None:
        for row in self.rows.values():
            if row.entity_type == entity_type and row.entity_id == entity_id:
                return row
        return None

    async def save_request(self, row: ApprovalRequestRow) -> None:
        self.rows[row.id] = row


class InMemoryEntityRepo:
    def __init__(self) -> None:
        self.entities: dict[str, BaseModel] = {}
        self.load_calls: list[list[str]] = []

    async def load_many(self, ids: list[str]) -> dict[str, BaseModel]:
        self.load_calls.append(list(ids))
        return {entity_id: self.entities[entity_id] for entity_id in ids if entity_id in self.entities}

    async def save(self, entity: BaseModel) -> None:
        self.entities[entity.id] = entity  # type: ignore[attr-defined]


class RecordingAuditStore:
    def __init__(self, fail: bool = False) -> None:
        self.fail = fail
        self.batches: list[list] = []

    async def insert_audit_entries(self, entries: list) -> None:
        if self.fail:
            raise OSError("audit store unavailable")
        self.batches.append(list(entries))

    @property
    def entries(self) -> list:
        return [entry for batch in self.batches for entry in batch]


class Widget(BaseModel):
    id: str
    organization_id: str = "org-1"
    requester: Requester
    status: ApprovalStatus = "pending"
    priority: ApprovalPriority = "normal"


class WidgetHandler(BaseApprovalHandler[Widget]):
    type = "widget_request"
    display_name = "Widget Request"

    def __init__(self, request_store, widgets: InMemoryEntityRepo, sla_rules=None, fail_on=()) -> None:  # type: ignore[no-untyped-def]
        super().__init__(request_store, sla_rules=sla_rules, clock=lambda: FIXED_NOW)
        self.widgets = widgets
        self.fail_on = set(fail_on)
        self.approved: list[str] = []

    async def load_entities_by_ids(self, entity_ids: list[str]):  # type: ignore[no-untyped-def]
        return await self.widgets.load_many(entity_ids)

    def requester_of(self, entity: Widget) -> Requester:
        return entity.requester

    def organization_of(self, entity: Widget) -> str:
        return entity.organization_id

    def describe_request(self, entity: Widget) -> str:
        return f"{entity.requester.name} requested a widget"

    def calculate_priority(self, entity: Widget, created_at: datetime, now: datetime | None = None) -> ApprovalPriority:
        return entity.priority

    def get_display_metadata(self, entity: Widget) -> DisplayMetadata:
        return DisplayMetadata(title="Widget", subtitle=entity.id, summary="One widget")

    async def apply_approval(self, entity: Widget, approver_id: str) -> None:
        if entity.id in self.fail_on:
            raise RuntimeError(f"widget {entity.id} is locked")
        self.approved.append(entity.id)
        await self.widgets.save(entity.model_copy(update={"status": "approved"}))

    async def apply_rejection(self, entity: Widget, approver_id: str, reason: str) -> None:
        await self.widgets.save(entity.model_copy(update={"status": "rejected"}))


class WidgetWorld:
    """Request store, widget entities, registry, audit and ledger wired together."""

    def __init__(self, state_dir: Path) -> None:
        self.store = InMemoryRequestStore()
        self.widgets = InMemoryEntityRepo()
        self.handler = WidgetHandler(self.store, self.widgets, sla_rules=WIDGET_SLA_RULES)
        self.registry = ApprovalTypeRegistry()
        self.registry.register(self.handler)
        self.audit_store = RecordingAuditStore()
        self.audit_logger = AuditLogger(self.audit_store)
        self.ledger = ExecutionLedger(state_dir)

    def add(
        self,
        approval_id: str,
        hours_ago: float,
        *,
        approver_id: str = "mgr-1",
        organization_id: str = "org-1",
        status: ApprovalStatus = "pending",
        entity_type: str = "widget_request",
        name: str = "Ada Lovelace",
        team_id: str | None = None,
        priority: ApprovalPriority = "normal",
        with_entity: bool = True,
    ) -> ApprovalRequestRow:
        entity_id = f"w-{approval_id}"
        created_at = FIXED_NOW - timedelta(hours=hours_ago)
        row = ApprovalRequestRow(
            id=approval_id,
            organization_id=organization_id,
            entity_type=entity_type,
            entity_id=entity_id,
            requested_by="emp-1",
            approver_id=approver_id,
            status=status,
            approved_at=None if status == "pending" else created_at + timedelta(minutes=5),
            created_at=created_at,
            updated_at=created_at,
        )
        self.store.rows[row.id] = row
        if with_entity:
            self.widgets.entities[entity_id] = Widget(
                id=entity_id,
                organization_id=organization_id,
                requester=Requester(
                    id="emp-1",
                    user_id="user-1",
                    name=name,
                    email=f"{name.split()[0].lower()}@example.com",
                    team_id=team_id,
                ),
                priority=priority,
            )
        return row

    def params(self, **overrides) -> ApprovalQueryParams:  # type: ignore[no-untyped-def]
        values = {"approver_id": "mgr-1", "organization_id": "org-1", "limit": 20}
        values.update(overrides)
        return ApprovalQueryParams(**values)

    def bulk(self, max_concurrent: int | None = None) -> BulkApprovalCoordinator:
        return BulkApprovalCoordinator(
            registry=self.registry,
            request_store=self.store,
            audit_logger=self.audit_logger,
            ledger=self.ledger,
            max_concurrent=max_concurrent,
        )

    def service(self) -> ApprovalInboxService:
        return ApprovalInboxService(
            registry=self.registry,
            request_store=self.store,
            audit_logger=self.audit_logger,
            ledger=self.ledger,
        )


@pytest.fixture
def world(tmp_path: Path) -> WidgetWorld:
    return WidgetWorld(tmp_path / "state")
