from __future__ import annotations

from datetime import datetime
from pathlib import Path
from typing import Callable

from approval_center.core.approvals.registry import ApprovalTypeRegistry
from approval_center.core.approvals.schemas import utc_now
from approval_center.core.approvals.sla_config import OrgSLARuleBook
from approval_center.core.store.base import ApprovalRequestStore
from approval_center.core.store.jsonl import JsonlEntityStore

from .absence import AbsenceEntry, AbsenceRequestHandler
from .time_correction import TimeCorrectionHandler, WorkPeriod


def register_default_handlers(
    registry: ApprovalTypeRegistry,
    request_store: ApprovalRequestStore,
    state_dir: Path,
    sla_rules: OrgSLARuleBook | None = None,
    clock: Callable[[], datetime] = utc_now,
) -> ApprovalTypeRegistry:
    """Register the built-in absence and time-correction handlers."""
    registry.register(
        AbsenceRequestHandler(
            request_store,
            JsonlEntityStore(state_dir / "absence_entries.jsonl", AbsenceEntry),
            sla_rules=sla_rules,
            clock=clock,
        )
    )
    registry.register(
        TimeCorrectionHandler(
            request_store,
            JsonlEntityStore(state_dir / "work_periods.jsonl", WorkPeriod),
            sla_rules=sla_rules,
            clock=clock,
        )
    )
    return registry


def build_registry(
    request_store: ApprovalRequestStore,
    state_dir: Path,
    sla_rules: OrgSLARuleBook | None = None,
    clock: Callable[[], datetime] = utc_now,
) -> ApprovalTypeRegistry:
    return register_default_handlers(ApprovalTypeRegistry(), request_store, state_dir, sla_rules=sla_rules, clock=clock)


__all__ = [
    "AbsenceEntry",
    "AbsenceRequestHandler",
    "TimeCorrectionHandler",
    "WorkPeriod",
    "build_registry",
    "register_default_handlers",
]
