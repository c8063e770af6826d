"""SLA deadlines, status and priority ordering.

Everything here is pure: callers pass ``now`` explicitly and no state is kept
between calls.
"""

from __future__ import annotations

import math
from datetime import datetime, timedelta
from typing import Iterable

from pydantic import BaseModel

from approval_center.core.approvals.schemas import (
    ABSENCE_ENTRY,
    TIME_ENTRY,
    ApprovalPriority,
    SLAInfo,
)

APPROACHING_THRESHOLD_HOURS = 4

PRIORITY_WEIGHTS: dict[str, int] = {"urgent": 0, "high": 1, "normal": 2, "low": 3}


class SLARule(BaseModel):
    approval_type: str
    priority: ApprovalPriority
    deadline_hours: int
    escalation_enabled: bool = False
    escalation_threshold_hours: int | None = None


def _rule(
    approval_type: str,
    priority: ApprovalPriority,
    deadline_hours: int,
    escalation_enabled: bool,
    escalation_threshold_hours: int | None = None,
) -> SLARule:
    return SLARule(
        approval_type=approval_type,
        priority=priority,
        deadline_hours=deadline_hours,
        escalation_enabled=escalation_enabled,
        escalation_threshold_hours=escalation_threshold_hours,
    )


DEFAULT_SLA_RULES: tuple[SLARule, ...] = (
    _rule(ABSENCE_ENTRY, "urgent", 4, True, 2),
    _rule(ABSENCE_ENTRY, "high", 24, True, 16),
    _rule(ABSENCE_ENTRY, "normal", 48, True),
    _rule(ABSENCE_ENTRY, "low", 72, False),
    _rule(TIME_ENTRY, "urgent", 8, True, 4),
    _rule(TIME_ENTRY, "high", 24, True, 16),
    _rule(TIME_ENTRY, "normal", 48, False),
    _rule(TIME_ENTRY, "low", 96, False),
)


def get_sla_rule(
    approval_type: str,
    priority: str,
    org_rules: Iterable[SLARule] | None = None,
) -> SLARule | None:
    for rules in (org_rules or (), DEFAULT_SLA_RULES):
        for rule in rules:
            if rule.approval_type == approval_type and rule.priority == priority:
                return rule
    return None


def calculate_sla_deadline(
    approval_type: str,
    priority: str,
    created_at: datetime,
    org_rules: Iterable[SLARule] | None = None,
) -> datetime | None:
    rule = get_sla_rule(approval_type, priority, org_rules)
    if rule is None:
        return None
    return created_at + timedelta(hours=rule.deadline_hours)


def calculate_sla_status(deadline: datetime | None, now: datetime) -> SLAInfo:
    if deadline is None:
        return SLAInfo(deadline=None, status="on_time", hours_remaining=None)

    hours_remaining = math.floor((deadline - now).total_seconds() / 3600)
    # Negative hours stay negative; the magnitude is how far overdue the item is.
    if hours_remaining < 0:
        status = "overdue"
    elif hours_remaining <= APPROACHING_THRESHOLD_HOURS:
        status = "approaching"
    else:
        status = "on_time"
    return SLAInfo(deadline=deadline, status=status, hours_remaining=hours_remaining)


def _days(hours: int) -> str:
    days = hours // 24
    return f"{days} day" if days == 1 else f"{days} days"


def get_sla_status_message(sla: SLAInfo) -> str:
    if sla.deadline is None or sla.hours_remaining is None:
        return "On track"

    hours = sla.hours_remaining
    if sla.status == "overdue":
        overdue = abs(hours)
        if overdue >= 24:
            return f"{_days(overdue)} overdue"
        return f"{overdue}h overdue"
    if sla.status == "approaching" or hours < 24:
        return f"{hours}h remaining"
    return f"{_days(hours)} remaining"


def compare_priority(a: str, b: str) -> int:
    return PRIORITY_WEIGHTS[a] - PRIORITY_WEIGHTS[b]


def priority_sort_key(priority: str) -> int:
    return PRIORITY_WEIGHTS[priority]


def should_escalate(rule: SLARule | None, created_at: datetime, now: datetime) -> bool:
    if rule is None or not rule.escalation_enabled:
        return False
    threshold = rule.escalation_threshold_hours
    if threshold is None:
        threshold = rule.deadline_hours
    return now - created_at >= timedelta(hours=threshold)
