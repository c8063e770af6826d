from __future__ import annotations

from datetime import datetime, timedelta, timezone

import pytest

from approval_center.core.approvals.errors import ApprovalValidationError
from approval_center.core.approvals.schemas import ApprovalRequestRow
from approval_center.core.store.jsonl import JsonlApprovalRequestStore, JsonlEntityStore
from approval_center.handlers.common import EmployeeRef, EmployeeUser
from approval_center.handlers.time_correction import TimeCorrectionHandler, WorkPeriod

NOW = datetime(2026, 3, 10, 12, 0, tzinfo=timezone.utc)
SHIFT_START = datetime(2026, 3, 9, 9, 0, tzinfo=timezone.utc)


def _period(period_id: str = "wp-1", **overrides) -> WorkPeriod:  # type: ignore[no-untyped-def]
    values = {
        "id": period_id,
        "start_time": SHIFT_START,
        "end_time": SHIFT_START + timedelta(hours=8, minutes=30),
        "duration_minutes": 510,
        "employee": EmployeeRef(
            id="emp-7",
            user_id="user-7",
            organization_id="org-1",
            user=EmployeeUser(id="user-7", name="Alan Turing", email="alan@example.com"),
        ),
    }
    values.update(overrides)
    return WorkPeriod(**values)


@pytest.fixture
def stores(tmp_path):  # type: ignore[no-untyped-def]
    requests = JsonlApprovalRequestStore(tmp_path)
    periods = JsonlEntityStore(tmp_path / "work_periods.jsonl", WorkPeriod)
    return requests, periods, TimeCorrectionHandler(requests, periods, clock=lambda: NOW)


async def _seed(requests, periods, period: WorkPeriod) -> ApprovalRequestRow:  # type: ignore[no-untyped-def]
    row = ApprovalRequestRow(
        id=f"req-{period.id}",
        organization_id="org-1",
        entity_type="time_entry",
        entity_id=period.id,
        requested_by="emp-7",
        approver_id="mgr-1",
        created_at=NOW - timedelta(hours=2),
        updated_at=NOW - timedelta(hours=2),
    )
    await periods.save(period)
    await requests.save_request(row)
    return row


def test_priority_grows_with_request_age(stores) -> None:
    _, _, handler = stores
    period = _period()

    assert handler.calculate_priority(period, NOW - timedelta(hours=80)) == "urgent"
    assert handler.calculate_priority(period, NOW - timedelta(hours=50)) == "high"
    assert handler.calculate_priority(period, NOW - timedelta(hours=30)) == "normal"
    assert handler.calculate_priority(period, NOW - timedelta(hours=5)) == "low"


def test_display_metadata_for_closed_and_open_periods(stores) -> None:
    _, _, handler = stores

    closed = handler.get_display_metadata(_period())
    assert closed.title == "Time Correction"
    assert closed.subtitle == "Mar 09, 2026 - 09:00 to 17:30"
    assert closed.summary == "8h 30m on Mar 09, 2026"
    assert closed.badge.label == "Correction"
    assert closed.badge.color is None
    assert closed.icon == "clock-edit"

    open_period = handler.get_display_metadata(_period(end_time=None, duration_minutes=None))
    assert open_period.subtitle == "Mar 09, 2026 - 09:00 to ongoing"
    assert open_period.summary == "In progress on Mar 09, 2026"


@pytest.mark.asyncio
async def test_approve_applies_corrected_times(stores) -> None:
    requests, periods, handler = stores
    corrected_start = SHIFT_START - timedelta(minutes=30)
    row = await _seed(requests, periods, _period(corrected_start_time=corrected_start))

    await handler.approve("wp-1", "mgr-1")

    stored = await periods.get("wp-1")
    assert stored.start_time == corrected_start
    assert stored.end_time == SHIFT_START + timedelta(hours=8, minutes=30)
    assert stored.duration_minutes == 540
    assert stored.correction_status == "approved"
    [stored_row] = await requests.get_requests_by_ids([row.id])
    assert stored_row.status == "approved"


@pytest.mark.asyncio
async def test_approve_without_correction_fails_and_leaves_request_pending(stores) -> None:
    requests, periods, handler = stores
    row = await _seed(requests, periods, _period())

    with pytest.raises(ApprovalValidationError, match="Clock in correction not found"):
        await handler.approve("wp-1", "mgr-1")

    [stored_row] = await requests.get_requests_by_ids([row.id])
    assert stored_row.status == "pending"


@pytest.mark.asyncio
async def test_reject_keeps_original_times(stores) -> None:
    requests, periods, handler = stores
    await _seed(requests, periods, _period(corrected_start_time=SHIFT_START - timedelta(hours=1)))

    await handler.reject("wp-1", "mgr-1", "No badge record")

    stored = await periods.get("wp-1")
    assert stored.start_time == SHIFT_START
    assert stored.correction_status == "rejected"

    detail = await handler.get_detail("wp-1")
    assert detail.timeline[0].message == "Alan Turing requested a time correction"
    assert detail.timeline[-1].message == "Correction rejected: No badge record"
