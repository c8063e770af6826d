from __future__ import annotations

from datetime import datetime, timedelta, timezone

import pytest

from approval_center.core.approvals.schemas import ApprovalRequestRow
from approval_center.core.store.base import RequestFilter
from approval_center.core.store.jsonl import JsonlApprovalRequestStore

NOW = datetime(2026, 3, 10, 12, 0, tzinfo=timezone.utc)


def _row(approval_id: str, hours_ago: int, **overrides) -> ApprovalRequestRow:  # type: ignore[no-untyped-def]
    values = {
        "id": approval_id,
        "organization_id": "org-1",
        "entity_type": "absence_entry",
        "entity_id": f"abs-{approval_id}",
        "requested_by": "emp-1",
        "approver_id": "mgr-1",
        "created_at": NOW - timedelta(hours=hours_ago),
        "updated_at": NOW - timedelta(hours=hours_ago),
    }
    values.update(overrides)
    return ApprovalRequestRow(**values)


@pytest.mark.asyncio
async def test_find_orders_newest_first_and_applies_bounds(tmp_path) -> None:
    store = JsonlApprovalRequestStore(tmp_path)
    for row in (_row("old", 48), _row("mid", 12), _row("new", 1), _row("time", 2, entity_type="time_entry")):
        await store.save_request(row)

    rows = await store.find_requests(RequestFilter(entity_type="absence_entry"), limit=10)
    assert [row.id for row in rows] == ["new", "mid", "old"]

    bounded = await store.find_requests(
        RequestFilter(entity_type="absence_entry", created_at_lte=NOW - timedelta(hours=12)),
        limit=10,
    )
    assert [row.id for row in bounded] == ["mid", "old"]

    assert [row.id for row in await store.find_requests(RequestFilter(), limit=2)] == ["new", "time"]
    assert await store.find_requests(RequestFilter(), limit=0) == []
    assert await store.count_requests(RequestFilter(status="pending")) == 4


@pytest.mark.asyncio
async def test_save_request_upserts_by_id(tmp_path) -> None:
    store = JsonlApprovalRequestStore(tmp_path)
    row = _row("a", 3)
    await store.save_request(row)

    await store.save_request(row.model_copy(update={"status": "approved", "approved_at": NOW}))

    rows = await store.get_requests_by_ids(["a", "missing"])
    assert len(rows) == 1
    assert rows[0].status == "approved"
    assert rows[0].updated_at > row.updated_at
    assert (await store.get_request_for_entity("absence_entry", "abs-a")).id == "a"
    assert await store.get_request_for_entity("time_entry", "abs-a") is None


@pytest.mark.asyncio
async def test_unreadable_lines_are_skipped(tmp_path) -> None:
    store = JsonlApprovalRequestStore(tmp_path)
    await store.save_request(_row("a", 1))
    with store.file_path.open("a", encoding="utf-8") as handle:
        handle.write("{broken\n")

    assert [row.id for row in await store.get_requests_by_ids(["a"])] == ["a"]


@pytest.mark.asyncio
async def test_find_oldest_first_after_exclusive_bound(tmp_path) -> None:
    store = JsonlApprovalRequestStore(tmp_path)
    for row in (_row("old", 48), _row("mid", 12), _row("new", 1)):
        await store.save_request(row)

    oldest = await store.find_requests(RequestFilter(), limit=2, oldest_first=True)
    assert [row.id for row in oldest] == ["old", "mid"]

    after = await store.find_requests(
        RequestFilter(created_at_gt=oldest[-1].created_at),
        limit=2,
        oldest_first=True,
    )
    assert [row.id for row in after] == ["new"]
