"""Two-phase approval listing: one request query, then one batched entity load.

Rows are over-fetched by ``APPROVAL_CENTER_OVERFETCH_FACTOR`` (default 3) so
that team/search/priority filtering usually still fills a page. When it does
not, the page is short and the batch carries the created_at of the last row
scanned, so callers can page on past rows that were filtered out.
"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Awaitable, Callable, Mapping, TypeVar

from approval_center.core.approvals.errors import ApprovalValidationError
from approval_center.core.approvals.schemas import (
    ApprovalQueryParams,
    ApprovalRequestRow,
    SLAInfo,
    UnifiedApprovalItem,
    utc_now,
)
from approval_center.core.approvals.sla import calculate_sla_status
from approval_center.core.store.base import ApprovalRequestStore, RequestFilter

EntityT = TypeVar("EntityT")

DEFAULT_OVERFETCH_FACTOR = 3

EntityLoader = Callable[[list[str]], Awaitable[Mapping[str, EntityT]]]
EntityFilter = Callable[[EntityT, ApprovalQueryParams], bool]
ItemTransform = Callable[[ApprovalRequestRow, EntityT], UnifiedApprovalItem]

logger = logging.getLogger("approval_center.pipeline")


def overfetch_factor() -> int:
    raw = os.getenv("APPROVAL_CENTER_OVERFETCH_FACTOR")
    if raw is None:
        return DEFAULT_OVERFETCH_FACTOR
    try:
        return max(1, int(raw))
    except ValueError:
        return DEFAULT_OVERFETCH_FACTOR


def parse_cursor(cursor: str) -> datetime:
    try:
        parsed = datetime.fromisoformat(cursor)
    except ValueError as exc:
        raise ApprovalValidationError(f"Invalid cursor: {cursor}") from exc
    if parsed.tzinfo is None:
        return parsed.replace(tzinfo=timezone.utc)
    return parsed


def format_cursor(created_at: datetime) -> str:
    return created_at.isoformat()


def build_sla_info(deadline: datetime | None, now: datetime | None = None) -> SLAInfo:
    return calculate_sla_status(deadline, now or utc_now())


def build_request_filter(
    entity_type: str,
    params: ApprovalQueryParams,
    now: datetime | None = None,
) -> RequestFilter:
    upper_bounds: list[datetime] = []
    if params.cursor:
        upper_bounds.append(parse_cursor(params.cursor))
    if params.min_age_days:
        upper_bounds.append((now or utc_now()) - timedelta(days=params.min_age_days))
    if params.date_to is not None:
        upper_bounds.append(params.date_to)

    return RequestFilter(
        entity_type=entity_type,
        approver_id=params.approver_id,
        organization_id=params.organization_id,
        status=params.status or "pending",
        created_at_lte=min(upper_bounds) if upper_bounds else None,
        created_at_gte=params.date_from,
    )


@dataclass
class ApprovalBatch:
    """One type's share of a page.

    ``scan_cursor`` is set when the over-fetch came back full but filtering
    left the batch short, so older rows may still match. It holds the
    ``created_at`` of the last row fetched.
    """

    items: list[UnifiedApprovalItem] = field(default_factory=list)
    scan_cursor: datetime | None = None


async def fetch_approval_batch(
    *,
    entity_type: str,
    params: ApprovalQueryParams,
    store: ApprovalRequestStore,
    load_entities_by_ids: EntityLoader,
    transform_to_item: ItemTransform,
    filter_entity: EntityFilter | None = None,
    now: datetime | None = None,
    overfetch: int | None = None,
) -> ApprovalBatch:
    request_filter = build_request_filter(entity_type, params, now=now)
    factor = overfetch if overfetch is not None else overfetch_factor()
    fetch_limit = params.limit * factor
    rows = await store.find_requests(request_filter, limit=fetch_limit)
    if not rows:
        return ApprovalBatch()

    entity_ids = list(dict.fromkeys(row.entity_id for row in rows))
    entities = await load_entities_by_ids(entity_ids)

    items: list[UnifiedApprovalItem] = []
    skipped_missing = 0
    for row in rows:
        entity = entities.get(row.entity_id)
        if entity is None:
            skipped_missing += 1
            continue
        if filter_entity is not None and not filter_entity(entity, params):
            continue
        item = transform_to_item(row, entity)
        if params.priority and item.priority != params.priority:
            continue
        items.append(item)
        if len(items) >= params.limit:
            break

    if skipped_missing:
        logger.info(
            "approval_entities_missing",
            extra={"extra_fields": {"approval_type": entity_type, "skipped": skipped_missing}},
        )

    batch = ApprovalBatch(items=items)
    if len(items) < params.limit and len(rows) >= fetch_limit:
        batch.scan_cursor = rows[-1].created_at
    return batch


async def fetch_approvals(**kwargs) -> list[UnifiedApprovalItem]:  # type: ignore[no-untyped-def]
    batch = await fetch_approval_batch(**kwargs)
    return batch.items


async def get_approval_count(
    entity_type: str,
    approver_id: str,
    organization_id: str,
    store: ApprovalRequestStore,
) -> int:
    return await store.count_requests(
        RequestFilter(
            entity_type=entity_type,
            approver_id=approver_id,
            organization_id=organization_id,
            status="pending",
        )
    )
