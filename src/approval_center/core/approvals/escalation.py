from __future__ import annotations

import logging
import os
from datetime import datetime
from uuid import uuid4

from approval_center.core.approvals.handler import BaseApprovalHandler
from approval_center.core.approvals.registry import ApprovalTypeRegistry
from approval_center.core.approvals.schemas import ApprovalRequestRow, UnifiedApprovalItem, utc_now
from approval_center.core.approvals.sla import get_sla_rule, should_escalate
from approval_center.core.audit.logger import AuditLogger, build_entry
from approval_center.core.audit.schemas import ApprovalAuditEntry
from approval_center.core.ledger import ExecutionLedger, escalation_key
from approval_center.core.logging.context import log_context
from approval_center.core.store.base import ApprovalRequestStore, RequestFilter

SYSTEM_ACTOR = "system"


def escalation_batch_size() -> int:
    try:
        return max(1, int(os.getenv("APPROVAL_CENTER_ESCALATION_BATCH", "500")))
    except ValueError:
        return 500


class EscalationSweep:
    """Finds pending approvals past their escalation threshold and records them once.

    Delivery (chat, email) is left to whoever reads the ``escalate`` audit
    entries and the returned items.
    """

    def __init__(
        self,
        registry: ApprovalTypeRegistry,
        request_store: ApprovalRequestStore,
        audit_logger: AuditLogger,
        ledger: ExecutionLedger,
        batch_size: int | None = None,
    ) -> None:
        self.registry = registry
        self.request_store = request_store
        self.audit_logger = audit_logger
        self.ledger = ledger
        self.batch_size = batch_size or escalation_batch_size()
        self.logger = logging.getLogger("approval_center.escalation")

    async def run(self, now: datetime | None = None) -> list[UnifiedApprovalItem]:
        current = now or utc_now()
        escalated: list[UnifiedApprovalItem] = []
        entries: list[ApprovalAuditEntry] = []

        with log_context(job_id=f"escalation:{uuid4()}"):
            for handler in self.registry.get_all():
                if not isinstance(handler, BaseApprovalHandler):
                    self.logger.debug("escalation_skipped_handler", extra={"extra_fields": {"approval_type": handler.type}})
                    continue
                items, type_entries = await self._sweep_type(handler, current)
                escalated.extend(items)
                entries.extend(type_entries)

            await self.audit_logger.log_batch(entries)
            self.logger.info("escalation_sweep_completed", extra={"extra_fields": {"escalated": len(escalated)}})
        return escalated

    async def _sweep_type(
        self,
        handler: BaseApprovalHandler,
        now: datetime,
    ) -> tuple[list[UnifiedApprovalItem], list[ApprovalAuditEntry]]:
        items: list[UnifiedApprovalItem] = []
        entries: list[ApprovalAuditEntry] = []
        after: datetime | None = None
        # Oldest first: the rows furthest past their threshold come back in the first batch.
        while True:
            rows = await self.request_store.find_requests(
                RequestFilter(entity_type=handler.type, status="pending", created_at_lte=now, created_at_gt=after),
                limit=self.batch_size,
                oldest_first=True,
            )
            if rows:
                await self._escalate_rows(handler, rows, now, items, entries)
            if len(rows) < self.batch_size:
                break
            after = rows[-1].created_at
        return items, entries

    async def _escalate_rows(
        self,
        handler: BaseApprovalHandler,
        rows: list[ApprovalRequestRow],
        now: datetime,
        items: list[UnifiedApprovalItem],
        entries: list[ApprovalAuditEntry],
    ) -> None:
        entities = await handler.load_entities_by_ids(list(dict.fromkeys(row.entity_id for row in rows)))
        for row in rows:
            entity = entities.get(row.entity_id)
            if entity is None:
                continue
            item = handler.transform_to_item(row, entity, now=now)
            rule = get_sla_rule(handler.type, item.priority, handler.org_rules_for(entity))
            if not should_escalate(rule, row.created_at, now):
                continue

            key = escalation_key(row.id)
            if not await self.ledger.try_start(key, kind="escalate", meta={"approval_id": row.id}):
                continue
            await self.ledger.mark(key, "succeeded", meta_update={"escalated_at": now.isoformat(), "sla_status": item.sla.status})

            items.append(item)
            entries.append(
                build_entry(
                    organization_id=row.organization_id,
                    approval_request_id=row.id,
                    approval_type=handler.type,
                    target_entity_id=row.entity_id,
                    action="escalate",
                    actor_id=SYSTEM_ACTOR,
                    previous_status=row.status,
                    new_status=row.status,
                    metadata={
                        "priority": item.priority,
                        "sla_status": item.sla.status,
                        "hours_remaining": item.sla.hours_remaining,
                        "approver_id": row.approver_id,
                    },
                )
            )
