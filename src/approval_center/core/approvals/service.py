from __future__ import annotations

import asyncio
import logging
import time
from datetime import datetime

from approval_center.core.approvals.bulk import BulkApprovalCoordinator
from approval_center.core.approvals.errors import ApprovalValidationError, AuthorizationError, NotFoundError
from approval_center.core.approvals.handler import ApprovalTypeHandler, BaseApprovalHandler
from approval_center.core.approvals.pipeline import ApprovalBatch, format_cursor
from approval_center.core.approvals.registry import ApprovalTypeRegistry
from approval_center.core.approvals.schemas import (
    ApprovalDetail,
    ApprovalPage,
    ApprovalQueryParams,
    ApprovalRequestRow,
    ApprovalTimelineEvent,
    BulkApproveResult,
    RequestProvenance,
)
from approval_center.core.audit.logger import AuditLogger, build_entry
from approval_center.core.ledger import ExecutionLedger, approval_action_key, escalation_key
from approval_center.core.logging.context import correlation_id_var, log_context
from approval_center.core.store.base import ApprovalRequestStore


class ApprovalInboxService:
    """Caller-facing entry point: the unified inbox plus single and bulk transitions."""

    def __init__(
        self,
        registry: ApprovalTypeRegistry,
        request_store: ApprovalRequestStore,
        audit_logger: AuditLogger,
        ledger: ExecutionLedger,
        bulk_coordinator: BulkApprovalCoordinator | None = None,
    ) -> None:
        self.registry = registry
        self.request_store = request_store
        self.audit_logger = audit_logger
        self.ledger = ledger
        self.bulk_coordinator = bulk_coordinator or BulkApprovalCoordinator(
            registry=registry,
            request_store=request_store,
            audit_logger=audit_logger,
            ledger=ledger,
        )
        self.logger = logging.getLogger("approval_center.inbox")

    def _handlers_for(self, types: list[str] | None) -> list[ApprovalTypeHandler]:
        if not types:
            return self.registry.get_all()
        return [self.registry.get(approval_type) for approval_type in dict.fromkeys(types)]

    async def query(self, params: ApprovalQueryParams) -> ApprovalPage:
        """One page of the unified inbox, newest first.

        ``total`` is the pending workload across the selected types, whatever
        ``params.status`` asks for; it backs the inbox badge, not the page.
        """
        handlers = self._handlers_for(params.types)
        if not handlers:
            return ApprovalPage()

        # One extra item per type tells us whether another page exists.
        lookahead = params.model_copy(update={"limit": params.limit + 1})
        batches = await asyncio.gather(*(self._batch_for(handler, lookahead) for handler in handlers))
        counts = await asyncio.gather(
            *(handler.get_count(params.approver_id, params.organization_id) for handler in handlers)
        )

        # A type whose full fetch was filtered short may still match rows older
        # than its scan cursor, so nothing at or below that cursor is served yet.
        scan_floor = max((batch.scan_cursor for batch in batches if batch.scan_cursor), default=None)
        merged = sorted(
            (
                item
                for batch in batches
                for item in batch.items
                if scan_floor is None or item.created_at > scan_floor
            ),
            key=lambda item: item.created_at,
            reverse=True,
        )
        page = merged[: params.limit]
        if len(merged) > params.limit:
            next_cursor = format_cursor(page[-1].created_at)
        elif scan_floor is not None:
            next_cursor = format_cursor(scan_floor)
        else:
            next_cursor = None
        return ApprovalPage(
            items=page,
            next_cursor=next_cursor,
            has_more=next_cursor is not None,
            total=sum(counts),
        )

    async def _batch_for(self, handler: ApprovalTypeHandler, params: ApprovalQueryParams) -> ApprovalBatch:
        if isinstance(handler, BaseApprovalHandler):
            return await handler.get_approval_batch(params)
        return ApprovalBatch(items=await handler.get_approvals(params))

    async def counts(self, approver_id: str, organization_id: str) -> dict[str, int]:
        handlers = self.registry.get_all()
        values = await asyncio.gather(*(handler.get_count(approver_id, organization_id) for handler in handlers))
        return {handler.type: value for handler, value in zip(handlers, values)}

    async def get_detail(self, approval_type: str, entity_id: str, organization_id: str) -> ApprovalDetail:
        detail = await self.registry.get(approval_type).get_detail(entity_id, organization_id)
        escalation = await self.ledger.latest(escalation_key(detail.approval.id))
        if escalation is None or escalation.status != "succeeded":
            return detail
        event = ApprovalTimelineEvent(
            id=f"{detail.approval.id}-escalated",
            type="escalated",
            timestamp=datetime.fromisoformat(escalation.meta.get("escalated_at", escalation.ts_iso)),
            message=f"Escalated: SLA {escalation.meta.get('sla_status', 'overdue').replace('_', ' ')}",
        )
        timeline = sorted([*detail.timeline, event], key=lambda item: item.timestamp)
        return detail.model_copy(update={"timeline": timeline})

    async def approve(
        self,
        approval_type: str,
        entity_id: str,
        approver_id: str,
        organization_id: str,
        provenance: RequestProvenance | None = None,
    ) -> ApprovalRequestRow:
        handler = self.registry.get(approval_type)
        request = await self._actionable_request(approval_type, entity_id, approver_id, organization_id, "approve")

        started_at = time.perf_counter()
        with log_context(approval_id=request.id, approval_type=approval_type, organization_id=organization_id):
            self.logger.info("approval_action_started", extra={"extra_fields": {"action": "approve"}})
            key = approval_action_key(request.id, "approve")
            started = await self.ledger.try_start(
                key,
                kind="approve",
                correlation_id=correlation_id_var.get(),
                meta={"approval_id": request.id, "approval_type": approval_type, "source": "single"},
            )
            if not started:
                raise ApprovalValidationError(
                    "Approval already in progress",
                    entity_type=approval_type,
                    entity_id=entity_id,
                )
            try:
                await handler.approve(entity_id, approver_id)
            except Exception as exc:
                await self.ledger.mark(key, "failed", meta_update={"error": str(exc)})
                self.logger.exception("approval_action_completed", extra={"extra_fields": {"status": "failed"}})
                raise
            await self.ledger.mark(key, "succeeded")

            await self.audit_logger.log(
                build_entry(
                    organization_id=organization_id,
                    approval_request_id=request.id,
                    approval_type=approval_type,
                    target_entity_id=entity_id,
                    action="approve",
                    actor_id=approver_id,
                    previous_status=request.status,
                    new_status="approved",
                    provenance=provenance,
                )
            )
            self.logger.info(
                "approval_action_completed",
                extra={
                    "extra_fields": {
                        "action": "approve",
                        "status": "approved",
                        "duration_ms": int((time.perf_counter() - started_at) * 1000),
                    }
                },
            )
        return await self._reload(request)

    async def reject(
        self,
        approval_type: str,
        entity_id: str,
        approver_id: str,
        organization_id: str,
        reason: str,
        provenance: RequestProvenance | None = None,
    ) -> ApprovalRequestRow:
        handler = self.registry.get(approval_type)
        request = await self._actionable_request(approval_type, entity_id, approver_id, organization_id, "reject")

        with log_context(approval_id=request.id, approval_type=approval_type, organization_id=organization_id):
            self.logger.info("approval_action_started", extra={"extra_fields": {"action": "reject"}})
            try:
                await handler.reject(entity_id, approver_id, reason)
            except Exception:
                self.logger.exception("approval_action_completed", extra={"extra_fields": {"status": "failed"}})
                raise

            await self.audit_logger.log(
                build_entry(
                    organization_id=organization_id,
                    approval_request_id=request.id,
                    approval_type=approval_type,
                    target_entity_id=entity_id,
                    action="reject",
                    actor_id=approver_id,
                    previous_status=request.status,
                    new_status="rejected",
                    reason=reason,
                    provenance=provenance,
                )
            )
            self.logger.info("approval_action_completed", extra={"extra_fields": {"action": "reject", "status": "rejected"}})
        return await self._reload(request)

    async def bulk_approve(self, approval_ids: list[str], approver_id: str, organization_id: str) -> BulkApproveResult:
        return await self.bulk_coordinator.bulk_approve(approval_ids, approver_id, organization_id)

    async def _actionable_request(
        self,
        approval_type: str,
        entity_id: str,
        approver_id: str,
        organization_id: str,
        action: str,
    ) -> ApprovalRequestRow:
        request = await self.request_store.get_request_for_entity(approval_type, entity_id)
        if request is None or request.organization_id != organization_id:
            raise NotFoundError("Approval request not found", entity_type="approval_request", entity_id=entity_id)
        if request.approver_id != approver_id:
            raise AuthorizationError(
                "You do not have permission to perform this approval action",
                user_id=approver_id,
                resource=approval_type,
                action=action,
            )
        if request.status != "pending":
            raise ApprovalValidationError(
                f"Approval is already {request.status}",
                entity_type=approval_type,
                entity_id=entity_id,
            )
        return request

    async def _reload(self, request: ApprovalRequestRow) -> ApprovalRequestRow:
        rows = await self.request_store.get_requests_by_ids([request.id])
        return rows[0] if rows else request
