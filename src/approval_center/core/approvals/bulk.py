from __future__ import annotations

import asyncio
import logging
import os
import time
from dataclasses import dataclass
from uuid import uuid4

from approval_center.core.approvals.errors import ApprovalValidationError
from approval_center.core.approvals.registry import ApprovalTypeRegistry
from approval_center.core.approvals.schemas import ApprovalRequestRow, BulkApproveFailure, BulkApproveResult
from approval_center.core.audit.logger import AuditLogger, build_entry
from approval_center.core.ledger import ExecutionLedger, approval_action_key
from approval_center.core.logging.context import correlation_id_var, log_context
from approval_center.core.store.base import ApprovalRequestStore

DEFAULT_BULK_CONCURRENCY = 5


def bulk_concurrency() -> int:
    try:
        return max(1, int(os.getenv("APPROVAL_CENTER_BULK_CONCURRENCY", str(DEFAULT_BULK_CONCURRENCY))))
    except ValueError:
        return DEFAULT_BULK_CONCURRENCY


@dataclass
class _ItemOutcome:
    row: ApprovalRequestRow
    error: str | None = None
    duplicate: bool = False


class BulkApprovalCoordinator:
    """Approves many approval requests, each on its own.

    Every distinct input id ends up in exactly one of ``succeeded`` or
    ``failed``. A handler error only fails its own item.
    """

    def __init__(
        self,
        registry: ApprovalTypeRegistry,
        request_store: ApprovalRequestStore,
        audit_logger: AuditLogger,
        ledger: ExecutionLedger,
        max_concurrent: int | None = None,
    ) -> None:
        self.registry = registry
        self.request_store = request_store
        self.audit_logger = audit_logger
        self.ledger = ledger
        self.max_concurrent = max_concurrent or bulk_concurrency()
        self.logger = logging.getLogger("approval_center.bulk")

    async def bulk_approve(self, approval_ids: list[str], approver_id: str, organization_id: str) -> BulkApproveResult:
        ids = list(dict.fromkeys(approval_ids))
        if not ids:
            raise ApprovalValidationError("approval_ids must not be empty")

        correlation_id = correlation_id_var.get() or str(uuid4())
        started_at = time.perf_counter()
        with log_context(correlation_id=correlation_id):
            self.logger.info("bulk_approve_started", extra={"extra_fields": {"requested": len(ids)}})

            rows = {row.id: row for row in await self.request_store.get_requests_by_ids(ids)}
            errors: dict[str, str] = {}
            candidates: list[ApprovalRequestRow] = []
            for approval_id in ids:
                row = rows.get(approval_id)
                if row is None:
                    errors[approval_id] = "Approval request not found"
                    continue
                problem = self._validate(row, approver_id, organization_id)
                if problem:
                    errors[approval_id] = problem
                else:
                    candidates.append(row)

            semaphore = asyncio.Semaphore(self.max_concurrent)
            results = await asyncio.gather(
                *(self._approve_one(row, approver_id, correlation_id, semaphore) for row in candidates),
                return_exceptions=True,
            )

            fresh: list[ApprovalRequestRow] = []
            for row, outcome in zip(candidates, results):
                if isinstance(outcome, BaseException):
                    errors[row.id] = str(outcome) or outcome.__class__.__name__
                elif outcome.error is not None:
                    errors[row.id] = outcome.error
                elif not outcome.duplicate:
                    fresh.append(row)

            await self.audit_logger.log_batch(
                [
                    build_entry(
                        organization_id=row.organization_id,
                        approval_request_id=row.id,
                        approval_type=row.entity_type,
                        target_entity_id=row.entity_id,
                        action="bulk_approve",
                        actor_id=approver_id,
                        previous_status="pending",
                        new_status="approved",
                        metadata={"bulk_size": len(ids), "correlation_id": correlation_id},
                    )
                    for row in fresh
                ]
            )

            result = BulkApproveResult(
                succeeded=[approval_id for approval_id in ids if approval_id not in errors],
                failed=[BulkApproveFailure(id=approval_id, error=errors[approval_id]) for approval_id in ids if approval_id in errors],
            )
            self.logger.info(
                "bulk_approve_completed",
                extra={
                    "extra_fields": {
                        "succeeded": len(result.succeeded),
                        "failed": len(result.failed),
                        "duration_ms": int((time.perf_counter() - started_at) * 1000),
                    }
                },
            )
            return result

    def _validate(self, row: ApprovalRequestRow, approver_id: str, organization_id: str) -> str | None:
        if row.approver_id != approver_id:
            return "You are not the approver for this request"
        if row.organization_id != organization_id:
            return "Approval request belongs to a different organization"
        if row.status != "pending":
            return f"Approval is already {row.status}"
        if not self.registry.exists(row.entity_type):
            return f"Unsupported approval type: {row.entity_type}"
        handler = self.registry.get(row.entity_type)
        if not handler.supports_bulk_approve:
            return f"{handler.display_name} does not support bulk approval"
        return None

    async def _approve_one(
        self,
        row: ApprovalRequestRow,
        approver_id: str,
        correlation_id: str,
        semaphore: asyncio.Semaphore,
    ) -> _ItemOutcome:
        async with semaphore:
            with log_context(correlation_id=correlation_id, approval_id=row.id, approval_type=row.entity_type):
                try:
                    return await self._run_handler(row, approver_id, correlation_id)
                except Exception as exc:
                    self.logger.warning(
                        "bulk_approve_item_failed",
                        extra={"extra_fields": {"error": str(exc), "exc_type": exc.__class__.__name__}},
                    )
                    return _ItemOutcome(row=row, error=str(exc) or exc.__class__.__name__)

    async def _run_handler(self, row: ApprovalRequestRow, approver_id: str, correlation_id: str) -> _ItemOutcome:
        current = await self.request_store.get_requests_by_ids([row.id])
        if not current:
            return _ItemOutcome(row=row, error="Approval request not found")
        if current[0].status != "pending":
            return _ItemOutcome(row=row, error=f"Approval is already {current[0].status}")

        key = approval_action_key(row.id, "approve")
        started = await self.ledger.try_start(
            key,
            kind="approve",
            correlation_id=correlation_id,
            meta={"approval_id": row.id, "approval_type": row.entity_type, "source": "bulk"},
        )
        if not started:
            if await self.ledger.status_of(key) == "succeeded":
                return _ItemOutcome(row=row, duplicate=True)
            return _ItemOutcome(row=row, error="Approval already in progress")

        handler = self.registry.get(row.entity_type)
        try:
            await handler.approve(row.entity_id, approver_id)
        except Exception as exc:
            await self.ledger.mark(key, "failed", meta_update={"error": str(exc)})
            raise
        await self.ledger.mark(key, "succeeded")
        return _ItemOutcome(row=row)
