from __future__ import annotations

import logging
from typing import Any

from approval_center.core.approvals.schemas import RequestProvenance
from approval_center.core.audit.schemas import ApprovalAuditEntry, AuditAction
from approval_center.core.store.base import AuditStore


def build_entry(
    *,
    organization_id: str,
    approval_request_id: str,
    approval_type: str,
    target_entity_id: str,
    action: AuditAction,
    actor_id: str,
    previous_status: str,
    new_status: str,
    reason: str | None = None,
    metadata: dict[str, Any] | None = None,
    provenance: RequestProvenance | None = None,
) -> ApprovalAuditEntry:
    changes: dict[str, Any] = {
        "from": previous_status,
        "to": new_status,
        "approval_type": approval_type,
        "target_entity_id": target_entity_id,
    }
    if reason:
        changes["reason"] = reason
    return ApprovalAuditEntry(
        organization_id=organization_id,
        approval_request_id=approval_request_id,
        approval_type=approval_type,
        target_entity_id=target_entity_id,
        action=action,
        actor_id=actor_id,
        previous_status=previous_status,
        new_status=new_status,
        reason=reason,
        metadata=metadata,
        ip_address=provenance.ip_address if provenance else None,
        user_agent=provenance.user_agent if provenance else None,
        changes=changes,
    )


class AuditLogger:
    """Append-only recorder of approval state transitions.

    Writes never raise: the transition being recorded has already happened,
    so a failed write is logged and dropped.
    """

    def __init__(self, store: AuditStore) -> None:
        self.store = store
        self.logger = logging.getLogger("approval_center.audit")

    async def log(self, entry: ApprovalAuditEntry) -> None:
        try:
            await self.store.insert_audit_entries([entry])
        except Exception:
            self.logger.exception(
                "audit_write_failed",
                extra={
                    "extra_fields": {
                        "action": entry.action,
                        "approval_request_id": entry.approval_request_id,
                        "entries": 1,
                    }
                },
            )

    async def log_batch(self, entries: list[ApprovalAuditEntry]) -> None:
        if not entries:
            return
        try:
            await self.store.insert_audit_entries(list(entries))
        except Exception:
            self.logger.exception(
                "audit_write_failed",
                extra={"extra_fields": {"action": entries[0].action, "entries": len(entries)}},
            )
