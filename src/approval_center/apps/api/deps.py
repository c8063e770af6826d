from __future__ import annotations

from dataclasses import dataclass
from functools import lru_cache
from pathlib import Path

from fastapi import Header, HTTPException, Request

from approval_center.core.approvals.registry import ApprovalTypeRegistry
from approval_center.core.approvals.schemas import RequestProvenance
from approval_center.core.approvals.service import ApprovalInboxService
from approval_center.core.approvals.sla_config import OrgSLARuleBook, load_org_sla_rules
from approval_center.core.audit.logger import AuditLogger
from approval_center.core.ledger import ExecutionLedger
from approval_center.core.store.jsonl import JsonlApprovalRequestStore, JsonlAuditStore, default_state_dir
from approval_center.handlers import build_registry


@dataclass(frozen=True)
class Caller:
    employee_id: str
    organization_id: str


@lru_cache(maxsize=1)
def get_state_dir() -> Path:
    state_dir = default_state_dir()
    state_dir.mkdir(parents=True, exist_ok=True)
    return state_dir


@lru_cache(maxsize=1)
def get_request_store() -> JsonlApprovalRequestStore:
    return JsonlApprovalRequestStore(get_state_dir())


@lru_cache(maxsize=1)
def get_audit_store() -> JsonlAuditStore:
    return JsonlAuditStore(get_state_dir())


@lru_cache(maxsize=1)
def get_sla_rule_book() -> OrgSLARuleBook:
    return load_org_sla_rules()


@lru_cache(maxsize=1)
def get_registry() -> ApprovalTypeRegistry:
    return build_registry(get_request_store(), get_state_dir(), sla_rules=get_sla_rule_book())


@lru_cache(maxsize=1)
def get_ledger() -> ExecutionLedger:
    return ExecutionLedger(state_dir=get_state_dir())


@lru_cache(maxsize=1)
def get_inbox_service() -> ApprovalInboxService:
    return ApprovalInboxService(
        registry=get_registry(),
        request_store=get_request_store(),
        audit_logger=AuditLogger(get_audit_store()),
        ledger=get_ledger(),
    )


def get_caller(
    x_employee_id: str | None = Header(default=None),
    x_organization_id: str | None = Header(default=None),
) -> Caller:
    if not x_employee_id or not x_organization_id:
        raise HTTPException(status_code=401, detail="unauthorized")
    return Caller(employee_id=x_employee_id, organization_id=x_organization_id)


def get_provenance(request: Request) -> RequestProvenance:
    return RequestProvenance(
        ip_address=request.client.host if request.client else None,
        user_agent=request.headers.get("user-agent"),
    )
