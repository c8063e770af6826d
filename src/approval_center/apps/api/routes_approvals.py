from __future__ import annotations

from datetime import datetime

from fastapi import APIRouter, Depends, HTTPException, Query
from pydantic import ValidationError

from approval_center.core.approvals.errors import (
    ApprovalCenterError,
    ApprovalValidationError,
    AuthorizationError,
    NotFoundError,
)
from approval_center.core.approvals.schemas import (
    ApprovalDetail,
    ApprovalPage,
    ApprovalPriority,
    ApprovalQueryParams,
    ApprovalRequestRow,
    ApprovalStatus,
    BulkApproveRequest,
    BulkApproveResult,
    RejectRequest,
    RequestProvenance,
)
from approval_center.core.approvals.service import ApprovalInboxService

from .deps import Caller, get_caller, get_inbox_service, get_provenance

router = APIRouter()


def _http_error(exc: ApprovalCenterError) -> HTTPException:
    if isinstance(exc, NotFoundError):
        return HTTPException(status_code=404, detail=str(exc))
    if isinstance(exc, AuthorizationError):
        return HTTPException(status_code=403, detail=str(exc))
    if isinstance(exc, ApprovalValidationError):
        return HTTPException(status_code=400, detail=str(exc))
    return HTTPException(status_code=500, detail=str(exc))


@router.get("", response_model=ApprovalPage)
async def list_approvals(
    types: list[str] | None = Query(default=None),
    status: ApprovalStatus | None = Query(default=None),
    team_id: str | None = Query(default=None),
    search: str | None = Query(default=None),
    date_from: datetime | None = Query(default=None),
    date_to: datetime | None = Query(default=None),
    min_age_days: int | None = Query(default=None),
    priority: ApprovalPriority | None = Query(default=None),
    cursor: str | None = Query(default=None),
    limit: int = Query(default=20),
    caller: Caller = Depends(get_caller),
    service: ApprovalInboxService = Depends(get_inbox_service),
) -> ApprovalPage:
    try:
        params = ApprovalQueryParams(
            approver_id=caller.employee_id,
            organization_id=caller.organization_id,
            types=types,
            status=status,
            team_id=team_id,
            search=search,
            date_from=date_from,
            date_to=date_to,
            min_age_days=min_age_days,
            priority=priority,
            cursor=cursor,
            limit=limit,
        )
    except ValidationError as exc:
        raise HTTPException(status_code=400, detail=exc.errors(include_url=False, include_context=False)) from exc
    try:
        return await service.query(params)
    except ApprovalCenterError as exc:
        raise _http_error(exc) from exc


@router.get("/counts")
async def approval_counts(
    caller: Caller = Depends(get_caller),
    service: ApprovalInboxService = Depends(get_inbox_service),
) -> dict[str, int]:
    return await service.counts(caller.employee_id, caller.organization_id)


@router.post("/bulk-approve", response_model=BulkApproveResult)
async def bulk_approve(
    request: BulkApproveRequest,
    caller: Caller = Depends(get_caller),
    service: ApprovalInboxService = Depends(get_inbox_service),
) -> BulkApproveResult:
    try:
        return await service.bulk_approve(request.approval_ids, caller.employee_id, caller.organization_id)
    except ApprovalCenterError as exc:
        raise _http_error(exc) from exc


@router.get("/{approval_type}/{entity_id}", response_model=ApprovalDetail)
async def approval_detail(
    approval_type: str,
    entity_id: str,
    caller: Caller = Depends(get_caller),
    service: ApprovalInboxService = Depends(get_inbox_service),
) -> ApprovalDetail:
    try:
        return await service.get_detail(approval_type, entity_id, caller.organization_id)
    except ApprovalCenterError as exc:
        raise _http_error(exc) from exc


@router.post("/{approval_type}/{entity_id}/approve", response_model=ApprovalRequestRow)
async def approve_approval(
    approval_type: str,
    entity_id: str,
    caller: Caller = Depends(get_caller),
    provenance: RequestProvenance = Depends(get_provenance),
    service: ApprovalInboxService = Depends(get_inbox_service),
) -> ApprovalRequestRow:
    try:
        return await service.approve(
            approval_type,
            entity_id,
            approver_id=caller.employee_id,
            organization_id=caller.organization_id,
            provenance=provenance,
        )
    except ApprovalCenterError as exc:
        raise _http_error(exc) from exc


@router.post("/{approval_type}/{entity_id}/reject", response_model=ApprovalRequestRow)
async def reject_approval(
    approval_type: str,
    entity_id: str,
    request: RejectRequest,
    caller: Caller = Depends(get_caller),
    provenance: RequestProvenance = Depends(get_provenance),
    service: ApprovalInboxService = Depends(get_inbox_service),
) -> ApprovalRequestRow:
    try:
        return await service.reject(
            approval_type,
            entity_id,
            approver_id=caller.employee_id,
            organization_id=caller.organization_id,
            reason=request.reason,
            provenance=provenance,
        )
    except ApprovalCenterError as exc:
        raise _http_error(exc) from exc
