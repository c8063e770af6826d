from __future__ import annotations

from abc import ABC, abstractmethod
from datetime import datetime
from functools import partial
from typing import Any, Callable, Generic, Mapping, Protocol, TypeVar

from approval_center.core.approvals.errors import ApprovalValidationError, AuthorizationError, NotFoundError
from approval_center.core.approvals.pipeline import ApprovalBatch, build_sla_info, fetch_approval_batch, get_approval_count
from approval_center.core.approvals.schemas import (
    ApprovalDetail,
    ApprovalPriority,
    ApprovalQueryParams,
    ApprovalRequestRow,
    ApprovalStatus,
    ApprovalTimelineEvent,
    DisplayMetadata,
    Requester,
    TimelineActor,
    UnifiedApprovalItem,
    utc_now,
)
from approval_center.core.approvals.sla import SLARule, calculate_sla_deadline
from approval_center.core.approvals.sla_config import OrgSLARuleBook
from approval_center.core.store.base import ApprovalRequestStore

EntityT = TypeVar("EntityT")


class ApprovalTypeHandler(Protocol):
    type: str
    display_name: str
    supports_bulk_approve: bool

    async def get_approvals(self, params: ApprovalQueryParams) -> list[UnifiedApprovalItem]: ...

    async def get_count(self, approver_id: str, organization_id: str) -> int: ...

    async def get_detail(self, entity_id: str, organization_id: str | None = None) -> ApprovalDetail: ...

    async def approve(self, entity_id: str, approver_id: str) -> None: ...

    async def reject(self, entity_id: str, approver_id: str, reason: str) -> None: ...

    def calculate_priority(self, entity: Any, created_at: datetime, now: datetime | None = None) -> ApprovalPriority: ...

    def calculate_sla_deadline(self, entity: Any, created_at: datetime, now: datetime | None = None) -> datetime | None: ...

    def get_display_metadata(self, entity: Any) -> DisplayMetadata: ...


class BaseApprovalHandler(ABC, Generic[EntityT]):
    """Shared plumbing for handlers backed by the approval-request store.

    Subclasses supply the batched entity loader, the item pieces (requester,
    priority, display) and the entity mutations; listing, counting, detail
    and the approve/reject bookkeeping on the request row live here.
    """

    type: str
    display_name: str
    supports_bulk_approve: bool = True
    noun: str = "Request"

    def __init__(
        self,
        request_store: ApprovalRequestStore,
        sla_rules: OrgSLARuleBook | None = None,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self.request_store = request_store
        self.sla_rules = sla_rules or OrgSLARuleBook()
        self.clock = clock

    # -- entity hooks -----------------------------------------------------

    @abstractmethod
    async def load_entities_by_ids(self, entity_ids: list[str]) -> Mapping[str, EntityT]: ...

    @abstractmethod
    def requester_of(self, entity: EntityT) -> Requester: ...

    @abstractmethod
    def organization_of(self, entity: EntityT) -> str: ...

    @abstractmethod
    def describe_request(self, entity: EntityT) -> str:
        """Timeline text for the creation event."""

    @abstractmethod
    async def apply_approval(self, entity: EntityT, approver_id: str) -> None: ...

    @abstractmethod
    async def apply_rejection(self, entity: EntityT, approver_id: str, reason: str) -> None: ...

    @abstractmethod
    def calculate_priority(self, entity: EntityT, created_at: datetime, now: datetime | None = None) -> ApprovalPriority:
        """Urgency as of ``now``, which defaults to the handler clock."""

    @abstractmethod
    def get_display_metadata(self, entity: EntityT) -> DisplayMetadata: ...

    def filter_entity(self, entity: EntityT, params: ApprovalQueryParams) -> bool:
        requester = self.requester_of(entity)
        if params.team_id and requester.team_id != params.team_id:
            return False
        if params.search:
            needle = params.search.casefold()
            if needle not in requester.name.casefold() and needle not in requester.email.casefold():
                return False
        return True

    # -- contract -----------------------------------------------------------

    def org_rules_for(self, entity: EntityT) -> list[SLARule]:
        return self.sla_rules.rules_for(self.organization_of(entity))

    def calculate_sla_deadline(self, entity: EntityT, created_at: datetime, now: datetime | None = None) -> datetime | None:
        priority = self.calculate_priority(entity, created_at, now=now)
        return calculate_sla_deadline(self.type, priority, created_at, self.org_rules_for(entity))

    def transform_to_item(
        self,
        request: ApprovalRequestRow,
        entity: EntityT,
        now: datetime | None = None,
    ) -> UnifiedApprovalItem:
        current = now or self.clock()
        resolved_at = None
        if request.status != "pending":
            resolved_at = request.approved_at or request.updated_at
        return UnifiedApprovalItem(
            id=request.id,
            approval_type=self.type,
            entity_id=request.entity_id,
            type_name=self.display_name,
            requester=self.requester_of(entity),
            approver_id=request.approver_id,
            organization_id=request.organization_id,
            status=request.status,
            created_at=request.created_at,
            resolved_at=resolved_at,
            priority=self.calculate_priority(entity, request.created_at, now=current),
            sla=build_sla_info(self.calculate_sla_deadline(entity, request.created_at, now=current), now=current),
            display=self.get_display_metadata(entity),
        )

    async def get_approvals(self, params: ApprovalQueryParams) -> list[UnifiedApprovalItem]:
        batch = await self.get_approval_batch(params)
        return batch.items

    async def get_approval_batch(self, params: ApprovalQueryParams) -> ApprovalBatch:
        now = self.clock()
        return await fetch_approval_batch(
            entity_type=self.type,
            params=params,
            store=self.request_store,
            load_entities_by_ids=self.load_entities_by_ids,
            transform_to_item=partial(self.transform_to_item, now=now),
            filter_entity=self.filter_entity,
            now=now,
        )

    async def get_count(self, approver_id: str, organization_id: str) -> int:
        return await get_approval_count(self.type, approver_id, organization_id, self.request_store)

    async def get_detail(self, entity_id: str, organization_id: str | None = None) -> ApprovalDetail[EntityT]:
        entity = await self._require_entity(entity_id)
        if organization_id and self.organization_of(entity) != organization_id:
            raise NotFoundError(
                f"{self.display_name} not found in this organization",
                entity_type=self.type,
                entity_id=entity_id,
            )
        request = await self._load_request(entity_id)
        item = self.transform_to_item(request, entity)
        return ApprovalDetail(approval=item, entity=entity, timeline=self._build_timeline(request, item, entity))

    async def approve(self, entity_id: str, approver_id: str) -> None:
        request = await self._require_actionable_request(entity_id, approver_id, "approve")
        entity = await self._require_entity(entity_id)
        await self.apply_approval(entity, approver_id)
        await self._resolve_request(request, "approved")

    async def reject(self, entity_id: str, approver_id: str, reason: str) -> None:
        if not reason or not reason.strip():
            raise ApprovalValidationError("A rejection reason is required", entity_type=self.type, entity_id=entity_id)
        request = await self._require_actionable_request(entity_id, approver_id, "reject")
        entity = await self._require_entity(entity_id)
        await self.apply_rejection(entity, approver_id, reason)
        await self._resolve_request(request, "rejected", rejection_reason=reason)

    # -- helpers ------------------------------------------------------------

    async def _require_entity(self, entity_id: str) -> EntityT:
        found = await self.load_entities_by_ids([entity_id])
        entity = found.get(entity_id)
        if entity is None:
            raise NotFoundError(f"{self.display_name} not found", entity_type=self.type, entity_id=entity_id)
        return entity

    async def _load_request(self, entity_id: str) -> ApprovalRequestRow:
        request = await self.request_store.get_request_for_entity(self.type, entity_id)
        if request is None:
            raise NotFoundError("Approval request not found", entity_type="approval_request", entity_id=entity_id)
        return request

    async def _require_actionable_request(self, entity_id: str, approver_id: str, action: str) -> ApprovalRequestRow:
        request = await self._load_request(entity_id)
        if request.approver_id != approver_id:
            raise AuthorizationError(
                "You do not have permission to perform this approval action",
                user_id=approver_id,
                resource=self.type,
                action=action,
            )
        if request.status != "pending":
            raise ApprovalValidationError(
                f"Approval is already {request.status}",
                entity_type=self.type,
                entity_id=entity_id,
            )
        return request

    async def _resolve_request(
        self,
        request: ApprovalRequestRow,
        status: ApprovalStatus,
        rejection_reason: str | None = None,
    ) -> None:
        await self.request_store.save_request(
            request.model_copy(
                update={"status": status, "approved_at": self.clock(), "rejection_reason": rejection_reason}
            )
        )

    def _build_timeline(
        self,
        request: ApprovalRequestRow,
        item: UnifiedApprovalItem,
        entity: EntityT,
    ) -> list[ApprovalTimelineEvent]:
        timeline = [
            ApprovalTimelineEvent(
                id=f"{request.id}-created",
                type="created",
                performed_by=TimelineActor(name=item.requester.name, image=item.requester.image),
                timestamp=request.created_at,
                message=self.describe_request(entity),
            )
        ]
        if request.status == "approved" and request.approved_at:
            timeline.append(
                ApprovalTimelineEvent(
                    id=f"{request.id}-approved",
                    type="approved",
                    timestamp=request.approved_at,
                    message=f"{self.noun} approved",
                )
            )
        if request.status == "rejected" and request.approved_at:
            message = f"{self.noun} rejected"
            if request.rejection_reason:
                message = f"{message}: {request.rejection_reason}"
            timeline.append(
                ApprovalTimelineEvent(
                    id=f"{request.id}-rejected",
                    type="rejected",
                    timestamp=request.approved_at,
                    message=message,
                )
            )
        return timeline
