from __future__ import annotations

import logging

from approval_center.core.approvals.errors import NotFoundError
from approval_center.core.approvals.handler import ApprovalTypeHandler

logger = logging.getLogger("approval_center.registry")


class ApprovalTypeRegistry:
    """Maps approval type tags to their handlers.

    One instance is built at process start and shared by the query, bulk and
    escalation paths. Handlers are registered before the first lookup and are
    never removed, so no locking is done.
    """

    def __init__(self) -> None:
        self._handlers: dict[str, ApprovalTypeHandler] = {}

    def register(self, handler: ApprovalTypeHandler) -> None:
        replaced = handler.type in self._handlers
        self._handlers[handler.type] = handler
        logger.info(
            "approval_type_registered",
            extra={"extra_fields": {"approval_type": handler.type, "replaced": replaced}},
        )

    def get(self, approval_type: str) -> ApprovalTypeHandler:
        handler = self._handlers.get(approval_type)
        if handler is None:
            raise NotFoundError(
                f"No handler registered for approval type: {approval_type}",
                entity_type="approval_type",
                entity_id=approval_type,
            )
        return handler

    def get_all(self) -> list[ApprovalTypeHandler]:
        return list(self._handlers.values())

    def exists(self, approval_type: str) -> bool:
        return approval_type in self._handlers

    def list_types(self) -> list[str]:
        return list(self._handlers.keys())
