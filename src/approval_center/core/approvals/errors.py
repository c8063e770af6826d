from __future__ import annotations


class ApprovalCenterError(RuntimeError):
    """Base error for approval center operations."""

    def __init__(self, message: str, entity_type: str | None = None, entity_id: str | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.entity_type = entity_type
        self.entity_id = entity_id


class NotFoundError(ApprovalCenterError):
    """Unregistered type, missing approval request or missing entity."""


class AuthorizationError(ApprovalCenterError):
    def __init__(
        self,
        message: str,
        user_id: str | None = None,
        resource: str | None = None,
        action: str | None = None,
    ) -> None:
        super().__init__(message, entity_type=resource)
        self.user_id = user_id
        self.resource = resource
        self.action = action


class ApprovalValidationError(ApprovalCenterError):
    """Raised for malformed input to the core or to a handler."""
