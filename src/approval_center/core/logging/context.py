from __future__ import annotations

from contextlib import contextmanager
from contextvars import ContextVar, Token
from typing import Iterator

CONTEXT_FIELDS = ("correlation_id", "approval_id", "approval_type", "organization_id", "job_id")

_FIELD_VARS: dict[str, ContextVar[str | None]] = {
    field: ContextVar(field, default=None) for field in CONTEXT_FIELDS
}

correlation_id_var = _FIELD_VARS["correlation_id"]

ContextTokens = dict[str, Token[str | None]]


def set_context(**fields: str | None) -> ContextTokens:
    """Bind the given fields; unknown names and ``None`` values are ignored."""
    return {
        field: _FIELD_VARS[field].set(value)
        for field, value in fields.items()
        if field in _FIELD_VARS and value is not None
    }


def reset_context(tokens: ContextTokens) -> None:
    for field, token in tokens.items():
        _FIELD_VARS[field].reset(token)


@contextmanager
def log_context(
    correlation_id: str | None = None,
    approval_id: str | None = None,
    approval_type: str | None = None,
    organization_id: str | None = None,
    job_id: str | None = None,
) -> Iterator[None]:
    """Bind values for the duration of the block; ``None`` leaves the outer value in place."""
    tokens = set_context(
        correlation_id=correlation_id,
        approval_id=approval_id,
        approval_type=approval_type,
        organization_id=organization_id,
        job_id=job_id,
    )
    try:
        yield
    finally:
        reset_context(tokens)


def get_log_context() -> dict[str, str]:
    bound = ((field, var.get()) for field, var in _FIELD_VARS.items())
    return {field: value for field, value in bound if value is not None}
