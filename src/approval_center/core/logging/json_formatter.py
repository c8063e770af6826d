from __future__ import annotations

import json
import logging
import traceback
from datetime import datetime, timezone

from .context import get_log_context


def _timestamp(record: logging.LogRecord) -> str:
    return datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat().replace("+00:00", "Z")


def _exception_fields(exc_info) -> dict[str, str]:  # type: ignore[no-untyped-def]
    exc_type, exc_value, exc_tb = exc_info
    return {
        "exc_type": exc_type.__name__ if exc_type else "Exception",
        "exc_msg": str(exc_value) if exc_value else "",
        "stack": "".join(traceback.format_exception(exc_type, exc_value, exc_tb)),
    }


class JSONFormatter(logging.Formatter):
    """One JSON object per line: timestamp, level, logger, message, bound context, extra fields."""

    def format(self, record: logging.LogRecord) -> str:
        payload: dict[str, object] = {
            "ts_iso_utc": _timestamp(record),
            "level": record.levelname,
            "logger": record.name,
            "msg": record.getMessage(),
            **get_log_context(),
        }
        extra_fields = getattr(record, "extra_fields", None)
        if isinstance(extra_fields, dict):
            payload.update(extra_fields)
        if record.exc_info:
            payload.update(_exception_fields(record.exc_info))
        return json.dumps(payload, separators=(",", ":"), ensure_ascii=False, default=str)
