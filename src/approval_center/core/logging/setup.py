from __future__ import annotations

import logging
import os
import sys
from logging.handlers import RotatingFileHandler
from pathlib import Path

from .json_formatter import JSONFormatter

_LOGGER_NAME = "approval_center"
_MARKER = "_approval_center_json_logging"


def _env(name: str, default: str) -> str:
    return os.getenv(f"APPROVAL_CENTER_{name}", default).strip()


def _level() -> int:
    return getattr(logging, _env("LOG_LEVEL", "INFO").upper(), logging.INFO)


def _attach(logger: logging.Logger, handler: logging.Handler) -> None:
    handler.setFormatter(JSONFormatter())
    setattr(handler, _MARKER, True)
    logger.addHandler(handler)


def _file_handler(state_dir: Path) -> RotatingFileHandler:
    log_dir = Path(os.getenv("APPROVAL_CENTER_LOG_DIR") or (state_dir / "logs"))
    log_dir.mkdir(parents=True, exist_ok=True)
    return RotatingFileHandler(
        filename=log_dir / "approval_center.log",
        maxBytes=int(_env("LOG_MAX_BYTES", "5000000")),
        backupCount=int(_env("LOG_BACKUP_COUNT", "5")),
        encoding="utf-8",
    )


def configure_logging(state_dir: Path) -> logging.Logger:
    """Attach JSON handlers to the package logger; safe to call repeatedly.

    Stdout always gets a handler. A rotating file under ``<state_dir>/logs``
    (or ``APPROVAL_CENTER_LOG_DIR``) is added when ``APPROVAL_CENTER_LOG_TO_FILE=on``.
    """
    logger = logging.getLogger(_LOGGER_NAME)
    logger.setLevel(_level())
    logger.propagate = False

    ours = [handler for handler in logger.handlers if getattr(handler, _MARKER, False)]
    if not any(type(handler) is logging.StreamHandler for handler in ours):
        _attach(logger, logging.StreamHandler(stream=sys.stdout))
    if _env("LOG_TO_FILE", "off").casefold() == "on" and not any(
        isinstance(handler, RotatingFileHandler) for handler in ours
    ):
        _attach(logger, _file_handler(state_dir))

    return logger
