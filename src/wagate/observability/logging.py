"""Structured JSON logging.

One JSON object per line on stdout, carrying the bound correlation id and,
for records emitted from a session's background tasks, the task name
(session-pump-..., session-relay-...).
"""

import asyncio
import json
import logging
import os
import sys
from datetime import datetime, timezone
from typing import Any

from .correlation import get_correlation_id

SERVICE_NAME = "wagate"


def _current_task_name() -> str | None:
    try:
        task = asyncio.current_task()
    except RuntimeError:
        return None
    return task.get_name() if task is not None else None


class JsonFormatter(logging.Formatter):
    """Formats a record as one JSON line.

    Fields passed as extra={"extra_fields": {...}} are merged at the top
    level; the standard keys below take precedence over them.
    """

    def format(self, record: logging.LogRecord) -> str:
        entry: dict[str, Any] = dict(getattr(record, "extra_fields", None) or {})
        entry.update(
            timestamp=datetime.fromtimestamp(record.created, timezone.utc).isoformat(),
            service=SERVICE_NAME,
            level=record.levelname,
            logger=record.name,
            message=record.getMessage(),
        )

        correlation_id = get_correlation_id()
        if correlation_id:
            entry["correlationId"] = correlation_id

        task_name = _current_task_name()
        if task_name:
            entry["task"] = task_name

        if record.exc_info and record.exc_info[1] is not None:
            entry["error_type"] = type(record.exc_info[1]).__name__
            entry["exception"] = self.formatException(record.exc_info)

        return json.dumps(entry, default=str)


def _level_from_env() -> int:
    level = logging.getLevelName(os.environ.get("LOG_LEVEL", "INFO").upper())
    return level if isinstance(level, int) else logging.INFO


def get_logger(name: str) -> logging.Logger:
    """Logger writing JSON lines to stdout at LOG_LEVEL (default INFO)."""
    logger = logging.getLogger(name)
    if logger.handlers:
        return logger

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(JsonFormatter())
    logger.addHandler(handler)
    logger.setLevel(_level_from_env())
    logger.propagate = False
    return logger
