"""Structured logging configuration.

Uses standard library logging with a JSON formatter.
"""

from __future__ import annotations

import json
import logging
import sys
from datetime import UTC, datetime
from typing import Any

_RESERVED_LOG_RECORD_ATTRS: set[str] = {
    "args",
    "asctime",
    "created",
    "exc_info",
    "exc_text",
    "filename",
    "funcName",
    "levelname",
    "levelno",
    "lineno",
    "module",
    "msecs",
    "message",
    "msg",
    "name",
    "pathname",
    "process",
    "processName",
    "relativeCreated",
    "stack_info",
    "taskName",
    "thread",
    "threadName",
}


# Run and step identity, emitted as top-level keys.
CONTEXT_FIELDS: tuple[str, ...] = ("workflow_id", "step_id", "kind")


class JsonFormatter(logging.Formatter):
    """Render log records as one JSON object per line.

    ``workflow_id``, ``step_id`` and ``kind`` passed via ``extra=`` become
    top-level keys; every other extra field goes under ``"extra"``.
    """

    def format(self, record: logging.LogRecord) -> str:  # noqa: A003 (record)
        payload: dict[str, Any] = {
            "timestamp": datetime.fromtimestamp(record.created, tz=UTC).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }

        extra = {
            key: value
            for key, value in record.__dict__.items()
            if key not in _RESERVED_LOG_RECORD_ATTRS and not key.startswith("_")
        }
        for key in CONTEXT_FIELDS:
            if key in extra:
                payload[key] = extra.pop(key)
        if extra:
            payload["extra"] = extra

        if record.exc_info:
            payload["exception"] = self.formatException(record.exc_info)

        # Step inputs and data point values are arbitrary; never fail on them.
        return json.dumps(payload, ensure_ascii=False, default=str)


def configure_logging(level: str, *, stream: Any = None) -> None:
    """Configure root logging with structured JSON output.

    Logs go to stderr by default so CLI commands can print JSON results on stdout.
    """

    root = logging.getLogger()

    # Remove any existing handlers to avoid duplicate logs when re-configuring.
    for handler in list(root.handlers):
        root.removeHandler(handler)

    handler = logging.StreamHandler(stream=stream or sys.stderr)
    handler.setFormatter(JsonFormatter())

    root.addHandler(handler)
    root.setLevel(level.upper())

    # asyncio debug chatter is rarely useful next to run logs.
    logging.getLogger("asyncio").setLevel(max(root.level, logging.WARNING))
