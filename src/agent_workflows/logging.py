"""JSON logging for the CLI, the API server and the execution monitor.

Every record is one JSON object per line. Execution and agent ids passed
through `extra=` are lifted to top-level keys so the lines of one run can be
filtered without parsing nested objects; any other extras go under `extra`.
"""

from __future__ import annotations

import json
import logging
import sys
from datetime import UTC, datetime
from typing import IO, Any

_RESERVED_LOG_RECORD_ATTRS: frozenset[str] = frozenset(
    {
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
)

CORRELATION_KEYS: tuple[str, ...] = ("execution_id", "agent_id", "intervention_id")


class JsonFormatter(logging.Formatter):
    """One JSON line per record, correlation ids first."""

    def format(self, record: logging.LogRecord) -> str:  # noqa: A003 (record)
        payload: dict[str, Any] = {
            "timestamp": datetime.fromtimestamp(record.created, tz=UTC).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }

        extra: dict[str, Any] = {}
        for key, value in record.__dict__.items():
            if key in _RESERVED_LOG_RECORD_ATTRS or key.startswith("_"):
                continue
            if key in CORRELATION_KEYS:
                payload[key] = value
            else:
                extra[key] = value
        if extra:
            payload["extra"] = extra

        if record.exc_info:
            payload["exception"] = self.formatException(record.exc_info)

        # Workflow status enums and event timestamps end up in extras.
        return json.dumps(payload, ensure_ascii=False, default=str)


def configure_logging(level: str, *, stream: IO[str] | None = None) -> None:
    """Send all records to `stream` (stdout by default) as JSON at `level`."""

    root = logging.getLogger()

    for handler in list(root.handlers):
        root.removeHandler(handler)

    handler = logging.StreamHandler(stream=stream or sys.stdout)
    handler.setFormatter(JsonFormatter())

    root.addHandler(handler)
    root.setLevel(level.upper())

    # urllib3 logs every connection at DEBUG, including each stream reconnect.
    logging.getLogger("urllib3").setLevel(max(root.level, logging.INFO))
