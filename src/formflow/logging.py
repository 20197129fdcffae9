"""Structured logging configuration.

Records are rendered as one JSON object per line. ``workflow_id`` and
``step_id`` passed through ``extra={...}`` are lifted to the top level so that
events of one session can be filtered without unpacking ``extra``.
"""

from __future__ import annotations

import json
import logging
import sys
from collections.abc import Mapping
from datetime import UTC, datetime
from typing import Any, TextIO

# Attributes every LogRecord carries; anything else came in through ``extra``.
_RECORD_ATTRS = frozenset(logging.makeLogRecord({}).__dict__) | {"message", "asctime"}

CORRELATION_KEYS: tuple[str, ...] = ("workflow_id", "step_id")


class JsonFormatter(logging.Formatter):
    """Format records as JSON.

    Args:
        static_fields: Added to every record, e.g. ``{"service": "signup-api"}``.
    """

    def __init__(self, static_fields: Mapping[str, Any] | None = None) -> None:
        super().__init__()
        self.static_fields = dict(static_fields or {})

    def format(self, record: logging.LogRecord) -> str:  # noqa: A003 (record)
        extra = {
            key: value
            for key, value in record.__dict__.items()
            if key not in _RECORD_ATTRS and not key.startswith("_")
        }

        payload: dict[str, Any] = {
            **self.static_fields,
            "timestamp": datetime.fromtimestamp(record.created, tz=UTC).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        for key in CORRELATION_KEYS:
            if key in extra:
                payload[key] = extra.pop(key)
        if extra:
            payload["extra"] = extra

        if record.exc_info:
            payload["exception"] = self.formatException(record.exc_info)
        if record.stack_info:
            payload["stack"] = self.formatStack(record.stack_info)

        # Step data may hold dates or other values json cannot encode.
        return json.dumps(payload, ensure_ascii=False, default=str)


def configure_logging(
    level: str,
    *,
    stream: TextIO | None = None,
    static_fields: Mapping[str, Any] | None = None,
) -> None:
    """Send root logging to ``stream`` (stderr by default) as JSON lines.

    Calling it again replaces the previous handler.
    """

    root = logging.getLogger()
    for handler in list(root.handlers):
        root.removeHandler(handler)

    handler = logging.StreamHandler(stream=stream or sys.stderr)
    handler.setFormatter(JsonFormatter(static_fields))
    root.addHandler(handler)
    root.setLevel(level.upper())

    # Debug-mode event loop chatter is rarely useful next to workflow logs.
    logging.getLogger("asyncio").setLevel(max(root.level, logging.WARNING))
