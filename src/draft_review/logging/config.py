"""Stdout logging configuration.

One handler on the root logger, emitting either newline-delimited JSON or a
plain line with the bound context appended as ``key=value`` pairs.
"""

from __future__ import annotations

import json
import logging
import sys
from datetime import UTC, datetime
from typing import TYPE_CHECKING, Any

from . import fields
from .context import bind_context, get_context

if TYPE_CHECKING:
    from draft_review.config import LoggingSettings


class ContextFilter(logging.Filter):
    """Inject the current logging context into each log record."""

    def filter(self, record: logging.LogRecord) -> bool:
        context = get_context()
        setattr(record, "context", context)
        for key, value in context.items():
            setattr(record, key, value)
        return True


class JsonFormatter(logging.Formatter):
    """Emit newline-delimited JSON logs with stable core fields."""

    def format(self, record: logging.LogRecord) -> str:
        payload: dict[str, Any] = {
            fields.TIMESTAMP: datetime.now(UTC).isoformat(),
            fields.LEVEL: record.levelname,
            fields.LOGGER: record.name,
            fields.MESSAGE: record.getMessage(),
        }

        context = getattr(record, "context", None)
        if isinstance(context, dict):
            payload.update(context)

        if record.exc_info:
            payload[fields.EXCEPTION] = self.formatException(record.exc_info)

        return json.dumps(payload, default=str, separators=(",", ":"))


class PlainFormatter(logging.Formatter):
    """Human-readable formatter that still appends structured context."""

    def __init__(self) -> None:
        super().__init__(
            fmt="%(asctime)s %(levelname)s %(name)s %(message)s",
            datefmt="%Y-%m-%dT%H:%M:%S%z",
        )

    def format(self, record: logging.LogRecord) -> str:
        message = super().format(record)
        context = getattr(record, "context", None)
        if not isinstance(context, dict) or not context:
            return message
        suffix = " ".join(f"{key}={value}" for key, value in sorted(context.items()))
        return f"{message} {suffix}"


def configure_logging(settings: LoggingSettings | None = None) -> None:
    """Configure root logging with a single stdout handler.

    Existing root handlers are replaced, so calling this more than once does
    not duplicate output.
    """
    if settings is None:
        from draft_review.config import LoggingSettings

        settings = LoggingSettings()

    level = settings.level.upper()
    root = logging.getLogger()
    root.handlers.clear()
    root.setLevel(level)

    handler = logging.StreamHandler(stream=sys.stdout)
    handler.setLevel(level)
    handler.addFilter(ContextFilter())
    handler.setFormatter(JsonFormatter() if settings.json_output else PlainFormatter())
    root.addHandler(handler)

    bind_context(
        **{
            fields.SERVICE: settings.service or None,
            fields.ENVIRONMENT: settings.environment or None,
        }
    )
