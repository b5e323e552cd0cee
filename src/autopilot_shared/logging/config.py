"""Stdout logging setup for autopilot workers and beat.

Celery workers, beat and one-off entry points all log to stdout. JSON lines
are the default; ``json_output=False`` switches to a plain layout for local
runs.
"""

from __future__ import annotations

import json
import logging
import sys
from datetime import datetime, timezone
from typing import IO, Any

from . import fields
from .context import bind_context, get_context

# Third-party loggers that are too chatty at INFO during sweeps.
_QUIET_LOGGERS = ("sqlalchemy.engine", "httpx", "httpcore", "LiteLLM", "celery.beat")


class ContextFilter(logging.Filter):
    """Attach the bound orchestration context to each record."""

    def filter(self, record: logging.LogRecord) -> bool:
        record.context = get_context()
        return True


class JsonFormatter(logging.Formatter):
    """One JSON object per line: core fields, bound context, then exception."""

    def format(self, record: logging.LogRecord) -> str:
        payload: dict[str, Any] = {
            fields.TIMESTAMP: datetime.fromtimestamp(record.created, timezone.utc).isoformat(),
            fields.LEVEL: record.levelname,
            fields.LOGGER: record.name,
            fields.MESSAGE: record.getMessage(),
        }
        payload.update(getattr(record, "context", None) or {})
        if record.exc_info and record.exc_info[0] is not None:
            payload[fields.EXCEPTION_TYPE] = record.exc_info[0].__name__
            payload[fields.EXCEPTION] = self.formatException(record.exc_info)
        return json.dumps(payload, default=str, separators=(",", ":"))


class PlainFormatter(logging.Formatter):
    """Readable single-line layout with context appended as key=value."""

    def __init__(self) -> None:
        super().__init__("%(asctime)s %(levelname)-7s %(name)s %(message)s")

    def format(self, record: logging.LogRecord) -> str:
        line = super().format(record)
        context = getattr(record, "context", None) or {}
        if not context:
            return line
        pairs = " ".join(f"{key}={context[key]}" for key in sorted(context))
        return f"{line} {pairs}"


def configure_logging(
    *,
    level: str = "INFO",
    json_output: bool = True,
    service: str | None = None,
    environment: str | None = None,
    stream: IO[str] | None = None,
) -> None:
    """Install a single stdout handler on the root logger.

    Calling it again replaces the handler rather than stacking a second one.
    The service and environment names are bound into the logging context.
    """
    handler = logging.StreamHandler(stream or sys.stdout)
    handler.addFilter(ContextFilter())
    handler.setFormatter(JsonFormatter() if json_output else PlainFormatter())

    root = logging.getLogger()
    root.handlers = [handler]
    root.setLevel(level.upper())
    for name in _QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)

    bind_context(**{fields.SERVICE: service, fields.ENVIRONMENT: environment})
