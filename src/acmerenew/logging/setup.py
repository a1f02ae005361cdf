"""Structured logging configuration for acmerenew.

Provides JSON and text formatters, a run-context filter that injects
the service name and a per-run id into every log record, and a
one-call ``configure_logging`` function driven by config settings.
"""

from __future__ import annotations

import contextlib
import contextvars
import json
import logging
import sys
import uuid
from datetime import UTC, datetime
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from collections.abc import Iterator

    from acmerenew.config.settings import LoggingSettings

# Attributes that are part of the standard LogRecord; everything
# else is considered "extra" and gets included in structured output.
_STANDARD_ATTRS = frozenset(
    {
        "args",
        "created",
        "exc_info",
        "exc_text",
        "filename",
        "funcName",
        "levelname",
        "levelno",
        "lineno",
        "message",
        "module",
        "msecs",
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
        # Our own well-known context attributes (handled explicitly):
        "service",
        "run_id",
    }
)

_run_service: contextvars.ContextVar[str] = contextvars.ContextVar(
    "acmerenew_service",
    default="-",
)
_run_id: contextvars.ContextVar[str] = contextvars.ContextVar(
    "acmerenew_run_id",
    default="-",
)


@contextlib.contextmanager
def run_context(service: str, run_id: str | None = None) -> Iterator[str]:
    """Tag every log record emitted inside the block with *service*.

    Yields the run id (generated when not supplied).
    """
    rid = run_id or uuid.uuid4().hex[:12]
    service_token = _run_service.set(service)
    run_token = _run_id.set(rid)
    try:
        yield rid
    finally:
        _run_service.reset(service_token)
        _run_id.reset(run_token)


# ---------------------------------------------------------------------------
# Formatters
# ---------------------------------------------------------------------------


class StructuredFormatter(logging.Formatter):
    """JSON-lines formatter for production logging.

    Every record becomes a single JSON object on one line containing
    the standard fields plus any *extra* attributes passed by the
    caller or injected by filters.
    """

    def format(self, record: logging.LogRecord) -> str:
        record.message = record.getMessage()

        data: dict = {
            "timestamp": datetime.fromtimestamp(
                record.created,
                tz=UTC,
            ).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.message,
        }

        # Run context (set by RunContextFilter)
        service = getattr(record, "service", None)
        if service is not None and service != "-":
            data["service"] = service

        run_id = getattr(record, "run_id", None)
        if run_id is not None and run_id != "-":
            data["run_id"] = run_id

        # Caller-supplied extra fields
        for key, value in record.__dict__.items():
            if key not in _STANDARD_ATTRS and not key.startswith("_"):
                data.setdefault(key, value)

        if record.exc_info and record.exc_info[0] is not None:
            data["exception"] = self.formatException(record.exc_info)

        if record.stack_info:
            data["stack_info"] = self.formatStack(record.stack_info)

        return json.dumps(data, default=str)


class TextFormatter(logging.Formatter):
    """Human-readable formatter for console use."""

    _FMT = "%(asctime)s %(levelname)-8s [%(service)s %(run_id)s] %(name)s: %(message)s"

    def __init__(self) -> None:
        super().__init__(fmt=self._FMT, datefmt="%Y-%m-%d %H:%M:%S")


# ---------------------------------------------------------------------------
# Filter
# ---------------------------------------------------------------------------


class RunContextFilter(logging.Filter):
    """Inject the current run's service name and id into every record.

    Falls back to ``"-"`` outside :func:`run_context` so formatters
    always have the attributes.
    """

    CONTEXT_ATTRS = frozenset({"service", "run_id"})

    def filter(self, record: logging.LogRecord) -> bool:  # type: ignore[override]
        if not hasattr(record, "service"):
            record.service = _run_service.get()  # type: ignore[attr-defined]
        if not hasattr(record, "run_id"):
            record.run_id = _run_id.get()  # type: ignore[attr-defined]
        return True


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------


def configure_logging(
    settings: LoggingSettings,
    *,
    level_override: str | None = None,
) -> logging.Logger:
    """Configure the ``acmerenew`` logger hierarchy from settings.

    Replaces any bootstrap handlers with properly formatted output on
    stderr (stdout is reserved for the CLI's JSON result line).

    Returns the root ``acmerenew`` logger.
    """
    level_name = level_override or settings.level
    level = getattr(logging, level_name.upper(), logging.INFO)

    root = logging.getLogger("acmerenew")
    root.setLevel(level)
    root.handlers.clear()
    root.propagate = False

    formatter: logging.Formatter
    formatter = StructuredFormatter() if settings.format == "json" else TextFormatter()

    console = logging.StreamHandler(sys.stderr)
    console.setFormatter(formatter)
    console.addFilter(RunContextFilter())
    root.addHandler(console)

    return root
