"""Structured logging configuration for certbind.

Provides JSON and text formatters, a context filter that injects the
Flask request id and the domain currently being processed into every
log record, and a one-call ``configure_logging`` driven by settings.
"""

from __future__ import annotations

import contextlib
import contextvars
import json
import logging
import sys
from datetime import UTC, datetime
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from collections.abc import Iterator

    from certbind.config.settings import LoggingSettings

_current_domain: contextvars.ContextVar[str | None] = contextvars.ContextVar(
    "certbind_domain",
    default=None,
)

# Attributes that are part of the standard LogRecord; everything
# else is treated as "extra" and included in structured output.
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
        # Context attributes, handled explicitly:
        "request_id",
        "client_ip",
        "domain",
    }
)


@contextlib.contextmanager
def domain_context(domain: str) -> Iterator[None]:
    """Tag every record logged inside the block with *domain*."""
    token = _current_domain.set(domain)
    try:
        yield
    finally:
        _current_domain.reset(token)


def current_domain() -> str | None:
    return _current_domain.get()


# ---------------------------------------------------------------------------
# Formatters
# ---------------------------------------------------------------------------


class StructuredFormatter(logging.Formatter):
    """JSON-lines formatter for production logging.

    Every record becomes one JSON object per line with the standard
    fields, the context attributes, and any *extra* passed by the caller.
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

        for attr in ("request_id", "client_ip", "domain"):
            value = getattr(record, attr, None)
            if value is not None and value != "-":
                data[attr] = value

        for key, value in record.__dict__.items():
            if key not in _STANDARD_ATTRS and not key.startswith("_"):
                data.setdefault(key, value)

        if record.exc_info and record.exc_info[0] is not None:
            data["exception"] = self.formatException(record.exc_info)

        if record.stack_info:
            data["stack_info"] = self.formatStack(record.stack_info)

        return json.dumps(data, default=str)


class TextFormatter(logging.Formatter):
    """Human-readable formatter for development / console use."""

    _FMT = "%(asctime)s %(levelname)-8s [%(request_id)s] %(domain)s %(name)s: %(message)s"

    def __init__(self) -> None:
        super().__init__(fmt=self._FMT, datefmt="%Y-%m-%d %H:%M:%S")


# ---------------------------------------------------------------------------
# Filter
# ---------------------------------------------------------------------------


class ContextFilter(logging.Filter):
    """Inject request and domain context into every log record.

    ``request_id`` and ``client_ip`` come from ``flask.g`` /
    ``flask.request`` when a request context is active; ``domain``
    comes from :func:`domain_context`.  Missing values become ``"-"``.
    """

    CONTEXT_ATTRS = frozenset({"request_id", "client_ip", "domain"})

    def filter(self, record: logging.LogRecord) -> bool:  # type: ignore[override]
        if not hasattr(record, "request_id"):
            record.request_id = "-"  # type: ignore[attr-defined]
        if not hasattr(record, "client_ip"):
            record.client_ip = "-"  # type: ignore[attr-defined]
        if not hasattr(record, "domain"):
            record.domain = current_domain() or "-"  # type: ignore[attr-defined]

        from flask import g, has_request_context, request  # noqa: PLC0415

        if has_request_context():
            record.request_id = getattr(g, "request_id", record.request_id)  # type: ignore[attr-defined]
            record.client_ip = request.remote_addr or record.client_ip  # type: ignore[attr-defined]

        return True


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------


def configure_logging(settings: LoggingSettings) -> logging.Logger:
    """Configure the ``certbind`` logger hierarchy from settings.

    Replaces any bootstrap handlers with properly formatted output and
    sets up the ``certbind.audit`` logger when ``settings.audit.enabled``.

    Returns the root ``certbind`` logger.
    """
    level = getattr(logging, settings.level.upper(), logging.INFO)

    root = logging.getLogger("certbind")
    root.setLevel(level)
    root.handlers.clear()
    root.propagate = False

    formatter: logging.Formatter
    formatter = StructuredFormatter() if settings.format == "json" else TextFormatter()

    ctx_filter = ContextFilter()

    console = logging.StreamHandler(sys.stderr)
    console.setFormatter(formatter)
    console.addFilter(ctx_filter)
    root.addHandler(console)

    access = logging.getLogger("certbind.access")
    access.setLevel(logging.INFO)

    audit = logging.getLogger("certbind.audit")
    audit.handlers.clear()
    if not settings.audit.enabled:
        audit.disabled = True
    else:
        audit.disabled = False
        audit.setLevel(logging.INFO)
        if settings.audit.file:
            from logging.handlers import RotatingFileHandler  # noqa: PLC0415

            try:
                fh = RotatingFileHandler(
                    settings.audit.file,
                    maxBytes=settings.audit.max_file_size_bytes,
                    backupCount=settings.audit.backup_count,
                )
            except OSError as exc:
                root.warning(
                    "Could not open audit log file %s: %s",
                    settings.audit.file,
                    exc,
                )
            else:
                # Audit logs are always structured JSON
                fh.setFormatter(StructuredFormatter())
                fh.addFilter(ctx_filter)
                audit.addHandler(fh)

    for lib in ("werkzeug", "gunicorn", "gunicorn.access", "gunicorn.error"):
        logging.getLogger(lib).setLevel(logging.WARNING)

    return root
