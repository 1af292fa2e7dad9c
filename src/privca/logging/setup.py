"""Logging configuration for the ``privca`` logger hierarchy.

Console output is JSON lines or plain text depending on
``logging.format``.  The ``privca.audit`` logger optionally writes to a
rotating JSON file so audit events can be shipped separately from
operational logs.  Request attributes (id, client address, method,
path) are attached to every record while a Flask request is active.
"""

from __future__ import annotations

import json
import logging
import sys
from datetime import UTC, datetime
from logging.handlers import RotatingFileHandler
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from privca.config.settings import AuditLogSettings, LoggingSettings

# Defaults used outside a request (CRL jobs, CLI scripts, tests).
_CONTEXT_DEFAULTS: dict[str, str | None] = {
    "request_id": "-",
    "client_ip": "-",
    "method": None,
    "path": None,
}

# Whatever a bare LogRecord carries is not an "extra".
_RESERVED_ATTRS = frozenset(
    logging.LogRecord("", logging.INFO, "", 0, "", (), None).__dict__,
) | {"message", "asctime", "taskName", *_CONTEXT_DEFAULTS}

_QUIET_LOGGERS = ("werkzeug", "psycopg.pool")


# ---------------------------------------------------------------------------
# Formatters
# ---------------------------------------------------------------------------


class StructuredFormatter(logging.Formatter):
    """One JSON object per record.

    Request context is included only when it was actually set, and
    caller ``extra`` fields are merged in; values that are not JSON
    types are rendered with ``str()`` (UUIDs, datetimes, enums).
    """

    def format(self, record: logging.LogRecord) -> str:
        record.message = record.getMessage()
        data: dict = {
            "timestamp": datetime.fromtimestamp(record.created, tz=UTC).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.message,
        }
        for attr in _CONTEXT_DEFAULTS:
            value = getattr(record, attr, None)
            if value is not None:
                data[attr] = value
        data.update(
            (key, value)
            for key, value in record.__dict__.items()
            if key not in _RESERVED_ATTRS and not key.startswith("_") and key not in data
        )
        if record.exc_info and record.exc_info[0] is not None:
            data["exception"] = self.formatException(record.exc_info)
        if record.stack_info:
            data["stack_info"] = self.formatStack(record.stack_info)
        return json.dumps(data, default=str)


class TextFormatter(logging.Formatter):
    """Console format for development."""

    def __init__(self) -> None:
        super().__init__(
            fmt="%(asctime)s %(levelname)-8s [%(request_id)s] %(client_ip)s %(name)s: %(message)s",
            datefmt="%Y-%m-%d %H:%M:%S",
        )


# ---------------------------------------------------------------------------
# Filter
# ---------------------------------------------------------------------------


class RequestContextFilter(logging.Filter):
    """Attach request id, client address, method and path to records.

    Values the caller passed through ``extra`` are kept; an active Flask
    request overrides the defaults.
    """

    def filter(self, record: logging.LogRecord) -> bool:  # type: ignore[override]
        for attr, default in _CONTEXT_DEFAULTS.items():
            if not hasattr(record, attr):
                setattr(record, attr, default)

        from flask import g, has_request_context, request  # noqa: PLC0415

        if has_request_context():
            record.request_id = getattr(g, "request_id", record.request_id)  # type: ignore[attr-defined]
            record.client_ip = request.remote_addr or record.client_ip  # type: ignore[attr-defined]
            record.method = request.method  # type: ignore[attr-defined]
            record.path = request.path  # type: ignore[attr-defined]
        return True


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------


def configure_logging(settings: LoggingSettings) -> logging.Logger:
    """Install handlers on ``privca`` and ``privca.audit``.

    Safe to call more than once; existing handlers are replaced.
    Returns the ``privca`` logger.
    """
    root = logging.getLogger("privca")
    root.setLevel(getattr(logging, settings.level.upper(), logging.INFO))
    root.handlers.clear()
    root.propagate = False

    ctx_filter = RequestContextFilter()
    console = logging.StreamHandler(sys.stderr)
    console.setFormatter(StructuredFormatter() if settings.format == "json" else TextFormatter())
    console.addFilter(ctx_filter)
    root.addHandler(console)

    _configure_audit(settings.audit, ctx_filter, root)

    for name in _QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)
    return root


def _configure_audit(
    settings: AuditLogSettings,
    ctx_filter: logging.Filter,
    root: logging.Logger,
) -> None:
    audit = logging.getLogger("privca.audit")
    audit.handlers.clear()
    if not settings.enabled:
        audit.setLevel(logging.CRITICAL + 1)
        return

    audit.setLevel(logging.INFO)
    if not settings.file:
        return
    try:
        handler = RotatingFileHandler(
            settings.file,
            maxBytes=settings.max_file_size_bytes,
            backupCount=settings.backup_count,
        )
    except OSError as exc:
        root.warning("Could not open audit log file %s: %s", settings.file, exc)
        return
    # Always JSON regardless of the console format.
    handler.setFormatter(StructuredFormatter())
    handler.addFilter(ctx_filter)
    audit.addHandler(handler)
