"""Logging configuration for leaddesk.

``configure_logging`` installs one stderr handler on the ``leaddesk``
logger (JSON lines or plain text), attaches the request context to every
record and optionally routes ``leaddesk.audit`` to a rotating JSON file.
"""

from __future__ import annotations

import json
import logging
import sys
from datetime import UTC, datetime
from logging.handlers import RotatingFileHandler
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from leaddesk.config.settings import AuditLogSettings, LoggingSettings

# Request context, in output order
_CONTEXT = ("request_id", "client_ip", "admin_id", "method", "path")

# Everything a bare LogRecord carries; other attributes are caller extras
_RECORD_ATTRS = frozenset(
    vars(logging.LogRecord("", 0, "", 0, "", None, None)),
) | {"message", "asctime", "taskName", *_CONTEXT}

_QUIET_LOGGERS = ("werkzeug", "gunicorn", "gunicorn.access", "gunicorn.error")


class StructuredFormatter(logging.Formatter):
    """One JSON object per record: core fields, request context, extras."""

    def format(self, record: logging.LogRecord) -> str:
        record.message = record.getMessage()
        payload: dict = {
            "timestamp": datetime.fromtimestamp(record.created, tz=UTC).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.message,
        }
        payload.update(
            (attr, getattr(record, attr))
            for attr in _CONTEXT
            if getattr(record, attr, None) is not None
        )
        for key, value in vars(record).items():
            if key not in _RECORD_ATTRS and not key.startswith("_"):
                payload.setdefault(key, value)

        if record.exc_info and record.exc_info[0] is not None:
            payload["exception"] = self.formatException(record.exc_info)
        if record.stack_info:
            payload["stack_info"] = self.formatStack(record.stack_info)
        return json.dumps(payload, default=str)


class TextFormatter(logging.Formatter):
    """Console format for ``logging.format: text``."""

    def __init__(self) -> None:
        super().__init__(
            fmt="%(asctime)s %(levelname)-8s [%(request_id)s] %(client_ip)s %(name)s: %(message)s",
            datefmt="%Y-%m-%d %H:%M:%S",
        )


class RequestContextFilter(logging.Filter):
    """Stamp records with the current request's id, peer, method, path and admin.

    Outside a request ``request_id`` and ``client_ip`` read ``"-"`` so the
    text format never fails on a missing attribute.
    """

    _DEFAULTS = {"request_id": "-", "client_ip": "-", "admin_id": None, "method": None, "path": None}

    def filter(self, record: logging.LogRecord) -> bool:  # type: ignore[override]
        for attr, default in self._DEFAULTS.items():
            if not hasattr(record, attr):
                setattr(record, attr, default)

        from flask import g, has_request_context, request  # noqa: PLC0415

        if not has_request_context():
            return True

        record.request_id = getattr(g, "request_id", record.request_id)  # type: ignore[attr-defined]
        record.client_ip = request.remote_addr or record.client_ip  # type: ignore[attr-defined]
        record.method = request.method  # type: ignore[attr-defined]
        record.path = request.path  # type: ignore[attr-defined]
        admin = getattr(g, "admin_user", None)
        if admin is not None:
            record.admin_id = str(admin.id)  # type: ignore[attr-defined]
        return True


def _configure_audit_file(
    audit: AuditLogSettings,
    ctx_filter: logging.Filter,
    root: logging.Logger,
) -> None:
    logger = logging.getLogger("leaddesk.audit")
    logger.setLevel(logging.INFO)
    logger.handlers.clear()
    if not audit.file:
        return
    try:
        handler = RotatingFileHandler(
            audit.file,
            maxBytes=audit.max_file_size_bytes,
            backupCount=audit.backup_count,
        )
    except OSError as exc:
        root.warning("Could not open audit log file %s: %s", audit.file, exc)
        return
    handler.setFormatter(StructuredFormatter())
    handler.addFilter(ctx_filter)
    logger.addHandler(handler)


def configure_logging(settings: LoggingSettings) -> logging.Logger:
    """Replace bootstrap handlers on ``leaddesk`` and return that logger.

    Safe to call more than once; each call leaves exactly one console
    handler behind.
    """
    root = logging.getLogger("leaddesk")
    root.setLevel(getattr(logging, settings.level.upper(), logging.INFO))
    root.handlers.clear()
    root.propagate = False

    ctx_filter = RequestContextFilter()
    console = logging.StreamHandler(sys.stderr)
    console.setFormatter(StructuredFormatter() if settings.format == "json" else TextFormatter())
    console.addFilter(ctx_filter)
    root.addHandler(console)

    logging.getLogger("leaddesk.access").setLevel(logging.INFO)

    if settings.audit.enabled:
        _configure_audit_file(settings.audit, ctx_filter, root)

    for name in _QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)

    return root
