"""Structured security event logger.

Emits standardized security events for SIEM integration.
All events are logged to the ``leaddesk.security`` logger with
a consistent ``event_id`` field for filtering and alerting.

Credentials (passwords, hashes, bearer tokens) are redacted via
:func:`~leaddesk.logging.sanitize.sanitize_for_logs` before emission.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any

from leaddesk.logging.sanitize import sanitize_for_logs

if TYPE_CHECKING:
    from uuid import UUID

security_log = logging.getLogger("leaddesk.security")


def _emit(
    event_id: str,
    message: str,
    *args: Any,  # noqa: ANN401
    admin_id: UUID | None = None,
    severity: str = "INFO",
    **extra: Any,  # noqa: ANN401
) -> None:
    """Emit a structured security event.

    All *extra* keyword arguments are sanitized before logging.
    """
    sanitized_extra = sanitize_for_logs(extra)
    data: dict[str, object] = {
        "event_id": event_id,
        "severity": severity,
    }
    if admin_id is not None:
        data["admin_id"] = str(admin_id)
    data.update(sanitized_extra)
    level = getattr(logging, severity.upper(), logging.INFO)
    security_log.log(level, message, *args, extra=data)


def admin_login_failed(identifier: str, ip_address: str | None) -> None:
    """Log a failed admin login attempt."""
    _emit(
        "leaddesk.security.admin_login_failed",
        "Admin login failed: user=%s, ip=%s",
        identifier,
        ip_address,
        severity="WARNING",
    )


def admin_login_succeeded(username: str, ip_address: str | None) -> None:
    _emit(
        "leaddesk.security.admin_login_succeeded",
        "Admin login succeeded: user=%s, ip=%s",
        username,
        ip_address,
    )


def admin_login_lockout(key: str) -> None:
    """Log a lockout triggered by repeated login failures."""
    _emit(
        "leaddesk.security.admin_login_lockout",
        "Admin login locked out: key=%s",
        key,
        severity="WARNING",
    )


def permission_denied(
    admin_id: UUID,
    role: str,
    resource: str,
    action: str,
    reason: str,
) -> None:
    """Log a policy denial for an authenticated admin."""
    _emit(
        "leaddesk.security.permission_denied",
        "Permission denied: role=%s, %s.%s (%s)",
        role,
        resource,
        action,
        reason,
        admin_id=admin_id,
        severity="WARNING",
    )


def restricted_edit_denied(admin_id: UUID, lead_id: UUID) -> None:
    """Log a lead mutation refused by restricted editing."""
    _emit(
        "leaddesk.security.restricted_edit_denied",
        "Restricted editing: lead %s is not assigned to the caller",
        lead_id,
        admin_id=admin_id,
        lead_id=str(lead_id),
        severity="WARNING",
    )


def permission_grant_changed(admin_id: UUID, role: str, grid: dict) -> None:
    _emit(
        "leaddesk.security.permission_grant_changed",
        "Permission grant replaced for role %s",
        role,
        admin_id=admin_id,
        grid=grid,
        severity="WARNING",
    )


def setting_changed(admin_id: UUID, key: str, value: Any) -> None:  # noqa: ANN401
    _emit(
        "leaddesk.security.setting_changed",
        "Setting changed: %s=%r",
        key,
        value,
        admin_id=admin_id,
        severity="WARNING",
    )


def admin_account_changed(admin_id: UUID, target_id: UUID, action: str) -> None:
    """Log creation, update or deletion of an admin account."""
    _emit(
        "leaddesk.security.admin_account_changed",
        "Admin account %s: %s",
        action,
        target_id,
        admin_id=admin_id,
        target_id=str(target_id),
    )


def log_write_dropped(kind: str, error: str) -> None:
    """Log a side-channel (audit/activity/login) write that was lost."""
    _emit(
        "leaddesk.security.log_write_dropped",
        "Dropped %s log write: %s",
        kind,
        error,
        kind=kind,
        severity="ERROR",
    )
