"""Admin API domain entities."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from uuid import UUID

    from leaddesk.core.types import AdminRole

_EPOCH = datetime(1970, 1, 1)


@dataclass(frozen=True)
class AdminUser:
    id: UUID
    username: str
    password_hash: str
    role: AdminRole
    active: bool = True
    email: str | None = None
    created_by: UUID | None = None
    created_at: datetime = _EPOCH
    updated_at: datetime = _EPOCH
    last_login_at: datetime | None = None


@dataclass(frozen=True)
class RolePermission:
    """One row of the permission table; *grid* is resource -> action -> bool."""

    role: AdminRole
    grid: dict[str, dict[str, bool]]
    updated_by: UUID | None = None
    created_at: datetime = _EPOCH
    updated_at: datetime = _EPOCH


@dataclass(frozen=True)
class Setting:
    key: str
    value: Any
    updated_by: UUID | None = None
    updated_at: datetime = _EPOCH


@dataclass(frozen=True)
class AuditLogEntry:
    id: UUID
    action: str
    target_type: str
    admin_id: UUID | None = None
    target_id: UUID | None = None
    metadata: dict[str, Any] = field(default_factory=dict)
    ip_address: str | None = None
    created_at: datetime = _EPOCH


@dataclass(frozen=True)
class ActivityLogEntry:
    id: UUID
    action: str
    admin_id: UUID | None = None
    page: str | None = None
    details: str | None = None
    created_at: datetime = _EPOCH


@dataclass(frozen=True)
class LoginHistoryEntry:
    id: UUID
    success: bool
    admin_id: UUID | None = None
    identifier: str | None = None
    ip_address: str | None = None
    user_agent: str | None = None
    created_at: datetime = _EPOCH
