"""Response serializers for admin API entities."""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from datetime import datetime

    from leaddesk.admin.models import (
        ActivityLogEntry,
        AdminUser,
        AuditLogEntry,
        LoginHistoryEntry,
        RolePermission,
        Setting,
    )
    from leaddesk.models.lead import Lead


def _ts(value: datetime | None) -> str | None:
    return value.isoformat() if value is not None else None


def _id(value: Any) -> str | None:  # noqa: ANN401
    return str(value) if value is not None else None


def serialize_admin_user(user: AdminUser) -> dict:
    """Serialize an admin user (excludes password_hash)."""
    return {
        "id": str(user.id),
        "username": user.username,
        "email": user.email,
        "role": user.role.value,
        "active": user.active,
        "createdBy": _id(user.created_by),
        "createdAt": _ts(user.created_at),
        "updatedAt": _ts(user.updated_at),
        "lastLogin": _ts(user.last_login_at),
    }


def serialize_lead(lead: Lead) -> dict:
    assigned = None
    if lead.assigned_to is not None:
        assigned = {"id": str(lead.assigned_to), "username": lead.assigned_to_username}
    return {
        "id": str(lead.id),
        "name": lead.name,
        "email": lead.email,
        "contact": lead.contact,
        "countryCode": lead.country_code,
        "courseName": lead.course_name,
        "location": lead.location,
        "message": lead.message,
        "status": lead.status.value,
        "notes": lead.notes,
        "contactedScore": lead.contacted_score,
        "assignedTo": assigned,
        "createdAt": _ts(lead.created_at),
        "updatedAt": _ts(lead.updated_at),
    }


def serialize_grant(grant: RolePermission) -> dict:
    return {
        "role": grant.role.value,
        "permissions": grant.grid,
        "updatedBy": _id(grant.updated_by),
        "updatedAt": _ts(grant.updated_at),
    }


def serialize_setting(setting: Setting) -> dict:
    return {
        "key": setting.key,
        "value": setting.value,
        "updatedBy": _id(setting.updated_by),
        "updatedAt": _ts(setting.updated_at),
    }


def serialize_audit_log(entry: AuditLogEntry) -> dict:
    return {
        "id": str(entry.id),
        "adminId": _id(entry.admin_id),
        "action": entry.action,
        "targetType": entry.target_type,
        "targetId": _id(entry.target_id),
        "metadata": entry.metadata,
        "ipAddress": entry.ip_address,
        "createdAt": _ts(entry.created_at),
    }


def serialize_activity_log(entry: ActivityLogEntry) -> dict:
    return {
        "id": str(entry.id),
        "adminId": _id(entry.admin_id),
        "action": entry.action,
        "page": entry.page,
        "details": entry.details,
        "createdAt": _ts(entry.created_at),
    }


def serialize_login_history(entry: LoginHistoryEntry) -> dict:
    return {
        "id": str(entry.id),
        "adminId": _id(entry.admin_id),
        "identifier": entry.identifier,
        "ipAddress": entry.ip_address,
        "userAgent": entry.user_agent,
        "success": entry.success,
        "createdAt": _ts(entry.created_at),
    }
