"""Enumerated types for the leaddesk persistence layer.

All enums inherit from :class:`enum.StrEnum` so their ``.value`` is a
plain string that psycopg serialises as TEXT and JSON round-trips
naturally.
"""

from __future__ import annotations

from enum import StrEnum

# ---------------------------------------------------------------------------
# Admin roles
# ---------------------------------------------------------------------------


class AdminRole(StrEnum):
    SUPER_ADMIN = "SuperAdmin"
    ADMIN = "Admin"
    VIEW_MODE = "ViewMode"
    EDIT_MODE = "EditMode"


# Roles that are never narrowed by lead-editing restriction.
PRIVILEGED_ROLES: frozenset[AdminRole] = frozenset(
    {AdminRole.SUPER_ADMIN, AdminRole.ADMIN},
)


# ---------------------------------------------------------------------------
# Lead
# ---------------------------------------------------------------------------


class LeadStatus(StrEnum):
    NEW = "New"
    CONTACTED = "Contacted"
    CONVERTED = "Converted"
    REJECTED = "Rejected"


# ---------------------------------------------------------------------------
# Permission grid
# ---------------------------------------------------------------------------


class Resource(StrEnum):
    USERS = "users"
    LEADS = "leads"
    ADMINS = "admins"
    ANALYTICS = "analytics"
    AUDIT_LOGS = "auditLogs"
    # Route-level resources with no column in the grid
    PERMISSIONS = "permissions"
    SETTINGS = "settings"
    ACTIVITY_LOGS = "activityLogs"
    LOGIN_HISTORY = "loginHistory"


class Action(StrEnum):
    CREATE = "create"
    READ = "read"
    UPDATE = "update"
    DELETE = "delete"
    VIEW = "view"


# Shape of a stored permission grid: resource -> allowed action keys.
GRID_SHAPE: dict[Resource, tuple[Action, ...]] = {
    Resource.USERS: (Action.CREATE, Action.READ, Action.UPDATE, Action.DELETE),
    Resource.LEADS: (Action.CREATE, Action.READ, Action.UPDATE, Action.DELETE),
    Resource.ADMINS: (Action.CREATE, Action.READ, Action.UPDATE, Action.DELETE),
    Resource.ANALYTICS: (Action.VIEW,),
    Resource.AUDIT_LOGS: (Action.VIEW,),
}


# ---------------------------------------------------------------------------
# Settings
# ---------------------------------------------------------------------------


class SettingKey(StrEnum):
    RESTRICT_LEAD_EDITING = "restrictLeadEditing"


# ---------------------------------------------------------------------------
# Audit
# ---------------------------------------------------------------------------


class AuditTarget(StrEnum):
    LEAD = "Lead"
    ADMIN = "Admin"
    PERMISSION = "RolePermission"
    SETTING = "Setting"
