"""Admin API data access layer."""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

from psycopg.types.json import Jsonb
from pypgkit import BaseRepository, Database

from leaddesk.admin.models import (
    ActivityLogEntry,
    AdminUser,
    AuditLogEntry,
    LoginHistoryEntry,
    RolePermission,
    Setting,
)
from leaddesk.core.types import AdminRole

if TYPE_CHECKING:
    from collections.abc import Callable
    from uuid import UUID

# Columns an admin update may touch
_ADMIN_UPDATABLE = frozenset({"email", "role", "active", "password_hash"})


def _find_log_page(  # noqa: PLR0913
    table: str,
    to_entity: Callable[[dict], Any],
    filters: dict[str, Any],
    filter_columns: frozenset[str],
    cursor: UUID | None,
    limit: int,
) -> list:
    """Keyset page over an append-only log table, newest first.

    Recognised *filters*: ``since`` / ``until`` (bounds on
    ``created_at``) plus any equality column named in *filter_columns*.
    """
    db = Database.get_instance()
    conditions: list[str] = []
    params: list[Any] = []

    if filters.get("since") is not None:
        conditions.append("created_at >= %s")
        params.append(filters["since"])
    if filters.get("until") is not None:
        conditions.append("created_at <= %s")
        params.append(filters["until"])
    for column in sorted(filter_columns):
        if filters.get(column) is not None:
            conditions.append(f"{column} = %s")
            params.append(filters[column])

    if cursor is not None:
        conditions.append(
            f"(created_at, id) < (SELECT created_at, id FROM {table} WHERE id = %s)",  # noqa: S608
        )
        params.append(cursor)

    where = " AND ".join(conditions) if conditions else "TRUE"
    query = (
        f"SELECT * FROM {table} WHERE {where} "  # noqa: S608
        "ORDER BY created_at DESC, id DESC LIMIT %s"
    )
    params.append(limit)

    rows = db.fetch_all(query, tuple(params), as_dict=True)
    return [to_entity(r) for r in rows]


class AdminUserRepository(BaseRepository[AdminUser]):
    table_name = "admin.users"
    primary_key = "id"

    def _row_to_entity(self, row: dict) -> AdminUser:
        return AdminUser(
            id=row["id"],
            username=row["username"],
            email=row.get("email"),
            password_hash=row["password_hash"],
            role=AdminRole(row["role"]),
            active=row["active"],
            created_by=row.get("created_by"),
            created_at=row["created_at"],
            updated_at=row["updated_at"],
            last_login_at=row.get("last_login_at"),
        )

    def _entity_to_row(self, entity: AdminUser) -> dict:
        row: dict = {
            "id": entity.id,
            "username": entity.username,
            "email": entity.email,
            "password_hash": entity.password_hash,
            "role": entity.role.value,
            "active": entity.active,
        }
        if entity.created_by is not None:
            row["created_by"] = entity.created_by
        return row

    def find_by_username(self, username: str) -> AdminUser | None:
        """Find an account by exact username, active or not."""
        return self.find_one_by({"username": username})

    def find_by_email(self, email: str) -> AdminUser | None:
        """Find an account by case-insensitive email, active or not."""
        db = Database.get_instance()
        row = db.fetch_one(
            "SELECT * FROM admin.users WHERE lower(email) = lower(%s)",
            (email,),
            as_dict=True,
        )
        return self._row_to_entity(row) if row else None

    def find_active_by_username(self, username: str) -> AdminUser | None:
        return self.find_one_by({"username": username, "active": True})

    def find_active_by_email(self, email: str) -> AdminUser | None:
        db = Database.get_instance()
        row = db.fetch_one(
            "SELECT * FROM admin.users WHERE lower(email) = lower(%s) AND active = true",
            (email,),
            as_dict=True,
        )
        return self._row_to_entity(row) if row else None

    def find_all_ordered(self) -> list[AdminUser]:
        db = Database.get_instance()
        rows = db.fetch_all(
            "SELECT * FROM admin.users ORDER BY created_at DESC",
            as_dict=True,
        )
        return [self._row_to_entity(r) for r in rows]

    def update_fields(self, user_id: UUID, fields: dict[str, Any]) -> AdminUser | None:
        """Set the given columns and return the updated account.

        Only ``email``, ``role``, ``active`` and ``password_hash`` may be
        changed; any other key raises ``ValueError``.
        """
        unknown = set(fields) - _ADMIN_UPDATABLE
        if unknown:
            msg = f"Cannot update admin columns: {sorted(unknown)}"
            raise ValueError(msg)
        if not fields:
            return self.find_by_id(user_id)

        columns = sorted(fields)
        assignments = ", ".join(f"{c} = %s" for c in columns)
        values = [
            fields[c].value if isinstance(fields[c], AdminRole) else fields[c] for c in columns
        ]
        db = Database.get_instance()
        row = db.fetch_one(
            f"UPDATE admin.users SET {assignments}, updated_at = now() "  # noqa: S608
            "WHERE id = %s RETURNING *",
            (*values, user_id),
            as_dict=True,
        )
        return self._row_to_entity(row) if row else None

    def update_last_login(self, user_id: UUID) -> None:
        db = Database.get_instance()
        db.execute(
            "UPDATE admin.users SET last_login_at = now() WHERE id = %s",
            (user_id,),
        )

    def count_all(self) -> int:
        db = Database.get_instance()
        return db.fetch_value("SELECT count(*) FROM admin.users")


class RolePermissionRepository(BaseRepository[RolePermission]):
    table_name = "admin.role_permissions"
    primary_key = "role"

    def _row_to_entity(self, row: dict) -> RolePermission:
        return RolePermission(
            role=AdminRole(row["role"]),
            grid=row["grid"],
            updated_by=row.get("updated_by"),
            created_at=row["created_at"],
            updated_at=row["updated_at"],
        )

    def _entity_to_row(self, entity: RolePermission) -> dict:
        row: dict = {
            "role": entity.role.value,
            "grid": Jsonb(entity.grid),
        }
        if entity.updated_by is not None:
            row["updated_by"] = entity.updated_by
        return row

    def find_by_role(self, role: AdminRole) -> RolePermission | None:
        return self.find_one_by({"role": role.value})

    def find_all_ordered(self) -> list[RolePermission]:
        db = Database.get_instance()
        rows = db.fetch_all(
            "SELECT * FROM admin.role_permissions ORDER BY role",
            as_dict=True,
        )
        return [self._row_to_entity(r) for r in rows]

    def count_all(self) -> int:
        db = Database.get_instance()
        return db.fetch_value("SELECT count(*) FROM admin.role_permissions")

    def insert_if_absent(self, grants: dict[AdminRole, dict]) -> int:
        """Insert one row per role, skipping roles that already have one.

        Returns the number of rows actually inserted.
        """
        db = Database.get_instance()
        inserted = 0
        with db.transaction() as conn, conn.cursor() as cur:
            for role, grid in grants.items():
                cur.execute(
                    "INSERT INTO admin.role_permissions (role, grid) "
                    "VALUES (%s, %s) ON CONFLICT (role) DO NOTHING",
                    (role.value, Jsonb(grid)),
                )
                inserted += cur.rowcount
        return inserted

    def replace_grid(
        self,
        role: AdminRole,
        grid: dict,
        updated_by: UUID | None,
    ) -> RolePermission | None:
        db = Database.get_instance()
        row = db.fetch_one(
            "UPDATE admin.role_permissions "
            "SET grid = %s, updated_by = %s, updated_at = now() "
            "WHERE role = %s RETURNING *",
            (Jsonb(grid), updated_by, role.value),
            as_dict=True,
        )
        return self._row_to_entity(row) if row else None


class SettingRepository(BaseRepository[Setting]):
    table_name = "admin.settings"
    primary_key = "key"

    def _row_to_entity(self, row: dict) -> Setting:
        return Setting(
            key=row["key"],
            value=row["value"],
            updated_by=row.get("updated_by"),
            updated_at=row["updated_at"],
        )

    def _entity_to_row(self, entity: Setting) -> dict:
        row: dict = {"key": entity.key, "value": Jsonb(entity.value)}
        if entity.updated_by is not None:
            row["updated_by"] = entity.updated_by
        return row

    def find_by_key(self, key: str) -> Setting | None:
        return self.find_one_by({"key": key})

    def find_all_ordered(self) -> list[Setting]:
        db = Database.get_instance()
        rows = db.fetch_all("SELECT * FROM admin.settings ORDER BY key", as_dict=True)
        return [self._row_to_entity(r) for r in rows]

    def upsert(self, key: str, value: Any, updated_by: UUID | None) -> Setting:  # noqa: ANN401
        """Insert or replace the value stored under *key*."""
        db = Database.get_instance()
        row = db.fetch_one(
            "INSERT INTO admin.settings (key, value, updated_by) "
            "VALUES (%s, %s, %s) "
            "ON CONFLICT (key) DO UPDATE "
            "SET value = EXCLUDED.value, "
            "    updated_by = EXCLUDED.updated_by, "
            "    updated_at = now() "
            "RETURNING *",
            (key, Jsonb(value), updated_by),
            as_dict=True,
        )
        return self._row_to_entity(row)


class AuditLogRepository(BaseRepository[AuditLogEntry]):
    table_name = "admin.audit_log"
    primary_key = "id"

    _FILTER_COLUMNS = frozenset({"admin_id", "action", "target_type", "target_id"})

    def _row_to_entity(self, row: dict) -> AuditLogEntry:
        return AuditLogEntry(
            id=row["id"],
            admin_id=row.get("admin_id"),
            action=row["action"],
            target_type=row["target_type"],
            target_id=row.get("target_id"),
            metadata=row.get("metadata") or {},
            ip_address=row.get("ip_address"),
            created_at=row["created_at"],
        )

    def _entity_to_row(self, entity: AuditLogEntry) -> dict:
        row: dict = {
            "id": entity.id,
            "action": entity.action,
            "target_type": entity.target_type,
            "metadata": Jsonb(entity.metadata),
        }
        if entity.admin_id is not None:
            row["admin_id"] = entity.admin_id
        if entity.target_id is not None:
            row["target_id"] = entity.target_id
        if entity.ip_address is not None:
            row["ip_address"] = entity.ip_address
        return row

    def find_page(
        self,
        filters: dict[str, Any],
        cursor: UUID | None,
        limit: int,
    ) -> list[AuditLogEntry]:
        return _find_log_page(
            self.table_name,
            self._row_to_entity,
            filters,
            self._FILTER_COLUMNS,
            cursor,
            limit,
        )


class ActivityLogRepository(BaseRepository[ActivityLogEntry]):
    table_name = "admin.activity_log"
    primary_key = "id"

    _FILTER_COLUMNS = frozenset({"admin_id", "action", "page"})

    def _row_to_entity(self, row: dict) -> ActivityLogEntry:
        return ActivityLogEntry(
            id=row["id"],
            admin_id=row.get("admin_id"),
            action=row["action"],
            page=row.get("page"),
            details=row.get("details"),
            created_at=row["created_at"],
        )

    def _entity_to_row(self, entity: ActivityLogEntry) -> dict:
        row: dict = {"id": entity.id, "action": entity.action}
        if entity.admin_id is not None:
            row["admin_id"] = entity.admin_id
        if entity.page is not None:
            row["page"] = entity.page
        if entity.details is not None:
            row["details"] = entity.details
        return row

    def find_page(
        self,
        filters: dict[str, Any],
        cursor: UUID | None,
        limit: int,
    ) -> list[ActivityLogEntry]:
        return _find_log_page(
            self.table_name,
            self._row_to_entity,
            filters,
            self._FILTER_COLUMNS,
            cursor,
            limit,
        )


class LoginHistoryRepository(BaseRepository[LoginHistoryEntry]):
    table_name = "admin.login_history"
    primary_key = "id"

    _FILTER_COLUMNS = frozenset({"admin_id", "success"})

    def _row_to_entity(self, row: dict) -> LoginHistoryEntry:
        return LoginHistoryEntry(
            id=row["id"],
            admin_id=row.get("admin_id"),
            identifier=row.get("identifier"),
            ip_address=row.get("ip_address"),
            user_agent=row.get("user_agent"),
            success=row["success"],
            created_at=row["created_at"],
        )

    def _entity_to_row(self, entity: LoginHistoryEntry) -> dict:
        row: dict = {"id": entity.id, "success": entity.success}
        if entity.admin_id is not None:
            row["admin_id"] = entity.admin_id
        if entity.identifier is not None:
            row["identifier"] = entity.identifier
        if entity.ip_address is not None:
            row["ip_address"] = entity.ip_address
        if entity.user_agent is not None:
            row["user_agent"] = entity.user_agent
        return row

    def find_page(
        self,
        filters: dict[str, Any],
        cursor: UUID | None,
        limit: int,
    ) -> list[LoginHistoryEntry]:
        return _find_log_page(
            self.table_name,
            self._row_to_entity,
            filters,
            self._FILTER_COLUMNS,
            cursor,
            limit,
        )
