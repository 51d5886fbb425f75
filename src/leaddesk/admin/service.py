"""Admin API business logic: credentials, accounts, grants, settings and logs."""

from __future__ import annotations

import logging
import re
from typing import TYPE_CHECKING, Any, NoReturn
from uuid import UUID, uuid4

from psycopg.errors import UniqueViolation

from leaddesk.admin.auth import create_token, get_token_blacklist
from leaddesk.admin.models import AdminUser
from leaddesk.admin.pagination import encode_cursor
from leaddesk.admin.password import (
    MIN_PASSWORD_LENGTH,
    burn_verification,
    generate_password,
    hash_password,
    verify_password,
)
from leaddesk.admin.recorder import field_delta
from leaddesk.app.errors import AuthError, ConflictError, NotFoundError, ValidationError
from leaddesk.core.types import AdminRole, AuditTarget
from leaddesk.logging import security_events
from leaddesk.metrics.collector import LOGIN_ATTEMPTS

if TYPE_CHECKING:
    from leaddesk.admin.models import RolePermission, Setting
    from leaddesk.admin.pagination import PageRequest
    from leaddesk.admin.permissions import PermissionTable
    from leaddesk.admin.recorder import Recorder
    from leaddesk.admin.repository import (
        ActivityLogRepository,
        AdminUserRepository,
        AuditLogRepository,
        LoginHistoryRepository,
    )
    from leaddesk.admin.settings_store import SettingStore
    from leaddesk.config.settings import AdminApiSettings
    from leaddesk.metrics.collector import MetricsCollector

log = logging.getLogger(__name__)

INVALID_CREDENTIALS = "Invalid username or password"

_USERNAME_RE = re.compile(r"^[A-Za-z0-9_.-]{3,64}$")
_EMAIL_RE = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")
_MAX_ACTIVITY_ACTION = 100


def parse_role(raw: Any) -> AdminRole:  # noqa: ANN401
    try:
        return AdminRole(raw)
    except ValueError:
        allowed = ", ".join(r.value for r in AdminRole)
        raise ValidationError(f"'role' must be one of: {allowed}") from None


def _parse_email(raw: Any) -> str | None:  # noqa: ANN401
    if raw is None or raw == "":
        return None
    if not isinstance(raw, str) or not _EMAIL_RE.match(raw.strip()):
        raise ValidationError("Invalid email format.")
    return raw.strip()


def _parse_password(raw: Any) -> str:  # noqa: ANN401
    if not isinstance(raw, str) or len(raw) < MIN_PASSWORD_LENGTH:
        raise ValidationError(f"'password' must be at least {MIN_PASSWORD_LENGTH} characters")
    return raw


def _admin_snapshot(user: AdminUser) -> dict[str, Any]:
    return {
        "id": str(user.id),
        "username": user.username,
        "email": user.email,
        "role": user.role.value,
    }


def _flatten_grid(grid: dict[str, dict[str, bool]]) -> dict[str, bool]:
    return {
        f"{resource}.{action}": flag
        for resource, actions in grid.items()
        for action, flag in actions.items()
    }


class AdminUserService:
    """Authentication, admin CRUD, grants, settings and log queries."""

    def __init__(  # noqa: PLR0913
        self,
        user_repo: AdminUserRepository,
        permissions: PermissionTable,
        setting_store: SettingStore,
        recorder: Recorder,
        settings: AdminApiSettings,
        audit_repo: AuditLogRepository,
        activity_repo: ActivityLogRepository,
        login_repo: LoginHistoryRepository,
        metrics: MetricsCollector | None = None,
    ) -> None:
        self._users = user_repo
        self._permissions = permissions
        self._settings_store = setting_store
        self._recorder = recorder
        self._settings = settings
        self._audit = audit_repo
        self._activity = activity_repo
        self._logins = login_repo
        self._metrics = metrics

    # ------------------------------------------------------------------
    # Authentication
    # ------------------------------------------------------------------

    def authenticate(
        self,
        identifier: str,
        password: str,
        *,
        ip_address: str | None = None,
        user_agent: str | None = None,
    ) -> tuple[AdminUser, str]:
        """Verify credentials and return ``(user, token)``.

        The identifier is tried as an exact username, then, if it looks
        like an address, as a case-insensitive email.  Only active
        accounts are eligible.  Every attempt writes one login-history
        entry, and both failure modes raise the same :class:`AuthError`.
        """
        user = self._users.find_active_by_username(identifier)
        if user is None and "@" in identifier:
            user = self._users.find_active_by_email(identifier)

        if user is None:
            burn_verification(password)
            self._reject_login(None, identifier, ip_address, user_agent)
        if not verify_password(password, user.password_hash):
            self._reject_login(user.id, identifier, ip_address, user_agent)

        self._users.update_last_login(user.id)
        token = create_token(user, self._settings.token_secret)

        self._recorder.record_login(
            user.id,
            success=True,
            identifier=identifier,
            ip_address=ip_address,
            user_agent=user_agent,
        )
        self._recorder.record_audit(
            user.id,
            "login",
            AuditTarget.ADMIN.value,
            {"username": user.username},
            target_id=user.id,
            ip_address=ip_address,
        )
        if self._metrics is not None:
            self._metrics.increment(LOGIN_ATTEMPTS, labels={"outcome": "success"})
        security_events.admin_login_succeeded(user.username, ip_address)
        return user, token

    def _reject_login(
        self,
        admin_id: UUID | None,
        identifier: str,
        ip_address: str | None,
        user_agent: str | None,
    ) -> NoReturn:
        self._recorder.record_login(
            admin_id,
            success=False,
            identifier=identifier,
            ip_address=ip_address,
            user_agent=user_agent,
        )
        if self._metrics is not None:
            self._metrics.increment(LOGIN_ATTEMPTS, labels={"outcome": "failure"})
        security_events.admin_login_failed(identifier, ip_address)
        raise AuthError(INVALID_CREDENTIALS)

    def logout(self, actor: AdminUser, token: str, ip_address: str | None = None) -> None:
        """Blacklist *token* until it would have expired anyway."""
        get_token_blacklist().revoke_token(token, self._settings.token_expiry_seconds)
        self._recorder.record_audit(
            actor.id,
            "logout",
            AuditTarget.ADMIN.value,
            {"username": actor.username},
            target_id=actor.id,
            ip_address=ip_address,
        )

    # ------------------------------------------------------------------
    # Admin accounts
    # ------------------------------------------------------------------

    def create_user(
        self,
        actor: AdminUser,
        data: Any,  # noqa: ANN401
        ip_address: str | None = None,
    ) -> tuple[AdminUser, str | None]:
        """Create an admin account.

        Returns ``(user, generated_password)``; the password is ``None``
        when the caller supplied one.
        """
        if not isinstance(data, dict):
            raise ValidationError("Request body must be a JSON object")

        username = data.get("username")
        if not isinstance(username, str) or not _USERNAME_RE.match(username.strip()):
            raise ValidationError(
                "'username' must be 3-64 characters of letters, digits, '.', '_' or '-'",
            )
        username = username.strip()
        email = _parse_email(data.get("email"))
        role = parse_role(data.get("role"))

        generated = None
        if data.get("password") is None:
            generated = generate_password(self._settings.password_length)
            password = generated
        else:
            password = _parse_password(data["password"])

        if self._users.find_by_username(username) is not None:
            raise ConflictError(f"Username '{username}' already exists")
        if email is not None and self._users.find_by_email(email) is not None:
            raise ConflictError(f"Email '{email}' is already in use")

        user = AdminUser(
            id=uuid4(),
            username=username,
            email=email,
            password_hash=hash_password(password),
            role=role,
            active=True,
            created_by=actor.id,
        )
        try:
            self._users.create(user)
        except UniqueViolation:
            raise ConflictError("Username or email already in use") from None
        created = self._users.find_by_id(user.id) or user

        self._recorder.record_audit(
            actor.id,
            "create",
            AuditTarget.ADMIN.value,
            {"admin": _admin_snapshot(created)},
            target_id=created.id,
            ip_address=ip_address,
        )
        security_events.admin_account_changed(actor.id, created.id, "create")
        return created, generated

    def update_user(
        self,
        actor: AdminUser,
        user_id: UUID,
        data: Any,  # noqa: ANN401
        ip_address: str | None = None,
    ) -> AdminUser:
        """Change email, role, active flag and/or password.

        An admin may not deactivate their own account or change their own
        role, so the acting SuperAdmin always remains.
        """
        if not isinstance(data, dict):
            raise ValidationError("Request body must be a JSON object")
        unknown = sorted(set(data) - {"email", "role", "active", "password"})
        if unknown:
            raise ValidationError(f"Unknown field(s): {', '.join(unknown)}")

        user = self.get_user(user_id)
        fields: dict[str, Any] = {}
        if "email" in data:
            email = _parse_email(data["email"])
            if email is not None and email.lower() != (user.email or "").lower():
                other = self._users.find_by_email(email)
                if other is not None and other.id != user.id:
                    raise ConflictError(f"Email '{email}' is already in use")
            fields["email"] = email
        if "role" in data:
            role = parse_role(data["role"])
            if role != user.role and user.id == actor.id:
                raise ValidationError("You cannot change your own role")
            fields["role"] = role
        if "active" in data:
            if not isinstance(data["active"], bool):
                raise ValidationError("'active' must be a boolean")
            if data["active"] is False and user.id == actor.id:
                raise ValidationError("You cannot deactivate your own account")
            fields["active"] = data["active"]
        if "password" in data:
            fields["password_hash"] = hash_password(_parse_password(data["password"]))

        if not fields:
            return user
        try:
            updated = self._users.update_fields(user.id, fields)
        except UniqueViolation:
            raise ConflictError("Email already in use") from None
        if updated is None:
            raise NotFoundError("Admin not found")

        compared = [f for f in ("email", "role", "active") if f in fields]
        metadata: dict[str, Any] = {
            "admin": _admin_snapshot(user),
            "updateFields": field_delta(
                {f: getattr(user, f) for f in compared},
                {f: getattr(updated, f) for f in compared},
            ),
        }
        if "password_hash" in fields:
            metadata["passwordChanged"] = True
        self._recorder.record_audit(
            actor.id,
            "update",
            AuditTarget.ADMIN.value,
            metadata,
            target_id=user.id,
            ip_address=ip_address,
        )
        security_events.admin_account_changed(actor.id, user.id, "update")
        return updated

    def delete_user(
        self,
        actor: AdminUser,
        user_id: UUID,
        ip_address: str | None = None,
    ) -> None:
        """Delete an admin; leads assigned to them become unassigned."""
        if user_id == actor.id:
            raise ValidationError("You cannot delete your own account")
        user = self.get_user(user_id)
        self._users.delete(user.id)
        self._recorder.record_audit(
            actor.id,
            "delete",
            AuditTarget.ADMIN.value,
            {"admin": _admin_snapshot(user)},
            target_id=user.id,
            ip_address=ip_address,
        )
        security_events.admin_account_changed(actor.id, user.id, "delete")

    def get_user(self, user_id: UUID) -> AdminUser:
        user = self._users.find_by_id(user_id)
        if user is None:
            raise NotFoundError("Admin not found")
        return user

    def list_users(self) -> list[AdminUser]:
        return self._users.find_all_ordered()

    def bootstrap_admin(self) -> tuple[str, str] | None:
        """Create the initial SuperAdmin if no admin exists.

        Returns ``(username, plain_password)`` when an account was
        created, ``None`` otherwise.
        """
        if self._users.count_all() > 0:
            return None

        plain_password = generate_password(self._settings.password_length)
        user = AdminUser(
            id=uuid4(),
            username=self._settings.initial_admin_username,
            email=self._settings.initial_admin_email or None,
            password_hash=hash_password(plain_password),
            role=AdminRole.SUPER_ADMIN,
            active=True,
        )
        self._users.create(user)
        self._recorder.record_audit(
            None,
            "bootstrap_admin",
            AuditTarget.ADMIN.value,
            {"admin": _admin_snapshot(user)},
            target_id=user.id,
        )
        log.info("Created initial SuperAdmin '%s'", user.username)
        return user.username, plain_password

    # ------------------------------------------------------------------
    # Permission grants
    # ------------------------------------------------------------------

    def list_grants(self) -> list[RolePermission]:
        return self._permissions.list_grants()

    def get_grant(self, role: str) -> RolePermission:
        return self._permissions.get_grant(_role_from_path(role))

    def update_grant(
        self,
        actor: AdminUser,
        role: str,
        raw_grid: Any,  # noqa: ANN401
        ip_address: str | None = None,
    ) -> RolePermission:
        before, after = self._permissions.set_grant(_role_from_path(role), raw_grid, actor.id)
        self._recorder.record_audit(
            actor.id,
            "update",
            AuditTarget.PERMISSION.value,
            {
                "role": after.role.value,
                "updateFields": field_delta(
                    _flatten_grid(before.grid),
                    _flatten_grid(after.grid),
                ),
            },
            ip_address=ip_address,
        )
        security_events.permission_grant_changed(actor.id, after.role.value, after.grid)
        return after

    # ------------------------------------------------------------------
    # Settings
    # ------------------------------------------------------------------

    def list_settings(self) -> list[Setting]:
        return self._settings_store.list_all()

    def get_setting(self, key: str) -> Setting:
        return self._settings_store.get(key)

    def update_setting(
        self,
        actor: AdminUser,
        key: str,
        value: Any,  # noqa: ANN401
        ip_address: str | None = None,
    ) -> Setting:
        previous, setting = self._settings_store.update(key, value, actor.id)
        self._recorder.record_audit(
            actor.id,
            "update",
            AuditTarget.SETTING.value,
            {"key": setting.key, "updateFields": {setting.key: {"from": previous, "to": value}}},
            ip_address=ip_address,
        )
        security_events.setting_changed(actor.id, setting.key, value)
        return setting

    # ------------------------------------------------------------------
    # Logs
    # ------------------------------------------------------------------

    def audit_log_page(self, filters: dict[str, Any], page: PageRequest) -> tuple[list, str | None]:
        return _log_page(self._audit, filters, page)

    def activity_log_page(
        self,
        filters: dict[str, Any],
        page: PageRequest,
    ) -> tuple[list, str | None]:
        return _log_page(self._activity, filters, page)

    def login_history_page(
        self,
        filters: dict[str, Any],
        page: PageRequest,
    ) -> tuple[list, str | None]:
        return _log_page(self._logins, filters, page)

    def record_activity(self, actor: AdminUser, data: Any) -> None:  # noqa: ANN401
        """Record a dashboard page view or UI action for *actor*."""
        if not isinstance(data, dict):
            raise ValidationError("Request body must be a JSON object")
        action = data.get("action")
        if not isinstance(action, str) or not action.strip():
            raise ValidationError("'action' is required")
        if len(action) > _MAX_ACTIVITY_ACTION:
            raise ValidationError(f"'action' must be at most {_MAX_ACTIVITY_ACTION} characters")
        page = data.get("page")
        details = data.get("details")
        for name, value in (("page", page), ("details", details)):
            if value is not None and not isinstance(value, str):
                raise ValidationError(f"'{name}' must be a string")
        self._recorder.record_activity(actor.id, action.strip(), page, details)


def _role_from_path(raw: str) -> AdminRole:
    try:
        return AdminRole(raw)
    except ValueError:
        raise NotFoundError(f"Unknown role '{raw}'") from None


def _log_page(repo: Any, filters: dict[str, Any], page: PageRequest) -> tuple[list, str | None]:  # noqa: ANN401
    """Fetch one page plus a lookahead row; returns ``(entries, next_cursor)``."""
    entries = repo.find_page(filters, page.cursor, page.limit + 1)
    if len(entries) > page.limit:
        entries = entries[: page.limit]
        return entries, encode_cursor(entries[-1].id)
    return entries, None
