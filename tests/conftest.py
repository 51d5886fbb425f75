"""Root conftest for the leaddesk test suite."""

from __future__ import annotations

import sys
from dataclasses import replace
from datetime import UTC, datetime, timedelta
from pathlib import Path
from types import SimpleNamespace
from uuid import UUID, uuid4

import pytest
import yaml

# ---------------------------------------------------------------------------
# Make ``src/`` importable without installing the package
# ---------------------------------------------------------------------------
_SRC = str(Path(__file__).resolve().parent.parent / "src")
if _SRC not in sys.path:
    sys.path.insert(0, _SRC)

from leaddesk.admin.models import AdminUser, RolePermission, Setting  # noqa: E402
from leaddesk.admin.password import hash_password  # noqa: E402
from leaddesk.core.types import AdminRole, LeadStatus  # noqa: E402
from leaddesk.models.lead import Lead  # noqa: E402

TOKEN_SECRET = "test-token-secret-0123456789"


# ---------------------------------------------------------------------------
# Minimal config data shared by multiple test modules
# ---------------------------------------------------------------------------


@pytest.fixture()
def minimal_config_data() -> dict:
    """Return a dict containing the minimum required config fields."""
    return {
        "server": {"external_url": "https://leads.example.com"},
        "database": {"database": "leaddesk_test", "user": "testuser"},
        "admin_api": {"token_secret": TOKEN_SECRET},
    }


@pytest.fixture()
def tmp_config_file(tmp_path: Path, minimal_config_data: dict) -> Path:
    """Write *minimal_config_data* to a temp YAML file and return its path."""
    cfg = tmp_path / "config.yaml"
    cfg.write_text(
        yaml.safe_dump(minimal_config_data, default_flow_style=False, sort_keys=False),
        encoding="utf-8",
    )
    return cfg


# ---------------------------------------------------------------------------
# Singleton cleanup -- autouse so every test gets a fresh slate
# ---------------------------------------------------------------------------


@pytest.fixture(autouse=True)
def fresh_config():
    """Reset the LeaddeskConfig singleton before and after every test."""
    from leaddesk.config.leaddesk_config import LeaddeskConfig

    LeaddeskConfig.reset()
    yield
    LeaddeskConfig.reset()


@pytest.fixture(autouse=True)
def fresh_blacklist():
    """Give every test an empty, memory-only token blacklist."""
    from leaddesk.admin.auth import get_token_blacklist

    blacklist = get_token_blacklist()
    blacklist._db = None
    blacklist._revoked.clear()
    yield blacklist
    blacklist._revoked.clear()


@pytest.fixture(autouse=True)
def fresh_logging():
    """Undo ``configure_logging`` so caplog keeps seeing leaddesk records."""
    import logging

    logger = logging.getLogger("leaddesk")
    saved = (logger.level, list(logger.handlers), logger.propagate)
    yield
    logger.setLevel(saved[0])
    logger.handlers[:] = saved[1]
    logger.propagate = saved[2]


# ---------------------------------------------------------------------------
# In-memory repositories
# ---------------------------------------------------------------------------


def _now() -> datetime:
    return datetime.now(UTC)


class InMemoryAdminUserRepo:
    """In-memory stand-in for AdminUserRepository."""

    def __init__(self):
        self.users: dict[UUID, AdminUser] = {}
        self.last_logins: list[UUID] = []

    def create(self, entity: AdminUser) -> AdminUser:
        stamped = replace(entity, created_at=_now(), updated_at=_now())
        self.users[entity.id] = stamped
        return stamped

    def find_by_id(self, id_: UUID) -> AdminUser | None:
        return self.users.get(id_)

    def find_by_username(self, username: str) -> AdminUser | None:
        return next((u for u in self.users.values() if u.username == username), None)

    def find_by_email(self, email: str) -> AdminUser | None:
        lowered = email.lower()
        return next(
            (u for u in self.users.values() if u.email and u.email.lower() == lowered),
            None,
        )

    def find_active_by_username(self, username: str) -> AdminUser | None:
        user = self.find_by_username(username)
        return user if user is not None and user.active else None

    def find_active_by_email(self, email: str) -> AdminUser | None:
        user = self.find_by_email(email)
        return user if user is not None and user.active else None

    def find_all_ordered(self) -> list[AdminUser]:
        return sorted(self.users.values(), key=lambda u: u.created_at)

    def update_fields(self, user_id: UUID, fields: dict) -> AdminUser | None:
        user = self.users.get(user_id)
        if user is None:
            return None
        updated = replace(user, **fields, updated_at=_now())
        self.users[user_id] = updated
        return updated

    def update_last_login(self, user_id: UUID) -> None:
        self.last_logins.append(user_id)
        user = self.users.get(user_id)
        if user is not None:
            self.users[user_id] = replace(user, last_login_at=_now())

    def delete(self, id_: UUID) -> bool:
        return self.users.pop(id_, None) is not None

    def count_all(self) -> int:
        return len(self.users)


class InMemoryGrantRepo:
    """In-memory stand-in for RolePermissionRepository."""

    def __init__(self):
        self.grants: dict[AdminRole, RolePermission] = {}

    def count_all(self) -> int:
        return len(self.grants)

    def insert_if_absent(self, grants: dict) -> int:
        inserted = 0
        for role, grid in grants.items():
            if role not in self.grants:
                self.grants[role] = RolePermission(role=role, grid=grid, updated_at=_now())
                inserted += 1
        return inserted

    def find_by_role(self, role: AdminRole) -> RolePermission | None:
        return self.grants.get(role)

    def find_all_ordered(self) -> list[RolePermission]:
        order = list(AdminRole)
        return sorted(self.grants.values(), key=lambda g: order.index(g.role))

    def replace_grid(self, role: AdminRole, grid: dict, updated_by):
        if role not in self.grants:
            return None
        updated = RolePermission(role=role, grid=grid, updated_by=updated_by, updated_at=_now())
        self.grants[role] = updated
        return updated


class InMemorySettingRepo:
    """In-memory stand-in for SettingRepository."""

    def __init__(self):
        self.settings: dict[str, Setting] = {}
        self.reads = 0

    def find_by_key(self, key: str) -> Setting | None:
        self.reads += 1
        return self.settings.get(key)

    def find_all_ordered(self) -> list[Setting]:
        return [self.settings[k] for k in sorted(self.settings)]

    def upsert(self, key: str, value, updated_by) -> Setting:
        setting = Setting(key=key, value=value, updated_by=updated_by, updated_at=_now())
        self.settings[key] = setting
        return setting


class InMemoryLogRepo:
    """In-memory stand-in for the three append-only log repositories."""

    def __init__(self):
        self.entries: list = []

    def create(self, entity):
        # Strictly increasing timestamps keep newest-first order stable
        stamped = replace(entity, created_at=_now() + timedelta(microseconds=len(self.entries)))
        self.entries.append(stamped)
        return stamped

    def find_page(self, filters: dict, cursor: UUID | None, limit: int) -> list:
        rows = list(reversed(self.entries))
        for key, value in filters.items():
            if key == "since":
                rows = [r for r in rows if r.created_at >= value]
            elif key == "until":
                rows = [r for r in rows if r.created_at <= value]
            else:
                rows = [r for r in rows if getattr(r, key) == value]
        if cursor is not None:
            ids = [r.id for r in rows]
            rows = rows[ids.index(cursor) + 1 :] if cursor in ids else []
        return rows[:limit]


class FailingLogRepo:
    """Log repository whose every write fails."""

    def __init__(self):
        self.attempts = 0

    def create(self, entity):
        self.attempts += 1
        raise RuntimeError("log store unavailable")

    def find_page(self, filters, cursor, limit):
        return []


class InMemoryLeadRepo:
    """In-memory stand-in for LeadRepository."""

    def __init__(self, users: InMemoryAdminUserRepo):
        self.leads: dict[UUID, Lead] = {}
        self._users = users

    def _with_assignee(self, lead: Lead) -> Lead:
        user = self._users.find_by_id(lead.assigned_to) if lead.assigned_to else None
        return replace(lead, assigned_to_username=user.username if user else None)

    def add(self, **kwargs) -> Lead:
        defaults = dict(
            id=uuid4(),
            name="Asha Rao",
            email=f"lead-{len(self.leads)}@example.com",
            contact=f"98000{len(self.leads):05d}",
            country_code="+91",
            status=LeadStatus.NEW,
        )
        defaults.update(kwargs)
        lead = Lead(**defaults, created_at=_now(), updated_at=_now())
        self.leads[lead.id] = lead
        return self._with_assignee(lead)

    def find_with_assignee(self, lead_id: UUID) -> Lead | None:
        lead = self.leads.get(lead_id)
        return self._with_assignee(lead) if lead else None

    def find_many(self, lead_ids: list[UUID]) -> list[Lead]:
        return [self._with_assignee(self.leads[i]) for i in lead_ids if i in self.leads]

    def find_conflict(self, email: str, contact: str, exclude_id=None) -> Lead | None:
        for lead in self.leads.values():
            if lead.id == exclude_id:
                continue
            if lead.email.lower() == email.lower() or lead.contact == contact:
                return lead
        return None

    def search(self, filters, limit: int, offset: int = 0) -> list[Lead]:
        rows = sorted(self.leads.values(), key=lambda lead: lead.created_at, reverse=True)
        if filters.status is not None:
            rows = [r for r in rows if r.status == filters.status]
        if filters.unassigned:
            rows = [r for r in rows if r.assigned_to is None]
        elif filters.assigned_to is not None:
            rows = [r for r in rows if r.assigned_to == filters.assigned_to]
        return [self._with_assignee(r) for r in rows[offset : offset + limit]]

    def count(self, filters) -> int:
        return len(self.search(filters, len(self.leads) + 1))

    def insert(self, lead: Lead) -> Lead:
        stored = replace(lead, created_at=_now(), updated_at=_now())
        self.leads[lead.id] = stored
        return self._with_assignee(stored)

    def update_fields(self, lead_id: UUID, fields: dict) -> Lead | None:
        updated = self.update_many([lead_id], fields)
        return updated[0] if updated else None

    def update_many(self, lead_ids: list[UUID], fields: dict) -> list[Lead]:
        updated = []
        for lead_id in lead_ids:
            lead = self.leads.get(lead_id)
            if lead is None:
                continue
            lead = replace(lead, **fields, updated_at=_now())
            self.leads[lead_id] = lead
            updated.append(self._with_assignee(lead))
        return updated

    def delete_many(self, lead_ids: list[UUID]) -> list[Lead]:
        deleted = []
        for lead_id in lead_ids:
            lead = self.leads.pop(lead_id, None)
            if lead is not None:
                deleted.append(self._with_assignee(lead))
        return deleted


# ---------------------------------------------------------------------------
# Wired service stack
# ---------------------------------------------------------------------------


@pytest.fixture()
def settings():
    from leaddesk.config.settings import build_settings

    return build_settings(
        {
            "server": {"external_url": "https://leads.example.com"},
            "admin_api": {"token_secret": TOKEN_SECRET, "setting_cache_seconds": 0},
        },
    )


@pytest.fixture()
def stack(settings):
    """Real policy, recorder and services over in-memory repositories.

    The recorder writes inline so tests can inspect log entries directly.
    """
    from leaddesk.admin.auth import LoginRateLimiter
    from leaddesk.admin.permissions import PermissionTable
    from leaddesk.admin.policy import PolicyEvaluator
    from leaddesk.admin.recorder import Recorder
    from leaddesk.admin.service import AdminUserService
    from leaddesk.admin.settings_store import SettingStore
    from leaddesk.metrics.collector import MetricsCollector
    from leaddesk.services.analytics import AnalyticsService
    from leaddesk.services.lead import LeadService

    metrics = MetricsCollector()
    users = InMemoryAdminUserRepo()
    grants = InMemoryGrantRepo()
    setting_repo = InMemorySettingRepo()
    audit, activity, logins = InMemoryLogRepo(), InMemoryLogRepo(), InMemoryLogRepo()
    leads = InMemoryLeadRepo(users)

    permission_table = PermissionTable(grants)
    permission_table.seed()
    setting_store = SettingStore(setting_repo, cache_seconds=0)
    policy = PolicyEvaluator(permission_table, setting_store, metrics)
    recorder = Recorder(audit, activity, logins, None, metrics)

    admin_service = AdminUserService(
        users,
        permission_table,
        setting_store,
        recorder,
        settings.admin_api,
        audit,
        activity,
        logins,
        metrics,
    )
    lead_service = LeadService(leads, users, policy, recorder, None, metrics)

    def add_admin(role=AdminRole.ADMIN, *, username=None, password="correct-horse", **kw):
        user = AdminUser(
            id=uuid4(),
            username=username or f"{role.value.lower()}-{len(users.users)}",
            password_hash=hash_password(password),
            role=role,
            **kw,
        )
        return users.create(user)

    return SimpleNamespace(
        settings=settings,
        metrics=metrics,
        admin_users=users,
        role_permissions=grants,
        setting_repo=setting_repo,
        audit_logs=audit,
        activity_logs=activity,
        login_history=logins,
        leads=leads,
        permission_table=permission_table,
        setting_store=setting_store,
        policy=policy,
        recorder=recorder,
        login_limiter=LoginRateLimiter(3, 300, 900),
        admin_service=admin_service,
        lead_service=lead_service,
        analytics=AnalyticsService(leads),
        add_admin=add_admin,
    )


@pytest.fixture()
def client_for(stack):
    """Build a Flask test client over *stack* with every blueprint mounted."""
    from flask import Flask

    from leaddesk.admin.lead_routes import leads_bp
    from leaddesk.admin.routes import admin_bp
    from leaddesk.api.submit import submit_bp
    from leaddesk.app.errors import register_error_handlers

    app = Flask("test")
    app.config["TESTING"] = True
    register_error_handlers(app)
    app.register_blueprint(submit_bp, url_prefix="/api")
    app.register_blueprint(admin_bp, url_prefix="/api/admin")
    app.register_blueprint(leads_bp, url_prefix="/api/admin")
    app.extensions["container"] = stack
    return app.test_client()


@pytest.fixture()
def auth_header(stack):
    """Return a function producing an Authorization header for an admin."""
    from leaddesk.admin.auth import create_token

    def _header(user: AdminUser) -> dict:
        return {"Authorization": f"Bearer {create_token(user, TOKEN_SECRET)}"}

    return _header
