"""Dependency injection container for leaddesk.

Created once during application startup and stored on the Flask app
via ``app.extensions["container"]``.  Accessible from any request
context with :func:`get_container`.

Usage::

    from leaddesk.app.context import get_container

    c = get_container()
    lead = c.leads.find_with_assignee(lead_id)
"""

from __future__ import annotations

from typing import TYPE_CHECKING

from flask import current_app

if TYPE_CHECKING:
    from pypgkit import Database

    from leaddesk.admin.auth import LoginRateLimiter
    from leaddesk.admin.permissions import PermissionTable
    from leaddesk.admin.policy import PolicyEvaluator
    from leaddesk.admin.recorder import Recorder
    from leaddesk.admin.repository import (
        ActivityLogRepository,
        AdminUserRepository,
        AuditLogRepository,
        LoginHistoryRepository,
        RolePermissionRepository,
        SettingRepository,
    )
    from leaddesk.admin.service import AdminUserService
    from leaddesk.admin.settings_store import SettingStore
    from leaddesk.config.settings import LeaddeskSettings
    from leaddesk.metrics.collector import MetricsCollector
    from leaddesk.notifications.mailer import LeadNotifier
    from leaddesk.repositories.lead import LeadRepository
    from leaddesk.services.analytics import AnalyticsService
    from leaddesk.services.lead import LeadService


class Container:
    """Application-wide dependency container.

    Holds the :class:`Database` singleton, one instance of each
    repository, and the services built on them.  All repositories share
    the same connection pool.
    """

    def __init__(
        self,
        db: Database,
        settings: LeaddeskSettings,
        metrics: MetricsCollector | None = None,
    ) -> None:
        from leaddesk.admin.auth import LoginRateLimiter as _LRL  # noqa: N814, PLC0415
        from leaddesk.admin.auth import get_token_blacklist  # noqa: PLC0415
        from leaddesk.admin.permissions import PermissionTable as _PT  # noqa: N814, PLC0415
        from leaddesk.admin.policy import PolicyEvaluator as _PE  # noqa: N814, PLC0415
        from leaddesk.admin.recorder import Recorder as _Rec  # noqa: N814, PLC0415
        from leaddesk.admin.repository import (  # noqa: PLC0415
            ActivityLogRepository as _ActR,  # noqa: N814
        )
        from leaddesk.admin.repository import (  # noqa: PLC0415
            AdminUserRepository as _AUR,  # noqa: N814
        )
        from leaddesk.admin.repository import (  # noqa: PLC0415
            AuditLogRepository as _ALR,  # noqa: N814
        )
        from leaddesk.admin.repository import (  # noqa: PLC0415
            LoginHistoryRepository as _LHR,  # noqa: N814
        )
        from leaddesk.admin.repository import (  # noqa: PLC0415
            RolePermissionRepository as _RPR,  # noqa: N814
        )
        from leaddesk.admin.repository import (  # noqa: PLC0415
            SettingRepository as _SR,  # noqa: N814
        )
        from leaddesk.admin.service import AdminUserService as _AUS  # noqa: N814, PLC0415
        from leaddesk.admin.settings_store import SettingStore as _SS  # noqa: N814, PLC0415
        from leaddesk.notifications.mailer import LeadNotifier as _LN  # noqa: N814, PLC0415
        from leaddesk.notifications.renderer import (  # noqa: PLC0415
            TemplateRenderer as _TR,  # noqa: N814
        )
        from leaddesk.repositories.lead import LeadRepository as _LR  # noqa: N814, PLC0415
        from leaddesk.services.analytics import AnalyticsService as _AnS  # noqa: N814, PLC0415
        from leaddesk.services.lead import LeadService as _LS  # noqa: N814, PLC0415

        self.db: Database = db
        self.settings: LeaddeskSettings = settings
        self.metrics: MetricsCollector | None = metrics

        # Repositories
        self.admin_users: AdminUserRepository = _AUR(db)
        self.role_permissions: RolePermissionRepository = _RPR(db)
        self.setting_repo: SettingRepository = _SR(db)
        self.audit_logs: AuditLogRepository = _ALR(db)
        self.activity_logs: ActivityLogRepository = _ActR(db)
        self.login_history: LoginHistoryRepository = _LHR(db)
        self.leads: LeadRepository = _LR(db)

        # Revocations are shared across workers through the database
        get_token_blacklist().set_db(db)

        # Authorization
        self.permission_table: PermissionTable = _PT(self.role_permissions)
        self.setting_store: SettingStore = _SS(
            self.setting_repo,
            settings.admin_api.setting_cache_seconds,
        )
        self.policy: PolicyEvaluator = _PE(self.permission_table, self.setting_store, metrics)

        lockout = settings.security.login_lockout
        self.login_limiter: LoginRateLimiter = _LRL(
            lockout.max_attempts,
            lockout.window_seconds,
            lockout.lockout_seconds,
            enabled=lockout.enabled,
        )

        # Side-channel logs
        self.recorder: Recorder = _Rec(
            self.audit_logs,
            self.activity_logs,
            self.login_history,
            settings.recorder,
            metrics,
        )

        # Services
        self.notifier: LeadNotifier = _LN(
            settings.smtp,
            settings.notifications,
            _TR(settings.smtp.templates_path),
            settings.server.external_url,
            metrics,
        )
        self.admin_service: AdminUserService = _AUS(
            self.admin_users,
            self.permission_table,
            self.setting_store,
            self.recorder,
            settings.admin_api,
            self.audit_logs,
            self.activity_logs,
            self.login_history,
            metrics,
        )
        self.lead_service: LeadService = _LS(
            self.leads,
            self.admin_users,
            self.policy,
            self.recorder,
            self.notifier,
            metrics,
        )
        self.analytics: AnalyticsService = _AnS(self.leads)


def get_container() -> Container:
    """Return the :class:`Container` from the current Flask app.

    Raises :class:`RuntimeError` if the database was not initialised
    (i.e. ``create_app`` was called without a ``database`` argument).
    """
    container = current_app.extensions.get("container")
    if container is None:
        msg = "Dependency container not available -- was the database initialised before create_app()?"
        raise RuntimeError(msg)
    return container
