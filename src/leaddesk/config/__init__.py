"""Configuration subsystem for leaddesk.

Public API::

    from leaddesk.config import get_config, LeaddeskConfig

    # At startup (CLI only):
    LeaddeskConfig(config_file="config.yaml")

    # Everywhere else:
    cfg    = get_config()
    expiry = cfg.settings.admin_api.token_expiry_seconds
"""

from leaddesk.config.leaddesk_config import (
    ConfigValidationError,
    LeaddeskConfig,
    get_config,
)
from leaddesk.config.settings import (
    AdminApiSettings,
    AuditLogSettings,
    DatabaseSettings,
    LeaddeskSettings,
    LoggingSettings,
    LoginLockoutSettings,
    MetricsSettings,
    NotificationSettings,
    ProxySettings,
    PublicApiSettings,
    RecorderSettings,
    SecuritySettings,
    ServerSettings,
    SmtpSettings,
    build_settings,
)

__all__ = [
    "AdminApiSettings",
    "AuditLogSettings",
    "ConfigValidationError",
    "DatabaseSettings",
    "LeaddeskConfig",
    "LeaddeskSettings",
    "LoggingSettings",
    "LoginLockoutSettings",
    "MetricsSettings",
    "NotificationSettings",
    "ProxySettings",
    "PublicApiSettings",
    "RecorderSettings",
    "SecuritySettings",
    "ServerSettings",
    "SmtpSettings",
    "build_settings",
    "get_config",
]
