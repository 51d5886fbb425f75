"""Typed, frozen dataclasses for every configuration section.

This module is the **single source of truth** for default values.
JSON Schema defaults exist only for documentation; these builders
are what the application actually reads.

Access pattern::

    from leaddesk.config import get_config

    db = get_config().settings.database
    print(db.host, db.port)        # typed, IDE-autocompleted
"""

from __future__ import annotations

from dataclasses import dataclass

# ---------------------------------------------------------------------------
# Server
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class ServerSettings:
    """HTTP server configuration (bind address, workers, timeouts)."""

    external_url: str
    bind: str
    port: int
    workers: int
    worker_class: str
    timeout: int
    graceful_timeout: int
    keepalive: int


def _build_server(data: dict | None) -> ServerSettings:
    d = data or {}
    return ServerSettings(
        external_url=d.get("external_url", "http://localhost:5001"),
        bind=d.get("bind", "0.0.0.0"),  # noqa: S104
        port=d.get("port", 5001),
        workers=d.get("workers", 4),
        worker_class=d.get("worker_class", "sync"),
        timeout=d.get("timeout", 30),
        graceful_timeout=d.get("graceful_timeout", 30),
        keepalive=d.get("keepalive", 2),
    )


# ---------------------------------------------------------------------------
# Proxy
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class ProxySettings:
    """Reverse-proxy forwarded-header handling."""

    enabled: bool
    trusted_proxies: tuple[str, ...]
    forwarded_for_header: str
    forwarded_proto_header: str


def _build_proxy(data: dict | None) -> ProxySettings:
    d = data or {}
    return ProxySettings(
        enabled=d.get("enabled", False),
        trusted_proxies=tuple(d.get("trusted_proxies", [])),
        forwarded_for_header=d.get("forwarded_for_header", "X-Forwarded-For"),
        forwarded_proto_header=d.get("forwarded_proto_header", "X-Forwarded-Proto"),
    )


# ---------------------------------------------------------------------------
# Security
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class LoginLockoutSettings:
    """Failed-login lockout thresholds (per client IP + identifier)."""

    enabled: bool
    max_attempts: int
    window_seconds: int
    lockout_seconds: int


@dataclass(frozen=True)
class SecuritySettings:
    """Request-level hardening."""

    max_request_body_bytes: int
    hsts_max_age_seconds: int
    login_lockout: LoginLockoutSettings


def _build_security(data: dict | None) -> SecuritySettings:
    d = data or {}
    lo = d.get("login_lockout") or {}
    return SecuritySettings(
        max_request_body_bytes=d.get("max_request_body_bytes", 1048576),
        hsts_max_age_seconds=d.get("hsts_max_age_seconds", 63072000),
        login_lockout=LoginLockoutSettings(
            enabled=lo.get("enabled", True),
            max_attempts=lo.get("max_attempts", 5),
            window_seconds=lo.get("window_seconds", 300),
            lockout_seconds=lo.get("lockout_seconds", 900),
        ),
    )


# ---------------------------------------------------------------------------
# Logging
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class AuditLogSettings:
    """Audit log file output settings (rotation)."""

    enabled: bool
    file: str | None
    max_file_size_bytes: int
    backup_count: int


@dataclass(frozen=True)
class LoggingSettings:
    """Application logging configuration (level, format, audit)."""

    level: str
    format: str
    audit: AuditLogSettings


def _build_logging(data: dict | None) -> LoggingSettings:
    d = data or {}
    a = d.get("audit") or {}
    return LoggingSettings(
        level=d.get("level", "INFO"),
        format=d.get("format", "json"),
        audit=AuditLogSettings(
            enabled=a.get("enabled", True),
            file=a.get("file"),
            max_file_size_bytes=a.get("max_file_size_bytes", 104857600),
            backup_count=a.get("backup_count", 10),
        ),
    )


# ---------------------------------------------------------------------------
# Database
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class DatabaseSettings:
    """PostgreSQL connection and pool settings."""

    host: str
    port: int
    database: str
    user: str
    password: str
    url: str | None
    sslmode: str
    min_connections: int
    max_connections: int
    connection_timeout: float
    auto_setup: bool


def _build_database(data: dict | None) -> DatabaseSettings:
    d = data or {}
    return DatabaseSettings(
        host=d.get("host", "localhost"),
        port=d.get("port", 5432),
        database=d.get("database", "leaddesk"),
        user=d.get("user", "leaddesk"),
        password=d.get("password", ""),
        url=d.get("url") or None,
        sslmode=d.get("sslmode", "prefer"),
        min_connections=d.get("min_connections", 2),
        max_connections=d.get("max_connections", 10),
        connection_timeout=d.get("connection_timeout", 30.0),
        auto_setup=d.get("auto_setup", False),
    )


# ---------------------------------------------------------------------------
# SMTP / lead notifications
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class SmtpSettings:
    """SMTP outbound email delivery settings."""

    enabled: bool
    host: str
    port: int
    username: str
    password: str
    use_tls: bool
    from_address: str
    templates_path: str | None
    timeout_seconds: int


def _build_smtp(data: dict | None) -> SmtpSettings:
    d = data or {}
    return SmtpSettings(
        enabled=d.get("enabled", False),
        host=d.get("host", ""),
        port=d.get("port", 587),
        username=d.get("username", ""),
        password=d.get("password", ""),
        use_tls=d.get("use_tls", True),
        from_address=d.get("from_address", ""),
        templates_path=d.get("templates_path"),
        timeout_seconds=d.get("timeout_seconds", 30),
    )


@dataclass(frozen=True)
class NotificationSettings:
    """New-lead alert recipients."""

    enabled: bool
    recipients: tuple[str, ...]


def _build_notifications(data: dict | None) -> NotificationSettings:
    d = data or {}
    return NotificationSettings(
        enabled=d.get("enabled", True),
        recipients=tuple(d.get("recipients", [])),
    )


# ---------------------------------------------------------------------------
# Admin API
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class AdminApiSettings:
    base_path: str
    token_secret: str
    token_expiry_seconds: int
    initial_admin_username: str
    initial_admin_email: str
    password_length: int
    default_page_size: int
    max_page_size: int
    setting_cache_seconds: int


def _build_admin_api(data: dict | None) -> AdminApiSettings:
    d = data or {}
    return AdminApiSettings(
        base_path=d.get("base_path", "/api/admin"),
        token_secret=d.get("token_secret", ""),
        token_expiry_seconds=d.get("token_expiry_seconds", 43200),
        initial_admin_username=d.get("initial_admin_username", "superadmin"),
        initial_admin_email=d.get("initial_admin_email", ""),
        password_length=d.get("password_length", 20),
        default_page_size=d.get("default_page_size", 50),
        max_page_size=d.get("max_page_size", 1000),
        setting_cache_seconds=d.get("setting_cache_seconds", 5),
    )


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class PublicApiSettings:
    base_path: str


def _build_public_api(data: dict | None) -> PublicApiSettings:
    d = data or {}
    return PublicApiSettings(base_path=d.get("base_path", "/api"))


# ---------------------------------------------------------------------------
# Side-channel recorder
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class RecorderSettings:
    """Audit, activity and login-history write dispatch.

    ``async_writes`` hands every write to a small thread pool so a slow
    or failing store never delays the request that triggered it.
    """

    async_writes: bool
    max_workers: int


def _build_recorder(data: dict | None) -> RecorderSettings:
    d = data or {}
    return RecorderSettings(
        async_writes=d.get("async_writes", True),
        max_workers=d.get("max_workers", 2),
    )


# ---------------------------------------------------------------------------
# Metrics
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class MetricsSettings:
    enabled: bool
    path: str


def _build_metrics(data: dict | None) -> MetricsSettings:
    d = data or {}
    return MetricsSettings(
        enabled=d.get("enabled", False),
        path=d.get("path", "/metrics"),
    )


# ---------------------------------------------------------------------------
# Root settings aggregate
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class LeaddeskSettings:
    server: ServerSettings
    proxy: ProxySettings
    security: SecuritySettings
    logging: LoggingSettings
    database: DatabaseSettings
    smtp: SmtpSettings
    notifications: NotificationSettings
    admin_api: AdminApiSettings
    public_api: PublicApiSettings
    recorder: RecorderSettings
    metrics: MetricsSettings


def build_settings(data: dict) -> LeaddeskSettings:
    """Build the full typed settings tree from raw config data.

    Called once during :class:`LeaddeskConfig` initialization after
    schema validation and environment-variable resolution.
    """
    return LeaddeskSettings(
        server=_build_server(data.get("server")),
        proxy=_build_proxy(data.get("proxy")),
        security=_build_security(data.get("security")),
        logging=_build_logging(data.get("logging")),
        database=_build_database(data.get("database")),
        smtp=_build_smtp(data.get("smtp")),
        notifications=_build_notifications(data.get("notifications")),
        admin_api=_build_admin_api(data.get("admin_api")),
        public_api=_build_public_api(data.get("public_api")),
        recorder=_build_recorder(data.get("recorder")),
        metrics=_build_metrics(data.get("metrics")),
    )
