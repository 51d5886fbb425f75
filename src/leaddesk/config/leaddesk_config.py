"""leaddesk configuration loader built on ConfigKit.

Lifecycle::

    # 1. CLI creates the singleton (once, at startup)
    LeaddeskConfig(config_file="/etc/leaddesk/config.yaml")

    # 2. Any module retrieves it afterwards
    from leaddesk.config import get_config
    cfg = get_config()
    cfg.settings.admin_api.token_expiry_seconds  # typed access

    # 3. Dynamic access
    cfg.get("smtp.host", default="localhost")
"""

from __future__ import annotations

import logging
import os
import re
from pathlib import Path
from typing import Any

from configkit import ConfigKit, ConfigKitMeta

from leaddesk.config.settings import LeaddeskSettings, build_settings

_SCHEMA_PATH = Path(__file__).parent / "schema.json"

_ENV_RE = re.compile(
    r"^\$\{([^}:]+?)(?::-(.*))?\}$",
    re.DOTALL,
)

_MIN_TOKEN_SECRET_LENGTH = 16
_MIN_HSTS_ONE_DAY = 86400

log = logging.getLogger(__name__)

_instance: LeaddeskConfig | None = None


def get_config() -> LeaddeskConfig:
    """Return the loaded configuration.

    Raises :class:`RuntimeError` until :class:`LeaddeskConfig` has been
    constructed by the CLI or the WSGI entry point.
    """
    if _instance is None:
        msg = "Configuration not initialised; construct LeaddeskConfig(config_file=...) first"
        raise RuntimeError(msg)
    return _instance


class ConfigValidationError(Exception):
    """One or more semantic problems found after schema validation.

    ``errors`` keeps the individual messages for callers that want to
    report them separately.
    """

    def __init__(self, errors: list[str]) -> None:
        self.errors = errors
        lines = "\n".join(f"  - {e}" for e in errors)
        super().__init__(f"Configuration validation failed:\n{lines}")


def _substitute(value: str, where: str) -> str:
    """Expand a whole-string ``${VAR}`` or ``${VAR:-default}`` reference."""
    match = _ENV_RE.match(value)
    if match is None:
        return value
    name, default = match.groups()
    if name in os.environ:
        return os.environ[name]
    if default is not None:
        return default
    raise ConfigValidationError(
        [f"Environment variable '${{{name}}}' referenced at '{where}' is not set and has no default"],
    )


def _expand_env(node: Any, where: str = "") -> Any:  # noqa: ANN401
    """Return *node* with every string leaf passed through :func:`_substitute`."""
    if isinstance(node, str):
        return _substitute(node, where)
    if isinstance(node, dict):
        return {
            key: _expand_env(value, f"{where}.{key}" if where else key)
            for key, value in node.items()
        }
    if isinstance(node, list):
        return [_expand_env(item, f"{where}[{i}]") for i, item in enumerate(node)]
    return node

# ---------------------------------------------------------------------------
# Config class
# ---------------------------------------------------------------------------


class LeaddeskConfig(ConfigKit):
    """Central configuration for the leaddesk server.

    Subclasses :class:`configkit.ConfigKit`.  The JSON schema is
    bundled at ``config/schema.json``; users supply only ``config_file``.

    After construction the typed settings tree is available at
    :pyattr:`settings` and the raw dict via :pyattr:`data` /
    :pymeth:`get`.
    """

    def __init__(
        self,
        *,
        config_file: str | Path,
        schema_file: str | Path | None = None,  # noqa: ARG002
    ) -> None:
        """Initialise the configuration singleton.

        Parameters
        ----------
        config_file:
            Path to the YAML/JSON configuration file.
        schema_file:
            Ignored.  Exists only to satisfy the
            :class:`ConfigKitMeta` singleton guard.

        """
        global _instance  # noqa: PLW0603

        super().__init__(
            config_file=config_file,
            schema_file=_SCHEMA_PATH,
        )

        self._settings: LeaddeskSettings = build_settings(self.data)
        _instance = self

    # -- lifecycle overrides ------------------------------------------------

    def _load(self) -> None:
        """Load config file then resolve ``${VAR}`` env-var references.

        Runs env-var resolution **before** schema validation so that
        substituted values (e.g. ``${LOG_LEVEL:-INFO}``) are checked
        against enum constraints in the schema.
        """
        super()._load()
        self._data = _expand_env(self._data)

    # -- typed access -------------------------------------------------------

    @property
    def settings(self) -> LeaddeskSettings:
        """Fully-typed, frozen settings tree."""
        return self._settings

    # -- cross-field validation ---------------------------------------------

    def additional_checks(self) -> None:  # noqa: C901, PLR0912
        """Semantic & cross-field validation.

        Called automatically by ConfigKit **after** schema validation
        passes.
        """
        errors: list[str] = []
        warnings: list[str] = []

        server = self.data.get("server") or {}
        smtp = self.data.get("smtp") or {}
        notifications = self.data.get("notifications") or {}
        database = self.data.get("database") or {}
        security = self.data.get("security") or {}
        admin_api = self.data.get("admin_api") or {}
        public_api = self.data.get("public_api") or {}
        proxy = self.data.get("proxy") or {}

        # -- server --
        ext_url = server.get("external_url", "")
        if ext_url.endswith("/"):
            errors.append(
                f"server.external_url must not end with '/' (got '{ext_url}')",
            )

        # -- database --
        min_conn = database.get("min_connections", 2)
        max_conn = database.get("max_connections", 10)
        if min_conn > max_conn:
            errors.append(
                f"database.min_connections ({min_conn}) exceeds "
                f"database.max_connections ({max_conn})",
            )

        # -- smtp --
        if smtp.get("enabled", False):
            if not smtp.get("host"):
                errors.append("smtp.host is required when smtp is enabled")
            if not smtp.get("from_address"):
                errors.append("smtp.from_address is required when smtp is enabled")

        # -- notifications --
        if notifications.get("enabled", True) and smtp.get("enabled", False):
            if not notifications.get("recipients"):
                warnings.append(
                    "notifications are enabled but notifications.recipients "
                    "is empty; new-lead alerts will not be sent",
                )

        # -- security --
        hsts = security.get("hsts_max_age_seconds", 63072000)
        if 0 < hsts < _MIN_HSTS_ONE_DAY:
            warnings.append(
                f"security.hsts_max_age_seconds ({hsts}) is below one day",
            )

        # -- proxy --
        if proxy.get("enabled", False) and not proxy.get("trusted_proxies"):
            warnings.append(
                "proxy.enabled is true but proxy.trusted_proxies is empty; "
                "forwarded headers will be ignored",
            )

        # -- api paths --
        admin_base = admin_api.get("base_path", "/api/admin").rstrip("/")
        public_base = public_api.get("base_path", "/api").rstrip("/")
        if admin_base == public_base:
            errors.append(
                f"admin_api.base_path and public_api.base_path must differ "
                f"(both are '{admin_base}')",
            )

        default_page = admin_api.get("default_page_size", 50)
        max_page = admin_api.get("max_page_size", 1000)
        if default_page > max_page:
            errors.append(
                f"admin_api.default_page_size ({default_page}) exceeds "
                f"admin_api.max_page_size ({max_page})",
            )

        # -- token secret --
        token_secret = admin_api.get("token_secret", "")
        if not token_secret:
            errors.append("admin_api.token_secret is required")
        elif len(token_secret) < _MIN_TOKEN_SECRET_LENGTH:
            errors.append(
                "admin_api.token_secret is too short "
                f"({len(token_secret)} chars), "
                f"minimum {_MIN_TOKEN_SECRET_LENGTH} characters required",
            )

        for w in warnings:
            log.warning("Config warning: %s", w)

        if errors:
            raise ConfigValidationError(errors)

    # -- helpers ------------------------------------------------------------

    @classmethod
    def reset(cls) -> None:
        """Reset the singleton -- testing only."""
        global _instance  # noqa: PLW0603
        _instance = None
        ConfigKitMeta.reset()

    def __repr__(self) -> str:
        source = self.data.get("_source", "?")
        return f"<LeaddeskConfig config_file={source}>"
