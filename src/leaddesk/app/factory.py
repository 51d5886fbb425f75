"""Flask application factory for leaddesk.

Usage::

    from leaddesk.app import create_app
    from leaddesk.config import get_config
    from leaddesk.db import init_database

    db  = init_database(get_config().settings.database)
    app = create_app(config=get_config(), database=db)
"""

from __future__ import annotations

import atexit
import logging
import sys
from typing import TYPE_CHECKING

from flask import Flask, jsonify

if TYPE_CHECKING:
    from flask.typing import ResponseReturnValue
    from pypgkit import Database

    from leaddesk.app.context import Container
    from leaddesk.config.leaddesk_config import LeaddeskConfig

log = logging.getLogger(__name__)


def create_app(
    config: LeaddeskConfig | None = None,
    database: Database | None = None,
) -> Flask:
    """Create and configure the leaddesk Flask application.

    Parameters
    ----------
    config:
        Loaded :class:`LeaddeskConfig`.  Falls back to :func:`get_config`
        when ``None``.
    database:
        Initialised :class:`Database` singleton.  When provided, the
        dependency container is wired up, permission grants are seeded
        and the initial SuperAdmin is bootstrapped *before* any
        blueprint is registered.  When ``None`` only the health probes
        are served (useful for ``--validate-only`` and tests).

    Returns
    -------
    Flask
        Fully configured WSGI application.

    """
    if config is None:
        from leaddesk.config import get_config  # noqa: PLC0415

        config = get_config()

    settings = config.settings

    app = Flask("leaddesk")
    app.config["LEADDESK_SETTINGS"] = settings
    app.config["LEADDESK_CONFIG"] = config
    app.config["MAX_CONTENT_LENGTH"] = settings.security.max_request_body_bytes

    # -- WSGI middleware (outermost layer) -----------------------------------
    if settings.proxy.enabled:
        from leaddesk.app.middleware import TrustedProxyMiddleware  # noqa: PLC0415

        app.wsgi_app = TrustedProxyMiddleware(  # type: ignore[method-assign]
            app.wsgi_app,
            trusted_proxies=settings.proxy.trusted_proxies,
            for_header=settings.proxy.forwarded_for_header,
            proto_header=settings.proxy.forwarded_proto_header,
        )
        log.info(
            "Proxy middleware enabled (trusted: %s)",
            list(settings.proxy.trusted_proxies) or "all",
        )

    # -- Error handlers (RFC 7807) ------------------------------------------
    from leaddesk.app.errors import register_error_handlers  # noqa: PLC0415

    register_error_handlers(app)

    # -- Request hooks --------------------------------------------------------
    from leaddesk.app.middleware import register_request_hooks  # noqa: PLC0415

    register_request_hooks(app)

    # -- Health probes --------------------------------------------------------
    _register_health(app)

    # -- Dependency container -----------------------------------------------
    if database is not None:
        from leaddesk.app.context import Container  # noqa: PLC0415
        from leaddesk.metrics.collector import MetricsCollector  # noqa: PLC0415

        container = Container(database, settings, MetricsCollector())
        app.extensions["container"] = container
        atexit.register(container.recorder.shutdown)

        # Grants must exist before any grid-gated request is served
        container.permission_table.seed()
        _bootstrap_admin(container)

        from leaddesk.api import register_blueprints  # noqa: PLC0415

        register_blueprints(app)

    return app


def _bootstrap_admin(container: Container) -> None:
    created = container.admin_service.bootstrap_admin()
    if created is None:
        return
    username, password = created
    log.warning("Initial SuperAdmin created -- password printed to stderr")
    sys.stderr.write(
        "\n"
        "+------------------------------------------------+\n"
        "|        INITIAL SUPERADMIN CREATED              |\n"
        "|                                                |\n"
        f"|  Username: {username:<35s} |\n"
        f"|  Password: {password:<35s} |\n"
        "|                                                |\n"
        "|  Change this password immediately!             |\n"
        "+------------------------------------------------+\n"
        "\n",
    )
    sys.stderr.flush()


def _register_health(app: Flask) -> None:
    """Register ``/livez``, ``/healthz``, ``/readyz`` and ``/ping``."""
    from leaddesk import __version__  # noqa: PLC0415

    @app.route("/ping")
    def ping() -> ResponseReturnValue:
        return jsonify({"message": "pong"}), 200

    @app.route("/livez")
    def livez() -> ResponseReturnValue:
        return jsonify({"alive": True, "version": __version__}), 200

    @app.route("/healthz")
    def healthz() -> ResponseReturnValue:
        """Database, pool, dropped log writes and (non-critical) SMTP."""
        result: dict = {"status": "ok", "version": __version__}
        checks: dict = {}

        container = app.extensions.get("container")
        if container is not None:
            settings = container.settings

            try:
                container.db.fetch_value("SELECT 1")
                checks["database"] = "connected"
            except Exception:  # noqa: BLE001
                checks["database"] = "disconnected"
                result["status"] = "degraded"

            try:
                pool = getattr(container.db, "_pool", None)
                if pool is not None and hasattr(pool, "get_stats"):
                    stats = pool.get_stats()
                    pool_info = {
                        "size": stats.get("pool_size", 0),
                        "available": stats.get("pool_available", 0),
                        "waiting": stats.get("requests_waiting", 0),
                        "min": stats.get("pool_min", 0),
                        "max": stats.get("pool_max", 0),
                    }
                    result["pool"] = pool_info
                    if pool_info["available"] == 0 and pool_info["waiting"] > 0:
                        result["status"] = "degraded"
            except Exception:  # noqa: BLE001
                log.debug("Failed to retrieve connection pool stats")

            result["dropped_log_writes"] = container.recorder.dropped_by_kind()

            if settings.smtp.enabled:
                try:
                    import smtplib  # noqa: PLC0415

                    with smtplib.SMTP(settings.smtp.host, settings.smtp.port, timeout=5) as s:
                        s.ehlo()
                    checks["smtp"] = "connected"
                except Exception:  # noqa: BLE001
                    checks["smtp"] = "unreachable"

        if checks:
            result["checks"] = checks

        code = 200 if result["status"] == "ok" else 503
        return jsonify(result), code

    @app.route("/readyz")
    def readyz() -> ResponseReturnValue:
        """Ready once the database answers and every role has a grant."""
        container = app.extensions.get("container")
        if container is None:
            return jsonify({"ready": False, "reason": "Container not initialized"}), 503

        try:
            container.db.fetch_value("SELECT 1")
        except Exception:  # noqa: BLE001
            return jsonify({"ready": False, "reason": "Database not connected"}), 503

        try:
            seeded = container.permission_table.is_seeded()
        except Exception:  # noqa: BLE001
            seeded = False
        if not seeded:
            return jsonify({"ready": False, "reason": "Permission grants not seeded"}), 503

        return jsonify({"ready": True}), 200
