"""Public API layer -- Flask blueprint registration.

Call :func:`register_blueprints` during application startup to wire the
public and admin blueprints into the Flask app.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from flask import Flask

log = logging.getLogger(__name__)


def register_blueprints(app: Flask) -> None:
    """Mount the public API at ``public_api.base_path`` and the admin API
    (accounts and leads) at ``admin_api.base_path``.
    """
    settings = app.config["LEADDESK_SETTINGS"]

    from leaddesk.admin.lead_routes import leads_bp  # noqa: PLC0415
    from leaddesk.admin.routes import admin_bp  # noqa: PLC0415
    from leaddesk.api.submit import submit_bp  # noqa: PLC0415

    public_base = settings.public_api.base_path.rstrip("/")
    admin_base = settings.admin_api.base_path.rstrip("/")

    app.register_blueprint(submit_bp, url_prefix=public_base)
    app.register_blueprint(admin_bp, url_prefix=admin_base)
    app.register_blueprint(leads_bp, url_prefix=admin_base)

    if settings.metrics.enabled:
        from leaddesk.api.metrics import metrics_bp  # noqa: PLC0415

        app.register_blueprint(metrics_bp, url_prefix=settings.metrics.path)

    log.info(
        "Registered blueprints: public at '%s', admin at '%s'",
        public_base or "/",
        admin_base,
    )
