"""Programmatic gunicorn runner for leaddesk.

Starts gunicorn with settings derived from the leaddesk config rather
than requiring a separate gunicorn config file.

Usage::

    from leaddesk.server.gunicorn_app import run_gunicorn

    run_gunicorn(flask_app, settings.server)
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from flask import Flask

    from leaddesk.config.settings import ServerSettings

log = logging.getLogger(__name__)


def gunicorn_options(settings: ServerSettings) -> dict[str, object]:
    """gunicorn settings derived from :class:`ServerSettings`."""
    return {
        "bind": f"{settings.bind}:{settings.port}",
        "workers": settings.workers,
        "worker_class": settings.worker_class,
        "timeout": settings.timeout,
        "graceful_timeout": settings.graceful_timeout,
        "keepalive": settings.keepalive,
        # Access logging is done by the app's request hooks
        "accesslog": None,
    }


def run_gunicorn(app: Flask, settings: ServerSettings) -> None:
    """Start a gunicorn server from :class:`ServerSettings`.

    Raises :class:`RuntimeError` if gunicorn is not importable (it does
    not run on Windows).
    """
    try:
        from gunicorn.app.base import BaseApplication  # noqa: PLC0415
    except ImportError:
        msg = (
            "gunicorn is not available.  gunicorn only runs on Unix; "
            "use --dev for the Flask development server on Windows."
        )
        raise RuntimeError(msg) from None

    class _App(BaseApplication):
        def __init__(self, flask_app: Flask, options: dict[str, object]) -> None:
            self.application = flask_app
            self._options = options
            super().__init__()

        def load_config(self) -> None:
            for key, value in self._options.items():
                self.cfg.set(key, value)

        def load(self) -> Flask:
            return self.application

    log.info(
        "Starting gunicorn -- %s:%s (%d workers, %s)",
        settings.bind,
        settings.port,
        settings.workers,
        settings.worker_class,
    )
    _App(app, gunicorn_options(settings)).run()
