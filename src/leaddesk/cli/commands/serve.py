"""Serve subcommand -- start the leaddesk server."""

from __future__ import annotations

import logging

log = logging.getLogger(__name__)


def run_serve(config, args) -> None:
    """Connect to the database, build the app and serve it.

    A database that cannot be initialised is fatal: the process never
    serves traffic without its store.
    """
    from leaddesk.app import create_app  # noqa: PLC0415
    from leaddesk.db import init_database  # noqa: PLC0415

    try:
        db = init_database(config.settings.database)
    except Exception as exc:
        msg = f"database initialisation failed: {exc}"
        raise RuntimeError(msg) from exc

    app = create_app(config=config, database=db)

    if args.dev:
        log.info("Starting development server (not for production)")
        app.run(
            host=config.settings.server.bind,
            port=config.settings.server.port,
            debug=True,
            use_reloader=True,
        )
    else:
        from leaddesk.server.gunicorn_app import run_gunicorn  # noqa: PLC0415

        run_gunicorn(app, config.settings.server)
