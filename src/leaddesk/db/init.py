"""Database initialisation from leaddesk configuration.

Usage::

    from leaddesk.config import get_config
    from leaddesk.db.init import init_database

    init_database(get_config().settings.database)
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import TYPE_CHECKING

from psycopg.conninfo import conninfo_to_dict
from pypgkit import Database, DatabaseConfig

if TYPE_CHECKING:
    from leaddesk.config.settings import DatabaseSettings

_SCHEMA_PATH = Path(__file__).parent / "schema.sql"

log = logging.getLogger(__name__)


def _settings_to_config(settings: DatabaseSettings) -> DatabaseConfig:
    """Map leaddesk DatabaseSettings to PyPGKit DatabaseConfig.

    A ``url`` connection string, when set, overrides the discrete
    host/port/database/user/password/sslmode fields it specifies.
    """
    params: dict = {
        "host": settings.host,
        "port": settings.port,
        "database": settings.database,
        "user": settings.user,
        "password": settings.password,
        "sslmode": settings.sslmode,
    }
    if settings.url:
        parsed = conninfo_to_dict(settings.url)
        if "dbname" in parsed:
            parsed["database"] = parsed.pop("dbname")
        if "port" in parsed:
            parsed["port"] = int(parsed["port"])
        params.update({k: v for k, v in parsed.items() if k in params})

    return DatabaseConfig(
        **params,
        min_connections=settings.min_connections,
        max_connections=settings.max_connections,
        connection_timeout=settings.connection_timeout,
    )


def init_database(settings: DatabaseSettings) -> Database:
    """Initialise the :class:`Database` singleton from config settings.

    If the singleton is already initialised, returns the existing instance.

    Parameters
    ----------
    settings:
        The ``database`` section from :class:`LeaddeskSettings`.

    Returns
    -------
    Database
        The ready-to-use database instance.

    """
    if Database.is_initialized():
        log.debug("Database already initialised, returning existing instance")
        return Database.get_instance()

    config = _settings_to_config(settings)

    log.info(
        "Initialising database connection: %s@%s:%s/%s",
        config.user,
        config.host,
        config.port,
        config.database,
    )

    db = Database.init(
        config=config,
        schema_path=_SCHEMA_PATH if settings.auto_setup else None,
        auto_setup=settings.auto_setup,
        interactive=False,
    )

    log.info("Database initialised successfully")
    return db
