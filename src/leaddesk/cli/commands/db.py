"""Database management subcommands."""

from __future__ import annotations

import logging
import sys

log = logging.getLogger(__name__)

_ADMIN_TABLES = (
    "users",
    "role_permissions",
    "settings",
    "audit_log",
    "activity_log",
    "login_history",
    "token_blacklist",
)


def run_db(config, args) -> None:
    """Handle db subcommands."""
    if args.db_command == "status":
        sys.exit(_db_status(config))
    sys.stderr.write("usage: leaddesk -c CONFIG db status\n")
    sys.exit(2)


def _db_status(config) -> int:
    """Report connectivity and which tables exist; returns an exit code."""
    from leaddesk.db import init_database  # noqa: PLC0415

    try:
        db = init_database(config.settings.database)
        db.fetch_value("SELECT 1")
        leads = db.fetch_value(
            "SELECT count(*) FROM information_schema.tables "
            "WHERE table_schema = 'public' AND table_name = 'leads'",
        )
        admin = db.fetch_value(
            "SELECT count(*) FROM information_schema.tables "
            "WHERE table_schema = 'admin' AND table_name = ANY(%s)",
            (list(_ADMIN_TABLES),),
        )
    except Exception as exc:
        log.exception("Database status check failed")
        sys.stderr.write(f"database: unreachable ({exc})\n")
        return 1

    sys.stdout.write("database: connected\n")
    sys.stdout.write(f"leads table: {'present' if leads else 'missing'}\n")
    sys.stdout.write(f"admin tables: {admin}/{len(_ADMIN_TABLES)}\n")
    return 0 if leads and admin == len(_ADMIN_TABLES) else 1
