"""leaddesk command-line entry point.

Usage::

    leaddesk -c /etc/leaddesk/config.yaml
    leaddesk -c config.yaml --dev
    leaddesk -c config.yaml --validate-only
    leaddesk -c config.yaml serve --dev
    leaddesk -c config.yaml db status
    python -m leaddesk -c config.yaml
"""

from __future__ import annotations

import argparse
import logging
import sys
from pathlib import Path

log = logging.getLogger(__name__)


def _get_version() -> str:
    from leaddesk import __version__  # noqa: PLC0415

    return __version__


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="leaddesk",
        description="leaddesk -- lead intake and admin dashboard API",
    )
    parser.add_argument(
        "-c",
        "--config",
        required=True,
        metavar="PATH",
        help="Path to the configuration file (YAML or JSON).",
    )
    parser.add_argument(
        "--debug",
        action="store_true",
        default=False,
        help="Enable debug output (full tracebacks, verbose logging).",
    )
    parser.add_argument(
        "--validate-only",
        action="store_true",
        default=False,
        help="Validate the configuration file and exit.",
    )
    parser.add_argument(
        "--dev",
        action="store_true",
        default=False,
        help="Use Flask's development server instead of gunicorn.",
    )
    parser.add_argument(
        "-v",
        "--version",
        action="version",
        version=f"%(prog)s {_get_version()}",
    )

    subparsers = parser.add_subparsers(dest="command")

    serve_parser = subparsers.add_parser("serve", help="Start the leaddesk server")
    serve_parser.add_argument("--dev", action="store_true", default=False, dest="dev")

    db_parser = subparsers.add_parser("db", help="Database management")
    db_sub = db_parser.add_subparsers(dest="db_command")
    db_sub.add_parser("status", help="Check database connectivity and schema")

    return parser


def _print_error(message: str) -> None:
    """Print a user-facing error to stderr."""
    sys.stderr.write(f"leaddesk: error: {message}\n")


def main(argv: list[str] | None = None) -> None:
    """CLI entry point.  Parses arguments, loads config, dispatches."""
    parser = _build_parser()
    args = parser.parse_args(argv)

    config_path = Path(args.config)
    if not config_path.is_file():
        _print_error(f"configuration file not found: {config_path}")
        sys.exit(1)

    # Basic stderr logging until the config is loaded
    logging.basicConfig(
        level=logging.DEBUG if args.debug else logging.WARNING,
        format="%(levelname)s: %(message)s",
        stream=sys.stderr,
    )

    try:
        from leaddesk.config import ConfigValidationError, LeaddeskConfig  # noqa: PLC0415

        config = LeaddeskConfig(config_file=str(config_path))
    except ConfigValidationError as exc:
        _print_error(str(exc))
        sys.exit(1)
    except Exception as exc:
        if args.debug:
            raise
        _print_error(f"failed to load configuration: {exc}")
        sys.exit(1)

    from leaddesk.logging import configure_logging  # noqa: PLC0415

    configure_logging(config.settings.logging)

    if args.validate_only:
        _print_settings_summary(config)
        sys.exit(0)

    if args.command == "db":
        from leaddesk.cli.commands.db import run_db  # noqa: PLC0415

        run_db(config, args)
    else:
        # No subcommand means serve
        from leaddesk.cli.commands.serve import run_serve  # noqa: PLC0415

        _print_settings_summary(config)
        try:
            run_serve(config, args)
        except RuntimeError as exc:
            if args.debug:
                raise
            _print_error(str(exc))
            sys.exit(1)


def _print_settings_summary(config) -> None:
    """Print a short summary of the loaded configuration."""
    s = config.settings
    db = s.database
    target = "url" if db.url else f"{db.host}:{db.port}/{db.database}"
    lines = [
        f"leaddesk {_get_version()}",
        f"  external url : {s.server.external_url}",
        f"  listen       : {s.server.bind}:{s.server.port}",
        f"  database     : {target}",
        f"  public api   : {s.public_api.base_path}",
        f"  admin api    : {s.admin_api.base_path}",
        f"  smtp         : {'enabled' if s.smtp.enabled else 'disabled'}",
        f"  metrics      : {s.metrics.path if s.metrics.enabled else 'disabled'}",
    ]
    sys.stdout.write("\n".join(lines) + "\n")
