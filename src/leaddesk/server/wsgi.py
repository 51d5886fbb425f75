"""WSGI entry point for external servers (gunicorn, uWSGI, etc.).

The config file path is read from the ``LEADDESK_CONFIG`` environment
variable.

Example::

    export LEADDESK_CONFIG=/etc/leaddesk/config.yaml
    gunicorn "leaddesk.server.wsgi:app"
"""

from __future__ import annotations

import os
import sys

_config_path = os.environ.get("LEADDESK_CONFIG")
if _config_path is None:
    sys.stderr.write("LEADDESK_CONFIG environment variable is not set\n")
    sys.exit(1)

# Bootstrap the singleton before anything else imports it.
from leaddesk.config import LeaddeskConfig  # noqa: E402

_config = LeaddeskConfig(config_file=_config_path)

from leaddesk.logging import configure_logging  # noqa: E402

configure_logging(_config.settings.logging)

from leaddesk.db import init_database  # noqa: E402

_db = init_database(_config.settings.database)

from leaddesk.app import create_app  # noqa: E402

app = create_app(config=_config, database=_db)
