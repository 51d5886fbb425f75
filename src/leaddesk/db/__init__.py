"""Database subsystem for leaddesk.

Public API::

    from leaddesk.db import init_database
"""

from leaddesk.db.init import init_database

__all__ = ["init_database"]
