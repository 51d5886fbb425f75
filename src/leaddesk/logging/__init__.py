"""Logging subsystem for leaddesk.

Public API::

    from leaddesk.logging import configure_logging

    configure_logging(settings.logging)
"""

from leaddesk.logging.setup import configure_logging

__all__ = ["configure_logging"]
