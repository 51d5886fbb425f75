"""Flask application package for leaddesk.

Public API::

    from leaddesk.app import create_app
"""

from leaddesk.app.factory import create_app

__all__ = ["create_app"]
