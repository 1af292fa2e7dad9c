"""Flask application package for PRIVCA.

Public API::

    from privca.app import create_app
"""

from privca.app.factory import create_app

__all__ = ["create_app"]
