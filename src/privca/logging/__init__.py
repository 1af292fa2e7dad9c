"""Logging subsystem for PRIVCA.

Public API::

    from privca.logging import configure_logging

    configure_logging(settings.logging)
"""

from privca.logging.setup import configure_logging

__all__ = ["configure_logging"]
