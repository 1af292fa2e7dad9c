"""Database subsystem for PRIVCA.

Public API::

    from privca.db import init_database, UnitOfWork
"""

from privca.db.init import init_database
from privca.db.unit_of_work import UnitOfWork

__all__ = [
    "UnitOfWork",
    "init_database",
]
