"""PostgreSQL connection setup for the ``postgres`` store backend.

Usage::

    from privca.config import get_config
    from privca.db.init import init_database

    init_database(get_config().settings.database)
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import TYPE_CHECKING

from pypgkit import Database, DatabaseConfig

if TYPE_CHECKING:
    from privca.config.settings import DatabaseSettings

_SCHEMA_PATH = Path(__file__).parent / "schema.sql"

log = logging.getLogger(__name__)


def _to_pypgkit(settings: DatabaseSettings) -> DatabaseConfig:
    return DatabaseConfig(
        host=settings.host,
        port=settings.port,
        database=settings.database,
        user=settings.user,
        password=settings.password,
        sslmode=settings.sslmode,
        min_connections=settings.min_connections,
        max_connections=settings.max_connections,
        connection_timeout=settings.connection_timeout,
    )


def init_database(settings: DatabaseSettings) -> Database:
    """Return the process-wide :class:`Database`, creating it on first use.

    With ``auto_setup`` enabled the bundled ``schema.sql`` is applied
    (every statement is ``IF NOT EXISTS``).

    Parameters
    ----------
    settings:
        The ``database`` section from :class:`PrivcaSettings`.

    """
    if Database.is_initialized():
        log.debug("Database already initialised, reusing the pool")
        return Database.get_instance()

    log.info(
        "Connecting to PostgreSQL %s@%s:%s/%s (pool %d-%d)",
        settings.user,
        settings.host,
        settings.port,
        settings.database,
        settings.min_connections,
        settings.max_connections,
    )
    db = Database.init(
        config=_to_pypgkit(settings),
        schema_path=_SCHEMA_PATH if settings.auto_setup else None,
        auto_setup=settings.auto_setup,
        interactive=False,
    )
    log.info("Database ready (schema auto-setup=%s)", settings.auto_setup)
    return db
