"""Persistence backends for the PKI engine.

Public API::

    from privca.store import PKIStore, build_store

    store = build_store(settings.store, database)
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from privca.store.base import PKIStore
from privca.store.memory import InMemoryStore

if TYPE_CHECKING:
    from pypgkit import Database

    from privca.config.settings import StoreSettings

log = logging.getLogger(__name__)


def build_store(settings: StoreSettings, database: Database | None = None) -> PKIStore:
    """Create the store selected by ``store.backend``.

    Raises
    ------
    ValueError
        If the backend is ``postgres`` and no database was supplied.

    """
    if settings.backend == "memory":
        log.warning("Using the in-memory store; PKI state is lost on restart")
        return InMemoryStore()

    if database is None:
        msg = "store.backend 'postgres' requires an initialised database"
        raise ValueError(msg)

    from privca.store.postgres import PostgresStore  # noqa: PLC0415

    return PostgresStore(database)


__all__ = ["InMemoryStore", "PKIStore", "build_store"]
