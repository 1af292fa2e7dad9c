"""Flask application factory for PRIVCA.

Usage::

    from privca.app import create_app
    from privca.config import get_config
    from privca.db import init_database

    db  = init_database(get_config().settings.database)
    app = create_app(config=get_config(), database=db)
"""

from __future__ import annotations

import atexit
import logging
from typing import TYPE_CHECKING

from flask import Flask, jsonify

if TYPE_CHECKING:
    from flask.typing import ResponseReturnValue
    from pypgkit import Database

    from privca.config.privca_config import PrivcaConfig
    from privca.store.base import PKIStore

log = logging.getLogger(__name__)


def create_app(
    config: PrivcaConfig | None = None,
    database: Database | None = None,
    store: PKIStore | None = None,
) -> Flask:
    """Create and configure the PRIVCA Flask application.

    Parameters
    ----------
    config:
        Loaded :class:`PrivcaConfig`.  Falls back to :func:`get_config`
        when ``None``.
    database:
        Initialised :class:`Database` singleton for the ``postgres``
        store backend.
    store:
        Pre-built store; overrides ``store.backend`` (tests pass an
        :class:`~privca.store.memory.InMemoryStore`).  When neither a
        store nor a database is available for the ``postgres`` backend
        the app still starts, but only the health probes respond.

    Returns
    -------
    Flask
        Fully configured WSGI application.

    """
    if config is None:
        from privca.config import get_config  # noqa: PLC0415

        config = get_config()

    settings = config.settings

    app = Flask("privca")
    app.config["PRIVCA_SETTINGS"] = settings
    app.config["PRIVCA_CONFIG"] = config
    app.config["MAX_CONTENT_LENGTH"] = settings.api.max_request_body_bytes

    # -- Error handlers (RFC 7807) ------------------------------------------
    from privca.app.errors import register_error_handlers  # noqa: PLC0415

    register_error_handlers(app)

    # -- Request lifecycle hooks --------------------------------------------
    from privca.app.middleware import register_request_hooks  # noqa: PLC0415

    register_request_hooks(app)

    # -- Infrastructure endpoints -------------------------------------------
    _register_health(app)

    # -- Dependency container -----------------------------------------------
    if store is None and (database is not None or settings.store.backend == "memory"):
        from privca.store import build_store  # noqa: PLC0415

        store = build_store(settings.store, database)

    if store is None:
        log.warning("No store available; PKI endpoints are not registered")
    else:
        from privca.app.context import Container  # noqa: PLC0415

        container = Container(settings, store, db=database)
        app.extensions["container"] = container

        # -- Hook registry shutdown (process exit, not per-request) ---------
        atexit.register(container.hook_registry.shutdown)

        # -- OCSP and CRL distribution routes -------------------------------
        from privca.api import register_blueprints  # noqa: PLC0415

        register_blueprints(app)

    log.info("Flask application created")
    return app


# ---------------------------------------------------------------------------
# Infrastructure endpoints
# ---------------------------------------------------------------------------


def _register_health(app: Flask) -> None:
    """Register ``/livez`` and ``/readyz`` probes."""
    from privca import __version__  # noqa: PLC0415

    @app.route("/livez")
    def livez() -> ResponseReturnValue:
        """Return minimal liveness probe."""
        return jsonify({"alive": True, "version": __version__}), 200

    @app.route("/readyz")
    def readyz() -> ResponseReturnValue:
        """Ready once the store answers and at least one CA is ACTIVE."""
        container = app.extensions.get("container")
        if container is None:
            return (
                jsonify(
                    {"ready": False, "reason": "Container not initialized"},
                ),
                503,
            )

        if container.db is not None:
            try:
                container.db.fetch_value("SELECT 1")
            except Exception:  # noqa: BLE001
                return (
                    jsonify(
                        {"ready": False, "reason": "Database not connected"},
                    ),
                    503,
                )

        summary = container.lifecycle.status_summary()
        if not summary["by_status"].get("ACTIVE"):
            return (
                jsonify(
                    {"ready": False, "reason": "No ACTIVE CA", "cas": summary["by_status"]},
                ),
                503,
            )

        return jsonify({"ready": True, "cas": summary["by_status"]}), 200
