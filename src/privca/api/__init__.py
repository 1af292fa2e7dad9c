"""HTTP API layer: Flask blueprint registration.

Call :func:`register_blueprints` during application startup to wire
the OCSP responder and CRL distribution blueprints into the Flask app.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from flask import Flask

log = logging.getLogger(__name__)


def register_blueprints(app: Flask) -> None:
    """Register the enabled blueprints on the Flask application.

    Reads ``api.base_path``, ``ocsp.path`` and ``crl.path`` from the
    app's settings to determine URL prefixes.
    """
    settings = app.config["PRIVCA_SETTINGS"]
    base = settings.api.base_path.rstrip("/")

    # OCSP (optional)
    if settings.ocsp.enabled:
        from privca.api.ocsp import ocsp_bp  # noqa: PLC0415

        app.register_blueprint(
            ocsp_bp,
            url_prefix=base + settings.ocsp.path,
        )

    # CRL distribution (optional)
    if settings.crl.enabled:
        from privca.api.crl import crl_bp  # noqa: PLC0415

        app.register_blueprint(
            crl_bp,
            url_prefix=base + settings.crl.path,
        )

    log.info(
        "Registered API blueprints under base_path=%r (%d URL rules)",
        base,
        len(list(app.url_map.iter_rules())),
    )
