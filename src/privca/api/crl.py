"""CRL distribution endpoints.

``GET /crl/<ca_id>/latest`` returns the newest CRL of a CA and
``GET /crl/<ca_id>/<number>`` a specific one.  ``?format=pem|der``
selects the encoding (DER by default) and ``?mode=delta`` the latest
delta CRL instead of the latest full one.
"""

from __future__ import annotations

import uuid

from flask import Blueprint, make_response, request

from privca.app.context import get_container
from privca.app.errors import MALFORMED, NOT_FOUND, Problem
from privca.core.types import CRLMode

crl_bp = Blueprint("crl", __name__)

_CRL_CONTENT_TYPE = "application/x-pkcs7-crl"


def _query_format() -> str:
    fmt = request.args.get("format", "der").lower()
    if fmt not in {"pem", "der"}:
        raise Problem(MALFORMED, f"Unsupported CRL format {fmt!r}; use pem or der", 400)
    return fmt


def _send(crl, fmt: str):
    container = get_container()
    body = container.exporter.export_crl(crl, fmt)
    response = make_response(body)
    response.headers["Content-Type"] = _CRL_CONTENT_TYPE
    suffix = "pem" if fmt == "pem" else "crl"
    response.headers["Content-Disposition"] = (
        f'attachment; filename="ca-{crl.ca_id}-{crl.crl_number}.{suffix}"'
    )
    response.headers["Cache-Control"] = f"public, max-age={container.settings.crl.cache_seconds}"
    response.headers["Last-Modified"] = crl.this_update.strftime("%a, %d %b %Y %H:%M:%S GMT")
    return response


@crl_bp.route("/<uuid:ca_id>/latest", methods=["GET"])
def get_latest_crl(ca_id: uuid.UUID):
    """Return the latest full (or, with ``?mode=delta``, delta) CRL.

    When a CA has never published a full CRL, one is generated on demand.
    """
    fmt = _query_format()
    try:
        mode = CRLMode(request.args.get("mode", CRLMode.FULL.value).lower())
    except ValueError:
        raise Problem(MALFORMED, "mode must be 'full' or 'delta'", 400) from None

    container = get_container()
    container.lifecycle.get_ca(ca_id)
    crl = container.crl.latest_crl(ca_id, mode)
    if crl is None and mode == CRLMode.FULL:
        crl = container.crl.generate_crl(ca_id, CRLMode.FULL, actor="crl-endpoint")
    if crl is None:
        raise Problem(NOT_FOUND, f"No {mode.value} CRL published for CA {ca_id}", 404)
    return _send(crl, fmt)


@crl_bp.route("/<uuid:ca_id>/<int:crl_number>", methods=["GET"])
def get_crl_by_number(ca_id: uuid.UUID, crl_number: int):
    """Return one CRL from the history by its CRL number."""
    fmt = _query_format()
    container = get_container()
    crl = container.crl.get_crl(ca_id, crl_number)
    if crl is None:
        raise Problem(NOT_FOUND, f"CRL {crl_number} of CA {ca_id} not found", 404)
    return _send(crl, fmt)
