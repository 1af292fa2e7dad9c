"""OCSP responder endpoint.

POST /ocsp: submit DER OCSP request in body
GET /ocsp/<encoded>: submit base64-encoded OCSP request in URL (RFC 6960 §A.1)
"""

from __future__ import annotations

import base64
import binascii
import logging
from urllib.parse import unquote

from flask import Blueprint, make_response, request

from privca.app.context import get_container
from privca.app.errors import MALFORMED, Problem

log = logging.getLogger(__name__)

ocsp_bp = Blueprint("ocsp", __name__)

_OCSP_CONTENT_TYPE = "application/ocsp-response"


def _respond(ocsp_request_der: bytes):
    container = get_container()
    if container.ocsp is None:
        raise Problem("about:blank", "OCSP is not enabled", status=503)

    response_der = container.ocsp.handle_request(ocsp_request_der)

    resp = make_response(response_der)
    resp.headers["Content-Type"] = _OCSP_CONTENT_TYPE
    resp.headers["Cache-Control"] = "no-cache"
    return resp


@ocsp_bp.route("", methods=["POST"])
def ocsp_post():
    """POST /ocsp: process a DER-encoded OCSP request."""
    ocsp_request_der = request.get_data()
    if not ocsp_request_der:
        raise Problem(MALFORMED, "Empty OCSP request body", status=400)
    return _respond(ocsp_request_der)


@ocsp_bp.route("/<path:encoded>", methods=["GET"])
def ocsp_get(encoded: str):
    """GET /ocsp/<encoded>: process a base64-encoded OCSP request.

    Accepts both the standard and the URL-safe alphabet, with or
    without padding and percent-encoding.
    """
    text = unquote(encoded).replace("-", "+").replace("_", "/")
    try:
        ocsp_request_der = base64.b64decode(text + "=" * (-len(text) % 4), validate=True)
    except (binascii.Error, ValueError):
        raise Problem(MALFORMED, "Invalid base64 encoding", status=400) from None
    if not ocsp_request_der:
        raise Problem(MALFORMED, "Empty OCSP request", status=400)
    return _respond(ocsp_request_der)
