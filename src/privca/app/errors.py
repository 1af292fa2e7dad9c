"""RFC 7807 Problem Details for the HTTP surface.

Provides :class:`Problem`, an exception that renders itself as an
``application/problem+json`` response, the mapping from engine errors
(:class:`~privca.ca.base.CAError`) to problem types and status codes,
and a Flask error-handler registration function.

Usage::

    raise Problem(MALFORMED, "Unknown CRL format 'txt'", 400)
"""

from __future__ import annotations

import logging
from typing import Any

from flask import Flask, jsonify
from werkzeug.exceptions import HTTPException

from privca.ca.base import (
    AlreadyRevoked,
    CAError,
    CANotActive,
    CANotFound,
    CertificateNotFound,
    ValidationError,
)

log = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Problem types
# ---------------------------------------------------------------------------
_P = "urn:privca:error:"

ALREADY_REVOKED = _P + "alreadyRevoked"
CA_NOT_ACTIVE = _P + "caNotActive"
MALFORMED = _P + "malformed"
NOT_FOUND = _P + "notFound"
SERVER_INTERNAL = _P + "serverInternal"

# Content type for RFC 7807 responses
PROBLEM_CONTENT_TYPE = "application/problem+json"


# ---------------------------------------------------------------------------
# Problem exception
# ---------------------------------------------------------------------------


class Problem(Exception):  # noqa: N818
    """An RFC 7807 *problem details* object that doubles as an exception.

    Parameters
    ----------
    error_type:
        A URN string (one of the constants above) or ``"about:blank"``
        for generic HTTP errors.
    detail:
        Human-readable explanation of the problem.
    status:
        HTTP status code (default 400).
    title:
        Short summary; omitted when *error_type* is self-explanatory.
    headers:
        Extra HTTP headers to include on the response
        (e.g. ``Retry-After``).

    """

    def __init__(
        self,
        error_type: str,
        detail: str,
        status: int = 400,
        *,
        title: str | None = None,
        headers: dict[str, str] | None = None,
    ) -> None:
        self.error_type = error_type
        self.detail = detail
        self.status = status
        self.title = title
        self.extra_headers = headers or {}
        super().__init__(detail)

    def to_dict(self) -> dict[str, Any]:
        """Serialise to the RFC 7807 JSON structure."""
        body: dict[str, Any] = {
            "type": self.error_type,
            "detail": self.detail,
            "status": self.status,
        }
        if self.title is not None:
            body["title"] = self.title
        return body

    def to_response(self):
        """Build a Flask :class:`~flask.Response`."""
        resp = jsonify(self.to_dict())
        resp.status_code = self.status
        resp.headers["Content-Type"] = PROBLEM_CONTENT_TYPE
        resp.headers["Cache-Control"] = "no-store"
        for key, value in self.extra_headers.items():
            resp.headers[key] = value
        return resp


def problem_from_error(exc: CAError) -> Problem:
    """Map an engine error to a problem.

    Validation and policy failures carry their message; crypto, vault
    and storage failures are reported opaquely.
    """
    if isinstance(exc, (CANotFound, CertificateNotFound)):
        return Problem(NOT_FOUND, exc.detail, 404)
    if isinstance(exc, ValidationError):
        return Problem(MALFORMED, exc.detail, 400)
    if isinstance(exc, AlreadyRevoked):
        return Problem(ALREADY_REVOKED, exc.detail, 409)
    if isinstance(exc, CANotActive):
        return Problem(CA_NOT_ACTIVE, exc.detail, 503, headers={"Retry-After": "60"})
    headers = {"Retry-After": "5"} if exc.retryable else None
    return Problem(
        SERVER_INTERNAL,
        "The certificate authority could not complete the operation",
        500,
        headers=headers,
    )


# ---------------------------------------------------------------------------
# Flask error handler registration
# ---------------------------------------------------------------------------


def register_error_handlers(app: Flask) -> None:
    """Attach handlers that produce RFC 7807 responses for all errors."""

    @app.errorhandler(Problem)
    def _handle_problem(exc: Problem):
        return exc.to_response()

    @app.errorhandler(CAError)
    def _handle_ca_error(exc: CAError):
        problem = problem_from_error(exc)
        if problem.status >= 500:  # noqa: PLR2004
            log.error("%s: %s", type(exc).__name__, exc.detail, exc_info=exc)
        return problem.to_response()

    @app.errorhandler(HTTPException)
    def _handle_http_exception(exc: HTTPException):
        problem = Problem(
            "about:blank",
            exc.description or "An error occurred",
            exc.code or 500,
            title=exc.name,
        )
        return problem.to_response()

    @app.errorhandler(Exception)
    def _handle_unhandled(exc: Exception):
        # HTTPException subclasses are already caught above; this
        # handler covers everything else (genuine 500s).
        log.exception("Unhandled exception during request")
        problem = Problem(
            SERVER_INTERNAL,
            "An unexpected internal error occurred",
            500,
        )
        return problem.to_response()
