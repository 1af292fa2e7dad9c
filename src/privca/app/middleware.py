"""Flask request lifecycle hooks for PRIVCA.

Registered via :func:`register_request_hooks`:
    * ``X-Request-ID`` passthrough, generated when the client sends none
    * Security headers on every response
    * One access-log record per request on ``privca.access``, carrying
      the request and response sizes of the binary OCSP/CRL exchanges
"""

from __future__ import annotations

import logging
import time
from typing import TYPE_CHECKING
from uuid import uuid4

from flask import Flask, g, request

if TYPE_CHECKING:
    from flask import Response

log = logging.getLogger(__name__)
access_log = logging.getLogger("privca.access")

_SECURITY_HEADERS = {
    "X-Content-Type-Options": "nosniff",
    "X-Frame-Options": "DENY",
    "Content-Security-Policy": "default-src 'none'; frame-ancestors 'none'",
}

# Load balancer probes would otherwise dominate the access log
_PROBE_PATHS = frozenset({"/livez", "/readyz"})


def register_request_hooks(app: Flask) -> None:
    """Register the before/after request hooks on *app*."""

    @app.before_request
    def _start_request() -> None:
        g.request_id = request.headers.get("X-Request-ID") or uuid4().hex
        g.start_time = time.monotonic()

    @app.after_request
    def _finish_request(response: Response) -> Response:
        response.headers.update(_SECURITY_HEADERS)
        request_id = getattr(g, "request_id", None)
        if request_id:
            response.headers["X-Request-ID"] = request_id
        _log_access(response)
        return response


def _access_level(status: int) -> int:
    if status >= 500:
        return logging.ERROR
    if status >= 400:
        return logging.WARNING
    if request.path in _PROBE_PATHS:
        return logging.DEBUG
    return logging.INFO


def _log_access(response: Response) -> None:
    start = getattr(g, "start_time", None)
    duration_ms = 0.0 if start is None else (time.monotonic() - start) * 1000
    status = response.status_code
    access_log.log(
        _access_level(status),
        "%s %s %s %.1fms",
        request.method,
        request.path,
        status,
        duration_ms,
        extra={
            "method": request.method,
            "path": request.path,
            "status": status,
            "duration_ms": round(duration_ms, 1),
            "request_bytes": request.content_length,
            "response_bytes": response.content_length,
            "content_type": response.mimetype,
        },
    )
