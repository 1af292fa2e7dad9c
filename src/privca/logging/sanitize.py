"""Sensitive data sanitization for log output.

Provides :func:`sanitize_for_logs` which redacts cryptographic material
(PEM bodies, encrypted key envelopes, passwords) from data structures
before they are written to log files or sent to audit hooks.  Only
metadata (serial numbers, subjects, lengths) is preserved.
"""

from __future__ import annotations

import re
from typing import Any

# Mapping keys whose values are always secret, whatever their type
_SECRET_FIELDS = frozenset(
    {
        "private_key",
        "private_key_pem",
        "encrypted_private_key",
        "master_key",
        "password",
        "ciphertext",
        "auth_tag",
        "iv",
    }
)

# Regex matching the base64 body inside PEM blocks
_PEM_BODY_RE = re.compile(
    r"(-----BEGIN [A-Z0-9 ]+-----)"
    r"([\s\S]*?)"
    r"(-----END [A-Z0-9 ]+-----)",
)


def sanitize_pem(pem: str) -> str:
    """Replace the base64 body of PEM blocks with ``[REDACTED]``.

    Preserves BEGIN/END markers so the type of object is still visible.
    """

    def _redact(m) -> str:
        return f"{m.group(1)}\n[REDACTED]\n{m.group(3)}"

    return _PEM_BODY_RE.sub(_redact, pem)


def sanitize_for_logs(data: Any) -> Any:
    """Recursively sanitize sensitive material in *data*.

    Handles dicts (secret field names, PEM strings in values), lists,
    bytes (replaced by their length) and plain strings.  Non-sensitive
    data passes through unchanged.
    """
    if isinstance(data, dict):
        return {
            k: "[REDACTED]" if k in _SECRET_FIELDS and v is not None else sanitize_for_logs(v)
            for k, v in data.items()
        }

    if isinstance(data, (list, tuple)):
        return type(data)(sanitize_for_logs(item) for item in data)

    if isinstance(data, (bytes, bytearray)):
        return f"<{len(data)} bytes>"

    if isinstance(data, str):
        if "-----BEGIN " in data:
            return sanitize_pem(data)
        return data

    return data
