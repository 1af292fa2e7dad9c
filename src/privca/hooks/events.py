"""Canonical audit event definitions.

Single source of truth for all known audit event names and their
corresponding :class:`~privca.hooks.base.Hook` method names.

This module has **zero** internal dependencies; it can be imported
from anywhere without circular import risk.
"""

from __future__ import annotations

EVENT_METHOD_MAP: dict[str, str] = {
    "ca.initialization": "on_ca_initialization",
    "ca.activation": "on_ca_activation",
    "ca.upload_rejected": "on_ca_upload_rejected",
    "ca.deletion": "on_ca_deletion",
    "certificate.issuance": "on_certificate_issuance",
    "certificate.revocation": "on_certificate_revocation",
    "certificate.validation": "on_certificate_validation",
    "certificate.export": "on_certificate_export",
    "crl.generation": "on_crl_generation",
}

KNOWN_EVENTS: frozenset[str] = frozenset(EVENT_METHOD_MAP.keys())
