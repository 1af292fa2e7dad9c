"""Structured security event logger.

Emits standardized security events for SIEM integration.
All events are logged to the ``privca.security`` logger with
a consistent ``event_id`` field for filtering and alerting.

Sensitive material (PEM bodies, encrypted key envelopes, passwords)
is automatically redacted via
:func:`~privca.logging.sanitize.sanitize_for_logs` before emission.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any

from privca.logging.sanitize import sanitize_for_logs

if TYPE_CHECKING:
    from uuid import UUID

security_log = logging.getLogger("privca.security")


def _emit(
    event_id: str,
    message: str,
    *args: Any,  # noqa: ANN401
    ca_id: UUID | None = None,
    severity: str = "INFO",
    **extra: Any,  # noqa: ANN401
) -> None:
    """Emit a structured security event.

    All *extra* keyword arguments are sanitized to redact
    cryptographic material before logging.
    """
    sanitized_extra = sanitize_for_logs(extra)
    data: dict[str, object] = {
        "event_id": event_id,
        "severity": severity,
    }
    if ca_id is not None:
        data["ca_id"] = str(ca_id)
    data.update(sanitized_extra)
    level = getattr(logging, severity.upper(), logging.INFO)
    security_log.log(level, message, *args, extra=data)


def development_key_in_use(environment: str) -> None:
    """Log that the vault fell back to the fixed development master key."""
    _emit(
        "privca.security.vault_development_key",
        "No vault master key configured; using the development key (environment=%s)",
        environment,
        severity="WARNING",
    )


def ca_initialized(ca_id: UUID, name: str, algorithm: str, actor: str) -> None:
    """Log generation of a new CA key pair and CSR."""
    _emit(
        "privca.security.ca_initialized",
        "CA initialised: %s (%s) by %s",
        name,
        algorithm,
        actor,
        ca_id=ca_id,
    )


def ca_activated(ca_id: UUID, method: str, not_after: str, actor: str) -> None:
    """Log activation of a CA by self-signing or certificate upload."""
    _emit(
        "privca.security.ca_activated",
        "CA activated via %s, valid until %s, by %s",
        method,
        not_after,
        actor,
        ca_id=ca_id,
        severity="WARNING",
    )


def ca_upload_rejected(ca_id: UUID, reason: str, actor: str) -> None:
    """Log rejection of an uploaded CA certificate."""
    _emit(
        "privca.security.ca_upload_rejected",
        "CA certificate upload rejected: %s",
        reason,
        ca_id=ca_id,
        actor=actor,
        severity="WARNING",
    )


def ca_deleted(ca_id: UUID, name: str, actor: str) -> None:
    """Log administrative deletion of a CA and its dependents."""
    _emit(
        "privca.security.ca_deleted",
        "CA deleted: %s by %s",
        name,
        actor,
        ca_id=ca_id,
        severity="WARNING",
    )


def certificate_issued(
    ca_id: UUID,
    serial_number: str,
    subject_dn: str,
    requested_by: str,
) -> None:
    """Log issuance of a new certificate."""
    _emit(
        "privca.security.certificate_issued",
        "Certificate issued: serial=%s, subject=%s",
        serial_number,
        subject_dn,
        ca_id=ca_id,
        requested_by=requested_by,
    )


def certificate_revoked(
    ca_id: UUID,
    serial_number: str,
    reason: str,
    revoked_by: str,
) -> None:
    """Log revocation of a certificate."""
    _emit(
        "privca.security.certificate_revoked",
        "Certificate revoked: serial=%s, reason=%s",
        serial_number,
        reason,
        ca_id=ca_id,
        revoked_by=revoked_by,
        severity="WARNING",
    )


def duplicate_revocation(serial_number: str, revoked_by: str) -> None:
    """Log a revocation attempt for an already-revoked certificate."""
    _emit(
        "privca.security.duplicate_revocation",
        "Revocation refused, already revoked: serial=%s",
        serial_number,
        revoked_by=revoked_by,
        severity="WARNING",
    )


def crl_generated(ca_id: UUID, crl_number: int, mode: str, revoked_count: int) -> None:
    """Log publication of a new CRL."""
    _emit(
        "privca.security.crl_generated",
        "CRL generated: number=%d, mode=%s, entries=%d",
        crl_number,
        mode,
        revoked_count,
        ca_id=ca_id,
    )


def key_decryption_failed(ca_id: UUID | None, purpose: str) -> None:
    """Log a failure to decrypt stored private key material."""
    _emit(
        "privca.security.key_decryption_failed",
        "Private key decryption failed (%s)",
        purpose,
        ca_id=ca_id,
        severity="ERROR",
    )


def private_key_exported(ca_id: UUID, serial_number: str, fmt: str) -> None:
    """Log export of a certificate together with its private key."""
    _emit(
        "privca.security.private_key_exported",
        "Private key exported: serial=%s, format=%s",
        serial_number,
        fmt,
        ca_id=ca_id,
        severity="WARNING",
    )
