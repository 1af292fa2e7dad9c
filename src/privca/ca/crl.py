"""Revocation bookkeeping and CRL generation.

Revocations are stored as one :class:`RevocationRecord` per serial and CA.
CRLs are built on demand (and, by default, after every revocation),
numbered from the CA's monotonic counter through
:meth:`PKIStore.allocate_crl`, and kept as history for the
distribution endpoint.
"""

from __future__ import annotations

import logging
import uuid
from datetime import UTC, datetime, timedelta
from typing import TYPE_CHECKING, Any

from cryptography import x509
from cryptography.exceptions import InvalidSignature
from cryptography.hazmat.primitives import serialization
from cryptography.x509 import (
    CertificateRevocationListBuilder,
    RevokedCertificateBuilder,
)

from privca.ca.base import (
    AlreadyRevoked,
    CANotActive,
    CertificateNotFound,
    SigningError,
    ValidationError,
)
from privca.ca.cert_utils import (
    authority_key_identifier,
    format_name,
    format_serial,
    signing_hash,
)
from privca.ca.lifecycle import resolve_url
from privca.core.state import CERTIFICATE_TRANSITIONS, assert_transition, log_transition
from privca.core.types import CertificateStatus, CRLMode, RevocationReason
from privca.hooks.audit import AuditTrail
from privca.logging import security_events
from privca.models.crl import CRLIssuance
from privca.models.revocation import RevocationRecord

if TYPE_CHECKING:
    from cryptography.hazmat.primitives.asymmetric.types import (
        CertificateIssuerPrivateKeyTypes,
    )

    from privca.ca.lifecycle import CALifecycleManager
    from privca.config.settings import PrivcaSettings
    from privca.models import CAIdentity
    from privca.store.base import PKIStore

log = logging.getLogger(__name__)

_HEX_BASE = 16

REASON_FLAGS: dict[RevocationReason, x509.ReasonFlags] = {
    RevocationReason.UNSPECIFIED: x509.ReasonFlags.unspecified,
    RevocationReason.KEY_COMPROMISE: x509.ReasonFlags.key_compromise,
    RevocationReason.CA_COMPROMISE: x509.ReasonFlags.ca_compromise,
    RevocationReason.AFFILIATION_CHANGED: x509.ReasonFlags.affiliation_changed,
    RevocationReason.SUPERSEDED: x509.ReasonFlags.superseded,
    RevocationReason.CESSATION_OF_OPERATION: x509.ReasonFlags.cessation_of_operation,
    RevocationReason.CERTIFICATE_HOLD: x509.ReasonFlags.certificate_hold,
    RevocationReason.REMOVE_FROM_CRL: x509.ReasonFlags.remove_from_crl,
    RevocationReason.PRIVILEGE_WITHDRAWN: x509.ReasonFlags.privilege_withdrawn,
    RevocationReason.AA_COMPROMISE: x509.ReasonFlags.aa_compromise,
}


def load_crl(data: bytes | str) -> x509.CertificateRevocationList:
    """Parse a PEM or DER CRL.

    Raises
    ------
    ValidationError
        If *data* is not a CRL.

    """
    raw = data.encode("ascii") if isinstance(data, str) else data
    try:
        if raw.lstrip().startswith(b"-----BEGIN"):
            return x509.load_pem_x509_crl(raw)
        return x509.load_der_x509_crl(raw)
    except ValueError as exc:
        msg = f"Invalid CRL: {exc}"
        raise ValidationError(msg) from exc


class CRLGenerator:
    """Revoke certificates and publish CRLs.

    Parameters
    ----------
    store:
        Persistence backend.
    lifecycle:
        Source of CA signing material.
    settings:
        Full application settings (``crl`` section).
    audit:
        Audit trail; events are dropped when omitted.

    """

    def __init__(
        self,
        store: PKIStore,
        lifecycle: CALifecycleManager,
        settings: PrivcaSettings,
        audit: AuditTrail | None = None,
    ) -> None:
        self._store = store
        self._lifecycle = lifecycle
        self._settings = settings
        self._audit = audit or AuditTrail(None)

    # -- revocation ----------------------------------------------------------

    def revoke_certificate(
        self,
        serial_number: str,
        reason: RevocationReason | int | str,
        revoked_by: str,
        *,
        ca_id: uuid.UUID | None = None,
    ) -> RevocationRecord:
        """Revoke a certificate by serial number.

        Raises
        ------
        CertificateNotFound
            If no certificate has the serial.
        AlreadyRevoked
            If it is already revoked; no second record is written.
        ValidationError
            If *reason* is not an RFC 5280 reason code.

        """
        try:
            code = RevocationReason.parse(reason)
        except ValueError as exc:
            raise ValidationError(str(exc)) from exc

        serial = serial_number.replace(":", "").strip().upper()
        cert = self._store.find_certificate(serial, ca_id)
        if cert is None:
            msg = f"Certificate {serial_number} not found"
            raise CertificateNotFound(msg)
        if cert.status == CertificateStatus.REVOKED:
            security_events.duplicate_revocation(serial, revoked_by)
            msg = f"Certificate {serial} is already revoked"
            raise AlreadyRevoked(msg)
        assert_transition(cert.status, CertificateStatus.REVOKED, CERTIFICATE_TRANSITIONS)

        record = RevocationRecord(
            id=uuid.uuid4(),
            serial_number=serial,
            certificate_id=cert.id,
            ca_id=cert.ca_id,
            revocation_date=datetime.now(UTC),
            reason=code,
            revoked_by=revoked_by,
        )
        try:
            record = self._store.revoke(record)
        except AlreadyRevoked:
            security_events.duplicate_revocation(serial, revoked_by)
            raise

        log_transition(
            "certificate",
            serial,
            cert.status,
            CertificateStatus.REVOKED,
            reason=code.name.lower(),
        )
        security_events.certificate_revoked(cert.ca_id, serial, code.name, revoked_by)
        self._audit.record(
            "certificate.revocation",
            actor=revoked_by,
            description=f"Revoked certificate {serial} ({code.name.lower()})",
            metadata={"ca_id": cert.ca_id, "serial_number": serial, "reason": code.value},
        )

        if self._settings.crl.generate_on_revoke:
            try:
                self.generate_crl(cert.ca_id, CRLMode.FULL, actor=revoked_by)
            except Exception:  # noqa: BLE001
                log.warning(
                    "CRL regeneration after revoking %s failed; the revocation stands",
                    serial,
                    exc_info=True,
                )
        return record

    # -- generation ----------------------------------------------------------

    def generate_crl(
        self,
        ca_id: uuid.UUID,
        mode: CRLMode | str = CRLMode.FULL,
        *,
        actor: str = "system",
    ) -> CRLIssuance:
        """Build, sign and persist a full or delta CRL.

        A full CRL lists every revocation whose certificate is still
        within ``crl.retention_days_after_expiry`` of its expiry.  A
        delta CRL lists revocations made after the latest full CRL and
        names that CRL's number in its Delta CRL Indicator.

        Raises
        ------
        CANotActive
            If the CA is not ACTIVE.
        ValidationError
            For an unknown mode, or a delta CRL with no full CRL yet.
        SigningError
            If building or signing the CRL fails.

        """
        try:
            crl_mode = CRLMode(str(mode).lower())
        except ValueError:
            msg = f"Unknown CRL mode {mode!r}; use 'full' or 'delta'"
            raise ValidationError(msg) from None

        ca = self._lifecycle.get_ca(ca_id)
        ca_cert, ca_key = self._lifecycle.signing_material(ca)
        retention = timedelta(days=self._settings.crl.retention_days_after_expiry)

        # Reads run under the per-CA allocation lock so a later number never
        # carries an older snapshot.
        def build(number: int) -> CRLIssuance:
            now = datetime.now(UTC)
            base: CRLIssuance | None = None
            if crl_mode == CRLMode.DELTA:
                base = self._store.latest_crl(ca_id, CRLMode.FULL)
                if base is None:
                    msg = f"CA {ca_id} has no full CRL to base a delta CRL on"
                    raise ValidationError(msg)
                records = self._store.revocations_for_crl(
                    ca_id,
                    revoked_after=base.this_update,
                )
            else:
                records = self._store.revocations_for_crl(ca_id, valid_after=now - retention)
            return self._build(ca, ca_cert, ca_key, number, crl_mode, records, base, now)

        crl = self._store.allocate_crl(ca_id, build)

        log.info(
            "Generated %s CRL #%d for CA %s: %d entries, next update %s",
            crl_mode.value,
            crl.crl_number,
            ca_id,
            crl.revoked_count,
            crl.next_update.isoformat(),
        )
        security_events.crl_generated(ca_id, crl.crl_number, crl_mode.value, crl.revoked_count)
        self._audit.record(
            "crl.generation",
            actor=actor,
            description=f"Generated {crl_mode.value} CRL #{crl.crl_number}",
            metadata={
                "ca_id": ca_id,
                "crl_number": crl.crl_number,
                "mode": crl_mode.value,
                "revoked_count": crl.revoked_count,
                "next_update": crl.next_update,
            },
        )
        return crl

    def _build(  # noqa: PLR0913
        self,
        ca: CAIdentity,
        ca_cert: x509.Certificate,
        ca_key: CertificateIssuerPrivateKeyTypes,
        number: int,
        mode: CRLMode,
        records: list[RevocationRecord],
        base: CRLIssuance | None,
        now: datetime,
    ) -> CRLIssuance:
        next_update = now + timedelta(seconds=self._settings.crl.next_update_seconds)
        crl_url = ca.crl_distribution_url or resolve_url(
            self._settings.ca.crl_distribution_url,
            ca.id,
        )
        try:
            builder = (
                CertificateRevocationListBuilder()
                .issuer_name(ca_cert.subject)
                .last_update(now)
                .next_update(next_update)
                .add_extension(x509.CRLNumber(number), critical=False)
                .add_extension(authority_key_identifier(ca_cert), critical=False)
                .add_extension(
                    x509.IssuingDistributionPoint(
                        full_name=[x509.UniformResourceIdentifier(crl_url)] if crl_url else None,
                        relative_name=None,
                        only_contains_user_certs=True,
                        only_contains_ca_certs=False,
                        only_some_reasons=None,
                        indirect_crl=False,
                        only_contains_attribute_certs=False,
                    ),
                    critical=True,
                )
            )
            if base is not None:
                builder = builder.add_extension(
                    x509.DeltaCRLIndicator(base.crl_number),
                    critical=True,
                )
            for record in records:
                entry = (
                    RevokedCertificateBuilder()
                    .serial_number(int(record.serial_number, _HEX_BASE))
                    .revocation_date(record.revocation_date)
                )
                # RFC 5280 5.3.1: omit the extension rather than encode unspecified
                if record.reason != RevocationReason.UNSPECIFIED:
                    entry = entry.add_extension(
                        x509.CRLReason(REASON_FLAGS[record.reason]),
                        critical=False,
                    )
                builder = builder.add_revoked_certificate(entry.build())
            crl = builder.sign(ca_key, signing_hash(ca_key, self._settings.crl.hash_algorithm))  # type: ignore[arg-type]
        except Exception as exc:
            msg = f"Failed to sign CRL #{number}: {type(exc).__name__}"
            raise SigningError(msg) from exc

        return CRLIssuance(
            id=uuid.uuid4(),
            ca_id=ca.id,
            crl_number=number,
            mode=mode,
            crl_der=crl.public_bytes(serialization.Encoding.DER),
            crl_pem=crl.public_bytes(serialization.Encoding.PEM).decode("ascii"),
            this_update=now,
            next_update=next_update,
            revoked_count=len(records),
            base_crl_number=base.crl_number if base is not None else None,
            created_at=now,
        )

    # -- history -------------------------------------------------------------

    def latest_crl(self, ca_id: uuid.UUID, mode: CRLMode | str | None = None) -> CRLIssuance | None:
        return self._store.latest_crl(ca_id, CRLMode(str(mode).lower()) if mode else None)

    def get_crl(self, ca_id: uuid.UUID, crl_number: int) -> CRLIssuance | None:
        return self._store.get_crl(ca_id, crl_number)

    def cleanup_crls(self, ca_id: uuid.UUID) -> int:
        """Drop CRL history older than ``crl.history_retention_days``.

        The latest full CRL is always kept as the base for delta CRLs.
        """
        cutoff = datetime.now(UTC) - timedelta(days=self._settings.crl.history_retention_days)
        latest_full = self._store.latest_crl(ca_id, CRLMode.FULL)
        removed = self._store.delete_crls_before(
            ca_id,
            cutoff,
            latest_full.id if latest_full is not None else None,
        )
        if removed:
            log.info(
                "Removed %d CRL(s) older than %s for CA %s",
                removed,
                cutoff.isoformat(),
                ca_id,
            )
        return removed

    # -- inspection ----------------------------------------------------------

    @staticmethod
    def crl_info(crl: CRLIssuance | bytes | str) -> dict[str, Any]:
        """Summarise a CRL: issuer, number, dates and entries."""
        parsed = load_crl(crl.crl_der if isinstance(crl, CRLIssuance) else crl)
        try:
            number: int | None = parsed.extensions.get_extension_for_class(
                x509.CRLNumber,
            ).value.crl_number
        except x509.ExtensionNotFound:
            number = None
        try:
            delta_base: int | None = parsed.extensions.get_extension_for_class(
                x509.DeltaCRLIndicator,
            ).value.crl_number
        except x509.ExtensionNotFound:
            delta_base = None

        entries = []
        for revoked in parsed:
            try:
                ext = revoked.extensions.get_extension_for_class(x509.CRLReason)
                reason = ext.value.reason.name
            except x509.ExtensionNotFound:
                reason = x509.ReasonFlags.unspecified.name
            entries.append(
                {
                    "serial_number": format_serial(revoked.serial_number),
                    "revocation_date": revoked.revocation_date_utc.isoformat(),
                    "reason": reason,
                },
            )
        return {
            "issuer": format_name(parsed.issuer),
            "crl_number": number,
            "delta_base": delta_base,
            "this_update": parsed.last_update_utc.isoformat(),
            "next_update": parsed.next_update_utc.isoformat() if parsed.next_update_utc else None,
            "signature_hash": getattr(parsed.signature_hash_algorithm, "name", None),
            "revoked_count": len(entries),
            "entries": entries,
        }

    def validate_crl(self, ca_id: uuid.UUID, data: bytes | str) -> dict[str, Any]:
        """Check a CRL against a CA: issuer, signature, freshness, extensions.

        Returns
        -------
        dict
            ``{"valid": bool, "issues": [...], "crl_number": int | None}``.

        Raises
        ------
        CANotActive
            If the CA has no certificate yet.
        ValidationError
            If *data* is not a CRL.

        """
        ca = self._lifecycle.get_ca(ca_id)
        if not ca.certificate_pem:
            msg = f"CA {ca_id} has no certificate"
            raise CANotActive(msg)
        ca_cert = x509.load_pem_x509_certificate(ca.certificate_pem.encode("ascii"))
        crl = load_crl(data)

        issues: list[str] = []
        if crl.issuer != ca_cert.subject:
            issues.append("CRL issuer does not match the CA subject")
        try:
            signature_ok = crl.is_signature_valid(ca_cert.public_key())  # type: ignore[arg-type]
        except (InvalidSignature, TypeError, ValueError):
            signature_ok = False
        if not signature_ok:
            issues.append("CRL signature does not verify with the CA key")
        next_update = crl.next_update_utc
        if next_update is None:
            issues.append("CRL has no nextUpdate")
        elif next_update < datetime.now(UTC):
            issues.append(f"CRL is stale (nextUpdate {next_update.isoformat()})")

        crl_number = None
        try:
            crl_number = crl.extensions.get_extension_for_class(x509.CRLNumber).value.crl_number
        except x509.ExtensionNotFound:
            issues.append("CRL Number extension is missing")
        try:
            aki = crl.extensions.get_extension_for_class(x509.AuthorityKeyIdentifier).value
        except x509.ExtensionNotFound:
            issues.append("Authority Key Identifier extension is missing")
        else:
            if aki.key_identifier != authority_key_identifier(ca_cert).key_identifier:
                issues.append("Authority Key Identifier does not match the CA key")

        return {"valid": not issues, "issues": issues, "crl_number": crl_number}
