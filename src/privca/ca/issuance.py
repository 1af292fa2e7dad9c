"""End-entity certificate issuance.

Builds X.509 certificates from a CSR or from inline parameters (in
which case the key pair is generated here), stamps the extensions of
the requested :mod:`certificate policy <privca.ca.profiles>`, signs
with the CA key from the lifecycle manager and records the result in
the store.
"""

from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass, field
from datetime import UTC, datetime, timedelta
from typing import TYPE_CHECKING

from cryptography import x509
from cryptography.hazmat.primitives.asymmetric import rsa

from privca.ca.base import (
    CertificateNotFound,
    IssuanceResult,
    SigningError,
    UnsupportedAlgorithm,
    ValidationError,
)
from privca.ca.cert_utils import (
    authority_key_identifier,
    build_eku,
    build_key_usage,
    certificate_fingerprint,
    common_name,
    describe_public_key,
    format_name,
    format_serial,
    generate_serial,
    is_hostname,
    parse_dn,
    parse_sans,
    san_to_string,
    signing_hash,
    to_pem,
)
from privca.ca.lifecycle import resolve_url, revocation_extensions
from privca.ca.profiles import CertificatePolicy, policy_for
from privca.core.state import CERTIFICATE_TRANSITIONS, assert_transition, log_transition
from privca.core.types import CertificateStatus, CertificateType, KeyAlgorithm
from privca.hooks.audit import AuditTrail
from privca.logging import security_events
from privca.models.certificate import IssuedCertificate

if TYPE_CHECKING:
    from cryptography.hazmat.primitives.asymmetric.types import (
        CertificateIssuerPrivateKeyTypes,
        CertificatePublicKeyTypes,
    )

    from privca.ca.lifecycle import CALifecycleManager
    from privca.ca.vault import KeyVault
    from privca.config.settings import PrivcaSettings
    from privca.models import CAIdentity, EncryptedKey
    from privca.store.base import PKIStore

log = logging.getLogger(__name__)


@dataclass(frozen=True)
class IssuanceRequest:
    """What to issue.

    Either ``csr_pem`` or ``subject_dn`` must be given.  With a CSR the
    subject and public key come from it and ``sans`` are added to the
    CSR's own SANs; without one a key pair is generated.
    """

    certificate_type: CertificateType | str = CertificateType.SERVER
    validity_days: int | None = None
    csr_pem: str | None = None
    subject_dn: str | None = None
    key_algorithm: str = "RSA"
    key_size: int | None = None
    curve: str | None = None
    sans: tuple[str, ...] = field(default_factory=tuple)


@dataclass(frozen=True)
class _Subject:
    name: x509.Name
    public_key: CertificatePublicKeyTypes
    sans: list[x509.GeneralName]
    private_key_pem: str | None = None


class IssuanceEngine:
    """Issue, renew and look up end-entity certificates.

    Parameters
    ----------
    store:
        Persistence backend.
    vault:
        Key generation and sealing of server-generated keys.
    lifecycle:
        Source of CA signing material.
    settings:
        Full application settings (``ca`` section).
    audit:
        Audit trail; events are dropped when omitted.

    """

    def __init__(
        self,
        store: PKIStore,
        vault: KeyVault,
        lifecycle: CALifecycleManager,
        settings: PrivcaSettings,
        audit: AuditTrail | None = None,
    ) -> None:
        self._store = store
        self._vault = vault
        self._lifecycle = lifecycle
        self._settings = settings
        self._audit = audit or AuditTrail(None)

    # -- issuance ------------------------------------------------------------

    def issue_certificate(
        self,
        request: IssuanceRequest,
        ca_id: uuid.UUID,
        requested_by: str,
    ) -> IssuanceResult:
        """Issue one certificate.

        The server-generated private key, if any, is returned only here;
        the store keeps its encrypted form.

        Raises
        ------
        CANotActive
            If the CA is not ACTIVE.
        ValidationError
            For a bad CSR or DN, invalid SANs, a missing SAN on a server
            certificate, or a validity that is non-positive, too long,
            or outlives the CA certificate.
        KeyGenerationError
            If generating the key pair fails.
        SigningError
            If signing fails or no free serial could be found.

        """
        policy = policy_for(request.certificate_type)
        days = self._validity_days(request.validity_days)
        ca = self._lifecycle.get_ca(ca_id)
        ca_cert, ca_key = self._lifecycle.signing_material(ca)
        subject = self._resolve_subject(request)
        return self._issue(
            ca=ca,
            ca_cert=ca_cert,
            ca_key=ca_key,
            subject=subject,
            policy=policy,
            days=days,
            requested_by=requested_by,
            encrypted_key=(
                self._vault.encrypt(subject.private_key_pem) if subject.private_key_pem else None
            ),
        )

    def renew_certificate(
        self,
        serial_number: str,
        *,
        requested_by: str,
        validity_days: int | None = None,
    ) -> IssuanceResult:
        """Re-issue a certificate with the same subject, SANs, type and key.

        Raises
        ------
        CertificateNotFound
            If the serial is unknown.
        ValidationError
            If the certificate has been revoked.

        """
        original = self.get_certificate(serial_number)
        if original.status == CertificateStatus.REVOKED:
            msg = f"Certificate {serial_number} is revoked and cannot be renewed"
            raise ValidationError(msg)
        old = x509.load_pem_x509_certificate(original.certificate_pem.encode("ascii"))
        try:
            sans = list(old.extensions.get_extension_for_class(x509.SubjectAlternativeName).value)
        except x509.ExtensionNotFound:
            sans = []

        days = self._validity_days(
            validity_days or (original.valid_to - original.valid_from).days or None,
        )
        ca = self._lifecycle.get_ca(original.ca_id)
        ca_cert, ca_key = self._lifecycle.signing_material(ca)
        result = self._issue(
            ca=ca,
            ca_cert=ca_cert,
            ca_key=ca_key,
            subject=_Subject(name=old.subject, public_key=old.public_key(), sans=sans),  # type: ignore[arg-type]
            policy=policy_for(original.certificate_type),
            days=days,
            requested_by=requested_by,
            encrypted_key=original.encrypted_private_key,
        )
        log.info("Renewed certificate %s as %s", serial_number, result.serial_number)
        return result

    def _issue(  # noqa: PLR0913
        self,
        *,
        ca: CAIdentity,
        ca_cert: x509.Certificate,
        ca_key: CertificateIssuerPrivateKeyTypes,
        subject: _Subject,
        policy: CertificatePolicy,
        days: int,
        requested_by: str,
        encrypted_key: EncryptedKey | None,
    ) -> IssuanceResult:
        now = datetime.now(UTC)
        not_after = now + timedelta(days=days)
        if not_after > ca_cert.not_valid_after_utc:
            msg = (
                f"Requested validity ends {not_after.date().isoformat()}, after the CA "
                f"certificate expires ({ca_cert.not_valid_after_utc.date().isoformat()})"
            )
            raise ValidationError(msg)

        sans = self._effective_sans(subject, policy)
        serial = self._allocate_serial(ca.id)

        crl_url = ca.crl_distribution_url or resolve_url(
            self._settings.ca.crl_distribution_url,
            ca.id,
        )
        ocsp_url = ca.ocsp_url or resolve_url(self._settings.ca.ocsp_url, ca.id)
        try:
            builder = (
                x509.CertificateBuilder()
                .subject_name(subject.name)
                .issuer_name(ca_cert.subject)
                .public_key(subject.public_key)
                .serial_number(serial)
                .not_valid_before(now)
                .not_valid_after(not_after)
                .add_extension(x509.BasicConstraints(ca=False, path_length=None), critical=True)
                .add_extension(build_key_usage(policy.key_usages), critical=True)
                .add_extension(build_eku(policy.extended_key_usages), critical=False)
                .add_extension(
                    x509.CertificatePolicies(
                        [
                            x509.PolicyInformation(
                                x509.ObjectIdentifier(self._settings.ca.policy_oid),
                                None,
                            ),
                        ],
                    ),
                    critical=False,
                )
                .add_extension(authority_key_identifier(ca_cert), critical=False)
                .add_extension(
                    x509.SubjectKeyIdentifier.from_public_key(subject.public_key),
                    critical=False,
                )
            )
            if sans:
                builder = builder.add_extension(x509.SubjectAlternativeName(sans), critical=False)
            for ext in revocation_extensions(crl_url, ocsp_url):
                builder = builder.add_extension(ext, critical=False)
            cert = builder.sign(ca_key, signing_hash(ca_key, self._settings.ca.hash_algorithm))  # type: ignore[arg-type]
        except ValidationError:
            raise
        except Exception as exc:
            msg = f"Failed to sign certificate: {type(exc).__name__}"
            raise SigningError(msg) from exc

        serial_hex = format_serial(serial)
        record = IssuedCertificate(
            id=uuid.uuid4(),
            ca_id=ca.id,
            serial_number=serial_hex,
            fingerprint=certificate_fingerprint(cert),
            subject_dn=format_name(subject.name),
            certificate_type=policy.certificate_type,
            key_algorithm=describe_public_key(subject.public_key)[0],
            status=CertificateStatus.ACTIVE,
            valid_from=cert.not_valid_before_utc,
            valid_to=cert.not_valid_after_utc,
            certificate_pem=to_pem(cert),
            sans=tuple(san_to_string(n) for n in sans),
            encrypted_private_key=encrypted_key,
            requested_by=requested_by,
            created_at=now,
        )
        self._store.add_certificate(record)

        log.info(
            "Issued %s certificate serial=%s subject=%s validity=%d days",
            policy.certificate_type.value,
            serial_hex,
            record.subject_dn,
            days,
        )
        security_events.certificate_issued(ca.id, serial_hex, record.subject_dn, requested_by)
        self._audit.record(
            "certificate.issuance",
            actor=requested_by,
            description=f"Issued {policy.certificate_type.value} certificate {serial_hex}",
            metadata={
                "ca_id": ca.id,
                "certificate_id": record.id,
                "serial_number": serial_hex,
                "subject_dn": record.subject_dn,
                "certificate_type": policy.certificate_type.value,
                "valid_to": record.valid_to,
            },
        )
        return IssuanceResult(
            certificate_id=record.id,
            serial_number=serial_hex,
            certificate_pem=record.certificate_pem,
            fingerprint=record.fingerprint,
            private_key_pem=subject.private_key_pem,
            valid_from=record.valid_from,
            valid_to=record.valid_to,
        )

    # -- request handling ----------------------------------------------------

    def _validity_days(self, requested: int | None) -> int:
        days = requested if requested is not None else self._settings.ca.default_validity_days
        if days <= 0:
            msg = "validity_days must be positive"
            raise ValidationError(msg)
        if days > self._settings.ca.max_validity_days:
            msg = (
                f"validity_days {days} exceeds the maximum of "
                f"{self._settings.ca.max_validity_days}"
            )
            raise ValidationError(msg)
        return days

    def _resolve_subject(self, request: IssuanceRequest) -> _Subject:
        extra_sans = parse_sans(request.sans)
        if request.csr_pem:
            return self._subject_from_csr(request, extra_sans)
        if not request.subject_dn:
            msg = "Either csr_pem or subject_dn is required"
            raise ValidationError(msg)

        algorithm = str(request.key_algorithm).upper()
        if algorithm not in {KeyAlgorithm.RSA.value, KeyAlgorithm.ECDSA.value}:
            msg = (
                f"Unsupported key algorithm {request.key_algorithm!r} for issuance; "
                "use RSA or ECDSA"
            )
            raise UnsupportedAlgorithm(msg)
        name = parse_dn(request.subject_dn)
        if (
            algorithm == KeyAlgorithm.RSA.value
            and request.key_size is not None
            and request.key_size < self._settings.ca.min_rsa_key_size
        ):
            msg = (
                f"RSA key size {request.key_size} is below the minimum of "
                f"{self._settings.ca.min_rsa_key_size}"
            )
            raise ValidationError(msg)
        pair = self._vault.generate_key_pair(algorithm, request.key_size, request.curve)
        return _Subject(
            name=name,
            public_key=pair.private_key.public_key(),  # type: ignore[arg-type]
            sans=extra_sans,
            private_key_pem=pair.private_key_pem,
        )

    def _subject_from_csr(
        self,
        request: IssuanceRequest,
        extra_sans: list[x509.GeneralName],
    ) -> _Subject:
        try:
            csr = x509.load_pem_x509_csr(request.csr_pem.encode("ascii"))  # type: ignore[union-attr]
        except (ValueError, UnicodeEncodeError) as exc:
            msg = f"Invalid CSR: {exc}"
            raise ValidationError(msg) from exc
        if not csr.is_signature_valid:
            msg = "CSR signature verification failed"
            raise ValidationError(msg)

        public_key = csr.public_key()
        if isinstance(public_key, rsa.RSAPublicKey) and (
            public_key.key_size < self._settings.ca.min_rsa_key_size
        ):
            msg = (
                f"CSR RSA key size {public_key.key_size} is below the minimum of "
                f"{self._settings.ca.min_rsa_key_size}"
            )
            raise ValidationError(msg)

        name = csr.subject
        if not list(name) and request.subject_dn:
            name = parse_dn(request.subject_dn)
        try:
            ext = csr.extensions.get_extension_for_class(x509.SubjectAlternativeName)
            csr_sans = list(ext.value)
        except x509.ExtensionNotFound:
            csr_sans = []
        sans = csr_sans + [n for n in extra_sans if n not in csr_sans]
        return _Subject(name=name, public_key=public_key, sans=sans)  # type: ignore[arg-type]

    @staticmethod
    def _effective_sans(subject: _Subject, policy: CertificatePolicy) -> list[x509.GeneralName]:
        if subject.sans or not policy.requires_san:
            return list(subject.sans)
        cn = common_name(subject.name)
        if policy.cn_as_san and cn and is_hostname(cn):
            return [x509.DNSName(cn.lower())]
        msg = (
            f"{policy.certificate_type.value} certificates require at least one subject "
            "alternative name (or a hostname common name)"
        )
        raise ValidationError(msg)

    def _allocate_serial(self, ca_id: uuid.UUID) -> int:
        attempts = self._settings.ca.serial_max_attempts
        for _ in range(attempts):
            serial = generate_serial()
            if serial == 0:
                continue
            if not self._store.serial_exists(ca_id, format_serial(serial)):
                return serial
            log.warning("Serial collision for CA %s, retrying", ca_id)
        msg = f"Could not allocate a unique serial number after {attempts} attempts"
        raise SigningError(msg, retryable=True)

    # -- reads ---------------------------------------------------------------

    def get_certificate(
        self,
        serial_number: str,
        ca_id: uuid.UUID | None = None,
    ) -> IssuedCertificate:
        """Look up a certificate by serial, marking it EXPIRED if it ran out.

        Raises
        ------
        CertificateNotFound
            If no certificate has that serial.

        """
        cert = self._store.find_certificate(serial_number.replace(":", "").upper(), ca_id)
        if cert is None:
            msg = f"Certificate {serial_number} not found"
            raise CertificateNotFound(msg)
        return self._observe_expiry(cert)

    def list_certificates(
        self,
        ca_id: uuid.UUID,
        status: CertificateStatus | None = None,
    ) -> list[IssuedCertificate]:
        certs = [self._observe_expiry(c) for c in self._store.list_certificates(ca_id)]
        return [c for c in certs if status is None or c.status == status]

    def _observe_expiry(self, cert: IssuedCertificate) -> IssuedCertificate:
        if cert.status != CertificateStatus.ACTIVE or cert.valid_to > datetime.now(UTC):
            return cert
        assert_transition(cert.status, CertificateStatus.EXPIRED, CERTIFICATE_TRANSITIONS)
        updated = self._store.mark_certificate_expired(cert.id)
        if updated is None:
            # Revoked or already expired concurrently
            return self._store.get_certificate(cert.id) or cert
        log_transition("certificate", cert.serial_number, cert.status, updated.status)
        return updated
