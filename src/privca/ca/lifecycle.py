"""CA identity lifecycle: key generation, activation, expiry and deletion.

A CA identity is born INITIALIZING with a fresh key pair and a CSR.
It becomes ACTIVE either by self-signing (root CA) or by uploading a
certificate an external CA issued for that CSR (intermediate CA).
ACTIVE identities whose certificate has run out are moved to EXPIRED
the next time they are read.
"""

from __future__ import annotations

import dataclasses
import logging
import uuid
from dataclasses import dataclass
from datetime import UTC, datetime, timedelta
from typing import TYPE_CHECKING, Any, NoReturn

from cryptography import x509
from cryptography.hazmat.primitives import serialization
from cryptography.x509.oid import AuthorityInformationAccessOID

from privca.ca.base import (
    CAError,
    CANotActive,
    CANotFound,
    InitializedCA,
    SigningError,
    ValidationError,
)
from privca.ca.cert_utils import (
    certificate_fingerprint,
    format_name,
    generate_serial,
    load_certificates,
    parse_dn,
    same_public_key,
    signing_hash,
    to_pem,
)
from privca.core.state import CA_TRANSITIONS, assert_transition, log_transition
from privca.core.types import CAStatus
from privca.hooks.audit import AuditTrail
from privca.logging import security_events
from privca.models.ca_identity import CAIdentity

if TYPE_CHECKING:
    from cryptography.hazmat.primitives.asymmetric.types import (
        CertificateIssuerPrivateKeyTypes,
    )

    from privca.ca.vault import KeyVault
    from privca.config.settings import PrivcaSettings
    from privca.store.base import PKIStore

log = logging.getLogger(__name__)


@dataclass(frozen=True)
class SelfSignOptions:
    """Optional knobs for :meth:`CALifecycleManager.self_sign`.

    URLs left as ``None`` fall back to the CA identity's own values and
    then to the ``ca`` settings section.
    """

    path_length: int | None = None
    crl_distribution_url: str | None = None
    ocsp_url: str | None = None


def resolve_url(template: str | None, ca_id: uuid.UUID) -> str | None:
    """Substitute ``{ca_id}`` in a configured URL."""
    if not template:
        return None
    return template.replace("{ca_id}", str(ca_id))


def revocation_extensions(
    crl_url: str | None,
    ocsp_url: str | None,
) -> list[x509.ExtensionType]:
    """CRL Distribution Points and AIA-OCSP extensions for the given URLs."""
    extensions: list[x509.ExtensionType] = []
    if crl_url:
        extensions.append(
            x509.CRLDistributionPoints(
                [
                    x509.DistributionPoint(
                        full_name=[x509.UniformResourceIdentifier(crl_url)],
                        relative_name=None,
                        reasons=None,
                        crl_issuer=None,
                    ),
                ],
            ),
        )
    if ocsp_url:
        extensions.append(
            x509.AuthorityInformationAccess(
                [
                    x509.AccessDescription(
                        AuthorityInformationAccessOID.OCSP,
                        x509.UniformResourceIdentifier(ocsp_url),
                    ),
                ],
            ),
        )
    return extensions


def _is_ca_certificate(cert: x509.Certificate) -> bool:
    try:
        return cert.extensions.get_extension_for_class(x509.BasicConstraints).value.ca
    except x509.ExtensionNotFound:
        return False


def _order_chain(
    primary: x509.Certificate,
    others: list[x509.Certificate],
) -> list[x509.Certificate]:
    """Order *others* issuer-first from *primary* upwards; unlinked ones last."""
    remaining = list(others)
    ordered: list[x509.Certificate] = []
    current = primary
    while remaining:
        parent = next((c for c in remaining if c.subject == current.issuer), None)
        if parent is None or current.subject == current.issuer:
            break
        ordered.append(parent)
        remaining.remove(parent)
        current = parent
    return ordered + remaining


class CALifecycleManager:
    """Create, activate, expire and delete CA identities.

    Parameters
    ----------
    store:
        Persistence backend.
    vault:
        Key generation and private-key sealing.
    settings:
        Full application settings (``ca`` section and environment).
    audit:
        Audit trail; events are dropped when omitted.

    """

    def __init__(
        self,
        store: PKIStore,
        vault: KeyVault,
        settings: PrivcaSettings,
        audit: AuditTrail | None = None,
    ) -> None:
        self._store = store
        self._vault = vault
        self._settings = settings
        self._audit = audit or AuditTrail(None)

    # -- creation ------------------------------------------------------------

    def initialize_ca(  # noqa: PLR0913
        self,
        name: str,
        subject_dn: str,
        algorithm: str = "RSA",
        key_size: int | None = None,
        curve: str | None = None,
        *,
        actor: str,
        crl_distribution_url: str | None = None,
        ocsp_url: str | None = None,
    ) -> InitializedCA:
        """Generate a CA key pair and CSR and persist an INITIALIZING identity.

        Raises
        ------
        ValidationError
            If *name* is blank or *subject_dn* cannot be parsed.
        UnsupportedAlgorithm
            For an unknown algorithm, key size or curve.
        KeyGenerationError
            If key generation fails.

        """
        if not name or not name.strip():
            msg = "CA name must not be empty"
            raise ValidationError(msg)
        subject = parse_dn(subject_dn)
        pair = self._vault.generate_key_pair(algorithm, key_size, curve)

        try:
            csr = (
                x509.CertificateSigningRequestBuilder()
                .subject_name(subject)
                .sign(pair.private_key, signing_hash(pair.private_key, "sha256"))  # type: ignore[arg-type]
            )
        except Exception as exc:
            msg = f"Failed to build CA certificate request: {type(exc).__name__}"
            raise SigningError(msg) from exc
        csr_pem = csr.public_bytes(serialization.Encoding.PEM).decode("ascii")

        now = datetime.now(UTC)
        ca = CAIdentity(
            id=uuid.uuid4(),
            name=name.strip(),
            subject_dn=subject_dn.strip(),
            key_algorithm=pair.algorithm,
            status=CAStatus.INITIALIZING,
            encrypted_private_key=self._vault.encrypt(pair.private_key_pem),
            key_size=pair.key_size,
            curve=pair.curve,
            csr_pem=csr_pem,
            crl_distribution_url=crl_distribution_url,
            ocsp_url=ocsp_url,
            created_at=now,
            updated_at=now,
        )
        self._store.add_ca(ca)

        security_events.ca_initialized(ca.id, ca.name, pair.algorithm.value, actor)
        self._audit.record(
            "ca.initialization",
            actor=actor,
            description=f"Initialised CA '{ca.name}' ({pair.algorithm.value})",
            metadata={
                "ca_id": ca.id,
                "name": ca.name,
                "subject_dn": ca.subject_dn,
                "key_algorithm": pair.algorithm.value,
            },
        )
        return InitializedCA(ca_id=ca.id, csr_pem=csr_pem, private_key_pem=pair.private_key_pem)

    # -- activation ----------------------------------------------------------

    def self_sign(
        self,
        ca_id: uuid.UUID,
        validity_days: int | None = None,
        options: SelfSignOptions | None = None,
        *,
        actor: str,
    ) -> str:
        """Sign the pending CSR with the CA's own key and activate it.

        Returns
        -------
        str
            The root certificate PEM.

        Raises
        ------
        ValidationError
            If the CA is not INITIALIZING or *validity_days* is not positive.
        SigningError
            If building or signing the certificate fails.

        """
        opts = options or SelfSignOptions()
        ca = self._require_initializing(ca_id)
        days = validity_days if validity_days is not None else self._settings.ca.root_validity_days
        if days <= 0:
            msg = "validity_days must be positive"
            raise ValidationError(msg)
        if opts.path_length is not None and opts.path_length < 0:
            msg = "path_length must be non-negative"
            raise ValidationError(msg)

        key = self._vault.load_private_key(ca.encrypted_private_key, ca_id=ca.id)
        subject = (
            x509.load_pem_x509_csr(ca.csr_pem.encode("ascii")).subject
            if ca.csr_pem
            else parse_dn(ca.subject_dn)
        )
        crl_url = opts.crl_distribution_url or ca.crl_distribution_url
        crl_url = crl_url or resolve_url(self._settings.ca.crl_distribution_url, ca.id)
        ocsp_url = opts.ocsp_url or ca.ocsp_url or resolve_url(self._settings.ca.ocsp_url, ca.id)

        now = datetime.now(UTC)
        not_after = now + timedelta(days=days)
        serial = generate_serial()
        while serial == 0:
            serial = generate_serial()
        public_key = key.public_key()
        try:
            builder = (
                x509.CertificateBuilder()
                .subject_name(subject)
                .issuer_name(subject)
                .public_key(public_key)  # type: ignore[arg-type]
                .serial_number(serial)
                .not_valid_before(now)
                .not_valid_after(not_after)
                .add_extension(
                    x509.BasicConstraints(ca=True, path_length=opts.path_length),
                    critical=True,
                )
                .add_extension(
                    x509.KeyUsage(
                        digital_signature=True,
                        content_commitment=False,
                        key_encipherment=False,
                        data_encipherment=False,
                        key_agreement=False,
                        key_cert_sign=True,
                        crl_sign=True,
                        encipher_only=False,
                        decipher_only=False,
                    ),
                    critical=True,
                )
                .add_extension(
                    x509.SubjectKeyIdentifier.from_public_key(public_key),  # type: ignore[arg-type]
                    critical=False,
                )
                .add_extension(
                    x509.AuthorityKeyIdentifier.from_issuer_public_key(public_key),  # type: ignore[arg-type]
                    critical=False,
                )
            )
            for ext in revocation_extensions(crl_url, ocsp_url):
                builder = builder.add_extension(ext, critical=False)
            cert = builder.sign(key, signing_hash(key, self._settings.ca.hash_algorithm))  # type: ignore[arg-type]
        except Exception as exc:
            msg = f"Failed to self-sign CA certificate: {type(exc).__name__}"
            raise SigningError(msg) from exc

        self._activate(
            ca,
            cert,
            chain=[],
            method="self_sign",
            actor=actor,
            crl_distribution_url=crl_url,
            ocsp_url=ocsp_url,
        )
        return to_pem(cert)

    def upload_certificate(
        self,
        ca_id: uuid.UUID,
        certificate_pem: str,
        chain_pem: str | None = None,
        *,
        actor: str,
    ) -> CAIdentity:
        """Activate an INITIALIZING CA with an externally issued certificate.

        Checks, in order: at least one parseable certificate, validity
        covers now, basicConstraints CA=true, keyUsage (when present)
        includes keyCertSign, and the certificate's public key is the
        CA's own key.  On any failure the identity is left untouched.

        Raises
        ------
        ValidationError
            With a message naming the failed check.

        """
        ca = self._require_initializing(ca_id)

        bundle = certificate_pem or ""
        if chain_pem:
            bundle = f"{bundle}\n{chain_pem}"
        try:
            certs = load_certificates(bundle)
        except ValidationError:
            self._reject_upload(ca, "No valid PEM certificate found in upload", actor)

        ca_key = self._vault.load_private_key(ca.encrypted_private_key, ca_id=ca.id).public_key()
        ca_certs = [c for c in certs if _is_ca_certificate(c)]
        primary = next(
            (c for c in ca_certs if same_public_key(c.public_key(), ca_key)),
            ca_certs[0] if ca_certs else certs[0],
        )

        now = datetime.now(UTC)
        if not primary.not_valid_before_utc <= now <= primary.not_valid_after_utc:
            self._reject_upload(
                ca,
                f"Certificate is not currently valid "
                f"(valid {primary.not_valid_before_utc.isoformat()} "
                f"to {primary.not_valid_after_utc.isoformat()})",
                actor,
            )
        if not _is_ca_certificate(primary):
            self._reject_upload(
                ca,
                "Certificate is not a CA certificate (basicConstraints CA=false)",
                actor,
            )
        try:
            usage = primary.extensions.get_extension_for_class(x509.KeyUsage).value
        except x509.ExtensionNotFound:
            usage = None
        if usage is not None and not usage.key_cert_sign:
            self._reject_upload(ca, "Certificate keyUsage does not include keyCertSign", actor)
        if not same_public_key(primary.public_key(), ca_key):
            self._reject_upload(
                ca,
                "Certificate public key does not match the CA's private key",
                actor,
            )

        seen = {certificate_fingerprint(primary)}
        others: list[x509.Certificate] = []
        for cert in certs:
            fp = certificate_fingerprint(cert)
            if fp not in seen:
                seen.add(fp)
                others.append(cert)
        chain = _order_chain(primary, others)
        return self._activate(ca, primary, chain=chain, method="upload", actor=actor)

    def _reject_upload(self, ca: CAIdentity, reason: str, actor: str) -> NoReturn:
        security_events.ca_upload_rejected(ca.id, reason, actor)
        self._audit.record(
            "ca.upload_rejected",
            actor=actor,
            description=f"Rejected certificate upload for CA '{ca.name}': {reason}",
            metadata={"ca_id": ca.id, "reason": reason},
        )
        raise ValidationError(reason)

    def _activate(  # noqa: PLR0913
        self,
        ca: CAIdentity,
        cert: x509.Certificate,
        *,
        chain: list[x509.Certificate],
        method: str,
        actor: str,
        crl_distribution_url: str | None = None,
        ocsp_url: str | None = None,
    ) -> CAIdentity:
        assert_transition(ca.status, CAStatus.ACTIVE, CA_TRANSITIONS)
        updated = self._store.update_ca(
            dataclasses.replace(
                ca,
                status=CAStatus.ACTIVE,
                certificate_pem=to_pem(cert),
                certificate_chain_pem="".join(to_pem(c) for c in chain) or None,
                valid_from=cert.not_valid_before_utc,
                valid_to=cert.not_valid_after_utc,
                crl_distribution_url=crl_distribution_url or ca.crl_distribution_url,
                ocsp_url=ocsp_url or ca.ocsp_url,
            ),
        )
        log_transition("ca", ca.id, ca.status, CAStatus.ACTIVE, reason=method)
        valid_to = cert.not_valid_after_utc.isoformat()
        security_events.ca_activated(ca.id, method, valid_to, actor)
        self._audit.record(
            "ca.activation",
            actor=actor,
            description=f"Activated CA '{ca.name}' via {method}",
            metadata={
                "ca_id": ca.id,
                "method": method,
                "subject": format_name(cert.subject),
                "valid_to": valid_to,
                "chain_length": len(chain),
            },
        )
        return updated

    # -- deletion ------------------------------------------------------------

    def delete_ca(self, ca_id: uuid.UUID, *, actor: str) -> None:
        """Delete a CA with all its certificates, revocations and CRLs.

        Raises
        ------
        CANotFound
            If the CA does not exist.

        """
        ca = self._store.get_ca(ca_id)
        if ca is None or not self._store.delete_ca_cascade(ca_id):
            msg = f"CA {ca_id} not found"
            raise CANotFound(msg)
        security_events.ca_deleted(ca_id, ca.name, actor)
        self._audit.record(
            "ca.deletion",
            actor=actor,
            description=f"Deleted CA '{ca.name}' and its certificates",
            metadata={"ca_id": ca_id, "name": ca.name},
        )

    # -- reads ---------------------------------------------------------------

    def get_ca(self, ca_id: uuid.UUID) -> CAIdentity:
        """Return a CA identity, moving it to EXPIRED if its certificate ran out.

        Raises
        ------
        CANotFound
            If the CA does not exist.

        """
        ca = self._store.get_ca(ca_id)
        if ca is None:
            msg = f"CA {ca_id} not found"
            raise CANotFound(msg)
        return self._observe_expiry(ca)

    def list_cas(self, status: CAStatus | None = None) -> list[CAIdentity]:
        cas = [self._observe_expiry(ca) for ca in self._store.list_cas()]
        return [ca for ca in cas if status is None or ca.status == status]

    def active_cas(self) -> list[CAIdentity]:
        """ACTIVE identities, oldest first."""
        return self.list_cas(CAStatus.ACTIVE)

    def signing_material(
        self,
        ca: CAIdentity | uuid.UUID,
    ) -> tuple[x509.Certificate, CertificateIssuerPrivateKeyTypes]:
        """Return the CA certificate and decrypted signing key.

        Raises
        ------
        CANotActive
            If the CA is not ACTIVE (including just-observed expiry).
        VaultError
            If the stored key cannot be decrypted.

        """
        ca_id = ca.id if isinstance(ca, CAIdentity) else ca
        current = self.get_ca(ca_id)
        if current.status != CAStatus.ACTIVE or not current.certificate_pem:
            msg = f"CA {ca_id} is {current.status.value}, not ACTIVE"
            raise CANotActive(msg)
        cert = x509.load_pem_x509_certificate(current.certificate_pem.encode("ascii"))
        key = self._vault.load_private_key(current.encrypted_private_key, ca_id=current.id)
        return cert, key  # type: ignore[return-value]

    def status_summary(self) -> dict[str, Any]:
        """Counts of CAs by status, certificate counts and the next CA expiry."""
        cas = self.list_cas()
        by_status = {status.value: 0 for status in CAStatus}
        for ca in cas:
            by_status[ca.status.value] += 1
        active = [ca for ca in cas if ca.status == CAStatus.ACTIVE and ca.valid_to]
        soonest = min(active, key=lambda ca: ca.valid_to, default=None)  # type: ignore[arg-type, return-value]
        next_expiry = None
        if soonest is not None and soonest.valid_to is not None:
            next_expiry = {
                "ca_id": str(soonest.id),
                "name": soonest.name,
                "valid_to": soonest.valid_to.isoformat(),
                "days_remaining": (soonest.valid_to - datetime.now(UTC)).days,
            }
        return {
            "total": len(cas),
            "by_status": by_status,
            "certificates": self._store.count_certificates(),
            "next_expiry": next_expiry,
        }

    # -- internals -----------------------------------------------------------

    def _require_initializing(self, ca_id: uuid.UUID) -> CAIdentity:
        ca = self.get_ca(ca_id)
        if ca.status != CAStatus.INITIALIZING:
            msg = f"CA {ca_id} is {ca.status.value}; only INITIALIZING CAs can be activated"
            raise ValidationError(msg)
        return ca

    def _observe_expiry(self, ca: CAIdentity) -> CAIdentity:
        if ca.status != CAStatus.ACTIVE or ca.valid_to is None:
            return ca
        if ca.valid_to > datetime.now(UTC):
            return ca
        assert_transition(ca.status, CAStatus.EXPIRED, CA_TRANSITIONS)
        try:
            updated = self._store.update_ca(dataclasses.replace(ca, status=CAStatus.EXPIRED))
        except CAError:
            log.warning("CA %s vanished while marking it expired", ca.id)
            return dataclasses.replace(ca, status=CAStatus.EXPIRED)
        log_transition("ca", ca.id, CAStatus.ACTIVE, CAStatus.EXPIRED, reason="certificate expired")
        return updated
