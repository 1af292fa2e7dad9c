"""Certificate and CRL export in PEM, DER and PKCS#12."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from cryptography import x509
from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.serialization import pkcs12

from privca.ca.base import CertificateNotFound, ValidationError
from privca.ca.cert_utils import common_name, load_certificates
from privca.hooks.audit import AuditTrail
from privca.logging import security_events

if TYPE_CHECKING:
    import uuid

    from privca.ca.vault import KeyVault
    from privca.models import CRLIssuance, IssuedCertificate
    from privca.store.base import PKIStore

log = logging.getLogger(__name__)

CERTIFICATE_FORMATS = ("pem", "der", "pkcs12")
CRL_FORMATS = ("pem", "der")


def _format(value: str, allowed: tuple[str, ...]) -> str:
    fmt = value.strip().lower()
    if fmt == "p12":
        fmt = "pkcs12"
    if fmt not in allowed:
        msg = f"Unsupported export format {value!r}; supported: {', '.join(allowed)}"
        raise ValidationError(msg)
    return fmt


class CertificateExporter:
    """Render stored certificates and CRLs for download.

    PEM and DER exports carry certificates only.  The private key of a
    server-generated certificate leaves the store only inside a
    password-protected PKCS#12 bundle.
    """

    def __init__(
        self,
        store: PKIStore,
        vault: KeyVault,
        audit: AuditTrail | None = None,
    ) -> None:
        self._store = store
        self._vault = vault
        self._audit = audit or AuditTrail(None)

    def export_certificate(
        self,
        serial_number: str,
        fmt: str = "pem",
        *,
        password: str | None = None,
        include_chain: bool = False,
        ca_id: uuid.UUID | None = None,
        actor: str = "system",
    ) -> bytes:
        """Export one certificate.

        Parameters
        ----------
        serial_number:
            Hex serial, with or without colons.
        fmt:
            ``pem``, ``der`` or ``pkcs12``.
        password:
            Required for ``pkcs12``.
        include_chain:
            Append the issuing CA certificate and its stored chain.  DER
            holds a single certificate, so the flag is ignored there.

        Raises
        ------
        CertificateNotFound
            If the serial is unknown.
        ValidationError
            For an unknown format, or PKCS#12 without a password or
            without a stored private key.

        """
        fmt = _format(fmt, CERTIFICATE_FORMATS)
        record = self._store.find_certificate(serial_number.replace(":", "").strip().upper(), ca_id)
        if record is None:
            msg = f"Certificate {serial_number} not found"
            raise CertificateNotFound(msg)
        leaf = x509.load_pem_x509_certificate(record.certificate_pem.encode("ascii"))

        if fmt == "der":
            data = leaf.public_bytes(serialization.Encoding.DER)
        elif fmt == "pem":
            certs = [leaf, *self._issuer_chain(record)] if include_chain else [leaf]
            data = b"".join(c.public_bytes(serialization.Encoding.PEM) for c in certs)
        else:
            data = self._pkcs12(record, leaf, password, include_chain=include_chain)

        self._audit.record(
            "certificate.export",
            actor=actor,
            description=f"Exported certificate {record.serial_number} as {fmt}",
            metadata={
                "ca_id": record.ca_id,
                "serial_number": record.serial_number,
                "format": fmt,
                "include_chain": include_chain,
            },
        )
        return data

    def export_crl(self, crl: CRLIssuance, fmt: str = "pem") -> bytes:
        """Return a stored CRL as PEM or DER bytes."""
        fmt = _format(fmt, CRL_FORMATS)
        if fmt == "der":
            return crl.crl_der
        return crl.crl_pem.encode("ascii")

    # -- internals -----------------------------------------------------------

    def _pkcs12(
        self,
        record: IssuedCertificate,
        leaf: x509.Certificate,
        password: str | None,
        *,
        include_chain: bool,
    ) -> bytes:
        if not password:
            msg = "A password is required for PKCS#12 export"
            raise ValidationError(msg)
        if record.encrypted_private_key is None:
            msg = (
                f"Certificate {record.serial_number} was issued from a CSR; "
                "no private key is stored for PKCS#12 export"
            )
            raise ValidationError(msg)

        key = self._vault.load_private_key(record.encrypted_private_key, ca_id=record.ca_id)
        name = common_name(leaf.subject) or record.serial_number
        data = pkcs12.serialize_key_and_certificates(
            name=name.encode("utf-8"),
            key=key,  # type: ignore[arg-type]
            cert=leaf,
            cas=self._issuer_chain(record) if include_chain else None,
            encryption_algorithm=serialization.BestAvailableEncryption(password.encode("utf-8")),
        )
        security_events.private_key_exported(record.ca_id, record.serial_number, "pkcs12")
        return data

    def _issuer_chain(self, record: IssuedCertificate) -> list[x509.Certificate]:
        ca = self._store.get_ca(record.ca_id)
        if ca is None or not ca.certificate_pem:
            log.warning("Issuer %s of %s has no certificate", record.ca_id, record.serial_number)
            return []
        chain = load_certificates(ca.certificate_pem)
        if ca.certificate_chain_pem:
            chain.extend(load_certificates(ca.certificate_chain_pem))
        return chain
