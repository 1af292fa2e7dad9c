"""OCSP responder service.

Parses DER OCSP requests, resolves the issuing CA and the certificate
status, and builds signed Basic OCSP responses.  This is the only
module that touches raw OCSP structures; :meth:`parse_ocsp_request`
and :meth:`build_ocsp_response` are the seams.
"""

from __future__ import annotations

import dataclasses
import logging
from dataclasses import dataclass
from datetime import UTC, datetime, timedelta
from typing import TYPE_CHECKING

from cryptography import x509
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import ec, rsa
from cryptography.x509 import ocsp

from privca.ca.base import ValidationError
from privca.ca.cert_utils import format_serial, signing_hash
from privca.ca.crl import REASON_FLAGS
from privca.core.types import CertificateStatus, RevocationReason

if TYPE_CHECKING:
    from cryptography.hazmat.primitives.asymmetric.types import (
        CertificateIssuerPrivateKeyTypes,
        PublicKeyTypes,
    )

    from privca.ca.lifecycle import CALifecycleManager
    from privca.config.settings import PrivcaSettings
    from privca.models import CAIdentity
    from privca.store.base import PKIStore

log = logging.getLogger(__name__)


@dataclass(frozen=True)
class OCSPQuery:
    """The parts of a single-certificate OCSP request we act on."""

    serial_number: int
    issuer_name_hash: bytes
    issuer_key_hash: bytes
    hash_algorithm: hashes.HashAlgorithm
    nonce: bytes | None = None

    @property
    def serial_hex(self) -> str:
        return format_serial(self.serial_number)


@dataclass(frozen=True)
class CertStatus:
    status: ocsp.OCSPCertStatus
    revocation_time: datetime | None = None
    revocation_reason: x509.ReasonFlags | None = None


UNKNOWN = CertStatus(ocsp.OCSPCertStatus.UNKNOWN)
GOOD = CertStatus(ocsp.OCSPCertStatus.GOOD)


def _public_key_bits(key: PublicKeyTypes) -> bytes:
    """Contents of the subjectPublicKey BIT STRING, as hashed in a CertID."""
    if isinstance(key, rsa.RSAPublicKey):
        return key.public_bytes(serialization.Encoding.DER, serialization.PublicFormat.PKCS1)
    if isinstance(key, ec.EllipticCurvePublicKey):
        return key.public_bytes(
            serialization.Encoding.X962,
            serialization.PublicFormat.UncompressedPoint,
        )
    return key.public_bytes(serialization.Encoding.Raw, serialization.PublicFormat.Raw)  # type: ignore[call-arg]


def _digest(algorithm: hashes.HashAlgorithm, data: bytes) -> bytes:
    h = hashes.Hash(algorithm)
    h.update(data)
    return h.finalize()


def issuer_hashes(cert: x509.Certificate, algorithm: hashes.HashAlgorithm) -> tuple[bytes, bytes]:
    """(issuerNameHash, issuerKeyHash) for *cert* acting as an issuer."""
    return (
        _digest(algorithm, cert.subject.public_bytes()),
        _digest(algorithm, _public_key_bits(cert.public_key())),
    )


class OCSPResponder:
    """Answer OCSP requests for every ACTIVE CA identity.

    Stateless per request: CA material and certificate status are read
    from the lifecycle manager and store on each call.
    """

    def __init__(
        self,
        store: PKIStore,
        lifecycle: CALifecycleManager,
        settings: PrivcaSettings,
    ) -> None:
        self._store = store
        self._lifecycle = lifecycle
        self._settings = settings

    def handle_request(self, ocsp_request_der: bytes) -> bytes:
        """Process an OCSP request and return a DER-encoded response.

        Never raises: parse failures yield ``malformedRequest``, the
        absence of an ACTIVE CA ``tryLater`` and anything else
        ``internalError``.
        """
        try:
            query = self.parse_ocsp_request(ocsp_request_der)
        except ValidationError as exc:
            log.warning("Rejected OCSP request (%d bytes): %s", len(ocsp_request_der), exc)
            return self.build_error_response(ocsp.OCSPResponseStatus.MALFORMED_REQUEST)

        try:
            cas = self._lifecycle.active_cas()
            if not cas:
                log.warning("OCSP request for %s with no ACTIVE CA", query.serial_hex)
                return self.build_error_response(ocsp.OCSPResponseStatus.TRY_LATER)

            ca, matched = self._match_issuer(query, cas)
            ca_cert, ca_key = self._lifecycle.signing_material(ca)
            status = self.certificate_status(query, ca) if matched else UNKNOWN
            log.debug(
                "OCSP %s for serial %s (CA %s)",
                status.status.name.lower(),
                query.serial_hex,
                ca.id,
            )
            return self.build_ocsp_response(query, status, ca_cert, ca_key)
        except Exception:
            log.exception("Failed to build OCSP response for %s", query.serial_hex)
            return self.build_error_response(ocsp.OCSPResponseStatus.INTERNAL_ERROR)

    # -- protocol seams ------------------------------------------------------

    @staticmethod
    def parse_ocsp_request(ocsp_request_der: bytes) -> OCSPQuery:
        """Decode a DER request into an :class:`OCSPQuery`.

        Raises
        ------
        ValidationError
            If the bytes are not a single-certificate OCSP request.

        """
        try:
            request = ocsp.load_der_ocsp_request(ocsp_request_der)
            query = OCSPQuery(
                serial_number=request.serial_number,
                issuer_name_hash=request.issuer_name_hash,
                issuer_key_hash=request.issuer_key_hash,
                hash_algorithm=request.hash_algorithm,
            )
            # Extensions are decoded lazily.
            extensions = request.extensions
        except (ValueError, TypeError, x509.DuplicateExtension) as exc:
            msg = f"Malformed OCSP request: {exc}"
            raise ValidationError(msg) from exc

        try:
            nonce = extensions.get_extension_for_class(x509.OCSPNonce).value.nonce
        except x509.ExtensionNotFound:
            return query
        return dataclasses.replace(query, nonce=nonce)

    def build_ocsp_response(
        self,
        query: OCSPQuery,
        status: CertStatus,
        ca_cert: x509.Certificate,
        ca_key: CertificateIssuerPrivateKeyTypes,
    ) -> bytes:
        """Sign a successful Basic OCSP response echoing the request's CertID."""
        now = datetime.now(UTC)
        next_update = now + timedelta(seconds=self._settings.ocsp.response_validity_seconds)
        builder = ocsp.OCSPResponseBuilder().add_response_by_hash(
            issuer_name_hash=query.issuer_name_hash,
            issuer_key_hash=query.issuer_key_hash,
            serial_number=query.serial_number,
            algorithm=query.hash_algorithm,
            cert_status=status.status,
            this_update=now,
            next_update=next_update,
            revocation_time=status.revocation_time,
            revocation_reason=status.revocation_reason,
        )
        builder = builder.responder_id(ocsp.OCSPResponderEncoding.HASH, ca_cert)
        if query.nonce is not None:
            builder = builder.add_extension(x509.OCSPNonce(query.nonce), critical=False)
        response = builder.sign(ca_key, signing_hash(ca_key, self._settings.ocsp.hash_algorithm))
        return response.public_bytes(serialization.Encoding.DER)

    @staticmethod
    def build_error_response(status: ocsp.OCSPResponseStatus) -> bytes:
        """Build an unsigned error OCSP response."""
        response = ocsp.OCSPResponseBuilder.build_unsuccessful(status)
        return response.public_bytes(serialization.Encoding.DER)

    # -- status --------------------------------------------------------------

    def certificate_status(self, query: OCSPQuery, ca: CAIdentity) -> CertStatus:
        """good / revoked / unknown for the queried serial under *ca*."""
        cert = self._store.find_certificate(query.serial_hex, ca.id)
        if cert is None:
            return UNKNOWN
        if cert.status == CertificateStatus.REVOKED:
            record = self._store.get_revocation(cert.serial_number, ca.id)
            if record is None:
                log.error(
                    "Certificate %s is REVOKED without a revocation record",
                    cert.serial_number,
                )
                return CertStatus(ocsp.OCSPCertStatus.REVOKED, revocation_time=cert.valid_from)
            reason = (
                None
                if record.reason == RevocationReason.UNSPECIFIED
                else REASON_FLAGS[record.reason]
            )
            return CertStatus(
                ocsp.OCSPCertStatus.REVOKED,
                revocation_time=record.revocation_date,
                revocation_reason=reason,
            )
        now = datetime.now(UTC)
        if cert.status == CertificateStatus.ACTIVE and cert.valid_from <= now < cert.valid_to:
            return GOOD
        return UNKNOWN

    @staticmethod
    def _match_issuer(
        query: OCSPQuery,
        cas: list[CAIdentity],
    ) -> tuple[CAIdentity, bool]:
        """The ACTIVE CA named by the CertID, else the first one with no match."""
        for ca in cas:
            if not ca.certificate_pem:
                continue
            cert = x509.load_pem_x509_certificate(ca.certificate_pem.encode("ascii"))
            name_hash, key_hash = issuer_hashes(cert, query.hash_algorithm)
            if name_hash == query.issuer_name_hash and key_hash == query.issuer_key_hash:
                return ca, True
        return cas[0], False
