"""Error taxonomy and result types for the PKI engine.

Every failure raised by the vault, the CA lifecycle manager, the
issuance engine and the CRL generator derives from :class:`CAError`.
The HTTP layer maps the subclasses to problem documents; callers that
only care about success/failure can catch :class:`CAError`.

OCSP failures are *not* represented here: the responder answers with
protocol-level status codes (``malformedRequest``, ``tryLater``,
``internalError``) instead of raising.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from datetime import datetime
    from uuid import UUID


class CAError(Exception):
    """Base class for PKI engine failures.

    Parameters
    ----------
    detail:
        Human-readable description of the failure.
    retryable:
        Whether the failure is transient and the operation may be retried.

    """

    def __init__(self, detail: str, *, retryable: bool = False) -> None:
        self.detail = detail
        self.retryable = retryable
        super().__init__(detail)


class ValidationError(CAError):
    """Bad input shape or policy violation; always caller-recoverable."""


class UnsupportedAlgorithm(ValidationError):  # noqa: N818
    """Requested key algorithm, size or curve is not supported."""


class CANotFound(ValidationError):  # noqa: N818
    """No CA identity exists with the requested id."""


class CertificateNotFound(ValidationError):  # noqa: N818
    """No issued certificate exists with the requested serial number."""


class CANotActive(CAError):  # noqa: N818
    """The operation requires an ACTIVE CA identity."""


class AlreadyRevoked(CAError):  # noqa: N818
    """The certificate already has a revocation record."""


class KeyGenerationError(CAError):
    """The cryptography backend failed to generate a key pair."""


class SigningError(CAError):
    """The cryptography backend failed to build or sign a structure."""


class VaultError(CAError):
    """Encrypted key material could not be decrypted or parsed."""


class ConfigurationError(CAError):
    """Fatal misconfiguration detected at startup (e.g. no master key)."""


# ---------------------------------------------------------------------------
# Results
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class InitializedCA:
    """Result of :meth:`CALifecycleManager.initialize_ca`.

    Attributes
    ----------
    ca_id:
        Identifier of the new INITIALIZING CA identity.
    csr_pem:
        PKCS#10 request for external (or self) signing.
    private_key_pem:
        PKCS#8 private key.  Returned once; only the encrypted form is stored.

    """

    ca_id: UUID
    csr_pem: str
    private_key_pem: str


@dataclass(frozen=True)
class IssuanceResult:
    """Result of a successful certificate issuance.

    Attributes
    ----------
    certificate_id:
        Store identifier of the new certificate row.
    serial_number:
        32 upper-case hex characters (16 random bytes).
    certificate_pem:
        PEM-encoded leaf certificate.
    fingerprint:
        SHA-256 of the DER encoding as colon-separated hex pairs.
    private_key_pem:
        Server-generated private key, or ``None`` for CSR-based issuance.
    valid_from:
        Certificate validity start time.
    valid_to:
        Certificate validity end time.

    """

    certificate_id: UUID
    serial_number: str
    certificate_pem: str
    fingerprint: str
    private_key_pem: str | None
    valid_from: datetime
    valid_to: datetime
