"""Abstract store contract for the PKI engine.

The engine never talks to a database directly.  It persists and reads
the four entities through :class:`PKIStore`, whose implementations
guarantee two atomic operations:

- :meth:`PKIStore.revoke` writes the revocation record and flips the
  certificate to REVOKED together, and refuses a second revocation.
- :meth:`PKIStore.allocate_crl` increments the CA's CRL counter, builds
  the CRL with the new number and persists it, with concurrent callers
  for the same CA serialised.
"""

from __future__ import annotations

import abc
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from collections.abc import Callable
    from datetime import datetime
    from uuid import UUID

    from privca.core.types import CAStatus, CertificateStatus, CRLMode
    from privca.models import CAIdentity, CRLIssuance, IssuedCertificate, RevocationRecord


class PKIStore(abc.ABC):
    """Persistence contract shared by the PostgreSQL and in-memory stores."""

    # -- CA identities -------------------------------------------------------

    @abc.abstractmethod
    def add_ca(self, ca: CAIdentity) -> CAIdentity: ...

    @abc.abstractmethod
    def get_ca(self, ca_id: UUID) -> CAIdentity | None: ...

    @abc.abstractmethod
    def list_cas(self, status: CAStatus | None = None) -> list[CAIdentity]:
        """Identities ordered by creation time (oldest first)."""

    @abc.abstractmethod
    def update_ca(self, ca: CAIdentity) -> CAIdentity:
        """Replace the stored identity; ``crl_number`` is never lowered.

        Raises
        ------
        CANotFound
            If no identity with ``ca.id`` exists.

        """

    @abc.abstractmethod
    def delete_ca_cascade(self, ca_id: UUID) -> bool:
        """Delete a CA with its certificates, revocations and CRLs.

        Returns ``False`` if the CA did not exist.
        """

    # -- Certificates --------------------------------------------------------

    @abc.abstractmethod
    def add_certificate(self, cert: IssuedCertificate) -> IssuedCertificate:
        """Persist a new certificate.

        Raises
        ------
        ValidationError
            If the (ca_id, serial_number) pair is already taken.

        """

    @abc.abstractmethod
    def get_certificate(self, certificate_id: UUID) -> IssuedCertificate | None: ...

    @abc.abstractmethod
    def find_certificate(
        self,
        serial_number: str,
        ca_id: UUID | None = None,
    ) -> IssuedCertificate | None: ...

    @abc.abstractmethod
    def serial_exists(self, ca_id: UUID, serial_number: str) -> bool: ...

    @abc.abstractmethod
    def list_certificates(
        self,
        ca_id: UUID,
        status: CertificateStatus | None = None,
    ) -> list[IssuedCertificate]: ...

    @abc.abstractmethod
    def mark_certificate_expired(self, certificate_id: UUID) -> IssuedCertificate | None:
        """ACTIVE to EXPIRED; ``None`` when the certificate was not ACTIVE."""

    @abc.abstractmethod
    def count_certificates(self, ca_id: UUID | None = None) -> dict[str, int]:
        """Certificate counts keyed by status value."""

    # -- Revocation ----------------------------------------------------------

    @abc.abstractmethod
    def revoke(self, record: RevocationRecord) -> RevocationRecord:
        """Insert *record* and mark its certificate REVOKED atomically.

        Raises
        ------
        AlreadyRevoked
            If the certificate is already revoked; nothing is written.
        CertificateNotFound
            If ``record.certificate_id`` does not exist.

        """

    @abc.abstractmethod
    def get_revocation(
        self,
        serial_number: str,
        ca_id: UUID | None = None,
    ) -> RevocationRecord | None:
        """Revocation record for *serial_number*, scoped to *ca_id* when given."""

    @abc.abstractmethod
    def revocations_for_crl(
        self,
        ca_id: UUID,
        *,
        valid_after: datetime | None = None,
        revoked_after: datetime | None = None,
    ) -> list[RevocationRecord]:
        """Records for a CRL, oldest revocation first."""

    # -- CRLs ----------------------------------------------------------------

    @abc.abstractmethod
    def allocate_crl(
        self,
        ca_id: UUID,
        build: Callable[[int], CRLIssuance],
    ) -> CRLIssuance:
        """Increment the CA's CRL counter, build and persist one CRL.

        *build* receives the newly allocated number and returns the
        issuance to store.  If it raises, the counter increment is
        rolled back (PostgreSQL) or not applied (memory).

        Raises
        ------
        CANotFound
            If the CA does not exist.

        """

    @abc.abstractmethod
    def latest_crl(self, ca_id: UUID, mode: CRLMode | None = None) -> CRLIssuance | None: ...

    @abc.abstractmethod
    def get_crl(self, ca_id: UUID, crl_number: int) -> CRLIssuance | None: ...

    @abc.abstractmethod
    def delete_crls_before(self, ca_id: UUID, cutoff: datetime, keep_id: UUID | None) -> int:
        """Delete CRL history created before *cutoff* except *keep_id*."""
