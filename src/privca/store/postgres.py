"""PostgreSQL implementation of :class:`~privca.store.base.PKIStore`.

Single-entity reads and writes go through the PyPGKit repositories.
The atomic operations (revoke, CRL allocation, cascade delete, CA
replacement) run inside a :class:`~privca.db.UnitOfWork` so they share
one connection and one transaction.
"""

from __future__ import annotations

import logging
from datetime import UTC, datetime
from typing import TYPE_CHECKING

from psycopg import errors as pg_errors

from privca.ca.base import AlreadyRevoked, CANotFound, CertificateNotFound, ValidationError
from privca.db.unit_of_work import UnitOfWork
from privca.repositories import (
    CAIdentityRepository,
    CertificateRepository,
    CRLRepository,
    RevocationRepository,
)
from privca.store.base import PKIStore

if TYPE_CHECKING:
    from collections.abc import Callable
    from uuid import UUID

    from pypgkit import Database

    from privca.core.types import CAStatus, CertificateStatus, CRLMode
    from privca.models import CAIdentity, CRLIssuance, IssuedCertificate, RevocationRecord

log = logging.getLogger(__name__)


class PostgresStore(PKIStore):
    """Store backed by the tables in ``db/schema.sql``.

    Parameters
    ----------
    database:
        Initialised PyPGKit database (see :func:`privca.db.init_database`).

    """

    def __init__(self, database: Database) -> None:
        self._db = database
        self._cas = CAIdentityRepository(database)
        self._certs = CertificateRepository(database)
        self._revocations = RevocationRepository(database)
        self._crls = CRLRepository(database)

    # -- CA identities -------------------------------------------------------

    def add_ca(self, ca: CAIdentity) -> CAIdentity:
        return self._cas.create(ca)

    def get_ca(self, ca_id: UUID) -> CAIdentity | None:
        return self._cas.find_by_id(ca_id)

    def list_cas(self, status: CAStatus | None = None) -> list[CAIdentity]:
        return self._cas.find_by_status(status)

    def update_ca(self, ca: CAIdentity) -> CAIdentity:
        row = self._cas._entity_to_row(ca)  # noqa: SLF001
        row.pop("id")
        row.pop("created_at")
        row.pop("crl_number")
        row["updated_at"] = datetime.now(UTC)
        with UnitOfWork(self._db) as uow:
            updated = uow.update_where("ca_identities", row, {"id": ca.id})
        if updated is None:
            msg = f"CA {ca.id} not found"
            raise CANotFound(msg)
        return self._cas._row_to_entity(updated)  # noqa: SLF001

    def delete_ca_cascade(self, ca_id: UUID) -> bool:
        # Child rows go through ON DELETE CASCADE; the explicit deletes keep
        # the operation correct on databases created without the FKs.
        with UnitOfWork(self._db) as uow:
            uow.execute("DELETE FROM crl_issuances WHERE ca_id = %s", (ca_id,))
            uow.execute("DELETE FROM revocation_records WHERE ca_id = %s", (ca_id,))
            uow.execute("DELETE FROM issued_certificates WHERE ca_id = %s", (ca_id,))
            deleted = uow.execute("DELETE FROM ca_identities WHERE id = %s", (ca_id,))
        return deleted > 0

    # -- Certificates --------------------------------------------------------

    def add_certificate(self, cert: IssuedCertificate) -> IssuedCertificate:
        try:
            return self._certs.create(cert)
        except pg_errors.UniqueViolation as exc:
            msg = f"Serial number {cert.serial_number} already issued by CA {cert.ca_id}"
            raise ValidationError(msg) from exc

    def get_certificate(self, certificate_id: UUID) -> IssuedCertificate | None:
        return self._certs.find_by_id(certificate_id)

    def find_certificate(
        self,
        serial_number: str,
        ca_id: UUID | None = None,
    ) -> IssuedCertificate | None:
        if ca_id is not None:
            return self._certs.find_by_ca_and_serial(ca_id, serial_number)
        return self._certs.find_by_serial(serial_number)

    def serial_exists(self, ca_id: UUID, serial_number: str) -> bool:
        return self._certs.serial_exists(ca_id, serial_number)

    def list_certificates(
        self,
        ca_id: UUID,
        status: CertificateStatus | None = None,
    ) -> list[IssuedCertificate]:
        return self._certs.find_by_ca(ca_id, status)

    def mark_certificate_expired(self, certificate_id: UUID) -> IssuedCertificate | None:
        return self._certs.mark_expired(certificate_id)

    def count_certificates(self, ca_id: UUID | None = None) -> dict[str, int]:
        return self._certs.count_by_status(ca_id)

    # -- Revocation ----------------------------------------------------------

    def revoke(self, record: RevocationRecord) -> RevocationRecord:
        try:
            with UnitOfWork(self._db) as uow:
                flipped = uow.fetch_one(
                    "UPDATE issued_certificates SET status = 'REVOKED' "
                    "WHERE id = %s AND status <> 'REVOKED' RETURNING id",
                    (record.certificate_id,),
                )
                if flipped is None:
                    exists = uow.fetch_one(
                        "SELECT id FROM issued_certificates WHERE id = %s",
                        (record.certificate_id,),
                    )
                    if exists is None:
                        msg = f"Certificate {record.certificate_id} not found"
                        raise CertificateNotFound(msg)
                    msg = f"Certificate {record.serial_number} is already revoked"
                    raise AlreadyRevoked(msg)
                row = uow.insert(
                    "revocation_records",
                    self._revocations._entity_to_row(record),  # noqa: SLF001
                )
        except pg_errors.UniqueViolation as exc:
            msg = f"Certificate {record.serial_number} is already revoked"
            raise AlreadyRevoked(msg) from exc
        return self._revocations._row_to_entity(row)  # noqa: SLF001

    def get_revocation(
        self,
        serial_number: str,
        ca_id: UUID | None = None,
    ) -> RevocationRecord | None:
        return self._revocations.find_by_serial(serial_number, ca_id)

    def revocations_for_crl(
        self,
        ca_id: UUID,
        *,
        valid_after: datetime | None = None,
        revoked_after: datetime | None = None,
    ) -> list[RevocationRecord]:
        return self._revocations.find_for_crl(
            ca_id,
            valid_after=valid_after,
            revoked_after=revoked_after,
        )

    # -- CRLs ----------------------------------------------------------------

    def allocate_crl(
        self,
        ca_id: UUID,
        build: Callable[[int], CRLIssuance],
    ) -> CRLIssuance:
        with UnitOfWork(self._db) as uow:
            # The row lock taken here is held until commit.
            row = uow.fetch_one(
                "UPDATE ca_identities SET crl_number = crl_number + 1, updated_at = now() "
                "WHERE id = %s RETURNING crl_number",
                (ca_id,),
            )
            if row is None:
                msg = f"CA {ca_id} not found"
                raise CANotFound(msg)
            number = row["crl_number"]
            crl = build(number)
            uow.insert("crl_issuances", self._crls._entity_to_row(crl))  # noqa: SLF001
        log.debug("Allocated CRL number %d for CA %s", number, ca_id)
        return crl

    def latest_crl(self, ca_id: UUID, mode: CRLMode | None = None) -> CRLIssuance | None:
        return self._crls.find_latest(ca_id, mode)

    def get_crl(self, ca_id: UUID, crl_number: int) -> CRLIssuance | None:
        return self._crls.find_by_number(ca_id, crl_number)

    def delete_crls_before(self, ca_id: UUID, cutoff: datetime, keep_id: UUID | None) -> int:
        return self._crls.delete_older_than(ca_id, cutoff, keep_id)
