"""Revocation record repository."""

from __future__ import annotations

from typing import TYPE_CHECKING

from pypgkit import BaseRepository, Database

from privca.core.types import RevocationReason
from privca.models.revocation import RevocationRecord

if TYPE_CHECKING:
    from datetime import datetime
    from uuid import UUID


class RevocationRepository(BaseRepository[RevocationRecord]):
    table_name = "revocation_records"
    primary_key = "id"

    def _row_to_entity(self, row: dict) -> RevocationRecord:
        return RevocationRecord(
            id=row["id"],
            serial_number=row["serial_number"],
            certificate_id=row["certificate_id"],
            ca_id=row["ca_id"],
            revocation_date=row["revocation_date"],
            reason=RevocationReason(row["reason"]),
            revoked_by=row["revoked_by"],
        )

    def _entity_to_row(self, entity: RevocationRecord) -> dict:
        return {
            "id": entity.id,
            "serial_number": entity.serial_number,
            "certificate_id": entity.certificate_id,
            "ca_id": entity.ca_id,
            "revocation_date": entity.revocation_date,
            "reason": entity.reason.value,
            "revoked_by": entity.revoked_by,
        }

    def find_by_serial(
        self,
        serial_number: str,
        ca_id: UUID | None = None,
    ) -> RevocationRecord | None:
        criteria: dict = {"serial_number": serial_number}
        if ca_id is not None:
            criteria["ca_id"] = ca_id
        return self.find_one_by(criteria)

    def find_for_crl(
        self,
        ca_id: UUID,
        *,
        valid_after: datetime | None = None,
        revoked_after: datetime | None = None,
    ) -> list[RevocationRecord]:
        """Records to list on a CRL, oldest revocation first.

        Parameters
        ----------
        valid_after:
            Only records whose certificate's ``valid_to`` is later than
            this (full CRL retention window).
        revoked_after:
            Only records revoked after this instant (delta CRL).

        """
        db = Database.get_instance()
        sql = (
            "SELECT r.* FROM revocation_records r "
            "JOIN issued_certificates c ON c.id = r.certificate_id "
            "WHERE r.ca_id = %s"
        )
        params: list = [ca_id]
        if valid_after is not None:
            sql += " AND c.valid_to > %s"
            params.append(valid_after)
        if revoked_after is not None:
            sql += " AND r.revocation_date > %s"
            params.append(revoked_after)
        sql += " ORDER BY r.revocation_date, r.serial_number"
        rows = db.fetch_all(sql, params, as_dict=True)
        return [self._row_to_entity(r) for r in rows]
