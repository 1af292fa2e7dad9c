"""CRL issuance history repository."""

from __future__ import annotations

from typing import TYPE_CHECKING

from pypgkit import BaseRepository, Database

from privca.core.types import CRLMode
from privca.models.crl import CRLIssuance

if TYPE_CHECKING:
    from datetime import datetime
    from uuid import UUID


class CRLRepository(BaseRepository[CRLIssuance]):
    table_name = "crl_issuances"
    primary_key = "id"

    def _row_to_entity(self, row: dict) -> CRLIssuance:
        return CRLIssuance(
            id=row["id"],
            ca_id=row["ca_id"],
            crl_number=row["crl_number"],
            mode=CRLMode(row["mode"]),
            crl_der=bytes(row["crl_der"]),
            crl_pem=row["crl_pem"],
            this_update=row["this_update"],
            next_update=row["next_update"],
            revoked_count=row["revoked_count"],
            base_crl_number=row.get("base_crl_number"),
            created_at=row["created_at"],
        )

    def _entity_to_row(self, entity: CRLIssuance) -> dict:
        return {
            "id": entity.id,
            "ca_id": entity.ca_id,
            "crl_number": entity.crl_number,
            "mode": entity.mode.value,
            "base_crl_number": entity.base_crl_number,
            "crl_der": entity.crl_der,
            "crl_pem": entity.crl_pem,
            "this_update": entity.this_update,
            "next_update": entity.next_update,
            "revoked_count": entity.revoked_count,
            "created_at": entity.created_at,
        }

    def find_latest(self, ca_id: UUID, mode: CRLMode | None = None) -> CRLIssuance | None:
        """Highest-numbered CRL for *ca_id*, optionally restricted to *mode*."""
        db = Database.get_instance()
        sql = "SELECT * FROM crl_issuances WHERE ca_id = %s"
        params: list = [ca_id]
        if mode is not None:
            sql += " AND mode = %s"
            params.append(mode.value)
        row = db.fetch_one(sql + " ORDER BY crl_number DESC LIMIT 1", params, as_dict=True)
        return self._row_to_entity(row) if row else None

    def find_by_number(self, ca_id: UUID, crl_number: int) -> CRLIssuance | None:
        return self.find_one_by({"ca_id": ca_id, "crl_number": crl_number})

    def delete_older_than(self, ca_id: UUID, cutoff: datetime, keep_id: UUID | None) -> int:
        """Delete history created before *cutoff*, never the row *keep_id*."""
        db = Database.get_instance()
        return db.execute(
            "DELETE FROM crl_issuances WHERE ca_id = %s AND created_at < %s "
            "AND id IS DISTINCT FROM %s",
            (ca_id, cutoff, keep_id),
        )
