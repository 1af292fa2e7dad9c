"""Issued certificate repository."""

from __future__ import annotations

from typing import TYPE_CHECKING

from psycopg.types.json import Jsonb
from pypgkit import BaseRepository, Database

from privca.core.types import CertificateStatus, CertificateType
from privca.models.certificate import IssuedCertificate
from privca.models.encrypted_key import EncryptedKey

if TYPE_CHECKING:
    from uuid import UUID


class CertificateRepository(BaseRepository[IssuedCertificate]):
    table_name = "issued_certificates"
    primary_key = "id"

    def _row_to_entity(self, row: dict) -> IssuedCertificate:
        key = row.get("encrypted_private_key")
        return IssuedCertificate(
            id=row["id"],
            ca_id=row["ca_id"],
            serial_number=row["serial_number"],
            fingerprint=row["fingerprint"],
            subject_dn=row["subject_dn"],
            certificate_type=CertificateType(row["certificate_type"]),
            key_algorithm=row["key_algorithm"],
            status=CertificateStatus(row["status"]),
            valid_from=row["valid_from"],
            valid_to=row["valid_to"],
            certificate_pem=row["certificate_pem"],
            sans=tuple(row.get("sans") or ()),
            encrypted_private_key=EncryptedKey.from_json(key) if key else None,
            requested_by=row.get("requested_by"),
            created_at=row["created_at"],
        )

    def _entity_to_row(self, entity: IssuedCertificate) -> dict:
        key = entity.encrypted_private_key
        return {
            "id": entity.id,
            "ca_id": entity.ca_id,
            "serial_number": entity.serial_number,
            "fingerprint": entity.fingerprint,
            "subject_dn": entity.subject_dn,
            "certificate_type": entity.certificate_type.value,
            "key_algorithm": entity.key_algorithm,
            "status": entity.status.value,
            "valid_from": entity.valid_from,
            "valid_to": entity.valid_to,
            "certificate_pem": entity.certificate_pem,
            "sans": Jsonb(list(entity.sans)),
            "encrypted_private_key": Jsonb(key.to_dict()) if key is not None else None,
            "requested_by": entity.requested_by,
            "created_at": entity.created_at,
        }

    def find_by_serial(self, serial_number: str) -> IssuedCertificate | None:
        """Find a certificate by serial number (any CA, oldest first)."""
        db = Database.get_instance()
        row = db.fetch_one(
            "SELECT * FROM issued_certificates WHERE serial_number = %s "
            "ORDER BY created_at LIMIT 1",
            (serial_number,),
            as_dict=True,
        )
        return self._row_to_entity(row) if row else None

    def find_by_ca_and_serial(self, ca_id: UUID, serial_number: str) -> IssuedCertificate | None:
        return self.find_one_by({"ca_id": ca_id, "serial_number": serial_number})

    def serial_exists(self, ca_id: UUID, serial_number: str) -> bool:
        db = Database.get_instance()
        return bool(
            db.fetch_value(
                "SELECT EXISTS (SELECT 1 FROM issued_certificates "
                "WHERE ca_id = %s AND serial_number = %s)",
                (ca_id, serial_number),
            ),
        )

    def find_by_ca(
        self,
        ca_id: UUID,
        status: CertificateStatus | None = None,
    ) -> list[IssuedCertificate]:
        """Return a CA's certificates, newest first."""
        db = Database.get_instance()
        sql = "SELECT * FROM issued_certificates WHERE ca_id = %s"
        params: list = [ca_id]
        if status is not None:
            sql += " AND status = %s"
            params.append(status.value)
        rows = db.fetch_all(sql + " ORDER BY created_at DESC", params, as_dict=True)
        return [self._row_to_entity(r) for r in rows]

    def mark_expired(self, certificate_id: UUID) -> IssuedCertificate | None:
        """Flip ACTIVE to EXPIRED.  Revoked certificates are left alone."""
        db = Database.get_instance()
        row = db.fetch_one(
            "UPDATE issued_certificates SET status = 'EXPIRED' "
            "WHERE id = %s AND status = 'ACTIVE' RETURNING *",
            (certificate_id,),
            as_dict=True,
        )
        return self._row_to_entity(row) if row else None

    def count_by_status(self, ca_id: UUID | None = None) -> dict[str, int]:
        db = Database.get_instance()
        if ca_id is None:
            rows = db.fetch_all(
                "SELECT status, COUNT(*) AS n FROM issued_certificates GROUP BY status",
                as_dict=True,
            )
        else:
            rows = db.fetch_all(
                "SELECT status, COUNT(*) AS n FROM issued_certificates "
                "WHERE ca_id = %s GROUP BY status",
                (ca_id,),
                as_dict=True,
            )
        return {r["status"]: r["n"] for r in rows}
