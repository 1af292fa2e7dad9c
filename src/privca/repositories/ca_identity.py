"""CA identity repository."""

from __future__ import annotations

from psycopg.types.json import Jsonb
from pypgkit import BaseRepository, Database

from privca.core.types import CAStatus, KeyAlgorithm
from privca.models.ca_identity import CAIdentity
from privca.models.encrypted_key import EncryptedKey


class CAIdentityRepository(BaseRepository[CAIdentity]):
    table_name = "ca_identities"
    primary_key = "id"

    def _row_to_entity(self, row: dict) -> CAIdentity:
        return CAIdentity(
            id=row["id"],
            name=row["name"],
            subject_dn=row["subject_dn"],
            key_algorithm=KeyAlgorithm(row["key_algorithm"]),
            status=CAStatus(row["status"]),
            encrypted_private_key=EncryptedKey.from_json(row["encrypted_private_key"]),
            key_size=row.get("key_size"),
            curve=row.get("curve"),
            csr_pem=row.get("csr_pem"),
            certificate_pem=row.get("certificate_pem"),
            certificate_chain_pem=row.get("certificate_chain_pem"),
            crl_number=row["crl_number"],
            crl_distribution_url=row.get("crl_distribution_url"),
            ocsp_url=row.get("ocsp_url"),
            valid_from=row.get("valid_from"),
            valid_to=row.get("valid_to"),
            created_at=row["created_at"],
            updated_at=row["updated_at"],
        )

    def _entity_to_row(self, entity: CAIdentity) -> dict:
        return {
            "id": entity.id,
            "name": entity.name,
            "subject_dn": entity.subject_dn,
            "key_algorithm": entity.key_algorithm.value,
            "status": entity.status.value,
            "encrypted_private_key": Jsonb(entity.encrypted_private_key.to_dict()),
            "key_size": entity.key_size,
            "curve": entity.curve,
            "csr_pem": entity.csr_pem,
            "certificate_pem": entity.certificate_pem,
            "certificate_chain_pem": entity.certificate_chain_pem,
            "crl_number": entity.crl_number,
            "crl_distribution_url": entity.crl_distribution_url,
            "ocsp_url": entity.ocsp_url,
            "valid_from": entity.valid_from,
            "valid_to": entity.valid_to,
            "created_at": entity.created_at,
            "updated_at": entity.updated_at,
        }

    def find_by_status(self, status: CAStatus | None = None) -> list[CAIdentity]:
        """Return identities ordered by creation time, optionally filtered."""
        db = Database.get_instance()
        if status is None:
            rows = db.fetch_all(
                "SELECT * FROM ca_identities ORDER BY created_at, id",
                as_dict=True,
            )
        else:
            rows = db.fetch_all(
                "SELECT * FROM ca_identities WHERE status = %s ORDER BY created_at, id",
                (status.value,),
                as_dict=True,
            )
        return [self._row_to_entity(r) for r in rows]
