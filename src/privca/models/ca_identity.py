"""CA identity entity."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import UTC, datetime
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from uuid import UUID

    from privca.core.types import CAStatus, KeyAlgorithm
    from privca.models.encrypted_key import EncryptedKey

_EPOCH = datetime(1970, 1, 1, tzinfo=UTC)


@dataclass(frozen=True)
class CAIdentity:
    id: UUID
    name: str
    subject_dn: str
    key_algorithm: KeyAlgorithm
    status: CAStatus
    encrypted_private_key: EncryptedKey
    key_size: int | None = None
    curve: str | None = None
    csr_pem: str | None = None
    certificate_pem: str | None = None
    certificate_chain_pem: str | None = None
    crl_number: int = 0
    crl_distribution_url: str | None = None
    ocsp_url: str | None = None
    valid_from: datetime | None = None
    valid_to: datetime | None = None
    created_at: datetime = _EPOCH
    updated_at: datetime = _EPOCH
