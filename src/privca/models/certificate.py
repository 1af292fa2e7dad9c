"""Issued certificate entity."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from uuid import UUID

    from privca.core.types import CertificateStatus, CertificateType
    from privca.models.encrypted_key import EncryptedKey

_EPOCH = datetime(1970, 1, 1, tzinfo=UTC)


@dataclass(frozen=True)
class IssuedCertificate:
    id: UUID
    ca_id: UUID
    serial_number: str
    fingerprint: str
    subject_dn: str
    certificate_type: CertificateType
    key_algorithm: str
    status: CertificateStatus
    valid_from: datetime
    valid_to: datetime
    certificate_pem: str
    sans: tuple[str, ...] = field(default_factory=tuple)
    encrypted_private_key: EncryptedKey | None = None
    requested_by: str | None = None
    created_at: datetime = _EPOCH
