"""CRL issuance entity."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import UTC, datetime
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from uuid import UUID

    from privca.core.types import CRLMode

_EPOCH = datetime(1970, 1, 1, tzinfo=UTC)


@dataclass(frozen=True)
class CRLIssuance:
    id: UUID
    ca_id: UUID
    crl_number: int
    mode: CRLMode
    crl_der: bytes
    crl_pem: str
    this_update: datetime
    next_update: datetime
    revoked_count: int = 0
    base_crl_number: int | None = None
    created_at: datetime = _EPOCH
