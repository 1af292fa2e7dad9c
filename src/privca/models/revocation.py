"""Revocation record entity."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from uuid import UUID

    from privca.core.types import RevocationReason


@dataclass(frozen=True)
class RevocationRecord:
    id: UUID
    serial_number: str
    certificate_id: UUID
    ca_id: UUID
    revocation_date: datetime
    reason: RevocationReason
    revoked_by: str
