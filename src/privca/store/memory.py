"""In-process implementation of :class:`~privca.store.base.PKIStore`.

Used by the test suite and by single-process deployments that set
``store.backend: memory``.  Nothing survives a restart.
"""

from __future__ import annotations

import dataclasses
import logging
import threading
from collections import defaultdict
from datetime import UTC, datetime
from typing import TYPE_CHECKING

from privca.ca.base import AlreadyRevoked, CANotFound, CertificateNotFound, ValidationError
from privca.core.types import CertificateStatus
from privca.store.base import PKIStore

if TYPE_CHECKING:
    from collections.abc import Callable
    from uuid import UUID

    from privca.core.types import CAStatus, CRLMode
    from privca.models import CAIdentity, CRLIssuance, IssuedCertificate, RevocationRecord

log = logging.getLogger(__name__)


class InMemoryStore(PKIStore):
    """Dict-backed store.

    One re-entrant lock guards all tables.  CRL allocation additionally
    holds a per-CA lock for the whole read-increment-build-persist
    sequence so concurrent generations for one CA are serialised while
    other CAs proceed.
    """

    def __init__(self) -> None:
        self._lock = threading.RLock()
        self._crl_locks: defaultdict[UUID, threading.Lock] = defaultdict(threading.Lock)
        self._cas: dict[UUID, CAIdentity] = {}
        self._certs: dict[UUID, IssuedCertificate] = {}
        self._revocations: dict[tuple[UUID, str], RevocationRecord] = {}
        self._crls: dict[UUID, list[CRLIssuance]] = defaultdict(list)

    # -- CA identities -------------------------------------------------------

    def add_ca(self, ca: CAIdentity) -> CAIdentity:
        with self._lock:
            if ca.id in self._cas:
                msg = f"CA {ca.id} already exists"
                raise ValidationError(msg)
            self._cas[ca.id] = ca
            return ca

    def get_ca(self, ca_id: UUID) -> CAIdentity | None:
        with self._lock:
            return self._cas.get(ca_id)

    def list_cas(self, status: CAStatus | None = None) -> list[CAIdentity]:
        with self._lock:
            cas = sorted(self._cas.values(), key=lambda c: (c.created_at, str(c.id)))
        return [c for c in cas if status is None or c.status == status]

    def update_ca(self, ca: CAIdentity) -> CAIdentity:
        with self._lock:
            current = self._cas.get(ca.id)
            if current is None:
                msg = f"CA {ca.id} not found"
                raise CANotFound(msg)
            updated = dataclasses.replace(
                ca,
                crl_number=max(ca.crl_number, current.crl_number),
                updated_at=datetime.now(UTC),
            )
            self._cas[ca.id] = updated
            return updated

    def delete_ca_cascade(self, ca_id: UUID) -> bool:
        with self._lock:
            if self._cas.pop(ca_id, None) is None:
                return False
            self._certs = {k: v for k, v in self._certs.items() if v.ca_id != ca_id}
            self._revocations = {k: v for k, v in self._revocations.items() if v.ca_id != ca_id}
            self._crls.pop(ca_id, None)
            return True

    # -- Certificates --------------------------------------------------------

    def add_certificate(self, cert: IssuedCertificate) -> IssuedCertificate:
        with self._lock:
            if cert.ca_id not in self._cas:
                msg = f"CA {cert.ca_id} not found"
                raise CANotFound(msg)
            if self.serial_exists(cert.ca_id, cert.serial_number):
                msg = f"Serial number {cert.serial_number} already issued by CA {cert.ca_id}"
                raise ValidationError(msg)
            self._certs[cert.id] = cert
            return cert

    def get_certificate(self, certificate_id: UUID) -> IssuedCertificate | None:
        with self._lock:
            return self._certs.get(certificate_id)

    def find_certificate(
        self,
        serial_number: str,
        ca_id: UUID | None = None,
    ) -> IssuedCertificate | None:
        with self._lock:
            matches = [
                c
                for c in self._certs.values()
                if c.serial_number == serial_number and (ca_id is None or c.ca_id == ca_id)
            ]
        matches.sort(key=lambda c: c.created_at)
        return matches[0] if matches else None

    def serial_exists(self, ca_id: UUID, serial_number: str) -> bool:
        with self._lock:
            return any(
                c.ca_id == ca_id and c.serial_number == serial_number for c in self._certs.values()
            )

    def list_certificates(
        self,
        ca_id: UUID,
        status: CertificateStatus | None = None,
    ) -> list[IssuedCertificate]:
        with self._lock:
            certs = [
                c
                for c in self._certs.values()
                if c.ca_id == ca_id and (status is None or c.status == status)
            ]
        return sorted(certs, key=lambda c: c.created_at, reverse=True)

    def mark_certificate_expired(self, certificate_id: UUID) -> IssuedCertificate | None:
        with self._lock:
            cert = self._certs.get(certificate_id)
            if cert is None or cert.status != CertificateStatus.ACTIVE:
                return None
            cert = dataclasses.replace(cert, status=CertificateStatus.EXPIRED)
            self._certs[certificate_id] = cert
            return cert

    def count_certificates(self, ca_id: UUID | None = None) -> dict[str, int]:
        counts: dict[str, int] = {}
        with self._lock:
            for cert in self._certs.values():
                if ca_id is None or cert.ca_id == ca_id:
                    counts[cert.status.value] = counts.get(cert.status.value, 0) + 1
        return counts

    # -- Revocation ----------------------------------------------------------

    def revoke(self, record: RevocationRecord) -> RevocationRecord:
        with self._lock:
            cert = self._certs.get(record.certificate_id)
            if cert is None:
                msg = f"Certificate {record.certificate_id} not found"
                raise CertificateNotFound(msg)
            key = (record.ca_id, record.serial_number)
            if key in self._revocations or cert.status == CertificateStatus.REVOKED:
                msg = f"Certificate {record.serial_number} is already revoked"
                raise AlreadyRevoked(msg)
            self._revocations[key] = record
            self._certs[cert.id] = dataclasses.replace(cert, status=CertificateStatus.REVOKED)
            return record

    def get_revocation(
        self,
        serial_number: str,
        ca_id: UUID | None = None,
    ) -> RevocationRecord | None:
        with self._lock:
            if ca_id is not None:
                return self._revocations.get((ca_id, serial_number))
            matches = [r for r in self._revocations.values() if r.serial_number == serial_number]
        return min(matches, key=lambda r: r.revocation_date, default=None)

    def revocations_for_crl(
        self,
        ca_id: UUID,
        *,
        valid_after: datetime | None = None,
        revoked_after: datetime | None = None,
    ) -> list[RevocationRecord]:
        with self._lock:
            selected = []
            for rec in self._revocations.values():
                if rec.ca_id != ca_id:
                    continue
                if revoked_after is not None and rec.revocation_date <= revoked_after:
                    continue
                if valid_after is not None:
                    cert = self._certs.get(rec.certificate_id)
                    if cert is None or cert.valid_to <= valid_after:
                        continue
                selected.append(rec)
        return sorted(selected, key=lambda r: (r.revocation_date, r.serial_number))

    # -- CRLs ----------------------------------------------------------------

    def allocate_crl(
        self,
        ca_id: UUID,
        build: Callable[[int], CRLIssuance],
    ) -> CRLIssuance:
        with self._lock:
            ca_lock = self._crl_locks[ca_id]
        with ca_lock:
            with self._lock:
                ca = self._cas.get(ca_id)
                if ca is None:
                    msg = f"CA {ca_id} not found"
                    raise CANotFound(msg)
                number = ca.crl_number + 1
            crl = build(number)
            with self._lock:
                current = self._cas.get(ca_id)
                if current is None:
                    msg = f"CA {ca_id} was deleted during CRL generation"
                    raise CANotFound(msg)
                self._cas[ca_id] = dataclasses.replace(
                    current,
                    crl_number=number,
                    updated_at=datetime.now(UTC),
                )
                self._crls[ca_id].append(crl)
        log.debug("Allocated CRL number %d for CA %s", number, ca_id)
        return crl

    def latest_crl(self, ca_id: UUID, mode: CRLMode | None = None) -> CRLIssuance | None:
        with self._lock:
            crls = [c for c in self._crls.get(ca_id, ()) if mode is None or c.mode == mode]
        return max(crls, key=lambda c: c.crl_number, default=None)

    def get_crl(self, ca_id: UUID, crl_number: int) -> CRLIssuance | None:
        with self._lock:
            for crl in self._crls.get(ca_id, ()):
                if crl.crl_number == crl_number:
                    return crl
        return None

    def delete_crls_before(self, ca_id: UUID, cutoff: datetime, keep_id: UUID | None) -> int:
        with self._lock:
            crls = self._crls.get(ca_id, [])
            kept = [c for c in crls if c.created_at >= cutoff or c.id == keep_id]
            removed = len(crls) - len(kept)
            if ca_id in self._crls:
                self._crls[ca_id] = kept
        return removed
