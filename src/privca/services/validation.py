"""Certificate chain and trust validation.

Validates arbitrary certificates against the certificates of the ACTIVE
CA identities: chain building by subject DN with signature checks,
expiry, revocation by serial and a handful of extension sanity checks.
Results are memoised in a bounded TTL cache that is purely an
accelerator; dropping it never changes an answer.
"""

from __future__ import annotations

import dataclasses
import hashlib
import logging
import threading
import time
from collections import OrderedDict
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import TYPE_CHECKING

from cryptography import x509
from cryptography.exceptions import InvalidSignature
from cryptography.hazmat.primitives.asymmetric import rsa

from privca.ca.base import ValidationError
from privca.ca.cert_utils import (
    certificate_fingerprint,
    format_name,
    format_serial,
    load_certificates,
)
from privca.core.types import CAStatus
from privca.hooks.audit import AuditTrail

if TYPE_CHECKING:
    from collections.abc import Callable, Iterable
    from uuid import UUID

    from privca.config.settings import ValidationSettings
    from privca.store.base import PKIStore

log = logging.getLogger(__name__)

_DEPRECATED_HASHES = frozenset({"md5", "sha1"})


# ---------------------------------------------------------------------------
# Options and results
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class ValidationOptions:
    """Knobs for one validation.

    Attributes
    ----------
    chain_pem:
        Extra intermediate certificates to consider while building the chain.
    check_revocation:
        Look the serial up in the revocation records.
    max_chain_length:
        Overrides ``validation.max_chain_length`` when set.
    use_cache:
        Read and write the result cache.

    """

    chain_pem: str | None = None
    check_revocation: bool = True
    max_chain_length: int | None = None
    use_cache: bool = True


@dataclass(frozen=True)
class ChainInfo:
    chain_length: int = 0
    is_complete: bool = False
    root_ca: str | None = None
    intermediate_cas: tuple[str, ...] = ()
    end_entity: str = "Unknown"


@dataclass(frozen=True)
class ExpirationInfo:
    expired: bool
    days_until_expiry: int
    valid_from: datetime
    valid_to: datetime


@dataclass(frozen=True)
class ValidationResult:
    """Outcome of :meth:`ChainValidator.validate_certificate`.

    ``is_valid`` holds only when the chain reaches a trusted CA, the
    certificate is within its validity period, it is not revoked and
    its signature verifies.  ``issues`` may also carry findings that do
    not affect ``is_valid`` (weak keys, deprecated hashes).
    """

    is_valid: bool
    issues: tuple[str, ...]
    chain_info: ChainInfo
    expiration: ExpirationInfo | None
    signature_verified: bool
    revoked: bool
    cached: bool = False
    last_validated: datetime = field(default_factory=lambda: datetime.now(UTC))


# ---------------------------------------------------------------------------
# Cache
# ---------------------------------------------------------------------------


class ValidationCache:
    """Thread-safe LRU cache of validation results with a TTL.

    A ``max_entries`` of zero disables caching.
    """

    def __init__(
        self,
        max_entries: int,
        ttl_seconds: float,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._max_entries = max_entries
        self._ttl = ttl_seconds
        self._clock = clock
        self._entries: OrderedDict[str, tuple[float, ValidationResult]] = OrderedDict()
        self._lock = threading.Lock()

    @staticmethod
    def key_for(certificate_pem: str, options: ValidationOptions, max_chain_length: int) -> str:
        material = "\x00".join(
            (
                certificate_pem.strip(),
                (options.chain_pem or "").strip(),
                str(options.check_revocation),
                str(max_chain_length),
            ),
        )
        return hashlib.sha256(material.encode("utf-8")).hexdigest()

    def get(self, key: str) -> ValidationResult | None:
        now = self._clock()
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                return None
            stored_at, result = entry
            if now - stored_at >= self._ttl:
                del self._entries[key]
                return None
            self._entries.move_to_end(key)
            return result

    def put(self, key: str, result: ValidationResult) -> None:
        if self._max_entries <= 0:
            return
        with self._lock:
            self._entries[key] = (self._clock(), result)
            self._entries.move_to_end(key)
            while len(self._entries) > self._max_entries:
                self._entries.popitem(last=False)

    def clear(self) -> int:
        """Drop every entry; returns how many there were."""
        with self._lock:
            count = len(self._entries)
            self._entries.clear()
            return count

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _is_ca(cert: x509.Certificate) -> bool:
    try:
        if not cert.extensions.get_extension_for_class(x509.BasicConstraints).value.ca:
            return False
    except x509.ExtensionNotFound:
        return False
    try:
        return cert.extensions.get_extension_for_class(x509.KeyUsage).value.key_cert_sign
    except x509.ExtensionNotFound:
        return True


def _signed_by(cert: x509.Certificate, issuer: x509.Certificate) -> bool:
    try:
        cert.verify_directly_issued_by(issuer)
    except (InvalidSignature, ValueError, TypeError):
        return False
    return True


def _within_validity(cert: x509.Certificate, now: datetime) -> bool:
    return cert.not_valid_before_utc <= now <= cert.not_valid_after_utc


def _extension_findings(cert: x509.Certificate, min_rsa_bits: int) -> list[str]:
    label = format_name(cert.subject) or format_serial(cert.serial_number)
    findings = []
    try:
        bc = cert.extensions.get_extension_for_class(x509.BasicConstraints)
    except x509.ExtensionNotFound:
        bc = None
    if bc is not None and bc.value.ca and not bc.critical:
        findings.append(f"CA certificate {label} has a non-critical basicConstraints extension")
    key = cert.public_key()
    if isinstance(key, rsa.RSAPublicKey) and key.key_size < min_rsa_bits:
        findings.append(
            f"Certificate {label} uses a {key.key_size}-bit RSA key (minimum {min_rsa_bits})",
        )
    hash_alg = cert.signature_hash_algorithm
    if hash_alg is not None and hash_alg.name.lower() in _DEPRECATED_HASHES:
        findings.append(
            f"Certificate {label} is signed with deprecated hash {hash_alg.name.upper()}",
        )
    return findings


# ---------------------------------------------------------------------------
# Validator
# ---------------------------------------------------------------------------


class ChainValidator:
    """Validate certificates against the ACTIVE CA trust set.

    Parameters
    ----------
    store:
        Source of ACTIVE CA certificates and revocation records.
    settings:
        The ``validation`` configuration section.
    audit:
        Audit trail; events are dropped when omitted.

    """

    def __init__(
        self,
        store: PKIStore,
        settings: ValidationSettings,
        audit: AuditTrail | None = None,
        cache: ValidationCache | None = None,
    ) -> None:
        self._store = store
        self._settings = settings
        self._audit = audit or AuditTrail(None)
        self._cache = cache or ValidationCache(
            settings.cache_max_entries,
            settings.cache_ttl_seconds,
        )

    @property
    def cache(self) -> ValidationCache:
        return self._cache

    def validate_certificate(
        self,
        certificate_pem: str,
        options: ValidationOptions | None = None,
        *,
        actor: str = "system",
    ) -> ValidationResult:
        """Validate one PEM certificate.

        Raises
        ------
        ValidationError
            If *certificate_pem* (or ``options.chain_pem``) holds no
            parseable certificate.

        """
        opts = options or ValidationOptions()
        max_length = opts.max_chain_length or self._settings.max_chain_length
        key = ValidationCache.key_for(certificate_pem, opts, max_length)

        if opts.use_cache:
            hit = self._cache.get(key)
            if hit is not None:
                result = dataclasses.replace(hit, cached=True)
                self._record(result, actor)
                return result

        leaf = load_certificates(certificate_pem)[0]
        extra = load_certificates(opts.chain_pem) if opts.chain_pem else []
        result = self._validate(leaf, extra, opts, max_length)

        if opts.use_cache:
            self._cache.put(key, result)
        self._record(result, actor)
        return result

    def validate_batch(
        self,
        certificates: Iterable[str],
        options: ValidationOptions | None = None,
        *,
        actor: str = "system",
    ) -> list[ValidationResult]:
        """Validate several certificates; unparseable entries become invalid results."""
        results = []
        for pem in certificates:
            try:
                results.append(self.validate_certificate(pem, options, actor=actor))
            except ValidationError as exc:
                results.append(
                    ValidationResult(
                        is_valid=False,
                        issues=(f"Validation error: {exc.detail}",),
                        chain_info=ChainInfo(),
                        expiration=None,
                        signature_verified=False,
                        revoked=False,
                    ),
                )
        return results

    def clear_cache(self) -> int:
        count = self._cache.clear()
        log.info("Cleared %d cached validation results", count)
        return count

    # -- internals -----------------------------------------------------------

    def _trust_material(
        self,
    ) -> tuple[dict[str, x509.Certificate], list[x509.Certificate], dict[str, UUID]]:
        """Trusted CA certificates by fingerprint, candidate intermediates,
        and the owning CA id of each trusted certificate.
        """
        now = datetime.now(UTC)
        trusted: dict[str, x509.Certificate] = {}
        owners: dict[str, UUID] = {}
        intermediates: list[x509.Certificate] = []
        for ca in self._store.list_cas(CAStatus.ACTIVE):
            if not ca.certificate_pem or (ca.valid_to is not None and ca.valid_to <= now):
                continue
            for cert in load_certificates(ca.certificate_pem):
                fingerprint = certificate_fingerprint(cert)
                trusted[fingerprint] = cert
                owners[fingerprint] = ca.id
            if ca.certificate_chain_pem:
                intermediates.extend(load_certificates(ca.certificate_chain_pem))
        return trusted, intermediates, owners

    def _validate(  # noqa: C901, PLR0912
        self,
        leaf: x509.Certificate,
        extra: list[x509.Certificate],
        opts: ValidationOptions,
        max_length: int,
    ) -> ValidationResult:
        now = datetime.now(UTC)
        issues: list[str] = []
        trusted, intermediates, owners = self._trust_material()
        candidates = [*trusted.values(), *extra, *intermediates]

        # Chain walk
        chain = [leaf]
        anchored = certificate_fingerprint(leaf) in trusted
        signature_verified = False
        current = leaf
        while not anchored:
            if len(chain) >= max_length:
                issues.append(f"Certificate chain exceeds the maximum length of {max_length}")
                break
            issuer = next(
                (c for c in candidates if c.subject == current.issuer and _signed_by(current, c)),
                None,
            )
            if issuer is None:
                if current.subject == current.issuer and _signed_by(current, current):
                    if current is leaf:
                        signature_verified = True
                    issues.append(
                        f"Self-signed certificate {format_name(current.subject)} is not trusted",
                    )
                else:
                    issues.append(
                        f"Issuer {format_name(current.issuer)} not found among trusted CAs",
                    )
                break
            if current is leaf:
                signature_verified = True
            if not _is_ca(issuer):
                issues.append(
                    f"Issuer {format_name(issuer.subject)} is not a CA "
                    "(basicConstraints CA=true and keyCertSign required)",
                )
                break
            chain.append(issuer)
            anchored = certificate_fingerprint(issuer) in trusted
            current = issuer

        if anchored and current is leaf:
            # The certificate is itself a trusted CA certificate
            signature_verified = _signed_by(leaf, leaf) or any(
                leaf.issuer == c.subject and _signed_by(leaf, c) for c in candidates
            )
            if not signature_verified:
                issues.append("Certificate signature could not be verified")

        for cert in chain[1:]:
            if not _within_validity(cert, now):
                anchored = False
                issues.append(
                    f"Issuer {format_name(cert.subject)} is outside its validity period",
                )

        # Expiry
        not_before, not_after = leaf.not_valid_before_utc, leaf.not_valid_after_utc
        expired = not (not_before <= now <= not_after)
        if now > not_after:
            issues.append(f"Certificate expired on {not_after.date().isoformat()}")
        elif now < not_before:
            issues.append(f"Certificate is not valid before {not_before.date().isoformat()}")
        expiration = ExpirationInfo(
            expired=expired,
            days_until_expiry=(not_after - now).days,
            valid_from=not_before,
            valid_to=not_after,
        )

        # Revocation
        revoked = False
        # Only certificates issued directly by one of our CAs have records.
        issuer_ca_id = owners.get(certificate_fingerprint(chain[1])) if len(chain) > 1 else None
        if opts.check_revocation and issuer_ca_id is not None:
            record = self._store.get_revocation(format_serial(leaf.serial_number), issuer_ca_id)
            if record is not None:
                revoked = True
                issues.append(f"Certificate is revoked: {record.reason.name.lower()}")

        for cert in chain:
            issues.extend(_extension_findings(cert, self._settings.min_rsa_key_size))

        chain_info = ChainInfo(
            chain_length=len(chain),
            is_complete=anchored,
            root_ca=format_name(chain[-1].subject) if anchored else None,
            intermediate_cas=tuple(format_name(c.subject) for c in chain[1:-1]),
            end_entity=format_name(leaf.subject),
        )
        return ValidationResult(
            is_valid=anchored and not expired and not revoked and signature_verified,
            issues=tuple(issues),
            chain_info=chain_info,
            expiration=expiration,
            signature_verified=signature_verified,
            revoked=revoked,
            last_validated=now,
        )

    def _record(self, result: ValidationResult, actor: str) -> None:
        self._audit.record(
            "certificate.validation",
            actor=actor,
            description=f"Certificate validation completed for {result.chain_info.end_entity}",
            metadata={
                "is_valid": result.is_valid,
                "issues_count": len(result.issues),
                "chain_length": result.chain_info.chain_length,
                "expired": result.expiration.expired if result.expiration else None,
                "revoked": result.revoked,
                "cached": result.cached,
            },
        )
