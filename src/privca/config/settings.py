"""Typed, frozen dataclasses for every configuration section.

This module is the **single source of truth** for default values.
JSON Schema defaults exist only for documentation; these builders
are what the application actually reads.

Access pattern::

    from privca.config import get_config

    crl = get_config().settings.crl
    print(crl.next_update_seconds)        # typed, IDE-autocompleted
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any

_PRODUCTION_ENVIRONMENTS = frozenset({"production", "prod"})

# ---------------------------------------------------------------------------
# Vault
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class VaultSettings:
    """Master key used to encrypt private keys at rest."""

    master_key: str | None


def _build_vault(data: dict | None) -> VaultSettings:
    d = data or {}
    return VaultSettings(
        master_key=d.get("master_key") or None,
    )


# ---------------------------------------------------------------------------
# CA
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class CASettings:
    """Issuance policy shared by every CA identity."""

    default_validity_days: int
    max_validity_days: int
    root_validity_days: int
    hash_algorithm: str
    min_rsa_key_size: int
    policy_oid: str
    crl_distribution_url: str | None
    ocsp_url: str | None
    serial_max_attempts: int


def _build_ca(data: dict | None) -> CASettings:
    d = data or {}
    return CASettings(
        default_validity_days=d.get("default_validity_days", 365),
        max_validity_days=d.get("max_validity_days", 825),
        root_validity_days=d.get("root_validity_days", 3650),
        hash_algorithm=d.get("hash_algorithm", "sha256"),
        min_rsa_key_size=d.get("min_rsa_key_size", 2048),
        policy_oid=d.get("policy_oid", "2.5.29.32.0"),
        crl_distribution_url=d.get("crl_distribution_url") or None,
        ocsp_url=d.get("ocsp_url") or None,
        serial_max_attempts=d.get("serial_max_attempts", 10),
    )


# ---------------------------------------------------------------------------
# CRL
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class CrlSettings:
    enabled: bool
    path: str
    next_update_seconds: int
    hash_algorithm: str
    generate_on_revoke: bool
    retention_days_after_expiry: int
    history_retention_days: int
    cache_seconds: int


def _build_crl(data: dict | None) -> CrlSettings:
    d = data or {}
    return CrlSettings(
        enabled=d.get("enabled", True),
        path=d.get("path", "/crl"),
        next_update_seconds=d.get("next_update_seconds", 86400),
        hash_algorithm=d.get("hash_algorithm", "sha256"),
        generate_on_revoke=d.get("generate_on_revoke", True),
        retention_days_after_expiry=d.get("retention_days_after_expiry", 0),
        history_retention_days=d.get("history_retention_days", 2),
        cache_seconds=d.get("cache_seconds", 3600),
    )


# ---------------------------------------------------------------------------
# OCSP
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class OcspSettings:
    enabled: bool
    path: str
    response_validity_seconds: int
    hash_algorithm: str


def _build_ocsp(data: dict | None) -> OcspSettings:
    d = data or {}
    return OcspSettings(
        enabled=d.get("enabled", True),
        path=d.get("path", "/ocsp"),
        response_validity_seconds=d.get("response_validity_seconds", 86400),
        hash_algorithm=d.get("hash_algorithm", "sha256"),
    )


# ---------------------------------------------------------------------------
# Validation
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class ValidationSettings:
    """Chain validator limits and result-cache sizing."""

    max_chain_length: int
    cache_ttl_seconds: int
    cache_max_entries: int
    min_rsa_key_size: int


def _build_validation(data: dict | None) -> ValidationSettings:
    d = data or {}
    return ValidationSettings(
        max_chain_length=d.get("max_chain_length", 10),
        cache_ttl_seconds=d.get("cache_ttl_seconds", 300),
        cache_max_entries=d.get("cache_max_entries", 1000),
        min_rsa_key_size=d.get("min_rsa_key_size", 2048),
    )


# ---------------------------------------------------------------------------
# Store
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class StoreSettings:
    """Which :class:`~privca.store.base.PKIStore` implementation to use."""

    backend: str


def _build_store(data: dict | None) -> StoreSettings:
    d = data or {}
    return StoreSettings(
        backend=d.get("backend", "postgres"),
    )


# ---------------------------------------------------------------------------
# Logging
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class AuditLogSettings:
    """Audit log output settings (file, rotation)."""

    enabled: bool
    file: str | None
    max_file_size_bytes: int
    backup_count: int


@dataclass(frozen=True)
class LoggingSettings:
    """Application logging configuration (level, format, audit)."""

    level: str
    format: str
    audit: AuditLogSettings


def _build_logging(data: dict | None) -> LoggingSettings:
    d = data or {}
    a = d.get("audit") or {}
    return LoggingSettings(
        level=d.get("level", "INFO"),
        format=d.get("format", "json"),
        audit=AuditLogSettings(
            enabled=a.get("enabled", True),
            file=a.get("file"),
            max_file_size_bytes=a.get("max_file_size_bytes", 104857600),
            backup_count=a.get("backup_count", 10),
        ),
    )


# ---------------------------------------------------------------------------
# Database
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class DatabaseSettings:
    """PostgreSQL connection and pool settings."""

    host: str
    port: int
    database: str
    user: str
    password: str
    sslmode: str
    min_connections: int
    max_connections: int
    connection_timeout: float
    auto_setup: bool


def _build_database(data: dict | None) -> DatabaseSettings:
    d = data or {}
    return DatabaseSettings(
        host=d.get("host", "localhost"),
        port=d.get("port", 5432),
        database=d.get("database", "privca"),
        user=d.get("user", "privca"),
        password=d.get("password", ""),
        sslmode=d.get("sslmode", "prefer"),
        min_connections=d.get("min_connections", 2),
        max_connections=d.get("max_connections", 10),
        connection_timeout=d.get("connection_timeout", 30.0),
        auto_setup=d.get("auto_setup", False),
    )


# ---------------------------------------------------------------------------
# Hooks
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class HookEntrySettings:
    """Single registered hook entry with events and config."""

    class_path: str
    enabled: bool
    events: tuple[str, ...]
    timeout_seconds: int | None
    config: dict[str, Any]


@dataclass(frozen=True)
class HookSettings:
    """Audit hook system settings (workers, retries, registry)."""

    timeout_seconds: int
    max_workers: int
    max_retries: int
    dead_letter_log: str | None
    registered: tuple[HookEntrySettings, ...]


def _build_hooks(data: dict | None) -> HookSettings:
    from privca.hooks.events import KNOWN_EVENTS  # noqa: PLC0415

    d = data or {}
    registered = []
    for idx, entry in enumerate(d.get("registered", [])):
        events = tuple(entry.get("events", []))
        for evt in events:
            if evt not in KNOWN_EVENTS:
                msg = (
                    f"hooks.registered[{idx}].events: unknown event "
                    f"'{evt}'. Known events: {sorted(KNOWN_EVENTS)}"
                )
                raise ValueError(
                    msg,
                )
        registered.append(
            HookEntrySettings(
                class_path=entry["class"],
                enabled=entry.get("enabled", True),
                events=events,
                timeout_seconds=entry.get("timeout_seconds"),
                config=entry.get("config", {}),
            )
        )
    return HookSettings(
        timeout_seconds=d.get("timeout_seconds", 30),
        max_workers=d.get("max_workers", 4),
        max_retries=d.get("max_retries", 0),
        dead_letter_log=d.get("dead_letter_log"),
        registered=tuple(registered),
    )


# ---------------------------------------------------------------------------
# API
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class ApiSettings:
    base_path: str
    max_request_body_bytes: int


def _build_api(data: dict | None) -> ApiSettings:
    d = data or {}
    return ApiSettings(
        base_path=d.get("base_path", ""),
        max_request_body_bytes=d.get("max_request_body_bytes", 65536),
    )


# ---------------------------------------------------------------------------
# Root settings aggregate
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class PrivcaSettings:
    environment: str
    vault: VaultSettings
    ca: CASettings
    crl: CrlSettings
    ocsp: OcspSettings
    validation: ValidationSettings
    store: StoreSettings
    logging: LoggingSettings
    database: DatabaseSettings
    hooks: HookSettings
    api: ApiSettings

    @property
    def is_production(self) -> bool:
        return self.environment.lower() in _PRODUCTION_ENVIRONMENTS


def build_settings(data: dict) -> PrivcaSettings:
    """Build the full typed settings tree from raw config data.

    Called once during :class:`PrivcaConfig` initialization after
    schema validation and environment-variable resolution.  Also used
    directly by tests and embedders that do not load a config file.
    """
    return PrivcaSettings(
        environment=data.get("environment", "production"),
        vault=_build_vault(data.get("vault")),
        ca=_build_ca(data.get("ca")),
        crl=_build_crl(data.get("crl")),
        ocsp=_build_ocsp(data.get("ocsp")),
        validation=_build_validation(data.get("validation")),
        store=_build_store(data.get("store")),
        logging=_build_logging(data.get("logging")),
        database=_build_database(data.get("database")),
        hooks=_build_hooks(data.get("hooks")),
        api=_build_api(data.get("api")),
    )
