"""Configuration subsystem for PRIVCA.

Public API::

    from privca.config import get_config, PrivcaConfig

    # At startup:
    PrivcaConfig(config_file="config.yaml")

    # Everywhere else:
    cfg   = get_config()
    ttl   = cfg.settings.validation.cache_ttl_seconds   # typed access
    custom = cfg.get("ca.policy_oid")                    # dynamic dot-path
"""

from privca.config.privca_config import (
    ConfigValidationError,
    PrivcaConfig,
    get_config,
)
from privca.config.settings import (
    ApiSettings,
    AuditLogSettings,
    CASettings,
    CrlSettings,
    DatabaseSettings,
    HookEntrySettings,
    HookSettings,
    LoggingSettings,
    OcspSettings,
    PrivcaSettings,
    StoreSettings,
    ValidationSettings,
    VaultSettings,
    build_settings,
)

__all__ = [
    "ApiSettings",
    "AuditLogSettings",
    "CASettings",
    "ConfigValidationError",
    "CrlSettings",
    "DatabaseSettings",
    "HookEntrySettings",
    "HookSettings",
    "LoggingSettings",
    "OcspSettings",
    "PrivcaConfig",
    "PrivcaSettings",
    "StoreSettings",
    "ValidationSettings",
    "VaultSettings",
    "build_settings",
    "get_config",
]
