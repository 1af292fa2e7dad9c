"""PRIVCA configuration loader built on ConfigKit.

Lifecycle::

    # 1. The WSGI entry point creates the singleton (once, at startup)
    PrivcaConfig(config_file="/etc/privca/config.yaml")

    # 2. Any module retrieves it afterwards
    from privca.config import get_config
    cfg = get_config()
    cfg.settings.crl.next_update_seconds  # typed access

    # 3. Extension / dynamic access
    cfg.get("ca.policy_oid", default="2.5.29.32.0")
"""

from __future__ import annotations

import logging
import os
import re
from pathlib import Path
from typing import Any

from configkit import ConfigKit, ConfigKitMeta

from privca.config.settings import PrivcaSettings, build_settings

_SCHEMA_PATH = Path(__file__).parent / "schema.json"

_ENV_RE = re.compile(
    r"^\$\{([^}:]+?)(?::-(.*))?\}$",
    re.DOTALL,
)

_CLASS_PATH_RE = re.compile(
    r"^[a-zA-Z_][a-zA-Z0-9_]*(\.[a-zA-Z_][a-zA-Z0-9_]*)+$",
)

_OID_RE = re.compile(r"^[0-2](\.(0|[1-9][0-9]*))+$")

_PRODUCTION_ENVIRONMENTS = frozenset({"production", "prod"})
_MIN_RSA_KEY_SIZE = 2048
_MASTER_KEY_BYTES = 32
_MASTER_KEY_HEX_LENGTH = 64
_MIN_OCSP_VALIDITY_SECONDS = 60

log = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Module-level singleton reference
# ---------------------------------------------------------------------------
_instance: PrivcaConfig | None = None


def get_config() -> PrivcaConfig:
    """Return the initialised configuration singleton.

    Raises :class:`RuntimeError` if :class:`PrivcaConfig` has not been
    created yet.
    """
    if _instance is None:
        msg = (
            "Configuration not initialised. "
            "PrivcaConfig must be created with config_file= before calling get_config()."
        )
        raise RuntimeError(
            msg,
        )
    return _instance


# ---------------------------------------------------------------------------
# Validation error collector
# ---------------------------------------------------------------------------


class ConfigValidationError(Exception):
    """Raised when cross-field validation finds one or more problems."""

    def __init__(self, errors: list[str]) -> None:
        """Store *errors* and build a human-readable message."""
        self.errors = errors
        body = "\n".join(f"  - {e}" for e in errors)
        super().__init__(f"Configuration validation failed:\n{body}")


# ---------------------------------------------------------------------------
# Environment variable resolution
# ---------------------------------------------------------------------------


def _resolve_value(value: str, path: str) -> str:
    """Replace ``${VAR}`` or ``${VAR:-default}`` with env var value."""
    match = _ENV_RE.match(value)
    if match is None:
        return value
    var_name = match.group(1)
    fallback = match.group(2)
    resolved = os.environ.get(var_name)
    if resolved is not None:
        return resolved
    if fallback is not None:
        return fallback
    raise ConfigValidationError(
        [
            f"Environment variable '${{{var_name}}}' referenced "
            f"at '{path}' is not set and has no default",
        ],
    )


def _resolve_env_vars(
    data: Any,  # noqa: ANN401
    path: str = "",
) -> None:
    """Walk *data* in-place and resolve ``${VAR}``/``${VAR:-default}`` strings."""
    if isinstance(data, dict):
        for key in data:
            child_path = f"{path}.{key}" if path else key
            if isinstance(data[key], str):
                data[key] = _resolve_value(data[key], child_path)
            elif isinstance(data[key], (dict, list)):
                _resolve_env_vars(data[key], child_path)
    elif isinstance(data, list):
        for idx, item in enumerate(data):
            child_path = f"{path}[{idx}]"
            if isinstance(item, str):
                data[idx] = _resolve_value(item, child_path)
            elif isinstance(item, (dict, list)):
                _resolve_env_vars(item, child_path)


def _master_key_problem(master_key: str) -> str | None:
    """Return a description of what is wrong with *master_key*, if anything."""
    if len(master_key) == _MASTER_KEY_HEX_LENGTH:
        try:
            bytes.fromhex(master_key)
        except ValueError:
            pass
        else:
            return None
    if len(master_key.encode("utf-8")) < _MASTER_KEY_BYTES:
        return (
            f"vault.master_key is too short ({len(master_key.encode('utf-8'))} bytes) "
            f"; at least {_MASTER_KEY_BYTES} bytes or {_MASTER_KEY_HEX_LENGTH} hex "
            "characters are required"
        )
    return None


# ---------------------------------------------------------------------------
# Config class
# ---------------------------------------------------------------------------


class PrivcaConfig(ConfigKit):
    """Central configuration for the PRIVCA engine.

    Subclasses :class:`configkit.ConfigKit`.  The JSON schema is
    bundled at ``config/schema.json``; users supply only ``config_file``.

    After construction the typed settings tree is available at
    :pyattr:`settings` and the raw dict via :pyattr:`data` /
    :pymeth:`get`.
    """

    def __init__(
        self,
        *,
        config_file: str | Path,
        schema_file: str | Path | None = None,  # noqa: ARG002
    ) -> None:
        """Initialise the PRIVCA configuration singleton.

        Parameters
        ----------
        config_file:
            Path to the YAML/JSON configuration file.
        schema_file:
            Ignored.  Exists only to satisfy the
            :class:`ConfigKitMeta` singleton guard.

        """
        global _instance  # noqa: PLW0603

        super().__init__(
            config_file=config_file,
            schema_file=_SCHEMA_PATH,
        )

        self._settings: PrivcaSettings = build_settings(self.data)
        _instance = self

    # -- lifecycle overrides ------------------------------------------------

    def _load(self) -> None:
        """Load config file then resolve ``${VAR}`` env-var references.

        Runs env-var resolution **before** schema validation so that
        substituted values (e.g. ``${LOG_LEVEL:-INFO}``) are checked
        against enum constraints in the schema.
        """
        super()._load()
        _resolve_env_vars(self._data)

    # -- typed access -------------------------------------------------------

    @property
    def settings(self) -> PrivcaSettings:
        """Fully-typed, frozen settings tree."""
        return self._settings

    # -- cross-field validation ---------------------------------------------

    def additional_checks(self) -> None:  # noqa: C901, PLR0912
        """Semantic & cross-field validation.

        Called automatically by ConfigKit **after** schema validation
        passes.
        """
        errors: list[str] = []
        warnings: list[str] = []

        environment = str(self.data.get("environment", "production")).lower()
        production = environment in _PRODUCTION_ENVIRONMENTS
        vault = self.data.get("vault") or {}
        ca = self.data.get("ca") or {}
        crl = self.data.get("crl") or {}
        ocsp = self.data.get("ocsp") or {}
        validation = self.data.get("validation") or {}
        store = self.data.get("store") or {}

        # -- Vault --
        master_key = vault.get("master_key") or ""
        if not master_key:
            if production:
                errors.append(
                    "vault.master_key is required when environment is "
                    f"'{environment}' (set it from ${{PRIVCA_ENCRYPTION_KEY}})",
                )
            else:
                warnings.append(
                    "vault.master_key is not set; a fixed development key "
                    "will encrypt private keys; never use this outside development",
                )
        else:
            problem = _master_key_problem(master_key)
            if problem:
                errors.append(problem)

        # -- CA --
        default_days = ca.get("default_validity_days", 365)
        max_days = ca.get("max_validity_days", 825)
        if default_days > max_days:
            errors.append(
                f"ca.default_validity_days ({default_days}) must be <= "
                f"ca.max_validity_days ({max_days})",
            )
        min_rsa = ca.get("min_rsa_key_size", _MIN_RSA_KEY_SIZE)
        if min_rsa < _MIN_RSA_KEY_SIZE:
            errors.append(
                f"ca.min_rsa_key_size ({min_rsa}) must be >= {_MIN_RSA_KEY_SIZE}",
            )
        policy_oid = ca.get("policy_oid", "2.5.29.32.0")
        if not _OID_RE.match(policy_oid):
            errors.append(
                f"ca.policy_oid '{policy_oid}' is not a dotted OID",
            )
        for url_key in ("crl_distribution_url", "ocsp_url"):
            url = ca.get(url_key)
            if url and not url.startswith(("http://", "https://")):
                errors.append(
                    f"ca.{url_key} must be an http(s) URL (got '{url}')",
                )
        if production and not ca.get("crl_distribution_url"):
            warnings.append(
                "ca.crl_distribution_url is not set; issued certificates "
                "will carry no CRL Distribution Points extension",
            )

        # -- CRL --
        next_update = crl.get("next_update_seconds", 86400)
        cache_seconds = crl.get("cache_seconds", 3600)
        if cache_seconds > next_update:
            warnings.append(
                f"crl.cache_seconds ({cache_seconds}) exceeds "
                f"crl.next_update_seconds ({next_update}); relying parties "
                "may be served a CRL past its nextUpdate",
            )

        # -- OCSP --
        ocsp_validity = ocsp.get("response_validity_seconds", 86400)
        if ocsp_validity < _MIN_OCSP_VALIDITY_SECONDS:
            warnings.append(
                f"ocsp.response_validity_seconds ({ocsp_validity}) is below "
                f"{_MIN_OCSP_VALIDITY_SECONDS}s; clients will re-query constantly",
            )

        # -- Validation --
        if validation.get("cache_max_entries", 1000) < 1:
            errors.append("validation.cache_max_entries must be >= 1")

        # -- Store --
        if store.get("backend", "postgres") == "memory" and production:
            warnings.append(
                "store.backend is 'memory' in production; all CA state is "
                "lost on restart and not shared between workers",
            )

        # -- Database --
        db = self.data.get("database") or {}
        min_conn = db.get("min_connections", 2)
        max_conn = db.get("max_connections", 10)
        if min_conn > max_conn:
            errors.append(
                f"database.min_connections ({min_conn}) must be <= "
                f"database.max_connections ({max_conn})",
            )

        # -- Hooks --
        from privca.hooks.events import KNOWN_EVENTS  # noqa: PLC0415

        hooks = self.data.get("hooks") or {}
        for idx, entry in enumerate(hooks.get("registered", [])):
            class_path = entry.get("class", "")
            if class_path and not _CLASS_PATH_RE.match(class_path):
                errors.append(
                    f"hooks.registered[{idx}].class '{class_path}' is not a "
                    "valid fully qualified Python class path "
                    "(expected 'package.module.ClassName')",
                )
            for evt in entry.get("events", []):
                if evt not in KNOWN_EVENTS:
                    errors.append(
                        f"hooks.registered[{idx}].events contains unknown "
                        f"event '{evt}'. Known events: {sorted(KNOWN_EVENTS)}",
                    )

        for w in warnings:
            log.warning("Config warning: %s", w)

        if errors:
            raise ConfigValidationError(errors)

    # -- helpers ------------------------------------------------------------

    def reload_settings(self) -> PrivcaSettings:
        """Re-read the config file and rebuild settings.

        Does not reset the singleton.  Re-reads the file, resolves env
        vars, and returns a fresh :class:`PrivcaSettings` tree.
        """
        import json  # noqa: PLC0415

        import yaml  # noqa: PLC0415

        source_file = self.data.get("_source", "")
        if not source_file:
            msg = "Cannot reload: no source file recorded"
            raise RuntimeError(msg)

        with open(source_file, encoding="utf-8") as f:  # noqa: PTH123
            if source_file.endswith((".yaml", ".yml")):
                new_data = yaml.safe_load(f)
            else:
                new_data = json.load(f)

        _resolve_env_vars(new_data)
        return build_settings(new_data)

    @classmethod
    def reset(cls) -> None:
        """Reset the singleton -- testing only."""
        global _instance  # noqa: PLW0603
        _instance = None
        ConfigKitMeta.reset()

    def __repr__(self) -> str:
        """Return a developer-friendly representation."""
        source = self.data.get("_source", "?")
        return f"<PrivcaConfig config_file={source}>"
