"""Root conftest for the PRIVCA test suite."""

from __future__ import annotations

import sys
from pathlib import Path
from unittest.mock import MagicMock

import pytest
import yaml

# ---------------------------------------------------------------------------
# Make ``src/`` importable without installing the package
# ---------------------------------------------------------------------------
_SRC = str(Path(__file__).resolve().parent.parent / "src")
if _SRC not in sys.path:
    sys.path.insert(0, _SRC)

from privca.ca.crl import CRLGenerator  # noqa: E402
from privca.ca.issuance import IssuanceEngine, IssuanceRequest  # noqa: E402
from privca.ca.lifecycle import CALifecycleManager  # noqa: E402
from privca.ca.vault import KeyVault  # noqa: E402
from privca.config.settings import build_settings  # noqa: E402
from privca.hooks.audit import AuditTrail  # noqa: E402
from privca.store.memory import InMemoryStore  # noqa: E402

TEST_MASTER_KEY = "00112233445566778899aabbccddeeff00112233445566778899aabbccddeeff"


# ---------------------------------------------------------------------------
# Minimal config data shared by multiple test modules
# ---------------------------------------------------------------------------


@pytest.fixture()
def minimal_config_data() -> dict:
    """Return a dict containing the minimum config for a development engine."""
    return {
        "environment": "development",
        "vault": {"master_key": TEST_MASTER_KEY},
        "store": {"backend": "memory"},
        "ca": {
            "crl_distribution_url": "http://pki.example.test/crl/{ca_id}/latest",
            "ocsp_url": "http://pki.example.test/ocsp",
        },
        "logging": {"audit": {"enabled": False}},
    }


@pytest.fixture()
def tmp_config_file(tmp_path: Path, minimal_config_data: dict) -> Path:
    """Write *minimal_config_data* to a temp YAML file and return its path."""
    cfg = tmp_path / "config.yaml"
    cfg.write_text(
        yaml.safe_dump(minimal_config_data, default_flow_style=False, sort_keys=False),
        encoding="utf-8",
    )
    return cfg


# ---------------------------------------------------------------------------
# Engine fixtures
# ---------------------------------------------------------------------------


@pytest.fixture()
def settings(minimal_config_data):
    return build_settings(minimal_config_data)


@pytest.fixture()
def store():
    return InMemoryStore()


@pytest.fixture()
def vault(settings):
    return KeyVault(settings.vault, settings.environment)


@pytest.fixture()
def registry():
    """A mock hook registry; inspect ``registry.dispatch.call_args_list``."""
    return MagicMock()


@pytest.fixture()
def audit(registry):
    return AuditTrail(registry)


@pytest.fixture()
def lifecycle(store, vault, settings, audit):
    return CALifecycleManager(store, vault, settings, audit)


@pytest.fixture()
def issuance(store, vault, lifecycle, settings, audit):
    return IssuanceEngine(store, vault, lifecycle, settings, audit)


@pytest.fixture()
def crl_generator(store, lifecycle, settings, audit):
    return CRLGenerator(store, lifecycle, settings, audit)


@pytest.fixture()
def active_ca(lifecycle):
    """An ACTIVE self-signed ECDSA P-256 root CA."""
    init = lifecycle.initialize_ca(
        "Test Root",
        "C=US, O=Example, CN=Test Root CA",
        "ECDSA",
        curve="P-256",
        actor="admin",
    )
    lifecycle.self_sign(init.ca_id, actor="admin")
    return lifecycle.get_ca(init.ca_id)


@pytest.fixture()
def issued(issuance, active_ca):
    """A server certificate issued by :func:`active_ca` with a generated key."""
    return issuance.issue_certificate(
        IssuanceRequest(
            subject_dn="CN=www.example.test",
            sans=("www.example.test",),
            key_algorithm="ECDSA",
        ),
        active_ca.id,
        "alice",
    )


def audit_events(registry) -> list[str]:
    """Event names dispatched to a mock registry, in order."""
    return [c.args[0] for c in registry.dispatch.call_args_list]


# ---------------------------------------------------------------------------
# ConfigKit singleton cleanup, autouse so every test gets a fresh slate
# ---------------------------------------------------------------------------


@pytest.fixture(autouse=True)
def fresh_config():
    """Reset the PrivcaConfig singleton before and after every test."""
    from privca.config.privca_config import PrivcaConfig  # noqa: PLC0415

    PrivcaConfig.reset()
    yield
    PrivcaConfig.reset()
