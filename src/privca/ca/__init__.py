"""Certificate-authority engine.

Exports the error taxonomy, the result dataclasses and the engine
components: key vault, CA lifecycle, issuance, revocation/CRL and export.
"""

from privca.ca.base import (
    AlreadyRevoked,
    CAError,
    CANotActive,
    CANotFound,
    CertificateNotFound,
    ConfigurationError,
    InitializedCA,
    IssuanceResult,
    KeyGenerationError,
    SigningError,
    UnsupportedAlgorithm,
    ValidationError,
    VaultError,
)
from privca.ca.crl import CRLGenerator
from privca.ca.export import CertificateExporter
from privca.ca.issuance import IssuanceEngine, IssuanceRequest
from privca.ca.lifecycle import CALifecycleManager, SelfSignOptions
from privca.ca.vault import KeyPair, KeyVault

__all__ = [
    "AlreadyRevoked",
    "CAError",
    "CALifecycleManager",
    "CANotActive",
    "CANotFound",
    "CRLGenerator",
    "CertificateExporter",
    "CertificateNotFound",
    "ConfigurationError",
    "InitializedCA",
    "IssuanceEngine",
    "IssuanceRequest",
    "IssuanceResult",
    "KeyGenerationError",
    "KeyPair",
    "KeyVault",
    "SelfSignOptions",
    "SigningError",
    "UnsupportedAlgorithm",
    "ValidationError",
    "VaultError",
]
