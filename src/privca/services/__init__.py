"""Protocol and validation services built on the CA engine."""

from privca.services.ocsp import OCSPQuery, OCSPResponder
from privca.services.validation import (
    ChainValidator,
    ValidationCache,
    ValidationOptions,
    ValidationResult,
)

__all__ = [
    "ChainValidator",
    "OCSPQuery",
    "OCSPResponder",
    "ValidationCache",
    "ValidationOptions",
    "ValidationResult",
]
