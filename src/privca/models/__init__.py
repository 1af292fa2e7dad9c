"""Entity models for the PRIVCA persistence layer.

All models are frozen dataclasses.  Use :func:`dataclasses.replace`
for modifications (copy-on-write).
"""

from privca.models.ca_identity import CAIdentity
from privca.models.certificate import IssuedCertificate
from privca.models.crl import CRLIssuance
from privca.models.encrypted_key import EncryptedKey
from privca.models.revocation import RevocationRecord

__all__ = [
    "CAIdentity",
    "CRLIssuance",
    "EncryptedKey",
    "IssuedCertificate",
    "RevocationRecord",
]
