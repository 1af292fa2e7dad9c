"""Repository classes for the PRIVCA PostgreSQL store.

Each repository extends :class:`pypgkit.BaseRepository` with the
queries :class:`privca.store.postgres.PostgresStore` needs.
"""

from privca.repositories.ca_identity import CAIdentityRepository
from privca.repositories.certificate import CertificateRepository
from privca.repositories.crl import CRLRepository
from privca.repositories.revocation import RevocationRepository

__all__ = [
    "CAIdentityRepository",
    "CRLRepository",
    "CertificateRepository",
    "RevocationRepository",
]
