"""Enumerated types for the PRIVCA persistence layer.

Status and algorithm enums inherit from :class:`enum.StrEnum` so their
``.value`` is a plain string that psycopg serialises as TEXT and JSON
round-trips naturally.  :class:`RevocationReason` inherits from
:class:`enum.IntEnum` per RFC 5280 §5.3.1 integer codes.
"""

from __future__ import annotations

from enum import IntEnum, StrEnum

# ---------------------------------------------------------------------------
# CA identity
# ---------------------------------------------------------------------------


class CAStatus(StrEnum):
    INITIALIZING = "INITIALIZING"
    ACTIVE = "ACTIVE"
    EXPIRED = "EXPIRED"


# ---------------------------------------------------------------------------
# Issued certificates
# ---------------------------------------------------------------------------


class CertificateStatus(StrEnum):
    ACTIVE = "ACTIVE"
    EXPIRED = "EXPIRED"
    REVOKED = "REVOKED"


class CertificateType(StrEnum):
    SERVER = "SERVER"
    CLIENT = "CLIENT"
    CODE_SIGNING = "CODE_SIGNING"


# ---------------------------------------------------------------------------
# Keys
# ---------------------------------------------------------------------------


class KeyAlgorithm(StrEnum):
    RSA = "RSA"
    ECDSA = "ECDSA"
    ED25519 = "ED25519"


# ---------------------------------------------------------------------------
# CRL
# ---------------------------------------------------------------------------


class CRLMode(StrEnum):
    FULL = "full"
    DELTA = "delta"


# ---------------------------------------------------------------------------
# Revocation reasons (RFC 5280 §5.3.1)
# ---------------------------------------------------------------------------


class RevocationReason(IntEnum):
    UNSPECIFIED = 0
    KEY_COMPROMISE = 1
    CA_COMPROMISE = 2
    AFFILIATION_CHANGED = 3
    SUPERSEDED = 4
    CESSATION_OF_OPERATION = 5
    CERTIFICATE_HOLD = 6
    # 7 is not used
    REMOVE_FROM_CRL = 8
    PRIVILEGE_WITHDRAWN = 9
    AA_COMPROMISE = 10

    @classmethod
    def parse(cls, value: int | str | RevocationReason) -> RevocationReason:
        """Accept an integer code, an enum member name, or a camelCase RFC name.

        Raises
        ------
        ValueError
            If *value* does not name a known reason.

        """
        if isinstance(value, cls):
            return value
        if isinstance(value, int):
            return cls(value)
        key = str(value).strip()
        if key.isdigit():
            return cls(int(key))
        normalized = key.replace("_", "").replace("-", "").lower()
        for member in cls:
            if member.name.replace("_", "").lower() == normalized:
                return member
        msg = f"Unknown revocation reason {value!r}"
        raise ValueError(msg)
