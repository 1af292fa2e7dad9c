"""Certificate policies keyed by certificate type.

Each :class:`CertificatePolicy` lists the key usages and extended key
usages stamped on end-entity certificates of that type, and whether a
SAN is mandatory.  Adding a type means adding a row to
:data:`POLICIES`; the issuance engine has no per-type branches.
"""

from __future__ import annotations

from dataclasses import dataclass

from privca.ca.base import ValidationError
from privca.core.types import CertificateType


@dataclass(frozen=True)
class CertificatePolicy:
    certificate_type: CertificateType
    key_usages: tuple[str, ...]
    extended_key_usages: tuple[str, ...]
    requires_san: bool = False
    # Use a hostname CN as the SAN when none was supplied
    cn_as_san: bool = False


POLICIES: dict[CertificateType, CertificatePolicy] = {
    CertificateType.SERVER: CertificatePolicy(
        certificate_type=CertificateType.SERVER,
        key_usages=("digital_signature", "key_encipherment"),
        extended_key_usages=("server_auth",),
        requires_san=True,
        cn_as_san=True,
    ),
    CertificateType.CLIENT: CertificatePolicy(
        certificate_type=CertificateType.CLIENT,
        key_usages=("digital_signature", "key_agreement"),
        extended_key_usages=("client_auth",),
    ),
    CertificateType.CODE_SIGNING: CertificatePolicy(
        certificate_type=CertificateType.CODE_SIGNING,
        key_usages=("digital_signature",),
        extended_key_usages=("code_signing",),
    ),
}


def policy_for(certificate_type: CertificateType | str) -> CertificatePolicy:
    """Look up the policy for a type name or enum member.

    Raises
    ------
    ValidationError
        If the type is unknown.

    """
    try:
        return POLICIES[CertificateType(str(certificate_type).upper())]
    except (KeyError, ValueError):
        msg = (
            f"Unsupported certificate type {certificate_type!r}; "
            f"supported: {sorted(t.value for t in POLICIES)}"
        )
        raise ValidationError(msg) from None
