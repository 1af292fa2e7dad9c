"""Shared X.509 helpers for the lifecycle manager, issuance and CRL code.

Distinguished-name and SAN parsing, serial numbers, fingerprints,
signature-hash selection and the key-usage / extended-key-usage
builders used by the certificate policies.
"""

from __future__ import annotations

import hashlib
import ipaddress
import re
import secrets
from typing import TYPE_CHECKING

from cryptography import x509
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import ec, ed448, ed25519, rsa
from cryptography.x509.oid import ExtendedKeyUsageOID, NameOID

from privca.ca.base import ValidationError

if TYPE_CHECKING:
    from collections.abc import Iterable

    from cryptography.hazmat.primitives.asymmetric.types import (
        CertificateIssuerPrivateKeyTypes,
        PublicKeyTypes,
    )

# ---------------------------------------------------------------------------
# Hashes
# ---------------------------------------------------------------------------

HASH_ALGORITHMS: dict[str, hashes.HashAlgorithm] = {
    "sha256": hashes.SHA256(),
    "sha384": hashes.SHA384(),
    "sha512": hashes.SHA512(),
}


def signing_hash(
    key: CertificateIssuerPrivateKeyTypes | PublicKeyTypes,
    name: str = "sha256",
) -> hashes.HashAlgorithm | None:
    """Hash to sign with *key*: ``None`` for EdDSA keys, *name* otherwise."""
    if isinstance(
        key,
        (
            ed25519.Ed25519PrivateKey,
            ed25519.Ed25519PublicKey,
            ed448.Ed448PrivateKey,
            ed448.Ed448PublicKey,
        ),
    ):
        return None
    return HASH_ALGORITHMS.get(name, hashes.SHA256())


# ---------------------------------------------------------------------------
# Serial numbers and fingerprints
# ---------------------------------------------------------------------------

SERIAL_BYTES = 16


def generate_serial() -> int:
    """16 random bytes as a non-negative integer (may be zero; callers reject it)."""
    return int.from_bytes(secrets.token_bytes(SERIAL_BYTES), "big")


def format_serial(serial: int) -> str:
    """Render a serial as 32 upper-case hex characters."""
    return format(serial, "032X")


def parse_serial(serial: str) -> int:
    """Inverse of :func:`format_serial`; accepts colons and any case."""
    cleaned = serial.replace(":", "").strip()
    try:
        return int(cleaned, 16)
    except ValueError:
        msg = f"Invalid serial number {serial!r}"
        raise ValidationError(msg) from None


def certificate_fingerprint(cert: x509.Certificate) -> str:
    """SHA-256 of the DER encoding as colon-separated upper-case hex pairs."""
    digest = hashlib.sha256(cert.public_bytes(serialization.Encoding.DER)).hexdigest().upper()
    return ":".join(digest[i : i + 2] for i in range(0, len(digest), 2))


# ---------------------------------------------------------------------------
# Distinguished names
# ---------------------------------------------------------------------------

_DN_ATTRIBUTES: dict[str, x509.ObjectIdentifier] = {
    "CN": NameOID.COMMON_NAME,
    "C": NameOID.COUNTRY_NAME,
    "ST": NameOID.STATE_OR_PROVINCE_NAME,
    "L": NameOID.LOCALITY_NAME,
    "O": NameOID.ORGANIZATION_NAME,
    "OU": NameOID.ORGANIZATIONAL_UNIT_NAME,
    "STREET": NameOID.STREET_ADDRESS,
    "DC": NameOID.DOMAIN_COMPONENT,
    "SERIALNUMBER": NameOID.SERIAL_NUMBER,
    "E": NameOID.EMAIL_ADDRESS,
    "EMAILADDRESS": NameOID.EMAIL_ADDRESS,
}

_OID_SHORT_NAMES = {
    NameOID.COMMON_NAME: "CN",
    NameOID.COUNTRY_NAME: "C",
    NameOID.STATE_OR_PROVINCE_NAME: "ST",
    NameOID.LOCALITY_NAME: "L",
    NameOID.ORGANIZATION_NAME: "O",
    NameOID.ORGANIZATIONAL_UNIT_NAME: "OU",
    NameOID.STREET_ADDRESS: "STREET",
    NameOID.DOMAIN_COMPONENT: "DC",
    NameOID.SERIAL_NUMBER: "serialNumber",
    NameOID.EMAIL_ADDRESS: "emailAddress",
}

_UNESCAPED_COMMA = re.compile(r"(?<!\\),")


def parse_dn(dn: str) -> x509.Name:
    """Parse ``"C=US, O=Example, CN=Root"`` into an :class:`x509.Name`.

    Components are kept in the order given.  Whitespace around keys
    and values is ignored; ``\\,`` escapes a comma inside a value.

    Raises
    ------
    ValidationError
        On an empty DN, a component without ``=``, an unknown
        attribute, or a value the attribute does not accept.

    """
    if not dn or not dn.strip():
        msg = "Subject DN must not be empty"
        raise ValidationError(msg)

    attributes = []
    for component in _UNESCAPED_COMMA.split(dn):
        if not component.strip():
            continue
        key, sep, value = component.partition("=")
        key, value = key.strip(), value.strip().replace("\\,", ",")
        if not sep or not key or not value:
            msg = f"Malformed DN component {component.strip()!r}"
            raise ValidationError(msg)
        oid = _DN_ATTRIBUTES.get(key.upper())
        if oid is None:
            msg = f"Unsupported DN attribute {key!r}"
            raise ValidationError(msg)
        try:
            attributes.append(x509.NameAttribute(oid, value))
        except ValueError as exc:
            msg = f"Invalid value for DN attribute {key}: {exc}"
            raise ValidationError(msg) from exc

    if not attributes:
        msg = "Subject DN must contain at least one attribute"
        raise ValidationError(msg)
    return x509.Name(attributes)


def format_name(name: x509.Name) -> str:
    """Render a name in the same ``KEY=value, ...`` form :func:`parse_dn` reads."""
    parts = []
    for attr in name:
        short = _OID_SHORT_NAMES.get(attr.oid, attr.oid.dotted_string)
        value = attr.value if isinstance(attr.value, str) else attr.value.hex()
        escaped = value.replace(",", "\\,")
        parts.append(f"{short}={escaped}")
    return ", ".join(parts)


def common_name(name: x509.Name) -> str | None:
    values = name.get_attributes_for_oid(NameOID.COMMON_NAME)
    if not values:
        return None
    value = values[0].value
    return value if isinstance(value, str) else None


# ---------------------------------------------------------------------------
# Subject alternative names
# ---------------------------------------------------------------------------

_HOSTNAME_RE = re.compile(
    r"^(\*\.)?([a-zA-Z0-9]([a-zA-Z0-9-]{0,61}[a-zA-Z0-9])?)"
    r"(\.[a-zA-Z0-9]([a-zA-Z0-9-]{0,61}[a-zA-Z0-9])?)*$",
)


def is_hostname(value: str) -> bool:
    """True when *value* is a (possibly wildcard) DNS hostname, not an IP."""
    if len(value) > 253:  # noqa: PLR2004
        return False
    try:
        ipaddress.ip_address(value)
    except ValueError:
        return bool(_HOSTNAME_RE.match(value))
    return False


def parse_san(value: str) -> x509.GeneralName:
    """Parse one SAN string.

    Accepts ``DNS:``, ``IP:``, ``email:`` and ``URI:`` prefixes.
    Without a prefix the type is inferred: IP literal, then ``@``
    (e-mail), then ``://`` (URI), otherwise DNS name.

    Raises
    ------
    ValidationError
        If the value is empty or not valid for its type.

    """
    raw = value.strip()
    prefix, sep, rest = raw.partition(":")
    kind = prefix.upper() if sep and prefix.upper() in {"DNS", "IP", "EMAIL", "URI"} else None
    if kind is None:
        rest = raw
        if "://" in raw:
            kind = "URI"
        elif "@" in raw:
            kind = "EMAIL"
        else:
            try:
                ipaddress.ip_address(raw)
            except ValueError:
                kind = "DNS"
            else:
                kind = "IP"
    rest = rest.strip()
    if not rest:
        msg = f"Empty subject alternative name {value!r}"
        raise ValidationError(msg)

    if kind == "IP":
        try:
            return x509.IPAddress(ipaddress.ip_address(rest))
        except ValueError:
            msg = f"Invalid IP address SAN {rest!r}"
            raise ValidationError(msg) from None
    if kind == "EMAIL":
        local, at, domain = rest.partition("@")
        if not local or not at or not is_hostname(domain):
            msg = f"Invalid e-mail SAN {rest!r}"
            raise ValidationError(msg)
        return x509.RFC822Name(rest)
    if kind == "URI":
        if "://" not in rest:
            msg = f"Invalid URI SAN {rest!r}"
            raise ValidationError(msg)
        return x509.UniformResourceIdentifier(rest)
    if not is_hostname(rest):
        msg = f"Invalid DNS SAN {rest!r}"
        raise ValidationError(msg)
    return x509.DNSName(rest.lower())


def parse_sans(values: Iterable[str]) -> list[x509.GeneralName]:
    """Parse and de-duplicate SAN strings, preserving order."""
    names: list[x509.GeneralName] = []
    for value in values:
        name = parse_san(value)
        if name not in names:
            names.append(name)
    return names


def san_to_string(name: x509.GeneralName) -> str:
    if isinstance(name, x509.DNSName):
        return f"DNS:{name.value}"
    if isinstance(name, x509.IPAddress):
        return f"IP:{name.value}"
    if isinstance(name, x509.RFC822Name):
        return f"email:{name.value}"
    if isinstance(name, x509.UniformResourceIdentifier):
        return f"URI:{name.value}"
    return str(name.value)


# ---------------------------------------------------------------------------
# Keys and PEM bundles
# ---------------------------------------------------------------------------


def load_certificates(pem: str | bytes) -> list[x509.Certificate]:
    """Parse every certificate in a PEM bundle, in order.

    Raises
    ------
    ValidationError
        If no parseable certificate is present.

    """
    data = pem.encode() if isinstance(pem, str) else pem
    try:
        return x509.load_pem_x509_certificates(data)
    except ValueError as exc:
        msg = f"No parseable PEM certificate found: {exc}"
        raise ValidationError(msg) from exc


def public_key_der(key: PublicKeyTypes) -> bytes:
    return key.public_bytes(
        serialization.Encoding.DER,
        serialization.PublicFormat.SubjectPublicKeyInfo,
    )


def same_public_key(a: PublicKeyTypes, b: PublicKeyTypes) -> bool:
    return public_key_der(a) == public_key_der(b)


def describe_public_key(key: PublicKeyTypes) -> tuple[str, int | None, str | None]:
    """Return ``(algorithm, key_size, curve)`` for a public key."""
    if isinstance(key, rsa.RSAPublicKey):
        return "RSA", key.key_size, None
    if isinstance(key, ec.EllipticCurvePublicKey):
        return "ECDSA", key.curve.key_size, key.curve.name
    if isinstance(key, ed25519.Ed25519PublicKey):
        return "ED25519", None, None
    if isinstance(key, ed448.Ed448PublicKey):
        return "ED448", None, None
    return type(key).__name__, None, None


def to_pem(cert: x509.Certificate) -> str:
    return cert.public_bytes(serialization.Encoding.PEM).decode("ascii")


# ---------------------------------------------------------------------------
# Key usage / EKU mappings
# ---------------------------------------------------------------------------

_EKU_OIDS = {
    "server_auth": ExtendedKeyUsageOID.SERVER_AUTH,
    "client_auth": ExtendedKeyUsageOID.CLIENT_AUTH,
    "code_signing": ExtendedKeyUsageOID.CODE_SIGNING,
    "email_protection": ExtendedKeyUsageOID.EMAIL_PROTECTION,
    "time_stamping": ExtendedKeyUsageOID.TIME_STAMPING,
    "ocsp_signing": ExtendedKeyUsageOID.OCSP_SIGNING,
}


def build_key_usage(usages: Iterable[str]) -> x509.KeyUsage:
    """Build a :class:`x509.KeyUsage` from usage names."""
    usage_set = set(usages)
    agreement = "key_agreement" in usage_set
    return x509.KeyUsage(
        digital_signature="digital_signature" in usage_set,
        content_commitment="content_commitment" in usage_set,
        key_encipherment="key_encipherment" in usage_set,
        data_encipherment="data_encipherment" in usage_set,
        key_agreement=agreement,
        key_cert_sign="key_cert_sign" in usage_set,
        crl_sign="crl_sign" in usage_set,
        encipher_only=agreement and "encipher_only" in usage_set,
        decipher_only=agreement and "decipher_only" in usage_set,
    )


def build_eku(ekus: Iterable[str]) -> x509.ExtendedKeyUsage:
    """Build a :class:`x509.ExtendedKeyUsage` from purpose names."""
    oids = []
    for name in ekus:
        oid = _EKU_OIDS.get(name)
        if oid is None:
            msg = f"Unknown extended key usage '{name}'; supported: {sorted(_EKU_OIDS)}"
            raise ValidationError(msg)
        oids.append(oid)
    return x509.ExtendedKeyUsage(oids)


def authority_key_identifier(ca_cert: x509.Certificate) -> x509.AuthorityKeyIdentifier:
    """AKI for objects signed by *ca_cert*, from its SKI when it has one."""
    try:
        ski = ca_cert.extensions.get_extension_for_class(x509.SubjectKeyIdentifier).value
    except x509.ExtensionNotFound:
        return x509.AuthorityKeyIdentifier.from_issuer_public_key(ca_cert.public_key())  # type: ignore[arg-type]
    return x509.AuthorityKeyIdentifier.from_issuer_subject_key_identifier(ski)
