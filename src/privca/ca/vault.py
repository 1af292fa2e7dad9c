"""Key generation and at-rest encryption of private keys.

Every private key the engine stores (CA signing keys, server-generated
end-entity keys) is sealed with AES-256-GCM under a single master key
before it reaches the store.  Plaintext PEM exists only in memory and
in the one-time results handed back to callers.
"""

from __future__ import annotations

import logging
import os
import re
from dataclasses import dataclass
from typing import TYPE_CHECKING

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric import ec, ed25519, rsa
from cryptography.hazmat.primitives.ciphers.aead import AESGCM

from privca.ca.base import (
    ConfigurationError,
    KeyGenerationError,
    UnsupportedAlgorithm,
    VaultError,
)
from privca.core.types import KeyAlgorithm
from privca.logging import security_events
from privca.models.encrypted_key import EncryptedKey

if TYPE_CHECKING:
    from uuid import UUID

    from cryptography.hazmat.primitives.asymmetric.types import PrivateKeyTypes

    from privca.config.settings import VaultSettings

log = logging.getLogger(__name__)

KEY_BYTES = 32
IV_BYTES = 12
TAG_BYTES = 16

RSA_KEY_SIZES = (2048, 3072, 4096)
DEFAULT_RSA_KEY_SIZE = 2048

EC_CURVES: dict[str, type[ec.EllipticCurve]] = {
    "P-256": ec.SECP256R1,
    "P-384": ec.SECP384R1,
    "P-521": ec.SECP521R1,
}
_CURVE_ALIASES = {
    "PRIME256V1": "P-256",
    "SECP256R1": "P-256",
    "SECP384R1": "P-384",
    "SECP521R1": "P-521",
}
DEFAULT_CURVE = "P-256"

_DEVELOPMENT_KEY = b"development-only-32-bytes-key-123456"[:KEY_BYTES]
_HEX_KEY_RE = re.compile(r"^[0-9a-fA-F]{64}$")


def decode_master_key(value: str) -> bytes:
    """Turn the configured master key into 32 raw bytes.

    Raises
    ------
    ConfigurationError
        If *value* is neither 64 hex characters nor at least 32 bytes.

    """
    if _HEX_KEY_RE.match(value):
        return bytes.fromhex(value)
    raw = value.encode("utf-8")
    if len(raw) < KEY_BYTES:
        msg = (
            f"vault.master_key must be 64 hex characters or at least {KEY_BYTES} bytes "
            f"(got {len(raw)} bytes)"
        )
        raise ConfigurationError(msg)
    return raw[:KEY_BYTES]


def normalize_curve(curve: str | None) -> str:
    name = (curve or DEFAULT_CURVE).strip().upper()
    return _CURVE_ALIASES.get(name, name)


@dataclass(frozen=True)
class KeyPair:
    """A freshly generated key with its PEM encodings."""

    algorithm: KeyAlgorithm
    private_key: PrivateKeyTypes
    private_key_pem: str
    public_key_pem: str
    key_size: int | None = None
    curve: str | None = None


class KeyVault:
    """Generate key pairs and seal/unseal private keys.

    Parameters
    ----------
    settings:
        The ``vault`` configuration section.
    environment:
        Deployment environment; ``production`` refuses to start without
        a configured master key.

    Raises
    ------
    ConfigurationError
        If the master key is missing in production or malformed.

    """

    def __init__(self, settings: VaultSettings, environment: str = "production") -> None:
        if settings.master_key:
            self._key = decode_master_key(settings.master_key)
        elif environment.lower() in {"production", "prod"}:
            msg = (
                "vault.master_key is required in production; set it to 64 hex "
                "characters (e.g. via ${PRIVCA_ENCRYPTION_KEY})"
            )
            raise ConfigurationError(msg)
        else:
            security_events.development_key_in_use(environment)
            self._key = _DEVELOPMENT_KEY
        self._aead = AESGCM(self._key)

    # -- key generation ------------------------------------------------------

    def generate_key_pair(
        self,
        algorithm: KeyAlgorithm | str,
        size: int | None = None,
        curve: str | None = None,
    ) -> KeyPair:
        """Generate a key pair.

        Parameters
        ----------
        algorithm:
            ``RSA``, ``ECDSA`` or ``ED25519`` (case-insensitive).
        size:
            RSA modulus size; one of 2048, 3072, 4096 (default 2048).
        curve:
            ECDSA curve; ``P-256`` (default), ``P-384`` or ``P-521``.

        Raises
        ------
        UnsupportedAlgorithm
            For an unknown algorithm, RSA size or curve.
        KeyGenerationError
            If the cryptography backend fails.

        """
        try:
            alg = KeyAlgorithm(str(algorithm).upper())
        except ValueError:
            msg = f"Unsupported key algorithm {algorithm!r}; supported: RSA, ECDSA, ED25519"
            raise UnsupportedAlgorithm(msg) from None

        key_size: int | None = None
        curve_name: str | None = None
        if alg == KeyAlgorithm.RSA:
            key_size = size or DEFAULT_RSA_KEY_SIZE
            if key_size not in RSA_KEY_SIZES:
                msg = f"Unsupported RSA key size {key_size}; supported: {list(RSA_KEY_SIZES)}"
                raise UnsupportedAlgorithm(msg)
        elif alg == KeyAlgorithm.ECDSA:
            curve_name = normalize_curve(curve)
            if curve_name not in EC_CURVES:
                msg = f"Unsupported curve {curve!r}; supported: {sorted(EC_CURVES)}"
                raise UnsupportedAlgorithm(msg)

        try:
            if alg == KeyAlgorithm.RSA:
                private_key: PrivateKeyTypes = rsa.generate_private_key(
                    public_exponent=65537,
                    key_size=key_size,  # type: ignore[arg-type]
                )
            elif alg == KeyAlgorithm.ECDSA:
                private_key = ec.generate_private_key(EC_CURVES[curve_name]())  # type: ignore[index]
            else:
                private_key = ed25519.Ed25519PrivateKey.generate()
            private_pem = private_key.private_bytes(
                serialization.Encoding.PEM,
                serialization.PrivateFormat.PKCS8,
                serialization.NoEncryption(),
            ).decode("ascii")
            public_pem = (
                private_key.public_key()
                .public_bytes(
                    serialization.Encoding.PEM,
                    serialization.PublicFormat.SubjectPublicKeyInfo,
                )
                .decode("ascii")
            )
        except Exception as exc:
            msg = f"Key generation failed for {alg.value}: {type(exc).__name__}"
            raise KeyGenerationError(msg, retryable=True) from exc

        log.debug("Generated %s key pair (size=%s, curve=%s)", alg.value, key_size, curve_name)
        return KeyPair(
            algorithm=alg,
            private_key=private_key,
            private_key_pem=private_pem,
            public_key_pem=public_pem,
            key_size=key_size,
            curve=curve_name,
        )

    # -- sealing -------------------------------------------------------------

    def encrypt(self, plaintext_pem: str) -> EncryptedKey:
        """Seal a PEM string with a fresh 96-bit IV."""
        iv = os.urandom(IV_BYTES)
        sealed = self._aead.encrypt(iv, plaintext_pem.encode("utf-8"), None)
        return EncryptedKey(
            ciphertext=sealed[:-TAG_BYTES].hex(),
            iv=iv.hex(),
            auth_tag=sealed[-TAG_BYTES:].hex(),
        )

    def decrypt(self, encrypted: EncryptedKey, *, ca_id: UUID | None = None) -> str:
        """Open a sealed PEM string.

        Raises
        ------
        VaultError
            If the envelope is malformed or fails authentication.

        """
        try:
            iv = bytes.fromhex(encrypted.iv)
            sealed = bytes.fromhex(encrypted.ciphertext) + bytes.fromhex(encrypted.auth_tag)
            if len(iv) != IV_BYTES or len(bytes.fromhex(encrypted.auth_tag)) != TAG_BYTES:
                msg = "Encrypted key envelope has wrong IV or tag length"
                raise ValueError(msg)
            return self._aead.decrypt(iv, sealed, None).decode("utf-8")
        except (InvalidTag, ValueError, UnicodeDecodeError):
            security_events.key_decryption_failed(ca_id, "decrypt")
            msg = "Stored private key could not be decrypted"
            raise VaultError(msg) from None

    def load_private_key(
        self,
        encrypted: EncryptedKey,
        *,
        ca_id: UUID | None = None,
    ) -> PrivateKeyTypes:
        """Decrypt and parse a stored private key."""
        pem = self.decrypt(encrypted, ca_id=ca_id)
        try:
            return serialization.load_pem_private_key(pem.encode("ascii"), password=None)
        except (ValueError, TypeError):
            security_events.key_decryption_failed(ca_id, "parse")
            msg = "Stored private key is not a valid PEM private key"
            raise VaultError(msg) from None
