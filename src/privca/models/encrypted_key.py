"""Encrypted private-key envelope."""

from __future__ import annotations

import json
from dataclasses import asdict, dataclass


@dataclass(frozen=True)
class EncryptedKey:
    """AES-256-GCM ciphertext of a PEM private key, hex-encoded.

    Stored as a JSON document so a single TEXT/JSONB column carries
    all three parts.
    """

    ciphertext: str
    iv: str
    auth_tag: str

    def to_dict(self) -> dict[str, str]:
        return asdict(self)

    def to_json(self) -> str:
        return json.dumps(self.to_dict(), sort_keys=True)

    @classmethod
    def from_json(cls, raw: str | dict) -> EncryptedKey:
        data = json.loads(raw) if isinstance(raw, str) else raw
        return cls(
            ciphertext=data["ciphertext"],
            iv=data["iv"],
            auth_tag=data["auth_tag"],
        )
