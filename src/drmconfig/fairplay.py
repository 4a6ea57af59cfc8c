"""
FairPlay option configuration.

The FairPlay authorization option carries a JSON descriptor referencing the
application certificate (as a password-protected PFX), the content key that
stores the PFX password, the content key that stores the application secret
key (ASK), and the content-encryption IV used for CBCS packaging.
"""

from __future__ import annotations

import base64
import json
import uuid
from dataclasses import dataclass

from cryptography.hazmat.primitives.serialization import pkcs12

from .errors import InvalidKeyMaterial
from .keys import random_bytes


IV_LENGTH = 16


@dataclass(frozen=True)
class FairPlayDescriptor:
    ask_id: uuid.UUID
    pfx_password_id: uuid.UUID
    pfx: bytes
    content_encryption_iv: str

    def serialize(self) -> str:
        return json.dumps(
            {
                "ASkId": str(self.ask_id),
                "FairPlayPfxPasswordId": str(self.pfx_password_id),
                "FairPlayPfx": base64.b64encode(self.pfx).decode("ascii"),
                "ContentEncryptionIV": self.content_encryption_iv,
            },
            separators=(",", ":"),
        )


def new_content_encryption_iv() -> str:
    """Fresh 16-byte IV as uppercase hex, regenerated on every reconciliation."""
    return random_bytes(IV_LENGTH).hex().upper()


def check_certificate(pfx: bytes, password: str) -> None:
    """Ensure the PFX opens with ``password`` and holds a certificate and private key.

    Raises:
        InvalidKeyMaterial: If the bundle is empty, unreadable, or incomplete.
    """
    if not pfx:
        raise InvalidKeyMaterial("FairPlay application certificate is empty")
    try:
        private_key, certificate, _ = pkcs12.load_key_and_certificates(pfx, password.encode("utf-8"))
    except ValueError as e:
        raise InvalidKeyMaterial(f"Cannot open FairPlay application certificate: {e}") from e
    if certificate is None or private_key is None:
        raise InvalidKeyMaterial("FairPlay application certificate must contain a certificate and its private key")


def build_descriptor(
    pfx: bytes,
    password: str,
    pfx_password_key_id: uuid.UUID,
    ask_key_id: uuid.UUID,
    content_encryption_iv: str,
) -> FairPlayDescriptor:
    """Build the FairPlay descriptor after validating the certificate bundle."""
    check_certificate(pfx, password)
    return FairPlayDescriptor(
        ask_id=ask_key_id,
        pfx_password_id=pfx_password_key_id,
        pfx=pfx,
        content_encryption_iv=content_encryption_iv,
    )
