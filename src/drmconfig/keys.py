"""
Content key lifecycle: ephemeral keys and rotation of persistent keys.

Two kinds of keys are handled here:

- Ephemeral CENC/CBCS keys, minted only to obtain a license acquisition URL
  template and deleted by the caller right after.
- Persistent FairPlay keys (application secret key, certificate password),
  looked up by name and rotated when the desired value changes.

Rotation is always create-then-repoint-then-delete: ``ensure_persistent``
creates the replacement and hands back the superseded key, and the caller
retires it only once every configuration referencing the new key id has been
written to the service.
"""

from __future__ import annotations

import binascii
import hmac
import logging
import os
import uuid
from dataclasses import dataclass
from typing import Iterable, Optional, Tuple

from .errors import InvalidKeyMaterial, KeyReadFailure
from .models import EPHEMERAL_KEY_TYPES, ContentKey, ContentKeyType
from .service import SERVICE_ERRORS, MediaKeyService


LOGGER = logging.getLogger(__name__)

COMMON_ENCRYPTION_KEY_LENGTH = 16

EPHEMERAL_KEY_NAMES = {
    ContentKeyType.COMMON_ENCRYPTION: "common_encryption_content_key",
    ContentKeyType.COMMON_ENCRYPTION_CBCS: "common_encryption_cbcs_content_key",
}


def random_bytes(length: int) -> bytes:
    """Return ``length`` bytes from the OS CSPRNG."""
    if length <= 0:
        raise ValueError(f"Key length must be positive, got {length}")
    return os.urandom(length)


def decode_hex_key(text: str) -> bytes:
    """Decode a hex-encoded key such as the FairPlay application secret key.

    Raises:
        InvalidKeyMaterial: If the text is empty or not an even-length hex string.
    """
    cleaned = (text or "").strip()
    if not cleaned:
        raise InvalidKeyMaterial("Hex key is empty")
    try:
        return binascii.unhexlify(cleaned)
    except (binascii.Error, ValueError) as e:
        raise InvalidKeyMaterial(f"Key is not valid hexadecimal: {e}") from e


@dataclass(frozen=True)
class KeyEnsureResult:
    """Outcome of ``ensure_persistent``.

    ``superseded`` holds every other key sharing the name (a rotated key, or
    leftovers of an interrupted rotation). They must be deleted after the
    configuration pointing at ``key`` has been written.
    """

    key: ContentKey
    superseded: Tuple[ContentKey, ...] = ()
    created: bool = False


class KeyRotationManager:
    """Creates, verifies and rotates content keys against the media service."""

    def __init__(self, service: MediaKeyService):
        self.service = service

    def mint_ephemeral(self, key_type: ContentKeyType, length: int = COMMON_ENCRYPTION_KEY_LENGTH) -> ContentKey:
        """Create a throwaway key of ``key_type`` under its well-known name.

        The caller owns the returned key and must delete it.
        """
        if key_type not in EPHEMERAL_KEY_TYPES:
            raise ValueError(f"{key_type.name} is not an ephemeral key type")

        key_id = uuid.uuid4()
        key = self.service.create_content_key(key_id, random_bytes(length), EPHEMERAL_KEY_NAMES[key_type], key_type)
        LOGGER.debug("Minted ephemeral %s key %s", key_type.name, key.id)
        return key

    def ensure_persistent(self, name: str, desired_bytes: bytes, desired_type: ContentKeyType) -> KeyEnsureResult:
        """Make sure a key named ``name`` holds ``desired_bytes`` with ``desired_type``.

        The first stored key with the desired value and type is kept; if none
        matches, a new key is created. Every other key with the same name is
        returned as superseded.

        Args:
            name: Lookup name of the key.
            desired_bytes: Clear key value that should be stored.
            desired_type: Content key type that should be stored.

        Returns:
            KeyEnsureResult: The key to reference, plus the superseded keys.

        Raises:
            KeyReadFailure: If the clear value of an existing key cannot be
                read. No key is created in that case.
        """
        if not desired_bytes:
            raise InvalidKeyMaterial(f"Desired value for key '{name}' is empty")

        existing = self.service.find_content_keys_by_name(name)
        keep: Optional[ContentKey] = None
        for candidate in existing:
            if keep is None and self._holds(candidate, name, desired_bytes, desired_type):
                keep = candidate
        superseded = tuple(key for key in existing if key != keep)

        if keep is not None:
            if superseded:
                LOGGER.info("Key '%s' (%s) kept; %d duplicate(s) superseded", name, keep.id, len(superseded))
            else:
                LOGGER.debug("Key '%s' (%s) is up to date", name, keep.id)
            return KeyEnsureResult(key=keep, superseded=superseded)

        key = self.service.create_content_key(uuid.uuid4(), desired_bytes, name, desired_type)
        if superseded:
            LOGGER.info("Rotated key '%s': %s supersedes %s", name, key.id, ", ".join(k.id for k in superseded))
        else:
            LOGGER.info("Created %s key '%s' (%s)", desired_type.name, name, key.id)
        return KeyEnsureResult(key=key, superseded=superseded, created=True)

    def _holds(self, key: ContentKey, name: str, desired_bytes: bytes, desired_type: ContentKeyType) -> bool:
        try:
            stored = self.service.get_clear_value(key)
        except SERVICE_ERRORS as e:
            raise KeyReadFailure(name, e) from e
        return key.key_type == desired_type and hmac.compare_digest(stored, desired_bytes)

    def retire(self, keys: Iterable[ContentKey]) -> None:
        """Delete superseded keys, in order."""
        for key in keys:
            self.service.delete_content_key(key)
            LOGGER.info("Deleted superseded key '%s' (%s)", key.name, key.id)
