"""
Token restriction shared by every DRM license delivery path.

The restriction is built once per run from the configured JWT verification
key, audience and issuer, and the same instance is handed to every scheme.
"""

from __future__ import annotations

import base64
import binascii
import logging
import xml.etree.ElementTree as ET
from typing import Union

from .errors import ConfigurationMissing, InvalidKeyMaterial
from .models import Restriction, RestrictionKind


LOGGER = logging.getLogger(__name__)

RESTRICTION_NAME = "jwt_content_key_authorization_policy_restriction"

TEMPLATE_NS = "http://schemas.microsoft.com/Azure/MediaServices/KeyDelivery/TokenRestrictionTemplate/v1"
XSI_NS = "http://www.w3.org/2001/XMLSchema-instance"

ET.register_namespace("", TEMPLATE_NS)
ET.register_namespace("i", XSI_NS)


def decode_verification_key(encoded: Union[str, bytes]) -> bytes:
    """Decode a base64url (or standard base64) verification key.

    Padding is optional. The decoded key must not be empty.

    Raises:
        InvalidKeyMaterial: If the input is empty or not valid base64.
    """
    if isinstance(encoded, bytes):
        try:
            encoded = encoded.decode("ascii")
        except UnicodeDecodeError as e:
            raise InvalidKeyMaterial("Verification key is not ASCII text") from e

    text = (encoded or "").strip()
    if not text:
        raise InvalidKeyMaterial("Verification key is empty")

    normalized = text.replace("-", "+").replace("_", "/")
    normalized += "=" * (-len(normalized) % 4)
    try:
        key = base64.b64decode(normalized, validate=True)
    except (binascii.Error, ValueError) as e:
        raise InvalidKeyMaterial(f"Verification key is not valid base64: {e}") from e

    if not key:
        raise InvalidKeyMaterial("Verification key decodes to zero bytes")
    return key


def _q(tag: str) -> str:
    return f"{{{TEMPLATE_NS}}}{tag}"


def serialize_requirements(key: bytes, audience: str, issuer: str) -> str:
    """Serialize a JWT token-restriction template with a symmetric verification key."""
    root = ET.Element(_q("TokenRestrictionTemplate"))
    ET.SubElement(root, _q("AlternateVerificationKeys"))
    ET.SubElement(root, _q("Audience")).text = audience
    ET.SubElement(root, _q("Issuer")).text = issuer
    primary = ET.SubElement(
        root,
        _q("PrimaryVerificationKey"),
        {f"{{{XSI_NS}}}type": "SymmetricVerificationKey"},
    )
    ET.SubElement(primary, _q("KeyValue")).text = base64.b64encode(key).decode("ascii")
    ET.SubElement(root, _q("RequiredClaims"))
    ET.SubElement(root, _q("TokenType")).text = "JWT"
    return ET.tostring(root, encoding="unicode")


def build_restriction(signing_key: Union[str, bytes], audience: str, issuer: str) -> Restriction:
    """Build the token restriction used by every scheme.

    Args:
        signing_key: base64url-encoded symmetric verification key.
        audience: Expected JWT audience.
        issuer: Expected JWT issuer.

    Returns:
        Restriction: Immutable restriction carrying the serialized template.

    Raises:
        InvalidKeyMaterial: If the key is empty or cannot be decoded.
        ConfigurationMissing: If audience or issuer is empty.
    """
    key = decode_verification_key(signing_key)
    if not audience:
        raise ConfigurationMissing("jwt.audience")
    if not issuer:
        raise ConfigurationMissing("jwt.issuer")

    LOGGER.debug("Built JWT restriction for audience=%s issuer=%s", audience, issuer)
    return Restriction(
        name=RESTRICTION_NAME,
        kind=RestrictionKind.TOKEN_RESTRICTED,
        requirements=serialize_requirements(key, audience, issuer),
    )
