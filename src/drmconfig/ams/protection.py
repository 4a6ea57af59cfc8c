"""
Content key protection for upload to the media service.

Clear key bytes never travel to the service as-is: they are encrypted with
the service's protection certificate (RSA-OAEP, SHA-1, as the service
expects), and accompanied by a checksum proving which key id the bytes
belong to.
"""

from __future__ import annotations

import base64
import uuid
from typing import Optional

from cryptography import x509
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.asymmetric import padding, rsa
from cryptography.hazmat.primitives.ciphers import Cipher, algorithms, modes


AES_KEY_SIZES = (16, 24, 32)


def load_protection_certificate(data: bytes) -> x509.Certificate:
    """Load the protection certificate (DER, or PEM when it looks like PEM)."""
    if data.lstrip().startswith(b"-----BEGIN"):
        return x509.load_pem_x509_certificate(data)
    return x509.load_der_x509_certificate(data)


def encrypt_content_key(key_bytes: bytes, certificate: x509.Certificate) -> bytes:
    """Encrypt clear key bytes with the certificate's RSA public key.

    Args:
        key_bytes: Clear content key value.
        certificate: Protection certificate returned by the service.

    Returns:
        RSA-OAEP (SHA-1) ciphertext.

    Raises:
        ValueError: If the certificate does not hold an RSA public key.
    """
    public_key = certificate.public_key()
    if not isinstance(public_key, rsa.RSAPublicKey):
        raise ValueError("Protection certificate must contain an RSA public key")
    return public_key.encrypt(
        key_bytes,
        padding.OAEP(
            mgf=padding.MGF1(algorithm=hashes.SHA1()),
            algorithm=hashes.SHA1(),
            label=None,
        ),
    )


def key_checksum(key_bytes: bytes, key_id: uuid.UUID) -> Optional[str]:
    """Checksum of a content key: first 8 bytes of AES-ECB(key, key id), base64.

    The key id is encrypted in its little-endian GUID byte layout. Keys whose
    length is not a valid AES key size (e.g. a certificate password) have no
    checksum and ``None`` is returned.
    """
    if len(key_bytes) not in AES_KEY_SIZES:
        return None
    encryptor = Cipher(algorithms.AES(key_bytes), modes.ECB()).encryptor()
    encrypted = encryptor.update(key_id.bytes_le) + encryptor.finalize()
    return base64.b64encode(encrypted[:8]).decode("ascii")
