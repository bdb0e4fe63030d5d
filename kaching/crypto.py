"""
Encryption of integration tokens at rest.

Values are stored as ``enc:v1:<base64(nonce || ciphertext || tag)>`` using
AES-GCM with a 256-bit key derived by HKDF-SHA256 from
``settings.token_encryption_key`` (or ``session_secret`` when unset).
"""

import base64
import binascii
import os
from typing import Optional

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.ciphers.aead import AESGCM
from cryptography.hazmat.primitives.kdf.hkdf import HKDF

from .config import settings

PREFIX = "enc:v1:"
_NONCE_SIZE = 12
_KEY_SIZE = 32


class TokenDecryptError(Exception):
    """Stored value is not a token blob produced with the current key."""


def _derive_key(secret: Optional[str] = None) -> bytes:
    base = secret or settings.token_encryption_key or settings.session_secret
    hkdf = HKDF(
        algorithm=hashes.SHA256(),
        length=_KEY_SIZE,
        salt=None,
        info=b"kaching-integration-tokens",
    )
    return hkdf.derive(base.encode("utf-8"))


def is_encrypted(value: Optional[str]) -> bool:
    return isinstance(value, str) and value.startswith(PREFIX)


def encrypt_token(plaintext: str, secret: Optional[str] = None) -> str:
    nonce = os.urandom(_NONCE_SIZE)
    ciphertext = AESGCM(_derive_key(secret)).encrypt(nonce, plaintext.encode("utf-8"), None)
    return PREFIX + base64.b64encode(nonce + ciphertext).decode("ascii")


def decrypt_token(value: str, secret: Optional[str] = None) -> str:
    """
    Reverse :func:`encrypt_token`.

    Raises TokenDecryptError for plain-text values, malformed blobs and
    blobs sealed with a different key.
    """
    if not is_encrypted(value):
        raise TokenDecryptError("Value is not an encrypted token")

    try:
        raw = base64.b64decode(value[len(PREFIX):].encode("ascii"), validate=True)
    except (binascii.Error, ValueError) as e:
        raise TokenDecryptError("Malformed token blob") from e

    if len(raw) <= _NONCE_SIZE:
        raise TokenDecryptError("Malformed token blob")

    nonce, ciphertext = raw[:_NONCE_SIZE], raw[_NONCE_SIZE:]
    try:
        return AESGCM(_derive_key(secret)).decrypt(nonce, ciphertext, None).decode("utf-8")
    except InvalidTag as e:
        raise TokenDecryptError("Token could not be decrypted") from e
