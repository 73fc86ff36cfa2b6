"""
Site restricted token signing.

Tokens are AES-256-CBC encrypted "exp=<ticks>" strings, where ticks are
100ns intervals since 0001-01-01 UTC. Wire format:

    base64(iv).base64(ciphertext).base64(sha256(key))
"""

import base64
import hashlib
import os
from datetime import UTC, datetime, timedelta
from typing import Optional

from cryptography.hazmat.primitives import padding
from cryptography.hazmat.primitives.ciphers import Cipher, algorithms, modes

from postdeploy.errors import PreconditionMissingError

TOKEN_LIFETIME = timedelta(minutes=5)
AUTH_ENCRYPTION_KEY_SETTING = "WEBSITE_AUTH_ENCRYPTION_KEY"

_EPOCH = datetime(1, 1, 1, tzinfo=UTC)


def to_ticks(moment: datetime) -> int:
    """Convert an aware datetime to 100ns ticks since 0001-01-01."""
    delta = moment.astimezone(UTC) - _EPOCH
    return (delta // timedelta(microseconds=1)) * 10


def key_bytes(key_hex: str) -> bytes:
    """Decode a hex encoded AES key."""
    key = bytes.fromhex(key_hex.strip())
    if len(key) not in (16, 24, 32):
        raise ValueError(f"Invalid encryption key length {len(key)}")
    return key


def encrypt_value(value: str, key: bytes) -> str:
    """Encrypt value with a fresh IV."""
    iv = os.urandom(16)
    padder = padding.PKCS7(algorithms.AES.block_size).padder()
    data = padder.update(value.encode("utf-8")) + padder.finalize()

    encryptor = Cipher(algorithms.AES(key), modes.CBC(iv)).encryptor()
    cipher_text = encryptor.update(data) + encryptor.finalize()

    return ".".join(
        [
            base64.b64encode(iv).decode("ascii"),
            base64.b64encode(cipher_text).decode("ascii"),
            base64.b64encode(hashlib.sha256(key).digest()).decode("ascii"),
        ]
    )


def decrypt_value(token: str, key: bytes) -> str:
    """Decrypt a value produced by encrypt_value."""
    parts = token.split(".")
    if len(parts) != 3:
        raise ValueError("Malformed token")
    iv_b64, cipher_b64, key_hash_b64 = parts
    if base64.b64decode(key_hash_b64) != hashlib.sha256(key).digest():
        raise ValueError("Token was encrypted with a different key")

    decryptor = Cipher(algorithms.AES(key), modes.CBC(base64.b64decode(iv_b64))).decryptor()
    data = decryptor.update(base64.b64decode(cipher_b64)) + decryptor.finalize()
    unpadder = padding.PKCS7(algorithms.AES.block_size).unpadder()
    return (unpadder.update(data) + unpadder.finalize()).decode("utf-8")


def sign_token(expiry: datetime, key: bytes) -> str:
    """Create a token valid until expiry."""
    return encrypt_value(f"exp={to_ticks(expiry)}", key)


class TokenSigner:
    """Signs short-lived tokens with the site's auth encryption key."""

    def __init__(self, key_hex: Optional[str]):
        self._key_hex = key_hex

    def _key(self) -> bytes:
        if not self._key_hex:
            raise PreconditionMissingError(AUTH_ENCRYPTION_KEY_SETTING)
        return key_bytes(self._key_hex)

    def create_token(self, now: Optional[datetime] = None) -> str:
        """Create a token expiring five minutes from now."""
        now = now or datetime.now(UTC)
        return sign_token(now + TOKEN_LIFETIME, self._key())

    def encrypt(self, value: str) -> str:
        """Encrypt an arbitrary value, e.g. a blob SAS uri."""
        return encrypt_value(value, self._key())
