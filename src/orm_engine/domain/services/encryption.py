"""Symmetric encryption for attributes cast as ``encrypted``.

Each value is encrypted with AES-256-CBC under a key derived from the
application key by PBKDF2-HMAC-SHA256. A fresh 16-byte salt and a fresh
16-byte IV are drawn per value, so encrypting the same plaintext twice
yields different payloads.

Payload layout (base64 encoded):
    +-----------+---------+----------------------+
    | salt (16) | iv (16) | ciphertext (n * 16)  |
    +-----------+---------+----------------------+
"""

from __future__ import annotations

import base64
import binascii
import os

from cryptography.hazmat.primitives import hashes, padding
from cryptography.hazmat.primitives.ciphers import Cipher, algorithms, modes
from cryptography.hazmat.primitives.kdf.pbkdf2 import PBKDF2HMAC

from orm_engine.domain.exceptions import DecryptionError, MissingEncryptionKeyError

SALT_SIZE = 16
IV_SIZE = 16
KEY_SIZE = 32
BLOCK_BITS = 128


class Encrypter:
    """Encrypts and decrypts text with a key derived from a passphrase."""

    def __init__(self, key: str | bytes | None, iterations: int = 10000) -> None:
        """
        Initialize the encrypter.

        Args:
            key: Application key. None or empty means encryption is unavailable.
            iterations: PBKDF2 iteration count
        """
        if isinstance(key, str):
            key = key.encode("utf-8")
        self._key = key or None
        self._iterations = iterations

    @property
    def has_key(self) -> bool:
        return self._key is not None

    def _derive(self, salt: bytes) -> bytes:
        if self._key is None:
            raise MissingEncryptionKeyError(
                "No encryption key configured; set ORM_ENGINE_ENCRYPTION__KEY"
            )
        kdf = PBKDF2HMAC(
            algorithm=hashes.SHA256(),
            length=KEY_SIZE,
            salt=salt,
            iterations=self._iterations,
        )
        return kdf.derive(self._key)

    def encrypt(self, plaintext: str) -> str:
        """Encrypt plaintext and return the base64 payload."""
        salt = os.urandom(SALT_SIZE)
        key = self._derive(salt)
        iv = os.urandom(IV_SIZE)

        padder = padding.PKCS7(BLOCK_BITS).padder()
        padded = padder.update(plaintext.encode("utf-8")) + padder.finalize()

        encryptor = Cipher(algorithms.AES(key), modes.CBC(iv)).encryptor()
        ciphertext = encryptor.update(padded) + encryptor.finalize()
        return base64.b64encode(salt + iv + ciphertext).decode("ascii")

    def decrypt(self, payload: str) -> str:
        """Decrypt a payload produced by encrypt().

        Raises:
            MissingEncryptionKeyError: If no key is configured.
            DecryptionError: If the payload is malformed or was encrypted
                under another key.
        """
        if self._key is None:
            raise MissingEncryptionKeyError(
                "No encryption key configured; set ORM_ENGINE_ENCRYPTION__KEY"
            )
        try:
            raw = base64.b64decode(payload, validate=True)
        except (binascii.Error, ValueError) as e:
            raise DecryptionError("Encrypted payload is not valid base64") from e

        header = SALT_SIZE + IV_SIZE
        body = raw[header:]
        if len(body) == 0 or len(body) % (BLOCK_BITS // 8) != 0:
            raise DecryptionError("Encrypted payload has an invalid length")

        salt, iv = raw[:SALT_SIZE], raw[SALT_SIZE:header]
        key = self._derive(salt)
        decryptor = Cipher(algorithms.AES(key), modes.CBC(iv)).decryptor()
        padded = decryptor.update(body) + decryptor.finalize()

        unpadder = padding.PKCS7(BLOCK_BITS).unpadder()
        try:
            data = unpadder.update(padded) + unpadder.finalize()
            return data.decode("utf-8")
        except ValueError as e:
            # Bad padding or undecodable bytes: wrong key or tampered payload
            raise DecryptionError("Encrypted payload could not be decrypted") from e


def get_encrypter() -> Encrypter:
    """Build an encrypter from the current configuration."""
    from orm_engine.infrastructure.config import get_config

    config = get_config()
    return Encrypter(config.encryption_key, config.encryption.kdf_iterations)
