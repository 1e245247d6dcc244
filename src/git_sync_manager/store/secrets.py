"""Encryption of credential secrets at rest.

Tokens are stored as ``fernet:<salt>:<token>`` strings. The Fernet key is
derived from a configured passphrase with PBKDF2-HMAC-SHA256 and a random
16-byte salt carried in the value itself, so the same passphrase always
opens the same store.
"""

from __future__ import annotations

import base64
import os

from cryptography.fernet import Fernet, InvalidToken
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.kdf.pbkdf2 import PBKDF2HMAC

PREFIX = "fernet:"
SALT_BYTES = 16
KDF_ITERATIONS = 480_000


class SecretError(Exception):
    """A secret could not be encrypted or decrypted."""


class SecretBox:
    """Symmetric encryption for strings.

    One salt is drawn per instance and reused for everything it encrypts;
    derived keys are cached per salt.

    Args:
        passphrase: Non-empty secret the key is derived from.
        iterations: PBKDF2 rounds.
    """

    def __init__(self, passphrase: str, iterations: int = KDF_ITERATIONS) -> None:
        if not passphrase:
            raise SecretError("encryption passphrase must not be empty")
        self._passphrase = passphrase.encode("utf-8")
        self._iterations = iterations
        self._salt = os.urandom(SALT_BYTES)
        self._keys: dict[bytes, Fernet] = {}

    def __repr__(self) -> str:
        return "SecretBox(***)"

    def _fernet(self, salt: bytes) -> Fernet:
        fernet = self._keys.get(salt)
        if fernet is None:
            kdf = PBKDF2HMAC(
                algorithm=hashes.SHA256(),
                length=32,
                salt=salt,
                iterations=self._iterations,
            )
            key = base64.urlsafe_b64encode(kdf.derive(self._passphrase))
            fernet = self._keys[salt] = Fernet(key)
        return fernet

    @staticmethod
    def is_encrypted(value: str) -> bool:
        return value.startswith(PREFIX)

    def encrypt(self, plaintext: str) -> str:
        try:
            token = self._fernet(self._salt).encrypt(plaintext.encode("utf-8"))
        except (TypeError, ValueError) as exc:
            raise SecretError(f"Failed to encrypt data: {exc}") from None
        salt = base64.urlsafe_b64encode(self._salt).decode("ascii")
        return f"{PREFIX}{salt}:{token.decode('ascii')}"

    def decrypt(self, value: str) -> str:
        """Decrypt a ``fernet:`` value; plain values are returned unchanged."""
        if not self.is_encrypted(value):
            return value
        salt_text, sep, token = value[len(PREFIX):].partition(":")
        if not sep:
            raise SecretError("Failed to decrypt data: value has no salt")
        try:
            salt = base64.urlsafe_b64decode(salt_text.encode("ascii"))
            return self._fernet(salt).decrypt(token.encode("ascii")).decode("utf-8")
        except (InvalidToken, UnicodeError, ValueError):
            raise SecretError("Failed to decrypt data: wrong key or corrupted value") from None
