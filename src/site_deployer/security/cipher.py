"""Authenticated encryption for stored deployment credentials.

Tokens use the ``<iv>:<tag>:<ciphertext>`` hex layout so records written by
the configuration admin surface decrypt unchanged.
"""

from __future__ import annotations

import os
from typing import Mapping, Optional

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives.ciphers.aead import AESGCM

ENCRYPTION_KEY_ENV = "SITE_DEPLOYER_ENCRYPTION_KEY"

_IV_BYTES = 16
_TAG_BYTES = 16
_KEY_BYTES = 32


class MissingEncryptionKey(RuntimeError):
    """Raised when no usable encryption key is configured."""


class DecryptionFailed(RuntimeError):
    """Raised when a token cannot be authenticated or parsed."""


class SecretCipher:
    """AES-256-GCM wrapper used for FTP and database passwords."""

    def __init__(self, key: bytes) -> None:
        if len(key) != _KEY_BYTES:
            raise MissingEncryptionKey(
                f"Encryption key must be {_KEY_BYTES} bytes, got {len(key)}"
            )
        self._aead = AESGCM(key)

    @classmethod
    def from_hex(cls, hex_key: str) -> "SecretCipher":
        try:
            key = bytes.fromhex(hex_key.strip())
        except ValueError as exc:
            raise MissingEncryptionKey("Encryption key is not valid hex") from exc
        return cls(key)

    @classmethod
    def from_env(
        cls,
        environ: Optional[Mapping[str, str]] = None,
        var: str = ENCRYPTION_KEY_ENV,
    ) -> "SecretCipher":
        env = os.environ if environ is None else environ
        hex_key = env.get(var)
        if not hex_key:
            raise MissingEncryptionKey(
                f"{var} is not set. Generate one with "
                "`python -c \"import secrets; print(secrets.token_hex(32))\"`"
            )
        return cls.from_hex(hex_key)

    def encrypt(self, plaintext: str) -> str:
        iv = os.urandom(_IV_BYTES)
        sealed = self._aead.encrypt(iv, plaintext.encode("utf-8"), None)
        ciphertext, tag = sealed[:-_TAG_BYTES], sealed[-_TAG_BYTES:]
        return f"{iv.hex()}:{tag.hex()}:{ciphertext.hex()}"

    def decrypt(self, token: str) -> str:
        parts = token.split(":")
        if len(parts) != 3:
            raise DecryptionFailed("Malformed encrypted value")
        try:
            iv, tag, ciphertext = (bytes.fromhex(part) for part in parts)
        except ValueError as exc:
            raise DecryptionFailed("Encrypted value is not valid hex") from exc
        # AESGCM accepts nonces of 8 to 128 bytes
        if len(tag) != _TAG_BYTES or not 8 <= len(iv) <= 128:
            raise DecryptionFailed("Malformed encrypted value")
        try:
            plaintext = self._aead.decrypt(iv, ciphertext + tag, None)
        except InvalidTag as exc:
            raise DecryptionFailed(
                "Authentication tag mismatch (wrong key or tampered value)"
            ) from exc
        return plaintext.decode("utf-8")
