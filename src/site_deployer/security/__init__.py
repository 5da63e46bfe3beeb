"""Credential encryption for site-deployer."""

from .cipher import DecryptionFailed, ENCRYPTION_KEY_ENV, MissingEncryptionKey, SecretCipher

__all__ = [
    "DecryptionFailed",
    "ENCRYPTION_KEY_ENV",
    "MissingEncryptionKey",
    "SecretCipher",
]
