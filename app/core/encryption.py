"""Fernet-backed credential vault for provider API keys.

Stored ciphertext carries an explicit ``enc:v1:`` envelope so that the
encrypted/plaintext state of a value is read from its tag, never guessed
by trying to decrypt it.
"""

from __future__ import annotations

import logging

from cryptography.fernet import Fernet, InvalidToken

from app.core.config import settings
from app.gateway.errors import ConfigurationError, DecryptionError

logger = logging.getLogger(__name__)

ENVELOPE_PREFIX = "enc:v1:"


class CredentialVault:
    """Encrypts and decrypts provider secrets at rest."""

    def __init__(self, key: str | bytes):
        if not key:
            raise ConfigurationError("FERNET_KEY is not configured — cannot encrypt/decrypt credentials")
        try:
            self._fernet = Fernet(key.encode() if isinstance(key, str) else key)
        except ValueError as e:
            raise ConfigurationError("FERNET_KEY is not a valid Fernet key") from e

    @staticmethod
    def is_encrypted(value: str) -> bool:
        return bool(value) and value.startswith(ENVELOPE_PREFIX)

    def encrypt(self, plaintext: str) -> str:
        token = self._fernet.encrypt(plaintext.encode("utf-8")).decode("ascii")
        return f"{ENVELOPE_PREFIX}{token}"

    def decrypt(self, ciphertext: str) -> str:
        if not self.is_encrypted(ciphertext):
            raise DecryptionError("Value is not a vault envelope")
        token = ciphertext[len(ENVELOPE_PREFIX) :]
        try:
            return self._fernet.decrypt(token.encode("ascii")).decode("utf-8")
        except (InvalidToken, UnicodeError) as e:
            logger.error("Failed to decrypt credential — invalid Fernet key or corrupted data")
            raise DecryptionError("Stored credential could not be decrypted") from e

    def ingest(self, value: str) -> str:
        """Return the at-rest form of an incoming value.

        Tagged values are kept unchanged once they verify; anything else is
        treated as plaintext and encrypted. Re-saving a record therefore
        never double-encrypts it.
        """
        if not value:
            return ""
        if self.is_encrypted(value):
            self.decrypt(value)
            return value
        return self.encrypt(value)


_vault: CredentialVault | None = None


def get_vault() -> CredentialVault:
    """Process-wide vault built lazily from settings."""
    global _vault
    if _vault is None:
        _vault = CredentialVault(settings.fernet_key)
    return _vault


def reset_vault() -> None:
    global _vault
    _vault = None


def encrypt_value(plaintext: str) -> str:
    return get_vault().encrypt(plaintext)


def decrypt_value(ciphertext: str) -> str:
    return get_vault().decrypt(ciphertext)
