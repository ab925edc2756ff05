"""
POS credential encryption at rest (Fernet).
Access tokens, refresh tokens and client secrets are encrypted before they reach
the tenant_integrations table so a database compromise does not expose them.
"""

import structlog
from cryptography.fernet import Fernet, InvalidToken

from possync.config import settings
from possync.exceptions import CredentialEncryptionError

logger = structlog.get_logger()


class TokenCipher:
    """Encrypts and decrypts credential strings with a Fernet key."""

    def __init__(self, key: str | None = None):
        key = (key if key is not None else settings.credential_encryption_key) or ""
        key = key.strip()
        if not key:
            raise CredentialEncryptionError("credential_encryption_key is not configured")
        if len(key) != 44:  # Fernet key is 44 bytes base64
            raise CredentialEncryptionError(
                f"credential_encryption_key must be a 44-char Fernet key (got {len(key)} chars)"
            )
        try:
            self._fernet = Fernet(key.encode("utf-8"))
        except ValueError as e:
            raise CredentialEncryptionError(f"Invalid credential_encryption_key: {e}") from e

    def encrypt(self, value: str | None) -> str | None:
        if value is None:
            return None
        return self._fernet.encrypt(value.encode("utf-8")).decode("ascii")

    def decrypt(self, value: str | None) -> str | None:
        if value is None:
            return None
        try:
            return self._fernet.decrypt(value.encode("ascii")).decode("utf-8")
        except InvalidToken as e:
            # Written with a different key, or not encrypted at all
            logger.error("Credential decryption failed with InvalidToken")
            raise CredentialEncryptionError("Stored credential cannot be decrypted") from e
