"""
Fernet-based encryption for instance credentials at rest (provider API keys,
bot tokens).

Usage:
    cipher = CredentialCipher(settings.encryption_key)

    stored = cipher.encrypt("sk-ant-...")   # → "enc:gAAAAA..."
    plain  = cipher.decrypt(stored)         # → "sk-ant-..."

Every stored value carries the ``enc:`` prefix. decrypt() refuses anything
without it, and anything the key cannot open, with EncryptionFormatError:
a plaintext-looking value in a credential column is a bug, not data.
"""

import base64
import hashlib
import logging
from typing import Optional

from cryptography.fernet import Fernet, InvalidToken

from c4g.exceptions import EncryptionFormatError

logger = logging.getLogger(__name__)

PREFIX = "enc:"


def derive_key(secret: str) -> bytes:
    """Turn an arbitrary secret into a valid Fernet key (32 url-safe base64 bytes)."""
    digest = hashlib.sha256(secret.encode()).digest()
    return base64.urlsafe_b64encode(digest)


class CredentialCipher:
    def __init__(self, key: Optional[str], fallback_secret: str = ""):
        if not key:
            logger.warning(
                "ENCRYPTION_KEY not set, using a key derived from a fallback secret. "
                "Set ENCRYPTION_KEY in production!"
            )
            fernet_key = derive_key(fallback_secret or "c4g-dev")
        elif len(key) != 44:
            fernet_key = derive_key(key)
        else:
            fernet_key = key.encode()
        self._fernet = Fernet(fernet_key)

    def encrypt(self, plaintext: Optional[str]) -> Optional[str]:
        """Encrypt a credential. Empty input clears the field (returns None)."""
        if not plaintext:
            return None
        return PREFIX + self._fernet.encrypt(plaintext.encode()).decode()

    def decrypt(self, ciphertext: Optional[str]) -> Optional[str]:
        """Decrypt a stored credential. None stays None."""
        if ciphertext is None:
            return None
        if not ciphertext.startswith(PREFIX):
            raise EncryptionFormatError("Stored credential is missing the 'enc:' prefix")
        try:
            return self._fernet.decrypt(ciphertext[len(PREFIX):].encode()).decode()
        except InvalidToken as exc:
            raise EncryptionFormatError("Stored credential could not be decrypted") from exc

    @staticmethod
    def is_encrypted(value: Optional[str]) -> bool:
        return bool(value) and value.startswith(PREFIX)
