"""
Token encryption — encrypt / decrypt OAuth tokens at rest.

Uses Fernet (AES-128-CBC + HMAC-SHA256) from the ``cryptography`` library.
Keys come from ``config.token_encryption_key`` (env var:
``TOKEN_ENCRYPTION_KEY``), comma-separated; the first key encrypts and every
key is tried on decrypt, so keys can be rotated without re-connecting users.

There is no plaintext mode: a missing or malformed key is a startup error,
and a ciphertext that fails MAC verification raises ``EncryptionFailure``.
Generate a key with::

    python -c "from cryptography.fernet import Fernet; print(Fernet.generate_key().decode())"
"""

from __future__ import annotations

import logging
from typing import Iterable, Optional

from cryptography.fernet import Fernet, InvalidToken, MultiFernet

from connectors.errors import EncryptionFailure

logger = logging.getLogger(__name__)


class TokenCipher:
    """Authenticated encryption for token strings."""

    def __init__(self, keys: Iterable[str | bytes]):
        fernets = []
        for key in keys:
            try:
                fernets.append(Fernet(key.encode() if isinstance(key, str) else key))
            except (ValueError, TypeError) as exc:
                # never echo the key itself
                raise EncryptionFailure("TOKEN_ENCRYPTION_KEY contains an invalid Fernet key") from exc
        if not fernets:
            raise EncryptionFailure("TOKEN_ENCRYPTION_KEY is not set; refusing to store tokens")
        self._fernet = MultiFernet(fernets)
        logger.info("Token encryption enabled (Fernet, %d key(s))", len(fernets))

    def encrypt(self, plaintext: str) -> str:
        if not isinstance(plaintext, str) or not plaintext:
            raise EncryptionFailure("Refusing to encrypt an empty token")
        return self._fernet.encrypt(plaintext.encode()).decode()

    def decrypt(self, ciphertext: str) -> str:
        try:
            return self._fernet.decrypt(ciphertext.encode()).decode()
        except (InvalidToken, AttributeError, UnicodeDecodeError) as exc:
            raise EncryptionFailure("Stored token failed integrity check") from exc

    def encrypt_optional(self, plaintext: Optional[str]) -> Optional[str]:
        return self.encrypt(plaintext) if plaintext else None

    def decrypt_optional(self, ciphertext: Optional[str]) -> Optional[str]:
        return self.decrypt(ciphertext) if ciphertext else None
