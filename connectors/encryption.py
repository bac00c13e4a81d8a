"""
Credential encryption — encrypt / decrypt connector secrets at rest.

Uses Fernet (AES-128-CBC + HMAC-SHA256) from the ``cryptography`` library.
Keys are loaded from ``config.credential_encryption_key``
(env var: ``CREDENTIAL_ENCRYPTION_KEY``) as a comma-separated list.  The
first key encrypts; every key is tried on decrypt, so a new key can be
prepended and old ciphertexts re-encrypted lazily.

Unlike session tokens, connector credentials are never stored as plaintext:
with no key configured every operation raises ``ConfigurationError``.
Generate a key with::

    python -c "from cryptography.fernet import Fernet; print(Fernet.generate_key().decode())"
"""

from __future__ import annotations

import logging
from typing import List, Optional, Sequence

from cryptography.fernet import Fernet, InvalidToken, MultiFernet

from config.settings import config
from connectors.errors import ConfigurationError

logger = logging.getLogger(__name__)


class CredentialCipher:
    """Symmetric cipher over one or more Fernet keys."""

    def __init__(self, keys: Sequence[str]):
        self._keys: List[str] = [k for k in keys if k]
        self._fernet: Optional[MultiFernet] = None

    @classmethod
    def from_config(cls) -> "CredentialCipher":
        return cls(config.encryption_keys())

    def _cipher(self) -> MultiFernet:
        """Lazy-initialise the Fernet cipher once."""
        if self._fernet is not None:
            return self._fernet
        if not self._keys:
            raise ConfigurationError(
                "CREDENTIAL_ENCRYPTION_KEY is not set; connector credentials cannot be stored"
            )
        try:
            self._fernet = MultiFernet([Fernet(k.encode()) for k in self._keys])
        except ValueError as exc:
            raise ConfigurationError(f"Invalid credential encryption key: {exc}") from exc
        logger.info("Credential encryption enabled with %d key(s)", len(self._keys))
        return self._fernet

    def encrypt(self, plaintext: str) -> str:
        """Return the Fernet ciphertext (URL-safe base64)."""
        return self._cipher().encrypt(plaintext.encode()).decode()

    def decrypt(self, ciphertext: str) -> str:
        """
        Decrypt a ciphertext produced by any configured key.

        Raises ``ConfigurationError`` when no configured key matches, which
        means the key that wrote the value was removed from the key list.
        """
        try:
            return self._cipher().decrypt(ciphertext.encode()).decode()
        except InvalidToken as exc:
            raise ConfigurationError(
                "Stored credential cannot be decrypted with the configured keys"
            ) from exc

    def rotate(self, ciphertext: str) -> str:
        """Re-encrypt a ciphertext under the primary key."""
        return self._cipher().rotate(ciphertext.encode()).decode()

    @property
    def enabled(self) -> bool:
        return bool(self._keys)

    def require(self) -> None:
        """Raise ``ConfigurationError`` unless a usable key is configured."""
        self._cipher()
