"""
Token Encryption

Fernet encryption for channel access/refresh tokens at rest, and the
SecretStore value type that keeps plaintext out of models, logs and reprs.
Plaintext is only reachable through SecretStore.unsealed(), which the
platform adapters call at the HTTP call site.
"""
import logging
from contextlib import contextmanager
from functools import lru_cache
from typing import Iterator, Optional

from cryptography.fernet import Fernet, InvalidToken

from socialhub.core.config import get_settings

logger = logging.getLogger(__name__)


class EncryptionError(Exception):
    """Raised when a token cannot be encrypted or decrypted"""
    pass


class TokenCipher:
    """Fernet cipher built from TOKEN_ENCRYPTION_KEY"""

    def __init__(self, key: str):
        if not key:
            raise EncryptionError("TOKEN_ENCRYPTION_KEY is not configured")
        try:
            self._fernet = Fernet(key.encode() if isinstance(key, str) else key)
        except (ValueError, TypeError) as e:
            raise EncryptionError(f"TOKEN_ENCRYPTION_KEY is not a valid Fernet key: {e}")

    def encrypt(self, plaintext: str) -> str:
        return self._fernet.encrypt(plaintext.encode("utf-8")).decode("utf-8")

    def decrypt(self, ciphertext: str) -> str:
        try:
            return self._fernet.decrypt(ciphertext.encode("utf-8")).decode("utf-8")
        except InvalidToken:
            raise EncryptionError("Token could not be decrypted with the configured key")


@lru_cache()
def get_encryption() -> TokenCipher:
    """Get the process-wide token cipher"""
    return TokenCipher(get_settings().token_encryption_key)


class SecretStore:
    """
    Encrypted secret that refuses to expose its plaintext.

    Only the ciphertext is stored. str() and repr() are masked so a channel
    or a token can be logged without leaking credentials.
    """

    __slots__ = ("_ciphertext",)

    def __init__(self, ciphertext: str):
        if not ciphertext:
            raise EncryptionError("SecretStore requires ciphertext")
        self._ciphertext = ciphertext

    @classmethod
    def seal(cls, plaintext: str, cipher: Optional[TokenCipher] = None) -> "SecretStore":
        cipher = cipher or get_encryption()
        return cls(cipher.encrypt(plaintext))

    @property
    def ciphertext(self) -> str:
        return self._ciphertext

    @contextmanager
    def unsealed(self, cipher: Optional[TokenCipher] = None) -> Iterator[str]:
        """Yield the plaintext for the duration of a single platform call"""
        cipher = cipher or get_encryption()
        plaintext = cipher.decrypt(self._ciphertext)
        try:
            yield plaintext
        finally:
            del plaintext

    def __eq__(self, other):
        return isinstance(other, SecretStore) and other._ciphertext == self._ciphertext

    def __hash__(self):
        return hash(self._ciphertext)

    def __repr__(self):
        return "SecretStore(****)"

    __str__ = __repr__


def validate_token_encryption_at_boot() -> bool:
    """
    Sanity test encrypt/decrypt with the configured key at startup

    Returns:
        True when tokens can be round-tripped with the configured key
    """
    try:
        cipher = get_encryption()
        sample = "token-encryption-check"
        if cipher.decrypt(cipher.encrypt(sample)) != sample:
            logger.critical("Token encryption round trip returned different plaintext")
            return False
    except EncryptionError as e:
        logger.critical(f"Token encryption validation failed: {e}")
        return False

    logger.info("Token encryption validation successful")
    return True


def generate_secure_encryption_key() -> str:
    """Generate a new base64-encoded Fernet key"""
    return Fernet.generate_key().decode('utf-8')
