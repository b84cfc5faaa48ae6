"""Field level encryption helpers.

Protected columns are stored as Fernet tokens. Columns that must support
exact-match search carry a companion blind index: a keyed HMAC of the
normalized plaintext, so lookups never need to decrypt every row.
"""

from __future__ import annotations

import hashlib
import hmac
import logging
from functools import lru_cache

from cryptography.fernet import Fernet, InvalidToken, MultiFernet
from sqlalchemy import Text
from sqlalchemy.types import TypeDecorator

from wellovis.core.config import settings

logger = logging.getLogger(__name__)

TOKEN_PREFIX = "gAAAAA"


@lru_cache(maxsize=4)
def _build_cipher(raw_keys: str) -> MultiFernet:
    keys = [key.strip() for key in raw_keys.split(",") if key.strip()]
    if not keys:
        raise RuntimeError("FIELD_ENCRYPTION_KEY is not configured")
    return MultiFernet([Fernet(key.encode()) for key in keys])


class FieldCipher:
    """Encrypt and decrypt individual column values.

    Several comma separated keys may be configured. The first one encrypts,
    all of them are tried when decrypting so keys can be rotated.
    """

    def __init__(self, keys: str | None = None) -> None:
        self._keys = keys

    @property
    def cipher(self) -> MultiFernet:
        return _build_cipher(self._keys if self._keys is not None else settings.field_encryption_key)

    @staticmethod
    def looks_encrypted(value: str | None) -> bool:
        return bool(value) and value.startswith(TOKEN_PREFIX)

    def is_encrypted(self, value: str | None) -> bool:
        """Return whether ``value`` is a token one of the configured keys can open.

        Plaintext that merely starts with the token prefix is not encrypted.
        """

        if not self.looks_encrypted(value):
            return False
        try:
            self.cipher.decrypt(value.encode("ascii"))
        except (InvalidToken, UnicodeEncodeError):
            return False
        return True

    def encrypt(self, value: str | None) -> str | None:
        if value is None:
            return None
        return self.cipher.encrypt(value.encode("utf-8")).decode("ascii")

    def decrypt(self, value: str | None) -> str | None:
        if value is None:
            return None
        return self.cipher.decrypt(value.encode("ascii")).decode("utf-8")

    def rotate(self, value: str) -> str:
        return self.cipher.rotate(value.encode("ascii")).decode("ascii")


field_cipher = FieldCipher()


def is_configured() -> bool:
    """Return whether a usable field encryption key is configured."""

    try:
        field_cipher.cipher
    except (RuntimeError, ValueError):
        return False
    return True


def _normalize(value: str) -> str:
    return value.strip().lower()


def blind_index(value: str | None, *, context: str) -> str | None:
    """Return the HMAC-SHA256 blind index of ``value`` within ``context``."""

    if value is None or not value.strip():
        return None
    key = settings.blind_index_key
    if not key:
        raise RuntimeError("BLIND_INDEX_KEY is not configured")
    message = f"{context}:{_normalize(value)}".encode("utf-8")
    return hmac.new(key.encode("utf-8"), message, hashlib.sha256).hexdigest()


class EncryptedText(TypeDecorator):
    """Text column transparently encrypted with the field cipher.

    Rows written before encryption was enabled are returned as stored.
    """

    impl = Text
    cache_ok = True

    def process_bind_param(self, value, dialect):
        if value is None or field_cipher.is_encrypted(value):
            return value
        return field_cipher.encrypt(value)

    def process_result_value(self, value, dialect):
        if value is None or not FieldCipher.looks_encrypted(value):
            return value
        try:
            return field_cipher.decrypt(value)
        except InvalidToken:
            logger.error("unable to decrypt column value with configured keys")
            raise


__all__ = [
    "EncryptedText",
    "FieldCipher",
    "blind_index",
    "field_cipher",
    "is_configured",
]
