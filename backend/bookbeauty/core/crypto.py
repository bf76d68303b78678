"""Encoding helpers for connected-account OAuth tokens stored at rest."""

from __future__ import annotations

import base64
import binascii
import logging
import os
from typing import Optional, Tuple

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives.ciphers.aead import AESGCM
from pydantic import SecretStr

from .config import settings

logger = logging.getLogger(__name__)

_TOKEN_PREFIX = "v1:"
_BASE64_PREFIX = "b64:"
_NONCE_LEN = 12
_TAG_LEN = 16
_KEY_LEN = 32

STORAGE_MODE_EMPTY = "empty"
STORAGE_MODE_BASE64 = "base64"
STORAGE_MODE_ENCRYPTED = "encrypted"


def _b64u_encode(data: bytes) -> str:
    """Encode bytes to urlsafe base64 without padding."""

    return base64.urlsafe_b64encode(data).decode("utf-8").rstrip("=")


def _b64u_decode(payload: str) -> bytes:
    """Decode urlsafe base64 string, tolerating missing padding."""

    padding_len = (-len(payload)) % 4
    padded = payload + ("=" * padding_len)
    return base64.urlsafe_b64decode(padded.encode("utf-8"))


def resolve_token_key(raw: str | SecretStr | None) -> Optional[bytes]:
    """
    Turn the configured key into 32 raw bytes.

    Accepted forms, tried in order: base64 (standard or urlsafe), hex, raw UTF-8.
    Anything that does not yield exactly 32 bytes disables encryption.
    """

    value = raw.get_secret_value() if isinstance(raw, SecretStr) else (raw or "")
    value = value.strip()
    if not value:
        return None

    try:
        standard = value.replace("-", "+").replace("_", "/")
        decoded = base64.b64decode(standard + "=" * (-len(standard) % 4))
        if len(decoded) == _KEY_LEN:
            return decoded
    except (binascii.Error, ValueError):
        pass

    try:
        decoded = bytes.fromhex(value)
        if len(decoded) == _KEY_LEN:
            return decoded
    except ValueError:
        pass

    encoded = value.encode("utf-8")
    if len(encoded) == _KEY_LEN:
        return encoded
    return None


class TokenCodec:
    """
    Encrypts and decodes provider tokens for storage.

    Stored formats:
        ``v1:<nonce>:<tag>:<ciphertext>`` (AES-256-GCM, urlsafe base64 parts)
        ``b64:<base64>`` when no key is configured
        anything else is treated as a legacy plaintext value
    """

    def __init__(self, key: Optional[bytes]) -> None:
        self._key = key
        self._cipher = AESGCM(key) if key else None

    @classmethod
    def from_settings(cls, config=None) -> "TokenCodec":
        cfg = config or settings
        return cls(resolve_token_key(cfg.mollie_token_encryption_key))

    @property
    def encryption_enabled(self) -> bool:
        return self._cipher is not None

    def encode(self, plain: Optional[str]) -> Tuple[str, str]:
        """Return ``(stored_value, storage_mode)`` for a token."""

        value = (plain or "").strip()
        if not value:
            return "", STORAGE_MODE_EMPTY

        if self._cipher is None:
            encoded = base64.b64encode(value.encode("utf-8")).decode("ascii")
            return f"{_BASE64_PREFIX}{encoded}", STORAGE_MODE_BASE64

        nonce = os.urandom(_NONCE_LEN)
        sealed = self._cipher.encrypt(nonce, value.encode("utf-8"), associated_data=None)
        ciphertext, tag = sealed[:-_TAG_LEN], sealed[-_TAG_LEN:]
        parts = [_b64u_encode(nonce), _b64u_encode(tag), _b64u_encode(ciphertext)]
        return f"{_TOKEN_PREFIX}{':'.join(parts)}", STORAGE_MODE_ENCRYPTED

    def decode(self, stored: Optional[str]) -> str:
        """Recover the plaintext token; any failure yields an empty string."""

        value = (stored or "").strip()
        if not value:
            return ""

        if value.startswith(_TOKEN_PREFIX):
            return self._decrypt(value)

        if value.startswith(_BASE64_PREFIX):
            try:
                return base64.b64decode(value[len(_BASE64_PREFIX) :]).decode("utf-8")
            except (binascii.Error, UnicodeDecodeError, ValueError):
                logger.warning("Stored token has an unreadable base64 payload")
                return ""

        # Legacy plaintext written before tokens were encoded.
        return value

    def _decrypt(self, value: str) -> str:
        if self._cipher is None:
            logger.warning("Encrypted token found but no encryption key is configured")
            return ""

        parts = value.split(":")
        if len(parts) != 4:
            return ""

        try:
            nonce = _b64u_decode(parts[1])
            tag = _b64u_decode(parts[2])
            ciphertext = _b64u_decode(parts[3])
        except (binascii.Error, ValueError):
            return ""

        if len(nonce) != _NONCE_LEN or len(tag) != _TAG_LEN:
            return ""

        try:
            plain = self._cipher.decrypt(nonce, ciphertext + tag, associated_data=None)
        except InvalidTag:
            logger.warning("Stored token failed authentication; key mismatch or tampering")
            return ""
        return plain.decode("utf-8")


__all__ = [
    "STORAGE_MODE_BASE64",
    "STORAGE_MODE_EMPTY",
    "STORAGE_MODE_ENCRYPTED",
    "TokenCodec",
    "resolve_token_key",
]
