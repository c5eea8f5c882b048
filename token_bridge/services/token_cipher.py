"""Authenticated encryption for tokens at rest (AES-256-GCM)."""

from __future__ import annotations

import base64
import binascii
import logging
import re
import secrets
from typing import Any, Mapping

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives.ciphers.aead import AESGCM

from token_bridge.core.errors import ConfigurationError

logger = logging.getLogger(__name__)

KEY_SIZE = 32
NONCE_SIZE = 12
TAG_SIZE = 16

_HEX_KEY = re.compile(r"^[0-9a-fA-F]{64}$")


def parse_encryption_key(raw_key: str | bytes | None) -> bytes:
    """Decode a 32-byte key given as 64 hex characters or base64.

    Raises ``ConfigurationError`` for anything else.
    """
    if not raw_key:
        raise ConfigurationError(message="Missing ENCRYPTION_KEY for token encryption.")
    if isinstance(raw_key, bytes):
        key = raw_key
    elif _HEX_KEY.match(raw_key.strip()):
        key = bytes.fromhex(raw_key.strip())
    else:
        try:
            key = base64.b64decode(raw_key.strip(), validate=True)
        except (binascii.Error, ValueError) as exc:
            raise ConfigurationError(
                message="ENCRYPTION_KEY must be hex or base64 encoded."
            ) from exc

    if len(key) != KEY_SIZE:
        raise ConfigurationError(
            message=f"ENCRYPTION_KEY must be {KEY_SIZE} bytes (base64 or hex), got {len(key)}."
        )
    return key


class TokenCipherService:
    """Encrypt and decrypt token strings into ``{iv, tag, data}`` envelopes."""

    def __init__(self, *, key: str | bytes) -> None:
        self._aesgcm = AESGCM(parse_encryption_key(key))

    def encrypt(self, plaintext: str) -> dict[str, str]:
        """Encrypt a plaintext string with a fresh nonce."""
        nonce = secrets.token_bytes(NONCE_SIZE)
        sealed = self._aesgcm.encrypt(nonce, plaintext.encode("utf-8"), None)
        ciphertext, tag = sealed[:-TAG_SIZE], sealed[-TAG_SIZE:]
        return {
            "iv": base64.b64encode(nonce).decode("ascii"),
            "tag": base64.b64encode(tag).decode("ascii"),
            "data": base64.b64encode(ciphertext).decode("ascii"),
        }

    def decrypt(self, envelope: Mapping[str, Any] | None) -> str | None:
        """Decrypt an envelope, returning ``None`` when it cannot be trusted."""
        if not isinstance(envelope, Mapping):
            logger.warning("Token decrypt skipped: envelope is not an object")
            return None
        try:
            nonce = base64.b64decode(envelope["iv"], validate=True)
            tag = base64.b64decode(envelope["tag"], validate=True)
            ciphertext = base64.b64decode(envelope["data"], validate=True)
            plaintext = self._aesgcm.decrypt(nonce, ciphertext + tag, None)
            return plaintext.decode("utf-8")
        except InvalidTag:
            logger.warning("Token decrypt failed: authentication tag mismatch")
        except (KeyError, TypeError, ValueError) as exc:
            # ValueError also covers binascii.Error, bad nonce sizes and bad UTF-8.
            logger.warning("Token decrypt failed: malformed envelope (%s)", type(exc).__name__)
        return None


__all__ = ["TokenCipherService", "parse_encryption_key", "KEY_SIZE"]
