try:
    from . import _bootstrap  # noqa: F401
except Exception:  # pragma: no cover - fallback for direct execution
    import _bootstrap  # type: ignore # noqa: F401

import base64

import pytest
from pydantic import ValidationError

from token_bridge.core.config import SecuritySettings
from token_bridge.core.errors import ConfigurationError
from token_bridge.services.token_cipher import TokenCipherService, parse_encryption_key

HEX_KEY = "0f" * 32
OTHER_HEX_KEY = "f0" * 32


def test_token_cipher_roundtrip() -> None:
    cipher = TokenCipherService(key=HEX_KEY)
    plaintext = "sensitive-token"

    encrypted = cipher.encrypt(plaintext)
    assert set(encrypted) == {"iv", "tag", "data"}
    assert plaintext not in encrypted.values()
    assert len(base64.b64decode(encrypted["iv"])) == 12
    assert len(base64.b64decode(encrypted["tag"])) == 16

    assert cipher.decrypt(encrypted) == plaintext


def test_token_cipher_uses_fresh_nonce_per_call() -> None:
    cipher = TokenCipherService(key=HEX_KEY)

    first = cipher.encrypt("same-token")
    second = cipher.encrypt("same-token")

    assert first["iv"] != second["iv"]
    assert first["data"] != second["data"]


def test_token_cipher_accepts_base64_key() -> None:
    raw = bytes(range(32))
    base64_cipher = TokenCipherService(key=base64.b64encode(raw).decode("ascii"))
    hex_cipher = TokenCipherService(key=raw.hex())

    assert hex_cipher.decrypt(base64_cipher.encrypt("token")) == "token"


def test_token_cipher_wrong_key_returns_none() -> None:
    encrypted = TokenCipherService(key=HEX_KEY).encrypt("token")

    assert TokenCipherService(key=OTHER_HEX_KEY).decrypt(encrypted) is None


def test_token_cipher_tampered_tag_returns_none() -> None:
    cipher = TokenCipherService(key=HEX_KEY)
    encrypted = cipher.encrypt("token")
    tag = bytearray(base64.b64decode(encrypted["tag"]))
    tag[0] ^= 0x01
    encrypted["tag"] = base64.b64encode(bytes(tag)).decode("ascii")

    assert cipher.decrypt(encrypted) is None


@pytest.mark.parametrize(
    "envelope",
    [
        None,
        "not-an-envelope",
        {},
        {"iv": "AAAA", "tag": "AAAA"},
        {"iv": "!!!", "tag": "AAAA", "data": "AAAA"},
        {"iv": 1, "tag": 2, "data": 3},
    ],
)
def test_token_cipher_rejects_bad_envelopes(envelope) -> None:
    cipher = TokenCipherService(key=HEX_KEY)

    assert cipher.decrypt(envelope) is None


@pytest.mark.parametrize(
    "raw_key",
    [
        "",
        "ab" * 31,
        base64.b64encode(b"x" * 31).decode("ascii"),
        "definitely not a key",
    ],
)
def test_parse_encryption_key_rejects_invalid_material(raw_key: str) -> None:
    with pytest.raises(ConfigurationError):
        parse_encryption_key(raw_key)


def test_security_settings_reject_short_key() -> None:
    with pytest.raises(ValidationError):
        SecuritySettings(
            ENCRYPTION_KEY="ab" * 31,
            BACKEND_JWT_SECRET="a-long-enough-signing-secret-for-tests-123",
        )
