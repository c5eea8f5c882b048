"""Pytest configuration shared across the suite."""

from pathlib import Path

import pytest

try:
    from . import _bootstrap  # noqa: F401
except Exception:  # pragma: no cover
    import _bootstrap  # type: ignore # noqa: F401

from token_bridge.services.credential_store import CredentialStore
from token_bridge.services.token_cipher import TokenCipherService


@pytest.fixture
def anyio_backend() -> str:
    """Force AnyIO-powered tests to run against asyncio backend only."""
    return "asyncio"


@pytest.fixture
def token_cipher() -> TokenCipherService:
    return TokenCipherService(key="3c" * 32)


@pytest.fixture
def store_path(tmp_path: Path) -> Path:
    """Store location in a directory that does not exist yet."""
    return tmp_path / "data" / "tokens.json"


@pytest.fixture
def credential_store(store_path: Path, token_cipher: TokenCipherService) -> CredentialStore:
    return CredentialStore(file_path=store_path, token_cipher=token_cipher, lock_timeout=2.0)
