"""Test helper that normalizes sys.path and environment defaults."""

from __future__ import annotations

import os
import sys
import tempfile
from pathlib import Path

PROJECT_ROOT = Path(__file__).resolve().parents[1]

if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))

TEST_ENCRYPTION_KEY = "00112233445566778899aabbccddeeff" * 2
TEST_JWT_SECRET = "unit-test-backend-signing-secret-0123456789"

_DEFAULT_ENV_VARS: dict[str, str] = {
    "ENCRYPTION_KEY": TEST_ENCRYPTION_KEY,
    "BACKEND_JWT_SECRET": TEST_JWT_SECRET,
    "BASE_URL": "https://bridge.example.com",
    "PROVIDER_CLIENT_ID": "test-provider-client",
    "PROVIDER_CLIENT_SECRET": "test-provider-secret",
    "BRIDGE_CLIENT_ID": "test-connector",
    "TOKEN_STORE_PATH": str(Path(tempfile.mkdtemp(prefix="token-bridge-")) / "tokens.json"),
}

for key, value in _DEFAULT_ENV_VARS.items():
    os.environ.setdefault(key, value)
