"""
Domain models for OAuth token persistence and the bridge handshakes.
"""

from __future__ import annotations

import enum
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Dict, Optional

from pydantic import BaseModel, Field


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class EncryptedValue(BaseModel):
    """AES-GCM envelope, all fields base64."""

    iv: str
    tag: str
    data: str


class StoredTokenRecord(BaseModel):
    """Represents a token record as persisted in the store file."""

    access_token: EncryptedValue
    refresh_token: EncryptedValue
    expires_at: Optional[datetime] = None
    refresh_expires_at: Optional[datetime] = None
    scopes: Optional[str] = None
    open_id: Optional[str] = None
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)


class TokenStoreDocument(BaseModel):
    """Top-level layout of the store file."""

    version: int = 1
    tokens: Dict[str, StoredTokenRecord] = Field(default_factory=dict)


class ProviderTokenGrant(BaseModel):
    """Plaintext token pair as returned by the provider."""

    access_token: str
    refresh_token: str
    expires_at: Optional[datetime] = None
    refresh_expires_at: Optional[datetime] = None
    scopes: Optional[str] = None
    open_id: Optional[str] = None
    token_type: str = "Bearer"


class TokenRecord(BaseModel):
    """A decrypted token record handed to callers of the credential store."""

    subject: str
    access_token: str
    refresh_token: str
    expires_at: Optional[datetime] = None
    refresh_expires_at: Optional[datetime] = None
    scopes: Optional[str] = None
    open_id: Optional[str] = None
    created_at: datetime
    updated_at: datetime


class TokenSummary(BaseModel):
    """Non-secret view of a stored record for operational inspection."""

    subject_label: str
    open_id: Optional[str] = None
    scopes: Optional[str] = None
    expires_at: Optional[datetime] = None
    refresh_expires_at: Optional[datetime] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


class AuthFlow(str, enum.Enum):
    DIRECT = "direct"
    BRIDGE = "bridge"


@dataclass(slots=True)
class StateEntry:
    """CSRF state issued when sending a user-agent to the provider."""

    flow: AuthFlow
    redirect_uri: Optional[str] = None
    caller_state: Optional[str] = None
    created_at: datetime = field(default_factory=utcnow)


@dataclass(slots=True)
class AuthorizationCodeEntry:
    """One-time code handed to the downstream client after Hop A."""

    subject: str
    scopes: Optional[str] = None
    created_at: datetime = field(default_factory=utcnow)


@dataclass(slots=True)
class BackendTokenClaims:
    subject: str
    scopes: Optional[str]
    token_type: str


__all__ = [
    "AuthFlow",
    "AuthorizationCodeEntry",
    "BackendTokenClaims",
    "EncryptedValue",
    "ProviderTokenGrant",
    "StateEntry",
    "StoredTokenRecord",
    "TokenRecord",
    "TokenStoreDocument",
    "TokenSummary",
    "utcnow",
]
