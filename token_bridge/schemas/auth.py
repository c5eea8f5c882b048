"""Schemas related to the bridge OAuth surface."""

from __future__ import annotations

from typing import Optional

from pydantic import BaseModel, Field


class OAuthTokenResponse(BaseModel):
    """Successful ``/oauth/token`` response."""

    access_token: str
    refresh_token: str
    token_type: str = "Bearer"
    expires_in: int = Field(..., description="Access token lifetime in seconds.")
    scope: str = ""


class OAuthErrorResponse(BaseModel):
    """Error body shared by every JSON endpoint."""

    error: str = Field(..., description="Stable machine-readable error code.")
    error_description: Optional[str] = None


class RevokeResponse(BaseModel):
    revoked: bool


__all__ = ["OAuthErrorResponse", "OAuthTokenResponse", "RevokeResponse"]
