"""Pydantic schemas for request/response payloads."""

from .auth import OAuthErrorResponse, OAuthTokenResponse, RevokeResponse

__all__ = [
    "OAuthErrorResponse",
    "OAuthTokenResponse",
    "RevokeResponse",
]
