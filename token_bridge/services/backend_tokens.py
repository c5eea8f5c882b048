"""Backend-issued session tokens for the downstream client (HS256 JWTs)."""

from __future__ import annotations

from datetime import datetime, timedelta, timezone
from typing import Optional

import jwt

from token_bridge.models.oauth import BackendTokenClaims

ACCESS_TOKEN_TYPE = "access"
REFRESH_TOKEN_TYPE = "refresh"
_ALGORITHM = "HS256"


class InvalidBackendToken(Exception):
    """Signature, expiry or token-type check failed."""


class BackendTokenIssuer:
    """Mint and verify the access/refresh tokens the bridge hands out.

    Nothing is persisted server-side; validity rests on the signature and
    the ``exp`` claim.
    """

    def __init__(
        self,
        *,
        secret: str,
        access_ttl_seconds: int = 3600,
        refresh_ttl_seconds: int = 30 * 24 * 3600,
    ) -> None:
        self._secret = secret
        self._access_ttl = access_ttl_seconds
        self._refresh_ttl = refresh_ttl_seconds

    @property
    def access_ttl_seconds(self) -> int:
        return self._access_ttl

    def issue_access_token(self, subject: str, scopes: Optional[str]) -> str:
        return self._encode(subject, scopes, ACCESS_TOKEN_TYPE, self._access_ttl)

    def issue_refresh_token(self, subject: str, scopes: Optional[str]) -> str:
        return self._encode(subject, scopes, REFRESH_TOKEN_TYPE, self._refresh_ttl)

    def verify(self, token: str, expected_type: str) -> BackendTokenClaims:
        """Decode ``token`` and check it is of ``expected_type``."""
        try:
            payload = jwt.decode(
                token,
                self._secret,
                algorithms=[_ALGORITHM],
                options={"require": ["exp", "sub", "typ"]},
            )
        except jwt.InvalidTokenError as exc:
            raise InvalidBackendToken(type(exc).__name__) from exc

        if payload.get("typ") != expected_type:
            raise InvalidBackendToken("unexpected token type")
        return BackendTokenClaims(
            subject=payload["sub"],
            scopes=payload.get("scopes"),
            token_type=payload["typ"],
        )

    def _encode(self, subject: str, scopes: Optional[str], token_type: str, ttl: int) -> str:
        issued_at = datetime.now(timezone.utc)
        claims = {
            "sub": subject,
            "scopes": scopes,
            "typ": token_type,
            "iat": issued_at,
            "exp": issued_at + timedelta(seconds=ttl),
        }
        return jwt.encode(claims, self._secret, algorithm=_ALGORITHM)


__all__ = [
    "ACCESS_TOKEN_TYPE",
    "BackendTokenIssuer",
    "InvalidBackendToken",
    "REFRESH_TOKEN_TYPE",
]
