"""
Provider OAuth utilities.

These helpers build the provider consent URL and talk to the provider token
endpoint for code exchange and refresh.
"""

from __future__ import annotations

from datetime import datetime, timedelta, timezone
from typing import Any, Dict
from urllib.parse import urlencode

import httpx

from token_bridge.core.config import ProviderSettings
from token_bridge.core.errors import ProviderError, ProviderErrorKind
from token_bridge.models.oauth import ProviderTokenGrant


class ProviderOAuthClient:
    """Build authorization URLs and exchange codes with the provider."""

    def __init__(self, provider_settings: ProviderSettings, redirect_uri: str) -> None:
        self._provider = provider_settings
        self._redirect_uri = redirect_uri

    @property
    def redirect_uri(self) -> str:
        return self._redirect_uri

    def build_authorization_url(self, state: str) -> str:
        """Construct the provider consent URL."""
        params = {
            "client_id": self._provider.client_id,
            "response_type": "code",
            "scope": ",".join(self._provider.scopes),
            "redirect_uri": self._redirect_uri,
            "state": state,
        }
        return f"{self._provider.authorize_url}?{urlencode(params)}"

    async def exchange_authorization_code(self, code: str) -> ProviderTokenGrant:
        """Exchange an authorization code for a token pair."""
        payload = {
            "client_id": self._provider.client_id,
            "client_secret": self._provider.client_secret,
            "grant_type": "authorization_code",
            "code": code,
            "redirect_uri": self._redirect_uri,
        }
        return await self._request_tokens(payload)

    async def refresh_token(self, refresh_token: str) -> ProviderTokenGrant:
        """Refresh the access token using a stored refresh token."""
        payload = {
            "client_id": self._provider.client_id,
            "client_secret": self._provider.client_secret,
            "grant_type": "refresh_token",
            "refresh_token": refresh_token,
        }
        return await self._request_tokens(payload, fallback_refresh_token=refresh_token)

    async def _request_tokens(
        self, payload: Dict[str, str], fallback_refresh_token: str | None = None
    ) -> ProviderTokenGrant:
        requested_at = datetime.now(timezone.utc)
        try:
            async with httpx.AsyncClient(timeout=self._provider.http_timeout_seconds) as client:
                response = await client.post(str(self._provider.token_url), data=payload)
        except httpx.HTTPError as exc:
            raise ProviderError(
                ProviderErrorKind.UNAVAILABLE, f"Token endpoint unreachable: {type(exc).__name__}"
            ) from exc

        try:
            body = response.json()
        except ValueError as exc:
            raise ProviderError(
                ProviderErrorKind.MALFORMED,
                "Token endpoint returned a non-JSON body.",
                status_code=response.status_code,
            ) from exc
        if not isinstance(body, dict):
            raise ProviderError(
                ProviderErrorKind.MALFORMED,
                "Token endpoint returned an unexpected body.",
                status_code=response.status_code,
            )

        token_payload = _unwrap(body)
        provider_code = token_payload.get("error") or body.get("error")
        if isinstance(provider_code, dict):
            provider_code = provider_code.get("code")
        if response.status_code >= 500:
            raise ProviderError(
                ProviderErrorKind.UNAVAILABLE,
                "Token endpoint failed.",
                status_code=response.status_code,
            )
        if response.status_code != httpx.codes.OK or (provider_code and provider_code != "ok"):
            raise ProviderError(
                ProviderErrorKind.REJECTED,
                "Token endpoint rejected the request.",
                status_code=response.status_code,
                provider_code=str(provider_code) if provider_code else None,
            )

        return self._grant_from_payload(token_payload, requested_at, fallback_refresh_token)

    def _grant_from_payload(
        self,
        token_payload: Dict[str, Any],
        requested_at: datetime,
        fallback_refresh_token: str | None = None,
    ) -> ProviderTokenGrant:
        access_token = token_payload.get("access_token")
        # Refresh responses may omit the refresh token when it is not rotated.
        refresh_token = token_payload.get("refresh_token") or fallback_refresh_token
        if not access_token or not refresh_token:
            raise ProviderError(
                ProviderErrorKind.MALFORMED, "Incomplete token payload returned from provider."
            )

        try:
            expires_in = int(token_payload.get("expires_in") or 0)
            refresh_expires_in = token_payload.get("refresh_expires_in")
            refresh_expires_in = int(refresh_expires_in) if refresh_expires_in else None
        except (TypeError, ValueError) as exc:
            raise ProviderError(
                ProviderErrorKind.MALFORMED, "Token lifetimes are not integers."
            ) from exc

        subject = token_payload.get(self._provider.subject_field)
        return ProviderTokenGrant(
            access_token=access_token,
            refresh_token=refresh_token,
            expires_at=requested_at + timedelta(seconds=expires_in),
            refresh_expires_at=(
                requested_at + timedelta(seconds=refresh_expires_in)
                if refresh_expires_in is not None
                else None
            ),
            scopes=token_payload.get("scope"),
            open_id=str(subject) if subject else None,
            token_type=token_payload.get("token_type") or "Bearer",
        )


def _unwrap(body: Dict[str, Any]) -> Dict[str, Any]:
    """Some providers nest the token payload under ``data``."""
    nested = body.get("data")
    if isinstance(nested, dict) and nested:
        return nested
    return body


__all__ = ["ProviderOAuthClient"]
