"""
Helpers for retrieving and refreshing provider OAuth tokens.
"""

from __future__ import annotations

import logging

from token_bridge.clients.provider_auth import ProviderOAuthClient
from token_bridge.core.errors import (
    CredentialError,
    ProviderError,
    ProviderErrorKind,
    ProviderUnavailableError,
)
from token_bridge.core.logging import safe_token_label
from token_bridge.services.credential_store import CredentialStore

logger = logging.getLogger(__name__)


class ProviderTokenService:
    """Resolve a usable provider access token for a subject, refreshing on read."""

    def __init__(
        self,
        credential_store: CredentialStore,
        oauth_client: ProviderOAuthClient,
    ) -> None:
        self._store = credential_store
        self._oauth = oauth_client

    async def resolve_access_token(self, subject: str) -> str:
        """Return a provider access token that is valid beyond the safety buffer."""
        record = await self._store.get(subject)
        if record is None:
            raise CredentialError("invalid_subject", "No provider credential for this subject.")

        if self._store.is_access_token_valid(record):
            return record.access_token

        if not self._store.is_refresh_token_valid(record):
            raise CredentialError(
                "refresh_token_expired", "Provider refresh token expired; re-authentication required."
            )

        try:
            refreshed = await self._store.refresh(subject, self._oauth.refresh_token)
        except ProviderError as exc:
            logger.warning(
                "Token refresh for %s failed (%s, provider code %s)",
                safe_token_label(subject),
                exc.kind.value,
                exc.provider_code,
            )
            if exc.kind is ProviderErrorKind.REJECTED:
                raise CredentialError(
                    "token_refresh_failed", "Provider rejected the refresh token."
                ) from exc
            raise ProviderUnavailableError(message="Provider token endpoint unavailable.") from exc

        if refreshed is None:
            # Revoked or became undecryptable while we waited for the lock.
            raise CredentialError("invalid_subject", "No provider credential for this subject.")
        if self._store.is_access_token_valid(refreshed):
            return refreshed.access_token
        if not self._store.is_refresh_token_valid(refreshed):
            # The refresh grant lapsed while we waited for the lock.
            raise CredentialError(
                "refresh_token_expired", "Provider refresh token expired; re-authentication required."
            )
        # Provider issued a token shorter-lived than the buffer; it is still the newest we have.
        return refreshed.access_token


__all__ = ["ProviderTokenService"]
