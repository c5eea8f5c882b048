"""
Two nested OAuth2 authorization-code flows.

Hop A: this service is an OAuth client of the provider. It sends the
user-agent to the provider consent screen, takes the callback, exchanges the
code and persists the token pair.

Hop B: this service is an OAuth server for the downstream client. Its
``/oauth/authorize`` delegates to Hop A, then hands the client a one-time code
it can trade at ``/oauth/token`` for backend-signed session tokens. The
downstream client never sees provider tokens.
"""

from __future__ import annotations

import asyncio
import hmac
import logging
import secrets
from dataclasses import dataclass
from http import HTTPStatus
from typing import Optional
from urllib.parse import parse_qsl, urlencode, urlparse, urlunparse

from token_bridge.clients.provider_auth import ProviderOAuthClient
from token_bridge.core.config import BridgeSettings
from token_bridge.core.errors import GrantError, HandshakeError, ProviderError
from token_bridge.core.logging import safe_token_label
from token_bridge.models.oauth import AuthFlow, AuthorizationCodeEntry, StateEntry
from token_bridge.services.backend_tokens import (
    REFRESH_TOKEN_TYPE,
    BackendTokenIssuer,
    InvalidBackendToken,
)
from token_bridge.services.credential_store import CredentialStore
from token_bridge.services.ephemeral import EphemeralRegistry

logger = logging.getLogger(__name__)

STATE_BYTES = 16
AUTH_CODE_BYTES = 24


@dataclass(slots=True)
class CallbackResult:
    """Outcome of a completed provider callback.

    ``redirect_url`` is set for the bridge flow; a direct reconnection has
    nothing to redirect to and renders a success page instead.
    """

    subject: str
    flow: AuthFlow
    redirect_url: Optional[str] = None


def _append_query(url: str, **params: str) -> str:
    parsed = urlparse(url)
    query = parse_qsl(parsed.query, keep_blank_values=True)
    query = [(key, value) for key, value in query if key not in params]
    query.extend(params.items())
    return urlunparse(parsed._replace(query=urlencode(query)))


def _same(given: str, expected: str) -> bool:
    return hmac.compare_digest(given.encode("utf-8"), expected.encode("utf-8"))


class OAuthBridgeService:
    """Orchestrates Hop A (provider client) and Hop B (downstream server)."""

    def __init__(
        self,
        *,
        oauth_client: ProviderOAuthClient,
        credential_store: CredentialStore,
        state_registry: EphemeralRegistry[StateEntry],
        code_registry: EphemeralRegistry[AuthorizationCodeEntry],
        token_issuer: BackendTokenIssuer,
        bridge_settings: BridgeSettings,
        backend_host: str,
    ) -> None:
        self._oauth = oauth_client
        self._store = credential_store
        self._states = state_registry
        self._codes = code_registry
        self._issuer = token_issuer
        self._bridge = bridge_settings
        self._allowed_hosts = {backend_host.lower(), *self._bridge.allowed_redirect_hosts}

    # ------------------------------------------------------------------
    # Hop A
    # ------------------------------------------------------------------

    def start(
        self,
        flow: AuthFlow,
        *,
        redirect_uri: Optional[str] = None,
        caller_state: Optional[str] = None,
    ) -> str:
        """Register a fresh CSRF state and return the provider consent URL."""
        state = secrets.token_urlsafe(STATE_BYTES)
        self._states.save(
            state,
            StateEntry(flow=flow, redirect_uri=redirect_uri, caller_state=caller_state),
        )
        return self._oauth.build_authorization_url(state)

    async def complete_callback(
        self,
        *,
        code: Optional[str],
        state: Optional[str],
        error: Optional[str] = None,
        error_description: Optional[str] = None,
    ) -> CallbackResult:
        """Finish Hop A: validate state, exchange the code, persist the tokens."""
        if error:
            logger.info("Provider returned authorization error %s", error)
            raise HandshakeError(error, error_description or "The provider denied authorization.")
        if not code or not state:
            raise HandshakeError("invalid_request", "Missing code or state; please restart authentication.")

        entry = self._states.consume(state)
        if entry is None:
            raise HandshakeError("invalid_state", "Unknown or expired state; please restart authentication.")

        try:
            grant = await self._oauth.exchange_authorization_code(code)
        except ProviderError as exc:
            logger.error(
                "Token exchange failed (%s, status %s, provider code %s)",
                exc.kind.value,
                exc.status_code,
                exc.provider_code,
            )
            raise HandshakeError(
                "token_exchange_failed", "Token exchange failed; please retry authentication."
            ) from exc

        subject = grant.open_id
        if not subject:
            raise HandshakeError("missing_subject", "Unable to determine the provider account.")

        # Shielded so the record is persisted even if the user-agent goes away.
        await asyncio.shield(self._store.save(subject, grant))
        logger.info("Connected provider account %s via %s flow", safe_token_label(subject), entry.flow.value)

        if entry.flow is AuthFlow.BRIDGE and entry.redirect_uri:
            one_time_code = self._mint_authorization_code(subject, grant.scopes)
            redirect_url = _append_query(
                entry.redirect_uri, code=one_time_code, state=entry.caller_state or ""
            )
            return CallbackResult(subject=subject, flow=entry.flow, redirect_url=redirect_url)
        return CallbackResult(subject=subject, flow=entry.flow)

    # ------------------------------------------------------------------
    # Hop B
    # ------------------------------------------------------------------

    def authorize(
        self,
        *,
        client_id: Optional[str],
        redirect_uri: Optional[str],
        state: Optional[str],
        response_type: Optional[str],
    ) -> str:
        """Validate a downstream authorize request and start Hop A for it."""
        if response_type != "code":
            raise GrantError("unsupported_response_type", "Only response_type=code is supported.")
        if not client_id or not _same(client_id, self._bridge.client_id):
            raise GrantError("unauthorized_client", "Unknown client_id.")
        if not state or not redirect_uri:
            raise GrantError("invalid_request", "state and redirect_uri are required.")
        if not self.is_allowed_redirect(redirect_uri):
            raise GrantError("invalid_redirect_uri", "Redirect URI not allowed.")

        return self.start(AuthFlow.BRIDGE, redirect_uri=redirect_uri, caller_state=state)

    def is_allowed_redirect(self, redirect_uri: str) -> bool:
        try:
            parsed = urlparse(redirect_uri)
        except ValueError:
            return False
        if parsed.scheme not in ("http", "https"):
            return False
        host = (parsed.hostname or "").lower()
        return bool(host) and host in self._allowed_hosts

    def exchange_token(
        self,
        *,
        grant_type: Optional[str],
        code: Optional[str] = None,
        refresh_token: Optional[str] = None,
        client_id: Optional[str] = None,
        client_secret: Optional[str] = None,
    ) -> dict:
        """Handle ``/oauth/token`` for the authorization_code and refresh_token grants."""
        self._check_client(client_id, client_secret)

        if grant_type == "authorization_code":
            if not code:
                raise GrantError("invalid_request", "Missing code.")
            entry = self._codes.consume(code)
            if entry is None:
                raise GrantError("invalid_grant", "Code expired or invalid.")
            return self._token_response(entry.subject, entry.scopes)

        if grant_type == "refresh_token":
            if not refresh_token:
                raise GrantError("invalid_request", "Missing refresh_token.")
            try:
                claims = self._issuer.verify(refresh_token, REFRESH_TOKEN_TYPE)
            except InvalidBackendToken as exc:
                raise GrantError("invalid_grant", "Invalid refresh token.") from exc
            reuse = None if self._bridge.rotate_refresh_tokens else refresh_token
            return self._token_response(claims.subject, claims.scopes, refresh_token=reuse)

        raise GrantError("unsupported_grant_type", "Unsupported grant_type.")

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _mint_authorization_code(self, subject: str, scopes: Optional[str]) -> str:
        code = secrets.token_urlsafe(AUTH_CODE_BYTES)
        self._codes.save(code, AuthorizationCodeEntry(subject=subject, scopes=scopes))
        return code

    def _check_client(self, client_id: Optional[str], client_secret: Optional[str]) -> None:
        # client_id is optional on this endpoint but must match when sent.
        if client_id is not None and not _same(client_id, self._bridge.client_id):
            raise GrantError(
                "invalid_client",
                "Client authentication failed.",
                status_code=HTTPStatus.UNAUTHORIZED,
            )
        expected = self._bridge.client_secret
        if not expected:
            return
        if not client_secret or not _same(client_secret, expected):
            raise GrantError(
                "invalid_client",
                "Client authentication failed.",
                status_code=HTTPStatus.UNAUTHORIZED,
            )

    def _token_response(
        self, subject: str, scopes: Optional[str], refresh_token: Optional[str] = None
    ) -> dict:
        return {
            "access_token": self._issuer.issue_access_token(subject, scopes),
            "refresh_token": refresh_token or self._issuer.issue_refresh_token(subject, scopes),
            "token_type": "Bearer",
            "expires_in": self._issuer.access_ttl_seconds,
            "scope": scopes or "",
        }


__all__ = ["CallbackResult", "OAuthBridgeService"]
