"""
Factory functions to provide shared clients and services as FastAPI dependencies.

Leaf collaborators are process-wide singletons. The orchestration services are
assembled per request from those leaves through ``Depends`` so tests can swap
any leaf with ``app.dependency_overrides``.
"""

from functools import lru_cache

from fastapi import Depends

from token_bridge.clients import ProviderAPIClient, ProviderOAuthClient
from token_bridge.core.config import AppSettings, BridgeSettings, get_settings
from token_bridge.dependencies.config import get_app_settings, get_bridge_settings
from token_bridge.models.oauth import AuthorizationCodeEntry, StateEntry
from token_bridge.services import (
    BackendTokenIssuer,
    CredentialStore,
    EphemeralRegistry,
    OAuthBridgeService,
    ProviderTokenService,
    TokenCipherService,
)


@lru_cache()
def _settings() -> AppSettings:
    """Internal helper to cache settings for client factories."""
    return get_settings()


@lru_cache()
def get_token_cipher_service() -> TokenCipherService:
    """Provide the AES-GCM helper for token storage."""
    return TokenCipherService(key=_settings().security.encryption_key)


@lru_cache()
def get_credential_store() -> CredentialStore:
    """Provide the shared file-backed credential store."""
    storage = _settings().storage
    return CredentialStore(
        file_path=storage.token_store_path,
        lock_path=storage.lock_path,
        lock_timeout=storage.lock_timeout_seconds,
        prune_after_days=storage.prune_after_days,
        token_cipher=get_token_cipher_service(),
    )


@lru_cache()
def get_state_registry() -> EphemeralRegistry[StateEntry]:
    """Provide the process-local CSRF state registry."""
    return EphemeralRegistry(name="oauth-state", ttl_seconds=_settings().bridge.state_ttl_seconds)


@lru_cache()
def get_auth_code_registry() -> EphemeralRegistry[AuthorizationCodeEntry]:
    """Provide the process-local one-time authorization code registry."""
    return EphemeralRegistry(name="auth-code", ttl_seconds=_settings().bridge.auth_code_ttl_seconds)


@lru_cache()
def get_provider_oauth_client() -> ProviderOAuthClient:
    """Create a singleton provider OAuth client."""
    settings = _settings()
    return ProviderOAuthClient(settings.provider, redirect_uri=settings.provider_redirect_uri)


@lru_cache()
def get_provider_api_client() -> ProviderAPIClient:
    """Provide the provider resource API client."""
    return ProviderAPIClient(_settings().provider)


@lru_cache()
def get_backend_token_issuer() -> BackendTokenIssuer:
    """Provide the signer for backend-issued session tokens."""
    settings = _settings()
    return BackendTokenIssuer(
        secret=settings.security.backend_jwt_secret,
        access_ttl_seconds=settings.bridge.access_token_ttl_seconds,
        refresh_ttl_seconds=settings.bridge.refresh_token_ttl_seconds,
    )


def get_oauth_bridge_service(
    settings: AppSettings = Depends(get_app_settings),
    bridge_settings: BridgeSettings = Depends(get_bridge_settings),
    oauth_client: ProviderOAuthClient = Depends(get_provider_oauth_client),
    credential_store: CredentialStore = Depends(get_credential_store),
    state_registry: EphemeralRegistry[StateEntry] = Depends(get_state_registry),
    code_registry: EphemeralRegistry[AuthorizationCodeEntry] = Depends(get_auth_code_registry),
    token_issuer: BackendTokenIssuer = Depends(get_backend_token_issuer),
) -> OAuthBridgeService:
    """Build the two-hop OAuth orchestration service."""
    return OAuthBridgeService(
        oauth_client=oauth_client,
        credential_store=credential_store,
        state_registry=state_registry,
        code_registry=code_registry,
        token_issuer=token_issuer,
        bridge_settings=bridge_settings,
        backend_host=settings.base_host,
    )


def get_provider_token_service(
    credential_store: CredentialStore = Depends(get_credential_store),
    oauth_client: ProviderOAuthClient = Depends(get_provider_oauth_client),
) -> ProviderTokenService:
    """Build the refresh-on-read token resolver."""
    return ProviderTokenService(credential_store=credential_store, oauth_client=oauth_client)


__all__ = [
    "get_auth_code_registry",
    "get_backend_token_issuer",
    "get_credential_store",
    "get_oauth_bridge_service",
    "get_provider_api_client",
    "get_provider_oauth_client",
    "get_provider_token_service",
    "get_state_registry",
    "get_token_cipher_service",
]
