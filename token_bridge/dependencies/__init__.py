"""Expose dependency helpers for FastAPI routers."""

from .clients import (
    get_auth_code_registry,
    get_backend_token_issuer,
    get_credential_store,
    get_oauth_bridge_service,
    get_provider_api_client,
    get_provider_oauth_client,
    get_provider_token_service,
    get_state_registry,
    get_token_cipher_service,
)
from .config import get_app_settings, get_bridge_settings, get_rate_limit_settings

__all__ = [
    "get_app_settings",
    "get_auth_code_registry",
    "get_backend_token_issuer",
    "get_bridge_settings",
    "get_credential_store",
    "get_oauth_bridge_service",
    "get_provider_api_client",
    "get_provider_oauth_client",
    "get_provider_token_service",
    "get_rate_limit_settings",
    "get_state_registry",
    "get_token_cipher_service",
]
