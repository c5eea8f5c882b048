"""Service layer exports."""

from .backend_tokens import BackendTokenIssuer, InvalidBackendToken
from .credential_store import CredentialStore
from .ephemeral import EphemeralRegistry
from .oauth_bridge import CallbackResult, OAuthBridgeService
from .provider_tokens import ProviderTokenService
from .token_cipher import TokenCipherService

__all__ = [
    "BackendTokenIssuer",
    "CallbackResult",
    "CredentialStore",
    "EphemeralRegistry",
    "InvalidBackendToken",
    "OAuthBridgeService",
    "ProviderTokenService",
    "TokenCipherService",
]
