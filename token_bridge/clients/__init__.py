"""Expose constructed client wrappers."""

from .provider_api import ProviderAPIClient
from .provider_auth import ProviderOAuthClient

__all__ = [
    "ProviderAPIClient",
    "ProviderOAuthClient",
]
