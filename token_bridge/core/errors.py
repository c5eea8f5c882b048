"""
Error taxonomy for the token bridge.

Every error that can reach a client derives from ``BridgeError`` and carries a
stable ``code``. Handlers in ``token_bridge.api.errors`` turn these into
responses; nothing here knows about HTTP beyond the status code.
"""

from __future__ import annotations

import enum
from http import HTTPStatus


class BridgeError(Exception):
    """Base class for errors with a stable, client-visible code."""

    status_code: int = HTTPStatus.INTERNAL_SERVER_ERROR
    default_code: str = "server_error"

    def __init__(self, code: str | None = None, message: str = "") -> None:
        self.code = code or self.default_code
        self.message = message or self.code
        super().__init__(self.message)


class ConfigurationError(BridgeError):
    """Missing or malformed configuration. Fatal at startup."""

    default_code = "configuration_error"


class HandshakeError(BridgeError):
    """The provider-side authorization handshake cannot continue."""

    status_code = HTTPStatus.BAD_REQUEST
    default_code = "invalid_state"


class GrantError(BridgeError):
    """A downstream client's grant or authorize request was rejected."""

    status_code = HTTPStatus.BAD_REQUEST
    default_code = "invalid_grant"

    def __init__(
        self,
        code: str | None = None,
        message: str = "",
        *,
        status_code: int | None = None,
    ) -> None:
        super().__init__(code, message)
        if status_code is not None:
            self.status_code = status_code


class CredentialError(BridgeError):
    """No usable provider credential; the caller has to re-authenticate."""

    status_code = HTTPStatus.UNAUTHORIZED
    default_code = "invalid_subject"


class StorageError(BridgeError):
    """The credential store is unavailable."""

    status_code = HTTPStatus.SERVICE_UNAVAILABLE
    default_code = "storage_unavailable"


class LockTimeoutError(StorageError):
    """The store lock could not be acquired within the configured timeout."""


class RequestValidationFailed(BridgeError):
    """Malformed request parameters."""

    status_code = HTTPStatus.BAD_REQUEST
    default_code = "invalid_request"


class ProviderErrorKind(str, enum.Enum):
    REJECTED = "rejected"
    UNAVAILABLE = "unavailable"
    MALFORMED = "malformed"


class ProviderError(Exception):
    """Failure talking to the upstream provider.

    ``kind`` is the only thing callers branch on; ``provider_code`` is kept for
    logging and never returned to clients.
    """

    def __init__(
        self,
        kind: ProviderErrorKind,
        message: str = "",
        *,
        status_code: int | None = None,
        provider_code: str | None = None,
    ) -> None:
        super().__init__(message or kind.value)
        self.kind = kind
        self.status_code = status_code
        self.provider_code = provider_code


class ProviderUnavailableError(BridgeError):
    """The provider API could not be reached or returned garbage."""

    status_code = HTTPStatus.BAD_GATEWAY
    default_code = "provider_unavailable"


__all__ = [
    "BridgeError",
    "ConfigurationError",
    "CredentialError",
    "GrantError",
    "HandshakeError",
    "LockTimeoutError",
    "ProviderError",
    "ProviderErrorKind",
    "ProviderUnavailableError",
    "RequestValidationFailed",
    "StorageError",
]
