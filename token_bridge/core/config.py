"""
Application configuration models and helpers.

Centralizes settings management so the FastAPI app, the credential store and
the operational scripts share one validated configuration surface. Invalid
key material or weak secrets fail here, at startup, rather than on first use.
"""

from functools import lru_cache
from pathlib import Path
from typing import Annotated, Optional
from urllib.parse import urlparse

import os

from pydantic import AnyHttpUrl, Field, field_validator, model_validator
from pydantic_settings import BaseSettings, NoDecode, SettingsConfigDict

from token_bridge.core.errors import ConfigurationError


def _load_env_file(path: str = ".env") -> None:
    """Best-effort load key=value pairs from a .env file without extra deps."""
    env_path = Path(path)
    if not env_path.exists():
        return
    for raw_line in env_path.read_text().splitlines():
        line = raw_line.strip()
        if not line or line.startswith("#"):
            continue
        key, sep, value = line.partition("=")
        if not sep:
            continue
        key = key.strip()
        if not key or key in os.environ:
            continue
        cleaned = value.strip().strip('"').strip("'")
        os.environ[key] = cleaned


_load_env_file()


MIN_JWT_SECRET_LENGTH = 32

_PLACEHOLDER_SECRETS = frozenset(
    {
        "changeme",
        "change-me",
        "replace-me",
        "replaceme",
        "secret",
        "your-secret",
        "your-secret-here",
        "your_jwt_secret",
        "jwt-secret",
        "default",
        "password",
        "test",
    }
)


def _split_csv(value: str | tuple[str, ...] | list[str] | None) -> tuple[str, ...]:
    if value is None:
        return ()
    if isinstance(value, tuple):
        return value
    if isinstance(value, list):
        return tuple(value)
    return tuple(item.strip() for item in value.split(",") if item.strip())


def _is_within(path: Path, root: Path) -> bool:
    try:
        path.resolve().relative_to(root.resolve())
    except ValueError:
        return False
    return True


class SecuritySettings(BaseSettings):
    """Key material for token encryption and backend session signing."""

    encryption_key: str = Field(
        ...,
        validation_alias="ENCRYPTION_KEY",
        description="32-byte AES key, hex (64 chars) or base64 encoded.",
    )
    backend_jwt_secret: str = Field(
        ...,
        validation_alias="BACKEND_JWT_SECRET",
        description="HMAC secret used to sign backend-issued session tokens.",
    )

    @field_validator("encryption_key")
    @classmethod
    def _check_encryption_key(cls, value: str) -> str:
        from token_bridge.services.token_cipher import parse_encryption_key

        try:
            parse_encryption_key(value)
        except ConfigurationError as exc:
            raise ValueError(str(exc)) from exc
        return value

    @field_validator("backend_jwt_secret")
    @classmethod
    def _check_jwt_secret(cls, value: str) -> str:
        candidate = value.strip()
        if candidate.lower() in _PLACEHOLDER_SECRETS:
            raise ValueError("BACKEND_JWT_SECRET is a placeholder value.")
        if len(candidate) < MIN_JWT_SECRET_LENGTH:
            raise ValueError(
                f"BACKEND_JWT_SECRET must be at least {MIN_JWT_SECRET_LENGTH} characters."
            )
        return candidate


class StorageSettings(BaseSettings):
    """Where encrypted credentials live on disk."""

    token_store_path: Path = Field(Path("data/tokens.json"), validation_alias="TOKEN_STORE_PATH")
    token_store_lock_path: Optional[Path] = Field(
        None,
        validation_alias="TOKEN_STORE_LOCK_PATH",
        description="Defaults to the store path with a .lock suffix.",
    )
    public_dir: Optional[Path] = Field(
        None,
        validation_alias="PUBLIC_DIR",
        description="Optional directory served as static files.",
    )
    prune_after_days: int = Field(30, validation_alias="TOKEN_PRUNE_DAYS", ge=1)
    lock_timeout_seconds: float = Field(
        10.0, validation_alias="TOKEN_STORE_LOCK_TIMEOUT", gt=0
    )

    @property
    def lock_path(self) -> Path:
        if self.token_store_lock_path is not None:
            return self.token_store_lock_path
        return self.token_store_path.with_name(self.token_store_path.name + ".lock")

    @model_validator(mode="after")
    def _check_outside_public_dir(self) -> "StorageSettings":
        if self.public_dir is None:
            return self
        for label, path in (("TOKEN_STORE_PATH", self.token_store_path), ("TOKEN_STORE_LOCK_PATH", self.lock_path)):
            if _is_within(path, self.public_dir):
                raise ValueError(f"{label} must not live inside PUBLIC_DIR.")
        return self


class ProviderSettings(BaseSettings):
    """OAuth client registration with the upstream provider."""

    client_id: str = Field(..., validation_alias="PROVIDER_CLIENT_ID")
    client_secret: str = Field(..., validation_alias="PROVIDER_CLIENT_SECRET")
    authorize_url: AnyHttpUrl = Field(
        "https://www.tiktok.com/v2/auth/authorize/",
        validation_alias="PROVIDER_AUTHORIZE_URL",
    )
    token_url: AnyHttpUrl = Field(
        "https://open.tiktokapis.com/v2/oauth/token/",
        validation_alias="PROVIDER_TOKEN_URL",
    )
    api_base_url: AnyHttpUrl = Field(
        "https://open.tiktokapis.com/v2/",
        validation_alias="PROVIDER_API_BASE_URL",
    )
    scopes: Annotated[tuple[str, ...], NoDecode] = Field(
        ("user.info.basic", "user.info.profile", "user.info.stats", "video.list"),
        validation_alias="PROVIDER_SCOPES",
    )
    subject_field: str = Field(
        "open_id",
        validation_alias="PROVIDER_SUBJECT_FIELD",
        description="Token response field that identifies the provider account.",
    )
    http_timeout_seconds: float = Field(5.0, validation_alias="PROVIDER_HTTP_TIMEOUT", gt=0)

    @field_validator("scopes", mode="before")
    @classmethod
    def _split_scopes(
        cls, value: str | tuple[str, ...] | list[str]
    ) -> tuple[str, ...]:
        """Support providing scopes as a comma-separated string."""
        return _split_csv(value)


class BridgeSettings(BaseSettings):
    """The backend's own OAuth server surface for the downstream client."""

    client_id: str = Field(..., validation_alias="BRIDGE_CLIENT_ID")
    client_secret: Optional[str] = Field(None, validation_alias="BRIDGE_CLIENT_SECRET")
    allowed_redirect_hosts: Annotated[tuple[str, ...], NoDecode] = Field(
        ("script.google.com",),
        validation_alias="BRIDGE_ALLOWED_REDIRECT_HOSTS",
    )
    access_token_ttl_seconds: int = Field(3600, validation_alias="BRIDGE_ACCESS_TOKEN_TTL", gt=0)
    refresh_token_ttl_seconds: int = Field(
        30 * 24 * 3600, validation_alias="BRIDGE_REFRESH_TOKEN_TTL", gt=0
    )
    auth_code_ttl_seconds: int = Field(600, validation_alias="BRIDGE_AUTH_CODE_TTL", gt=0)
    state_ttl_seconds: int = Field(600, validation_alias="OAUTH_STATE_TTL", gt=0)
    rotate_refresh_tokens: bool = Field(False, validation_alias="BRIDGE_ROTATE_REFRESH_TOKENS")

    @field_validator("allowed_redirect_hosts", mode="before")
    @classmethod
    def _split_hosts(cls, value: str | tuple[str, ...] | list[str]) -> tuple[str, ...]:
        return tuple(host.lower() for host in _split_csv(value))


class RateLimitSettings(BaseSettings):
    """Fixed-window request ceilings. A ceiling of 0 disables the limit."""

    window_seconds: int = Field(60, validation_alias="RATE_LIMIT_WINDOW_SECONDS", gt=0)
    auth_max_requests: int = Field(0, validation_alias="RATE_LIMIT_AUTH_MAX", ge=0)
    api_max_requests: int = Field(0, validation_alias="RATE_LIMIT_API_MAX", ge=0)


class AppSettings(BaseSettings):
    """Root settings object for the FastAPI application."""

    environment: str = Field("development", validation_alias="APP_ENV")
    log_level: str = Field("INFO", validation_alias="APP_LOG_LEVEL")
    base_url: AnyHttpUrl = Field(
        ...,
        validation_alias="BASE_URL",
        description="Public URL of this service, used to build the provider redirect URI.",
    )
    cors_allowed_origins: Annotated[tuple[str, ...], NoDecode] = Field(
        (),
        validation_alias="CORS_ALLOWED_ORIGINS",
    )
    security: SecuritySettings = Field(default_factory=SecuritySettings)
    storage: StorageSettings = Field(default_factory=StorageSettings)
    provider: ProviderSettings = Field(default_factory=ProviderSettings)
    bridge: BridgeSettings = Field(default_factory=BridgeSettings)
    rate_limit: RateLimitSettings = Field(default_factory=RateLimitSettings)

    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", extra="ignore")

    @field_validator("cors_allowed_origins", mode="before")
    @classmethod
    def _split_origins(cls, value: str | tuple[str, ...] | list[str]) -> tuple[str, ...]:
        return _split_csv(value)

    @property
    def provider_redirect_uri(self) -> str:
        return f"{str(self.base_url).rstrip('/')}/auth/provider/callback"

    @property
    def base_host(self) -> str:
        return (urlparse(str(self.base_url)).hostname or "").lower()


@lru_cache()
def get_settings() -> AppSettings:
    """Return a cached settings object.

    Raises ``ConfigurationError`` when required values are missing or invalid.
    """
    from pydantic import ValidationError

    try:
        return AppSettings()  # type: ignore[call-arg]
    except ValidationError as exc:
        raise ConfigurationError(f"Invalid configuration: {exc}") from exc


__all__ = [
    "AppSettings",
    "BridgeSettings",
    "ProviderSettings",
    "RateLimitSettings",
    "SecuritySettings",
    "StorageSettings",
    "get_settings",
]
