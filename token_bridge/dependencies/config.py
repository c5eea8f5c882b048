"""
FastAPI dependencies exposing configuration, whole or by section.

Section dependencies resolve through ``get_app_settings`` so overriding that
one dependency in tests reconfigures every consumer.
"""

from fastapi import Depends

from token_bridge.core.config import (
    AppSettings,
    BridgeSettings,
    RateLimitSettings,
    get_settings,
)


def get_app_settings() -> AppSettings:
    """FastAPI dependency returning application settings."""
    return get_settings()


def get_bridge_settings(settings: AppSettings = Depends(get_app_settings)) -> BridgeSettings:
    return settings.bridge


def get_rate_limit_settings(
    settings: AppSettings = Depends(get_app_settings),
) -> RateLimitSettings:
    return settings.rate_limit


__all__ = ["get_app_settings", "get_bridge_settings", "get_rate_limit_settings"]
