"""
Thin passthrough client for the provider's resource API.

Responses are relayed to the caller untouched (status code and JSON body);
only transport failures and non-JSON bodies become ``ProviderError``.
"""

from __future__ import annotations

import logging
from typing import Any, Optional, Sequence, Tuple

import httpx

from token_bridge.core.config import ProviderSettings
from token_bridge.core.errors import ProviderError, ProviderErrorKind
from token_bridge.utils.http import RetryConfig, request_with_retry

logger = logging.getLogger(__name__)

DEFAULT_USER_FIELDS: Tuple[str, ...] = (
    "open_id",
    "union_id",
    "username",
    "display_name",
    "bio_description",
    "profile_deep_link",
    "avatar_url",
    "avatar_url_100",
    "avatar_large_url",
    "is_verified",
    "follower_count",
    "following_count",
    "likes_count",
    "video_count",
)

DEFAULT_ITEM_FIELDS: Tuple[str, ...] = (
    "id",
    "create_time",
    "cover_image_url",
    "share_url",
    "video_description",
    "duration",
    "height",
    "width",
    "title",
    "like_count",
    "comment_count",
    "share_count",
    "view_count",
    "embed_html",
    "embed_link",
)

MAX_ITEMS_PER_PAGE = 20


class ProviderAPIClient:
    """Call provider resource endpoints with a bearer token."""

    def __init__(
        self,
        provider_settings: ProviderSettings,
        retry_config: RetryConfig | None = None,
    ) -> None:
        self._provider = provider_settings
        self._retry = retry_config or RetryConfig(attempts=2, backoff_seconds=0.5)

    def _url(self, path: str) -> str:
        return f"{str(self._provider.api_base_url).rstrip('/')}/{path.lstrip('/')}"

    async def get_user(
        self, access_token: str, fields: Optional[Sequence[str]] = None
    ) -> Tuple[int, Any]:
        """Fetch the profile of the account that owns ``access_token``."""
        params = {"fields": ",".join(fields or DEFAULT_USER_FIELDS)}
        return await self._send("GET", "user/info/", access_token, params=params)

    async def list_items(
        self,
        access_token: str,
        fields: Optional[Sequence[str]] = None,
        max_count: int = MAX_ITEMS_PER_PAGE,
        cursor: Optional[int] = None,
    ) -> Tuple[int, Any]:
        """Fetch one page of the account's items (videos)."""
        params = {"fields": ",".join(fields or DEFAULT_ITEM_FIELDS)}
        body: dict[str, Any] = {"max_count": min(max_count, MAX_ITEMS_PER_PAGE)}
        if cursor is not None:
            body["cursor"] = cursor
        return await self._send("POST", "video/list/", access_token, params=params, json=body)

    async def _send(
        self, method: str, path: str, access_token: str, **kwargs: Any
    ) -> Tuple[int, Any]:
        headers = {"Authorization": f"Bearer {access_token}"}
        try:
            async with httpx.AsyncClient(timeout=self._provider.http_timeout_seconds) as client:
                response = await request_with_retry(
                    client.request,
                    method,
                    self._url(path),
                    headers=headers,
                    retry_config=self._retry,
                    **kwargs,
                )
        except httpx.HTTPError as exc:
            logger.warning("Provider %s %s failed: %s", method, path, type(exc).__name__)
            raise ProviderError(ProviderErrorKind.UNAVAILABLE, "Provider API unreachable.") from exc

        try:
            payload = response.json()
        except ValueError as exc:
            raise ProviderError(
                ProviderErrorKind.MALFORMED,
                "Provider API returned a non-JSON body.",
                status_code=response.status_code,
            ) from exc
        return response.status_code, payload


__all__ = [
    "DEFAULT_ITEM_FIELDS",
    "DEFAULT_USER_FIELDS",
    "MAX_ITEMS_PER_PAGE",
    "ProviderAPIClient",
]
