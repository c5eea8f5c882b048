"""
In-process fixed-window rate limiting for the auth and resource surfaces.

Usage (FastAPI dependency injection)::

    @router.get("/oauth/authorize", dependencies=[Depends(rate_limit_dependency("auth"))])
    async def authorize(...):
        ...

Counters live in process memory, so each backend instance enforces its own
ceiling. Requests over the ceiling get 429 with a ``Retry-After`` header.
"""

from __future__ import annotations

import logging
import math
import time
from dataclasses import dataclass
from typing import Callable, Dict, Tuple

from fastapi import Depends, HTTPException, Request, status

from token_bridge.core.config import RateLimitSettings
from token_bridge.dependencies.config import get_rate_limit_settings

logger = logging.getLogger(__name__)


@dataclass
class RateLimitResult:
    """Outcome of a single rate limit check."""

    allowed: bool
    remaining: int
    limit: int
    retry_after: int


class FixedWindowRateLimiter:
    """Counts requests per key within consecutive windows of ``window_seconds``."""

    def __init__(self, clock: Callable[[], float] = time.monotonic) -> None:
        self._clock = clock
        self._windows: Dict[str, Tuple[float, int]] = {}

    def hit(self, key: str, *, limit: int, window_seconds: int) -> RateLimitResult:
        now = self._clock()
        started, count = self._windows.get(key, (now, 0))
        if now - started >= window_seconds:
            started, count = now, 0
        count += 1
        self._windows[key] = (started, count)
        self._evict(now, window_seconds)

        retry_after = max(1, math.ceil(started + window_seconds - now))
        return RateLimitResult(
            allowed=count <= limit,
            remaining=max(0, limit - count),
            limit=limit,
            retry_after=retry_after,
        )

    def _evict(self, now: float, window_seconds: int) -> None:
        if len(self._windows) < 1024:
            return
        expired = [key for key, (started, _) in self._windows.items() if now - started >= window_seconds]
        for key in expired:
            del self._windows[key]


_limiter = FixedWindowRateLimiter()


def get_rate_limiter() -> FixedWindowRateLimiter:
    return _limiter


def rate_limit_dependency(surface: str) -> Callable:
    """Build a dependency enforcing the configured ceiling for ``surface`` ("auth" or "api")."""

    async def _check(
        request: Request,
        limits: RateLimitSettings = Depends(get_rate_limit_settings),
        limiter: FixedWindowRateLimiter = Depends(get_rate_limiter),
    ) -> None:
        limit = limits.auth_max_requests if surface == "auth" else limits.api_max_requests
        if limit <= 0:
            return

        client_host = request.client.host if request.client else "unknown"
        result = limiter.hit(
            f"{surface}:{client_host}", limit=limit, window_seconds=limits.window_seconds
        )
        if not result.allowed:
            logger.warning("Rate limit exceeded on %s surface for %s", surface, client_host)
            raise HTTPException(
                status_code=status.HTTP_429_TOO_MANY_REQUESTS,
                detail="rate_limited",
                headers={"Retry-After": str(result.retry_after)},
            )

    return _check


__all__ = [
    "FixedWindowRateLimiter",
    "RateLimitResult",
    "get_rate_limiter",
    "rate_limit_dependency",
]
