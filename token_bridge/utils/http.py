"""HTTP utilities providing retry/backoff semantics."""

from __future__ import annotations

import asyncio
from typing import Awaitable, Callable, TypeVar

import httpx

T = TypeVar("T")

RETRYABLE_STATUS_CODES = frozenset({429, 500, 502, 503, 504})


class RetryConfig:
    def __init__(
        self,
        *,
        attempts: int = 3,
        backoff_seconds: float = 1.0,
        retry_statuses: frozenset[int] = RETRYABLE_STATUS_CODES,
    ) -> None:
        self.attempts = attempts
        self.backoff_seconds = backoff_seconds
        self.retry_statuses = retry_statuses


async def request_with_retry(
    func: Callable[..., Awaitable[httpx.Response]],
    *args,
    retry_config: RetryConfig | None = None,
    **kwargs,
) -> httpx.Response:
    """Call ``func`` until it returns a non-retryable response.

    Transport errors and retryable status codes are retried with linear
    backoff. Any other response, including 4xx, is returned as-is. The last
    retryable response is returned when attempts run out.
    """
    config = retry_config or RetryConfig()
    attempt = 0
    last_exception: Exception | None = None
    last_response: httpx.Response | None = None

    while attempt < config.attempts:
        try:
            response = await func(*args, **kwargs)
        except httpx.TransportError as exc:
            last_exception = exc
            last_response = None
        else:
            if response.status_code not in config.retry_statuses:
                return response
            last_response = response
            last_exception = None
        attempt += 1
        if attempt >= config.attempts:
            break
        await asyncio.sleep(config.backoff_seconds * attempt)

    if last_response is not None:
        return last_response
    if last_exception is not None:
        raise last_exception
    raise RuntimeError("Request failed without raising an exception")


__all__ = ["RetryConfig", "request_with_retry"]
