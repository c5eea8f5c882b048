"""In-memory, process-local TTL registry for single-use handshake values."""

from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass
from typing import Callable, Dict, Generic, Optional, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")

MIN_SWEEP_INTERVAL_SECONDS = 60.0


@dataclass(slots=True)
class _Slot(Generic[T]):
    value: T
    expires_at: float


class EphemeralRegistry(Generic[T]):
    """Single-use TTL map.

    ``consume`` removes the entry before checking its expiry, so an entry can
    be handed out at most once. Entries are only visible to the process that
    created them.
    """

    def __init__(
        self,
        *,
        name: str,
        ttl_seconds: float,
        sweep_interval_seconds: float | None = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._name = name
        self._ttl = ttl_seconds
        self._sweep_interval = sweep_interval_seconds or max(
            ttl_seconds / 2, MIN_SWEEP_INTERVAL_SECONDS
        )
        self._clock = clock
        self._entries: Dict[str, _Slot[T]] = {}
        self._sweeper: Optional[asyncio.Task[None]] = None

    @property
    def ttl_seconds(self) -> float:
        return self._ttl

    def __len__(self) -> int:
        return len(self._entries)

    def save(self, key: str, value: T) -> None:
        self._entries[key] = _Slot(value=value, expires_at=self._clock() + self._ttl)

    def consume(self, key: str) -> Optional[T]:
        slot = self._entries.pop(key, None)
        if slot is None:
            return None
        if slot.expires_at <= self._clock():
            return None
        return slot.value

    def prune_expired(self) -> int:
        now = self._clock()
        expired = [key for key, slot in self._entries.items() if slot.expires_at <= now]
        for key in expired:
            del self._entries[key]
        if expired:
            logger.debug("Pruned %d expired %s entries", len(expired), self._name)
        return len(expired)

    def start(self) -> None:
        """Begin the periodic sweep on the running event loop."""
        if self._sweeper is not None and not self._sweeper.done():
            return
        self._sweeper = asyncio.get_running_loop().create_task(
            self._sweep_forever(), name=f"{self._name}-sweeper"
        )

    async def stop(self) -> None:
        task, self._sweeper = self._sweeper, None
        if task is None:
            return
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass

    async def _sweep_forever(self) -> None:
        while True:
            await asyncio.sleep(self._sweep_interval)
            self.prune_expired()


__all__ = ["EphemeralRegistry"]
