from __future__ import annotations

try:
    from . import _bootstrap  # noqa: F401
except Exception:  # pragma: no cover
    import _bootstrap  # type: ignore # noqa: F401

import asyncio

import pytest

from token_bridge.services.ephemeral import EphemeralRegistry


class FakeClock:
    def __init__(self) -> None:
        self.now = 1000.0

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


def test_consume_is_single_use() -> None:
    registry: EphemeralRegistry[str] = EphemeralRegistry(name="test", ttl_seconds=600)
    registry.save("state-1", "payload")

    assert registry.consume("state-1") == "payload"
    assert registry.consume("state-1") is None


def test_unknown_key_returns_none() -> None:
    registry: EphemeralRegistry[str] = EphemeralRegistry(name="test", ttl_seconds=600)

    assert registry.consume("missing") is None


def test_expired_entry_is_rejected_and_removed() -> None:
    clock = FakeClock()
    registry: EphemeralRegistry[str] = EphemeralRegistry(name="test", ttl_seconds=600, clock=clock)
    registry.save("code", "subject")

    clock.advance(600)

    assert registry.consume("code") is None
    assert len(registry) == 0


def test_entry_is_valid_just_before_expiry() -> None:
    clock = FakeClock()
    registry: EphemeralRegistry[str] = EphemeralRegistry(name="test", ttl_seconds=600, clock=clock)
    registry.save("code", "subject")

    clock.advance(599.9)

    assert registry.consume("code") == "subject"


def test_prune_expired_only_drops_stale_entries() -> None:
    clock = FakeClock()
    registry: EphemeralRegistry[str] = EphemeralRegistry(name="test", ttl_seconds=60, clock=clock)
    registry.save("old", "a")
    clock.advance(30)
    registry.save("new", "b")
    clock.advance(45)

    assert registry.prune_expired() == 1
    assert len(registry) == 1
    assert registry.consume("new") == "b"


@pytest.mark.asyncio
async def test_background_sweep_prunes_entries() -> None:
    clock = FakeClock()
    registry: EphemeralRegistry[str] = EphemeralRegistry(
        name="test", ttl_seconds=10, sweep_interval_seconds=0.01, clock=clock
    )
    registry.save("state", "value")
    clock.advance(20)

    registry.start()
    try:
        for _ in range(50):
            if len(registry) == 0:
                break
            await asyncio.sleep(0.01)
    finally:
        await registry.stop()

    assert len(registry) == 0
