"""Shared fixtures: a controllable clock and components over an in-memory store."""

from __future__ import annotations

import pytest

from feedstore.ledger import ItemLedger
from feedstore.ratelimit import RateLimiter
from feedstore.registry import FeedRegistry
from feedstore.service import FeedService
from feedstore.store import MemoryStore


class FakeClock:
    """Callable clock for the store TTLs and the rate-limit mirror."""

    def __init__(self, start: float = 1_700_000_000.0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def store(clock: FakeClock) -> MemoryStore:
    return MemoryStore(clock=clock)


@pytest.fixture
def registry(store: MemoryStore) -> FeedRegistry:
    return FeedRegistry(store)


@pytest.fixture
def ledger(store: MemoryStore, registry: FeedRegistry) -> ItemLedger:
    return ItemLedger(store, registry)


@pytest.fixture
def limiter(store: MemoryStore, clock: FakeClock) -> RateLimiter:
    return RateLimiter(store, clock=clock)


@pytest.fixture
def service(registry: FeedRegistry, ledger: ItemLedger, limiter: RateLimiter) -> FeedService:
    return FeedService(registry, ledger, limiter)
