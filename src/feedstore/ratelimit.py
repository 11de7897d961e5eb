"""Hybrid fixed-window rate limiter for read traffic.

Each process keeps a local mirror of ``client -> (count, expiry)`` so repeat
requests inside a window skip the remote round trip. The shared remote counter
is authoritative across processes; the mirror may lag it.
"""

from __future__ import annotations

import asyncio
import contextlib
import heapq
import threading
import time
from collections.abc import Callable, Mapping
from dataclasses import dataclass

import structlog

from feedstore.errors import RateLimitExceededError, StorageError
from feedstore.keys import rate_limit_key
from feedstore.settings import Settings
from feedstore.store import KeyValueStore

READ_METHODS = frozenset({"GET", "HEAD"})
UNKNOWN_CLIENT = "unknown"


@dataclass(frozen=True)
class RateLimitDecision:
    client: str
    count: int
    limit: int
    reset_at: float  # epoch seconds
    fail_open: bool = False

    @property
    def admitted(self) -> bool:
        return self.count <= self.limit

    @property
    def remaining(self) -> int:
        return max(0, self.limit - self.count)

    @property
    def headers(self) -> dict[str, str]:
        return {
            "X-RateLimit-Limit": str(self.limit),
            "X-RateLimit-Remaining": str(self.remaining),
            "X-RateLimit-Reset": str(int(self.reset_at * 1000)),
        }


def client_identifier(headers: Mapping[str, str], trusted_header: str = "cf-connecting-ip") -> str:
    """Client identity from proxy headers, most trusted first."""
    lowered = {name.lower(): value for name, value in headers.items()}
    trusted = lowered.get(trusted_header.lower(), "").strip()
    if trusted:
        return trusted
    forwarded = lowered.get("x-forwarded-for", "").split(",")[0].strip()
    if forwarded:
        return forwarded
    real_ip = lowered.get("x-real-ip", "").strip()
    return real_ip or UNKNOWN_CLIENT


class LocalMirror:
    """Process-local ``key -> (count, expiry)`` map behind a single lock."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._entries: dict[str, tuple[int, float]] = {}

    def __len__(self) -> int:
        return len(self._entries)

    def increment(self, key: str, now: float) -> tuple[int, float] | None:
        """Count one more request on a live entry. None on miss or expiry."""
        with self._lock:
            entry = self._entries.get(key)
            if entry is None or entry[1] <= now:
                return None
            entry = (entry[0] + 1, entry[1])
            self._entries[key] = entry
            return entry

    def store(self, key: str, count: int, expires: float) -> None:
        with self._lock:
            self._entries[key] = (count, expires)

    def sweep(self, now: float, max_size: int) -> int:
        """Drop expired entries, then the ones nearest expiry beyond ``max_size``."""
        with self._lock:
            expired = [key for key, (_, expires) in self._entries.items() if expires <= now]
            for key in expired:
                del self._entries[key]
            overflow = len(self._entries) - max_size
            evicted = []
            if overflow > 0:
                evicted = heapq.nsmallest(overflow, self._entries, key=lambda k: self._entries[k][1])
                for key in evicted:
                    del self._entries[key]
            return len(expired) + len(evicted)


class RateLimiter:
    """Admission control for read requests."""

    def __init__(
        self,
        store: KeyValueStore,
        *,
        limit: int = 100,
        window: int = 300,
        cache_size: int = 10_000,
        sweep_interval: float = 60.0,
        trusted_header: str = "cf-connecting-ip",
        clock: Callable[[], float] = time.time,
        log: structlog.stdlib.BoundLogger | None = None,
    ) -> None:
        self._store = store
        self.limit = limit
        self.window = window
        self._cache_size = cache_size
        self._sweep_interval = sweep_interval
        self._trusted_header = trusted_header
        self._clock = clock
        self._log = log or structlog.get_logger("feedstore.ratelimit")
        self.mirror = LocalMirror()
        self._sweeper: asyncio.Task | None = None

    @classmethod
    def from_settings(cls, store: KeyValueStore, settings: Settings, **kwargs) -> RateLimiter:
        return cls(
            store,
            limit=settings.rate_limit_max,
            window=settings.rate_limit_window,
            cache_size=settings.rate_limit_cache_size,
            sweep_interval=settings.rate_limit_sweep_interval,
            trusted_header=settings.trusted_proxy_header,
            **kwargs,
        )

    async def check(self, method: str, headers: Mapping[str, str]) -> RateLimitDecision | None:
        """Admit or reject one request. Non-read methods bypass limiting and get None.

        Raises RateLimitExceededError, carrying the decision, once the client
        exceeds the limit for the current window.
        """
        if method.upper() not in READ_METHODS:
            return None
        decision = await self.hit(client_identifier(headers, self._trusted_header))
        if not decision.admitted:
            self._log.warning("ratelimit.rejected", client=decision.client, count=decision.count)
            raise RateLimitExceededError(decision)
        return decision

    async def hit(self, client: str) -> RateLimitDecision:
        """Count a request for ``client``. Remote failures admit without counting."""
        key = rate_limit_key(client)
        now = self._clock()

        cached = self.mirror.increment(key, now)
        if cached is not None:
            count, expires = cached
            return RateLimitDecision(client, count, self.limit, expires)

        try:
            count, ttl = await self._remote_hit(key)
        except Exception:
            self._log.exception("ratelimit.remote_error", client=client)
            return RateLimitDecision(client, 0, self.limit, now + self.window, fail_open=True)

        expires = now + ttl
        self.mirror.store(key, count, expires)
        return RateLimitDecision(client, count, self.limit, expires)

    async def _remote_hit(self, key: str) -> tuple[int, int]:
        results = await self._store.pipeline().incr(key).ttl(key).execute()
        if not results or len(results) < 2:
            raise StorageError("rate limit pipeline returned incomplete results")
        count, ttl = int(results[0]), int(results[1])
        # New counter, or one that lost its expiry: start a fresh window
        if count == 1 or ttl < 0:
            await self._store.expire(key, self.window)
            ttl = self.window
        return count, ttl

    def sweep(self, now: float | None = None) -> int:
        removed = self.mirror.sweep(self._clock() if now is None else now, self._cache_size)
        if removed:
            self._log.debug("ratelimit.swept", removed=removed, size=len(self.mirror))
        return removed

    def start(self) -> None:
        """Run the mirror sweep on the running loop every ``sweep_interval`` seconds."""
        if self._sweeper is None or self._sweeper.done():
            self._sweeper = asyncio.get_running_loop().create_task(self._sweep_forever())

    async def stop(self) -> None:
        if self._sweeper is None:
            return
        self._sweeper.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await self._sweeper
        self._sweeper = None

    async def _sweep_forever(self) -> None:
        while True:
            await asyncio.sleep(self._sweep_interval)
            try:
                self.sweep()
            except Exception:
                self._log.exception("ratelimit.sweep_error")
