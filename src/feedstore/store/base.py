"""Backing store interface.

Any key-value engine with string, list and set primitives, atomic increments,
key expiry and pipelined execution can back the feed store. Methods follow the
Redis command semantics they are named after.
"""

from __future__ import annotations

from typing import Any, Protocol, Self


class Pipeline(Protocol):
    """Commands queued and executed as one batch, results in queue order."""

    def incr(self, key: str) -> Self: ...

    def ttl(self, key: str) -> Self: ...

    def expire(self, key: str, seconds: int) -> Self: ...

    async def execute(self) -> list[Any]: ...


class KeyValueStore(Protocol):
    async def get(self, key: str) -> str | None: ...

    async def set(self, key: str, value: str) -> None: ...

    async def exists(self, key: str) -> bool: ...

    async def delete(self, *keys: str) -> int: ...

    async def keys(self, pattern: str) -> list[str]: ...

    async def lpush(self, key: str, *values: str) -> int: ...

    async def lrange(self, key: str, start: int, end: int) -> list[str]: ...

    async def ltrim(self, key: str, start: int, end: int) -> None: ...

    async def llen(self, key: str) -> int: ...

    async def sadd(self, key: str, *members: str) -> int: ...

    async def srem(self, key: str, *members: str) -> int: ...

    async def sismember(self, key: str, member: str) -> bool: ...

    async def smembers(self, key: str) -> set[str]: ...

    async def incr(self, key: str) -> int: ...

    async def expire(self, key: str, seconds: int) -> bool: ...

    async def ttl(self, key: str) -> int:
        """Seconds to live; -1 when the key has no expiry, -2 when it is absent."""
        ...

    def pipeline(self) -> Pipeline: ...

    async def aclose(self) -> None: ...
