"""In-memory backing store with the same observable semantics as Redis."""

from __future__ import annotations

import math
import time
from collections.abc import Callable
from fnmatch import fnmatchcase
from typing import Any, Self

from feedstore.errors import StorageError


class MemoryStore:
    """Dict-backed store for tests and single-process use.

    Values are ``str``, ``list[str]`` (head at index 0) or ``set[str]``. Expired
    keys are purged lazily on access, as Redis does.
    """

    def __init__(self, clock: Callable[[], float] = time.time) -> None:
        self._clock = clock
        self._data: dict[str, str | list[str] | set[str]] = {}
        self._expiry: dict[str, float] = {}

    @classmethod
    def from_settings(cls, settings) -> MemoryStore:
        return cls()

    # -- internals --

    def _alive(self, key: str) -> bool:
        expires = self._expiry.get(key)
        if expires is not None and expires <= self._clock():
            self._data.pop(key, None)
            self._expiry.pop(key, None)
        return key in self._data

    def _typed(self, key: str, kind: type) -> Any:
        if not self._alive(key):
            return None
        value = self._data[key]
        if not isinstance(value, kind):
            raise StorageError(f"WRONGTYPE operation against key '{key}' holding the wrong kind of value")
        return value

    @staticmethod
    def _bounds(length: int, start: int, end: int) -> tuple[int, int]:
        if start < 0:
            start = max(length + start, 0)
        if end < 0:
            end = length + end
        return start, min(end, length - 1)

    # -- strings --

    async def get(self, key: str) -> str | None:
        return self._typed(key, str)

    async def set(self, key: str, value: str) -> None:
        self._data[key] = value
        self._expiry.pop(key, None)

    async def exists(self, key: str) -> bool:
        return self._alive(key)

    async def delete(self, *keys: str) -> int:
        removed = 0
        for key in keys:
            if self._alive(key):
                del self._data[key]
                self._expiry.pop(key, None)
                removed += 1
        return removed

    async def keys(self, pattern: str) -> list[str]:
        return [key for key in list(self._data) if self._alive(key) and fnmatchcase(key, pattern)]

    def _incr(self, key: str) -> int:
        raw = self._typed(key, str)
        try:
            value = int(raw) + 1 if raw is not None else 1
        except ValueError:
            raise StorageError(f"value at '{key}' is not an integer") from None
        self._data[key] = str(value)
        return value

    async def incr(self, key: str) -> int:
        return self._incr(key)

    # -- lists --

    async def lpush(self, key: str, *values: str) -> int:
        items = self._typed(key, list)
        if items is None:
            items = self._data[key] = []
        for value in values:
            items.insert(0, value)
        return len(items)

    async def lrange(self, key: str, start: int, end: int) -> list[str]:
        items = self._typed(key, list)
        if not items:
            return []
        start, end = self._bounds(len(items), start, end)
        if start > end:
            return []
        return list(items[start:end + 1])

    async def ltrim(self, key: str, start: int, end: int) -> None:
        items = self._typed(key, list)
        if items is None:
            return
        start, end = self._bounds(len(items), start, end)
        kept = items[start:end + 1] if start <= end else []
        if kept:
            self._data[key] = kept
        else:
            await self.delete(key)

    async def llen(self, key: str) -> int:
        items = self._typed(key, list)
        return len(items) if items else 0

    # -- sets --

    async def sadd(self, key: str, *members: str) -> int:
        current = self._typed(key, set)
        if current is None:
            current = self._data[key] = set()
        added = len(set(members) - current)
        current.update(members)
        return added

    async def srem(self, key: str, *members: str) -> int:
        current = self._typed(key, set)
        if not current:
            return 0
        removed = len(current & set(members))
        current.difference_update(members)
        if not current:
            await self.delete(key)
        return removed

    async def sismember(self, key: str, member: str) -> bool:
        current = self._typed(key, set)
        return bool(current) and member in current

    async def smembers(self, key: str) -> set[str]:
        current = self._typed(key, set)
        return set(current) if current else set()

    # -- expiry --

    def _expire(self, key: str, seconds: int) -> bool:
        if not self._alive(key):
            return False
        self._expiry[key] = self._clock() + seconds
        return True

    async def expire(self, key: str, seconds: int) -> bool:
        return self._expire(key, seconds)

    def _ttl(self, key: str) -> int:
        if not self._alive(key):
            return -2
        expires = self._expiry.get(key)
        if expires is None:
            return -1
        return math.ceil(expires - self._clock())

    async def ttl(self, key: str) -> int:
        return self._ttl(key)

    def pipeline(self) -> MemoryPipeline:
        return MemoryPipeline(self)

    async def aclose(self) -> None:
        pass


class MemoryPipeline:
    """Queues commands and runs them back to back without yielding to the loop."""

    def __init__(self, store: MemoryStore) -> None:
        self._store = store
        self._commands: list[tuple[Callable[..., Any], tuple]] = []

    def incr(self, key: str) -> Self:
        self._commands.append((self._store._incr, (key,)))
        return self

    def ttl(self, key: str) -> Self:
        self._commands.append((self._store._ttl, (key,)))
        return self

    def expire(self, key: str, seconds: int) -> Self:
        self._commands.append((self._store._expire, (key, seconds)))
        return self

    async def execute(self) -> list[Any]:
        commands, self._commands = self._commands, []
        return [fn(*args) for fn, args in commands]
