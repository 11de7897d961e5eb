"""Networked backing store on redis.asyncio."""

from __future__ import annotations

import functools
from collections.abc import Awaitable, Callable
from typing import Any, ParamSpec, Self, TypeVar

import redis.asyncio as aioredis
from redis.exceptions import ConnectionError as RedisConnectionError
from redis.exceptions import RedisError
from redis.exceptions import TimeoutError as RedisTimeoutError
from tenacity import AsyncRetrying, retry_if_exception_type, stop_after_attempt, wait_exponential

from feedstore.errors import StorageError

P = ParamSpec("P")
T = TypeVar("T")

TRANSIENT_ERRORS = (RedisConnectionError, RedisTimeoutError)


def _storage_call(fn: Callable[P, Awaitable[T]]) -> Callable[P, Awaitable[T]]:
    """Retry transient connection failures, then surface anything left as StorageError."""

    @functools.wraps(fn)
    async def wrapper(*args: P.args, **kwargs: P.kwargs) -> T:
        store: RedisStore = args[0]  # type: ignore[assignment]
        try:
            async for attempt in store._retrying():
                with attempt:
                    result = await fn(*args, **kwargs)
        except RedisError as exc:
            raise StorageError(f"{fn.__name__} failed: {exc}") from exc
        return result

    return wrapper


class RedisStore:
    """Redis-backed store. Responses are decoded to ``str``."""

    def __init__(self, client: aioredis.Redis, *, retry_attempts: int = 5) -> None:
        self._client = client
        self._retry_attempts = retry_attempts

    @classmethod
    def from_settings(cls, settings) -> RedisStore:
        client = aioredis.Redis.from_url(settings.redis_url, decode_responses=True)
        return cls(client, retry_attempts=settings.redis_retry_attempts)

    def _retrying(self) -> AsyncRetrying:
        return AsyncRetrying(
            retry=retry_if_exception_type(TRANSIENT_ERRORS),
            stop=stop_after_attempt(self._retry_attempts),
            wait=wait_exponential(multiplier=0.1, max=3),
            reraise=True,
        )

    @_storage_call
    async def get(self, key: str) -> str | None:
        return await self._client.get(key)

    @_storage_call
    async def set(self, key: str, value: str) -> None:
        await self._client.set(key, value)

    @_storage_call
    async def exists(self, key: str) -> bool:
        return await self._client.exists(key) == 1

    @_storage_call
    async def delete(self, *keys: str) -> int:
        return await self._client.delete(*keys)

    @_storage_call
    async def keys(self, pattern: str) -> list[str]:
        return [key async for key in self._client.scan_iter(match=pattern)]

    @_storage_call
    async def lpush(self, key: str, *values: str) -> int:
        return await self._client.lpush(key, *values)

    @_storage_call
    async def lrange(self, key: str, start: int, end: int) -> list[str]:
        return await self._client.lrange(key, start, end)

    @_storage_call
    async def ltrim(self, key: str, start: int, end: int) -> None:
        await self._client.ltrim(key, start, end)

    @_storage_call
    async def llen(self, key: str) -> int:
        return await self._client.llen(key)

    @_storage_call
    async def sadd(self, key: str, *members: str) -> int:
        return await self._client.sadd(key, *members)

    @_storage_call
    async def srem(self, key: str, *members: str) -> int:
        return await self._client.srem(key, *members)

    @_storage_call
    async def sismember(self, key: str, member: str) -> bool:
        return bool(await self._client.sismember(key, member))

    @_storage_call
    async def smembers(self, key: str) -> set[str]:
        return set(await self._client.smembers(key))

    @_storage_call
    async def incr(self, key: str) -> int:
        return await self._client.incr(key)

    @_storage_call
    async def expire(self, key: str, seconds: int) -> bool:
        return bool(await self._client.expire(key, seconds))

    @_storage_call
    async def ttl(self, key: str) -> int:
        return await self._client.ttl(key)

    def pipeline(self) -> RedisPipeline:
        return RedisPipeline(self._client.pipeline(transaction=True))

    async def aclose(self) -> None:
        await self._client.aclose()


class RedisPipeline:
    """MULTI/EXEC batch. Not retried: a replay could double-apply increments."""

    def __init__(self, pipe: aioredis.client.Pipeline) -> None:
        self._pipe = pipe

    def incr(self, key: str) -> Self:
        self._pipe.incr(key)
        return self

    def ttl(self, key: str) -> Self:
        self._pipe.ttl(key)
        return self

    def expire(self, key: str, seconds: int) -> Self:
        self._pipe.expire(key, seconds)
        return self

    async def execute(self) -> list[Any]:
        try:
            async with self._pipe as pipe:
                return await pipe.execute()
        except RedisError as exc:
            raise StorageError(f"pipeline failed: {exc}") from exc
