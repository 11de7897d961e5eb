"""Tests for the Redis store adapter against a mocked client."""

from __future__ import annotations

import asyncio
from unittest.mock import AsyncMock, MagicMock, patch

import pytest
from redis.exceptions import ConnectionError as RedisConnectionError
from redis.exceptions import ResponseError

from feedstore.errors import StorageError
from feedstore.settings import Settings
from feedstore.store import RedisStore


async def _aiter(values):
    for value in values:
        yield value


def _store(client: MagicMock, attempts: int = 3) -> RedisStore:
    return RedisStore(client, retry_attempts=attempts)


class TestCommands:
    def test_passthrough(self) -> None:
        client = MagicMock()
        client.get = AsyncMock(return_value="v")
        client.exists = AsyncMock(return_value=1)
        client.sismember = AsyncMock(return_value=0)
        client.smembers = AsyncMock(return_value={"a", "b"})
        store = _store(client)

        assert asyncio.run(store.get("k")) == "v"
        assert asyncio.run(store.exists("k")) is True
        assert asyncio.run(store.sismember("s", "x")) is False
        assert asyncio.run(store.smembers("s")) == {"a", "b"}
        client.get.assert_awaited_once_with("k")

    def test_keys_scans(self) -> None:
        client = MagicMock()
        client.scan_iter = MagicMock(return_value=_aiter(["feed:a", "feed:b"]))

        assert asyncio.run(_store(client).keys("feed:*")) == ["feed:a", "feed:b"]
        client.scan_iter.assert_called_once_with(match="feed:*")

    def test_command_error_wrapped(self) -> None:
        client = MagicMock()
        client.incr = AsyncMock(side_effect=ResponseError("value is not an integer"))

        with pytest.raises(StorageError, match="incr"):
            asyncio.run(_store(client).incr("k"))
        assert client.incr.await_count == 1

    def test_transient_error_retried(self) -> None:
        client = MagicMock()
        client.lrange = AsyncMock(side_effect=[RedisConnectionError("reset"), ["x"]])

        assert asyncio.run(_store(client).lrange("k", 0, -1)) == ["x"]
        assert client.lrange.await_count == 2

    def test_retries_exhausted(self) -> None:
        client = MagicMock()
        client.get = AsyncMock(side_effect=RedisConnectionError("down"))

        with pytest.raises(StorageError):
            asyncio.run(_store(client, attempts=2).get("k"))
        assert client.get.await_count == 2

    def test_aclose(self) -> None:
        client = MagicMock()
        client.aclose = AsyncMock()
        asyncio.run(_store(client).aclose())
        client.aclose.assert_awaited_once()


class TestPipeline:
    def _client(self, execute: AsyncMock) -> tuple[MagicMock, MagicMock]:
        pipe = MagicMock()
        pipe.__aenter__.return_value = pipe
        pipe.execute = execute
        client = MagicMock()
        client.pipeline = MagicMock(return_value=pipe)
        return client, pipe

    def test_queues_and_executes(self) -> None:
        client, pipe = self._client(AsyncMock(return_value=[1, -1]))

        result = asyncio.run(_store(client).pipeline().incr("k").ttl("k").execute())

        assert result == [1, -1]
        client.pipeline.assert_called_once_with(transaction=True)
        pipe.incr.assert_called_once_with("k")
        pipe.ttl.assert_called_once_with("k")

    def test_error_not_retried(self) -> None:
        execute = AsyncMock(side_effect=RedisConnectionError("down"))
        client, _ = self._client(execute)

        with pytest.raises(StorageError, match="pipeline"):
            asyncio.run(_store(client).pipeline().incr("k").execute())
        assert execute.await_count == 1


class TestFromSettings:
    def test_builds_decoding_client(self) -> None:
        settings = Settings(redis_url="redis://cache:6380/2", redis_retry_attempts=7, _env_file=None)
        with patch("feedstore.store.redis.aioredis.Redis.from_url") as from_url:
            store = RedisStore.from_settings(settings)

        from_url.assert_called_once_with("redis://cache:6380/2", decode_responses=True)
        assert store._retry_attempts == 7
