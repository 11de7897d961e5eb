"""Feed Registry: per-feed configuration records."""

from __future__ import annotations

import json
from typing import Any

import structlog
from pydantic.alias_generators import to_camel

from feedstore.errors import ConfigurationError, NotFoundError, StorageError
from feedstore.keys import FEED_PREFIX, config_key, feed_id_from_config_key, is_valid_feed_id
from feedstore.models import DEFAULT_MAX_ITEMS, FeedConfig, default_copyright, now_utc
from feedstore.store import KeyValueStore

REQUIRED_FIELDS = ("title", "description", "siteUrl")


class FeedRegistry:
    """Creates, reads and updates feed configuration.

    A feed exists iff its configuration record is stored. Records are written
    straight through to the store; nothing is cached here.
    """

    def __init__(self, store: KeyValueStore, log: structlog.stdlib.BoundLogger | None = None) -> None:
        self._store = store
        self._log = log or structlog.get_logger("feedstore.registry")

    async def exists(self, feed_id: str) -> bool:
        if not is_valid_feed_id(feed_id):
            return False
        return await self._store.exists(config_key(feed_id))

    async def create(self, config: FeedConfig | dict[str, Any]) -> str:
        """Write a feed record, overwriting any previous one. Returns the feed id."""
        if isinstance(config, dict):
            if not config.get("id"):
                raise ConfigurationError("Feed ID is required when creating a feed")
            config = FeedConfig.from_payload(config)
        elif not config.id:
            raise ConfigurationError("Feed ID is required when creating a feed")

        await self._write(config, {"createdAt": now_utc().isoformat()})
        self._log.info("registry.feed_created", feed_id=config.id)
        return config.id

    async def get_config(self, feed_id: str) -> FeedConfig:
        envelope = await self._read(feed_id)
        if envelope is None:
            raise NotFoundError(feed_id)
        return _config_from(envelope, feed_id)

    async def update_config(self, feed_id: str, partial: dict[str, Any]) -> FeedConfig:
        """Merge ``partial`` over an existing feed's config. The id never changes."""
        envelope = await self._read(feed_id)
        if envelope is None:
            raise NotFoundError(feed_id)
        current = _config_from(envelope, feed_id)
        config = FeedConfig.from_payload(_merge(current.to_payload(), partial, feed_id))
        await self._write(config, _carry_metadata(envelope))
        self._log.info("registry.feed_updated", feed_id=feed_id)
        return config

    async def upsert_config(self, feed_id: str, partial: dict[str, Any]) -> tuple[FeedConfig, bool]:
        """Update the feed, or create it with defaults when absent.

        Returns the stored config and whether the feed was created.
        """
        envelope = await self._read(feed_id)
        if envelope is not None:
            base = _config_from(envelope, feed_id).to_payload()
        else:
            base = {
                "language": "en",
                "copyright": default_copyright(),
                "maxItems": DEFAULT_MAX_ITEMS,
            }
        merged = _merge(base, partial, feed_id)

        missing = [field for field in REQUIRED_FIELDS if not merged.get(field)]
        if missing:
            raise ConfigurationError("title, description, and siteUrl are required fields")
        max_items = merged.get("maxItems")
        if not isinstance(max_items, int) or isinstance(max_items, bool) or max_items <= 0:
            merged["maxItems"] = DEFAULT_MAX_ITEMS

        config = FeedConfig.from_payload(merged)
        if envelope is not None:
            await self._write(config, _carry_metadata(envelope))
            self._log.info("registry.feed_updated", feed_id=feed_id)
        else:
            await self._write(config, {"createdAt": now_utc().isoformat()})
            self._log.info("registry.feed_created", feed_id=feed_id)
        return config, envelope is None

    async def list_ids(self) -> list[str]:
        keys = await self._store.keys(f"{FEED_PREFIX}*")
        return sorted(feed_id for feed_id in map(feed_id_from_config_key, keys) if feed_id)

    async def delete(self, feed_id: str) -> None:
        if not is_valid_feed_id(feed_id) or not await self._store.delete(config_key(feed_id)):
            raise NotFoundError(feed_id)
        self._log.info("registry.feed_deleted", feed_id=feed_id)

    async def _read(self, feed_id: str) -> dict[str, Any] | None:
        if not is_valid_feed_id(feed_id):
            return None
        raw = await self._store.get(config_key(feed_id))
        if raw is None:
            return None
        try:
            envelope = json.loads(raw)
        except json.JSONDecodeError as exc:
            raise StorageError(f"Invalid feed configuration format for feed: {feed_id}") from exc
        if not isinstance(envelope, dict):
            raise StorageError(f"Invalid feed configuration format for feed: {feed_id}")
        return envelope

    async def _write(self, config: FeedConfig, metadata: dict[str, Any]) -> None:
        envelope = {"feedConfig": config.to_payload(), **metadata}
        await self._store.set(config_key(config.id), json.dumps(envelope))


def _merge(base: dict[str, Any], partial: dict[str, Any], feed_id: str) -> dict[str, Any]:
    """Overlay caller fields on ``base``; None values keep the prior value."""
    merged = dict(base)
    merged.update({_camel(key): value for key, value in partial.items() if value is not None})
    merged["id"] = feed_id
    return merged


def _carry_metadata(envelope: dict[str, Any]) -> dict[str, Any]:
    metadata = {key: value for key, value in envelope.items() if key != "feedConfig"}
    metadata["updatedAt"] = now_utc().isoformat()
    return metadata


def _camel(key: str) -> str:
    return to_camel(key) if "_" in key else key


def _config_from(envelope: dict[str, Any], feed_id: str) -> FeedConfig:
    try:
        return FeedConfig.model_validate(envelope["feedConfig"])
    except (KeyError, TypeError, ValueError) as exc:
        raise StorageError(f"Invalid feed configuration format for feed: {feed_id}") from exc
