"""Item Ledger: bounded, newest-first item lists with a GUID index per feed."""

from __future__ import annotations

import json

import structlog

from feedstore.errors import DuplicateItemError, NotFoundError
from feedstore.keys import guids_key, items_key
from feedstore.models import Item
from feedstore.registry import FeedRegistry
from feedstore.store import KeyValueStore


class ItemLedger:
    """Appends, reads and clears stored items.

    Writes are not transactional: concurrent appends to one feed may leave the
    list briefly over its bound, and the next append's trim restores it.
    """

    def __init__(
        self,
        store: KeyValueStore,
        registry: FeedRegistry,
        log: structlog.stdlib.BoundLogger | None = None,
    ) -> None:
        self._store = store
        self._registry = registry
        self._log = log or structlog.get_logger("feedstore.ledger")

    async def add_item(self, feed_id: str, item: Item) -> Item:
        config = await self._registry.get_config(feed_id)
        items, guids = items_key(feed_id), guids_key(feed_id)

        if item.guid and await self._store.sismember(guids, item.guid):
            raise DuplicateItemError(item.guid)

        # Append, then trim, then clean the index: an interruption leaves the
        # list over length rather than dropping data.
        await self._store.lpush(items, item.to_json())
        if item.guid:
            await self._store.sadd(guids, item.guid)

        evicted = await self._store.lrange(items, config.max_items, -1)
        await self._store.ltrim(items, 0, config.max_items - 1)
        if evicted:
            await self._forget(feed_id, evicted)

        self._log.info("ledger.item_added", feed_id=feed_id, guid=item.guid, evicted=len(evicted))
        return item

    async def get_items(self, feed_id: str) -> list[str]:
        """Stored item JSON, newest first, at most ``max_items`` entries."""
        config = await self._registry.get_config(feed_id)
        return await self._store.lrange(items_key(feed_id), 0, config.max_items - 1)

    async def item_exists(self, feed_id: str, guid: str) -> bool:
        await self._require(feed_id)
        return await self._store.sismember(guids_key(feed_id), guid)

    async def count(self, feed_id: str) -> int:
        await self._require(feed_id)
        return await self._store.llen(items_key(feed_id))

    async def clear_items(self, feed_id: str) -> None:
        await self._require(feed_id)
        await self._store.delete(items_key(feed_id), guids_key(feed_id))
        self._log.info("ledger.items_cleared", feed_id=feed_id)

    async def reconcile(self, feed_id: str) -> int:
        """Trim to the current bound and drop index entries with no live item.

        Needed after ``max_items`` shrinks, since trimming on append only
        forgets the guids it evicts itself. Returns the number of guids removed.
        """
        config = await self._registry.get_config(feed_id)
        items, guids = items_key(feed_id), guids_key(feed_id)

        await self._store.ltrim(items, 0, config.max_items - 1)
        live = set()
        for raw in await self._store.lrange(items, 0, -1):
            try:
                live.add(_guid_of(raw))
            except ValueError:
                self._log.warning("ledger.unparseable_item", feed_id=feed_id)
        stale = await self._store.smembers(guids) - live
        if stale:
            await self._store.srem(guids, *sorted(stale))
        self._log.info("ledger.reconciled", feed_id=feed_id, stale_guids=len(stale))
        return len(stale)

    async def _require(self, feed_id: str) -> None:
        if not await self._registry.exists(feed_id):
            raise NotFoundError(feed_id)

    async def _forget(self, feed_id: str, evicted: list[str]) -> None:
        stale = []
        for raw in evicted:
            try:
                guid = _guid_of(raw)
            except ValueError:
                self._log.warning("ledger.unparseable_evicted_item", feed_id=feed_id)
                continue
            if guid:
                stale.append(guid)
        if stale:
            await self._store.srem(guids_key(feed_id), *stale)


def _guid_of(raw: str) -> str | None:
    """GUID of a stored item. Raises ValueError for records that are not JSON objects."""
    record = json.loads(raw)
    if not isinstance(record, dict):
        raise ValueError("stored item is not an object")
    return record.get("guid")
