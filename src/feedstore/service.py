"""Operation contract consumed by an HTTP boundary or the CLI."""

from __future__ import annotations

import contextlib
from collections.abc import AsyncIterator, Mapping
from typing import Any

import structlog

from feedstore.errors import ConfigurationError, NotFoundError, StorageError
from feedstore.formats import FEED_PATHS, FeedFormat, parse_api_format, parse_feed_format
from feedstore.ledger import ItemLedger
from feedstore.models import DEFAULT_MAX_ITEMS, FeedConfig, Item
from feedstore.ratelimit import RateLimitDecision, RateLimiter
from feedstore.registry import FeedRegistry
from feedstore.render import RenderedFeed, format_items, generate_feed
from feedstore.settings import Settings
from feedstore.store import KeyValueStore, create_store

CREATE_REQUIRED = (("id", "id"), ("title", "title"), ("description", "description"), ("siteUrl", "site_url"))


class FeedService:
    """Feed, item, rendering and admission operations over injected components."""

    def __init__(
        self,
        registry: FeedRegistry,
        ledger: ItemLedger,
        limiter: RateLimiter,
        log: structlog.stdlib.BoundLogger | None = None,
    ) -> None:
        self.registry = registry
        self.ledger = ledger
        self.limiter = limiter
        self._log = log or structlog.get_logger("feedstore.service")

    # -- feeds --

    async def list_feed_ids(self) -> list[str]:
        return await self.registry.list_ids()

    async def list_feeds(self) -> list[dict[str, Any]]:
        """Summaries of every readable feed with its public format paths."""
        feeds = []
        for feed_id in await self.registry.list_ids():
            try:
                config = await self.registry.get_config(feed_id)
            except (NotFoundError, StorageError):
                self._log.warning("service.feed_unreadable", feed_id=feed_id)
                continue
            feeds.append({
                "id": feed_id,
                "title": config.title,
                "description": config.description,
                "siteUrl": config.site_url,
                "formats": feed_paths(feed_id),
            })
        return feeds

    async def create_feed(self, payload: Mapping[str, Any]) -> str:
        """Register a feed. id, title, description and siteUrl are required."""
        for camel, snake in CREATE_REQUIRED:
            if not payload.get(camel) and not payload.get(snake):
                raise ConfigurationError(f"Missing required field: {camel}")
        if not isinstance(payload.get("id"), str):
            raise ConfigurationError("Feed id is required and must be a string")

        data = dict(payload)
        max_items = data.pop("maxItems", data.pop("max_items", None))
        if not isinstance(max_items, int) or isinstance(max_items, bool) or max_items <= 0:
            max_items = DEFAULT_MAX_ITEMS
        data["maxItems"] = max_items
        return await self.registry.create(FeedConfig.from_payload(data))

    async def get_config(self, feed_id: str) -> FeedConfig:
        return await self.registry.get_config(feed_id)

    async def update_config(self, feed_id: str, partial: Mapping[str, Any]) -> FeedConfig:
        previous = await self.registry.get_config(feed_id)
        config = await self.registry.update_config(feed_id, dict(partial))
        await self._reconcile_if_shrunk(previous, config)
        return config

    async def upsert_config(self, feed_id: str, partial: Mapping[str, Any]) -> tuple[FeedConfig, bool]:
        previous = await self.registry.get_config(feed_id) if await self.registry.exists(feed_id) else None
        config, created = await self.registry.upsert_config(feed_id, dict(partial))
        if previous is not None:
            await self._reconcile_if_shrunk(previous, config)
        return config, created

    async def delete_feed(self, feed_id: str) -> None:
        await self.ledger.clear_items(feed_id)
        await self.registry.delete(feed_id)

    async def _reconcile_if_shrunk(self, previous: FeedConfig, config: FeedConfig) -> None:
        if config.max_items < previous.max_items:
            await self.ledger.reconcile(config.id)

    # -- items --

    async def add_item(self, feed_id: str, payload: Mapping[str, Any]) -> Item:
        if not await self.registry.exists(feed_id):
            raise NotFoundError(feed_id)
        item = Item.from_payload(dict(payload))
        return await self.ledger.add_item(feed_id, item)

    async def get_items(self, feed_id: str, api_format: str = "raw") -> list[dict[str, Any]]:
        raw_items = await self.ledger.get_items(feed_id)
        return format_items(raw_items, parse_api_format(api_format))

    async def clear_items(self, feed_id: str) -> None:
        await self.ledger.clear_items(feed_id)

    async def reconcile(self, feed_id: str) -> int:
        return await self.ledger.reconcile(feed_id)

    # -- reads --

    async def render_feed(self, feed_id: str, format: str = "rss") -> RenderedFeed:
        fmt = parse_feed_format(format)
        raw_items = await self.ledger.get_items(feed_id)
        config = await self.registry.get_config(feed_id)
        return generate_feed(raw_items, config, fmt)

    async def admit(self, method: str, headers: Mapping[str, str]) -> RateLimitDecision | None:
        return await self.limiter.check(method, headers)


def feed_paths(feed_id: str) -> dict[str, str]:
    return {fmt.value: f"/{feed_id}/{FEED_PATHS[fmt]}" for fmt in FeedFormat}


@contextlib.asynccontextmanager
async def open_service(
    settings: Settings,
    *,
    store: KeyValueStore | None = None,
) -> AsyncIterator[FeedService]:
    """Build the components once, run the rate-limit sweeper, and clean up on exit.

    A caller-supplied ``store`` is left open.
    """
    owned = store is None
    if store is None:
        store = create_store(settings)
    registry = FeedRegistry(store)
    ledger = ItemLedger(store, registry)
    limiter = RateLimiter.from_settings(store, settings)
    limiter.start()
    try:
        yield FeedService(registry, ledger, limiter)
    finally:
        await limiter.stop()
        if owned:
            await store.aclose()
