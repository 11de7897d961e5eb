"""Backing store implementations, selected once from settings."""

from __future__ import annotations

from feedstore.errors import ConfigurationError
from feedstore.settings import Settings
from feedstore.store.base import KeyValueStore, Pipeline
from feedstore.store.memory import MemoryStore
from feedstore.store.redis import RedisStore

STORES = {
    "redis": RedisStore,
    "memory": MemoryStore,
}

__all__ = ["STORES", "KeyValueStore", "MemoryStore", "Pipeline", "RedisStore", "create_store"]


def create_store(settings: Settings) -> KeyValueStore:
    try:
        store_cls = STORES[settings.store_backend]
    except KeyError:
        raise ConfigurationError(f"unknown store backend '{settings.store_backend}'") from None
    return store_cls.from_settings(settings)
