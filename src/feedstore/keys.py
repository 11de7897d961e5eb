"""Namespaced backing-store keys."""

from __future__ import annotations

KEY_SEPARATOR = ":"
FEED_PREFIX = "feed:"
RATE_LIMIT_PREFIX = "ratelimit:"

_ITEMS_SUFFIX = ":items"
_GUIDS_SUFFIX = ":guids"


def is_valid_feed_id(feed_id: str) -> bool:
    """Feed ids may not contain the key separator."""
    return bool(feed_id) and KEY_SEPARATOR not in feed_id


def config_key(feed_id: str) -> str:
    return f"{FEED_PREFIX}{feed_id}"


def items_key(feed_id: str) -> str:
    return f"{FEED_PREFIX}{feed_id}{_ITEMS_SUFFIX}"


def guids_key(feed_id: str) -> str:
    return f"{FEED_PREFIX}{feed_id}{_GUIDS_SUFFIX}"


def rate_limit_key(client: str) -> str:
    return f"{RATE_LIMIT_PREFIX}{client}"


def feed_id_from_config_key(key: str) -> str | None:
    """Feed id for a config record key, None for item lists, guid sets and foreign keys."""
    if not key.startswith(FEED_PREFIX):
        return None
    feed_id = key[len(FEED_PREFIX):]
    return feed_id if is_valid_feed_id(feed_id) else None
