"""Error taxonomy shared by the store, the service and the CLI."""

from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from feedstore.ratelimit import RateLimitDecision


class FeedStoreError(Exception):
    """Base error. ``status_code`` is for an HTTP boundary, ``exit_code`` for the CLI."""

    status_code = 500
    exit_code = 1


class NotFoundError(FeedStoreError):
    status_code = 404
    exit_code = 3

    def __init__(self, feed_id: str) -> None:
        super().__init__(f"Feed with ID '{feed_id}' not found.")
        self.feed_id = feed_id


class DuplicateItemError(FeedStoreError):
    status_code = 409
    exit_code = 4

    def __init__(self, guid: str) -> None:
        super().__init__(f"Item with GUID '{guid}' already exists in this feed.")
        self.guid = guid


class ConfigurationError(FeedStoreError):
    status_code = 400
    exit_code = 2

    def __init__(self, message: str) -> None:
        super().__init__(f"Feed configuration error: {message}")


class InvalidFormatError(FeedStoreError):
    status_code = 400
    exit_code = 2


class InvalidPayloadError(FeedStoreError):
    status_code = 400
    exit_code = 2


class StorageError(FeedStoreError):
    status_code = 500
    exit_code = 5

    def __init__(self, message: str) -> None:
        super().__init__(f"Storage error: {message}")


class RateLimitExceededError(FeedStoreError):
    status_code = 429
    exit_code = 6

    def __init__(self, decision: RateLimitDecision) -> None:
        super().__init__("Rate limit exceeded. Please try again later.")
        self.decision = decision
