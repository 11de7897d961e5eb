"""Output format enumerations."""

from __future__ import annotations

from enum import StrEnum

from feedstore.errors import InvalidFormatError


class FeedFormat(StrEnum):
    """Serialized feed documents."""
    RSS = "rss"
    ATOM = "atom"
    JSON = "json"
    RAW = "raw"


class ApiFormat(StrEnum):
    """Item listing modes: markup stripped or preserved."""
    RAW = "raw"
    HTML = "html"


CONTENT_TYPES = {
    FeedFormat.RSS: "application/rss+xml; charset=utf-8",
    FeedFormat.ATOM: "application/atom+xml; charset=utf-8",
    FeedFormat.JSON: "application/json; charset=utf-8",
    FeedFormat.RAW: "application/json; charset=utf-8",
}

# Paths relative to a feed's site URL, also used for the public routes.
FEED_PATHS = {
    FeedFormat.RSS: "rss.xml",
    FeedFormat.ATOM: "atom.xml",
    FeedFormat.JSON: "feed.json",
    FeedFormat.RAW: "raw.json",
}


def parse_feed_format(value: str) -> FeedFormat:
    try:
        return FeedFormat(value)
    except ValueError:
        valid = ", ".join(f.value for f in FeedFormat)
        raise InvalidFormatError(f"Invalid format: {value}. Valid formats are: {valid}") from None


def parse_api_format(value: str) -> ApiFormat:
    try:
        return ApiFormat(value)
    except ValueError:
        valid = ", ".join(f.value for f in ApiFormat)
        raise InvalidFormatError(f"Invalid format: {value}. Valid formats are: {valid}") from None
