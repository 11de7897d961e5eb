"""Feed configuration and item records.

Records are stored as JSON with camelCase keys (``siteUrl``, ``maxItems``,
``isPermaLink``); Python code uses the snake_case attribute names.
"""

from __future__ import annotations

import uuid
from datetime import UTC, datetime
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, PositiveInt, ValidationError, field_validator
from pydantic.alias_generators import to_camel

from feedstore.errors import ConfigurationError, InvalidPayloadError
from feedstore.keys import KEY_SEPARATOR, is_valid_feed_id
from feedstore.sanitize import sanitize_html

DEFAULT_MAX_ITEMS = 100


def now_utc() -> datetime:
    return datetime.now(UTC)


def default_copyright() -> str:
    return f"© {now_utc().year}"


class Record(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    def to_json(self) -> str:
        return self.model_dump_json(by_alias=True, exclude_none=True)


class Author(Record):
    name: str | None = None
    email: str | None = None
    link: str | None = None
    avatar: str | None = None


class Category(Record):
    name: str | None = None
    domain: str | None = None
    scheme: str | None = None
    term: str | None = None


class Enclosure(Record):
    url: str
    type: str | None = None
    length: int | None = None
    title: str | None = None
    duration: int | None = None


class FeedConfig(Record):
    id: str
    title: str
    description: str
    site_url: str
    language: str = "en"
    copyright: str = Field(default_factory=default_copyright)
    max_items: PositiveInt = DEFAULT_MAX_ITEMS
    image: str | None = None
    favicon: str | None = None
    author: Author | None = None

    @field_validator("id")
    @classmethod
    def _id_not_blank(cls, value: str) -> str:
        if not value.strip():
            raise ValueError("feed id must not be empty")
        if not is_valid_feed_id(value):
            raise ValueError(f"feed id must not contain '{KEY_SEPARATOR}'")
        return value

    @classmethod
    def from_payload(cls, payload: dict[str, Any]) -> FeedConfig:
        """Validate caller-supplied config, mapping failures to ConfigurationError."""
        try:
            return cls.model_validate(payload)
        except ValidationError as exc:
            raise ConfigurationError(_describe(exc)) from exc

    def to_payload(self) -> dict[str, Any]:
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)


class Item(Record):
    id: str
    guid: str | None = None
    link: str
    title: str = ""
    description: str = ""
    content: str = ""
    published: datetime | None = None
    date: datetime
    author: list[Author] | None = None
    category: list[Category] | None = None
    image: str | Enclosure | None = None
    audio: str | Enclosure | None = None
    video: str | Enclosure | None = None
    enclosure: Enclosure | None = None
    source: str | None = None
    is_perma_link: bool | None = None
    copyright: str | None = None

    @classmethod
    def from_payload(cls, payload: dict[str, Any], *, now: datetime | None = None) -> Item:
        """Build a stored item from a publisher payload.

        Requires ``link`` and one of ``content``/``description``. Fills ids and
        dates, normalizes author and category shapes, and sanitizes markup.
        """
        if not isinstance(payload, dict):
            raise InvalidPayloadError("Item payload must be an object")
        if not payload.get("link"):
            raise InvalidPayloadError("Missing required field: link")
        if not payload.get("content") and not payload.get("description"):
            raise InvalidPayloadError("Missing required field: content or description")

        now = now or now_utc()
        description = payload.get("description") or ""
        published = payload.get("published") or payload.get("publishedAt")

        data: dict[str, Any] = {
            "id": payload.get("id") or str(uuid.uuid4()),
            "guid": payload.get("guid") or payload["link"] or str(uuid.uuid4()),
            "link": payload["link"],
            "title": sanitize_html(payload.get("title") or "Untitled"),
            "description": sanitize_html(description),
            "content": sanitize_html(payload.get("content") or description),
            "published": published or now,
            "date": payload.get("date") or now,
        }
        authors = _normalize_authors(payload.get("author"))
        if authors:
            data["author"] = authors
        categories = _normalize_categories(payload.get("categories", payload.get("category")))
        if categories:
            data["category"] = categories
        for key in ("image", "audio", "video", "enclosure", "source", "isPermaLink", "copyright"):
            if payload.get(key) is not None:
                data[key] = payload[key]

        try:
            return cls.model_validate(data)
        except ValidationError as exc:
            raise InvalidPayloadError(_describe(exc)) from exc


def _normalize_authors(value: Any) -> list[dict] | None:
    if not value:
        return None
    authors = value if isinstance(value, list) else [value]
    return [{"name": a} if isinstance(a, str) else a for a in authors]


def _normalize_categories(value: Any) -> list[dict] | None:
    if not value:
        return None
    if isinstance(value, str):
        return [{"name": value}]
    if isinstance(value, list):
        return [{"name": c} if isinstance(c, str) else c for c in value]
    return None


def _describe(exc: ValidationError) -> str:
    parts = []
    for err in exc.errors():
        loc = ".".join(str(p) for p in err["loc"]) or "payload"
        parts.append(f"{loc}: {err['msg']}")
    return "; ".join(parts)
