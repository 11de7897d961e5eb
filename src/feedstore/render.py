"""Format Renderer: stored item JSON to item listings and feed documents.

Everything here is pure apart from logging. RSS 2.0 and Atom 1.0 are
serialized by feedgen; JSON Feed documents are assembled directly.
"""

from __future__ import annotations

import json
import mimetypes
from datetime import UTC, datetime
from typing import Any, NamedTuple

import structlog
from dateutil import parser as dateparser
from feedgen.entry import FeedEntry
from feedgen.feed import FeedGenerator

from feedstore import __version__
from feedstore.formats import CONTENT_TYPES, FEED_PATHS, ApiFormat, FeedFormat
from feedstore.models import FeedConfig, default_copyright, now_utc
from feedstore.sanitize import strip_html

log = structlog.get_logger("feedstore.render")

EPOCH = datetime(1970, 1, 1, tzinfo=UTC)
GENERATOR = "feedstore"
JSON_FEED_1 = "https://jsonfeed.org/version/1"
JSON_FEED_1_1 = "https://jsonfeed.org/version/1.1"


class RenderedFeed(NamedTuple):
    content: str
    content_type: str


def coerce_date(value: Any) -> datetime | None:
    """Parse a stored date (ISO/RFC 2822 string or epoch milliseconds) to an aware datetime."""
    if value is None or value == "":
        return None
    try:
        if isinstance(value, datetime):
            parsed = value
        elif isinstance(value, (int, float)) and not isinstance(value, bool):
            parsed = datetime.fromtimestamp(value / 1000, UTC)
        elif isinstance(value, str):
            parsed = dateparser.parse(value)
        else:
            return None
    except (ValueError, OverflowError, OSError):
        return None
    return parsed if parsed.tzinfo else parsed.replace(tzinfo=UTC)


def placeholder_item(description: str = "Could not parse this item", date: datetime | None = None) -> dict[str, Any]:
    return {"title": "Error parsing item", "description": description, "date": date or now_utc(), "link": ""}


def _parse_record(raw: str) -> dict[str, Any]:
    record = json.loads(raw)
    if not isinstance(record, dict):
        raise ValueError("stored item is not an object")
    return record


def format_items(
    raw_items: list[str],
    mode: ApiFormat = ApiFormat.RAW,
    *,
    now: datetime | None = None,
) -> list[dict[str, Any]]:
    """Decode stored items with dates as datetimes.

    ``raw`` mode also strips markup from title, description and content.
    Records that cannot be decoded become a placeholder item. Missing dates
    and placeholders are stamped with ``now``, the current time by default.
    """
    now = now or now_utc()
    formatted = []
    for raw in raw_items:
        try:
            record = _parse_record(raw)
        except ValueError as exc:
            log.error("render.unparseable_item", error=str(exc))
            formatted.append(placeholder_item(date=now))
            continue

        item = dict(record)
        item["date"] = coerce_date(record.get("date")) or now
        published = coerce_date(record.get("published"))
        if published is None:
            item.pop("published", None)
        else:
            item["published"] = published
        if mode == ApiFormat.RAW:
            for field in ("title", "description", "content"):
                item[field] = strip_html(_text(record.get(field)))
        formatted.append(item)
    return formatted


def _text(value: Any) -> str:
    if value is None:
        return ""
    return value if isinstance(value, str) else str(value)


def to_json(document: Any, indent: int) -> str:
    return json.dumps(document, indent=indent, ensure_ascii=False, default=_json_default)


def _json_default(value: Any) -> Any:
    if isinstance(value, datetime):
        return isoformat(value)
    raise TypeError(f"Object of type {type(value).__name__} is not JSON serializable")


def isoformat(value: datetime) -> str:
    """ISO 8601 in UTC with millisecond precision and a ``Z`` suffix."""
    return value.astimezone(UTC).isoformat(timespec="milliseconds").replace("+00:00", "Z")


def feed_links(config: FeedConfig) -> dict[FeedFormat, str]:
    base = config.site_url.rstrip("/")
    return {fmt: f"{base}/{path}" for fmt, path in FEED_PATHS.items()}


def generate_feed(
    raw_items: list[str],
    config: FeedConfig,
    format: FeedFormat = FeedFormat.RSS,
    *,
    updated: datetime | None = None,
) -> RenderedFeed:
    """Serialize stored items as a feed document.

    The document's own timestamp is ``updated`` when given, else the newest
    item date, else the Unix epoch. Undated and unparseable records take that
    same fixed fallback instead of the wall clock, so identical input renders
    identically.
    """
    format = FeedFormat(format)
    fallback = updated or EPOCH
    if format == FeedFormat.RAW:
        document = {
            "version": JSON_FEED_1_1,
            "feed_url": feed_links(config)[FeedFormat.RAW],
            "items": format_items(raw_items, ApiFormat.RAW, now=fallback),
        }
        return RenderedFeed(to_json(document, indent=2), CONTENT_TYPES[format])

    items = format_items(raw_items, ApiFormat.HTML, now=fallback)
    if updated is None:
        updated = max((item["date"] for item in items), default=EPOCH)

    if format == FeedFormat.JSON:
        content = to_json(_json_feed(items, config), indent=4)
    else:
        fg = _feed_generator(config, format, updated)
        for item in items:
            _add_entry(fg, item)
        if format == FeedFormat.ATOM:
            content = fg.atom_str(pretty=True).decode("utf-8")
        else:
            content = fg.rss_str(pretty=True).decode("utf-8")
    return RenderedFeed(content, CONTENT_TYPES[format])


def _feed_generator(config: FeedConfig, format: FeedFormat, updated: datetime) -> FeedGenerator:
    links = feed_links(config)
    fg = FeedGenerator()
    fg.id(config.id)
    fg.title(config.title)
    fg.description(config.description)
    # RSS takes its channel <link> from the last link added
    fg.link(href=links[format], rel="self", type=CONTENT_TYPES[format].split(";")[0])
    fg.link(href=config.site_url, rel="alternate")
    fg.language(config.language or "en")
    fg.copyright(config.copyright or default_copyright())
    fg.generator(GENERATOR, version=__version__)
    fg.updated(updated)
    fg.lastBuildDate(updated)
    if config.favicon:
        fg.icon(config.favicon)
    if config.image:
        fg.logo(config.image)
    if config.author and config.author.name:
        fg.author(_person(config.author.model_dump()))
    return fg


def _add_entry(fg: FeedGenerator, item: dict[str, Any]) -> None:
    entry = fg.add_entry(order="append")
    try:
        _fill_entry(entry, item)
    except Exception:
        log.exception("render.entry_failed", guid=item.get("guid"), link=item.get("link"))
        fg.remove_entry(entry)
        entry = fg.add_entry(order="append")
        _fill_entry(entry, placeholder_item("Could not parse this feed item", item.get("date")))


def _fill_entry(entry: FeedEntry, item: dict[str, Any]) -> None:
    link = _text(item.get("link"))
    entry_id = _text(item.get("guid") or item.get("id") or link) or f"urn:{GENERATOR}:placeholder"
    entry.id(entry_id)
    entry.title(_text(item.get("title")) or "Untitled")
    if link:
        entry.link(href=link)
    entry.guid(entry_id, permalink=bool(item.get("isPermaLink")))

    description = _text(item.get("description"))
    if description:
        entry.description(description, isSummary=True)
    content = _text(item.get("content"))
    if content:
        entry.content(content, type="html")

    entry.updated(item["date"])
    if item.get("published"):
        entry.published(item["published"])

    for author in item.get("author") or []:
        if isinstance(author, dict) and author.get("name"):
            entry.author(_person(author))
    for category in item.get("category") or []:
        if isinstance(category, dict) and (category.get("term") or category.get("name")):
            entry.category(_category(category))

    media = _enclosure(item)
    if media:
        entry.enclosure(**media)


def _person(author: dict[str, Any]) -> dict[str, str]:
    person = {"name": author["name"]}
    if author.get("email"):
        person["email"] = author["email"]
    if author.get("link"):
        person["uri"] = author["link"]
    return person


def _category(category: dict[str, Any]) -> dict[str, str]:
    term = category.get("term") or category.get("name")
    result = {"term": term}
    if category.get("name"):
        result["label"] = category["name"]
    scheme = category.get("scheme") or category.get("domain")
    if scheme:
        result["scheme"] = scheme
    return result


def _enclosure(item: dict[str, Any]) -> dict[str, str] | None:
    """One enclosure per entry: the explicit one, else the first media reference."""
    for field in ("enclosure", "image", "audio", "video"):
        media = item.get(field)
        if not media:
            continue
        if isinstance(media, str):
            media = {"url": media}
        if not isinstance(media, dict) or not media.get("url"):
            continue
        mime = media.get("type") or mimetypes.guess_type(media["url"])[0] or "application/octet-stream"
        return {"url": media["url"], "length": str(media.get("length") or 0), "type": mime}
    return None


def _json_feed(items: list[dict[str, Any]], config: FeedConfig) -> dict[str, Any]:
    document: dict[str, Any] = {
        "version": JSON_FEED_1,
        "title": config.title,
        "home_page_url": config.site_url,
        "feed_url": feed_links(config)[FeedFormat.JSON],
        "description": config.description,
    }
    if config.image:
        document["icon"] = config.image
    if config.favicon:
        document["favicon"] = config.favicon
    if config.author and config.author.name:
        document["author"] = _json_author(config.author.model_dump())
    document["items"] = [_json_item(item) for item in items]
    return document


def _json_item(item: dict[str, Any]) -> dict[str, Any]:
    entry: dict[str, Any] = {
        "id": _text(item.get("id") or item.get("guid") or item.get("link")),
        "content_html": _text(item.get("content")),
    }
    if item.get("link"):
        entry["url"] = item["link"]
    if item.get("title"):
        entry["title"] = item["title"]
    if item.get("description"):
        entry["summary"] = item["description"]
    image = item.get("image")
    if isinstance(image, dict):
        image = image.get("url")
    if image:
        entry["image"] = image
    entry["date_modified"] = item["date"]
    if item.get("published"):
        entry["date_published"] = item["published"]
    authors = [a for a in item.get("author") or [] if isinstance(a, dict) and a.get("name")]
    if authors:
        entry["author"] = _json_author(authors[0])
    tags = [c.get("name") or c.get("term") for c in item.get("category") or [] if isinstance(c, dict)]
    tags = [tag for tag in tags if tag]
    if tags:
        entry["tags"] = tags
    return entry


def _json_author(author: dict[str, Any]) -> dict[str, str]:
    result = {"name": author["name"]}
    if author.get("link"):
        result["url"] = author["link"]
    return result
