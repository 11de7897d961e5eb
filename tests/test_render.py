"""Tests for item formatting and feed document rendering."""

from __future__ import annotations

import json
from datetime import UTC, datetime
from unittest.mock import patch

import feedparser
import pytest

from feedstore import render
from feedstore.formats import ApiFormat, FeedFormat
from feedstore.models import FeedConfig, Item
from feedstore.render import EPOCH, coerce_date, format_items, generate_feed


def _config(**overrides) -> FeedConfig:
    payload = {"id": "f1", "title": "T", "description": "D", "siteUrl": "https://x"}
    payload.update(overrides)
    return FeedConfig.from_payload(payload)


def _stored(guid: str, day: int = 1, **overrides) -> str:
    payload = {
        "link": f"https://x/{guid}",
        "guid": guid,
        "title": f"<i>Post {guid}</i>",
        "description": f"<p>About {guid}</p>",
        "content": "<b>hi</b>",
    }
    payload.update(overrides)
    return Item.from_payload(payload, now=datetime(2025, 1, day, tzinfo=UTC)).to_json()


class TestCoerceDate:
    def test_iso_string(self) -> None:
        assert coerce_date("2025-01-01T10:00:00+02:00") == datetime(2025, 1, 1, 8, 0, tzinfo=UTC)

    def test_naive_string_is_utc(self) -> None:
        assert coerce_date("2025-01-01 10:00") == datetime(2025, 1, 1, 10, 0, tzinfo=UTC)

    def test_rfc2822(self) -> None:
        assert coerce_date("Wed, 01 Jan 2025 00:00:00 GMT") == datetime(2025, 1, 1, tzinfo=UTC)

    def test_epoch_milliseconds(self) -> None:
        assert coerce_date(0) == EPOCH
        assert coerce_date(1_735_689_600_000) == datetime(2025, 1, 1, tzinfo=UTC)

    @pytest.mark.parametrize("value", [None, "", "not a date", True, ["2025"]])
    def test_unusable(self, value) -> None:
        assert coerce_date(value) is None


class TestFormatItems:
    def test_raw_strips_markup(self) -> None:
        [item] = format_items([_stored("g1")], ApiFormat.RAW)

        assert item["title"] == "Post g1"
        assert item["description"] == "About g1"
        assert item["content"] == "hi"
        assert item["guid"] == "g1"

    def test_html_preserves_markup(self) -> None:
        [item] = format_items([_stored("g1")], ApiFormat.HTML)

        assert item["title"] == "<i>Post g1</i>"
        assert item["content"] == "<b>hi</b>"

    def test_dates_decoded(self) -> None:
        [item] = format_items([_stored("g1", day=5)])

        assert item["date"] == datetime(2025, 1, 5, tzinfo=UTC)
        assert item["published"] == datetime(2025, 1, 5, tzinfo=UTC)

    def test_missing_date_defaults_to_now(self) -> None:
        raw = json.dumps({"link": "https://x/1", "content": "c"})
        [item] = format_items([raw])

        assert item["date"].tzinfo is not None
        assert "published" not in item

    @pytest.mark.parametrize("raw", ["{not json", "[1, 2]", '"text"'])
    def test_malformed_record_becomes_placeholder(self, raw: str) -> None:
        [item] = format_items([raw, _stored("g1")])[:1]

        assert item["title"] == "Error parsing item"
        assert item["description"] == "Could not parse this item"

    def test_order_preserved(self) -> None:
        items = format_items([_stored("b"), _stored("a")])
        assert [i["guid"] for i in items] == ["b", "a"]


class TestRawDocument:
    def test_shape(self) -> None:
        rendered = generate_feed([_stored("g1")], _config(), FeedFormat.RAW)
        document = json.loads(rendered.content)

        assert rendered.content_type == "application/json; charset=utf-8"
        assert document["version"] == "https://jsonfeed.org/version/1.1"
        assert document["feed_url"] == "https://x/raw.json"
        assert document["items"][0]["content"] == "hi"
        assert document["items"][0]["date"] == "2025-01-01T00:00:00.000Z"


class TestJsonFeed:
    def test_shape(self) -> None:
        config = _config(image="https://x/logo.png", author={"name": "Ed", "link": "https://x/ed"})
        rendered = generate_feed([_stored("g2", day=2), _stored("g1")], config, FeedFormat.JSON)
        document = json.loads(rendered.content)

        assert document["version"] == "https://jsonfeed.org/version/1"
        assert document["title"] == "T"
        assert document["home_page_url"] == "https://x"
        assert document["feed_url"] == "https://x/feed.json"
        assert document["icon"] == "https://x/logo.png"
        assert document["author"] == {"name": "Ed", "url": "https://x/ed"}
        assert [i["url"] for i in document["items"]] == ["https://x/g2", "https://x/g1"]
        assert document["items"][0]["content_html"] == "<b>hi</b>"
        assert document["items"][0]["summary"] == "<p>About g2</p>"

    def test_tags_and_author(self) -> None:
        raw = _stored("g1", author=["Alice"], categories=["news", "tech"])
        [item] = json.loads(generate_feed([raw], _config(), FeedFormat.JSON).content)["items"]

        assert item["tags"] == ["news", "tech"]
        assert item["author"] == {"name": "Alice"}


class TestRssAndAtom:
    def test_rss_channel_link_is_site_url(self) -> None:
        content = generate_feed([], _config(siteUrl="https://site.example")).content
        parsed = feedparser.parse(content)

        assert "<link>https://site.example</link>" in content
        assert parsed.feed.link == "https://site.example"
        assert any(link.get("rel") == "self" and link.href == "https://site.example/rss.xml" for link in parsed.feed.links)

    def test_rss(self) -> None:
        rendered = generate_feed([_stored("g2", day=2), _stored("g1")], _config())
        parsed = feedparser.parse(rendered.content)

        assert rendered.content_type == "application/rss+xml; charset=utf-8"
        assert parsed.version == "rss20"
        assert parsed.feed.title == "T"
        assert parsed.feed.link == "https://x"
        assert [e.id for e in parsed.entries] == ["g2", "g1"]
        assert parsed.entries[0].link == "https://x/g2"
        assert "Post g2" in parsed.entries[0].title
        assert tuple(parsed.feed.updated_parsed[:3]) == (2025, 1, 2)

    def test_atom(self) -> None:
        rendered = generate_feed([_stored("g1")], _config(), FeedFormat.ATOM)
        parsed = feedparser.parse(rendered.content)

        assert rendered.content_type == "application/atom+xml; charset=utf-8"
        assert parsed.version == "atom10"
        assert parsed.feed.id == "f1"
        assert parsed.entries[0].id == "g1"
        assert parsed.entries[0].content[0].value == "<b>hi</b>"
        assert any(link.get("rel") == "self" and link.href == "https://x/atom.xml" for link in parsed.feed.links)

    def test_enclosure(self) -> None:
        raw = _stored("g1", enclosure={"url": "https://x/a.mp3", "type": "audio/mpeg", "length": 42})
        parsed = feedparser.parse(generate_feed([raw], _config()).content)

        [enclosure] = parsed.entries[0].enclosures
        assert enclosure.href == "https://x/a.mp3"
        assert enclosure.type == "audio/mpeg"

    def test_empty_feed_uses_epoch(self) -> None:
        parsed = feedparser.parse(generate_feed([], _config(), FeedFormat.ATOM).content)

        assert parsed.entries == []
        assert tuple(parsed.feed.updated_parsed[:3]) == (1970, 1, 1)

    def test_explicit_updated(self) -> None:
        when = datetime(2030, 5, 6, tzinfo=UTC)
        parsed = feedparser.parse(generate_feed([_stored("g1")], _config(), updated=when).content)
        assert tuple(parsed.feed.updated_parsed[:3]) == (2030, 5, 6)

    def test_malformed_stored_item_rendered_as_placeholder(self) -> None:
        parsed = feedparser.parse(generate_feed(["{broken", _stored("g1")], _config()).content)

        assert [e.title for e in parsed.entries][0] == "Error parsing item"
        assert len(parsed.entries) == 2

    def test_entry_failure_replaced_by_placeholder(self) -> None:
        real_fill = render._fill_entry
        failed = []

        def flaky(entry, item):
            if not failed:
                failed.append(item["guid"])
                raise ValueError("boom")
            real_fill(entry, item)

        with patch.object(render, "_fill_entry", flaky):
            rendered = generate_feed([_stored("g2", day=2), _stored("g1")], _config())
        parsed = feedparser.parse(rendered.content)

        assert failed == ["g2"]
        assert len(parsed.entries) == 2
        assert parsed.entries[0].title == "Error parsing item"
        assert parsed.entries[0].summary == "Could not parse this feed item"
        assert parsed.entries[1].id == "g1"


class TestDeterminism:
    @pytest.mark.parametrize("fmt", list(FeedFormat))
    def test_same_input_same_bytes(self, fmt: FeedFormat) -> None:
        raw_items = [_stored("g2", day=2), _stored("g1")]
        first = generate_feed(raw_items, _config(copyright="© 2025"), fmt)
        second = generate_feed(raw_items, _config(copyright="© 2025"), fmt)
        assert first == second

    @pytest.mark.parametrize("fmt", list(FeedFormat))
    def test_malformed_and_undated_records_do_not_read_the_clock(self, fmt: FeedFormat) -> None:
        raw_items = [_stored("g1"), "not json", json.dumps({"link": "https://x/2", "guid": "g2", "content": "c"})]
        config = _config(copyright="© 2025")

        with patch.object(render, "now_utc", return_value=datetime(2030, 1, 1, tzinfo=UTC)):
            first = generate_feed(raw_items, config, fmt)
        with patch.object(render, "now_utc", return_value=datetime(2031, 1, 1, tzinfo=UTC)):
            second = generate_feed(raw_items, config, fmt)

        assert first == second
        assert "2030" not in first.content

    def test_placeholder_dated_at_epoch(self) -> None:
        document = json.loads(generate_feed(["not json"], _config(), FeedFormat.RAW).content)
        assert document["items"][0]["date"] == "1970-01-01T00:00:00.000Z"

    def test_newest_real_item_drives_updated(self) -> None:
        rendered = generate_feed([_stored("g1", day=3), "not json"], _config(), FeedFormat.ATOM)
        assert tuple(feedparser.parse(rendered.content).feed.updated_parsed[:3]) == (2025, 1, 3)
