"""Click CLI over the feed service: feeds, items, rendering and catalog sync."""

from __future__ import annotations

import asyncio
import json
from collections.abc import Awaitable, Callable
from typing import Any, TypeVar

import click

from feedstore.config import load_catalog
from feedstore.errors import FeedStoreError
from feedstore.formats import ApiFormat, FeedFormat
from feedstore.logging import setup_logging
from feedstore.render import to_json
from feedstore.service import FeedService, open_service
from feedstore.settings import Settings

T = TypeVar("T")


@click.group()
@click.option("--config", "config_path", default="feeds.yaml", help="Path to the feed catalog YAML file.")
@click.pass_context
def cli(ctx: click.Context, config_path: str) -> None:
    """Feedstore: multi-tenant content feed store."""
    ctx.ensure_object(dict)
    settings = ctx.obj.get("settings") or Settings()
    ctx.obj["settings"] = settings
    ctx.obj["config_path"] = config_path
    ctx.obj["log"] = setup_logging(settings.log_dir, "feedstore", settings.log_level, store_backend=settings.store_backend)


def _run(ctx: click.Context, op: Callable[[FeedService], Awaitable[T]]) -> T:
    """Run one service operation under the configured deadline."""
    settings: Settings = ctx.obj["settings"]

    async def _main() -> T:
        async with open_service(settings, store=ctx.obj.get("store")) as service:
            return await asyncio.wait_for(op(service), settings.request_timeout)

    try:
        return asyncio.run(_main())
    except FeedStoreError as exc:
        click.echo(f"Error: {exc}", err=True)
        raise SystemExit(exc.exit_code) from exc
    except TimeoutError:
        click.echo(f"Error: operation exceeded {settings.request_timeout}s", err=True)
        raise SystemExit(1) from None


def _echo_json(data: Any) -> None:
    click.echo(to_json(data, indent=2))


@cli.command()
@click.pass_context
def feeds(ctx: click.Context) -> None:
    """List registered feeds and their public format paths."""
    result = _run(ctx, lambda service: service.list_feeds())
    _echo_json({"feeds": result, "total": len(result)})


@cli.command()
@click.pass_context
def status(ctx: click.Context) -> None:
    """Show each feed with its stored item count and bound."""

    async def _status(service: FeedService) -> list[tuple[str, int, int]]:
        rows = []
        for feed_id in await service.list_feed_ids():
            config = await service.get_config(feed_id)
            rows.append((feed_id, await service.ledger.count(feed_id), config.max_items))
        return rows

    rows = _run(ctx, _status)
    click.echo("\n=== Feeds ===")
    for feed_id, count, max_items in rows:
        click.echo(f"  {feed_id}: {count}/{max_items} items")
    if not rows:
        click.echo("  No feeds registered yet. Run 'feedstore create-feed' or 'feedstore sync' first.")
    click.echo()


@cli.command("create-feed")
@click.option("--id", "feed_id", required=True, help="Feed identifier.")
@click.option("--title", required=True)
@click.option("--description", required=True)
@click.option("--site-url", required=True)
@click.option("--language", default=None)
@click.option("--copyright", "copyright_", default=None)
@click.option("--max-items", default=None, type=int, help="Item bound (default 100).")
@click.option("--image", default=None)
@click.option("--favicon", default=None)
@click.pass_context
def create_feed(ctx: click.Context, feed_id: str, title: str, description: str, site_url: str,
                language: str | None, copyright_: str | None, max_items: int | None,
                image: str | None, favicon: str | None) -> None:
    """Register a feed (overwrites an existing config with the same id)."""
    payload = _drop_none({
        "id": feed_id, "title": title, "description": description, "siteUrl": site_url,
        "language": language, "copyright": copyright_, "maxItems": max_items,
        "image": image, "favicon": favicon,
    })

    async def _create(service: FeedService):
        created = await service.create_feed(payload)
        return await service.get_config(created)

    config = _run(ctx, _create)
    _echo_json({"message": "Feed created successfully", "feedId": config.id, "config": config.to_payload()})


@cli.command("config")
@click.argument("feed_id")
@click.pass_context
def show_config(ctx: click.Context, feed_id: str) -> None:
    """Print a feed's configuration."""
    config = _run(ctx, lambda service: service.get_config(feed_id))
    _echo_json(config.to_payload())


@cli.command("set-config")
@click.argument("feed_id")
@click.option("--title", default=None)
@click.option("--description", default=None)
@click.option("--site-url", default=None)
@click.option("--language", default=None)
@click.option("--copyright", "copyright_", default=None)
@click.option("--max-items", default=None, type=int)
@click.option("--image", default=None)
@click.option("--favicon", default=None)
@click.option("--strict", is_flag=True, help="Fail instead of creating a missing feed.")
@click.pass_context
def set_config(ctx: click.Context, feed_id: str, title: str | None, description: str | None,
               site_url: str | None, language: str | None, copyright_: str | None,
               max_items: int | None, image: str | None, favicon: str | None, strict: bool) -> None:
    """Update a feed's configuration, creating the feed unless --strict."""
    partial = _drop_none({
        "title": title, "description": description, "siteUrl": site_url, "language": language,
        "copyright": copyright_, "maxItems": max_items, "image": image, "favicon": favicon,
    })

    async def _update(service: FeedService):
        if strict:
            return await service.update_config(feed_id, partial), False
        return await service.upsert_config(feed_id, partial)

    config, created = _run(ctx, _update)
    message = "Feed created successfully" if created else "Feed configuration updated successfully"
    _echo_json({"message": message, "feedId": feed_id, "config": config.to_payload(), "created": created})


@cli.command("add-item")
@click.argument("feed_id")
@click.option("--link", default=None, help="Item URL (required unless given in --json).")
@click.option("--title", default=None)
@click.option("--description", default=None)
@click.option("--content", default=None)
@click.option("--guid", default=None)
@click.option("--published", default=None, help="Publication date (ISO 8601).")
@click.option("--author", "authors", multiple=True, help="Author name; repeatable.")
@click.option("--category", "categories", multiple=True, help="Category name; repeatable.")
@click.option("--json", "json_payload", default=None, help="Full item payload as JSON; overrides other options.")
@click.pass_context
def add_item(ctx: click.Context, feed_id: str, link: str | None, title: str | None, description: str | None,
             content: str | None, guid: str | None, published: str | None, authors: tuple[str, ...],
             categories: tuple[str, ...], json_payload: str | None) -> None:
    """Append an item to a feed."""
    if json_payload:
        try:
            payload = json.loads(json_payload)
        except json.JSONDecodeError as exc:
            raise click.BadParameter(f"invalid JSON: {exc}", param_hint="--json") from exc
        if not isinstance(payload, dict):
            raise click.BadParameter("item payload must be a JSON object", param_hint="--json")
        if link:
            payload.setdefault("link", link)
    else:
        payload = _drop_none({
            "link": link, "title": title, "description": description, "content": content,
            "guid": guid, "published": published,
            "author": list(authors) or None, "categories": list(categories) or None,
        })

    item = _run(ctx, lambda service: service.add_item(feed_id, payload))
    _echo_json({"message": "Item added successfully", "feedId": feed_id,
                "item": item.model_dump(mode="json", by_alias=True, exclude_none=True)})


@cli.command()
@click.argument("feed_id")
@click.option("--format", "api_format", default=ApiFormat.RAW.value,
              type=click.Choice([f.value for f in ApiFormat]), help="raw strips HTML, html preserves it.")
@click.pass_context
def items(ctx: click.Context, feed_id: str, api_format: str) -> None:
    """List a feed's stored items, newest first."""
    result = _run(ctx, lambda service: service.get_items(feed_id, api_format))
    _echo_json({"feedId": feed_id, "items": result, "total": len(result)})


@cli.command()
@click.argument("feed_id")
@click.pass_context
def clear(ctx: click.Context, feed_id: str) -> None:
    """Delete all items of a feed, keeping its configuration."""
    _run(ctx, lambda service: service.clear_items(feed_id))
    _echo_json({"message": "All items cleared successfully", "feedId": feed_id})


@cli.command()
@click.argument("feed_id")
@click.option("--format", "feed_format", default=FeedFormat.RSS.value,
              type=click.Choice([f.value for f in FeedFormat]))
@click.pass_context
def render(ctx: click.Context, feed_id: str, feed_format: str) -> None:
    """Print a feed document (rss, atom, json or raw)."""
    rendered = _run(ctx, lambda service: service.render_feed(feed_id, feed_format))
    click.echo(rendered.content)


@cli.command("delete-feed")
@click.argument("feed_id")
@click.confirmation_option(prompt="Delete the feed and all of its items?")
@click.pass_context
def delete_feed(ctx: click.Context, feed_id: str) -> None:
    """Delete a feed's configuration and items."""
    _run(ctx, lambda service: service.delete_feed(feed_id))
    _echo_json({"message": "Feed deleted successfully", "feedId": feed_id})


@cli.command()
@click.argument("feed_id")
@click.pass_context
def reconcile(ctx: click.Context, feed_id: str) -> None:
    """Trim a feed to its bound and drop GUIDs with no stored item."""
    removed = _run(ctx, lambda service: service.reconcile(feed_id))
    _echo_json({"feedId": feed_id, "staleGuidsRemoved": removed})


@cli.command()
@click.pass_context
def sync(ctx: click.Context) -> None:
    """Create or update every feed declared in the catalog file."""
    log = ctx.obj["log"]
    catalog = load_catalog(ctx.obj["config_path"])

    async def _sync(service: FeedService) -> tuple[int, int, int]:
        created = updated = failed = 0
        for feed in catalog.feeds:
            try:
                _, was_created = await service.upsert_config(feed.id, feed.to_partial())
            except FeedStoreError:
                log.exception("sync.feed_error", feed_id=feed.id)
                failed += 1
                continue
            if was_created:
                created += 1
            else:
                updated += 1
            log.info("sync.feed_synced", feed_id=feed.id, created=was_created)
        return created, updated, failed

    created, updated, failed = _run(ctx, _sync)
    line = f"Feeds:  {len(catalog.feeds)} declared, {created} created, {updated} updated"
    if failed:
        line += f", {failed} failed"
    click.echo(line)


def _drop_none(data: dict[str, Any]) -> dict[str, Any]:
    return {key: value for key, value in data.items() if value is not None}
