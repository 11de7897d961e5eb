"""YAML feed catalog loading."""

from __future__ import annotations

from pathlib import Path

import yaml
from dotenv import load_dotenv
from pydantic import BaseModel, ConfigDict, Field

from feedstore.models import Author


class CatalogFeed(BaseModel):
    """One feed declared in the catalog. Field names follow the stored camelCase form."""

    model_config = ConfigDict(populate_by_name=True, extra="forbid")

    id: str
    title: str
    description: str
    site_url: str = Field(alias="siteUrl")
    language: str | None = None
    copyright: str | None = None
    max_items: int | None = Field(default=None, alias="maxItems")
    image: str | None = None
    favicon: str | None = None
    author: Author | None = None

    def to_partial(self) -> dict:
        """Config fields to merge into the registry, without the id."""
        return self.model_dump(by_alias=True, exclude={"id"}, exclude_none=True)


class Catalog(BaseModel):
    feeds: list[CatalogFeed] = []


def load_catalog(config_path: str = "feeds.yaml") -> Catalog:
    """Load .env, then the feed catalog. A missing file yields an empty catalog."""
    load_dotenv()

    data: dict = {}
    path = Path(config_path)
    if path.exists():
        with open(path) as f:
            data = yaml.safe_load(f) or {}

    return Catalog(**data)
