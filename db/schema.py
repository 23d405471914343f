"""Table definitions for the imported Steam catalog."""

from __future__ import annotations

from sqlalchemy import (
    BigInteger,
    Column,
    Date,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    MetaData,
    String,
    Table,
    Text,
)
from sqlalchemy.engine import Engine

metadata = MetaData()

catalog_items = Table(
    "catalog_items",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("app_id", BigInteger, nullable=False, unique=True),
    Column("title", String(512), nullable=False),
    Column("slug", String(600), nullable=False, unique=True),
    Column("summary", Text),
    Column("header_image_url", String(1024)),
    Column("hero_image_url", String(1024)),
    Column("developer", String(255)),
    Column("publisher", String(255)),
    Column("release_date", Date),
    Column("metacritic_score", Integer),
    Column("review_label", String(64)),
    Column("review_count", Integer),
    Column("review_percent", Integer),
    Column("created_at", DateTime, nullable=False),
    Column("updated_at", DateTime, nullable=False, index=True),
)


def _term_table(name: str) -> Table:
    return Table(
        name,
        metadata,
        Column("id", Integer, primary_key=True, autoincrement=True),
        Column("name", String(255), nullable=False, unique=True),
        Column("label", String(255), nullable=False),
    )


def _link_table(name: str, term_table: Table) -> Table:
    return Table(
        name,
        metadata,
        Column(
            "item_id",
            Integer,
            ForeignKey("catalog_items.id", ondelete="CASCADE"),
            primary_key=True,
        ),
        Column(
            "term_id",
            Integer,
            ForeignKey(f"{term_table.name}.id", ondelete="CASCADE"),
            primary_key=True,
        ),
    )


tags = _term_table("tags")
platforms = _term_table("platforms")
catalog_item_tags = _link_table("catalog_item_tags", tags)
catalog_item_platforms = _link_table("catalog_item_platforms", platforms)

screenshots = Table(
    "screenshots",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column(
        "item_id",
        Integer,
        ForeignKey("catalog_items.id", ondelete="CASCADE"),
        nullable=False,
    ),
    Column("image_url", String(1024), nullable=False),
    Column("thumbnail_url", String(1024)),
    Column("sort_index", Integer, nullable=False),
    Index("ix_screenshots_item_sort", "item_id", "sort_index"),
)

# (term table, link table) pairs keyed by the taxonomy they store.
TAXONOMIES: dict[str, tuple[Table, Table]] = {
    "tags": (tags, catalog_item_tags),
    "platforms": (platforms, catalog_item_platforms),
}


def create_schema(engine: Engine) -> None:
    """Create any missing catalog tables."""

    metadata.create_all(engine, checkfirst=True)


__all__ = [
    "TAXONOMIES",
    "catalog_item_platforms",
    "catalog_item_tags",
    "catalog_items",
    "create_schema",
    "metadata",
    "platforms",
    "screenshots",
    "tags",
]
