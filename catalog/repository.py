"""Read-side queries over the imported catalog."""

from __future__ import annotations

from datetime import datetime
from typing import Any

from sqlalchemy import func, select

from db import utils as db_utils
from db.schema import TAXONOMIES, catalog_items, screenshots


class CatalogRepository:
    def __init__(self, database: db_utils.DatabaseEngine) -> None:
        self._database = database

    def find_by_slug(self, slug: str) -> dict[str, Any] | None:
        return self._find(catalog_items.c.slug == slug)

    def find_by_app_id(self, app_id: int) -> dict[str, Any] | None:
        return self._find(catalog_items.c.app_id == int(app_id))

    def _find(self, predicate) -> dict[str, Any] | None:
        with self._database.sa_connection() as conn:
            row = conn.execute(select(catalog_items).where(predicate)).mappings().first()
            if row is None:
                return None
            item = dict(row)
            item_id = item["id"]
            item["tags"] = self._term_labels(conn, "tags", item_id)
            item["platforms"] = self._term_labels(conn, "platforms", item_id)
            item["screenshots"] = [
                dict(shot)
                for shot in conn.execute(
                    select(
                        screenshots.c.image_url,
                        screenshots.c.thumbnail_url,
                        screenshots.c.sort_index,
                    )
                    .where(screenshots.c.item_id == item_id)
                    .order_by(screenshots.c.sort_index, screenshots.c.id)
                ).mappings()
            ]
        return item

    def _term_labels(self, conn, taxonomy: str, item_id: int) -> list[str]:
        term_table, link_table = TAXONOMIES[taxonomy]
        query = (
            select(term_table.c.label)
            .join(link_table, link_table.c.term_id == term_table.c.id)
            .where(link_table.c.item_id == item_id)
            .order_by(term_table.c.name)
        )
        return list(conn.execute(query).scalars())

    def stale_app_ids(self, updated_before: datetime, *, limit: int) -> list[int]:
        """Return app ids last updated before ``updated_before``, oldest first."""

        query = (
            select(catalog_items.c.app_id)
            .where(catalog_items.c.updated_at < updated_before)
            .order_by(catalog_items.c.updated_at.asc(), catalog_items.c.id.asc())
            .limit(max(int(limit), 0))
        )
        with self._database.sa_connection() as conn:
            return [int(value) for value in conn.execute(query).scalars()]

    def count_items(self) -> int:
        with self._database.sa_connection() as conn:
            return int(conn.execute(select(func.count()).select_from(catalog_items)).scalar_one())

    def count_terms(self, taxonomy: str) -> int:
        term_table, _ = TAXONOMIES[taxonomy]
        with self._database.sa_connection() as conn:
            return int(conn.execute(select(func.count()).select_from(term_table)).scalar_one())


__all__ = ["CatalogRepository"]
