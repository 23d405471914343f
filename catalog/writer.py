"""Idempotent persistence of normalized catalog records."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime
from threading import Lock
from typing import Callable, Iterable

from sqlalchemy import Table, delete as sa_delete, insert, select, update as sa_update
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.engine import Connection
from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from db import utils as db_utils
from db.schema import TAXONOMIES, catalog_items, screenshots
from helpers import _display_name, canonical_name, utcnow
from steam.models import CatalogRecord, ScreenshotRecord

logger = logging.getLogger(__name__)


class CatalogWriteError(RuntimeError):
    """Base class for catalog persistence failures."""


class DuplicateItemError(CatalogWriteError):
    """Raised when another writer created the same app id concurrently."""

    def __init__(self, app_id: int, message: str | None = None) -> None:
        super().__init__(message or f"appid {app_id} already imported")
        self.app_id = app_id


@dataclass(frozen=True)
class WriteResult:
    item_id: int
    slug: str
    created: bool


class CatalogWriter:
    """Create-or-update catalog items with their taxonomy links and screenshots.

    Taxonomy terms are created up front, outside the item transaction, since
    creating a term is globally idempotent. The item row, its links and its
    screenshots are then written inside one transaction. Writes from this
    process are serialized by ``lock``.
    """

    def __init__(
        self,
        database: db_utils.DatabaseEngine,
        *,
        lock: Lock | None = None,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self._database = database
        self._lock = lock if lock is not None else db_utils.db_lock
        self._clock = clock

    def ensure_terms(self, taxonomy: str, names: Iterable[str]) -> list[int]:
        """Return term ids for ``names`` in first-seen order, creating missing ones."""

        term_table, _ = TAXONOMIES[taxonomy]
        labels: dict[str, str] = {}
        for name in names:
            key = canonical_name(name)
            if key and key not in labels:
                labels[key] = _display_name(name)
        if not labels:
            return []

        with self._database.transaction() as conn:
            self._insert_missing_terms(conn, term_table, labels)
            rows = conn.execute(
                select(term_table.c.id, term_table.c.name).where(
                    term_table.c.name.in_(list(labels))
                )
            ).all()
        ids_by_name = {row.name: row.id for row in rows}
        return [ids_by_name[key] for key in labels if key in ids_by_name]

    def _insert_missing_terms(
        self, conn: Connection, table: Table, labels: dict[str, str]
    ) -> None:
        rows = [{"name": key, "label": label} for key, label in labels.items()]
        dialect = self._database.dialect_name
        if dialect == "sqlite":
            conn.execute(
                sqlite_insert(table).values(rows).on_conflict_do_nothing(
                    index_elements=[table.c.name]
                )
            )
            return
        if dialect == "postgresql":
            conn.execute(
                pg_insert(table).values(rows).on_conflict_do_nothing(
                    index_elements=[table.c.name]
                )
            )
            return
        if dialect in {"mysql", "mariadb"}:
            conn.execute(insert(table).prefix_with("IGNORE"), rows)
            return

        existing = set(
            conn.execute(
                select(table.c.name).where(table.c.name.in_(list(labels)))
            ).scalars()
        )
        missing = [row for row in rows if row["name"] not in existing]
        if missing:
            conn.execute(insert(table), missing)

    def write(self, record: CatalogRecord) -> WriteResult:
        """Persist ``record``; the stored slug never changes after creation."""

        with self._lock:
            try:
                tag_ids = self.ensure_terms("tags", record.tag_names)
                platform_ids = self.ensure_terms("platforms", record.platform_names)
                with self._database.transaction() as conn:
                    result = self._upsert_item(conn, record)
                    self._link_terms(conn, "tags", result.item_id, tag_ids)
                    self._link_terms(conn, "platforms", result.item_id, platform_ids)
                    self._replace_screenshots(conn, result.item_id, record.screenshots)
            except DuplicateItemError:
                raise
            except SQLAlchemyError as exc:
                raise CatalogWriteError(
                    f"failed to store appid {record.app_id}: {exc}"
                ) from exc

        logger.debug(
            "%s appid %s as %s",
            "Created" if result.created else "Updated",
            record.app_id,
            result.slug,
        )
        return result

    def _upsert_item(self, conn: Connection, record: CatalogRecord) -> WriteResult:
        now = self._clock()
        values = record.item_values()
        existing = self._find_item(conn, record.app_id)

        if existing is not None:
            values.pop("slug")
            values["updated_at"] = now
            conn.execute(
                sa_update(catalog_items)
                .where(catalog_items.c.id == existing.id)
                .values(**values)
            )
            return WriteResult(existing.id, existing.slug, created=False)

        values["created_at"] = now
        values["updated_at"] = now
        try:
            inserted = conn.execute(insert(catalog_items).values(**values))
        except IntegrityError as exc:
            raise DuplicateItemError(record.app_id) from exc
        item_id = inserted.inserted_primary_key[0]
        return WriteResult(int(item_id), record.slug, created=True)

    def _find_item(self, conn: Connection, app_id: int):
        return conn.execute(
            select(catalog_items.c.id, catalog_items.c.slug).where(
                catalog_items.c.app_id == app_id
            )
        ).first()

    def _link_terms(
        self, conn: Connection, taxonomy: str, item_id: int, term_ids: Iterable[int]
    ) -> None:
        _, link_table = TAXONOMIES[taxonomy]
        existing = set(
            conn.execute(
                select(link_table.c.term_id).where(link_table.c.item_id == item_id)
            ).scalars()
        )
        rows = []
        for term_id in term_ids:
            if term_id in existing:
                continue
            existing.add(term_id)
            rows.append({"item_id": item_id, "term_id": term_id})
        if rows:
            conn.execute(insert(link_table), rows)

    def _replace_screenshots(
        self, conn: Connection, item_id: int, entries: Iterable[ScreenshotRecord]
    ) -> None:
        conn.execute(sa_delete(screenshots).where(screenshots.c.item_id == item_id))
        rows = [
            {
                "item_id": item_id,
                "image_url": entry.image_url,
                "thumbnail_url": entry.thumbnail_url,
                "sort_index": entry.sort_index,
            }
            for entry in entries
        ]
        if rows:
            conn.execute(insert(screenshots), rows)


__all__ = ["CatalogWriteError", "CatalogWriter", "DuplicateItemError", "WriteResult"]
