from datetime import datetime, timedelta

import pytest
from sqlalchemy import func, select

from catalog.repository import CatalogRepository
from catalog.writer import CatalogWriter, DuplicateItemError
from db.schema import catalog_item_tags, catalog_items, screenshots, tags
from steam.models import ScreenshotRecord
from steam.normalize import normalize_item
from tests.steam_fakes import detail_payload


class _Clock:
    def __init__(self):
        self.now = datetime(2024, 1, 1, 12, 0, 0)

    def __call__(self):
        return self.now

    def advance(self, **kwargs):
        self.now += timedelta(**kwargs)


def _count(database, table):
    with database.sa_connection() as conn:
        return conn.execute(select(func.count()).select_from(table)).scalar_one()


def _record(app_id=620, **overrides):
    return normalize_item(app_id, detail_payload(app_id, **overrides))


def test_write_creates_item_with_links_and_screenshots(database):
    writer = CatalogWriter(database)

    result = writer.write(_record(name='Portal 2'))

    assert result.created
    assert result.slug == 'portal-2-620'
    item = CatalogRepository(database).find_by_app_id(620)
    assert item['title'] == 'Portal 2'
    assert item['tags'] == ['Action', 'Adventure', 'Single-player']
    assert item['platforms'] == ['Linux', 'Windows']
    assert [shot['sort_index'] for shot in item['screenshots']] == [0, 1, 2]


def test_rewriting_same_record_is_idempotent(database):
    writer = CatalogWriter(database)
    record = _record()

    first = writer.write(record)
    second = writer.write(record)

    assert second.item_id == first.item_id
    assert not second.created
    assert _count(database, catalog_items) == 1
    assert _count(database, catalog_item_tags) == 3
    assert _count(database, screenshots) == 3


def test_slug_is_stable_when_title_changes(database):
    clock = _Clock()
    writer = CatalogWriter(database, clock=clock)
    writer.write(_record(name='Old Name'))
    clock.advance(days=1)

    result = writer.write(_record(name='New Name'))

    item = CatalogRepository(database).find_by_app_id(620)
    assert result.slug == 'old-name-620'
    assert item['slug'] == 'old-name-620'
    assert item['title'] == 'New Name'
    assert item['created_at'] == datetime(2024, 1, 1, 12, 0, 0)
    assert item['updated_at'] == datetime(2024, 1, 2, 12, 0, 0)


def test_screenshots_are_replaced_not_appended(database):
    writer = CatalogWriter(database)
    record = _record()
    record.screenshots = [ScreenshotRecord(f'https://cdn/{i}.jpg', None, i) for i in range(5)]
    writer.write(record)

    record.screenshots = record.screenshots[:2]
    writer.write(record)

    item = CatalogRepository(database).find_by_app_id(620)
    assert [shot['image_url'] for shot in item['screenshots']] == [
        'https://cdn/0.jpg',
        'https://cdn/1.jpg',
    ]


def test_taxonomy_names_are_canonicalized(database):
    writer = CatalogWriter(database)
    record = _record()
    record.tag_names = ['Action', 'action ', 'ACTION']

    writer.write(record)

    assert _count(database, tags) == 1
    assert _count(database, catalog_item_tags) == 1
    with database.sa_connection() as conn:
        row = conn.execute(select(tags.c.name, tags.c.label)).one()
    assert (row.name, row.label) == ('action', 'Action')


def test_terms_are_shared_between_items(database):
    writer = CatalogWriter(database)
    writer.write(_record(620))
    writer.write(_record(400))

    assert _count(database, tags) == 3
    assert _count(database, catalog_item_tags) == 6
    assert CatalogRepository(database).count_terms('platforms') == 2


def test_ensure_terms_returns_ids_in_first_seen_order(database):
    writer = CatalogWriter(database)
    existing = writer.ensure_terms('tags', ['Indie'])

    ids = writer.ensure_terms('tags', ['RPG', 'indie', 'Rpg', ''])

    assert len(ids) == 2
    assert ids[1] == existing[0]
    assert writer.ensure_terms('tags', []) == []


def test_links_are_never_removed(database):
    writer = CatalogWriter(database)
    writer.write(_record())
    record = _record()
    record.tag_names = ['Action']

    writer.write(record)

    assert _count(database, catalog_item_tags) == 3


def test_concurrent_insert_reports_duplicate(database, monkeypatch):
    writer = CatalogWriter(database)
    writer.write(_record())
    # Simulate another writer inserting the row after our lookup.
    monkeypatch.setattr(writer, '_find_item', lambda conn, app_id: None)

    with pytest.raises(DuplicateItemError) as excinfo:
        writer.write(_record())

    assert excinfo.value.app_id == 620
    assert _count(database, catalog_items) == 1


def test_repository_lists_stale_items_oldest_first(database):
    clock = _Clock()
    writer = CatalogWriter(database, clock=clock)
    writer.write(_record(1))
    clock.advance(days=10)
    writer.write(_record(2))
    clock.advance(days=10)
    writer.write(_record(3))
    repository = CatalogRepository(database)

    stale = repository.stale_app_ids(datetime(2024, 1, 15), limit=10)

    assert stale == [1, 2]
    assert repository.stale_app_ids(datetime(2024, 2, 1), limit=1) == [1]
    assert repository.count_items() == 3
    assert repository.find_by_slug('missing') is None
