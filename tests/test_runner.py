import asyncio
import random
from datetime import datetime, timedelta

import pytest

from catalog.denylist import Denylist
from catalog.repository import CatalogRepository
from catalog.writer import CatalogWriter
from imports.outcomes import CODE_NO_APPDETAILS, ImportOutcome, SkipReason
from imports.runner import BackoffPolicy, ImportRunner
from steam.models import OwnedGame
from steam.normalize import normalize_item
from tests.steam_fakes import RecordingSleep, SteamStub, detail_payload


class FakeImporter:
    """Resolve app ids from a script and track concurrency."""

    def __init__(self, *, missing=(), failing=(), raising=()):
        self.missing = set(missing)
        self.failing = set(failing)
        self.raising = set(raising)
        self.calls = []
        self.in_flight = 0
        self.max_in_flight = 0

    async def import_one(self, app_id, *, debug=False):
        self.calls.append(app_id)
        self.in_flight += 1
        self.max_in_flight = max(self.max_in_flight, self.in_flight)
        try:
            await asyncio.sleep(0)
            if app_id in self.raising:
                raise RuntimeError(f'worker crashed on {app_id}')
            if app_id in self.missing:
                return ImportOutcome.skipped(
                    app_id,
                    SkipReason.NO_DETAIL_AVAILABLE,
                    code=CODE_NO_APPDETAILS,
                    message=f'appdetails returned no data for appid {app_id}',
                )
            if app_id in self.failing:
                return ImportOutcome.errored(app_id, 'HTTP 500')
            return ImportOutcome.imported(app_id, slug=f'game-{app_id}')
        finally:
            self.in_flight -= 1


def _runner(importer, *, denylist=Denylist(), sleep=None):
    return ImportRunner(
        importer,
        denylist=denylist,
        sleep=sleep or RecordingSleep(),
        rng=random.Random(3),
    )


def _window(runner, owned, **options):
    return asyncio.run(runner.run_window(owned, **options))


def test_back_off_when_half_the_group_has_no_details():
    importer = FakeImporter(missing={1, 2})
    sleep = RecordingSleep()

    result = _window(
        _runner(importer, sleep=sleep),
        [1, 2, 3, 4],
        limit=4,
        concurrency=4,
        group_delay=0.4,
        backoff_delay=4.0,
    )

    assert result.skip_breakdown['NO_APPDETAILS'] == 2
    assert len(sleep.delays) == 1
    assert 4.0 <= sleep.delays[0] <= 4.5


def test_regular_delay_below_back_off_threshold():
    importer = FakeImporter(missing={1})
    sleep = RecordingSleep()

    _window(
        _runner(importer, sleep=sleep),
        [1, 2, 3, 4],
        limit=4,
        concurrency=4,
        group_delay=0.4,
        backoff_delay=4.0,
    )

    assert sleep.delays == [0.4]


def test_delay_follows_every_group_and_zero_delay_skips_sleeping():
    sleep = RecordingSleep()
    _window(_runner(FakeImporter(), sleep=sleep), list(range(1, 8)), limit=7, concurrency=3)
    assert sleep.delays == [0.4, 0.4, 0.4]

    sleep = RecordingSleep()
    _window(
        _runner(FakeImporter(), sleep=sleep),
        list(range(1, 8)),
        limit=7,
        concurrency=3,
        group_delay=0,
    )
    assert sleep.delays == []


def test_groups_never_exceed_concurrency():
    importer = FakeImporter()

    result = _window(_runner(importer), list(range(1, 11)), limit=10, concurrency=3)

    assert importer.max_in_flight <= 3
    assert importer.calls == list(range(1, 11))
    assert result.imported == list(range(1, 11))


def test_oversized_concurrency_is_capped():
    importer = FakeImporter()
    sleep = RecordingSleep()

    result = _window(
        _runner(importer, sleep=sleep), list(range(1, 31)), limit=30, concurrency=500
    )

    assert importer.max_in_flight <= 10
    assert len(sleep.delays) == 3
    assert result.imported == list(range(1, 31))


def test_pages_walk_the_owned_list_without_gaps():
    owned = [OwnedGame(app_id) for app_id in range(1, 12)]
    seen = []
    offset = 0
    offsets = []

    while True:
        importer = FakeImporter()
        result = _window(_runner(importer), owned, offset=offset, limit=4, concurrency=2)
        seen.extend(importer.calls)
        offsets.append(result.offset)
        assert result.next_offset > result.offset
        if not result.has_more:
            break
        offset = result.next_offset

    assert offsets == [0, 4, 8]
    assert seen == list(range(1, 12))
    assert result.processed == 3


def test_window_past_the_end_is_empty():
    result = _window(_runner(FakeImporter()), [1, 2, 3], offset=10, limit=5)

    assert result.processed == 0
    assert not result.has_more
    assert result.next_offset == 15


def test_denylisted_ids_are_counted_but_not_imported():
    importer = FakeImporter()
    runner = _runner(importer, denylist=Denylist.from_values([2, 4]))

    result = _window(runner, [1, 2, 3, 4, 5, 5, 0], limit=10)

    assert importer.calls == [1, 3, 5]
    payload = result.to_dict()
    assert payload['total_owned'] == 5
    assert payload['eligible_owned'] == 3
    assert payload['denylisted_count'] == 2


def test_verbose_skip_samples_are_capped():
    missing = set(range(1, 13))
    result = _window(
        _runner(FakeImporter(missing=missing)),
        sorted(missing),
        limit=12,
        concurrency=4,
        verbose=True,
    )

    payload = result.to_dict()
    samples = payload['skip_samples']['NO_APPDETAILS']
    assert len(samples) == 8
    assert samples[0] == {
        'app_id': 5,
        'status': 422,
        'code': 'NO_APPDETAILS',
        'message': 'appdetails returned no data for appid 5',
    }
    assert payload['skip_breakdown']['NO_APPDETAILS'] == 12
    assert payload['skipped_count'] == 12


def test_samples_are_omitted_unless_verbose():
    result = _window(_runner(FakeImporter(missing={1})), [1], limit=1)

    assert 'skip_samples' not in result.to_dict()


def test_worker_exceptions_are_recorded_as_errors():
    importer = FakeImporter(raising={2}, failing={3})

    result = _window(_runner(importer), [1, 2, 3, 4], limit=4, concurrency=4)

    assert result.imported == [1, 4]
    assert result.errors == [
        {'app_id': 2, 'status': 500, 'message': 'worker crashed on 2'},
        {'app_id': 3, 'status': 500, 'message': 'HTTP 500'},
    ]
    assert result.processed == 4


def test_page_result_payload_shape():
    result = _window(_runner(FakeImporter(missing={2})), [1, 2, 3], limit=2)

    payload = result.to_dict()

    assert payload['status'] == 'ok'
    assert payload['limit'] == 2
    assert payload['next_offset'] == 2
    assert payload['has_more'] is True
    assert payload['processed'] == 2
    assert payload['imported'] == [1]
    assert payload['skipped'] == [2]
    assert set(payload['skip_breakdown']) == {
        'ALREADY_IMPORTED',
        'NO_APPDETAILS',
        'DENYLISTED',
        'SKIP_OTHER',
    }


def test_run_page_fetches_the_owned_list():
    stub = SteamStub()
    stub.set_owned({'response': {'games': [{'appid': 7}, {'appid': 8}]}})
    importer = FakeImporter()

    async def go():
        async with stub.client() as client:
            return await _runner(importer).run_page(client, '7656', 'key', limit=5)

    result = asyncio.run(go())

    assert importer.calls == [7, 8]
    assert result.total_owned == 2


def test_run_batch_uses_no_delays():
    importer = FakeImporter(missing={3})
    sleep = RecordingSleep()

    result = asyncio.run(
        _runner(importer, sleep=sleep, denylist=Denylist.from_values([4])).run_batch(
            [1, '2', 3, 4, 'x', 1], concurrency=2
        )
    )

    assert sleep.delays == []
    assert importer.calls == [1, 2, 3]
    payload = result.to_dict()
    assert payload['requested'] == 6
    assert payload['total'] == 3
    assert payload['denylisted_count'] == 1
    assert payload['imported'] == [1, 2]
    assert payload['skipped'] == [3]


def test_reimport_stale_targets_old_items(database):
    clock_now = datetime(2024, 6, 1)
    writer = CatalogWriter(database, clock=lambda: clock_now - timedelta(days=120))
    writer.write(normalize_item(1, detail_payload(1)))
    writer = CatalogWriter(database, clock=lambda: clock_now - timedelta(days=10))
    writer.write(normalize_item(2, detail_payload(2)))
    importer = FakeImporter()

    cutoff, result = asyncio.run(
        _runner(importer).reimport_stale(
            CatalogRepository(database), days=90, now=clock_now
        )
    )

    assert cutoff == clock_now - timedelta(days=90)
    assert importer.calls == [1]
    assert result.imported == [1]


def test_back_off_policy_threshold():
    policy = BackoffPolicy(threshold=0.5, jitter=0.0)
    rng = random.Random(1)

    assert policy.should_back_off(1, 2)
    assert not policy.should_back_off(1, 3)
    assert not policy.should_back_off(0, 0)
    assert policy.delay_after_group(
        2, 4, group_delay=0.4, backoff_delay=4.0, rng=rng
    ) == pytest.approx(4.0)
    assert policy.delay_after_group(0, 4, group_delay=-1, backoff_delay=4.0, rng=rng) == 0.0


def test_cancellation_stops_before_the_next_group():
    importer = FakeImporter()

    async def slow_sleep(delay):
        await asyncio.sleep(3600)

    async def go():
        runner = ImportRunner(importer, sleep=slow_sleep, rng=random.Random(3))
        task = asyncio.create_task(
            runner.run_window([1, 2, 3, 4], limit=4, concurrency=2, group_delay=1)
        )
        while len(importer.calls) < 2:
            await asyncio.sleep(0)
        task.cancel()
        with pytest.raises(asyncio.CancelledError):
            await task

    asyncio.run(go())

    assert importer.calls == [1, 2]
