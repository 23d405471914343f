import asyncio

import httpx
import pytest

from catalog.denylist import Denylist
from imports.outcomes import SkipReason
from imports.remote import RemoteImporter
from tests.steam_fakes import RecordingSleep, fresh_response


def _import(response, app_id=10, *, denylist=Denylist(), calls=None):
    def handler(request):
        if calls is not None:
            calls.append(request)
        if isinstance(response, Exception):
            raise response
        return fresh_response(response)

    async def go():
        importer = RemoteImporter(
            'http://worker.test/',
            denylist=denylist,
            transport=httpx.MockTransport(handler),
            sleep=RecordingSleep(),
        )
        async with importer:
            return await importer.import_one(app_id)

    return asyncio.run(go())


def test_posts_to_the_import_endpoint():
    calls = []

    outcome = _import(httpx.Response(200, json={'ok': True, 'slug': 'x-10'}), calls=calls)

    assert outcome.is_imported
    assert outcome.slug == 'x-10'
    assert calls[0].method == 'POST'
    assert calls[0].url.path == '/api/steam/import'
    assert calls[0].url.params['app_id'] == '10'


@pytest.mark.parametrize(
    'response, reason',
    [
        (httpx.Response(422, json={'code': 'NO_APPDETAILS'}), SkipReason.NO_DETAIL_AVAILABLE),
        (httpx.Response(409, json={'error': 'appid 10 already imported'}), SkipReason.ALREADY_IMPORTED),
        (httpx.Response(422, content=b''), SkipReason.OTHER),
        (httpx.Response(500, text='Appdetails returned no data'), SkipReason.NO_DETAIL_AVAILABLE),
    ],
)
def test_skip_responses(response, reason):
    outcome = _import(response)

    assert outcome.is_skipped
    assert outcome.reason is reason


def test_server_errors_are_retried_then_reported():
    calls = []

    outcome = _import(httpx.Response(500, text='boom'), calls=calls)

    assert outcome.is_errored
    assert outcome.message == 'boom'
    assert len(calls) == 3


def test_transport_failure_is_an_error():
    outcome = _import(httpx.ConnectError('refused'))

    assert outcome.is_errored
    assert 'refused' in outcome.message


def test_denylisted_ids_are_not_sent():
    calls = []

    outcome = _import(
        httpx.Response(200, json={}), denylist=Denylist.from_values([10]), calls=calls
    )

    assert outcome.reason is SkipReason.DENYLISTED
    assert calls == []
