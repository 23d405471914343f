import httpx
import pytest

from catalog.denylist import Denylist
from tests.app_helpers import install_steam_stub, load_app
from tests.steam_fakes import SteamStub, review_payload


@pytest.fixture
def app_module(tmp_path):
    return load_app(tmp_path)


@pytest.fixture
def stub():
    return SteamStub()


@pytest.fixture
def runner_sleep(app_module, stub):
    return install_steam_stub(app_module, stub)


@pytest.fixture
def client(app_module, runner_sleep):
    return app_module.app.test_client()


def _owned(*app_ids):
    return {
        'response': {
            'game_count': len(app_ids),
            'games': [
                {'appid': app_id, 'name': f'Game {app_id}', 'playtime_forever': app_id * 10}
                for app_id in app_ids
            ],
        }
    }


def test_import_single_item(client, stub):
    stub.add_game(400, name='Portal')
    stub.reviews[400] = review_payload(10, 9)

    response = client.post('/api/steam/import?app_id=400')

    assert response.status_code == 200
    assert response.get_json() == {'ok': True, 'app_id': 400, 'slug': 'portal-400'}
    assert list(response.get_json()) == ['ok', 'app_id', 'slug']


def test_import_accepts_appid_alias_and_debug(client, stub):
    stub.add_game(400, name='Portal')

    response = client.get('/api/steam/import?appid=400&debug=1')

    assert response.status_code == 200
    debug = response.get_json()['debug']
    assert debug['title'] == 'Portal'
    assert debug['envelope'] == 'keyed'


def test_import_without_details_is_unprocessable(client):
    response = client.post('/api/steam/import', json={'app_id': 999})

    assert response.status_code == 422
    body = response.get_json()
    assert body['code'] == 'NO_APPDETAILS'
    assert body['reason'] == 'NO_APPDETAILS'
    assert body['ok'] is False


def test_import_server_failure_is_an_error(client, stub):
    stub.queue_details(42, httpx.Response(500))

    response = client.post('/api/steam/import?app_id=42')

    assert response.status_code == 500
    assert 'HTTP 500' in response.get_json()['error']


@pytest.mark.parametrize('query', ['', '?app_id=abc', '?app_id=0', '?app_id=-5'])
def test_import_rejects_invalid_ids(client, query):
    response = client.post(f'/api/steam/import{query}')

    assert response.status_code == 400
    assert 'app_id' in response.get_json()['error']


def test_import_denylisted_app(app_module, stub):
    install_steam_stub(app_module, stub, denylist=Denylist.from_values([400]))
    client = app_module.app.test_client()

    response = client.post('/api/steam/import?app_id=400')

    assert response.status_code == 422
    assert response.get_json()['code'] == 'DENYLISTED_APP'
    assert stub.requests == []


def test_owned_page_requires_api_key(client, monkeypatch):
    monkeypatch.setenv('STEAM_USER_ID', '7656')

    response = client.get('/api/steam/owned')

    assert response.status_code == 500
    assert response.get_json()['error'] == 'Missing STEAM_WEB_API_KEY'


def test_owned_page_requires_steam_id(client, monkeypatch):
    monkeypatch.setenv('STEAM_WEB_API_KEY', 'env-key')

    response = client.get('/api/steam/owned')

    assert response.status_code == 400
    assert 'steam_id' in response.get_json()['error']


def test_owned_page_imports_a_window(client, stub, runner_sleep, monkeypatch):
    monkeypatch.setenv('STEAM_WEB_API_KEY', 'env-key')
    monkeypatch.setenv('STEAM_USER_ID', '7656')
    stub.set_owned(_owned(10, 20, 30))
    stub.add_game(10)
    stub.add_game(20)

    response = client.get('/api/steam/owned?limit=2&concurrency=2&delay=250')

    assert response.status_code == 200
    body = response.get_json()
    assert body['status'] == 'ok'
    assert body['imported'] == [10, 20]
    assert body['next_offset'] == 2
    assert body['has_more'] is True
    assert body['total_owned'] == 3
    assert runner_sleep.delays == [0.25]

    response = client.get('/api/steam/owned?limit=2&offset=2')

    body = response.get_json()
    assert body['skipped'] == [30]
    assert body['skip_breakdown']['NO_APPDETAILS'] == 1
    assert body['has_more'] is False


def test_request_credentials_override_environment(client, stub, monkeypatch):
    monkeypatch.setenv('STEAM_WEB_API_KEY', 'env-key')
    monkeypatch.setenv('STEAM_USER_ID', 'env-id')

    response = client.post('/api/steam/owned', json={'key': 'body-key', 'steam_id': 'body-id'})

    assert response.status_code == 200
    params = stub.requests[0].url.params
    assert params['key'] == 'body-key'
    assert params['steamid'] == 'body-id'


def test_owned_page_clamps_options(client, stub, runner_sleep, monkeypatch):
    monkeypatch.setenv('STEAM_WEB_API_KEY', 'k')
    stub.set_owned(_owned(*range(1, 4)))

    response = client.get(
        '/api/steam/owned?steam_id=1&limit=9999&concurrency=50&delay=999999&backoff=1'
    )

    body = response.get_json()
    assert body['limit'] == 250
    # Three ids, all without details, fit in one group and trigger the back-off.
    assert len(runner_sleep.delays) == 1
    assert 1.0 <= runner_sleep.delays[0] <= 1.5


def test_owned_page_verbose_samples(client, stub, monkeypatch):
    monkeypatch.setenv('STEAM_WEB_API_KEY', 'k')
    stub.set_owned(_owned(1))

    response = client.get('/api/steam/owned?steam_id=1&verbose=1')

    samples = response.get_json()['skip_samples']['NO_APPDETAILS']
    assert samples[0]['app_id'] == 1
    assert samples[0]['code'] == 'NO_APPDETAILS'


def test_owned_list_failure_is_bad_gateway(client, stub, monkeypatch):
    monkeypatch.setenv('STEAM_WEB_API_KEY', 'k')
    stub.set_owned(httpx.Response(401))

    response = client.get('/api/steam/owned?steam_id=1')

    assert response.status_code == 502
    body = response.get_json()
    assert 'owned games' in body['error']
    assert body['upstream_status'] == 401


def test_owned_preview_lists_most_played(client, stub, monkeypatch):
    monkeypatch.setenv('STEAM_WEB_API_KEY', 'k')
    stub.set_owned(_owned(*range(1, 13)))

    response = client.get('/api/steam/owned/preview?steam_id=42')

    body = response.get_json()
    assert body['steam_id'] == '42'
    assert body['total_owned'] == 12
    assert [game['app_id'] for game in body['games']] == list(range(12, 2, -1))


def test_batch_import(client, stub):
    stub.add_game(1)
    stub.add_game(2)

    response = client.post('/api/steam/import/batch', json={'app_ids': [1, 2, 3]})

    assert response.status_code == 200
    body = response.get_json()
    assert body['imported'] == [1, 2]
    assert body['skipped'] == [3]
    assert body['requested'] == 3


def test_batch_import_requires_ids(client):
    response = client.post('/api/steam/import/batch', json={'app_ids': []})

    assert response.status_code == 400


def test_reimport_reports_cutoff(client):
    response = client.post('/api/steam/reimport?days=30')

    assert response.status_code == 200
    body = response.get_json()
    assert body['days'] == 30
    assert body['processed'] == 0
    assert 'cutoff' in body


def test_debug_game_view(client, stub):
    stub.add_game(400, name='Portal')
    stub.reviews[400] = review_payload(4, 3, 'Mostly Positive')
    client.post('/api/steam/import?app_id=400')

    response = client.get('/api/debug/game/portal-400')

    assert response.status_code == 200
    body = response.get_json()
    assert body['title'] == 'Portal'
    assert body['steam_app_id'] == 400
    assert body['release_date'] == '2013-10-13'
    assert body['reviews'] == {'label': 'Mostly Positive', 'count': 4, 'percent': 75}
    assert body['screenshots_count'] == 3
    assert len(body['screenshots_sample']) == 3
    assert body['tag_names'] == ['Action', 'Adventure', 'Single-player']
    assert body['platform_names'] == ['Linux', 'Windows']


def test_debug_game_view_unknown_slug(client):
    response = client.get('/api/debug/game/nope-1')

    assert response.status_code == 404


def test_keytest_reports_without_revealing(client, monkeypatch):
    monkeypatch.setenv('STEAM_WEB_API_KEY', 'ABCDEF123456')
    monkeypatch.setenv('STEAM_USER_ID', '7656')

    response = client.get('/api/steam/keytest?key=ABCDEF123456&steam_id=1')

    body = response.get_json()
    assert body['has_key'] is True
    assert body['key_prefix'] == 'ABCD'
    assert body['key_length'] == 12
    assert body['query_key_matches'] is True
    assert body['query_steam_id_matches'] is False
    assert 'ABCDEF123456' not in response.get_data(as_text=True)
