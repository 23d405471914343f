"""Pytest fixtures shared across the test suite."""

import os
import tempfile

os.environ.setdefault(
    'LOG_DIR', os.path.join(tempfile.gettempdir(), 'steam-library-test-logs')
)

import pytest

from db import utils as db_utils
from db.schema import create_schema


@pytest.fixture(autouse=True)
def reset_database_state():
    """Reset the process-wide fallback engine between tests."""

    db_utils.set_fallback_connection(None)
    yield
    db_utils.set_fallback_connection(None)


@pytest.fixture(autouse=True)
def clear_steam_env(monkeypatch):
    """Keep developer credentials out of the tests."""

    for key in ('STEAM_WEB_API_KEY', 'STEAM_USER_ID', 'DATABASE_URL', 'IMPORT_SELF_BASE_URL'):
        monkeypatch.delenv(key, raising=False)


@pytest.fixture
def database(tmp_path):
    engine = db_utils.build_engine_from_dsn(f"sqlite:///{(tmp_path / 'catalog.db').as_posix()}")
    create_schema(engine.engine)
    yield engine
    engine.dispose()
