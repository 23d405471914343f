"""Shared testing helpers for loading the Flask app without live Steam calls."""

from __future__ import annotations

import importlib.util
import os
import random
import uuid
from pathlib import Path

from catalog.denylist import Denylist
from imports.importer import SteamImporter
from tests.steam_fakes import RecordingSleep, SteamStub

APP_PATH = Path(__file__).resolve().parents[1] / "app.py"


def load_app(tmp_path: Path) -> object:
    """Import the application module against a fresh SQLite database."""

    module_name = f"app_{uuid.uuid4().hex}"
    spec = importlib.util.spec_from_file_location(module_name, APP_PATH)
    if spec is None or spec.loader is None:
        raise RuntimeError("Unable to load app module")
    module = importlib.util.module_from_spec(spec)

    previous = os.environ.get("DATABASE_URL")
    os.environ["DATABASE_URL"] = f"sqlite:///{(tmp_path / 'app.db').as_posix()}"
    try:
        spec.loader.exec_module(module)
    finally:
        if previous is None:
            os.environ.pop("DATABASE_URL", None)
        else:
            os.environ["DATABASE_URL"] = previous

    module.app.config['TESTING'] = True
    module.app.testing = True
    return module


def install_steam_stub(
    module, stub: SteamStub, *, denylist: Denylist | None = None
) -> RecordingSleep:
    """Route the app's Steam traffic to ``stub`` and record runner sleeps."""

    sleep = RecordingSleep()
    active_denylist = denylist if denylist is not None else module.DENYLIST

    def _client_factory(*, api_key=None):
        return stub.client(api_key=api_key)

    def _importer_factory(client):
        return SteamImporter(client, module.catalog_writer, denylist=active_denylist)

    module.routes_steam._context.update({
        'client_factory': _client_factory,
        'importer_factory': _importer_factory,
        'remote_importer_factory': None,
        'denylist': active_denylist,
        'sleep': sleep,
        'rng': random.Random(11),
    })
    return sleep
