import os
import logging
import logging.config
from pathlib import Path

from flask import Flask

import config as app_config
from config import (
    APP_SECRET_KEY,
    DB_CONNECT_TIMEOUT_SECONDS,
    IMPORT_DENYLIST_APP_IDS,
    IMPORT_DENYLIST_SLUGS,
    IMPORT_SELF_BASE_URL,
    LOG_FILE,
    STEAM_COUNTRY,
    STEAM_HTTP_TIMEOUT_SECONDS,
    STEAM_LANGUAGE,
    STEAM_USER_AGENT,
)
from catalog.denylist import Denylist
from catalog.repository import CatalogRepository
from catalog.writer import CatalogWriter
from db import utils as db_utils
from db.schema import create_schema
from imports.importer import SteamImporter
from imports.remote import RemoteImporter
from init import initialize_app
from routes import debug as routes_debug
from routes import steam as routes_steam
from steam.client import SteamClient

logger = logging.getLogger(__name__)

app = Flask(__name__)
app.secret_key = APP_SECRET_KEY
# Responses keep the field order they are built with.
app.json.sort_keys = False


def _determine_log_level(flask_app: Flask) -> int:
    if flask_app.debug:
        return logging.DEBUG
    if os.environ.get('FLASK_DEBUG', '').lower() in {'1', 'true', 'yes', 'on'}:
        return logging.DEBUG
    return logging.INFO


def _configure_logging(flask_app: Flask) -> None:
    log_level = _determine_log_level(flask_app)
    log_path = Path(LOG_FILE)
    try:
        log_path.parent.mkdir(parents=True, exist_ok=True)
    except OSError:
        pass

    for handler in list(flask_app.logger.handlers):
        flask_app.logger.removeHandler(handler)

    logging.config.dictConfig(
        {
            'version': 1,
            'disable_existing_loggers': False,
            'formatters': {
                'standard': {
                    'format': '%(asctime)s %(levelname)s [%(name)s] %(message)s',
                    'datefmt': '%Y-%m-%d %H:%M:%S',
                }
            },
            'handlers': {
                'console': {
                    'class': 'logging.StreamHandler',
                    'formatter': 'standard',
                    'level': log_level,
                    'stream': 'ext://sys.stdout',
                },
                'file': {
                    'class': 'logging.handlers.RotatingFileHandler',
                    'formatter': 'standard',
                    'level': logging.DEBUG,
                    'filename': os.fspath(log_path),
                    'maxBytes': 5 * 1024 * 1024,
                    'backupCount': 5,
                    'encoding': 'utf-8',
                },
            },
            'loggers': {
                # Request lines from httpx would otherwise leak the API key.
                'httpx': {'level': logging.WARNING},
                'httpcore': {'level': logging.WARNING},
            },
            'root': {
                'level': log_level,
                'handlers': ['console', 'file'],
            },
        }
    )

    flask_app.logger = logging.getLogger(flask_app.import_name)
    flask_app.logger.setLevel(log_level)
    logger.setLevel(log_level)


_configure_logging(app)


def _db_connection_factory() -> db_utils.DatabaseEngine:
    return db_utils.build_engine_from_dsn(
        app_config.build_db_dsn(), timeout=DB_CONNECT_TIMEOUT_SECONDS
    )


db = initialize_app(
    connection_factory=_db_connection_factory,
    create_schema=create_schema,
)
db_lock = db_utils.db_lock

DENYLIST = Denylist.from_values(IMPORT_DENYLIST_APP_IDS, IMPORT_DENYLIST_SLUGS)
if DENYLIST:
    logger.info('Import denylist loaded with %d entries', len(DENYLIST))
catalog_writer = CatalogWriter(db, lock=db_lock)
catalog_repository = CatalogRepository(db)

if not app_config.validate_steam_credentials():
    logger.warning('Owned-library imports need a Steam key and user id per request.')


def build_steam_client(*, api_key: str | None = None) -> SteamClient:
    return SteamClient(
        api_key=api_key or app_config.resolve_steam_credentials()[0],
        country=STEAM_COUNTRY,
        language=STEAM_LANGUAGE,
        user_agent=STEAM_USER_AGENT,
        timeout=STEAM_HTTP_TIMEOUT_SECONDS,
    )


def build_importer(client: SteamClient) -> SteamImporter:
    return SteamImporter(client, catalog_writer, denylist=DENYLIST)


def build_remote_importer() -> RemoteImporter:
    return RemoteImporter(IMPORT_SELF_BASE_URL, denylist=DENYLIST)


_blueprints_configured = False


def configure_blueprints(flask_app: Flask) -> None:
    global _blueprints_configured
    if _blueprints_configured:
        return

    routes_steam.configure({
        'client_factory': build_steam_client,
        'importer_factory': build_importer,
        'remote_importer_factory': build_remote_importer if IMPORT_SELF_BASE_URL else None,
        'denylist': DENYLIST,
        'repository': catalog_repository,
        'sleep': None,
        'rng': None,
    })

    routes_debug.configure({
        'repository': catalog_repository,
    })

    if 'steam' not in flask_app.blueprints:
        flask_app.register_blueprint(routes_steam.steam_blueprint)
    if 'debug' not in flask_app.blueprints:
        flask_app.register_blueprint(routes_debug.debug_blueprint)

    _blueprints_configured = True


configure_blueprints(app)


if __name__ == '__main__':
    app.run(debug=True)
