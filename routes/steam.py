"""Steam import API routes."""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from typing import Any, AsyncIterator

from flask import Blueprint, jsonify, request

import config as app_config
from imports.importer import ItemImporter
from imports.runner import ImportRunner
from routes.api_utils import (
    BadRequestError,
    ConfigurationError,
    UpstreamServiceError,
    handle_api_errors,
)
from steam.client import SteamAPIError, SteamClient

logger = logging.getLogger(__name__)

steam_blueprint = Blueprint("steam", __name__)

_context: dict[str, Any] = {}


def configure(context: dict[str, Any]) -> None:
    _context.update(context)


def _ctx(key: str) -> Any:
    if key not in _context:
        raise RuntimeError(f"steam routes missing context value: {key}")
    return _context[key]


def _param(name: str, *aliases: str) -> Any:
    payload = request.get_json(silent=True)
    for key in (name, *aliases):
        value = request.args.get(key)
        if value not in (None, ""):
            return value
        if isinstance(payload, dict) and payload.get(key) not in (None, ""):
            return payload[key]
    return None


def _flag(name: str, default: bool = False) -> bool:
    value = _param(name)
    if value is None:
        return default
    if isinstance(value, bool):
        return value
    return str(value).strip().lower() in {"1", "true", "yes", "on"}


def _clamped_int(value: Any, default: int, minimum: int, maximum: int | None = None) -> int:
    try:
        number = int(float(value)) if value not in (None, "") else default
    except (TypeError, ValueError):
        number = default
    number = max(minimum, number)
    if maximum is not None:
        number = min(maximum, number)
    return number


def _require_app_id() -> int:
    raw = _param("app_id", "appid")
    try:
        app_id = int(str(raw).strip())
    except (TypeError, ValueError):
        raise BadRequestError("app_id must be a positive integer")
    if app_id <= 0:
        raise BadRequestError("app_id must be a positive integer")
    return app_id


def _credentials() -> tuple[str, str]:
    api_key, steam_id = app_config.resolve_steam_credentials(
        _param("key"), _param("steam_id", "steamid")
    )
    if not api_key:
        raise ConfigurationError("Missing STEAM_WEB_API_KEY")
    if not steam_id:
        raise BadRequestError("Missing steam_id (pass ?steam_id= or set STEAM_USER_ID)")
    return api_key, steam_id


@asynccontextmanager
async def _import_session(
    api_key: str | None = None, *, allow_remote: bool = True
) -> AsyncIterator[tuple[SteamClient, ItemImporter]]:
    """Yield a Steam client plus the importer batch work should go through."""

    async with _ctx("client_factory")(api_key=api_key) as client:
        remote_factory = _context.get("remote_importer_factory") if allow_remote else None
        if remote_factory is None:
            yield client, _ctx("importer_factory")(client)
            return
        async with remote_factory() as importer:
            yield client, importer


def _runner(importer: ItemImporter) -> ImportRunner:
    return ImportRunner(
        importer,
        denylist=_ctx("denylist"),
        sleep=_context.get("sleep"),
        rng=_context.get("rng"),
    )


@steam_blueprint.route("/api/steam/import", methods=["GET", "POST"])
@handle_api_errors
async def api_import_one():
    """Import a single app id and report its outcome."""

    app_id = _require_app_id()
    debug = _flag("debug")
    async with _import_session(allow_remote=False) as (_, importer):
        outcome = await importer.import_one(app_id, debug=debug)
    return jsonify(outcome.to_dict()), outcome.http_status


@steam_blueprint.route("/api/steam/import/batch", methods=["POST"])
@handle_api_errors
async def api_import_batch():
    payload = request.get_json(silent=True) or {}
    raw_ids = payload.get("app_ids") if isinstance(payload, dict) else None
    if not isinstance(raw_ids, list) or not raw_ids:
        raise BadRequestError("app_ids must be a non-empty list")
    concurrency = _clamped_int(
        payload.get("concurrency"),
        app_config.IMPORT_BATCH_CONCURRENCY_DEFAULT,
        1,
        app_config.IMPORT_CONCURRENCY_MAX,
    )

    async with _import_session() as (_, importer):
        result = await _runner(importer).run_batch(
            raw_ids, concurrency=concurrency, debug=_flag("debug")
        )
    return jsonify(result.to_dict())


@steam_blueprint.route("/api/steam/owned", methods=["GET", "POST"])
@handle_api_errors
async def api_import_owned_page():
    """Import one window of the account's owned games.

    Delays are given in milliseconds; ``next_offset`` is the cursor for the
    following call while ``has_more`` is true.
    """

    api_key, steam_id = _credentials()
    limit = _clamped_int(
        _param("limit"),
        app_config.IMPORT_PAGE_LIMIT_DEFAULT,
        1,
        app_config.IMPORT_PAGE_LIMIT_MAX,
    )
    offset = _clamped_int(_param("offset"), 0, 0)
    concurrency = _clamped_int(
        _param("concurrency"),
        app_config.IMPORT_CONCURRENCY_DEFAULT,
        1,
        app_config.IMPORT_CONCURRENCY_MAX,
    )
    delay_ms = _clamped_int(
        _param("delay"),
        app_config.IMPORT_GROUP_DELAY_MS_DEFAULT,
        0,
        app_config.IMPORT_GROUP_DELAY_MS_MAX,
    )
    backoff_ms = _clamped_int(
        _param("backoff"),
        app_config.IMPORT_BACKOFF_MS_DEFAULT,
        app_config.IMPORT_BACKOFF_MS_MIN,
        app_config.IMPORT_BACKOFF_MS_MAX,
    )
    verbose = _flag("verbose", app_config.IMPORT_VERBOSE_DEFAULT)

    async with _import_session(api_key) as (client, importer):
        try:
            result = await _runner(importer).run_page(
                client,
                steam_id,
                api_key,
                offset=offset,
                limit=limit,
                concurrency=concurrency,
                group_delay=delay_ms / 1000,
                backoff_delay=backoff_ms / 1000,
                verbose=verbose,
            )
        except SteamAPIError as exc:
            raise UpstreamServiceError(
                f"Failed to fetch owned games: {exc}",
                payload={"upstream_status": exc.status},
            ) from exc
    return jsonify(result.to_dict())


@steam_blueprint.route("/api/steam/owned/preview", methods=["GET"])
@handle_api_errors
async def api_owned_preview():
    """Return the ten most played owned games without importing anything."""

    api_key, steam_id = _credentials()
    async with _ctx("client_factory")(api_key=api_key) as client:
        try:
            owned = await client.fetch_owned_games(steam_id, api_key)
        except SteamAPIError as exc:
            raise UpstreamServiceError(f"Failed to fetch owned games: {exc}") from exc

    top = sorted(owned, key=lambda game: game.playtime_minutes or 0, reverse=True)[:10]
    return jsonify(
        {
            "steam_id": steam_id,
            "total_owned": len(owned),
            "games": [game.to_dict() for game in top],
        }
    )


@steam_blueprint.route("/api/steam/reimport", methods=["GET", "POST"])
@handle_api_errors
async def api_reimport_stale():
    days = _clamped_int(_param("days"), app_config.IMPORT_REIMPORT_DAYS_DEFAULT, 1)
    concurrency = _clamped_int(
        _param("concurrency"),
        app_config.IMPORT_REIMPORT_CONCURRENCY_DEFAULT,
        1,
        app_config.IMPORT_CONCURRENCY_MAX,
    )

    async with _import_session() as (_, importer):
        cutoff, result = await _runner(importer).reimport_stale(
            _ctx("repository"),
            days=days,
            concurrency=concurrency,
            max_items=app_config.IMPORT_REIMPORT_MAX_ITEMS,
        )
    payload = result.to_dict()
    payload.update({"days": days, "cutoff": cutoff.isoformat()})
    return jsonify(payload)


@steam_blueprint.route("/api/steam/keytest", methods=["GET"])
@handle_api_errors
def api_steam_keytest():
    """Report which Steam credentials are configured, without revealing them."""

    env_key, env_id = app_config.resolve_steam_credentials()
    query_key = str(request.args.get("key") or "").strip()
    query_id = str(request.args.get("steam_id") or "").strip()
    return jsonify(
        {
            "has_key": bool(env_key),
            "key_prefix": env_key[:4] if env_key else None,
            "key_length": len(env_key),
            "has_steam_id": bool(env_id),
            "steam_id_length": len(env_id),
            "query_key_matches": (query_key == env_key) if query_key else None,
            "query_steam_id_matches": (query_id == env_id) if query_id else None,
        }
    )


__all__ = ["configure", "steam_blueprint"]
