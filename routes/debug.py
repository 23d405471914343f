"""Diagnostics routes for inspecting imported catalog items."""

from __future__ import annotations

from typing import Any

from flask import Blueprint, jsonify

from routes.api_utils import NotFoundError, handle_api_errors

debug_blueprint = Blueprint("debug", __name__)

_context: dict[str, Any] = {}


def configure(context: dict[str, Any]) -> None:
    _context.update(context)


def _ctx(key: str) -> Any:
    if key not in _context:
        raise RuntimeError(f"debug routes missing context value: {key}")
    return _context[key]


@debug_blueprint.route("/api/debug/game/<slug>", methods=["GET"])
@handle_api_errors
def api_debug_game(slug: str):
    item = _ctx("repository").find_by_slug(slug)
    if item is None:
        raise NotFoundError(f"No imported game with slug {slug!r}")

    screenshots = item["screenshots"]
    release_date = item.get("release_date")
    updated_at = item.get("updated_at")
    return jsonify(
        {
            "title": item["title"],
            "slug": item["slug"],
            "steam_app_id": item["app_id"],
            "header_image_url": item.get("header_image_url"),
            "release_date": release_date.isoformat() if release_date else None,
            "metacritic_score": item.get("metacritic_score"),
            "reviews": {
                "label": item.get("review_label"),
                "count": item.get("review_count"),
                "percent": item.get("review_percent"),
            },
            "screenshots_count": len(screenshots),
            "screenshots_sample": screenshots[:4],
            "tag_names": item["tags"],
            "platform_names": item["platforms"],
            "updated_at": updated_at.isoformat() if updated_at else None,
        }
    )


__all__ = ["configure", "debug_blueprint"]
