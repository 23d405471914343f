"""Pure mapping from Steam payloads to catalog storage records."""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, Iterable, Mapping

from helpers import (
    _coerce_int,
    _dedupe_preserve_order,
    _display_name,
    has_text,
    parse_release_date,
    slugify,
)
from steam.models import CatalogRecord, OwnedGame, ReviewSummary, ScreenshotRecord


__all__ = [
    "PLATFORM_LABELS",
    "build_slug",
    "extract_platform_names",
    "extract_tag_names",
    "normalize_item",
    "normalize_owned_games",
    "normalize_screenshots",
    "review_percent",
]


PLATFORM_LABELS: tuple[tuple[str, str], ...] = (
    ("windows", "Windows"),
    ("mac", "Mac"),
    ("linux", "Linux"),
)

COMMUNITY_MEDIA_URL = "https://media.steampowered.com/steamcommunity/public/images/apps"


def _text_or_none(value: Any) -> str | None:
    if not has_text(value):
        return None
    return str(value).strip()


def _first_name(values: Any) -> str | None:
    if isinstance(values, str):
        values = [values]
    if not isinstance(values, Iterable):
        return None
    for value in values:
        text = _display_name(value)
        if text:
            return text
    return None


def _descriptions(entries: Any) -> list[str]:
    names: list[str] = []
    if not isinstance(entries, list):
        return names
    for entry in entries:
        if isinstance(entry, Mapping):
            value = entry.get("description")
        else:
            value = entry
        if has_text(value):
            names.append(str(value))
    return names


def build_slug(title: str, app_id: int) -> str:
    """Return ``<slugified title>-<app id>``, unique per app id."""

    base = slugify(title) or "item"
    return f"{base}-{app_id}"


def review_percent(reviews: ReviewSummary | None) -> int | None:
    if reviews is None or reviews.total_reviews <= 0:
        return None
    return int(round(100 * reviews.total_positive / reviews.total_reviews))


def extract_tag_names(detail: Mapping[str, Any] | None) -> list[str]:
    """Return genre then category names, deduplicated case-insensitively."""

    if not isinstance(detail, Mapping):
        return []
    return _dedupe_preserve_order(
        _descriptions(detail.get("genres")) + _descriptions(detail.get("categories"))
    )


def extract_platform_names(detail: Mapping[str, Any] | None) -> list[str]:
    if not isinstance(detail, Mapping):
        return []
    flags = detail.get("platforms")
    if not isinstance(flags, Mapping):
        return []
    return [label for key, label in PLATFORM_LABELS if flags.get(key)]


def normalize_screenshots(detail: Mapping[str, Any] | None) -> list[ScreenshotRecord]:
    """Map upstream screenshots to ordered records, dropping entries without URLs.

    ``sort_index`` is the entry's position in the upstream list, so gaps are
    possible when entries are dropped.
    """

    if not isinstance(detail, Mapping):
        return []
    entries = detail.get("screenshots")
    if not isinstance(entries, list):
        return []

    screenshots: list[ScreenshotRecord] = []
    for position, entry in enumerate(entries):
        if not isinstance(entry, Mapping):
            continue
        full = _text_or_none(entry.get("path_full"))
        thumbnail = _text_or_none(entry.get("path_thumbnail"))
        image_url = full or thumbnail
        if not image_url:
            continue
        screenshots.append(ScreenshotRecord(image_url, thumbnail, position))
    return screenshots


def normalize_item(
    app_id: int,
    detail: Mapping[str, Any] | None,
    reviews: ReviewSummary | None = None,
) -> CatalogRecord:
    """Return the catalog record for ``app_id`` built from its detail payload."""

    detail = detail if isinstance(detail, Mapping) else {}
    title = _display_name(detail.get("name")) or f"item-{app_id}"

    release = detail.get("release_date")
    release_text = release.get("date") if isinstance(release, Mapping) else None

    metacritic = detail.get("metacritic")
    score = _coerce_int(metacritic.get("score")) if isinstance(metacritic, Mapping) else None

    return CatalogRecord(
        app_id=int(app_id),
        title=title,
        slug=build_slug(title, int(app_id)),
        summary=_text_or_none(detail.get("short_description")),
        header_image_url=_text_or_none(detail.get("header_image")),
        hero_image_url=_text_or_none(detail.get("capsule_imagev5")),
        developer=_first_name(detail.get("developers")),
        publisher=_first_name(detail.get("publishers")),
        release_date=parse_release_date(release_text),
        metacritic_score=score,
        review_label=reviews.score_label if reviews else None,
        review_count=(reviews.total_reviews or None) if reviews else None,
        review_percent=review_percent(reviews),
        tag_names=extract_tag_names(detail),
        platform_names=extract_platform_names(detail),
        screenshots=normalize_screenshots(detail),
    )


def _media_url(app_id: int, image_hash: Any) -> str | None:
    if not has_text(image_hash):
        return None
    return f"{COMMUNITY_MEDIA_URL}/{app_id}/{str(image_hash).strip()}.jpg"


def _owned_entries(payload: Any) -> list[Any]:
    if isinstance(payload, list):
        return payload
    if not isinstance(payload, Mapping):
        return []
    inner = payload.get("response", payload)
    if isinstance(inner, list):
        return inner
    if not isinstance(inner, Mapping):
        return []
    games = inner.get("games")
    return games if isinstance(games, list) else []


def normalize_owned_games(payload: Any) -> list[OwnedGame]:
    """Flatten a ``GetOwnedGames`` response into :class:`OwnedGame` entries.

    Accepts the documented ``{"response": {"games": [...]}}`` shape as well
    as bare lists of ids or objects. Private profiles answer with an empty
    ``response`` and yield an empty list. Duplicate ids keep their first
    occurrence.
    """

    owned: list[OwnedGame] = []
    seen: set[int] = set()
    for entry in _owned_entries(payload):
        if isinstance(entry, Mapping):
            raw_id = entry.get("appid", entry.get("app_id", entry.get("id")))
        else:
            raw_id = entry
        app_id = _coerce_int(raw_id)
        if app_id is None or app_id <= 0 or app_id in seen:
            continue
        seen.add(app_id)
        if not isinstance(entry, Mapping):
            owned.append(OwnedGame(app_id))
            continue

        last_played = None
        epoch = _coerce_int(entry.get("rtime_last_played"))
        if epoch:
            try:
                last_played = datetime.fromtimestamp(epoch, tz=timezone.utc)
            except (OverflowError, OSError, ValueError):
                last_played = None
        owned.append(
            OwnedGame(
                app_id=app_id,
                name=_text_or_none(entry.get("name")),
                playtime_minutes=_coerce_int(entry.get("playtime_forever")),
                last_played=last_played,
                icon_url=_media_url(app_id, entry.get("img_icon_url")),
                logo_url=_media_url(app_id, entry.get("img_logo_url")),
            )
        )
    return owned
