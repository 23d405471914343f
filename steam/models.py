"""Value objects exchanged between the Steam client, normalizer and importer."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date, datetime
from typing import Any, Mapping

from helpers import _coerce_int, has_text


@dataclass(frozen=True)
class ReviewSummary:
    total_reviews: int
    total_positive: int
    score_label: str | None = None

    @classmethod
    def from_payload(cls, payload: Any) -> "ReviewSummary | None":
        """Build a summary from an ``appreviews`` response, or ``None``."""

        if not isinstance(payload, Mapping):
            return None
        # Steam answers ``success: 1``; some proxies rewrite it to a bool.
        success = payload.get("success")
        if not isinstance(success, (bool, int, float)) or not success:
            return None
        summary = payload.get("query_summary")
        if not isinstance(summary, Mapping):
            return None
        label = summary.get("review_score_desc")
        return cls(
            total_reviews=_coerce_int(summary.get("total_reviews")) or 0,
            total_positive=_coerce_int(summary.get("total_positive")) or 0,
            score_label=str(label).strip() if has_text(label) else None,
        )


@dataclass(frozen=True)
class OwnedGame:
    app_id: int
    name: str | None = None
    playtime_minutes: int | None = None
    last_played: datetime | None = None
    icon_url: str | None = None
    logo_url: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "app_id": self.app_id,
            "name": self.name,
            "playtime_minutes": self.playtime_minutes,
            "last_played": self.last_played.isoformat() if self.last_played else None,
            "icon_url": self.icon_url,
            "logo_url": self.logo_url,
        }


@dataclass(frozen=True)
class ScreenshotRecord:
    image_url: str
    thumbnail_url: str | None
    sort_index: int


@dataclass
class CatalogRecord:
    """Normalized storage fields for one catalog item."""

    app_id: int
    title: str
    slug: str
    summary: str | None = None
    header_image_url: str | None = None
    hero_image_url: str | None = None
    developer: str | None = None
    publisher: str | None = None
    release_date: date | None = None
    metacritic_score: int | None = None
    review_label: str | None = None
    review_count: int | None = None
    review_percent: int | None = None
    tag_names: list[str] = field(default_factory=list)
    platform_names: list[str] = field(default_factory=list)
    screenshots: list[ScreenshotRecord] = field(default_factory=list)

    def item_values(self) -> dict[str, Any]:
        """Return the column values written to ``catalog_items``."""

        return {
            "app_id": self.app_id,
            "title": self.title,
            "slug": self.slug,
            "summary": self.summary,
            "header_image_url": self.header_image_url,
            "hero_image_url": self.hero_image_url,
            "developer": self.developer,
            "publisher": self.publisher,
            "release_date": self.release_date,
            "metacritic_score": self.metacritic_score,
            "review_label": self.review_label,
            "review_count": self.review_count,
            "review_percent": self.review_percent,
        }


__all__ = ["CatalogRecord", "OwnedGame", "ReviewSummary", "ScreenshotRecord"]
