"""Single-item import: fetch, normalize and store one Steam app."""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Protocol

from catalog.denylist import EMPTY_DENYLIST, Denylist
from catalog.writer import CatalogWriter, DuplicateItemError
from imports.outcomes import (
    CODE_DENYLISTED_APP,
    CODE_DENYLISTED_SLUG,
    CODE_DUPLICATE_APP,
    CODE_NO_APPDETAILS,
    ImportOutcome,
    SkipReason,
)
from steam.client import SteamClient, SteamUnavailableError
from steam.normalize import normalize_item

logger = logging.getLogger(__name__)


class ItemImporter(Protocol):
    async def import_one(self, app_id: int, *, debug: bool = False) -> ImportOutcome:
        ...


class SteamImporter:
    """Import Steam apps into the catalog in-process.

    The denylist is checked by id before any request is made and by slug once
    the title is known. Every failure is converted into an
    :class:`~imports.outcomes.ImportOutcome`; only cancellation propagates.
    """

    def __init__(
        self,
        client: SteamClient,
        writer: CatalogWriter,
        *,
        denylist: Denylist = EMPTY_DENYLIST,
    ) -> None:
        self._client = client
        self._writer = writer
        self._denylist = denylist

    async def import_one(self, app_id: int, *, debug: bool = False) -> ImportOutcome:
        try:
            return await self._import(int(app_id), debug=debug)
        except Exception as exc:
            logger.exception("Unexpected failure importing appid %s", app_id)
            return ImportOutcome.errored(int(app_id), str(exc) or exc.__class__.__name__)

    async def _import(self, app_id: int, *, debug: bool) -> ImportOutcome:
        if self._denylist.has_app_id(app_id):
            return ImportOutcome.skipped(
                app_id,
                SkipReason.DENYLISTED,
                code=CODE_DENYLISTED_APP,
                message=f"appid {app_id} is denylisted",
            )

        try:
            detail = await self._client.fetch_app_details(app_id)
        except SteamUnavailableError as exc:
            logger.warning("appdetails unavailable for %s: %s", app_id, exc)
            return ImportOutcome.errored(app_id, str(exc), http_status=exc.status or 502)

        if not detail.success or detail.data is None:
            return ImportOutcome.skipped(
                app_id,
                SkipReason.NO_DETAIL_AVAILABLE,
                code=CODE_NO_APPDETAILS,
                message=f"appdetails returned no data for appid {app_id}",
                debug=self._detail_debug(detail) if debug else None,
            )

        reviews = await self._client.fetch_review_summary(app_id)
        record = normalize_item(app_id, detail.data, reviews)

        if self._denylist.has_slug(record.slug):
            return ImportOutcome.skipped(
                app_id,
                SkipReason.DENYLISTED,
                code=CODE_DENYLISTED_SLUG,
                message=f"slug {record.slug} is denylisted",
                slug=record.slug,
            )

        try:
            result = await asyncio.to_thread(self._writer.write, record)
        except DuplicateItemError as exc:
            return ImportOutcome.skipped(
                app_id,
                SkipReason.ALREADY_IMPORTED,
                code=CODE_DUPLICATE_APP,
                message=str(exc),
                slug=record.slug,
            )

        debug_payload: dict[str, Any] | None = None
        if debug:
            debug_payload = {
                "title": record.title,
                "steam_app_id": app_id,
                "header_image_url": record.header_image_url,
                "screenshots_count": len(record.screenshots),
                "screenshots_sample": [shot.image_url for shot in record.screenshots[:4]],
                "tag_names": list(record.tag_names),
                "platform_names": list(record.platform_names),
                "reviews": {
                    "label": record.review_label,
                    "count": record.review_count,
                    "percent": record.review_percent,
                },
                "created": result.created,
                **self._detail_debug(detail),
            }
        return ImportOutcome.imported(app_id, slug=result.slug, debug=debug_payload)

    @staticmethod
    def _detail_debug(detail) -> dict[str, Any]:
        return {
            "envelope": detail.shape.value,
            "upstream_status": detail.status,
            "attempts": detail.attempts,
        }


__all__ = ["ItemImporter", "SteamImporter"]
