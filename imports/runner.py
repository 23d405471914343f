"""Bounded-concurrency batch import over a Steam owned-games list."""

from __future__ import annotations

import asyncio
import logging
import random
from collections import deque
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any, Iterable, Sequence

from catalog.denylist import EMPTY_DENYLIST, Denylist
from catalog.repository import CatalogRepository
from config import IMPORT_CONCURRENCY_MAX
from helpers import _coerce_int, utcnow
from imports.importer import ItemImporter
from imports.outcomes import ImportOutcome, SkipReason
from steam.client import Sleep, SteamClient
from steam.models import OwnedGame

logger = logging.getLogger(__name__)


SKIP_SAMPLE_LIMIT = 8


@dataclass(frozen=True)
class BackoffPolicy:
    """Decide how long to pause after a group of imports.

    Steam tends to answer rate-limited ``appdetails`` calls with an empty
    payload rather than an error, so a group where at least ``threshold`` of
    the imports found no details triggers the longer back-off delay plus a
    random jitter of up to ``jitter`` seconds.
    """

    threshold: float = 0.5
    jitter: float = 0.5

    def should_back_off(self, no_detail_count: int, group_size: int) -> bool:
        if group_size <= 0:
            return False
        return no_detail_count / group_size >= self.threshold

    def delay_after_group(
        self,
        no_detail_count: int,
        group_size: int,
        *,
        group_delay: float,
        backoff_delay: float,
        rng: random.Random,
    ) -> float:
        if self.should_back_off(no_detail_count, group_size):
            return max(backoff_delay, 0.0) + rng.uniform(0.0, self.jitter)
        return max(group_delay, 0.0)


@dataclass
class _Tally:
    """Accumulates per-item outcomes for one page or batch."""

    verbose: bool = False
    imported: list[int] = field(default_factory=list)
    skipped: list[int] = field(default_factory=list)
    errors: list[dict[str, Any]] = field(default_factory=list)
    skip_breakdown: dict[str, int] = field(
        default_factory=lambda: {reason.value: 0 for reason in SkipReason}
    )
    skip_samples: dict[str, deque] = field(
        default_factory=lambda: {
            reason.value: deque(maxlen=SKIP_SAMPLE_LIMIT) for reason in SkipReason
        }
    )

    @property
    def processed(self) -> int:
        return len(self.imported) + len(self.skipped) + len(self.errors)

    def record(self, outcome: ImportOutcome) -> None:
        if outcome.is_imported:
            self.imported.append(outcome.app_id)
            return
        if outcome.is_skipped:
            reason = (outcome.reason or SkipReason.OTHER).value
            self.skipped.append(outcome.app_id)
            self.skip_breakdown[reason] += 1
            if self.verbose:
                self.skip_samples[reason].append(
                    {
                        "app_id": outcome.app_id,
                        "status": outcome.http_status,
                        "code": outcome.code,
                        "message": outcome.message,
                    }
                )
            logger.debug("Skipped appid %s (%s): %s", outcome.app_id, reason, outcome.message)
            return
        self.errors.append(
            {
                "app_id": outcome.app_id,
                "status": outcome.http_status,
                "message": outcome.message,
            }
        )
        logger.warning(
            "Import of appid %s failed (%s): %s",
            outcome.app_id,
            outcome.http_status,
            outcome.message,
        )

    def to_dict(self) -> dict[str, Any]:
        payload: dict[str, Any] = {
            "processed": self.processed,
            "imported_count": len(self.imported),
            "skipped_count": len(self.skipped),
            "error_count": len(self.errors),
            "imported": list(self.imported),
            "skipped": list(self.skipped),
            "errors": list(self.errors),
            "skip_breakdown": dict(self.skip_breakdown),
        }
        if self.verbose:
            payload["skip_samples"] = {
                reason: list(samples) for reason, samples in self.skip_samples.items()
            }
        return payload


@dataclass
class PageResult:
    limit: int
    offset: int
    next_offset: int
    has_more: bool
    total_owned: int
    eligible_owned: int
    denylisted_count: int
    tally: _Tally

    @property
    def processed(self) -> int:
        return self.tally.processed

    @property
    def imported(self) -> list[int]:
        return self.tally.imported

    @property
    def skipped(self) -> list[int]:
        return self.tally.skipped

    @property
    def errors(self) -> list[dict[str, Any]]:
        return self.tally.errors

    @property
    def skip_breakdown(self) -> dict[str, int]:
        return self.tally.skip_breakdown

    def to_dict(self) -> dict[str, Any]:
        payload: dict[str, Any] = {
            "status": "ok",
            "limit": self.limit,
            "offset": self.offset,
            "next_offset": self.next_offset,
            "has_more": self.has_more,
            "total_owned": self.total_owned,
            "eligible_owned": self.eligible_owned,
            "denylisted_count": self.denylisted_count,
        }
        payload.update(self.tally.to_dict())
        return payload


@dataclass
class BatchResult:
    requested: int
    total: int
    denylisted_count: int
    tally: _Tally

    @property
    def imported(self) -> list[int]:
        return self.tally.imported

    @property
    def skipped(self) -> list[int]:
        return self.tally.skipped

    @property
    def errors(self) -> list[dict[str, Any]]:
        return self.tally.errors

    def to_dict(self) -> dict[str, Any]:
        payload: dict[str, Any] = {
            "status": "ok",
            "requested": self.requested,
            "total": self.total,
            "denylisted_count": self.denylisted_count,
        }
        payload.update(self.tally.to_dict())
        return payload


def _positive_unique_ids(values: Iterable[Any]) -> list[int]:
    ids: list[int] = []
    seen: set[int] = set()
    for value in values:
        if isinstance(value, OwnedGame):
            value = value.app_id
        app_id = _coerce_int(value)
        if app_id is None or app_id <= 0 or app_id in seen:
            continue
        seen.add(app_id)
        ids.append(app_id)
    return ids


class ImportRunner:
    """Run single-item imports in sequential groups of bounded size.

    Groups never overlap: each group's imports are awaited together, their
    settled outcomes are recorded, and the runner sleeps before the next
    group. Per-item failures are always recorded as outcomes; only page-level
    prerequisites (such as fetching the owned list) raise.
    """

    def __init__(
        self,
        importer: ItemImporter,
        *,
        denylist: Denylist = EMPTY_DENYLIST,
        policy: BackoffPolicy | None = None,
        sleep: Sleep | None = None,
        rng: random.Random | None = None,
    ) -> None:
        self._importer = importer
        self._denylist = denylist
        self._policy = policy or BackoffPolicy()
        self._sleep: Sleep = sleep or asyncio.sleep
        self._rng = rng or random.Random()

    async def _run_group(self, group: Sequence[int], *, debug: bool) -> list[ImportOutcome]:
        pending = asyncio.gather(
            *(self._importer.import_one(app_id, debug=debug) for app_id in group),
            return_exceptions=True,
        )
        # In-flight imports finish on their own if the page is cancelled.
        settled = await asyncio.shield(pending)

        outcomes: list[ImportOutcome] = []
        for app_id, result in zip(group, settled):
            if isinstance(result, ImportOutcome):
                outcomes.append(result)
            else:
                message = str(result) or result.__class__.__name__
                outcomes.append(ImportOutcome.errored(app_id, message))
        return outcomes

    async def _run_groups(
        self,
        app_ids: Sequence[int],
        tally: _Tally,
        *,
        concurrency: int,
        group_delay: float,
        backoff_delay: float | None,
        debug: bool = False,
    ) -> None:
        size = min(max(1, int(concurrency)), IMPORT_CONCURRENCY_MAX)
        groups = [app_ids[start : start + size] for start in range(0, len(app_ids), size)]
        for number, group in enumerate(groups, start=1):
            outcomes = await self._run_group(group, debug=debug)
            for outcome in outcomes:
                tally.record(outcome)

            no_detail = sum(
                1
                for outcome in outcomes
                if outcome.is_skipped and outcome.reason is SkipReason.NO_DETAIL_AVAILABLE
            )
            if backoff_delay is None:
                delay = max(group_delay, 0.0)
            else:
                delay = self._policy.delay_after_group(
                    no_detail,
                    len(group),
                    group_delay=group_delay,
                    backoff_delay=backoff_delay,
                    rng=self._rng,
                )
            backing_off = backoff_delay is not None and self._policy.should_back_off(
                no_detail, len(group)
            )
            logger.info(
                "Import group %d/%d done: %d items, %d without details%s",
                number,
                len(groups),
                len(group),
                no_detail,
                f"; backing off {delay:.2f}s" if backing_off else "",
            )
            if delay > 0:
                await self._sleep(delay)

    def _eligible(self, app_ids: Iterable[Any]) -> tuple[list[int], int]:
        unique = _positive_unique_ids(app_ids)
        eligible = [app_id for app_id in unique if not self._denylist.has_app_id(app_id)]
        return eligible, len(unique) - len(eligible)

    async def run_window(
        self,
        owned: Sequence[OwnedGame | int],
        *,
        offset: int = 0,
        limit: int = 50,
        concurrency: int = 3,
        group_delay: float = 0.4,
        backoff_delay: float = 4.0,
        verbose: bool = False,
        debug: bool = False,
    ) -> PageResult:
        """Import the ``[offset, offset + limit)`` window of ``owned``."""

        offset = max(0, int(offset))
        limit = max(1, int(limit))
        eligible, _ = self._eligible(owned)
        total_owned = len(_positive_unique_ids(owned))
        window = eligible[offset : offset + limit]

        tally = _Tally(verbose=verbose)
        try:
            await self._run_groups(
                window,
                tally,
                concurrency=concurrency,
                group_delay=group_delay,
                backoff_delay=backoff_delay,
                debug=debug,
            )
        except asyncio.CancelledError:
            logger.warning(
                "Import page offset=%d limit=%d cancelled after %d items",
                offset,
                limit,
                tally.processed,
            )
            raise

        # Advance by the requested limit so a short final page still ends the run.
        next_offset = offset + limit
        return PageResult(
            limit=limit,
            offset=offset,
            next_offset=next_offset,
            has_more=next_offset < len(eligible),
            total_owned=total_owned,
            eligible_owned=len(eligible),
            denylisted_count=total_owned - len(eligible),
            tally=tally,
        )

    async def run_page(
        self,
        client: SteamClient,
        steam_id: str,
        api_key: str,
        **options: Any,
    ) -> PageResult:
        """Fetch the owned list for ``steam_id`` and import one window of it.

        Raises :class:`~steam.client.SteamAPIError` when the owned list itself
        cannot be fetched.
        """

        owned = await client.fetch_owned_games(steam_id, api_key)
        logger.info("Fetched %d owned games for %s", len(owned), steam_id)
        return await self.run_window(owned, **options)

    async def run_batch(
        self,
        app_ids: Iterable[Any],
        *,
        concurrency: int = 8,
        debug: bool = False,
    ) -> BatchResult:
        """Import an explicit list of app ids without inter-group delays."""

        requested = list(app_ids)
        eligible, denylisted = self._eligible(requested)
        tally = _Tally()
        await self._run_groups(
            eligible,
            tally,
            concurrency=concurrency,
            group_delay=0.0,
            backoff_delay=None,
            debug=debug,
        )
        return BatchResult(
            requested=len(requested),
            total=len(eligible),
            denylisted_count=denylisted,
            tally=tally,
        )

    async def reimport_stale(
        self,
        repository: CatalogRepository,
        *,
        days: int = 90,
        concurrency: int = 6,
        max_items: int = 1000,
        now: datetime | None = None,
    ) -> tuple[datetime, BatchResult]:
        """Re-import catalog items not refreshed for ``days`` days, oldest first."""

        cutoff = (now or utcnow()) - timedelta(days=max(1, int(days)))
        app_ids = await asyncio.to_thread(
            repository.stale_app_ids, cutoff, limit=max_items
        )
        logger.info("Re-importing %d items updated before %s", len(app_ids), cutoff)
        return cutoff, await self.run_batch(app_ids, concurrency=concurrency)


__all__ = ["BackoffPolicy", "BatchResult", "ImportRunner", "PageResult"]
