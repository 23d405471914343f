"""Steam store and Web API client helpers."""

from __future__ import annotations

import asyncio
import logging
import random
from dataclasses import dataclass
from typing import Any, Awaitable, Callable

import httpx

from steam.envelope import EnvelopeShape, detect_envelope
from steam.models import OwnedGame, ReviewSummary
from steam.normalize import normalize_owned_games

logger = logging.getLogger(__name__)


__all__ = [
    "DetailResult",
    "STORE_BASE_URL",
    "SteamAPIError",
    "SteamClient",
    "SteamUnavailableError",
    "WEB_API_BASE_URL",
    "request_with_retry",
]


STORE_BASE_URL = "https://store.steampowered.com"
WEB_API_BASE_URL = "https://api.steampowered.com"

DETAIL_FILTERS = (
    "basic,developers,publishers,release_date,metacritic,"
    "genres,categories,platforms,screenshots"
)

# Cookies the store sets once a visitor has passed the age gate.
MATURE_CONTENT_COOKIE = (
    "birthtime=283993201; lastagecheckage=1-January-1979; "
    "mature_content=1; wants_mature_content=1"
)

Sleep = Callable[[float], Awaitable[Any]]


class SteamAPIError(RuntimeError):
    """Raised when a Steam endpoint answers with an unusable response."""

    def __init__(self, message: str, *, status: int | None = None) -> None:
        super().__init__(message)
        self.status = status


class SteamUnavailableError(SteamAPIError):
    """Raised when Steam keeps failing with 5xx or network errors."""


@dataclass(frozen=True)
class DetailResult:
    success: bool
    data: dict[str, Any] | None
    shape: EnvelopeShape = EnvelopeShape.UNKNOWN
    status: int | None = None
    attempts: int = 0


@dataclass(frozen=True)
class _DetailVariant:
    filtered: bool
    mature: bool
    final: bool = False


_DETAIL_PLAN: tuple[_DetailVariant, ...] = (
    _DetailVariant(filtered=True, mature=False),
    _DetailVariant(filtered=False, mature=False),
    _DetailVariant(filtered=True, mature=True),
    _DetailVariant(filtered=False, mature=True),
    _DetailVariant(filtered=False, mature=True, final=True),
)


async def request_with_retry(
    client: httpx.AsyncClient,
    method: str,
    url: str,
    *,
    attempts: int = 3,
    base_delay: float = 0.25,
    sleep: Sleep | None = None,
    **kwargs: Any,
) -> httpx.Response:
    """Send a request, retrying 5xx responses and transport failures.

    The delay doubles after each failed attempt. 4xx responses are returned
    immediately. When every attempt fails the last 5xx response is returned,
    or the last transport error is raised if no response was ever received.
    """

    sleeper = sleep or asyncio.sleep
    attempts = max(1, int(attempts))
    response: httpx.Response | None = None
    last_error: httpx.TransportError | None = None

    for attempt in range(attempts):
        try:
            response = await client.request(method, url, **kwargs)
        except httpx.TransportError as exc:
            response = None
            last_error = exc
            logger.debug(
                "%s %s failed on attempt %d/%d: %s", method, url, attempt + 1, attempts, exc
            )
        else:
            if response.status_code < 500:
                return response
            logger.debug(
                "%s %s returned HTTP %d on attempt %d/%d",
                method,
                url,
                response.status_code,
                attempt + 1,
                attempts,
            )
        if attempt + 1 < attempts:
            await sleeper(base_delay * (2**attempt))

    if response is not None:
        return response
    assert last_error is not None
    raise last_error


def _decode_json(response: httpx.Response) -> Any:
    if not response.content:
        return None
    try:
        return response.json()
    except ValueError:
        return None


class SteamClient:
    """Async client for the store ``appdetails``/``appreviews`` endpoints and
    the ``GetOwnedGames`` Web API.

    ``transport``, ``sleep`` and ``rng`` are injectable so the retry and
    attempt-variation behaviour can be exercised without real network calls
    or real waiting.
    """

    def __init__(
        self,
        *,
        api_key: str | None = None,
        country: str = "us",
        language: str = "en",
        user_agent: str | None = None,
        timeout: float = 15.0,
        transport: httpx.AsyncBaseTransport | None = None,
        max_retries: int = 3,
        retry_base_delay: float = 0.25,
        variant_delay: tuple[float, float] = (0.2, 0.8),
        final_delay: tuple[float, float] = (1.5, 3.0),
        sleep: Sleep | None = None,
        rng: random.Random | None = None,
    ) -> None:
        self._api_key = (api_key or "").strip()
        self._country = country or "us"
        self._language = language or "en"
        self._max_retries = max(1, int(max_retries))
        self._retry_base_delay = retry_base_delay
        self._variant_delay = variant_delay
        self._final_delay = final_delay
        self._sleep: Sleep = sleep or asyncio.sleep
        self._rng = rng or random.Random()
        headers = {"Accept": "application/json"}
        if user_agent:
            headers["User-Agent"] = user_agent
        self._http = httpx.AsyncClient(
            timeout=timeout,
            transport=transport,
            headers=headers,
            follow_redirects=True,
        )

    async def __aenter__(self) -> "SteamClient":
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        await self._http.aclose()

    async def _get(self, url: str, **kwargs: Any) -> httpx.Response:
        return await request_with_retry(
            self._http,
            "GET",
            url,
            attempts=self._max_retries,
            base_delay=self._retry_base_delay,
            sleep=self._sleep,
            **kwargs,
        )

    async def fetch_app_details(self, app_id: int) -> DetailResult:
        """Return the details payload for ``app_id``.

        Steam answers automated traffic with HTTP 403 and hides age-gated
        titles from anonymous requests, so attempts alternate between the
        filtered and the full payload and between an anonymous request and
        one carrying the age-gate cookies. A final attempt runs after a longer
        pause. Persistent 5xx or network failures raise
        :class:`SteamUnavailableError`; "no data" never raises.
        """

        url = f"{STORE_BASE_URL}/api/appdetails"
        attempts = 0
        last_status: int | None = None
        last_shape = EnvelopeShape.UNKNOWN
        index = 0

        while index < len(_DETAIL_PLAN):
            variant = _DETAIL_PLAN[index]
            if attempts:
                low, high = self._final_delay if variant.final else self._variant_delay
                await self._sleep(self._rng.uniform(low, high))
            attempts += 1

            params = {"appids": str(app_id), "cc": self._country, "l": self._language}
            if variant.filtered:
                params["filters"] = DETAIL_FILTERS
            headers = {"Cookie": MATURE_CONTENT_COOKIE} if variant.mature else None

            try:
                response = await self._get(url, params=params, headers=headers)
            except httpx.TransportError as exc:
                raise SteamUnavailableError(
                    f"appdetails request failed for appid {app_id}: {exc}"
                ) from exc

            last_status = response.status_code
            if last_status >= 500:
                raise SteamUnavailableError(
                    f"appdetails returned HTTP {last_status} for appid {app_id}",
                    status=last_status,
                )
            if last_status in (403, 429):
                logger.debug(
                    "appdetails for %s rejected with HTTP %s (attempt %d)",
                    app_id,
                    last_status,
                    attempts,
                )
                index += 1
                continue
            if last_status >= 400:
                return DetailResult(False, None, last_shape, last_status, attempts)

            envelope = detect_envelope(_decode_json(response), app_id)
            last_shape = envelope.shape
            if envelope.usable:
                return DetailResult(True, envelope.data, envelope.shape, last_status, attempts)

            if envelope.shape in (EnvelopeShape.FLAT, EnvelopeShape.KEYED):
                # An explicit "success: false" only changes for age-gated apps.
                if variant.mature:
                    break
                index = next(
                    (
                        position
                        for position in range(index + 1, len(_DETAIL_PLAN))
                        if _DETAIL_PLAN[position].mature
                    ),
                    len(_DETAIL_PLAN),
                )
                continue
            index += 1

        logger.debug(
            "appdetails returned no data for appid %s after %d attempts", app_id, attempts
        )
        return DetailResult(False, None, last_shape, last_status, attempts)

    async def fetch_review_summary(self, app_id: int) -> ReviewSummary | None:
        """Return the aggregate review summary for ``app_id`` or ``None``."""

        params = {
            "json": "1",
            "language": "all",
            "purchase_type": "all",
            "num_per_page": "0",
            "filter": "summary",
        }
        try:
            response = await self._get(f"{STORE_BASE_URL}/appreviews/{app_id}", params=params)
        except httpx.HTTPError as exc:
            logger.debug("Review summary unavailable for %s: %s", app_id, exc)
            return None
        if response.status_code >= 400:
            logger.debug(
                "Review summary for %s returned HTTP %s", app_id, response.status_code
            )
            return None
        return ReviewSummary.from_payload(_decode_json(response))

    async def fetch_owned_games(
        self, steam_id: str, api_key: str | None = None
    ) -> list[OwnedGame]:
        """Return every game owned by ``steam_id`` (empty for private profiles)."""

        key = (api_key or self._api_key).strip()
        if not key:
            raise SteamAPIError("Missing STEAM_WEB_API_KEY")
        if not str(steam_id or "").strip():
            raise SteamAPIError("Missing steamId", status=400)

        params = {
            "key": key,
            "steamid": str(steam_id).strip(),
            "include_appinfo": "1",
            "include_played_free_games": "1",
            "format": "json",
        }
        url = f"{WEB_API_BASE_URL}/IPlayerService/GetOwnedGames/v0001/"
        try:
            response = await self._get(url, params=params)
        except httpx.TransportError as exc:
            raise SteamUnavailableError(f"GetOwnedGames request failed: {exc}") from exc

        status = response.status_code
        if status >= 500:
            raise SteamUnavailableError(f"GetOwnedGames failed with HTTP {status}", status=status)
        if status >= 400:
            raise SteamAPIError(f"GetOwnedGames failed with HTTP {status}", status=status)

        payload = _decode_json(response)
        if payload is None:
            raise SteamAPIError("GetOwnedGames returned an invalid JSON body", status=status)
        return normalize_owned_games(payload)
