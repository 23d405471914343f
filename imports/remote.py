"""Single-item import through the internal ``/api/steam/import`` endpoint."""

from __future__ import annotations

import logging
from typing import Any

import httpx

from catalog.denylist import EMPTY_DENYLIST, Denylist
from imports.outcomes import CODE_DENYLISTED_APP, ImportOutcome, SkipReason, classify_http_result
from steam.client import Sleep, request_with_retry

logger = logging.getLogger(__name__)


class RemoteImporter:
    """Import apps by calling a running instance of this service.

    Used when imports are delegated to a separate worker process. The HTTP
    status and JSON body are classified with
    :func:`~imports.outcomes.classify_http_result`, so empty or non-JSON
    bodies still resolve to a single outcome.
    """

    def __init__(
        self,
        base_url: str,
        *,
        denylist: Denylist = EMPTY_DENYLIST,
        timeout: float = 60.0,
        transport: httpx.AsyncBaseTransport | None = None,
        sleep: Sleep | None = None,
        max_retries: int = 3,
    ) -> None:
        self._denylist = denylist
        self._sleep = sleep
        self._max_retries = max_retries
        self._http = httpx.AsyncClient(
            base_url=base_url.rstrip("/"), timeout=timeout, transport=transport
        )

    async def __aenter__(self) -> "RemoteImporter":
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        await self._http.aclose()

    async def import_one(self, app_id: int, *, debug: bool = False) -> ImportOutcome:
        app_id = int(app_id)
        if self._denylist.has_app_id(app_id):
            return ImportOutcome.skipped(
                app_id,
                SkipReason.DENYLISTED,
                code=CODE_DENYLISTED_APP,
                message=f"appid {app_id} is denylisted",
            )

        params = {"app_id": str(app_id)}
        if debug:
            params["debug"] = "1"
        try:
            response = await request_with_retry(
                self._http,
                "POST",
                "/api/steam/import",
                params=params,
                attempts=self._max_retries,
                sleep=self._sleep,
            )
        except httpx.TransportError as exc:
            logger.warning("Import request for appid %s failed: %s", app_id, exc)
            return ImportOutcome.errored(app_id, f"import request failed: {exc}")

        try:
            body: Any = response.json() if response.content else None
        except ValueError:
            body = response.text
        return classify_http_result(app_id, response.status_code, body)


__all__ = ["RemoteImporter"]
