"""Outcome model for single-item imports and its HTTP classification.

Every import resolves to exactly one of imported, skipped (with a reason) or
errored. When only an HTTP status and body are available, for example when
importing through the internal endpoint, :func:`classify_http_result` derives
the outcome from the structured ``code`` field, falling back to the
:data:`SKIP_MESSAGE_PATTERNS` substring table and finally to the status code.

The substring table depends on the exact wording of upstream and internal
error messages; a reworded message silently turns a skip into an error.
"""

from __future__ import annotations

import enum
from dataclasses import dataclass, field
from typing import Any, Mapping


class OutcomeStatus(str, enum.Enum):
    IMPORTED = "imported"
    SKIPPED = "skipped"
    ERRORED = "errored"


class SkipReason(str, enum.Enum):
    ALREADY_IMPORTED = "ALREADY_IMPORTED"
    NO_DETAIL_AVAILABLE = "NO_APPDETAILS"
    DENYLISTED = "DENYLISTED"
    OTHER = "SKIP_OTHER"


CODE_NO_APPDETAILS = "NO_APPDETAILS"
CODE_DENYLISTED_APP = "DENYLISTED_APP"
CODE_DENYLISTED_SLUG = "DENYLISTED_SLUG"
CODE_DUPLICATE_APP = "DUPLICATE_APP"

CODE_REASONS: dict[str, SkipReason] = {
    CODE_NO_APPDETAILS: SkipReason.NO_DETAIL_AVAILABLE,
    CODE_DENYLISTED_APP: SkipReason.DENYLISTED,
    CODE_DENYLISTED_SLUG: SkipReason.DENYLISTED,
    CODE_DUPLICATE_APP: SkipReason.ALREADY_IMPORTED,
}

# Lower-case substrings matched against error text when no code is present.
SKIP_MESSAGE_PATTERNS: tuple[tuple[str, SkipReason], ...] = (
    ("no_appdetails", SkipReason.NO_DETAIL_AVAILABLE),
    ("appdetails returned no data", SkipReason.NO_DETAIL_AVAILABLE),
    ("returned no data for appid", SkipReason.NO_DETAIL_AVAILABLE),
    ("no data for appid", SkipReason.NO_DETAIL_AVAILABLE),
    ("duplicate_app", SkipReason.ALREADY_IMPORTED),
    ("already imported", SkipReason.ALREADY_IMPORTED),
    ("denylisted_app", SkipReason.DENYLISTED),
    ("denylisted_slug", SkipReason.DENYLISTED),
)

SKIP_STATUS_REASONS: dict[int, SkipReason] = {
    404: SkipReason.OTHER,
    409: SkipReason.ALREADY_IMPORTED,
    422: SkipReason.OTHER,
}

REASON_STATUS: dict[SkipReason, int] = {
    SkipReason.ALREADY_IMPORTED: 409,
    SkipReason.NO_DETAIL_AVAILABLE: 422,
    SkipReason.DENYLISTED: 422,
    SkipReason.OTHER: 422,
}


@dataclass(frozen=True)
class ImportOutcome:
    app_id: int
    status: OutcomeStatus
    reason: SkipReason | None = None
    code: str | None = None
    message: str | None = None
    http_status: int = 200
    slug: str | None = None
    debug: Mapping[str, Any] | None = field(default=None, compare=False)

    @classmethod
    def imported(
        cls, app_id: int, *, slug: str | None = None, debug: Mapping[str, Any] | None = None
    ) -> "ImportOutcome":
        return cls(app_id, OutcomeStatus.IMPORTED, slug=slug, debug=debug)

    @classmethod
    def skipped(
        cls,
        app_id: int,
        reason: SkipReason,
        *,
        code: str | None = None,
        message: str | None = None,
        http_status: int | None = None,
        slug: str | None = None,
        debug: Mapping[str, Any] | None = None,
    ) -> "ImportOutcome":
        return cls(
            app_id,
            OutcomeStatus.SKIPPED,
            reason=reason,
            code=code,
            message=message,
            http_status=http_status or REASON_STATUS[reason],
            slug=slug,
            debug=debug,
        )

    @classmethod
    def errored(
        cls,
        app_id: int,
        message: str,
        *,
        http_status: int | None = None,
        debug: Mapping[str, Any] | None = None,
    ) -> "ImportOutcome":
        return cls(
            app_id,
            OutcomeStatus.ERRORED,
            message=message or "import failed",
            http_status=http_status or 500,
            debug=debug,
        )

    @property
    def is_imported(self) -> bool:
        return self.status is OutcomeStatus.IMPORTED

    @property
    def is_skipped(self) -> bool:
        return self.status is OutcomeStatus.SKIPPED

    @property
    def is_errored(self) -> bool:
        return self.status is OutcomeStatus.ERRORED

    def to_dict(self) -> dict[str, Any]:
        """Return the JSON body served by the single-item import endpoint."""

        payload: dict[str, Any] = {"ok": self.is_imported, "app_id": self.app_id}
        if self.slug:
            payload["slug"] = self.slug
        if self.code:
            payload["code"] = self.code
        if self.reason is not None:
            payload["reason"] = self.reason.value
        if not self.is_imported:
            payload["error"] = self.message or self.code or "import failed"
        if self.debug:
            payload["debug"] = dict(self.debug)
        return payload


def match_skip_message(text: str | None) -> SkipReason | None:
    """Return the skip reason whose pattern occurs in ``text``, if any."""

    if not text:
        return None
    lowered = text.lower()
    for pattern, reason in SKIP_MESSAGE_PATTERNS:
        if pattern in lowered:
            return reason
    return None


def _body_text(body: Any) -> str:
    if isinstance(body, Mapping):
        parts = [body.get(key) for key in ("code", "error", "message", "detail")]
        return " ".join(str(part) for part in parts if part)
    if body is None:
        return ""
    return str(body)


def classify_http_result(app_id: int, status: int, body: Any = None) -> ImportOutcome:
    """Map an HTTP status and (possibly malformed) body to an outcome."""

    if 200 <= status < 300:
        slug = body.get("slug") if isinstance(body, Mapping) else None
        return ImportOutcome.imported(app_id, slug=slug)

    text = _body_text(body)
    code = body.get("code") if isinstance(body, Mapping) else None
    code = str(code).strip().upper() if code else None

    reason = CODE_REASONS.get(code) if code else None
    if reason is None:
        reason = match_skip_message(text)
    if reason is None:
        reason = SKIP_STATUS_REASONS.get(status)
    if reason is not None:
        return ImportOutcome.skipped(
            app_id,
            reason,
            code=code,
            message=text or f"HTTP {status}",
            http_status=status,
        )
    return ImportOutcome.errored(app_id, text or f"HTTP {status}", http_status=status)


__all__ = [
    "CODE_DENYLISTED_APP",
    "CODE_DENYLISTED_SLUG",
    "CODE_DUPLICATE_APP",
    "CODE_NO_APPDETAILS",
    "ImportOutcome",
    "OutcomeStatus",
    "SKIP_MESSAGE_PATTERNS",
    "SkipReason",
    "classify_http_result",
    "match_skip_message",
]
