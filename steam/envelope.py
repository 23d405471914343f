"""Shape detection for Steam ``appdetails`` responses.

The store endpoint has historically answered in several shapes, and
intermediate caches or proxies occasionally strip the outer wrapper. The
detection below is pure so it can be exercised without any network code.
"""

from __future__ import annotations

import enum
from dataclasses import dataclass
from typing import Any, Mapping


__all__ = ["Envelope", "EnvelopeShape", "detect_envelope", "looks_like_details"]


class EnvelopeShape(str, enum.Enum):
    FLAT = "flat"
    KEYED = "keyed"
    KEYED_PAYLOAD = "keyed_payload"
    BARE_PAYLOAD = "bare_payload"
    UNKNOWN = "unknown"


@dataclass(frozen=True)
class Envelope:
    shape: EnvelopeShape
    success: bool
    data: dict[str, Any] | None

    @property
    def usable(self) -> bool:
        return self.success and self.data is not None


def looks_like_details(value: Any) -> bool:
    """Return ``True`` when ``value`` resembles an app details object."""

    if not isinstance(value, Mapping):
        return False
    return (
        isinstance(value.get("name"), str)
        or isinstance(value.get("short_description"), str)
        or isinstance(value.get("release_date"), Mapping)
    )


def _from_success_pair(shape: EnvelopeShape, entry: Mapping[str, Any]) -> Envelope:
    data = entry.get("data")
    if not isinstance(data, Mapping):
        data = None
    success = bool(entry.get("success")) and data is not None
    return Envelope(shape, success, dict(data) if data is not None else None)


def detect_envelope(payload: Any, app_id: int | str) -> Envelope:
    """Classify ``payload`` into one of the known envelope shapes.

    Shapes are tried in order: flat ``{success, data}``, keyed
    ``{"<id>": {success, data}}``, keyed details ``{"<id>": details}``, bare
    details. Anything else is ``UNKNOWN`` with no data.
    """

    if not isinstance(payload, Mapping):
        return Envelope(EnvelopeShape.UNKNOWN, False, None)

    if "success" in payload:
        return _from_success_pair(EnvelopeShape.FLAT, payload)

    entry = payload.get(str(app_id))
    if isinstance(entry, Mapping):
        if "success" in entry:
            return _from_success_pair(EnvelopeShape.KEYED, entry)
        if looks_like_details(entry):
            return Envelope(EnvelopeShape.KEYED_PAYLOAD, True, dict(entry))

    if looks_like_details(payload):
        return Envelope(EnvelopeShape.BARE_PAYLOAD, True, dict(payload))

    return Envelope(EnvelopeShape.UNKNOWN, False, None)
