"""General-purpose helper utilities shared across the application."""

from __future__ import annotations

import math
import numbers
import re
import unicodedata
from datetime import date, datetime, timezone
from typing import Any, Iterable

import pandas as pd


__all__ = [
    "_coerce_int",
    "_dedupe_preserve_order",
    "_display_name",
    "canonical_name",
    "has_text",
    "parse_release_date",
    "slugify",
    "utcnow",
]


_WHITESPACE_RE = re.compile(r"\s+")
_QUOTES_RE = re.compile(r"['\"‘’“”]")
_NON_SLUG_RE = re.compile(r"[^a-z0-9]+")
_MDY_RE = re.compile(r"^\s*(\d{1,2})/(\d{1,2})/(\d{4})\s*$")
_YEAR_RE = re.compile(r"^\s*(\d{4})\s*$")


def has_text(value: Any) -> bool:
    """Return ``True`` when ``value`` contains non-empty text."""

    if value is None:
        return False
    if isinstance(value, str):
        text = value.strip()
    else:
        try:
            if pd.isna(value):
                return False
        except (TypeError, ValueError):
            pass
        text = str(value).strip()
    if not text:
        return False
    if text.lower() == "nan":
        return False
    return True


def _display_name(value: Any) -> str:
    """Return ``value`` trimmed with internal whitespace collapsed."""

    if not has_text(value):
        return ""
    return _WHITESPACE_RE.sub(" ", str(value)).strip()


def canonical_name(value: Any) -> str:
    """Return the canonical storage form of a taxonomy name.

    Canonical names are trimmed, lower-cased and have runs of whitespace
    collapsed to a single space so that ``"Action"`` and ``"action "`` map to
    the same vocabulary entry.
    """

    return _display_name(value).lower()


def _dedupe_preserve_order(values: Iterable[Any]) -> list[str]:
    seen: set[str] = set()
    result: list[str] = []
    for value in values:
        text = _display_name(value)
        if not text:
            continue
        key = canonical_name(text)
        if key in seen:
            continue
        seen.add(key)
        result.append(text)
    return result


def slugify(value: Any) -> str:
    """Return a URL-safe slug fragment for ``value``."""

    text = str(value or "").strip().lower()
    text = unicodedata.normalize("NFKD", text)
    text = "".join(ch for ch in text if not unicodedata.combining(ch))
    text = _QUOTES_RE.sub("", text)
    text = _NON_SLUG_RE.sub("-", text)
    return text.strip("-")


def _coerce_int(value: Any) -> int | None:
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, numbers.Integral):
        return int(value)
    if isinstance(value, numbers.Real):
        numeric = float(value)
    else:
        text = str(value).strip()
        if not text:
            return None
        try:
            numeric = float(text)
        except (TypeError, ValueError, OverflowError):
            return None
    # NaN and infinities (JSON ``1e400`` decodes to inf) have no integer form.
    if not math.isfinite(numeric):
        return None
    return int(numeric)


def parse_release_date(value: Any) -> date | None:
    """Best-effort parse of a free-text storefront release date.

    Tries a general date parse first, then an ``M/D/Y`` pattern, then a bare
    four-digit year. Unparseable text such as ``"Coming soon"`` yields
    ``None``.
    """

    if not has_text(value):
        return None
    text = _display_name(value)

    try:
        parsed = pd.to_datetime(text, errors="coerce")
    except (TypeError, ValueError, OverflowError):
        parsed = pd.NaT
    if not pd.isna(parsed):
        return parsed.date()

    match = _MDY_RE.match(text)
    if match:
        month, day, year = (int(part) for part in match.groups())
        try:
            return date(year, month, day)
        except ValueError:
            pass

    match = _YEAR_RE.match(text)
    if match:
        year = int(match.group(1))
        if 1900 <= year <= 2100:
            return date(year, 1, 1)
    return None


def utcnow() -> datetime:
    """Return the current UTC time as a naive ``datetime`` for storage."""

    return datetime.now(timezone.utc).replace(tzinfo=None)
