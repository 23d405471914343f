"""Application-wide configuration helpers and constants."""
from __future__ import annotations

import logging
import os
from pathlib import Path
from typing import Final

from dotenv import load_dotenv

BASE_DIR: Final[Path] = Path(__file__).resolve().parent

load_dotenv(BASE_DIR / ".env")


logger = logging.getLogger(__name__)


def _clean_text(value: str | None) -> str:
    """Return ``value`` stripped of surrounding whitespace."""

    if value is None:
        return ""
    return value.strip()


def _path_from(env_value: str | None, default: str | Path) -> Path:
    """Resolve a filesystem path using an environment override when provided."""

    text = _clean_text(env_value)
    candidate = Path(text) if text else Path(default)
    candidate = candidate.expanduser()
    if candidate.is_absolute():
        try:
            return candidate.resolve()
        except (OSError, RuntimeError):  # pragma: no cover - fallback for exotic paths
            return candidate
    return candidate


def _coerce_positive_float(value: str | None, default: float) -> float:
    """Return ``value`` coerced to a positive float or ``default`` when invalid."""

    text = _clean_text(value)
    if not text:
        return default
    try:
        numeric = float(text)
    except (TypeError, ValueError):
        return default
    return numeric if numeric > 0 else default


def _coerce_positive_int(value: str | None, default: int) -> int:
    """Return ``value`` coerced to a positive integer or ``default`` when invalid."""

    text = _clean_text(value)
    if not text:
        return default
    try:
        numeric = int(float(text))
    except (TypeError, ValueError):
        return default
    return numeric if numeric > 0 else default


def _coerce_truthy_env(value: str | None) -> bool:
    """Return ``True`` when ``value`` represents an affirmative flag."""

    if value is None:
        return False
    text = value.strip().lower()
    return text in {"1", "true", "yes", "on"}


def _coerce_id_list(value: str | None) -> frozenset[int]:
    """Parse a comma or whitespace separated list of positive integer ids."""

    ids: set[int] = set()
    for token in _clean_text(value).replace(",", " ").split():
        try:
            numeric = int(token)
        except ValueError:
            logger.warning("Ignoring non-numeric denylist entry %r", token)
            continue
        if numeric > 0:
            ids.add(numeric)
    return frozenset(ids)


def _coerce_text_list(value: str | None) -> frozenset[str]:
    return frozenset(
        token.strip().lower()
        for token in _clean_text(value).split(",")
        if token.strip()
    )


LOG_DIR_PATH: Final[Path] = _path_from(os.environ.get("LOG_DIR"), BASE_DIR / "logs")
LOG_DIR: Final[str] = os.fspath(LOG_DIR_PATH)
LOG_FILE_PATH: Final[Path] = _path_from(
    os.environ.get("LOG_FILE"), LOG_DIR_PATH / "app.log"
)
LOG_FILE: Final[str] = os.fspath(LOG_FILE_PATH)


def build_db_dsn() -> str:
    """Return a database DSN from ``DATABASE_URL`` or the local SQLite file."""

    explicit = _clean_text(os.environ.get("DATABASE_URL"))
    if explicit:
        return explicit

    sqlite_path = _path_from(
        os.environ.get("DB_SQLITE_PATH"), BASE_DIR / "steam_library.db"
    ).resolve()
    return f"sqlite:///{sqlite_path.as_posix()}"


DB_CONNECT_TIMEOUT_SECONDS: Final[float] = _coerce_positive_float(
    os.environ.get("DB_CONNECT_TIMEOUT"), 10.0
)

DEFAULT_STEAM_USER_AGENT: Final[str] = "SteamLibraryImporter/1.0 (support@example.com)"
STEAM_USER_AGENT: Final[str] = (
    _clean_text(os.environ.get("STEAM_USER_AGENT")) or DEFAULT_STEAM_USER_AGENT
)
STEAM_WEB_API_KEY: Final[str] = _clean_text(os.environ.get("STEAM_WEB_API_KEY"))
STEAM_USER_ID: Final[str] = _clean_text(os.environ.get("STEAM_USER_ID"))
STEAM_COUNTRY: Final[str] = _clean_text(os.environ.get("STEAM_COUNTRY")) or "us"
STEAM_LANGUAGE: Final[str] = _clean_text(os.environ.get("STEAM_LANGUAGE")) or "en"
STEAM_HTTP_TIMEOUT_SECONDS: Final[float] = _coerce_positive_float(
    os.environ.get("STEAM_HTTP_TIMEOUT"), 15.0
)

IMPORT_DENYLIST_APP_IDS: Final[frozenset[int]] = _coerce_id_list(
    os.environ.get("IMPORT_DENYLIST_APP_IDS")
)
IMPORT_DENYLIST_SLUGS: Final[frozenset[str]] = _coerce_text_list(
    os.environ.get("IMPORT_DENYLIST_SLUGS")
)
IMPORT_SELF_BASE_URL: Final[str] = _clean_text(os.environ.get("IMPORT_SELF_BASE_URL"))
IMPORT_VERBOSE_DEFAULT: Final[bool] = _coerce_truthy_env(
    os.environ.get("IMPORT_VERBOSE")
)

# Page runner bounds; delays are expressed in milliseconds at the HTTP edge.
IMPORT_PAGE_LIMIT_DEFAULT: Final[int] = 50
IMPORT_PAGE_LIMIT_MAX: Final[int] = 250
IMPORT_CONCURRENCY_DEFAULT: Final[int] = _coerce_positive_int(
    os.environ.get("IMPORT_CONCURRENCY"), 3
)
IMPORT_CONCURRENCY_MAX: Final[int] = 10
IMPORT_BATCH_CONCURRENCY_DEFAULT: Final[int] = 8
IMPORT_REIMPORT_CONCURRENCY_DEFAULT: Final[int] = 6
IMPORT_REIMPORT_DAYS_DEFAULT: Final[int] = 90
IMPORT_REIMPORT_MAX_ITEMS: Final[int] = 1000
IMPORT_GROUP_DELAY_MS_DEFAULT: Final[int] = 400
IMPORT_GROUP_DELAY_MS_MAX: Final[int] = 5000
IMPORT_BACKOFF_MS_DEFAULT: Final[int] = 4000
IMPORT_BACKOFF_MS_MIN: Final[int] = 1000
IMPORT_BACKOFF_MS_MAX: Final[int] = 30000

APP_SECRET_KEY: Final[str] = _clean_text(os.environ.get("APP_SECRET_KEY")) or "dev-secret"


def resolve_steam_credentials(
    api_key: str | None = None, steam_id: str | None = None
) -> tuple[str, str]:
    """Return ``(api_key, steam_id)`` preferring request-level overrides."""

    resolved_key = _clean_text(api_key) or _clean_text(os.environ.get("STEAM_WEB_API_KEY"))
    resolved_id = _clean_text(steam_id) or _clean_text(os.environ.get("STEAM_USER_ID"))
    return resolved_key, resolved_id


def validate_steam_credentials() -> bool:
    """Return ``True`` when the Steam Web API credentials are configured."""

    api_key, steam_id = resolve_steam_credentials()
    missing = [
        name
        for name, value in (
            ("STEAM_WEB_API_KEY", api_key),
            ("STEAM_USER_ID", steam_id),
        )
        if not value
    ]
    if missing:
        logger.error(
            "Missing Steam Web API settings; set %s.", " and ".join(missing)
        )
    return not missing


def _validate_settings() -> None:
    """Sanity-check critical configuration values."""

    if not APP_SECRET_KEY:
        raise RuntimeError("APP_SECRET_KEY must not be empty")
    if IMPORT_SELF_BASE_URL and not IMPORT_SELF_BASE_URL.startswith(("http://", "https://")):
        raise RuntimeError("IMPORT_SELF_BASE_URL must be an http(s) URL")


_validate_settings()


__all__ = [
    "APP_SECRET_KEY",
    "BASE_DIR",
    "DB_CONNECT_TIMEOUT_SECONDS",
    "DEFAULT_STEAM_USER_AGENT",
    "IMPORT_BACKOFF_MS_DEFAULT",
    "IMPORT_BACKOFF_MS_MAX",
    "IMPORT_BACKOFF_MS_MIN",
    "IMPORT_BATCH_CONCURRENCY_DEFAULT",
    "IMPORT_CONCURRENCY_DEFAULT",
    "IMPORT_CONCURRENCY_MAX",
    "IMPORT_DENYLIST_APP_IDS",
    "IMPORT_DENYLIST_SLUGS",
    "IMPORT_GROUP_DELAY_MS_DEFAULT",
    "IMPORT_GROUP_DELAY_MS_MAX",
    "IMPORT_PAGE_LIMIT_DEFAULT",
    "IMPORT_PAGE_LIMIT_MAX",
    "IMPORT_REIMPORT_CONCURRENCY_DEFAULT",
    "IMPORT_REIMPORT_DAYS_DEFAULT",
    "IMPORT_REIMPORT_MAX_ITEMS",
    "IMPORT_SELF_BASE_URL",
    "IMPORT_VERBOSE_DEFAULT",
    "LOG_DIR",
    "LOG_DIR_PATH",
    "LOG_FILE",
    "LOG_FILE_PATH",
    "STEAM_COUNTRY",
    "STEAM_HTTP_TIMEOUT_SECONDS",
    "STEAM_LANGUAGE",
    "STEAM_USER_AGENT",
    "STEAM_USER_ID",
    "STEAM_WEB_API_KEY",
    "build_db_dsn",
    "resolve_steam_credentials",
    "validate_steam_credentials",
]
