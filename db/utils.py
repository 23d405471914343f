"""Shared helpers for working with the catalog database."""

from __future__ import annotations

import os
import sqlite3
from contextlib import contextmanager
from pathlib import Path
from threading import Lock
from typing import Any, Callable, Iterator
from urllib.parse import unquote, urlparse

from sqlalchemy import create_engine, event
from sqlalchemy.engine import Connection, Engine

db_lock = Lock()
"""Module-level lock to guard write access to the catalog database."""


class DatabaseEngine:
    """Wrapper exposing context-managed SQLAlchemy connections and transactions."""

    def __init__(self, engine: Engine):
        self._engine = engine

    @property
    def engine(self) -> Engine:
        """Return the underlying SQLAlchemy :class:`~sqlalchemy.engine.Engine`."""

        return self._engine

    @property
    def dialect_name(self) -> str:
        return self._engine.dialect.name

    @contextmanager
    def sa_connection(self) -> Iterator[Connection]:
        """Yield a SQLAlchemy :class:`~sqlalchemy.engine.Connection`."""

        with self._engine.connect() as conn:
            yield conn

    @contextmanager
    def transaction(self) -> Iterator[Connection]:
        """Yield a connection inside a transaction committed on success."""

        with self._engine.begin() as conn:
            yield conn

    def dispose(self) -> None:
        """Dispose the underlying engine's connection pool."""

        self._engine.dispose()


_fallback_engine: DatabaseEngine | None = None


def set_fallback_connection(engine: DatabaseEngine | None) -> None:
    """Configure the engine returned by :func:`get_engine`."""

    global _fallback_engine
    _fallback_engine = engine


def get_engine(
    connection_factory: Callable[[], DatabaseEngine] | None = None,
) -> DatabaseEngine:
    """Return the configured :class:`DatabaseEngine`, creating one if necessary."""

    global _fallback_engine
    if _fallback_engine is None:
        if connection_factory is None:
            raise RuntimeError("Database connection is not configured")
        _fallback_engine = connection_factory()
    return _fallback_engine


def _configure_sqlite_connection(conn: Any, *, busy_timeout: float | None = None) -> Any:
    """Apply timeout tuning to SQLite connections."""

    if not isinstance(conn, sqlite3.Connection):
        return conn

    busy_timeout_ms = None
    if busy_timeout is not None:
        busy_timeout_ms = int(max(busy_timeout, 0) * 1000) or None

    pragmas: tuple[tuple[str, str | int | None, bool], ...] = (
        ("busy_timeout", busy_timeout_ms, False),
        ("journal_mode", "WAL", True),
        ("foreign_keys", "ON", False),
    )

    for name, value, fetch_result in pragmas:
        if value is None:
            continue
        try:
            cursor = conn.execute(f"PRAGMA {name}={value}")
            if fetch_result:
                cursor.fetchone()
        except sqlite3.OperationalError:  # pragma: no cover - best effort only
            continue

    return conn


def _resolve_sqlite_path_from_dsn(dsn: str) -> str:
    """Extract a filesystem path from a ``sqlite:///`` DSN string."""

    parsed = urlparse(dsn)
    if parsed.scheme != "sqlite":
        raise ValueError(f"Unsupported DSN scheme for SQLite resolver: {parsed.scheme}")

    path = unquote(parsed.path or "")
    if parsed.netloc and parsed.netloc not in {"", "localhost"}:
        path = f"//{parsed.netloc}{path}"

    if not path:
        raise ValueError("SQLite DSN must include a filesystem path")

    candidate = Path(path)
    if not candidate.is_absolute():
        candidate = candidate.resolve()
    return os.fspath(candidate)


def build_engine_from_dsn(
    dsn: str,
    *,
    timeout: float | None = None,
    pool_size: int = 5,
    pool_recycle: int = 1_800,
    pool_pre_ping: bool = True,
) -> DatabaseEngine:
    """Return a :class:`DatabaseEngine` configured from ``dsn``."""

    parsed = urlparse(dsn)
    effective_timeout = timeout if timeout is not None else 5.0
    engine_kwargs: dict[str, Any] = {"future": True, "pool_pre_ping": pool_pre_ping}

    if parsed.scheme == "sqlite":
        sqlite_path = _resolve_sqlite_path_from_dsn(dsn)
        Path(sqlite_path).parent.mkdir(parents=True, exist_ok=True)
        normalized_dsn = f"sqlite:///{sqlite_path}"
        engine_kwargs["connect_args"] = {"check_same_thread": False}
    else:
        normalized_dsn = dsn
        engine_kwargs["pool_size"] = pool_size
        engine_kwargs["pool_recycle"] = pool_recycle

    engine = create_engine(normalized_dsn, **engine_kwargs)

    if parsed.scheme == "sqlite":

        @event.listens_for(engine, "connect")
        def _on_connect(dbapi_conn, connection_record):  # type: ignore[override]
            _configure_sqlite_connection(dbapi_conn, busy_timeout=effective_timeout)

    return DatabaseEngine(engine)


__all__ = [
    "DatabaseEngine",
    "build_engine_from_dsn",
    "db_lock",
    "get_engine",
    "set_fallback_connection",
]
