"""Application startup orchestration helpers."""

from __future__ import annotations

import logging
from typing import Callable

from sqlalchemy.engine import Engine

from db import utils as db_utils

logger = logging.getLogger(__name__)


def initialize_app(
    *,
    connection_factory: Callable[[], db_utils.DatabaseEngine],
    create_schema: Callable[[Engine], None],
) -> db_utils.DatabaseEngine:
    """Perform the core startup tasks required for the application.

    Builds the database engine, creates any missing catalog tables and
    registers the engine as the process-wide fallback used by
    :func:`db.utils.get_engine`.
    """

    database = connection_factory()
    try:
        create_schema(database.engine)
    except Exception:
        logger.exception("Failed to create the catalog schema during startup")
        raise

    db_utils.set_fallback_connection(database)
    logger.info("Catalog database ready (%s)", database.dialect_name)
    return database


__all__ = ["initialize_app"]
