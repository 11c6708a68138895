"""Database schema initialization helpers."""

from __future__ import annotations

import logging
from functools import lru_cache

from sqlalchemy.exc import SQLAlchemyError

from dividend_ledger.db.session import Database

logger = logging.getLogger(__name__)


@lru_cache(maxsize=1)
def get_database() -> Database:
    """Return the shared database instance for the production application."""

    return Database()


async def init_database(database: Database) -> None:
    """Ensure all database tables exist for the running application."""

    try:
        await database.create_all()
    except SQLAlchemyError:
        logger.exception("Failed to initialise database schema")
        raise


__all__ = ["get_database", "init_database"]
