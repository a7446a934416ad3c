"""
Database backend selector.

- If `LNSCHED_DATABASE_URL` (or `DATABASE_URL`) starts with `postgres://` or `postgresql://`,
  the PostgreSQL backend is used.
- Otherwise the SQLite file at `LNSCHED_SQLITE_PATH` (default `lnscheduler.db` in the repo root).

Both backends sit behind the same `SqlRepository`.
"""

from __future__ import annotations

import logging
import os

from lnscheduler.db.repository import SqlRepository

logger = logging.getLogger(__name__)


def _use_postgres() -> bool:
    url = (os.environ.get("LNSCHED_DATABASE_URL") or os.environ.get("DATABASE_URL") or "").strip()
    return url.startswith("postgres://") or url.startswith("postgresql://")


def get_repository(sqlite_path: str | None = None) -> SqlRepository:
    if _use_postgres() and sqlite_path is None:
        from lnscheduler.db.postgres.pool import PostgresDialect

        repo = SqlRepository(PostgresDialect())
    else:
        from lnscheduler.db.sqlite.connection import SqliteDialect

        repo = SqlRepository(SqliteDialect(sqlite_path))
    logger.info(f"Using {repo.backend} database: {repo.describe()}")
    return repo


def close_repository(repo: SqlRepository) -> None:
    if repo.backend == "postgres":
        from lnscheduler.db.postgres.pool import close_pool

        close_pool()
