from __future__ import annotations

import logging
import os
import sqlite3
from contextlib import contextmanager
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Iterator

logger = logging.getLogger(__name__)

# Keep the database in the project root regardless of where the process is started from.
DEFAULT_DB_PATH = str(Path(__file__).resolve().parents[3] / "lnscheduler.db")


def sqlite_path() -> str:
    return (os.environ.get("LNSCHED_SQLITE_PATH") or "").strip() or DEFAULT_DB_PATH


class SqliteDialect:
    """
    Connection + SQL flavour for the single-file SQLite backend.

    Every write opens its own connection and commits on exit; the scheduler's
    compare-and-set updates rely on each statement being visible immediately.
    """

    name = "sqlite"

    def __init__(self, path: str | None = None) -> None:
        self.path = path or sqlite_path()

    def _connect(self, timeout: float = 30) -> sqlite3.Connection:
        conn = sqlite3.connect(self.path, timeout=timeout, check_same_thread=False)
        conn.execute("PRAGMA busy_timeout=10000")
        conn.execute("PRAGMA foreign_keys=ON")
        return conn

    @contextmanager
    def write_conn(self) -> Iterator[sqlite3.Connection]:
        conn = self._connect()
        try:
            yield conn
            conn.commit()
        except Exception:
            conn.rollback()
            raise
        finally:
            conn.close()

    def connect_ro(self) -> sqlite3.Connection:
        """
        Read connection with a short timeout; callers close it.
        """
        conn = sqlite3.connect(self.path, timeout=2, isolation_level=None)  # autocommit mode
        conn.execute("PRAGMA query_only = 1")  # Prevent accidental writes
        return conn

    def sql(self, query: str) -> str:
        return query.replace("%s", "?")

    def params(self, params: tuple[Any, ...]) -> tuple[Any, ...]:
        out = []
        for v in params:
            if isinstance(v, datetime):
                # Fixed-width UTC text keeps timestamp comparisons in SQL correct.
                if v.tzinfo is None:
                    v = v.replace(tzinfo=timezone.utc)
                v = v.astimezone(timezone.utc).isoformat(timespec="microseconds")
            elif isinstance(v, bool):
                v = int(v)
            out.append(v)
        return tuple(out)

    def insert(self, cur, query: str, params: tuple[Any, ...]) -> int:
        cur.execute(query, params)
        return int(cur.lastrowid)

    def init_db(self) -> None:
        from lnscheduler.db.sqlite.schema import init_db

        init_db(self.path)

    def describe(self) -> str:
        return f"sqlite:///{self.path}"
