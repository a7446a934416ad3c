"""
SQL helpers shared by the table modules.

Queries are written once with `%s` placeholders; the dialect rewrites them (and adapts
parameters) for its driver. Reads go through `pd.read_sql_query` and come back as plain
dicts with NaN/NaT turned into None.
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from enum import Enum
from functools import wraps
from typing import Any, Callable, Iterable, ParamSpec, Protocol, TypeVar

import pandas as pd

from lnscheduler.domain.errors import ConcurrentUpdateError

logger = logging.getLogger(__name__)

P = ParamSpec("P")
T = TypeVar("T")


class Dialect(Protocol):
    name: str

    def write_conn(self): ...

    def connect_ro(self): ...

    def sql(self, query: str) -> str: ...

    def params(self, params: tuple[Any, ...]) -> tuple[Any, ...]: ...

    def insert(self, cur, query: str, params: tuple[Any, ...]) -> int: ...

    def init_db(self) -> None: ...

    def describe(self) -> str: ...


def safe_db_read(default_factory: Callable[[], T]) -> Callable[[Callable[P, T]], Callable[P, T]]:
    """
    Decorator for API-side listing reads: a failing read degrades to an empty result.
    The scheduler core never uses it; it needs repository errors to propagate.
    """

    def decorator(func: Callable[P, T]) -> Callable[P, T]:
        @wraps(func)
        def wrapper(*args: P.args, **kwargs: P.kwargs) -> T:
            try:
                return func(*args, **kwargs)
            except Exception as e:
                logger.warning(f"DB read failed in {func.__name__}: {e}")
                return default_factory()

        return wrapper

    return decorator


def _adapt(params: Iterable[Any]) -> tuple[Any, ...]:
    return tuple(v.value if isinstance(v, Enum) else v for v in params)


def frame_records(df: pd.DataFrame | None) -> list[dict[str, Any]]:
    if df is None or df.empty:
        return []
    return df.astype(object).where(pd.notna(df), None).to_dict(orient="records")


def read_records(db: Dialect, query: str, params: Iterable[Any] = ()) -> list[dict[str, Any]]:
    conn = db.connect_ro()
    try:
        df = pd.read_sql_query(db.sql(query), conn, params=db.params(_adapt(params)))
    finally:
        conn.close()
    return frame_records(df)


def read_one(db: Dialect, query: str, params: Iterable[Any] = ()) -> dict[str, Any] | None:
    rows = read_records(db, query, params)
    return rows[0] if rows else None


def execute(db: Dialect, query: str, params: Iterable[Any] = ()) -> int:
    """Run one write statement; returns the affected row count."""
    with db.write_conn() as conn:
        cur = conn.cursor()
        cur.execute(db.sql(query), db.params(_adapt(params)))
        return cur.rowcount


def insert_row(db: Dialect, table: str, values: dict[str, Any]) -> int:
    cols = list(values)
    query = f"INSERT INTO {table} ({', '.join(cols)}) VALUES ({', '.join(['%s'] * len(cols))})"
    with db.write_conn() as conn:
        cur = conn.cursor()
        return db.insert(cur, db.sql(query), db.params(_adapt(values.values())))


def update_row(
    db: Dialect,
    table: str,
    row_id: int,
    changes: dict[str, Any],
    *,
    expect_status: Any = None,
) -> int:
    """
    UPDATE one row by id. With `expect_status`, the write only lands if the row still
    has that status (compare-and-set); the caller checks the returned row count.
    """
    if not changes:
        return 1
    assignments = ", ".join(f"{col} = %s" for col in changes)
    query = f"UPDATE {table} SET {assignments} WHERE id = %s"
    params: list[Any] = [*changes.values(), int(row_id)]
    if expect_status is not None:
        query += " AND status = %s"
        params.append(expect_status)
    return execute(db, query, params)


def cas_update(db: Dialect, table: str, row_id: int, changes: dict[str, Any], current_status: Any) -> None:
    if update_row(db, table, row_id, changes, expect_status=current_status) == 0:
        raise ConcurrentUpdateError(f"{table} row {row_id} changed status while being updated")


def check_columns(table: str, allowed: frozenset[str], values: dict[str, Any]) -> None:
    unknown = set(values) - allowed
    if unknown:
        raise ValueError(f"Unknown {table} column(s): {', '.join(sorted(unknown))}")


# ---------------------------------------------------------------------------
# Value converters (driver/pandas types -> domain types)
# ---------------------------------------------------------------------------


def to_dt(v: Any) -> datetime | None:
    if v is None:
        return None
    if isinstance(v, pd.Timestamp):
        v = v.to_pydatetime()
    if isinstance(v, str):
        raw = v.strip()
        if not raw:
            return None
        if raw.endswith("Z"):
            raw = raw[:-1] + "+00:00"
        v = datetime.fromisoformat(raw)
    if not isinstance(v, datetime):
        raise TypeError(f"Expected a timestamp; got {type(v).__name__}")
    if v.tzinfo is None:
        # Stored timestamps are UTC.
        v = v.replace(tzinfo=timezone.utc)
    return v.astimezone(timezone.utc)


def to_int(v: Any) -> int | None:
    return None if v is None else int(v)


def to_float(v: Any) -> float | None:
    return None if v is None else float(v)


def to_str(v: Any) -> str | None:
    return None if v is None else str(v)
