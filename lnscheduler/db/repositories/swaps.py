from __future__ import annotations

from datetime import datetime
from typing import Any

from lnscheduler.db.rows import (
    Dialect,
    check_columns,
    insert_row,
    read_one,
    read_records,
    to_dt,
    to_float,
    to_int,
    to_str,
)
from lnscheduler.domain.errors import NotFoundError
from lnscheduler.domain.models import Swap, SwapExecution, SwapExecutionStatus
from lnscheduler.utils.clock import utcnow

_SWAP_COLUMNS = frozenset(
    {
        "user_id",
        "venue_id",
        "from_asset",
        "to_asset",
        "from_amount",
        "to_amount",
        "exchange_rate",
        "fee",
        "status",
    }
)


def _to_swap(row: dict[str, Any]) -> Swap:
    return Swap(
        id=int(row["id"]),
        user_id=int(row["user_id"]),
        from_asset=str(row["from_asset"]),
        to_asset=str(row["to_asset"]),
        from_amount=float(row["from_amount"]),
        to_amount=float(row["to_amount"]),
        status=str(row["status"]),
        venue_id=to_str(row.get("venue_id")),
        exchange_rate=to_float(row.get("exchange_rate")),
        fee=to_float(row.get("fee")) or 0.0,
        created_at=to_dt(row.get("created_at")),
        updated_at=to_dt(row.get("updated_at")),
    )


def _to_execution(row: dict[str, Any]) -> SwapExecution:
    return SwapExecution(
        id=int(row["id"]),
        scheduled_swap_id=int(row["scheduled_swap_id"]),
        execution_time=to_dt(row["execution_time"]),
        status=SwapExecutionStatus(row["status"]),
        swap_id=to_int(row.get("swap_id")),
        failure_reason=to_str(row.get("failure_reason")),
        created_at=to_dt(row.get("created_at")),
    )


def create_swap(db: Dialect, **fields: Any) -> Swap:
    check_columns("swaps", _SWAP_COLUMNS, fields)
    now = utcnow()
    new_id = insert_row(db, "swaps", {"fee": 0.0, **fields, "created_at": now, "updated_at": now})
    row = read_one(db, "SELECT * FROM swaps WHERE id = %s", (new_id,))
    if row is None:
        raise NotFoundError(f"Swap {new_id} not found after insert")
    return _to_swap(row)


def list_swaps(db: Dialect, user_id: int) -> list[Swap]:
    rows = read_records(
        db,
        "SELECT * FROM swaps WHERE user_id = %s ORDER BY created_at DESC, id DESC",
        (int(user_id),),
    )
    return [_to_swap(r) for r in rows]


def create_swap_execution(
    db: Dialect,
    scheduled_swap_id: int,
    status: SwapExecutionStatus,
    execution_time: datetime,
    *,
    swap_id: int | None = None,
    failure_reason: str | None = None,
) -> SwapExecution:
    new_id = insert_row(
        db,
        "swap_executions",
        {
            "scheduled_swap_id": int(scheduled_swap_id),
            "execution_time": execution_time,
            "status": SwapExecutionStatus(status),
            "swap_id": swap_id,
            "failure_reason": failure_reason,
            "created_at": utcnow(),
        },
    )
    row = read_one(db, "SELECT * FROM swap_executions WHERE id = %s", (new_id,))
    if row is None:
        raise NotFoundError(f"Swap execution {new_id} not found after insert")
    return _to_execution(row)


def list_swap_executions(db: Dialect, scheduled_swap_id: int) -> list[SwapExecution]:
    rows = read_records(
        db,
        "SELECT * FROM swap_executions WHERE scheduled_swap_id = %s ORDER BY execution_time DESC, id DESC",
        (int(scheduled_swap_id),),
    )
    return [_to_execution(r) for r in rows]


def count_swap_executions(db: Dialect, scheduled_swap_id: int, status: SwapExecutionStatus) -> int:
    row = read_one(
        db,
        "SELECT COUNT(*) AS n FROM swap_executions WHERE scheduled_swap_id = %s AND status = %s",
        (int(scheduled_swap_id), SwapExecutionStatus(status)),
    )
    return int(row["n"]) if row else 0
