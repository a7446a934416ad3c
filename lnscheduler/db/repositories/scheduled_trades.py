from __future__ import annotations

from datetime import datetime
from typing import Any

from lnscheduler.db.rows import (
    Dialect,
    cas_update,
    check_columns,
    execute,
    insert_row,
    read_one,
    read_records,
    to_dt,
    to_float,
    to_int,
    to_str,
)
from lnscheduler.domain.errors import NotFoundError
from lnscheduler.domain.models import ScheduledTrade, ScheduledTradeStatus
from lnscheduler.domain.status import ensure_scheduled_trade_transition
from lnscheduler.utils.clock import utcnow

_COLUMNS = frozenset(
    {
        "user_id",
        "trigger_type",
        "type",
        "side",
        "order_type",
        "status",
        "scheduled_time",
        "target_price_low",
        "target_price_high",
        "base_price_snapshot",
        "price_percentage",
        "margin",
        "leverage",
        "quantity",
        "take_profit",
        "stop_loss",
        "limit_price",
        "instrument_name",
        "settlement",
        "executed_trade_id",
        "error_message",
        "name",
        "description",
        "last_checked_at",
        "executed_at",
    }
)


def _to_scheduled_trade(row: dict[str, Any]) -> ScheduledTrade:
    return ScheduledTrade(
        id=int(row["id"]),
        user_id=int(row["user_id"]),
        trigger_type=str(row["trigger_type"]),
        type=str(row["type"]),
        side=str(row["side"]),
        order_type=str(row["order_type"]),
        status=ScheduledTradeStatus(row["status"]),
        scheduled_time=to_dt(row.get("scheduled_time")),
        target_price_low=to_float(row.get("target_price_low")),
        target_price_high=to_float(row.get("target_price_high")),
        base_price_snapshot=to_float(row.get("base_price_snapshot")),
        price_percentage=to_float(row.get("price_percentage")),
        margin=to_int(row.get("margin")),
        leverage=to_float(row.get("leverage")),
        quantity=to_float(row.get("quantity")),
        take_profit=to_float(row.get("take_profit")),
        stop_loss=to_float(row.get("stop_loss")),
        limit_price=to_float(row.get("limit_price")),
        instrument_name=to_str(row.get("instrument_name")),
        settlement=to_str(row.get("settlement")),
        executed_trade_id=to_int(row.get("executed_trade_id")),
        error_message=to_str(row.get("error_message")),
        name=to_str(row.get("name")),
        description=to_str(row.get("description")),
        last_checked_at=to_dt(row.get("last_checked_at")),
        executed_at=to_dt(row.get("executed_at")),
        created_at=to_dt(row.get("created_at")),
        updated_at=to_dt(row.get("updated_at")),
    )


def create_scheduled_trade(db: Dialect, **fields: Any) -> ScheduledTrade:
    check_columns("scheduled_trades", _COLUMNS, fields)
    now = utcnow()
    values = {"status": ScheduledTradeStatus.PENDING, **fields, "created_at": now, "updated_at": now}
    return _load(db, insert_row(db, "scheduled_trades", values))


def get_scheduled_trade(db: Dialect, scheduled_trade_id: int) -> ScheduledTrade | None:
    row = read_one(db, "SELECT * FROM scheduled_trades WHERE id = %s", (int(scheduled_trade_id),))
    return _to_scheduled_trade(row) if row else None


def _load(db: Dialect, scheduled_trade_id: int) -> ScheduledTrade:
    st = get_scheduled_trade(db, scheduled_trade_id)
    if st is None:
        raise NotFoundError(f"Scheduled trade {scheduled_trade_id} not found")
    return st


def list_scheduled_trades(db: Dialect, user_id: int) -> list[ScheduledTrade]:
    rows = read_records(
        db,
        "SELECT * FROM scheduled_trades WHERE user_id = %s ORDER BY created_at DESC, id DESC",
        (int(user_id),),
    )
    return [_to_scheduled_trade(r) for r in rows]


def list_pending_scheduled_trades(db: Dialect) -> list[ScheduledTrade]:
    rows = read_records(
        db,
        "SELECT * FROM scheduled_trades WHERE status = %s ORDER BY id",
        (ScheduledTradeStatus.PENDING,),
    )
    return [_to_scheduled_trade(r) for r in rows]


def update_scheduled_trade(db: Dialect, scheduled_trade_id: int, **changes: Any) -> ScheduledTrade:
    check_columns("scheduled_trades", _COLUMNS, changes)
    current = _load(db, scheduled_trade_id)
    if changes.get("status") is not None:
        ensure_scheduled_trade_transition(current.status, changes["status"])
    cas_update(db, "scheduled_trades", scheduled_trade_id, {**changes, "updated_at": utcnow()}, current.status)
    return _load(db, scheduled_trade_id)


def claim_scheduled_trade(db: Dialect, scheduled_trade_id: int, now: datetime, stale_before: datetime) -> bool:
    """
    Stamp `last_checked_at` if the row is still pending and was not checked after
    `stale_before`. True means this caller owns the execution attempt.
    """
    n = execute(
        db,
        """
        UPDATE scheduled_trades SET last_checked_at = %s, updated_at = %s
        WHERE id = %s AND status = %s AND (last_checked_at IS NULL OR last_checked_at <= %s)
        """,
        (now, now, int(scheduled_trade_id), ScheduledTradeStatus.PENDING, stale_before),
    )
    return n == 1
