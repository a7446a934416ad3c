from __future__ import annotations

from typing import Any, Iterable

from lnscheduler.db.rows import (
    Dialect,
    cas_update,
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
from lnscheduler.domain.models import Trade, TradeStatus
from lnscheduler.domain.status import ensure_trade_transition
from lnscheduler.utils.clock import utcnow

_COLUMNS = frozenset(
    {
        "user_id",
        "venue_id",
        "type",
        "side",
        "order_type",
        "status",
        "entry_price",
        "exit_price",
        "limit_price",
        "margin",
        "leverage",
        "quantity",
        "take_profit",
        "stop_loss",
        "pnl",
        "pnl_usd",
        "fee",
        "liquidation_price",
        "instrument_name",
        "settlement",
    }
)


def _to_trade(row: dict[str, Any]) -> Trade:
    return Trade(
        id=int(row["id"]),
        user_id=int(row["user_id"]),
        type=str(row["type"]),
        side=str(row["side"]),
        order_type=str(row["order_type"]),
        status=TradeStatus(row["status"]),
        venue_id=to_str(row.get("venue_id")),
        entry_price=to_float(row.get("entry_price")),
        exit_price=to_float(row.get("exit_price")),
        limit_price=to_float(row.get("limit_price")),
        margin=to_int(row.get("margin")),
        leverage=to_float(row.get("leverage")),
        quantity=to_float(row.get("quantity")),
        take_profit=to_float(row.get("take_profit")),
        stop_loss=to_float(row.get("stop_loss")),
        pnl=to_float(row.get("pnl")),
        pnl_usd=to_float(row.get("pnl_usd")),
        fee=to_int(row.get("fee")),
        liquidation_price=to_float(row.get("liquidation_price")),
        instrument_name=to_str(row.get("instrument_name")),
        settlement=to_str(row.get("settlement")),
        created_at=to_dt(row.get("created_at")),
        updated_at=to_dt(row.get("updated_at")),
    )


def create_trade(db: Dialect, **fields: Any) -> Trade:
    check_columns("trades", _COLUMNS, fields)
    now = utcnow()
    values = {"status": TradeStatus.PENDING, **fields, "created_at": now, "updated_at": now}
    return _load(db, insert_row(db, "trades", values))


def get_trade(db: Dialect, trade_id: int) -> Trade | None:
    row = read_one(db, "SELECT * FROM trades WHERE id = %s", (int(trade_id),))
    return _to_trade(row) if row else None


def _load(db: Dialect, trade_id: int) -> Trade:
    trade = get_trade(db, trade_id)
    if trade is None:
        raise NotFoundError(f"Trade {trade_id} not found")
    return trade


def get_trade_by_venue_id(db: Dialect, user_id: int, venue_id: str) -> Trade | None:
    row = read_one(
        db,
        "SELECT * FROM trades WHERE user_id = %s AND venue_id = %s ORDER BY id DESC LIMIT 1",
        (int(user_id), str(venue_id)),
    )
    return _to_trade(row) if row else None


def list_trades(db: Dialect, user_id: int, statuses: Iterable[TradeStatus] | None = None) -> list[Trade]:
    query = "SELECT * FROM trades WHERE user_id = %s"
    params: list[Any] = [int(user_id)]
    if statuses is not None:
        wanted = [TradeStatus(s) for s in statuses]
        if not wanted:
            return []
        query += f" AND status IN ({', '.join(['%s'] * len(wanted))})"
        params.extend(wanted)
    query += " ORDER BY created_at DESC, id DESC"
    return [_to_trade(r) for r in read_records(db, query, params)]


def update_trade(db: Dialect, trade_id: int, **changes: Any) -> Trade:
    check_columns("trades", _COLUMNS, changes)
    current = _load(db, trade_id)
    if changes.get("status") is not None:
        ensure_trade_transition(current.status, changes["status"])
    cas_update(db, "trades", trade_id, {**changes, "updated_at": utcnow()}, current.status)
    return _load(db, trade_id)
