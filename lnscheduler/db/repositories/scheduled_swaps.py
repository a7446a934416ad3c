from __future__ import annotations

import logging
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
    to_str,
)
from lnscheduler.domain.errors import InvalidConditionError, NotFoundError
from lnscheduler.domain.models import ScheduledSwap, ScheduledSwapStatus
from lnscheduler.domain.status import ensure_scheduled_swap_transition
from lnscheduler.domain.triggers import decode_trigger_config
from lnscheduler.utils.clock import utcnow

logger = logging.getLogger(__name__)

_COLUMNS = frozenset(
    {
        "user_id",
        "schedule_type",
        "swap_direction",
        "amount",
        "trigger_config",
        "status",
        "name",
        "description",
        "last_checked_at",
        "last_fired_slot",
    }
)


def _to_scheduled_swap(row: dict[str, Any]) -> ScheduledSwap:
    raw = str(row.get("trigger_config") or "")
    try:
        trigger = decode_trigger_config(str(row["schedule_type"]), raw)
    except InvalidConditionError as e:
        # Kept loadable; the evaluator reports it per tick.
        logger.debug("Scheduled swap %s has an undecodable trigger: %s", row.get("id"), e)
        trigger = None
    return ScheduledSwap(
        id=int(row["id"]),
        user_id=int(row["user_id"]),
        schedule_type=str(row["schedule_type"]),
        swap_direction=str(row["swap_direction"]),
        amount=float(row["amount"]),
        trigger_config=raw,
        trigger=trigger,
        status=ScheduledSwapStatus(row["status"]),
        name=to_str(row.get("name")),
        description=to_str(row.get("description")),
        last_checked_at=to_dt(row.get("last_checked_at")),
        last_fired_slot=to_dt(row.get("last_fired_slot")),
        created_at=to_dt(row.get("created_at")),
        updated_at=to_dt(row.get("updated_at")),
    )


def create_scheduled_swap(db: Dialect, **fields: Any) -> ScheduledSwap:
    check_columns("scheduled_swaps", _COLUMNS, fields)
    now = utcnow()
    values = {"status": ScheduledSwapStatus.ACTIVE, **fields, "created_at": now, "updated_at": now}
    return _load(db, insert_row(db, "scheduled_swaps", values))


def get_scheduled_swap(db: Dialect, scheduled_swap_id: int) -> ScheduledSwap | None:
    row = read_one(db, "SELECT * FROM scheduled_swaps WHERE id = %s", (int(scheduled_swap_id),))
    return _to_scheduled_swap(row) if row else None


def _load(db: Dialect, scheduled_swap_id: int) -> ScheduledSwap:
    ss = get_scheduled_swap(db, scheduled_swap_id)
    if ss is None:
        raise NotFoundError(f"Scheduled swap {scheduled_swap_id} not found")
    return ss


def list_scheduled_swaps(db: Dialect, user_id: int) -> list[ScheduledSwap]:
    rows = read_records(
        db,
        "SELECT * FROM scheduled_swaps WHERE user_id = %s ORDER BY created_at DESC, id DESC",
        (int(user_id),),
    )
    return [_to_scheduled_swap(r) for r in rows]


def list_active_scheduled_swaps(db: Dialect) -> list[ScheduledSwap]:
    rows = read_records(
        db,
        "SELECT * FROM scheduled_swaps WHERE status = %s ORDER BY id",
        (ScheduledSwapStatus.ACTIVE,),
    )
    return [_to_scheduled_swap(r) for r in rows]


def update_scheduled_swap(db: Dialect, scheduled_swap_id: int, **changes: Any) -> ScheduledSwap:
    check_columns("scheduled_swaps", _COLUMNS, changes)
    current = _load(db, scheduled_swap_id)
    if changes.get("status") is not None:
        ensure_scheduled_swap_transition(current.status, changes["status"])
    cas_update(db, "scheduled_swaps", scheduled_swap_id, {**changes, "updated_at": utcnow()}, current.status)
    return _load(db, scheduled_swap_id)


def claim_scheduled_swap(db: Dialect, scheduled_swap_id: int, now: datetime, stale_before: datetime) -> bool:
    n = execute(
        db,
        """
        UPDATE scheduled_swaps SET last_checked_at = %s, updated_at = %s
        WHERE id = %s AND status = %s AND (last_checked_at IS NULL OR last_checked_at <= %s)
        """,
        (now, now, int(scheduled_swap_id), ScheduledSwapStatus.ACTIVE, stale_before),
    )
    return n == 1
