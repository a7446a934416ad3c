"""
Create / update / cancel for scheduled trades and scheduled swaps.

Payloads are plain dicts with snake_case keys. Every write is validated against the
schedule invariants first (exactly one trigger field-set per trigger type, order
parameters complete for the instrument), so the tick never sees a half-formed schedule.
"""

from __future__ import annotations

import logging
from typing import Any

from lnscheduler.domain.errors import ConditionError, InvalidScheduleError, InvalidStatusTransition, NotFoundError
from lnscheduler.domain.models import (
    SCHEDULE_TYPES,
    SWAP_DIRECTIONS,
    TRIGGER_TYPES,
    ScheduledSwap,
    ScheduledSwapStatus,
    ScheduledTrade,
    ScheduledTradeStatus,
    SwapExecution,
)
from lnscheduler.domain.triggers import decode_trigger_config, encode_trigger_config, parse_datetime
from lnscheduler.engine.market import current_price
from lnscheduler.ports.repository import RepositoryPort

logger = logging.getLogger(__name__)

_TRADE_FIELDS = (
    "trigger_type",
    "type",
    "side",
    "order_type",
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
    "name",
    "description",
)

_TRIGGER_FIELD_SETS: dict[str, tuple[str, ...]] = {
    "date": ("scheduled_time",),
    "price_range": ("target_price_low", "target_price_high"),
    "price_percentage": ("base_price_snapshot", "price_percentage"),
}

_SWAP_FIELDS = ("schedule_type", "swap_direction", "amount", "trigger_config", "name", "description")


def _positive(values: dict[str, Any], key: str) -> None:
    v = values.get(key)
    if v is not None and float(v) <= 0:
        raise InvalidScheduleError(f"{key} must be positive")


class ScheduleManager:
    def __init__(self, repo: RepositoryPort, *, symbol: str = "BTC/USD"):
        self.repo = repo
        self.symbol = symbol

    def _require_user(self, user_id: int) -> None:
        if self.repo.get_user(user_id) is None:
            raise NotFoundError(f"User {user_id} not found")

    # ------------------------------------------------------------------
    # Scheduled trades
    # ------------------------------------------------------------------

    def _validate_trade(self, values: dict[str, Any], *, snapshot_base: bool) -> dict[str, Any]:
        trigger_type = values.get("trigger_type")
        if trigger_type not in TRIGGER_TYPES:
            raise InvalidScheduleError(f"trigger_type must be one of {TRIGGER_TYPES}")

        own = _TRIGGER_FIELD_SETS[trigger_type]
        foreign = [
            f for t, fields in _TRIGGER_FIELD_SETS.items() if t != trigger_type for f in fields if values.get(f) is not None
        ]
        if foreign:
            raise InvalidScheduleError(f"{trigger_type} trigger cannot carry {', '.join(foreign)}")

        if trigger_type == "date":
            if values.get("scheduled_time") is None:
                raise InvalidScheduleError("date trigger requires scheduled_time")
            try:
                values["scheduled_time"] = parse_datetime(values["scheduled_time"])
            except ConditionError as e:
                raise InvalidScheduleError(str(e)) from e
        elif trigger_type == "price_range":
            low, high = values.get("target_price_low"), values.get("target_price_high")
            if low is None or high is None:
                raise InvalidScheduleError("price_range trigger requires target_price_low and target_price_high")
            if float(low) > float(high):
                raise InvalidScheduleError("target_price_low must not exceed target_price_high")
            _positive(values, "target_price_low")
        else:
            if values.get("price_percentage") is None:
                raise InvalidScheduleError("price_percentage trigger requires price_percentage")
            if values.get("base_price_snapshot") is None:
                if not snapshot_base:
                    raise InvalidScheduleError("price_percentage trigger requires base_price_snapshot")
                price = current_price(self.repo, self.symbol)
                if price is None:
                    raise InvalidScheduleError("No market data available for the base price snapshot")
                values["base_price_snapshot"] = price
            _positive(values, "base_price_snapshot")
        missing = [f for f in own if values.get(f) is None]
        if missing:
            raise InvalidScheduleError(f"{trigger_type} trigger requires {', '.join(missing)}")

        kind = values.get("type")
        if kind == "futures":
            if values.get("side") not in ("buy", "sell"):
                raise InvalidScheduleError("side must be buy or sell")
            if values.get("order_type") not in ("market", "limit"):
                raise InvalidScheduleError("order_type must be market or limit")
            if values.get("leverage") is None:
                raise InvalidScheduleError("futures order requires leverage")
            if values.get("margin") is None and values.get("quantity") is None:
                raise InvalidScheduleError("futures order requires margin or quantity")
            if values["order_type"] == "limit" and values.get("limit_price") is None:
                raise InvalidScheduleError("limit order requires limit_price")
            for k in ("leverage", "margin", "quantity", "limit_price"):
                _positive(values, k)
        elif kind == "options":
            if values.get("side", "buy") != "buy":
                raise InvalidScheduleError("options orders are buy-only")
            values["side"] = "buy"
            values["order_type"] = values.get("order_type") or "market"
            if values.get("quantity") is None or not values.get("instrument_name"):
                raise InvalidScheduleError("options order requires quantity and instrument_name")
            if values.get("settlement") not in ("physical", "cash"):
                raise InvalidScheduleError("options settlement must be physical or cash")
            _positive(values, "quantity")
        else:
            raise InvalidScheduleError("type must be futures or options")
        return values

    def create_scheduled_trade(self, user_id: int, payload: dict[str, Any]) -> ScheduledTrade:
        self._require_user(user_id)
        values = {k: payload.get(k) for k in _TRADE_FIELDS}
        values = self._validate_trade(values, snapshot_base=True)
        st = self.repo.create_scheduled_trade(user_id=user_id, status=ScheduledTradeStatus.PENDING, **values)
        logger.info(f"Created scheduled trade {st.id} ({st.trigger_type}) for user {user_id}")
        return st

    def update_scheduled_trade(self, scheduled_trade_id: int, payload: dict[str, Any]) -> ScheduledTrade:
        current = self.repo.get_scheduled_trade(scheduled_trade_id)
        if current is None:
            raise NotFoundError(f"Scheduled trade {scheduled_trade_id} not found")
        if current.status != ScheduledTradeStatus.PENDING:
            raise InvalidStatusTransition("ScheduledTrade", current.status.value, "pending")

        existing = current.to_dict()
        values = {k: existing.get(k) for k in _TRADE_FIELDS}
        if "trigger_type" in payload and payload["trigger_type"] != current.trigger_type:
            # Switching trigger type drops the old trigger's fields.
            for f in _TRIGGER_FIELD_SETS.get(current.trigger_type, ()):
                values[f] = None
        values.update({k: payload[k] for k in _TRADE_FIELDS if k in payload})
        values = self._validate_trade(values, snapshot_base=True)
        return self.repo.update_scheduled_trade(scheduled_trade_id, **values)

    def cancel_scheduled_trade(self, scheduled_trade_id: int) -> ScheduledTrade:
        if self.repo.get_scheduled_trade(scheduled_trade_id) is None:
            raise NotFoundError(f"Scheduled trade {scheduled_trade_id} not found")
        return self.repo.update_scheduled_trade(scheduled_trade_id, status=ScheduledTradeStatus.CANCELLED)

    # ------------------------------------------------------------------
    # Scheduled swaps
    # ------------------------------------------------------------------

    @staticmethod
    def _validate_swap(values: dict[str, Any]) -> dict[str, Any]:
        if values.get("schedule_type") not in SCHEDULE_TYPES:
            raise InvalidScheduleError(f"schedule_type must be one of {SCHEDULE_TYPES}")
        if values.get("swap_direction") not in SWAP_DIRECTIONS:
            raise InvalidScheduleError(f"swap_direction must be one of {tuple(SWAP_DIRECTIONS)}")
        if values.get("amount") is None or float(values["amount"]) <= 0:
            raise InvalidScheduleError("amount must be positive")
        values["amount"] = float(values["amount"])

        raw = values.get("trigger_config")
        if raw is None:
            raise InvalidScheduleError("trigger_config is required")
        try:
            trigger = decode_trigger_config(values["schedule_type"], raw)
        except ConditionError as e:
            raise InvalidScheduleError(str(e)) from e
        values["trigger_config"] = encode_trigger_config(trigger)
        return values

    def create_scheduled_swap(self, user_id: int, payload: dict[str, Any]) -> ScheduledSwap:
        self._require_user(user_id)
        values = self._validate_swap({k: payload.get(k) for k in _SWAP_FIELDS})
        ss = self.repo.create_scheduled_swap(user_id=user_id, status=ScheduledSwapStatus.ACTIVE, **values)
        logger.info(f"Created scheduled swap {ss.id} ({ss.schedule_type}) for user {user_id}")
        return ss

    def _require_swap(self, scheduled_swap_id: int) -> ScheduledSwap:
        ss = self.repo.get_scheduled_swap(scheduled_swap_id)
        if ss is None:
            raise NotFoundError(f"Scheduled swap {scheduled_swap_id} not found")
        return ss

    def update_scheduled_swap(self, scheduled_swap_id: int, payload: dict[str, Any]) -> ScheduledSwap:
        current = self._require_swap(scheduled_swap_id)
        if current.status not in (ScheduledSwapStatus.ACTIVE, ScheduledSwapStatus.PAUSED):
            raise InvalidStatusTransition("ScheduledSwap", current.status.value, current.status.value)

        values = {
            "schedule_type": current.schedule_type,
            "swap_direction": current.swap_direction,
            "amount": current.amount,
            "trigger_config": current.trigger_config,
            "name": current.name,
            "description": current.description,
        }
        values.update({k: payload[k] for k in _SWAP_FIELDS if k in payload})
        values = self._validate_swap(values)
        if values["trigger_config"] != current.trigger_config or values["schedule_type"] != current.schedule_type:
            # A new trigger starts with a clean slot history.
            values["last_fired_slot"] = None
        return self.repo.update_scheduled_swap(scheduled_swap_id, **values)

    def cancel_scheduled_swap(self, scheduled_swap_id: int) -> ScheduledSwap:
        self._require_swap(scheduled_swap_id)
        return self.repo.update_scheduled_swap(scheduled_swap_id, status=ScheduledSwapStatus.CANCELLED)

    def pause_scheduled_swap(self, scheduled_swap_id: int) -> ScheduledSwap:
        self._require_swap(scheduled_swap_id)
        return self.repo.update_scheduled_swap(scheduled_swap_id, status=ScheduledSwapStatus.PAUSED)

    def resume_scheduled_swap(self, scheduled_swap_id: int) -> ScheduledSwap:
        current = self._require_swap(scheduled_swap_id)
        if current.status != ScheduledSwapStatus.PAUSED:
            raise InvalidStatusTransition("ScheduledSwap", current.status.value, ScheduledSwapStatus.ACTIVE.value)
        return self.repo.update_scheduled_swap(scheduled_swap_id, status=ScheduledSwapStatus.ACTIVE)

    def list_swap_executions(self, scheduled_swap_id: int) -> list[SwapExecution]:
        self._require_swap(scheduled_swap_id)
        return self.repo.list_swap_executions(scheduled_swap_id)
