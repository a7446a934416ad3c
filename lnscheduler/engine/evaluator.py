"""
Pure trigger evaluation.

`evaluate(schedule, now, current_price)` answers "should this schedule fire now?". It reads
no clocks and does no I/O: the tick passes in `now` and the price it read once for the
whole tick. Anything missing or malformed raises a `ConditionError`, which the tick treats
as "not this time".
"""

from __future__ import annotations

import logging
import math
from datetime import datetime, timezone, tzinfo
from zoneinfo import ZoneInfo

from lnscheduler.domain.errors import InvalidConditionError, NoMarketDataError
from lnscheduler.domain.models import ScheduledSwap, ScheduledTrade
from lnscheduler.domain.triggers import CalendarTrigger, MarketConditionTrigger, RecurringTrigger

logger = logging.getLogger(__name__)

DEFAULT_WINDOW_MINUTES = 5


def _tz(tz: str | tzinfo | None) -> tzinfo:
    if tz is None:
        return timezone.utc
    if isinstance(tz, str):
        return ZoneInfo(tz)
    return tz


def _require_price(current_price: float | None) -> float:
    if current_price is None:
        raise NoMarketDataError()
    return float(current_price)


def _percentage_hit(price: float, base: float, pct: float) -> bool:
    target = base * (100 + pct) / 100
    # A price equal to the target, up to float noise, is a hit.
    if math.isclose(price, target, rel_tol=1e-12):
        return True
    # Zero counts as the rising branch.
    if pct >= 0:
        return price >= target
    return price <= target


# ---------------------------------------------------------------------------
# Scheduled trades
# ---------------------------------------------------------------------------


def _evaluate_trade(st: ScheduledTrade, now: datetime, current_price: float | None) -> bool:
    if st.trigger_type == "date":
        if st.scheduled_time is None:
            raise InvalidConditionError(f"Scheduled trade {st.id}: date trigger without scheduled_time")
        return now >= st.scheduled_time

    if st.trigger_type == "price_range":
        if st.target_price_low is None or st.target_price_high is None:
            raise InvalidConditionError(f"Scheduled trade {st.id}: price range not set")
        price = _require_price(current_price)
        return st.target_price_low <= price <= st.target_price_high

    if st.trigger_type == "price_percentage":
        if st.price_percentage is None or st.base_price_snapshot is None:
            raise InvalidConditionError(f"Scheduled trade {st.id}: percentage or base price not set")
        price = _require_price(current_price)
        return _percentage_hit(price, st.base_price_snapshot, st.price_percentage)

    raise InvalidConditionError(f"Scheduled trade {st.id}: unknown trigger type {st.trigger_type!r}")


# ---------------------------------------------------------------------------
# Scheduled swaps
# ---------------------------------------------------------------------------


def recurring_slot(
    trigger: RecurringTrigger,
    now: datetime,
    tz: str | tzinfo | None = None,
    window_minutes: int = DEFAULT_WINDOW_MINUTES,
) -> datetime | None:
    """
    The UTC instant of the slot `now` falls in, or None when outside every slot.

    A slot is today's hour:minute in `tz`, widened by `window_minutes` either side.
    The distance is taken on minutes-of-day, so a window does not reach across midnight.
    """
    if trigger.start_date is not None and now < trigger.start_date:
        return None
    if trigger.end_date is not None and now > trigger.end_date:
        return None

    local = now.astimezone(_tz(tz))
    diff = abs((local.hour * 60 + local.minute) - (trigger.hour * 60 + trigger.minute))
    if diff > window_minutes:
        return None

    if trigger.interval == "weekly":
        # Sunday = 0
        if trigger.day_of_week != (local.weekday() + 1) % 7:
            return None
    elif trigger.interval == "monthly":
        if trigger.day_of_month != local.day:
            return None
    elif trigger.interval != "daily":
        raise InvalidConditionError(f"Unknown recurring interval {trigger.interval!r}")

    slot = local.replace(hour=trigger.hour, minute=trigger.minute, second=0, microsecond=0)
    return slot.astimezone(timezone.utc)


def _evaluate_market_condition(trig: MarketConditionTrigger, current_price: float | None) -> bool:
    price = _require_price(current_price)

    if trig.is_relative:
        return _percentage_hit(price, trig.base_price, trig.percentage)

    if trig.condition in ("above", "below"):
        if trig.target_price is None:
            raise InvalidConditionError(f"'{trig.condition}' condition missing targetPrice")
        return price >= trig.target_price if trig.condition == "above" else price <= trig.target_price

    if trig.condition == "between":
        if trig.min_price is None or trig.max_price is None:
            raise InvalidConditionError("'between' condition missing minPrice or maxPrice")
        return trig.min_price <= price <= trig.max_price

    raise InvalidConditionError(f"Unknown market condition {trig.condition!r}")


def _evaluate_swap(
    ss: ScheduledSwap,
    now: datetime,
    current_price: float | None,
    tz: str | tzinfo | None,
    window_minutes: int,
) -> bool:
    trig = ss.trigger
    if trig is None:
        raise InvalidConditionError(f"Scheduled swap {ss.id}: trigger config could not be decoded")

    if isinstance(trig, CalendarTrigger):
        return now >= trig.date_time

    if isinstance(trig, RecurringTrigger):
        slot = recurring_slot(trig, now, tz, window_minutes)
        if slot is None:
            return False
        # Already fired inside this slot.
        return ss.last_fired_slot is None or ss.last_fired_slot != slot

    if isinstance(trig, MarketConditionTrigger):
        return _evaluate_market_condition(trig, current_price)

    raise InvalidConditionError(f"Scheduled swap {ss.id}: unsupported trigger {type(trig).__name__}")


def evaluate(
    schedule: ScheduledTrade | ScheduledSwap,
    now: datetime,
    current_price: float | None,
    *,
    tz: str | tzinfo | None = None,
    window_minutes: int = DEFAULT_WINDOW_MINUTES,
) -> bool:
    if now.tzinfo is None:
        now = now.replace(tzinfo=timezone.utc)
    if isinstance(schedule, ScheduledTrade):
        return _evaluate_trade(schedule, now, current_price)
    if isinstance(schedule, ScheduledSwap):
        return _evaluate_swap(schedule, now, current_price, tz, window_minutes)
    raise TypeError(f"Cannot evaluate {type(schedule).__name__}")
