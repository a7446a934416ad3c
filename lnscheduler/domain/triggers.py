"""
Scheduled-swap trigger configurations.

Rows store the trigger as a JSON document whose shape depends on `schedule_type`.
It is decoded here, once, into one of three frozen variants; the evaluator only ever
sees the typed variant.
"""

from __future__ import annotations

import json
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Union
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from lnscheduler.domain.errors import InvalidConditionError

RECURRING_INTERVALS = ("daily", "weekly", "monthly")
MARKET_CONDITIONS = ("above", "below", "between")


@dataclass(frozen=True)
class CalendarTrigger:
    date_time: datetime


@dataclass(frozen=True)
class RecurringTrigger:
    interval: str
    hour: int = 12
    minute: int = 0
    # 0 = Sunday .. 6 = Saturday
    day_of_week: int | None = None
    day_of_month: int | None = None
    start_date: datetime | None = None
    end_date: datetime | None = None


@dataclass(frozen=True)
class MarketConditionTrigger:
    condition: str | None = None
    target_price: float | None = None
    min_price: float | None = None
    max_price: float | None = None
    percentage: float | None = None
    base_price: float | None = None

    @property
    def is_relative(self) -> bool:
        return self.percentage is not None and self.base_price is not None


TriggerConfig = Union[CalendarTrigger, RecurringTrigger, MarketConditionTrigger]


def parse_datetime(value: Any, tz_name: str | None = None) -> datetime:
    """Parse an ISO timestamp; naive values are interpreted in `tz_name` (default UTC)."""
    if isinstance(value, datetime):
        dt = value
    elif isinstance(value, str) and value.strip():
        raw = value.strip()
        if raw.endswith("Z"):
            raw = raw[:-1] + "+00:00"
        try:
            dt = datetime.fromisoformat(raw)
        except ValueError as exc:
            raise InvalidConditionError(f"Invalid datetime: {value!r}") from exc
    else:
        raise InvalidConditionError(f"Invalid datetime: {value!r}")

    if dt.tzinfo is None:
        tz = timezone.utc
        if tz_name:
            try:
                tz = ZoneInfo(tz_name)
            except (ZoneInfoNotFoundError, ValueError) as exc:
                raise InvalidConditionError(f"Unknown timezone: {tz_name!r}") from exc
        dt = dt.replace(tzinfo=tz)
    return dt.astimezone(timezone.utc)


def _pick(doc: dict[str, Any], camel: str, snake: str) -> Any:
    if camel in doc:
        return doc[camel]
    return doc.get(snake)


def _opt_float(doc: dict[str, Any], camel: str, snake: str) -> float | None:
    v = _pick(doc, camel, snake)
    if v is None:
        return None
    if isinstance(v, bool):
        raise InvalidConditionError(f"{camel} must be a number")
    try:
        return float(v)
    except (TypeError, ValueError) as exc:
        raise InvalidConditionError(f"{camel} must be a number; got {v!r}") from exc


def _opt_int(doc: dict[str, Any], camel: str, snake: str, lo: int, hi: int, default: int | None = None) -> int | None:
    v = _pick(doc, camel, snake)
    if v is None:
        return default
    if isinstance(v, bool) or not isinstance(v, (int, float)) or int(v) != v:
        raise InvalidConditionError(f"{camel} must be an integer; got {v!r}")
    iv = int(v)
    if not lo <= iv <= hi:
        raise InvalidConditionError(f"{camel} must be between {lo} and {hi}; got {iv}")
    return iv


def _decode_calendar(doc: dict[str, Any]) -> CalendarTrigger:
    raw = _pick(doc, "dateTime", "date_time")
    if raw is None:
        raise InvalidConditionError("calendar trigger requires dateTime")
    return CalendarTrigger(date_time=parse_datetime(raw, doc.get("timezone")))


def _decode_recurring(doc: dict[str, Any]) -> RecurringTrigger:
    interval = doc.get("interval")
    if interval not in RECURRING_INTERVALS:
        raise InvalidConditionError(f"recurring interval must be one of {RECURRING_INTERVALS}; got {interval!r}")

    day_of_week = _opt_int(doc, "dayOfWeek", "day_of_week", 0, 6)
    day_of_month = _opt_int(doc, "dayOfMonth", "day_of_month", 1, 31)
    if interval == "weekly" and day_of_week is None:
        raise InvalidConditionError("weekly recurring trigger requires dayOfWeek")
    if interval == "monthly" and day_of_month is None:
        raise InvalidConditionError("monthly recurring trigger requires dayOfMonth")

    start_raw = _pick(doc, "startDate", "start_date")
    end_raw = _pick(doc, "endDate", "end_date")
    return RecurringTrigger(
        interval=interval,
        hour=_opt_int(doc, "hour", "hour", 0, 23, default=12),
        minute=_opt_int(doc, "minute", "minute", 0, 59, default=0),
        day_of_week=day_of_week,
        day_of_month=day_of_month,
        start_date=parse_datetime(start_raw) if start_raw else None,
        end_date=parse_datetime(end_raw) if end_raw else None,
    )


def _decode_market_condition(doc: dict[str, Any]) -> MarketConditionTrigger:
    condition = doc.get("condition")
    if condition is not None and condition not in MARKET_CONDITIONS:
        raise InvalidConditionError(f"market condition must be one of {MARKET_CONDITIONS}; got {condition!r}")
    trig = MarketConditionTrigger(
        condition=condition,
        target_price=_opt_float(doc, "targetPrice", "target_price"),
        min_price=_opt_float(doc, "minPrice", "min_price"),
        max_price=_opt_float(doc, "maxPrice", "max_price"),
        percentage=_opt_float(doc, "percentage", "percentage"),
        base_price=_opt_float(doc, "basePrice", "base_price"),
    )
    if condition is None and not trig.is_relative:
        raise InvalidConditionError("market condition requires a condition or percentage + basePrice")
    return trig


_DECODERS = {
    "calendar": _decode_calendar,
    "recurring": _decode_recurring,
    "market_condition": _decode_market_condition,
}


def decode_trigger_config(schedule_type: str, raw: str | dict[str, Any]) -> TriggerConfig:
    decoder = _DECODERS.get(schedule_type)
    if decoder is None:
        raise InvalidConditionError(f"Unknown schedule type: {schedule_type!r}")

    if isinstance(raw, str):
        try:
            doc = json.loads(raw)
        except json.JSONDecodeError as exc:
            raise InvalidConditionError(f"Trigger config is not valid JSON: {exc}") from exc
    else:
        doc = raw
    if not isinstance(doc, dict):
        raise InvalidConditionError(f"Trigger config must be an object; got {type(doc).__name__}")
    return decoder(doc)


def encode_trigger_config(trigger: TriggerConfig) -> str:
    """Serialise a variant back to the stored (camelCase) JSON document."""
    if isinstance(trigger, CalendarTrigger):
        doc: dict[str, Any] = {"dateTime": trigger.date_time.isoformat()}
    elif isinstance(trigger, RecurringTrigger):
        doc = {"interval": trigger.interval, "hour": trigger.hour, "minute": trigger.minute}
        if trigger.day_of_week is not None:
            doc["dayOfWeek"] = trigger.day_of_week
        if trigger.day_of_month is not None:
            doc["dayOfMonth"] = trigger.day_of_month
        if trigger.start_date is not None:
            doc["startDate"] = trigger.start_date.isoformat()
        if trigger.end_date is not None:
            doc["endDate"] = trigger.end_date.isoformat()
    elif isinstance(trigger, MarketConditionTrigger):
        doc = {
            k: v
            for k, v in (
                ("condition", trigger.condition),
                ("targetPrice", trigger.target_price),
                ("minPrice", trigger.min_price),
                ("maxPrice", trigger.max_price),
                ("percentage", trigger.percentage),
                ("basePrice", trigger.base_price),
            )
            if v is not None
        }
    else:
        raise TypeError(f"Unsupported trigger: {type(trigger).__name__}")
    return json.dumps(doc, sort_keys=True)
