import json
from datetime import datetime, timezone

import pytest

from lnscheduler.domain.errors import InvalidConditionError
from lnscheduler.domain.triggers import (
    CalendarTrigger,
    MarketConditionTrigger,
    RecurringTrigger,
    decode_trigger_config,
    encode_trigger_config,
    parse_datetime,
)


def test_parse_datetime_accepts_z_suffix():
    assert parse_datetime("2026-10-19T12:00:00Z") == datetime(2026, 10, 19, 12, 0, tzinfo=timezone.utc)


def test_parse_datetime_naive_uses_given_timezone():
    dt = parse_datetime("2026-10-19T09:00:00", "America/New_York")
    assert dt == datetime(2026, 10, 19, 13, 0, tzinfo=timezone.utc)


def test_parse_datetime_rejects_garbage():
    with pytest.raises(InvalidConditionError):
        parse_datetime("next tuesday")


def test_decode_calendar_with_timezone_field():
    trig = decode_trigger_config("calendar", json.dumps({"dateTime": "2026-10-20T08:30:00", "timezone": "Europe/Paris"}))
    assert isinstance(trig, CalendarTrigger)
    assert trig.date_time == datetime(2026, 10, 20, 6, 30, tzinfo=timezone.utc)


def test_decode_recurring_defaults_to_noon():
    trig = decode_trigger_config("recurring", {"interval": "daily"})
    assert trig == RecurringTrigger(interval="daily", hour=12, minute=0)


def test_decode_recurring_weekly_requires_day_of_week():
    with pytest.raises(InvalidConditionError):
        decode_trigger_config("recurring", {"interval": "weekly", "hour": 9})


def test_decode_recurring_rejects_out_of_range_hour():
    with pytest.raises(InvalidConditionError):
        decode_trigger_config("recurring", {"interval": "daily", "hour": 24})


def test_decode_market_condition_accepts_snake_case_keys():
    trig = decode_trigger_config("market_condition", {"condition": "between", "min_price": 1, "max_price": 2})
    assert trig == MarketConditionTrigger(condition="between", min_price=1.0, max_price=2.0)


def test_decode_market_condition_requires_condition_or_relative():
    with pytest.raises(InvalidConditionError):
        decode_trigger_config("market_condition", {"targetPrice": 70000})


def test_decode_rejects_unknown_schedule_type_and_bad_json():
    with pytest.raises(InvalidConditionError):
        decode_trigger_config("hourly", {})
    with pytest.raises(InvalidConditionError):
        decode_trigger_config("calendar", "{not json")


def test_encode_writes_camel_case_document():
    doc = json.loads(
        encode_trigger_config(RecurringTrigger(interval="weekly", hour=9, minute=15, day_of_week=0))
    )
    assert doc == {"interval": "weekly", "hour": 9, "minute": 15, "dayOfWeek": 0}
