import json

import pytest

from lnscheduler.domain.errors import InvalidScheduleError, InvalidStatusTransition, NotFoundError
from lnscheduler.domain.models import ScheduledSwapStatus, ScheduledTradeStatus
from lnscheduler.engine.management import ScheduleManager


@pytest.fixture
def manager(repo):
    return ScheduleManager(repo)


def _futures(**kw):
    payload = {"type": "futures", "side": "buy", "order_type": "market", "leverage": 10, "margin": 2000}
    payload.update(kw)
    return payload


def test_create_date_trade(manager, user):
    st = manager.create_scheduled_trade(user.id, _futures(trigger_type="date", scheduled_time="2026-10-20T08:00:00Z"))
    assert st.status == ScheduledTradeStatus.PENDING
    assert st.scheduled_time.isoformat() == "2026-10-20T08:00:00+00:00"


def test_trade_with_two_trigger_sets_is_rejected(manager, user):
    with pytest.raises(InvalidScheduleError):
        manager.create_scheduled_trade(
            user.id,
            _futures(trigger_type="date", scheduled_time="2026-10-20T08:00:00Z", target_price_low=1),
        )


def test_price_range_bounds_are_checked(manager, user):
    with pytest.raises(InvalidScheduleError):
        manager.create_scheduled_trade(
            user.id, _futures(trigger_type="price_range", target_price_low=70000, target_price_high=60000)
        )


def test_percentage_trade_snapshots_base_price(manager, user, market):
    st = manager.create_scheduled_trade(user.id, _futures(trigger_type="price_percentage", price_percentage=-5))
    assert st.base_price_snapshot == 60000.0


def test_percentage_trade_without_market_data_is_rejected(manager, user):
    with pytest.raises(InvalidScheduleError):
        manager.create_scheduled_trade(user.id, _futures(trigger_type="price_percentage", price_percentage=5))


def test_limit_order_needs_limit_price(manager, user):
    with pytest.raises(InvalidScheduleError):
        manager.create_scheduled_trade(
            user.id, _futures(trigger_type="date", scheduled_time="2026-10-20T08:00:00Z", order_type="limit")
        )


def test_options_are_buy_only(manager, user):
    payload = {
        "trigger_type": "date",
        "scheduled_time": "2026-10-20T08:00:00Z",
        "type": "options",
        "side": "sell",
        "quantity": 1,
        "instrument_name": "BTC.2026-10-30.70000.C",
        "settlement": "cash",
    }
    with pytest.raises(InvalidScheduleError):
        manager.create_scheduled_trade(user.id, payload)
    payload["side"] = "buy"
    assert manager.create_scheduled_trade(user.id, payload).order_type == "market"


def test_unknown_user(manager):
    with pytest.raises(NotFoundError):
        manager.create_scheduled_trade(999, _futures(trigger_type="date", scheduled_time="2026-10-20T08:00:00Z"))


def test_update_switches_trigger_type(manager, user):
    st = manager.create_scheduled_trade(user.id, _futures(trigger_type="date", scheduled_time="2026-10-20T08:00:00Z"))
    updated = manager.update_scheduled_trade(
        st.id, {"trigger_type": "price_range", "target_price_low": 50000, "target_price_high": 55000}
    )
    assert updated.trigger_type == "price_range"
    assert updated.scheduled_time is None


def test_only_pending_trades_are_editable(repo, manager, user):
    st = manager.create_scheduled_trade(user.id, _futures(trigger_type="date", scheduled_time="2026-10-20T08:00:00Z"))
    manager.cancel_scheduled_trade(st.id)
    with pytest.raises(InvalidStatusTransition):
        manager.update_scheduled_trade(st.id, {"margin": 3000})
    with pytest.raises(InvalidStatusTransition):
        repo.update_scheduled_trade(st.id, status=ScheduledTradeStatus.PENDING)


def test_create_swap_normalises_trigger_config(manager, user):
    ss = manager.create_scheduled_swap(
        user.id,
        {
            "schedule_type": "recurring",
            "swap_direction": "usd_to_btc",
            "amount": 50,
            "trigger_config": {"interval": "weekly", "day_of_week": 1, "hour": 9},
        },
    )
    assert json.loads(ss.trigger_config) == {"interval": "weekly", "dayOfWeek": 1, "hour": 9, "minute": 0}
    assert ss.status == ScheduledSwapStatus.ACTIVE


def test_create_swap_rejects_bad_trigger(manager, user):
    with pytest.raises(InvalidScheduleError):
        manager.create_scheduled_swap(
            user.id,
            {"schedule_type": "recurring", "swap_direction": "btc_to_usd", "amount": 1, "trigger_config": "{}"},
        )
    with pytest.raises(InvalidScheduleError):
        manager.create_scheduled_swap(
            user.id,
            {"schedule_type": "calendar", "swap_direction": "btc_to_eur", "amount": 1, "trigger_config": "{}"},
        )


def test_swap_pause_resume_cancel(manager, user):
    ss = manager.create_scheduled_swap(
        user.id,
        {
            "schedule_type": "market_condition",
            "swap_direction": "btc_to_usd",
            "amount": 10000,
            "trigger_config": {"condition": "below", "targetPrice": 50000},
        },
    )
    with pytest.raises(InvalidStatusTransition):
        manager.resume_scheduled_swap(ss.id)
    assert manager.pause_scheduled_swap(ss.id).status == ScheduledSwapStatus.PAUSED
    assert manager.resume_scheduled_swap(ss.id).status == ScheduledSwapStatus.ACTIVE
    assert manager.cancel_scheduled_swap(ss.id).status == ScheduledSwapStatus.CANCELLED
    with pytest.raises(InvalidStatusTransition):
        manager.update_scheduled_swap(ss.id, {"amount": 20000})


def test_changing_trigger_resets_fired_slot(repo, manager, user, clock):
    ss = manager.create_scheduled_swap(
        user.id,
        {
            "schedule_type": "recurring",
            "swap_direction": "btc_to_usd",
            "amount": 10000,
            "trigger_config": {"interval": "daily", "hour": 12},
        },
    )
    repo.update_scheduled_swap(ss.id, last_fired_slot=clock.now)
    same = manager.update_scheduled_swap(ss.id, {"amount": 20000})
    assert same.last_fired_slot == clock.now
    moved = manager.update_scheduled_swap(ss.id, {"trigger_config": {"interval": "daily", "hour": 18}})
    assert moved.last_fired_slot is None
    assert manager.list_swap_executions(ss.id) == []
