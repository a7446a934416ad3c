import pytest

from lnscheduler.domain.errors import InvalidStatusTransition
from lnscheduler.domain.models import RemoteTrade, ScheduledSwapStatus, ScheduledTradeStatus, TradeStatus
from lnscheduler.domain.status import (
    RemoteTradeState,
    ensure_scheduled_swap_transition,
    ensure_scheduled_trade_transition,
    map_remote_status,
    remote_state,
    validate_trade_status_transition,
)


def _remote(**flags):
    return RemoteTrade(venue_id="x", type="futures", side="buy", order_type="market", **flags)


def test_closed_flag_wins_over_stale_running_flag():
    assert remote_state(_remote(closed=True, running=True, open=True)) == RemoteTradeState.CLOSED
    assert map_remote_status(_remote(closed=True, running=True)) == TradeStatus.CLOSED


def test_flag_priority_and_canceled_spelling():
    assert map_remote_status(_remote(running=True, open=True)) == TradeStatus.RUNNING
    assert map_remote_status(_remote(open=True)) == TradeStatus.OPEN
    assert map_remote_status(_remote(canceled=True)) == TradeStatus.CANCELLED


def test_no_flags_maps_to_open():
    assert remote_state(_remote()) == RemoteTradeState.UNKNOWN
    assert map_remote_status(_remote()) == TradeStatus.OPEN


@pytest.mark.parametrize(
    "current,new,allowed",
    [
        (None, "running", True),
        ("pending", "open", True),
        ("open", "running", True),
        ("running", "closed", True),
        ("open", "cancelled", True),
        ("pending", "cancelled", True),
        ("running", "running", True),
        ("running", "cancelled", False),
        ("closed", "running", False),
        ("cancelled", "open", False),
        ("open", "pending", False),
        ("running", "open", False),
    ],
)
def test_trade_transitions(current, new, allowed):
    assert validate_trade_status_transition(current, new) is allowed


def test_scheduled_trade_leaves_pending_only_once():
    ensure_scheduled_trade_transition(ScheduledTradeStatus.PENDING, ScheduledTradeStatus.TRIGGERED)
    with pytest.raises(InvalidStatusTransition):
        ensure_scheduled_trade_transition(ScheduledTradeStatus.TRIGGERED, ScheduledTradeStatus.FAILED)
    with pytest.raises(InvalidStatusTransition):
        ensure_scheduled_trade_transition(ScheduledTradeStatus.CANCELLED, ScheduledTradeStatus.PENDING)


def test_scheduled_swap_transitions():
    ensure_scheduled_swap_transition(ScheduledSwapStatus.ACTIVE, ScheduledSwapStatus.PAUSED)
    ensure_scheduled_swap_transition(ScheduledSwapStatus.PAUSED, ScheduledSwapStatus.ACTIVE)
    with pytest.raises(InvalidStatusTransition):
        ensure_scheduled_swap_transition(ScheduledSwapStatus.PAUSED, ScheduledSwapStatus.COMPLETED)
    with pytest.raises(InvalidStatusTransition):
        ensure_scheduled_swap_transition(ScheduledSwapStatus.COMPLETED, ScheduledSwapStatus.ACTIVE)


@pytest.mark.parametrize(
    "flags",
    [
        {},
        {"open": True},
        {"running": True},
        {"running": True, "open": True},
        {"closed": True, "running": True},
        {"canceled": True},
        {"closed": True, "canceled": True},
    ],
)
def test_status_map_is_stable_when_reapplied(flags):
    first = map_remote_status(_remote(**flags))
    again = map_remote_status(_remote(**flags))
    assert first == again
    # Writing the mapped status over itself is always allowed.
    assert validate_trade_status_transition(first, again) is True
