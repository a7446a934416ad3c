from datetime import timedelta

import pytest

from lnscheduler.domain.errors import ConcurrentUpdateError, InvalidStatusTransition
from lnscheduler.domain.models import (
    MarketData,
    ScheduledSwapStatus,
    ScheduledTradeStatus,
    SwapExecutionStatus,
    TradeStatus,
)
from lnscheduler.db.rows import cas_update


def _scheduled_trade(repo, user, **kw):
    fields = dict(user_id=user.id, trigger_type="date", type="futures", side="buy", order_type="market", leverage=10,
                  margin=1000)
    fields.update(kw)
    return repo.create_scheduled_trade(**fields)


def test_users_without_full_credentials_are_not_listed(repo, user):
    repo.create_user("bob")
    repo.create_user("carol", api_key="k", api_secret="", api_passphrase="p")
    assert [u.username for u in repo.list_users_with_credentials()] == ["alice"]


def test_user_to_dict_hides_credentials(user):
    d = user.to_dict()
    assert d["has_credentials"] is True
    assert "api_secret" not in d


def test_trade_roundtrip_and_lookup_by_venue_id(repo, user):
    t = repo.create_trade(user_id=user.id, venue_id="abc", type="futures", side="sell", order_type="limit",
                          status=TradeStatus.OPEN, limit_price=65000.0)
    assert repo.get_trade_by_venue_id(user.id, "abc").id == t.id
    assert repo.get_trade_by_venue_id(user.id, "missing") is None
    assert t.status == TradeStatus.OPEN
    assert t.limit_price == 65000.0


def test_list_trades_filters_by_status(repo, user):
    repo.create_trade(user_id=user.id, type="futures", side="buy", order_type="market", status=TradeStatus.RUNNING)
    repo.create_trade(user_id=user.id, type="futures", side="buy", order_type="market", status=TradeStatus.CLOSED)
    running = repo.list_trades(user.id, [TradeStatus.RUNNING])
    assert [t.status for t in running] == [TradeStatus.RUNNING]
    assert len(repo.list_trades(user.id)) == 2


def test_update_trade_refuses_invalid_transition(repo, user):
    t = repo.create_trade(user_id=user.id, type="futures", side="buy", order_type="market", status=TradeStatus.CLOSED)
    with pytest.raises(InvalidStatusTransition):
        repo.update_trade(t.id, status=TradeStatus.RUNNING)
    assert repo.get_trade(t.id).status == TradeStatus.CLOSED


def test_cas_update_detects_concurrent_change(repo, user):
    t = repo.create_trade(user_id=user.id, type="futures", side="buy", order_type="market", status=TradeStatus.OPEN)
    repo.update_trade(t.id, status=TradeStatus.RUNNING)
    with pytest.raises(ConcurrentUpdateError):
        cas_update(repo.db, "trades", t.id, {"status": TradeStatus.CANCELLED}, TradeStatus.OPEN)
    assert repo.get_trade(t.id).status == TradeStatus.RUNNING


def test_unknown_columns_are_rejected(repo, user):
    with pytest.raises(ValueError):
        repo.create_trade(user_id=user.id, type="futures", side="buy", order_type="market", colour="red")


def test_claim_scheduled_trade_guards_duplicate_window(repo, user, clock):
    st = _scheduled_trade(repo, user, scheduled_time=clock.now)
    now = clock.now
    assert repo.claim_scheduled_trade(st.id, now, now - timedelta(minutes=5)) is True
    assert repo.claim_scheduled_trade(st.id, now, now - timedelta(minutes=5)) is False

    later = now + timedelta(minutes=6)
    assert repo.claim_scheduled_trade(st.id, later, later - timedelta(minutes=5)) is True
    assert repo.get_scheduled_trade(st.id).last_checked_at == later


def test_claim_scheduled_trade_requires_pending(repo, user, clock):
    st = _scheduled_trade(repo, user, scheduled_time=clock.now)
    repo.update_scheduled_trade(st.id, status=ScheduledTradeStatus.CANCELLED)
    assert repo.claim_scheduled_trade(st.id, clock.now, clock.now - timedelta(minutes=5)) is False


def test_scheduled_swap_claim_and_status(repo, user, clock):
    ss = repo.create_scheduled_swap(
        user_id=user.id,
        schedule_type="calendar",
        swap_direction="usd_to_btc",
        amount=25.0,
        trigger_config='{"dateTime": "2026-10-19T12:00:00+00:00"}',
    )
    assert ss.status == ScheduledSwapStatus.ACTIVE
    assert ss.trigger is not None
    repo.update_scheduled_swap(ss.id, status=ScheduledSwapStatus.PAUSED)
    assert repo.claim_scheduled_swap(ss.id, clock.now, clock.now - timedelta(minutes=5)) is False
    assert repo.list_active_scheduled_swaps() == []


def test_stored_swap_with_broken_trigger_still_loads(repo, user):
    ss = repo.create_scheduled_swap(
        user_id=user.id, schedule_type="recurring", swap_direction="btc_to_usd", amount=1.0, trigger_config="oops"
    )
    loaded = repo.get_scheduled_swap(ss.id)
    assert loaded.trigger is None
    assert loaded.trigger_config == "oops"


def test_swap_executions_are_counted_by_status(repo, user, clock):
    ss = repo.create_scheduled_swap(
        user_id=user.id, schedule_type="calendar", swap_direction="btc_to_usd", amount=1.0,
        trigger_config='{"dateTime": "2026-10-19T12:00:00+00:00"}',
    )
    repo.create_swap_execution(ss.id, SwapExecutionStatus.FAILED, clock.now, failure_reason="timeout")
    repo.create_swap_execution(ss.id, SwapExecutionStatus.FAILED, clock.now, failure_reason="timeout")
    assert repo.count_swap_executions(ss.id, SwapExecutionStatus.FAILED) == 2
    assert repo.count_swap_executions(ss.id, SwapExecutionStatus.SUCCESS) == 0
    assert {e.failure_reason for e in repo.list_swap_executions(ss.id)} == {"timeout"}


def test_market_data_upsert_keeps_one_row(repo):
    repo.upsert_market_data(MarketData(symbol="BTC/USD", last_price=60000.0))
    repo.upsert_market_data(MarketData(symbol="BTC/USD", last_price=61000.0))
    md = repo.get_market_data("BTC/USD")
    assert md.last_price == 61000.0
    assert repo.get_market_data("ETH/USD") is None


def test_event_stream_roundtrip(repo):
    repo.log_event("WARN", "swap keeps failing", subject="scheduled_swap:1", step="Execute")
    events = repo.list_events(limit=10)
    assert events[0]["message"] == "swap keeps failing"
    assert events[0]["level"] == "WARN"
    assert events[0]["timestamp"]


def test_ping(repo):
    assert repo.ping() is True
    assert repo.backend == "sqlite"
