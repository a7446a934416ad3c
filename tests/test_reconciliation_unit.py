import pytest

from lnscheduler.domain.models import Balance, MarketData, RemoteTrade, TradeStatus
from lnscheduler.engine.reconciliation import ReconciliationSync, SyncResult, format_usd
from lnscheduler.venue.errors import VenueUnavailableError


def _remote(venue_id, **kw):
    fields = dict(venue_id=venue_id, type="futures", side="buy", order_type="market", margin=1000, leverage=10)
    fields.update(kw)
    return RemoteTrade(**fields)


@pytest.fixture
def sync(repo, venue_factory, settings):
    return ReconciliationSync(repo, venue_factory, settings)


def test_unknown_running_remote_creates_one_trade(repo, user, venue, sync):
    venue.futures["running"] = [_remote("r-1", running=True, entry_price=60000.0, pnl=250.0)]

    assert sync.sync_user(user.id) == SyncResult(created=1, updated=0)
    assert sync.sync_user(user.id) == SyncResult(created=0, updated=1)

    trades = repo.list_trades(user.id)
    assert len(trades) == 1
    assert trades[0].status == TradeStatus.RUNNING
    assert trades[0].venue_id == "r-1"
    assert trades[0].pnl == 250.0


def test_all_scope_queries_open_and_running(user, venue, sync):
    sync.sync_user(user.id, "all")
    scopes = [kw["scope"] for name, kw in venue.calls if name == "fetch_futures_positions"]
    assert scopes == ["open", "running"]


def test_remote_progress_moves_local_status_forward(repo, user, venue, sync):
    repo.create_trade(user_id=user.id, venue_id="r-2", type="futures", side="buy", order_type="limit",
                      status=TradeStatus.OPEN)
    venue.futures["closed"] = [_remote("r-2", order_type="limit", closed=True, running=True, exit_price=62000.0)]

    result = sync.sync_user(user.id, "closed")

    assert result.updated == 1
    trade = repo.get_trade_by_venue_id(user.id, "r-2")
    assert trade.status == TradeStatus.CLOSED
    assert trade.exit_price == 62000.0


def test_closed_local_trade_is_not_reopened(repo, user, venue, sync):
    repo.create_trade(user_id=user.id, venue_id="r-3", type="futures", side="buy", order_type="market",
                      status=TradeStatus.CLOSED)
    venue.futures["running"] = [_remote("r-3", running=True, pnl=-40.0)]

    sync.sync_user(user.id, "running")

    trade = repo.get_trade_by_venue_id(user.id, "r-3")
    assert trade.status == TradeStatus.CLOSED
    assert trade.pnl == -40.0


def test_options_outage_does_not_block_futures(repo, user, venue, sync):
    venue.errors["fetch_options_positions"] = VenueUnavailableError("503")
    venue.futures["open"] = [_remote("r-4", open=True)]
    assert sync.sync_user(user.id, "open").created == 1


def test_options_positions_are_synced(repo, user, venue, sync):
    venue.options = [
        RemoteTrade(venue_id="o-1", type="options", side="buy", order_type="market", open=True, quantity=1.0,
                    instrument_name="BTC.2026-10-30.70000.C", settlement="physical"),
    ]
    sync.sync_user(user.id, "open")
    trade = repo.get_trade_by_venue_id(user.id, "o-1")
    assert trade.type == "options"
    assert trade.settlement == "physical"


def test_unknown_scope_is_rejected(user, sync):
    with pytest.raises(ValueError):
        sync.sync_user(user.id, "everything")


def test_sync_balance_uses_market_price(repo, user, venue, sync):
    repo.upsert_market_data(MarketData(symbol="BTC/USD", last_price=60000.0))
    venue.balance = Balance(balance=250_000)
    updated = sync.sync_balance(user.id)
    assert updated.balance == 250_000
    assert updated.balance_usd == "150.00"


def test_format_usd_without_price():
    assert format_usd(100_000, None) == "0.00"
    assert format_usd(100_000_000, 65000) == "65000.00"


def test_targets_removed_on_venue_are_cleared_locally(repo, user, venue, sync):
    repo.create_trade(user_id=user.id, venue_id="r-5", type="futures", side="buy", order_type="market",
                      status=TradeStatus.RUNNING, take_profit=70000.0, stop_loss=50000.0)
    venue.futures["running"] = [_remote("r-5", running=True)]

    sync.sync_user(user.id, "all")

    trade = repo.get_trade_by_venue_id(user.id, "r-5")
    assert trade.take_profit is None
    assert trade.stop_loss is None


def test_targets_changed_on_venue_overwrite_local(repo, user, venue, sync):
    repo.create_trade(user_id=user.id, venue_id="r-6", type="futures", side="buy", order_type="market",
                      status=TradeStatus.RUNNING, take_profit=70000.0, stop_loss=50000.0)
    venue.futures["running"] = [_remote("r-6", running=True, take_profit=72000.0)]

    sync.sync_user(user.id, "running")

    trade = repo.get_trade_by_venue_id(user.id, "r-6")
    assert trade.take_profit == 72000.0
    assert trade.stop_loss is None


def test_stale_open_flag_does_not_move_running_trade_back(repo, user, venue, sync):
    repo.create_trade(user_id=user.id, venue_id="r-7", type="futures", side="buy", order_type="market",
                      status=TradeStatus.RUNNING)
    venue.futures["open"] = [_remote("r-7", open=True, entry_price=61000.0)]

    assert sync.sync_user(user.id, "open").updated == 1

    trade = repo.get_trade_by_venue_id(user.id, "r-7")
    assert trade.status == TradeStatus.RUNNING
    assert trade.entry_price == 61000.0
