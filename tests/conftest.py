import os
from datetime import datetime, timedelta, timezone

import pytest

# Unit tests run on a throwaway SQLite file; never pick up a PostgreSQL DSN from the shell.
os.environ.pop("LNSCHED_DATABASE_URL", None)
os.environ.pop("DATABASE_URL", None)
os.environ.setdefault("LNSCHED_DISABLE_SCHEDULER", "1")

from lnscheduler.db.repository import SqlRepository
from lnscheduler.db.sqlite.connection import SqliteDialect
from lnscheduler.domain.models import Balance, MarketData, RemoteTrade, SwapResult, Ticker
from lnscheduler.engine.orchestrator import ExecutionOrchestrator
from lnscheduler.scheduler.settings import SchedulerSettings


class FakeVenue:
    """
    In-memory `VenuePort`.

    `errors` maps a method name to the exception it should raise; `calls` records every
    call as (method, kwargs) so tests can count venue traffic.
    """

    def __init__(self):
        self.calls = []
        self.errors = {}
        self.futures = {"open": [], "running": [], "closed": []}
        self.options = []
        self.ticker = Ticker(last_price=60000.0, index_price=60010.0, carry_fee_rate=0.0001)
        self.balance = Balance(balance=150_000)
        self._seq = 0

    def _call(self, name, **kwargs):
        self.calls.append((name, kwargs))
        if name in self.errors:
            raise self.errors[name]

    def count(self, name):
        return sum(1 for n, _ in self.calls if n == name)

    def _next_id(self, prefix):
        self._seq += 1
        return f"{prefix}-{self._seq}"

    def place_futures_order(self, *, side, order_type, leverage, margin=None, quantity=None, price=None,
                            take_profit=None, stop_loss=None):
        self._call(
            "place_futures_order",
            side=side,
            order_type=order_type,
            leverage=leverage,
            margin=margin,
            quantity=quantity,
            price=price,
            take_profit=take_profit,
            stop_loss=stop_loss,
        )
        return RemoteTrade(
            venue_id=self._next_id("fut"),
            type="futures",
            side=side,
            order_type=order_type,
            running=order_type == "market",
            open=order_type == "limit",
            entry_price=price or self.ticker.last_price,
            margin=margin,
            leverage=leverage,
            fee=12,
            liquidation_price=40000.0,
        )

    def place_options_order(self, *, quantity, settlement, instrument_name):
        self._call("place_options_order", quantity=quantity, settlement=settlement, instrument_name=instrument_name)
        return RemoteTrade(
            venue_id=self._next_id("opt"),
            type="options",
            side="buy",
            order_type="market",
            open=True,
            quantity=quantity,
            instrument_name=instrument_name,
            settlement=settlement,
        )

    def close_position(self, venue_id, trade_type="futures"):
        self._call("close_position", venue_id=venue_id, trade_type=trade_type)
        return RemoteTrade(
            venue_id=venue_id, type=trade_type, side="buy", order_type="market", closed=True, exit_price=61000.0,
            pnl=1500.0,
        )

    def cancel_order(self, venue_id):
        self._call("cancel_order", venue_id=venue_id)
        return None

    def update_targets(self, venue_id, *, take_profit=None, stop_loss=None):
        self._call("update_targets", venue_id=venue_id, take_profit=take_profit, stop_loss=stop_loss)
        return None

    def fetch_futures_positions(self, scope="open"):
        self._call("fetch_futures_positions", scope=scope)
        return list(self.futures.get(scope, []))

    def fetch_options_positions(self):
        self._call("fetch_options_positions")
        return list(self.options)

    def fetch_ticker(self):
        self._call("fetch_ticker")
        return self.ticker

    def fetch_balance(self):
        self._call("fetch_balance")
        return self.balance

    def execute_swap(self, from_asset, to_asset, amount):
        self._call("execute_swap", from_asset=from_asset, to_asset=to_asset, amount=amount)
        rate = self.ticker.last_price
        out = amount * 1e-8 * rate if from_asset == "BTC" else amount / rate * 1e8
        return SwapResult(
            in_asset=from_asset, out_asset=to_asset, in_amount=amount, out_amount=out, venue_id=self._next_id("swap")
        )


class FakeClock:
    def __init__(self, now):
        self.now = now

    def __call__(self):
        return self.now

    def advance(self, **kwargs):
        self.now = self.now + timedelta(**kwargs)


@pytest.fixture
def repo(tmp_path):
    r = SqlRepository(SqliteDialect(str(tmp_path / "lnscheduler-test.db")))
    r.init_schema()
    return r


@pytest.fixture
def venue():
    return FakeVenue()


@pytest.fixture
def venue_factory(venue):
    return lambda user: venue


@pytest.fixture
def settings():
    return SchedulerSettings(
        max_workers=2,
        tick_timeout_seconds=10,
        shutdown_timeout_seconds=5,
        duplicate_guard_seconds=300,
        refresh_market_on_tick=False,
    )


@pytest.fixture
def clock():
    return FakeClock(datetime(2026, 10, 19, 12, 0, tzinfo=timezone.utc))


@pytest.fixture
def user(repo):
    return repo.create_user("alice", api_key="key", api_secret="secret", api_passphrase="pass")


@pytest.fixture
def market(repo):
    return repo.upsert_market_data(MarketData(symbol="BTC/USD", last_price=60000.0, mark_price=60000.0))


@pytest.fixture
def orchestrator(repo, venue_factory, settings, clock):
    return ExecutionOrchestrator(repo, venue_factory, settings, clock=clock)
