from __future__ import annotations

import logging
from datetime import datetime
from typing import Any, Iterable

from lnscheduler.db.repositories import events, market_data, scheduled_swaps, scheduled_trades, swaps, trades, users
from lnscheduler.db.rows import Dialect, read_one
from lnscheduler.domain.models import (
    MarketData,
    ScheduledSwap,
    ScheduledTrade,
    Swap,
    SwapExecution,
    SwapExecutionStatus,
    Trade,
    TradeStatus,
    User,
)

logger = logging.getLogger(__name__)


class SqlRepository:
    """`RepositoryPort` over either SQL backend; the dialect owns connections and placeholders."""

    def __init__(self, dialect: Dialect) -> None:
        self.db = dialect

    @property
    def backend(self) -> str:
        return self.db.name

    def describe(self) -> str:
        return self.db.describe()

    def init_schema(self) -> None:
        self.db.init_db()

    def ping(self) -> bool:
        try:
            return read_one(self.db, "SELECT 1 AS ok") is not None
        except Exception as e:
            logger.warning(f"Database ping failed: {e}")
            return False

    # Users
    def create_user(
        self,
        username: str,
        *,
        api_key: str | None = None,
        api_secret: str | None = None,
        api_passphrase: str | None = None,
    ) -> User:
        return users.create_user(
            self.db, username, api_key=api_key, api_secret=api_secret, api_passphrase=api_passphrase
        )

    def get_user(self, user_id: int) -> User | None:
        return users.get_user(self.db, user_id)

    def list_users_with_credentials(self) -> list[User]:
        return users.list_users_with_credentials(self.db)

    def update_user_balance(self, user_id: int, balance: int, balance_usd: str) -> User | None:
        return users.update_user_balance(self.db, user_id, balance, balance_usd)

    # Trades
    def create_trade(self, **fields: Any) -> Trade:
        return trades.create_trade(self.db, **fields)

    def get_trade(self, trade_id: int) -> Trade | None:
        return trades.get_trade(self.db, trade_id)

    def get_trade_by_venue_id(self, user_id: int, venue_id: str) -> Trade | None:
        return trades.get_trade_by_venue_id(self.db, user_id, venue_id)

    def list_trades(self, user_id: int, statuses: Iterable[TradeStatus] | None = None) -> list[Trade]:
        return trades.list_trades(self.db, user_id, statuses)

    def update_trade(self, trade_id: int, **changes: Any) -> Trade:
        return trades.update_trade(self.db, trade_id, **changes)

    # Scheduled trades
    def create_scheduled_trade(self, **fields: Any) -> ScheduledTrade:
        return scheduled_trades.create_scheduled_trade(self.db, **fields)

    def get_scheduled_trade(self, scheduled_trade_id: int) -> ScheduledTrade | None:
        return scheduled_trades.get_scheduled_trade(self.db, scheduled_trade_id)

    def list_scheduled_trades(self, user_id: int) -> list[ScheduledTrade]:
        return scheduled_trades.list_scheduled_trades(self.db, user_id)

    def list_pending_scheduled_trades(self) -> list[ScheduledTrade]:
        return scheduled_trades.list_pending_scheduled_trades(self.db)

    def update_scheduled_trade(self, scheduled_trade_id: int, **changes: Any) -> ScheduledTrade:
        return scheduled_trades.update_scheduled_trade(self.db, scheduled_trade_id, **changes)

    def claim_scheduled_trade(self, scheduled_trade_id: int, now: datetime, stale_before: datetime) -> bool:
        return scheduled_trades.claim_scheduled_trade(self.db, scheduled_trade_id, now, stale_before)

    # Scheduled swaps
    def create_scheduled_swap(self, **fields: Any) -> ScheduledSwap:
        return scheduled_swaps.create_scheduled_swap(self.db, **fields)

    def get_scheduled_swap(self, scheduled_swap_id: int) -> ScheduledSwap | None:
        return scheduled_swaps.get_scheduled_swap(self.db, scheduled_swap_id)

    def list_scheduled_swaps(self, user_id: int) -> list[ScheduledSwap]:
        return scheduled_swaps.list_scheduled_swaps(self.db, user_id)

    def list_active_scheduled_swaps(self) -> list[ScheduledSwap]:
        return scheduled_swaps.list_active_scheduled_swaps(self.db)

    def update_scheduled_swap(self, scheduled_swap_id: int, **changes: Any) -> ScheduledSwap:
        return scheduled_swaps.update_scheduled_swap(self.db, scheduled_swap_id, **changes)

    def claim_scheduled_swap(self, scheduled_swap_id: int, now: datetime, stale_before: datetime) -> bool:
        return scheduled_swaps.claim_scheduled_swap(self.db, scheduled_swap_id, now, stale_before)

    # Swaps + audit
    def create_swap(self, **fields: Any) -> Swap:
        return swaps.create_swap(self.db, **fields)

    def list_swaps(self, user_id: int) -> list[Swap]:
        return swaps.list_swaps(self.db, user_id)

    def create_swap_execution(
        self,
        scheduled_swap_id: int,
        status: SwapExecutionStatus,
        execution_time: datetime,
        *,
        swap_id: int | None = None,
        failure_reason: str | None = None,
    ) -> SwapExecution:
        return swaps.create_swap_execution(
            self.db, scheduled_swap_id, status, execution_time, swap_id=swap_id, failure_reason=failure_reason
        )

    def list_swap_executions(self, scheduled_swap_id: int) -> list[SwapExecution]:
        return swaps.list_swap_executions(self.db, scheduled_swap_id)

    def count_swap_executions(self, scheduled_swap_id: int, status: SwapExecutionStatus) -> int:
        return swaps.count_swap_executions(self.db, scheduled_swap_id, status)

    # Market data
    def get_market_data(self, symbol: str) -> MarketData | None:
        return market_data.get_market_data(self.db, symbol)

    def upsert_market_data(self, data: MarketData) -> MarketData:
        return market_data.upsert_market_data(self.db, data)

    # Operator event stream
    def log_event(self, level: str, message: str, subject: str | None = None, step: str | None = None) -> None:
        events.log_event(self.db, level, message, subject=subject, step=step)

    def list_events(self, limit: int = 200) -> list[dict[str, Any]]:
        return events.list_events(self.db, limit)
