from __future__ import annotations

from datetime import datetime
from typing import Any, Iterable, Protocol

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


class RepositoryPort(Protocol):
    """
    Durable storage used by the scheduler core.

    `update_*` methods take keyword changes. Status changes are validated against the
    stored row and applied compare-and-set, so a concurrent writer surfaces as
    `ConcurrentUpdateError` instead of a lost update.
    """

    def init_schema(self) -> None: ...

    def ping(self) -> bool: ...

    # Users
    def create_user(
        self,
        username: str,
        *,
        api_key: str | None = None,
        api_secret: str | None = None,
        api_passphrase: str | None = None,
    ) -> User: ...

    def get_user(self, user_id: int) -> User | None: ...

    def list_users_with_credentials(self) -> list[User]: ...

    def update_user_balance(self, user_id: int, balance: int, balance_usd: str) -> User | None: ...

    # Trades
    def create_trade(self, **fields: Any) -> Trade: ...

    def get_trade(self, trade_id: int) -> Trade | None: ...

    def get_trade_by_venue_id(self, user_id: int, venue_id: str) -> Trade | None: ...

    def list_trades(self, user_id: int, statuses: Iterable[TradeStatus] | None = None) -> list[Trade]: ...

    def update_trade(self, trade_id: int, **changes: Any) -> Trade: ...

    # Scheduled trades
    def create_scheduled_trade(self, **fields: Any) -> ScheduledTrade: ...

    def get_scheduled_trade(self, scheduled_trade_id: int) -> ScheduledTrade | None: ...

    def list_scheduled_trades(self, user_id: int) -> list[ScheduledTrade]: ...

    def list_pending_scheduled_trades(self) -> list[ScheduledTrade]: ...

    def update_scheduled_trade(self, scheduled_trade_id: int, **changes: Any) -> ScheduledTrade: ...

    def claim_scheduled_trade(self, scheduled_trade_id: int, now: datetime, stale_before: datetime) -> bool:
        """Atomically stamp last_checked_at on a pending row not checked since `stale_before`."""
        ...

    # Scheduled swaps
    def create_scheduled_swap(self, **fields: Any) -> ScheduledSwap: ...

    def get_scheduled_swap(self, scheduled_swap_id: int) -> ScheduledSwap | None: ...

    def list_scheduled_swaps(self, user_id: int) -> list[ScheduledSwap]: ...

    def list_active_scheduled_swaps(self) -> list[ScheduledSwap]: ...

    def update_scheduled_swap(self, scheduled_swap_id: int, **changes: Any) -> ScheduledSwap: ...

    def claim_scheduled_swap(self, scheduled_swap_id: int, now: datetime, stale_before: datetime) -> bool: ...

    # Swaps + audit
    def create_swap(self, **fields: Any) -> Swap: ...

    def list_swaps(self, user_id: int) -> list[Swap]: ...

    def create_swap_execution(
        self,
        scheduled_swap_id: int,
        status: SwapExecutionStatus,
        execution_time: datetime,
        *,
        swap_id: int | None = None,
        failure_reason: str | None = None,
    ) -> SwapExecution: ...

    def list_swap_executions(self, scheduled_swap_id: int) -> list[SwapExecution]: ...

    def count_swap_executions(self, scheduled_swap_id: int, status: SwapExecutionStatus) -> int: ...

    # Market data
    def get_market_data(self, symbol: str) -> MarketData | None: ...

    def upsert_market_data(self, data: MarketData) -> MarketData: ...

    # Operator event stream
    def log_event(self, level: str, message: str, subject: str | None = None, step: str | None = None) -> None: ...

    def list_events(self, limit: int = 200) -> list[dict[str, Any]]: ...
