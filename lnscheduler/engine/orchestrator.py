"""
Execution of triggered schedules against the venue.

Each execute_* call re-reads its schedule, claims it (pending/active and not checked within
the guard window, with `last_checked_at` stamped before any venue call), then places the
order or swap and persists the outcome. A second call for the same schedule inside the
guard window is a no-op returning None.

Failures are classified by the venue error taxonomy:

- rejection (bad credentials, invalid order): terminal for a scheduled trade;
- transient (timeout, network, rate limit, 5xx): the schedule stays live and is retried
  once the guard window has passed.

The exception is re-raised after the outcome is recorded so the tick can log it.
"""

from __future__ import annotations

import logging
from datetime import datetime, timedelta
from typing import Callable

from lnscheduler.domain.errors import InvalidScheduleError, NotFoundError
from lnscheduler.domain.models import (
    RemoteTrade,
    ScheduledSwap,
    ScheduledSwapStatus,
    ScheduledTrade,
    ScheduledTradeStatus,
    Swap,
    SwapExecutionStatus,
    Trade,
    TradeStatus,
)
from lnscheduler.domain.status import ensure_trade_transition, map_remote_status
from lnscheduler.domain.triggers import RecurringTrigger
from lnscheduler.engine.evaluator import recurring_slot
from lnscheduler.ports.repository import RepositoryPort
from lnscheduler.ports.venue import VenuePort
from lnscheduler.scheduler.settings import SchedulerSettings
from lnscheduler.utils.clock import utcnow
from lnscheduler.venue.errors import VenueError, VenueRejectedError, VenueTransientError
from lnscheduler.venue.lnmarkets import VenueFactory

logger = logging.getLogger(__name__)

BalanceSync = Callable[[int], object]


class ExecutionOrchestrator:
    def __init__(
        self,
        repo: RepositoryPort,
        venue_factory: VenueFactory,
        settings: SchedulerSettings,
        *,
        balance_sync: BalanceSync | None = None,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.repo = repo
        self.venue_factory = venue_factory
        self.settings = settings
        self.balance_sync = balance_sync
        self.clock = clock

    # ------------------------------------------------------------------
    # helpers
    # ------------------------------------------------------------------

    def _venue_for(self, user_id: int) -> VenuePort:
        user = self.repo.get_user(user_id)
        if user is None:
            raise VenueRejectedError(f"User {user_id} not found")
        return self.venue_factory(user)

    def _stale_before(self, now: datetime) -> datetime:
        return now - timedelta(seconds=self.settings.duplicate_guard_seconds)

    def _resync_balance(self, user_id: int) -> None:
        if self.balance_sync is None:
            return
        try:
            self.balance_sync(user_id)
        except Exception as e:
            # The execution itself succeeded; the next reconciliation tick catches up.
            logger.warning(f"Balance resync failed for user {user_id}: {e}")

    # ------------------------------------------------------------------
    # Scheduled trades
    # ------------------------------------------------------------------

    def _place(self, venue: VenuePort, st: ScheduledTrade) -> RemoteTrade:
        if st.type == "futures":
            if st.leverage is None:
                raise InvalidScheduleError("Futures order requires leverage")
            if st.margin is None and st.quantity is None:
                raise InvalidScheduleError("Futures order requires margin or quantity")
            if st.order_type == "limit" and st.limit_price is None:
                raise InvalidScheduleError("Limit order requires limit_price")
            return venue.place_futures_order(
                side=st.side,
                order_type=st.order_type,
                leverage=st.leverage,
                margin=st.margin,
                quantity=st.quantity if st.margin is None else None,
                price=st.limit_price if st.order_type == "limit" else None,
                take_profit=st.take_profit,
                stop_loss=st.stop_loss,
            )
        if st.type == "options":
            if st.quantity is None or not st.settlement or not st.instrument_name:
                raise InvalidScheduleError("Options order requires quantity, settlement and instrument_name")
            return venue.place_options_order(
                quantity=st.quantity, settlement=st.settlement, instrument_name=st.instrument_name
            )
        raise InvalidScheduleError(f"Unknown trade type {st.type!r}")

    def _fail_scheduled_trade(self, st: ScheduledTrade, trade: Trade | None, error: Exception, *, terminal: bool) -> None:
        if trade is not None:
            self.repo.update_trade(trade.id, status=TradeStatus.CANCELLED)
        if terminal:
            self.repo.update_scheduled_trade(st.id, status=ScheduledTradeStatus.FAILED, error_message=str(error))
            self.repo.log_event(
                "ERROR",
                f"Scheduled trade failed: {error}",
                subject=f"scheduled_trade:{st.id}",
                step="Execute",
            )
        else:
            self.repo.update_scheduled_trade(st.id, error_message=str(error))
            self.repo.log_event(
                "WARN",
                f"Scheduled trade will be retried: {error}",
                subject=f"scheduled_trade:{st.id}",
                step="Execute",
            )

    def execute_scheduled_trade(self, scheduled_trade_id: int) -> Trade | None:
        now = self.clock()
        st = self.repo.get_scheduled_trade(scheduled_trade_id)
        if st is None or st.status != ScheduledTradeStatus.PENDING:
            logger.debug(f"Scheduled trade {scheduled_trade_id} is no longer pending; skipping")
            return None
        if not self.repo.claim_scheduled_trade(st.id, now, self._stale_before(now)):
            logger.info(f"Scheduled trade {st.id} was checked recently; skipping")
            return None

        try:
            venue = self._venue_for(st.user_id)
        except VenueRejectedError as e:
            self._fail_scheduled_trade(st, None, e, terminal=True)
            raise

        trade = self.repo.create_trade(
            user_id=st.user_id,
            type=st.type,
            side=st.side,
            order_type=st.order_type,
            status=TradeStatus.PENDING,
            limit_price=st.limit_price,
            margin=st.margin,
            leverage=st.leverage,
            quantity=st.quantity,
            take_profit=st.take_profit,
            stop_loss=st.stop_loss,
            instrument_name=st.instrument_name,
            settlement=st.settlement,
        )

        try:
            remote = self._place(venue, st)
        except (VenueRejectedError, InvalidScheduleError) as e:
            self._fail_scheduled_trade(st, trade, e, terminal=True)
            raise
        except VenueTransientError as e:
            self._fail_scheduled_trade(st, trade, e, terminal=False)
            raise
        except Exception as e:
            # Unclassified: keep the schedule pending, never leave the placeholder open.
            self._fail_scheduled_trade(st, trade, e, terminal=False)
            raise

        changes = {
            "venue_id": remote.venue_id,
            "status": map_remote_status(remote),
            "entry_price": remote.entry_price,
            "fee": remote.fee,
            "liquidation_price": remote.liquidation_price,
        }
        trade = self.repo.update_trade(trade.id, **{k: v for k, v in changes.items() if v is not None})
        self.repo.update_scheduled_trade(
            st.id,
            status=ScheduledTradeStatus.TRIGGERED,
            executed_trade_id=trade.id,
            executed_at=now,
            error_message=None,
        )
        self.repo.log_event(
            "INFO",
            f"Scheduled {st.type} {st.side} executed as trade {trade.id} (venue {trade.venue_id})",
            subject=f"scheduled_trade:{st.id}",
            step="Execute",
        )
        self._resync_balance(st.user_id)
        return trade

    # ------------------------------------------------------------------
    # Scheduled swaps
    # ------------------------------------------------------------------

    def _exchange_rate(self, venue: VenuePort) -> float | None:
        try:
            return venue.fetch_ticker().last_price
        except VenueError as e:
            logger.warning(f"Ticker fetch for exchange rate failed, using stored market data: {e}")
        md = self.repo.get_market_data(self.settings.symbol)
        return md.last_price if md is not None else None

    def _record_swap_failure(self, ss: ScheduledSwap, now: datetime, error: Exception) -> None:
        self.repo.create_swap_execution(ss.id, SwapExecutionStatus.FAILED, now, failure_reason=str(error))
        if ss.is_one_shot:
            failures = self.repo.count_swap_executions(ss.id, SwapExecutionStatus.FAILED)
            self.repo.log_event(
                "WARN",
                f"One-shot swap has failed {failures} time(s) and stays active: {error}",
                subject=f"scheduled_swap:{ss.id}",
                step="Execute",
            )
        else:
            self.repo.log_event(
                "WARN",
                f"Recurring swap execution failed: {error}",
                subject=f"scheduled_swap:{ss.id}",
                step="Execute",
            )

    def execute_scheduled_swap(self, scheduled_swap_id: int) -> Swap | None:
        now = self.clock()
        ss = self.repo.get_scheduled_swap(scheduled_swap_id)
        if ss is None or ss.status != ScheduledSwapStatus.ACTIVE:
            logger.debug(f"Scheduled swap {scheduled_swap_id} is no longer active; skipping")
            return None
        if not self.repo.claim_scheduled_swap(ss.id, now, self._stale_before(now)):
            logger.info(f"Scheduled swap {ss.id} was checked recently; skipping")
            return None

        if isinstance(ss.trigger, RecurringTrigger):
            slot = recurring_slot(ss.trigger, now, self.settings.timezone, self.settings.recurring_window_minutes)
            if slot is not None:
                self.repo.update_scheduled_swap(ss.id, last_fired_slot=slot)

        from_asset, to_asset = ss.assets
        try:
            venue = self._venue_for(ss.user_id)
            result = venue.execute_swap(from_asset, to_asset, ss.amount)
        except VenueError as e:
            if isinstance(e, VenueTransientError) and isinstance(ss.trigger, RecurringTrigger):
                # Re-arm the slot so the retry after the guard window can still fire in it.
                self.repo.update_scheduled_swap(ss.id, last_fired_slot=ss.last_fired_slot)
            self._record_swap_failure(ss, now, e)
            raise
        except Exception as e:
            # Unclassified: audited and retried like a transient failure.
            if isinstance(ss.trigger, RecurringTrigger):
                self.repo.update_scheduled_swap(ss.id, last_fired_slot=ss.last_fired_slot)
            self._record_swap_failure(ss, now, e)
            raise

        swap = self.repo.create_swap(
            user_id=ss.user_id,
            venue_id=result.venue_id,
            from_asset=from_asset,
            to_asset=to_asset,
            from_amount=result.in_amount,
            to_amount=result.out_amount,
            exchange_rate=self._exchange_rate(venue),
            fee=0.0,
            status="completed",
        )
        self.repo.create_swap_execution(ss.id, SwapExecutionStatus.SUCCESS, now, swap_id=swap.id)
        if ss.is_one_shot:
            self.repo.update_scheduled_swap(ss.id, status=ScheduledSwapStatus.COMPLETED)
        self.repo.log_event(
            "INFO",
            f"Swapped {result.in_amount} {from_asset} -> {result.out_amount} {to_asset} (swap {swap.id})",
            subject=f"scheduled_swap:{ss.id}",
            step="Execute",
        )
        self._resync_balance(ss.user_id)
        return swap

    # ------------------------------------------------------------------
    # Live trade operations
    # ------------------------------------------------------------------

    def _trade_and_venue(self, trade_id: int) -> tuple[Trade, VenuePort]:
        trade = self.repo.get_trade(trade_id)
        if trade is None:
            raise NotFoundError(f"Trade {trade_id} not found")
        if not trade.venue_id:
            raise InvalidScheduleError(f"Trade {trade_id} has no venue id")
        return trade, self._venue_for(trade.user_id)

    def close_trade(self, trade_id: int) -> Trade:
        trade, venue = self._trade_and_venue(trade_id)
        if trade.status not in (TradeStatus.OPEN, TradeStatus.RUNNING):
            raise InvalidScheduleError(f"Trade {trade_id} is {trade.status.value}; only open or running trades close")
        remote = venue.close_position(trade.venue_id, trade.type)
        changes: dict[str, object] = {"status": TradeStatus.CLOSED}
        if remote is not None:
            for k in ("exit_price", "pnl", "pnl_usd", "fee"):
                v = getattr(remote, k)
                if v is not None:
                    changes[k] = v
        updated = self.repo.update_trade(trade.id, **changes)
        self._resync_balance(trade.user_id)
        return updated

    def cancel_trade(self, trade_id: int) -> Trade:
        trade, venue = self._trade_and_venue(trade_id)
        ensure_trade_transition(trade.status, TradeStatus.CANCELLED)
        venue.cancel_order(trade.venue_id)
        updated = self.repo.update_trade(trade.id, status=TradeStatus.CANCELLED)
        self._resync_balance(trade.user_id)
        return updated

    def update_trade_targets(
        self, trade_id: int, *, take_profit: float | None = None, stop_loss: float | None = None
    ) -> Trade:
        if take_profit is None and stop_loss is None:
            raise InvalidScheduleError("Nothing to update: take_profit and stop_loss are both empty")
        trade, venue = self._trade_and_venue(trade_id)
        if trade.type != "futures" or trade.status not in (TradeStatus.OPEN, TradeStatus.RUNNING):
            raise InvalidScheduleError("Targets can only change on open or running futures trades")
        venue.update_targets(trade.venue_id, take_profit=take_profit, stop_loss=stop_loss)
        changes = {k: v for k, v in (("take_profit", take_profit), ("stop_loss", stop_loss)) if v is not None}
        return self.repo.update_trade(trade.id, **changes)
