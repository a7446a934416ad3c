"""
One pass of each scheduler loop.

`run_trigger_tick` reads the market price once, evaluates every pending scheduled trade and
every active scheduled swap against it, and executes the ones that fire.
`run_reconciliation_tick` syncs trades and then the balance for every credentialed user.
Both fan out over the bounded worker pool; a failing item is logged and counted, never fatal.
"""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass, field
from datetime import datetime
from functools import partial
from typing import Any, Callable

from lnscheduler.domain.errors import ConditionError
from lnscheduler.domain.models import ScheduledSwap, ScheduledTrade
from lnscheduler.engine.evaluator import evaluate
from lnscheduler.engine.market import current_price, refresh_market_data
from lnscheduler.engine.orchestrator import ExecutionOrchestrator
from lnscheduler.engine.reconciliation import ReconciliationSync
from lnscheduler.ports.repository import RepositoryPort
from lnscheduler.scheduler.settings import SchedulerSettings
from lnscheduler.scheduler.workers import ClaimRegistry, TickReport, WorkItem, run_items
from lnscheduler.utils.clock import utcnow
from lnscheduler.venue.lnmarkets import VenueFactory

logger = logging.getLogger(__name__)


@dataclass
class SchedulerContext:
    repo: RepositoryPort
    venue_factory: VenueFactory
    settings: SchedulerSettings
    orchestrator: ExecutionOrchestrator
    reconciliation: ReconciliationSync
    stop_event: threading.Event = field(default_factory=threading.Event)
    claims: ClaimRegistry = field(default_factory=ClaimRegistry)
    clock: Callable[[], datetime] = utcnow


def build_context(
    repo: RepositoryPort,
    venue_factory: VenueFactory,
    settings: SchedulerSettings,
    *,
    clock: Callable[[], datetime] = utcnow,
) -> SchedulerContext:
    reconciliation = ReconciliationSync(repo, venue_factory, settings)
    orchestrator = ExecutionOrchestrator(
        repo,
        venue_factory,
        settings,
        balance_sync=reconciliation.sync_balance,
        clock=clock,
    )
    return SchedulerContext(
        repo=repo,
        venue_factory=venue_factory,
        settings=settings,
        orchestrator=orchestrator,
        reconciliation=reconciliation,
        clock=clock,
    )


def _fire(
    ctx: SchedulerContext,
    schedule: ScheduledTrade | ScheduledSwap,
    now: datetime,
    price: float | None,
    execute: Callable[[int], Any],
) -> bool:
    try:
        hit = evaluate(
            schedule,
            now,
            price,
            tz=ctx.settings.timezone,
            window_minutes=ctx.settings.recurring_window_minutes,
        )
    except ConditionError as e:
        # Fail closed; the next tick tries again.
        logger.info(f"{type(schedule).__name__} {schedule.id}: condition not evaluable: {e}")
        return False
    if not hit:
        return False
    logger.info(f"{type(schedule).__name__} {schedule.id}: trigger hit, executing")
    return execute(schedule.id) is not None


def run_trigger_tick(ctx: SchedulerContext) -> TickReport:
    s = ctx.settings
    if s.refresh_market_on_tick:
        try:
            refresh_market_data(ctx.repo, ctx.venue_factory, s.symbol)
        except Exception as e:
            # A stale snapshot is still usable; price triggers fail closed without one.
            logger.warning(f"Market refresh failed before trigger tick: {e}")

    now = ctx.clock()
    price = current_price(ctx.repo, s.symbol)

    items: list[WorkItem] = []
    for st in ctx.repo.list_pending_scheduled_trades():
        items.append(
            (f"scheduled_trade:{st.id}", partial(_fire, ctx, st, now, price, ctx.orchestrator.execute_scheduled_trade))
        )
    for ss in ctx.repo.list_active_scheduled_swaps():
        items.append(
            (f"scheduled_swap:{ss.id}", partial(_fire, ctx, ss, now, price, ctx.orchestrator.execute_scheduled_swap))
        )

    return run_items(
        "trigger",
        items,
        max_workers=s.max_workers,
        timeout_seconds=s.tick_timeout_seconds,
        stop_event=ctx.stop_event,
        claims=ctx.claims,
    )


def _reconcile_user(ctx: SchedulerContext, user_id: int, scope: str) -> bool:
    ctx.reconciliation.sync_user(user_id, scope)
    ctx.reconciliation.sync_balance(user_id)
    return True


def run_reconciliation_tick(ctx: SchedulerContext, scope: str | None = None) -> TickReport:
    s = ctx.settings
    scope = scope or s.reconciliation_scope
    items: list[WorkItem] = [
        (f"user:{u.id}", partial(_reconcile_user, ctx, u.id, scope)) for u in ctx.repo.list_users_with_credentials()
    ]
    return run_items(
        "reconciliation",
        items,
        max_workers=s.max_workers,
        timeout_seconds=s.tick_timeout_seconds,
        stop_event=ctx.stop_event,
        claims=ctx.claims,
    )
