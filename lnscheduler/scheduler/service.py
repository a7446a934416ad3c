from __future__ import annotations

import logging
import threading
import time
from datetime import datetime
from typing import Any, Callable

from lnscheduler.scheduler.ticks import SchedulerContext, run_reconciliation_tick, run_trigger_tick
from lnscheduler.scheduler.workers import TickReport
from lnscheduler.utils.clock import utcnow

logger = logging.getLogger(__name__)


class _Loop:
    def __init__(self, name: str, interval_seconds: float, tick: Callable[[], TickReport]):
        self.name = name
        self.interval_seconds = float(interval_seconds)
        self.tick = tick
        self.stop_evt = threading.Event()
        self.thread: threading.Thread | None = None
        self.last_started_at: datetime | None = None
        self.last_report: TickReport | None = None
        self.last_error: str | None = None


class SchedulerService:
    """
    Owns the trigger loop and the reconciliation loop.

    - Each loop runs in its own daemon thread with its own stop event.
    - The first tick fires immediately; afterwards the loop sleeps for whatever is left of
      its interval (an overrunning tick starts the next one straight away).
    - A tick that raises is logged and the loop keeps its cadence.
    - stop() lets in-flight items finish (bounded by shutdown_timeout_seconds) while items
      that have not started yet are skipped.
    """

    def __init__(self, ctx: SchedulerContext) -> None:
        self.ctx = ctx
        s = ctx.settings
        self._loops = {
            "trigger": _Loop("trigger", s.trigger_interval_seconds, lambda: run_trigger_tick(ctx)),
            "reconciliation": _Loop(
                "reconciliation",
                s.reconciliation_interval_seconds,
                lambda: run_reconciliation_tick(ctx, s.reconciliation_scope),
            ),
        }

    def start(self) -> None:
        self.ctx.stop_event.clear()
        for loop in self._loops.values():
            if loop.thread and loop.thread.is_alive():
                continue
            loop.stop_evt.clear()
            loop.thread = threading.Thread(target=self._run, args=(loop,), name=f"{loop.name}-loop", daemon=True)
            loop.thread.start()
        logger.info(
            "SchedulerService started (trigger every %ss, reconciliation every %ss)",
            self._loops["trigger"].interval_seconds,
            self._loops["reconciliation"].interval_seconds,
        )

    def stop(self) -> None:
        self.ctx.stop_event.set()
        for loop in self._loops.values():
            loop.stop_evt.set()
        deadline = time.monotonic() + self.ctx.settings.shutdown_timeout_seconds
        for loop in self._loops.values():
            if loop.thread:
                loop.thread.join(timeout=max(0.0, deadline - time.monotonic()))
                if loop.thread.is_alive():
                    logger.warning(f"{loop.name} loop did not stop within the shutdown timeout")
        logger.info("SchedulerService stopped")

    def is_running(self) -> bool:
        return any(loop.thread is not None and loop.thread.is_alive() for loop in self._loops.values())

    def status(self) -> dict[str, Any]:
        out: dict[str, Any] = {"running": self.is_running()}
        for name, loop in self._loops.items():
            out[name] = {
                "alive": bool(loop.thread and loop.thread.is_alive()),
                "interval_seconds": loop.interval_seconds,
                "last_started_at": loop.last_started_at.isoformat() if loop.last_started_at else None,
                "last_report": loop.last_report.to_dict() if loop.last_report else None,
                "last_error": loop.last_error,
            }
        return out

    # -------------------
    # Internal
    # -------------------

    def _run(self, loop: _Loop) -> None:
        while not loop.stop_evt.is_set():
            started = time.monotonic()
            loop.last_started_at = utcnow()
            try:
                report = loop.tick()
                loop.last_report = report
                loop.last_error = None
                if report.total or report.failed:
                    logger.info(report.summary())
            except Exception as e:
                loop.last_error = f"{type(e).__name__}: {e}"
                logger.error(f"{loop.name} tick failed: {loop.last_error}", exc_info=True)
                try:
                    self.ctx.repo.log_event("ERROR", f"{loop.name} tick failed: {e}", subject="Scheduler", step="Tick")
                except Exception as log_exc:
                    logger.warning(f"Could not record tick failure event: {log_exc}")

            elapsed = time.monotonic() - started
            if elapsed >= loop.interval_seconds:
                logger.warning(f"{loop.name} tick took {elapsed:.1f}s (interval {loop.interval_seconds:.0f}s); starting next immediately")
                continue
            loop.stop_evt.wait(loop.interval_seconds - elapsed)
