from __future__ import annotations

import os
from dataclasses import dataclass

RECONCILIATION_SCOPES = ("open", "running", "closed", "all")


def scheduler_disabled() -> bool:
    """True when LNSCHED_DISABLE_SCHEDULER asks the API to run without its loops."""
    return str(os.environ.get("LNSCHED_DISABLE_SCHEDULER", "")).strip().lower() in {"1", "true", "yes"}


@dataclass(frozen=True)
class SchedulerSettings:
    trigger_interval_seconds: int = 30
    reconciliation_interval_seconds: int = 300
    reconciliation_scope: str = "all"
    max_workers: int = 4
    tick_timeout_seconds: float = 120.0
    shutdown_timeout_seconds: float = 30.0
    duplicate_guard_seconds: int = 300
    recurring_window_minutes: int = 5
    timezone: str = "UTC"
    symbol: str = "BTC/USD"
    refresh_market_on_tick: bool = True


def load_scheduler_settings(config: dict) -> SchedulerSettings:
    s = (config.get("scheduler") or {}) if isinstance(config, dict) else {}
    return SchedulerSettings(
        trigger_interval_seconds=int(s.get("trigger_interval_seconds", 30)),
        reconciliation_interval_seconds=int(s.get("reconciliation_interval_seconds", 300)),
        reconciliation_scope=str(s.get("reconciliation_scope", "all")),
        max_workers=int(s.get("max_workers", 4)),
        tick_timeout_seconds=float(s.get("tick_timeout_seconds", 120)),
        shutdown_timeout_seconds=float(s.get("shutdown_timeout_seconds", 30)),
        duplicate_guard_seconds=int(s.get("duplicate_guard_seconds", 300)),
        recurring_window_minutes=int(s.get("recurring_window_minutes", 5)),
        timezone=str(s.get("timezone", "UTC")),
        symbol=str(s.get("symbol", "BTC/USD")),
        refresh_market_on_tick=bool(s.get("refresh_market_on_tick", True)),
    )
