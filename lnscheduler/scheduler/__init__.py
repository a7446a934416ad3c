"""
Scheduler package.

Two long-lived loops (trigger tick, reconciliation tick) owned by `SchedulerService`.
The process entrypoint is `main.py` at the repo root; `runner.py` holds the wiring so
it stays small and testable.
"""
