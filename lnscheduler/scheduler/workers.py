from __future__ import annotations

import logging
import threading
from concurrent.futures import ThreadPoolExecutor, wait
from dataclasses import dataclass, field
from typing import Any, Callable

logger = logging.getLogger(__name__)

WorkItem = tuple[str, Callable[[], Any]]


class ClaimRegistry:
    """
    In-process ownership of work keys (e.g. `scheduled_trade:12`, `user:3`).

    A key is held by at most one worker at a time, so overlapping ticks (a slow loop tick
    plus a manual API tick) never run the same schedule or user concurrently.
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._held: set[str] = set()

    def claim(self, key: str) -> bool:
        with self._lock:
            if key in self._held:
                return False
            self._held.add(key)
            return True

    def release(self, key: str) -> None:
        with self._lock:
            self._held.discard(key)

    def held(self) -> set[str]:
        with self._lock:
            return set(self._held)


@dataclass
class TickReport:
    name: str
    total: int = 0
    acted: int = 0
    idle: int = 0
    skipped: int = 0
    failed: int = 0
    timed_out: int = 0
    errors: list[str] = field(default_factory=list)

    def summary(self) -> str:
        return (
            f"{self.name} tick: {self.total} item(s), {self.acted} acted, {self.idle} idle, "
            f"{self.skipped} skipped, {self.failed} failed, {self.timed_out} still running"
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "name": self.name,
            "total": self.total,
            "acted": self.acted,
            "idle": self.idle,
            "skipped": self.skipped,
            "failed": self.failed,
            "timed_out": self.timed_out,
            "errors": list(self.errors),
        }


_SKIPPED = object()


def run_items(
    name: str,
    items: list[WorkItem],
    *,
    max_workers: int,
    timeout_seconds: float,
    stop_event: threading.Event,
    claims: ClaimRegistry,
) -> TickReport:
    """
    Run `items` on a bounded pool. Each item returns truthy when it acted.

    - An item that has not started when `stop_event` is set is skipped before doing anything.
    - A key already claimed elsewhere is skipped.
    - One item's exception is logged and counted; it never affects the others.
    - Items still running after `timeout_seconds` are reported and left to finish.
    """
    report = TickReport(name=name, total=len(items))
    if not items:
        return report

    def _run(key: str, fn: Callable[[], Any]) -> Any:
        if stop_event.is_set():
            return _SKIPPED
        if not claims.claim(key):
            logger.debug(f"{name}: {key} is already being processed; skipping")
            return _SKIPPED
        try:
            return fn()
        finally:
            claims.release(key)

    executor = ThreadPoolExecutor(max_workers=max(1, int(max_workers)), thread_name_prefix=f"{name}-worker")
    try:
        futures = {executor.submit(_run, key, fn): key for key, fn in items}
        done, not_done = wait(futures, timeout=timeout_seconds)
        for fut in done:
            key = futures[fut]
            exc = fut.exception()
            if exc is not None:
                report.failed += 1
                report.errors.append(f"{key}: {exc}")
                logger.error(f"{name}: {key} failed: {type(exc).__name__}: {exc}")
                continue
            result = fut.result()
            if result is _SKIPPED:
                report.skipped += 1
            elif result:
                report.acted += 1
            else:
                report.idle += 1
        if not_done:
            report.timed_out = len(not_done)
            logger.warning(
                f"{name}: {len(not_done)} item(s) still running after {timeout_seconds}s; "
                f"leaving them to finish: {', '.join(sorted(futures[f] for f in not_done))}"
            )
    finally:
        # Stragglers keep running; unstarted items see stop_event and skip.
        executor.shutdown(wait=False)
    return report
