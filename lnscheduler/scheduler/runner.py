"""
Standalone scheduler process: both loops, no HTTP surface.

Exactly one scheduler may run per lock file (`LNSCHED_LOCK_PATH`, default `.lnscheduler.lock`);
a second start exits with a clear message instead of double-executing schedules.
"""

from __future__ import annotations

import logging
import os
import signal
import sys
import threading

from lnscheduler.scheduler.service import SchedulerService
from lnscheduler.scheduler.settings import load_scheduler_settings
from lnscheduler.scheduler.ticks import build_context
from lnscheduler.utils.config_loader import load_config
from lnscheduler.utils.database import close_repository, get_repository
from lnscheduler.utils.single_instance import AlreadyRunningError, acquire_lock, release_lock
from lnscheduler.venue.lnmarkets import load_venue_settings, make_venue_factory

logger = logging.getLogger(__name__)


def main() -> None:
    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )

    try:
        lock = acquire_lock(os.environ.get("LNSCHED_LOCK_PATH", ".lnscheduler.lock"))
    except AlreadyRunningError as e:
        logger.error(f"Scheduler already running ({e}). Exiting.")
        sys.exit(1)

    config = load_config()
    settings = load_scheduler_settings(config)
    venue_factory = make_venue_factory(load_venue_settings(config))

    repo = get_repository()
    repo.init_schema()

    ctx = build_context(repo, venue_factory, settings)
    service = SchedulerService(ctx)
    stopping = threading.Event()

    def _handle_signal(signum, _frame) -> None:
        logger.info(f"Received signal {signum}; shutting down")
        stopping.set()

    signal.signal(signal.SIGTERM, _handle_signal)
    signal.signal(signal.SIGINT, _handle_signal)

    repo.log_event("INFO", "Scheduler started", subject="Scheduler", step="Start")
    service.start()
    try:
        while not stopping.wait(1.0):
            pass
    except KeyboardInterrupt:
        logger.info("Stopping scheduler...")
    finally:
        service.stop()
        repo.log_event("INFO", "Scheduler stopped", subject="Scheduler", step="Stop")
        close_repository(repo)
        release_lock(lock)


if __name__ == "__main__":
    main()
