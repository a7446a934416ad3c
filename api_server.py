import logging
import os
import sys
from pathlib import Path

import uvicorn
from dotenv import load_dotenv

from lnscheduler.scheduler.settings import scheduler_disabled
from lnscheduler.utils.single_instance import AlreadyRunningError, acquire_lock, release_lock

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    handlers=[
        logging.StreamHandler(sys.stderr),
        logging.FileHandler("api_server.log", mode="a"),
    ],
)
logger = logging.getLogger("api_server")


def _load_local_env() -> None:
    """
    Load local environment variables from config/secrets.env (if present).

    This keeps `python api_server.py` consistent with `python main.py` for local development.
    """
    env_path = Path(__file__).resolve().parent / "config" / "secrets.env"
    if env_path.exists():
        load_dotenv(env_path)
        logger.info("Loaded environment variables from %s", env_path)


def main() -> None:
    _load_local_env()

    # With its scheduler loops enabled the API shares the scheduler's lock file; a
    # scheduler-less API may run next to main.py.
    lock = None
    if scheduler_disabled():
        logger.info("Scheduler disabled (LNSCHED_DISABLE_SCHEDULER); not taking the instance lock")
    else:
        try:
            lock = acquire_lock(os.environ.get("LNSCHED_LOCK_PATH", ".lnscheduler.lock"))
        except AlreadyRunningError:
            logger.error("Another scheduler or API instance appears to be running (lockfile busy). Exiting.")
            sys.exit(1)

    host = os.environ.get("LNSCHED_API_HOST", "127.0.0.1")
    port = int(os.environ.get("LNSCHED_API_PORT", "8000"))
    try:
        logger.info(f"Starting LN Markets scheduler API on {host}:{port}")
        uvicorn.run(
            "lnscheduler.api.app:app",
            host=host,
            port=port,
            reload=False,
            log_level="info",
            workers=1,  # One process: the embedded scheduler must not be duplicated
        )
    except Exception as e:
        logger.error(f"Fatal error in API server: {e}", exc_info=True)
        sys.exit(1)
    finally:
        release_lock(lock)


if __name__ == "__main__":
    main()
