from __future__ import annotations

import fcntl
import logging
import os
from pathlib import Path
from typing import IO

logger = logging.getLogger(__name__)


class AlreadyRunningError(RuntimeError):
    pass


def acquire_lock(lock_path: str | Path) -> IO[str]:
    """
    Take an exclusive, non-blocking flock on `lock_path` and write our pid into it.

    The returned handle must be kept open for the life of the process; the lock is
    released when it is closed (or the process exits).
    """
    path = Path(lock_path)
    # Opened without truncating so a busy lock keeps the owner's pid.
    handle = path.open("a+")
    try:
        fcntl.flock(handle.fileno(), fcntl.LOCK_EX | fcntl.LOCK_NB)
    except OSError as e:
        handle.close()
        raise AlreadyRunningError(f"Another instance holds {path}") from e
    handle.seek(0)
    handle.truncate()
    handle.write(str(os.getpid()))
    handle.flush()
    logger.debug(f"Acquired instance lock {path}")
    return handle


def release_lock(handle: IO[str] | None) -> None:
    if handle is None:
        return
    try:
        fcntl.flock(handle.fileno(), fcntl.LOCK_UN)
    finally:
        handle.close()
