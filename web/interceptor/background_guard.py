from __future__ import annotations

import logging
import os
from typing import Optional

from interceptor.config import DEFAULT_DATA_DIR
from interceptor.logutil import log_exception_throttled


logger = logging.getLogger(__name__)


_LOCK_FD: Optional[int] = None


def _close_quietly(fd: int, key: str) -> None:
    try:
        os.close(fd)
    except OSError:
        log_exception_throttled(
            logger,
            key,
            interval_seconds=300.0,
            message="Failed to close background lock fd",
        )


def acquire_background_lock() -> bool:
    """Elect one process to run the policy refresh scheduler.

    App servers may fork several workers; each would otherwise schedule its own
    refresh, and compiled rule ids from interleaved refreshes would collide in
    the rule store.

    Returns True if this process should start background tasks.

    Env overrides:
      - BACKGROUND_FORCE=1: always start background tasks (no locking)
      - BACKGROUND_LOCK_PATH: lock file path (default: <data dir>/background.lock)
    """

    if (os.environ.get("BACKGROUND_FORCE") or "").strip() == "1":
        return True

    global _LOCK_FD
    if _LOCK_FD is not None:
        return True

    data_dir = (os.environ.get("INTERCEPT_DATA_DIR") or "").strip() or DEFAULT_DATA_DIR
    lock_path = (os.environ.get("BACKGROUND_LOCK_PATH") or "").strip() or os.path.join(data_dir, "background.lock")
    lock_dir = os.path.dirname(lock_path)
    if lock_dir:
        try:
            os.makedirs(lock_dir, exist_ok=True)
        except OSError:
            log_exception_throttled(
                logger,
                "background_guard.makedirs",
                interval_seconds=300.0,
                message="Failed to create BACKGROUND_LOCK_PATH directory; allowing background tasks to start",
            )
            return True

    try:
        fd = os.open(lock_path, os.O_CREAT | os.O_RDWR, 0o644)
    except OSError:
        return True

    try:
        import fcntl  # type: ignore[import-not-found]
    except ImportError:
        # Non-POSIX environment: nothing to coordinate with.
        _close_quietly(fd, "background_guard.close.non_posix")
        return True

    try:
        fcntl.flock(fd, fcntl.LOCK_EX | fcntl.LOCK_NB)  # type: ignore[attr-defined]
    except BlockingIOError:
        _close_quietly(fd, "background_guard.close.blocking")
        return False
    except OSError:
        _close_quietly(fd, "background_guard.close.flock_error")
        return True

    _LOCK_FD = fd
    return True
