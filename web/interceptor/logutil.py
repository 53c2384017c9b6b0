from __future__ import annotations

import logging
import os
import threading
import time
from typing import Dict


_lock = threading.Lock()
_last_log: Dict[str, float] = {}
_configured = False

_LOG_FORMAT = "%(asctime)s %(levelname)s [%(name)s] %(message)s"


def configure_logging(level: str | None = None) -> None:
    """Set up root logging once per process.

    LOG_LEVEL (default INFO) picks the level; an unknown name falls back to INFO.
    """
    global _configured
    with _lock:
        if _configured:
            return
        _configured = True

    name = (level or os.environ.get("LOG_LEVEL") or "INFO").strip().upper()
    resolved = logging.getLevelName(name)
    if not isinstance(resolved, int):
        resolved = logging.INFO
    logging.basicConfig(level=resolved, format=_LOG_FORMAT)


def should_log(key: str, *, interval_seconds: float) -> bool:
    now = time.monotonic()
    with _lock:
        last = _last_log.get(key)
        if last is not None and (now - last) < float(interval_seconds):
            return False
        _last_log[key] = now
        return True


def log_exception_throttled(logger, key: str, *args, interval_seconds: float, message: str) -> None:
    """Log the active exception at most once per interval per key.

    The refresh scheduler and the navigation workers call this from loops that
    can fail the same way every cycle (unreachable policy host, locked DB).
    """
    try:
        if should_log(key, interval_seconds=interval_seconds):
            logger.exception(message, *args)
    except Exception:
        # Logging must never take down a worker loop.
        pass


def truncate(text: str, max_len: int = 100) -> str:
    s = text or ""
    if len(s) <= max_len:
        return s
    return s[:max_len] + "..."
