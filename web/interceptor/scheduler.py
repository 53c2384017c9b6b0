from __future__ import annotations

import logging
import threading
import time

from interceptor.logutil import log_exception_throttled


logger = logging.getLogger(__name__)


_started = False
_lock = threading.Lock()


def _run_once(interceptor) -> None:
    outcome = interceptor.refresh()
    if outcome.ok:
        logger.info("Scheduled policy refresh: %s", outcome.message)
    else:
        logger.warning("Scheduled policy refresh: %s", outcome.message)


def start_refresh_scheduler(interceptor, *, delay_seconds: int = 60, interval_seconds: int = 10 * 60) -> bool:
    """Start the periodic policy refresh.

    The first run happens after `delay_seconds`, then every `interval_seconds`.
    Returns False if the scheduler was already running in this process.
    """
    global _started
    with _lock:
        if _started:
            return False
        _started = True

    def loop() -> None:
        time.sleep(max(0.0, float(delay_seconds)))
        while True:
            try:
                _run_once(interceptor)
            except Exception:
                log_exception_throttled(
                    logger,
                    "scheduler.refresh",
                    interval_seconds=300,
                    message="Scheduled policy refresh failed",
                )
            time.sleep(float(interval_seconds))

    t = threading.Thread(target=loop, name="policy-refresh", daemon=True)
    t.start()
    return True


def start_startup_refresh(interceptor) -> None:
    """Refresh once right away, off the request path, when a URL is configured."""

    def run() -> None:
        try:
            interceptor.startup()
        except Exception:
            log_exception_throttled(
                logger,
                "scheduler.startup",
                interval_seconds=300,
                message="Startup policy refresh failed",
            )

    threading.Thread(target=run, name="policy-startup-refresh", daemon=True).start()
