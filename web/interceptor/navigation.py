from __future__ import annotations

import concurrent.futures
import logging
import threading
from dataclasses import dataclass
from typing import Callable, Dict, Iterable, Optional, Tuple

from interceptor.logutil import log_exception_throttled, truncate
from interceptor.policy import RedirectRule
from interceptor.resolver import Probe, resolve_target
from interceptor.wildcard import WildcardMatcher, iter_matches


logger = logging.getLogger(__name__)


LOADING = "loading"
COMPLETE = "complete"


@dataclass(frozen=True)
class NavigationEvent:
    tab_id: int
    url: str
    status: str = LOADING


@dataclass(frozen=True)
class NavigationDecision:
    url: str
    blocked: bool = False
    redirect: Optional[str] = None
    matched_pattern: Optional[str] = None

    def to_dict(self) -> Dict[str, object]:
        return {
            "url": self.url,
            "blocked": self.blocked,
            "redirect": self.redirect,
            "matched_pattern": self.matched_pattern,
        }


def decide_navigation(
    url: str,
    *,
    is_blocked: Callable[[str], bool],
    redirects: Iterable[Tuple[WildcardMatcher, RedirectRule]],
    probe: Probe,
) -> NavigationDecision:
    """Block check first, then the ordered redirect scan. No side effects.

    A matching rule whose fallback chain yields nothing does not stop the
    scan; the next matching rule gets its turn.
    """
    if is_blocked(url):
        return NavigationDecision(url=url, blocked=True)

    for rule in iter_matches(redirects, url):
        logger.info("Checking redirect for %s based on pattern: %s", truncate(url), rule.pattern)
        try:
            target = resolve_target(rule.own, rule.default, probe)
        except Exception:
            logger.exception("Error processing redirect rule %r. Skipping.", rule.pattern)
            continue
        if target:
            return NavigationDecision(url=url, redirect=target, matched_pattern=rule.pattern)
    return NavigationDecision(url=url)


class TabRegistry:
    """Tracks the current URL of each tab.

    `observe` is the event source: it only yields an event for a `loading`
    transition whose URL differs from what the tab last had. `set_url` is the
    override sink used when a navigation gets redirected; the override then
    counts as the tab's current URL, so its own load is not handled again.
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._urls: Dict[int, str] = {}

    def observe(self, tab_id: int, url: Optional[str], status: str = LOADING) -> Optional[NavigationEvent]:
        if status != LOADING or not url:
            return None
        with self._lock:
            if self._urls.get(tab_id) == url:
                return None
            self._urls[tab_id] = url
        return NavigationEvent(tab_id=tab_id, url=url, status=status)

    def set_url(self, tab_id: int, url: str) -> None:
        with self._lock:
            self._urls[tab_id] = url


class NavigationDispatcher:
    """Hands navigation events to a handler on a worker pool.

    Each event is resolved independently, so a slow liveness probe for one
    tab does not hold up another. Callers bound their wait with
    `future.result(timeout=...)`.
    """

    def __init__(self, handler: Callable[[NavigationEvent], NavigationDecision], *, max_workers: int = 8):
        self._handler = handler
        self._executor = concurrent.futures.ThreadPoolExecutor(
            max_workers=max(1, int(max_workers)),
            thread_name_prefix="nav-resolve",
        )

    def _run(self, event: NavigationEvent) -> NavigationDecision:
        try:
            return self._handler(event)
        except Exception:
            log_exception_throttled(
                logger,
                "navigation.handler",
                interval_seconds=60.0,
                message="Navigation handler failed; letting navigation proceed",
            )
            return NavigationDecision(url=event.url)

    def submit(self, event: NavigationEvent) -> "concurrent.futures.Future[NavigationDecision]":
        return self._executor.submit(self._run, event)

    def shutdown(self, wait: bool = True) -> None:
        self._executor.shutdown(wait=wait)
