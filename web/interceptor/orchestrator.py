from __future__ import annotations

import logging
import threading
import time
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional, Tuple

from interceptor import state_store as keys
from interceptor.access_gate import verify_secret
from interceptor.config import InterceptorConfig
from interceptor.errors import MalformedDocumentError, SourceUnavailableError, public_error_message
from interceptor.logutil import truncate
from interceptor.navigation import LOADING, NavigationDecision, NavigationEvent, TabRegistry, decide_navigation
from interceptor.policy import LOCKED, UNLOCKED, AccessLock, BlockRule, RedirectRule, compile_policy, parse_policy
from interceptor.resolver import HeadProbe, Probe
from interceptor.rule_store import RuleStore
from interceptor.source_fetch import fetch_text
from interceptor.state_store import StateStore
from interceptor.wildcard import WildcardMatcher, compile_rules


logger = logging.getLogger(__name__)


RESULT_SUCCESS = "Success"
RESULT_NO_URL = "No URL configured."


@dataclass(frozen=True)
class RefreshOutcome:
    ok: bool
    message: str


def _now() -> int:
    return int(time.time())


class Interceptor:
    """Owns the policy refresh cycle and navigation handling.

    Refreshes are serialised; navigation handling only reads persisted rules
    and may run concurrently with a refresh.
    """

    def __init__(
        self,
        config: InterceptorConfig,
        state: StateStore,
        rules: RuleStore,
        *,
        probe: Optional[Probe] = None,
        fetcher: Optional[Callable[[str], str]] = None,
        tabs: Optional[TabRegistry] = None,
    ):
        self.config = config
        self.state = state
        self.rules = rules
        self.probe = probe or HeadProbe(timeout_seconds=config.probe_timeout_seconds)
        self.tabs = tabs or TabRegistry()
        self._fetcher = fetcher
        self._refresh_lock = threading.Lock()
        self._redirect_cache_lock = threading.Lock()
        self._redirect_cache: Tuple[Any, List[Tuple[WildcardMatcher, RedirectRule]]] = (None, [])

    # --- configuration -------------------------------------------------

    @property
    def managed(self) -> bool:
        return bool(self.config.managed_config_url)

    def effective_config_url(self) -> str:
        if self.config.managed_config_url:
            return self.config.managed_config_url
        return str(self.state.get(keys.CONFIG_URL) or "")

    def set_config_url(self, url: str) -> None:
        self.state.set(keys.CONFIG_URL, url)

    def remove_config_url(self) -> None:
        # Removing the source also drops the lock it carried.
        self.state.remove(keys.CONFIG_URL, keys.LOCK_STATUS, keys.LOCK_HASH)

    def lock_state(self) -> AccessLock:
        vals = self.state.get_many(keys.LOCK_STATUS, keys.LOCK_HASH)
        status = vals.get(keys.LOCK_STATUS) or UNLOCKED
        digest = vals.get(keys.LOCK_HASH) or None
        if status != LOCKED or not digest:
            return AccessLock()
        return AccessLock(status=LOCKED, digest_hex=str(digest))

    def verify_password(self, candidate: str) -> bool:
        return verify_secret(candidate, self.lock_state().digest_hex)

    # --- refresh -------------------------------------------------------

    def _fetch(self, url: str) -> str:
        if self._fetcher is not None:
            return self._fetcher(url)
        return fetch_text(
            url,
            timeout_seconds=self.config.fetch_timeout_seconds,
            max_bytes=self.config.max_policy_bytes,
        )

    def startup(self) -> Optional[RefreshOutcome]:
        if not self.effective_config_url():
            return None
        return self.refresh()

    def refresh(self) -> RefreshOutcome:
        with self._refresh_lock:
            return self._refresh_locked()

    def _refresh_locked(self) -> RefreshOutcome:
        url = self.effective_config_url()
        if not url:
            self.state.set_many({keys.LAST_FETCH_ATTEMPT: _now(), keys.LAST_FETCH_RESULT: RESULT_NO_URL})
            return RefreshOutcome(ok=False, message=RESULT_NO_URL)

        self.state.set(keys.LAST_FETCH_ATTEMPT, _now())
        try:
            text = self._fetch(url)
        except SourceUnavailableError as e:
            logger.error("Fetch failed for %s: %s", url, e)
            return self._fail(f"Error: {public_error_message(e)}")
        except Exception as e:
            logger.exception("Fetch failed for %s", url)
            return self._fail(f"Error: {public_error_message(e)}")

        self.state.set_many({keys.LAST_FETCH_RESULT: RESULT_SUCCESS, keys.LAST_SUCCESSFUL_FETCH: _now()})

        try:
            doc = parse_policy(text)
        except MalformedDocumentError as e:
            logger.error("Policy parsing error: %s", e)
            return self._fail(f"Error: Invalid YAML format. {public_error_message(e)}")

        compiled = compile_policy(doc)
        ok, err = self.rules.replace_all(compiled.block_rules)
        if not ok:
            return self._fail(f"Error: {err or 'Failed to apply blocking rules.'}")

        self.state.set_many(
            {
                keys.BLOCK_RULES: [r.to_dict() for r in compiled.block_rules],
                keys.REDIRECT_RULES: [r.to_dict() for r in compiled.redirect_rules],
                keys.LOCK_STATUS: compiled.lock.status,
                keys.LOCK_HASH: compiled.lock.digest_hex,
            }
        )
        logger.info("Stored %d redirection rules.", len(compiled.redirect_rules))
        return RefreshOutcome(ok=True, message=RESULT_SUCCESS)

    def _fail(self, message: str) -> RefreshOutcome:
        self.state.set(keys.LAST_FETCH_RESULT, message)
        self.clear_all_rules()
        return RefreshOutcome(ok=False, message=message)

    def clear_all_rules(self) -> None:
        ok, err = self.rules.replace_all(())
        if ok:
            logger.info("Cleared all dynamic blocking rules.")
        else:
            logger.error("Failed to clear blocking rules: %s", err)
        self.state.set_many({keys.BLOCK_RULES: [], keys.REDIRECT_RULES: []})
        logger.info("Cleared all dynamic redirection rules.")

    # --- navigation ----------------------------------------------------

    def _load_redirect_rules(self, raw: Any) -> List[RedirectRule]:
        out: List[RedirectRule] = []
        for item in raw if isinstance(raw, list) else []:
            try:
                out.append(RedirectRule.from_dict(item))
            except (KeyError, TypeError, ValueError):
                logger.warning("Ignoring unreadable stored redirect rule: %r", item)
        return out

    def redirect_rules(self) -> List[RedirectRule]:
        return self._load_redirect_rules(self.state.get(keys.REDIRECT_RULES) or [])

    def compiled_redirect_rules(self) -> List[Tuple[WildcardMatcher, RedirectRule]]:
        """Stored redirect rules with their matchers, recompiled only when the stored list changes."""
        raw = self.state.get(keys.REDIRECT_RULES) or []
        with self._redirect_cache_lock:
            cached_raw, compiled = self._redirect_cache
            if cached_raw == raw:
                return compiled
        compiled = compile_rules(self._load_redirect_rules(raw))
        with self._redirect_cache_lock:
            self._redirect_cache = (raw, compiled)
        return compiled

    def block_rules(self) -> List[BlockRule]:
        raw = self.state.get(keys.BLOCK_RULES) or []
        out: List[BlockRule] = []
        for item in raw if isinstance(raw, list) else []:
            try:
                out.append(BlockRule.from_dict(item))
            except (KeyError, TypeError, ValueError):
                logger.warning("Ignoring unreadable stored block rule: %r", item)
        return out

    def decide(self, url: str) -> NavigationDecision:
        return decide_navigation(
            url,
            is_blocked=self.rules.should_block,
            redirects=self.compiled_redirect_rules(),
            probe=self.probe,
        )

    def handle_navigation(self, event: NavigationEvent) -> NavigationDecision:
        if event.status != LOADING or not event.url:
            return NavigationDecision(url=event.url or "")

        decision = self.decide(event.url)
        if decision.redirect:
            logger.info("Redirecting tab %s to: %s", event.tab_id, truncate(decision.redirect))
            self.tabs.set_url(event.tab_id, decision.redirect)
        return decision

    # --- debug ---------------------------------------------------------

    def status(self) -> Dict[str, Any]:
        vals = self.state.get_many(
            keys.CONFIG_URL,
            keys.LAST_FETCH_ATTEMPT,
            keys.LAST_FETCH_RESULT,
            keys.LAST_SUCCESSFUL_FETCH,
            keys.LOCK_STATUS,
        )
        return {
            "config_url": self.config.managed_config_url or vals.get(keys.CONFIG_URL) or "",
            "managed": self.managed,
            "last_fetch_attempt": int(vals.get(keys.LAST_FETCH_ATTEMPT) or 0),
            "last_fetch_result": vals.get(keys.LAST_FETCH_RESULT) or "",
            "last_successful_fetch": int(vals.get(keys.LAST_SUCCESSFUL_FETCH) or 0),
            "lock_status": vals.get(keys.LOCK_STATUS) or UNLOCKED,
            "block_rules": len(self.rules.list_active_rule_ids()),
            "redirect_rules": len(self.redirect_rules()),
        }


_interceptor: Optional[Interceptor] = None
_interceptor_lock = threading.Lock()


def get_interceptor() -> Interceptor:
    global _interceptor
    with _interceptor_lock:
        if _interceptor is None:
            from interceptor.rule_store import get_rule_store
            from interceptor.state_store import get_state_store

            _interceptor = Interceptor(InterceptorConfig.from_env(), get_state_store(), get_rule_store())
    return _interceptor
