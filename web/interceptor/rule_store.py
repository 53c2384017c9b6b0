from __future__ import annotations

import logging
import os
import sqlite3
import threading
import time
from typing import Dict, Iterable, List, Optional, Set, Tuple

from adblockparser import AdblockParsingError, AdblockRule, AdblockRules

from interceptor.policy import BlockRule
from interceptor.reconcile import reconcile


logger = logging.getLogger(__name__)


def build_block_matcher(rules: Dict[int, str]) -> AdblockRules:
    """Compile id -> pattern rules into one adblockparser matcher.

    Patterns adblockparser rejects are logged and left out; they never block.
    """
    valid: List[str] = []
    for rule_id, pattern in sorted(rules.items()):
        try:
            AdblockRule(pattern)
        except AdblockParsingError:
            logger.warning("Skipping unparsable block rule %s: %r", rule_id, pattern)
            continue
        valid.append(pattern)
    return AdblockRules(valid, skip_unsupported_rules=True)


class RuleStore:
    """Active block rules, persisted in SQLite and enforced with adblockparser.

    Rule patterns are URL filters in adblock syntax (`*` wildcard, substring
    match unless anchored with `|` or `||`). Updates are applied as a single
    transaction (remove, then add) so readers never see a half-applied set.
    """

    def __init__(
        self,
        db_path: str = "/var/lib/url-interceptor/rules.db",
        version_check_seconds: float = 2.0,
    ):
        self.db_path = db_path
        self.version_check_seconds = float(version_check_seconds)

        self._lock = threading.Lock()
        self._matcher: Optional[AdblockRules] = None
        self._matcher_version = -1
        self._last_version_check = 0.0

    def _connect(self) -> sqlite3.Connection:
        db_dir = os.path.dirname(self.db_path)
        if db_dir:
            os.makedirs(db_dir, exist_ok=True)
        conn = sqlite3.connect(self.db_path, timeout=30, check_same_thread=False)
        conn.execute("PRAGMA journal_mode=WAL;")
        conn.execute("PRAGMA synchronous=NORMAL;")
        conn.execute("PRAGMA busy_timeout=30000;")
        return conn

    def init_db(self) -> None:
        with self._connect() as conn:
            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS block_rules (
                    id INTEGER PRIMARY KEY,
                    pattern TEXT NOT NULL
                );
                """
            )
            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS rules_meta (
                    k TEXT PRIMARY KEY,
                    v TEXT NOT NULL
                );
                """
            )
            conn.execute("INSERT OR IGNORE INTO rules_meta(k, v) VALUES('rules_version','0')")

    def _get_version(self, conn: sqlite3.Connection) -> int:
        row = conn.execute("SELECT v FROM rules_meta WHERE k='rules_version'").fetchone()
        try:
            return int(row[0]) if row else 0
        except (TypeError, ValueError):
            return 0

    def _bump_version(self, conn: sqlite3.Connection) -> int:
        v = self._get_version(conn) + 1
        conn.execute(
            "INSERT INTO rules_meta(k,v) VALUES('rules_version',?) ON CONFLICT(k) DO UPDATE SET v=excluded.v",
            (str(v),),
        )
        return v

    def list_active_rules(self) -> Dict[int, str]:
        self.init_db()
        with self._connect() as conn:
            rows = conn.execute("SELECT id, pattern FROM block_rules ORDER BY id ASC").fetchall()
        return {int(r[0]): str(r[1]) for r in rows}

    def list_active_rule_ids(self) -> Set[int]:
        return set(self.list_active_rules())

    def replace_all(self, rules: Iterable[BlockRule]) -> Tuple[bool, str]:
        """Make `rules` the active set. Returns (ok, err).

        The current rows are read and reconciled inside one write transaction,
        so a concurrent update from another process can never leave this
        plan working from a stale id set. An unchanged rule set writes nothing.
        """
        self.init_db()
        rules = list(rules)

        conn = self._connect()
        try:
            with conn:
                conn.execute("BEGIN IMMEDIATE")
                rows = conn.execute("SELECT id, pattern FROM block_rules").fetchall()
                plan = reconcile({int(r[0]): str(r[1]) for r in rows}, rules)
                if plan.is_empty:
                    logger.debug("Blocking rules unchanged (%d rules).", len(rules))
                    return True, ""
                if plan.to_remove:
                    conn.executemany("DELETE FROM block_rules WHERE id=?", [(int(i),) for i in plan.to_remove])
                conn.executemany(
                    "INSERT INTO block_rules(id, pattern) VALUES(?, ?)",
                    [(int(r.id), str(r.pattern)) for r in plan.to_add],
                )
                version = self._bump_version(conn)
                rows = conn.execute("SELECT id, pattern FROM block_rules ORDER BY id ASC").fetchall()
        except sqlite3.IntegrityError as e:
            logger.warning("Rejected block rule update (duplicate id): %s", e)
            return False, "Duplicate rule id in update."
        except sqlite3.Error:
            logger.exception("Failed to apply block rule update")
            return False, "Failed to update block rules."
        finally:
            conn.close()

        matcher = build_block_matcher({int(r[0]): str(r[1]) for r in rows})
        with self._lock:
            self._matcher = matcher
            self._matcher_version = version
            self._last_version_check = time.monotonic()
        logger.info("Applied %d blocking rules (removed %d).", len(plan.to_add), len(plan.to_remove))
        return True, ""

    def _ensure_fresh(self) -> AdblockRules:
        now = time.monotonic()
        with self._lock:
            if self._matcher is not None and (now - self._last_version_check) < self.version_check_seconds:
                return self._matcher

        # Another process may have applied an update since we last looked.
        self.init_db()
        with self._connect() as conn:
            version = self._get_version(conn)
            if self._matcher is not None and version == self._matcher_version:
                with self._lock:
                    self._last_version_check = now
                    return self._matcher
            rows = conn.execute("SELECT id, pattern FROM block_rules ORDER BY id ASC").fetchall()

        matcher = build_block_matcher({int(r[0]): str(r[1]) for r in rows})
        with self._lock:
            self._matcher = matcher
            self._matcher_version = version
            self._last_version_check = now
            return matcher

    def should_block(self, url: str) -> bool:
        if not url:
            return False
        return bool(self._ensure_fresh().should_block(url))


_store: Optional[RuleStore] = None


def get_rule_store() -> RuleStore:
    global _store
    if _store is None:
        from interceptor.config import InterceptorConfig

        _store = RuleStore(db_path=InterceptorConfig.from_env().rules_db_path)
    return _store
