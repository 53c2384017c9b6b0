from __future__ import annotations

import json
import os
import sqlite3
import threading
from typing import Any, Dict, Mapping, Optional


CONFIG_URL = "config_url"
BLOCK_RULES = "block_rules"
REDIRECT_RULES = "redirect_rules"
LOCK_STATUS = "lock_status"
LOCK_HASH = "lock_hash"
LAST_FETCH_ATTEMPT = "last_fetch_attempt"
LAST_FETCH_RESULT = "last_fetch_result"
LAST_SUCCESSFUL_FETCH = "last_successful_fetch"


class StateStore:
    """Whole-value key/value persistence for interceptor state.

    Values are JSON documents replaced on every write; there are no partial
    updates.
    """

    def __init__(self, db_path: str = "/var/lib/url-interceptor/state.db"):
        self.db_path = db_path
        self._init_lock = threading.Lock()
        self._initialized = False

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
        with self._init_lock:
            if self._initialized:
                return
            with self._connect() as conn:
                conn.execute(
                    """
                    CREATE TABLE IF NOT EXISTS state (
                        k TEXT PRIMARY KEY,
                        v TEXT NOT NULL
                    );
                    """
                )
            self._initialized = True

    def get(self, key: str, default: Any = None) -> Any:
        self.init_db()
        with self._connect() as conn:
            row = conn.execute("SELECT v FROM state WHERE k=?", (key,)).fetchone()
        if not row:
            return default
        try:
            return json.loads(row[0])
        except ValueError:
            return default

    def get_many(self, *keys: str) -> Dict[str, Any]:
        self.init_db()
        if not keys:
            return {}
        marks = ",".join("?" for _ in keys)
        with self._connect() as conn:
            rows = conn.execute(f"SELECT k, v FROM state WHERE k IN ({marks})", tuple(keys)).fetchall()
        out: Dict[str, Any] = {}
        for k, v in rows:
            try:
                out[str(k)] = json.loads(v)
            except ValueError:
                continue
        return out

    def set(self, key: str, value: Any) -> None:
        self.set_many({key: value})

    def set_many(self, values: Mapping[str, Any]) -> None:
        """Write several keys in one transaction."""
        self.init_db()
        rows = [(str(k), json.dumps(v, sort_keys=True)) for k, v in (values or {}).items()]
        if not rows:
            return
        with self._connect() as conn:
            conn.executemany(
                "INSERT INTO state(k, v) VALUES(?, ?) ON CONFLICT(k) DO UPDATE SET v=excluded.v",
                rows,
            )

    def remove(self, *keys: str) -> None:
        self.init_db()
        if not keys:
            return
        with self._connect() as conn:
            conn.executemany("DELETE FROM state WHERE k=?", [(k,) for k in keys])


_store: Optional[StateStore] = None


def get_state_store() -> StateStore:
    global _store
    if _store is None:
        from interceptor.config import InterceptorConfig

        _store = StateStore(db_path=InterceptorConfig.from_env().state_db_path)
    return _store
