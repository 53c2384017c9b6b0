from __future__ import annotations

import os
from dataclasses import dataclass
from typing import Optional


DEFAULT_DATA_DIR = "/var/lib/url-interceptor"


def env_str(name: str, default: str = "") -> str:
    v = (os.environ.get(name) or "").strip()
    return v or default


def env_int(name: str, default: int, *, minimum: Optional[int] = None, maximum: Optional[int] = None) -> int:
    v = (os.environ.get(name) or "").strip()
    try:
        out = int(v) if v else int(default)
    except ValueError:
        out = int(default)
    if minimum is not None:
        out = max(minimum, out)
    if maximum is not None:
        out = min(maximum, out)
    return out


def env_float(name: str, default: float, *, minimum: float = 0.0) -> float:
    v = (os.environ.get(name) or "").strip()
    try:
        out = float(v) if v else float(default)
    except ValueError:
        out = float(default)
    if out <= minimum:
        out = float(default)
    return out


def env_flag(name: str) -> bool:
    return (os.environ.get(name) or "").strip().lower() in ("1", "true", "yes", "on")


@dataclass(frozen=True)
class InterceptorConfig:
    data_dir: str
    state_db_path: str
    rules_db_path: str
    managed_config_url: str
    fetch_timeout_seconds: float
    probe_timeout_seconds: float
    max_policy_bytes: int
    refresh_delay_seconds: int
    refresh_interval_seconds: int
    nav_workers: int
    nav_timeout_seconds: float

    @classmethod
    def from_env(cls) -> "InterceptorConfig":
        data_dir = env_str("INTERCEPT_DATA_DIR", DEFAULT_DATA_DIR)
        return cls(
            data_dir=data_dir,
            state_db_path=env_str("INTERCEPT_STATE_DB", os.path.join(data_dir, "state.db")),
            rules_db_path=env_str("INTERCEPT_RULES_DB", os.path.join(data_dir, "rules.db")),
            managed_config_url=env_str("INTERCEPT_MANAGED_CONFIG_URL"),
            fetch_timeout_seconds=env_float("INTERCEPT_FETCH_TIMEOUT", 25.0),
            probe_timeout_seconds=env_float("INTERCEPT_PROBE_TIMEOUT", 5.0),
            max_policy_bytes=env_int("INTERCEPT_MAX_POLICY_BYTES", 2 * 1024 * 1024, minimum=1024),
            refresh_delay_seconds=env_int("INTERCEPT_REFRESH_DELAY", 60, minimum=0),
            refresh_interval_seconds=env_int("INTERCEPT_REFRESH_INTERVAL", 10 * 60, minimum=30),
            nav_workers=env_int("INTERCEPT_NAV_WORKERS", 8, minimum=1, maximum=64),
            nav_timeout_seconds=env_float("INTERCEPT_NAV_TIMEOUT", 30.0),
        )
