from __future__ import annotations

import os
from dataclasses import dataclass

_TRUTHY = {"1", "true", "yes", "on"}


def _env_int(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    return int(raw)


def _env_flag(name: str, default: bool) -> bool:
    raw = os.getenv(name)
    if raw is None:
        return default
    return raw.strip().lower() in _TRUTHY


@dataclass(frozen=True)
class Settings:
    database_url: str
    log_level: str
    sqlite_busy_timeout_ms: int
    # Role toggle: API-only replicas set RUN_STARTUP_JOBS=0 so one process owns scheduled autopay.
    run_startup_jobs: bool
    list_window_past_days: int
    list_window_future_days: int
    template_window_past_days: int
    template_window_future_days: int
    autopay_window_days: int


def get_settings() -> Settings:
    return Settings(
        database_url=os.getenv("DATABASE_URL", "sqlite:///./billledger.db"),
        log_level=os.getenv("LOG_LEVEL", "INFO").upper(),
        sqlite_busy_timeout_ms=_env_int("SQLITE_BUSY_TIMEOUT_MS", 5000),
        run_startup_jobs=_env_flag("RUN_STARTUP_JOBS", True),
        list_window_past_days=_env_int("LIST_WINDOW_PAST_DAYS", 45),
        list_window_future_days=_env_int("LIST_WINDOW_FUTURE_DAYS", 120),
        template_window_past_days=_env_int("TEMPLATE_WINDOW_PAST_DAYS", 45),
        template_window_future_days=_env_int("TEMPLATE_WINDOW_FUTURE_DAYS", 180),
        autopay_window_days=_env_int("AUTOPAY_WINDOW_DAYS", 60),
    )
