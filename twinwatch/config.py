from __future__ import annotations

import os
from dataclasses import dataclass
from functools import lru_cache


def _env_flag(name: str, default: str = "0") -> bool:
    return os.getenv(name, default).strip().lower() in {"1", "true", "yes", "on"}


@dataclass
class Settings:
    """
    Runtime configuration, driven by environment variables.
    """

    api_key: str = os.getenv("API_KEY", "dev-1234")
    sweep_enabled: bool = _env_flag("TWINWATCH_SWEEP_ENABLED")
    sweep_interval_minutes: int = int(os.getenv("TWINWATCH_SWEEP_INTERVAL_MIN", 5))
    sweep_window_seconds: int = int(os.getenv("TWINWATCH_SWEEP_WINDOW_SEC", 300))
    diagnostic_window_seconds: int = int(os.getenv("TWINWATCH_DIAGNOSTIC_WINDOW_SEC", 3600))
    faults_page_limit: int = int(os.getenv("TWINWATCH_FAULTS_LIMIT", 50))
    slack_webhook: str = os.getenv("TWINWATCH_SLACK_WEBHOOK", "")
    webhook_timeout: float = float(os.getenv("TWINWATCH_WEBHOOK_TIMEOUT", 5.0))
    log_level: str = os.getenv("TWINWATCH_LOG_LEVEL", "INFO")


@lru_cache()
def get_settings() -> Settings:
    return Settings()
