"""Environment-driven settings for the acquisition core."""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field
from typing import Optional

logger = logging.getLogger(__name__)


def _env_int(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        return int(raw)
    except ValueError:
        logger.warning(f"Ignoring invalid {name}={raw!r}; using {default}")
        return default


def _env_list(name: str) -> tuple[str, ...]:
    raw = os.getenv(name, "") or ""
    return tuple(item.strip().lower() for item in raw.split(",") if item.strip())


@dataclass
class Settings:
    """Runtime knobs. All durations are milliseconds."""

    max_retries: int = 5
    base_delay_ms: int = 1000
    max_delay_ms: int = 30000
    timeout_ms: int = 30000
    gov_timeout_ms: int = 45000
    warmup_timeout_ms: int = 10000
    batch_size: int = 3
    source_timeout_ms: int = 45000
    fast_source_timeout_ms: int = 15000
    job_budget_ms: int = 300000
    max_age_days: int = 7
    profiles_path: Optional[str] = None
    database_url: Optional[str] = None
    snippet_allowlist: tuple[str, ...] = field(default_factory=tuple)
    log_level: str = "INFO"

    @classmethod
    def from_env(cls) -> "Settings":
        return cls(
            max_retries=_env_int("NEWSACQUIRE_MAX_RETRIES", 5),
            base_delay_ms=_env_int("NEWSACQUIRE_BASE_DELAY_MS", 1000),
            max_delay_ms=_env_int("NEWSACQUIRE_MAX_DELAY_MS", 30000),
            timeout_ms=_env_int("NEWSACQUIRE_TIMEOUT_MS", 30000),
            gov_timeout_ms=_env_int("NEWSACQUIRE_GOV_TIMEOUT_MS", 45000),
            warmup_timeout_ms=_env_int("NEWSACQUIRE_WARMUP_TIMEOUT_MS", 10000),
            batch_size=max(1, _env_int("NEWSACQUIRE_BATCH_SIZE", 3)),
            source_timeout_ms=_env_int("NEWSACQUIRE_SOURCE_TIMEOUT_MS", 45000),
            fast_source_timeout_ms=_env_int(
                "NEWSACQUIRE_FAST_SOURCE_TIMEOUT_MS", 15000
            ),
            job_budget_ms=_env_int("NEWSACQUIRE_JOB_BUDGET_MS", 300000),
            max_age_days=_env_int("NEWSACQUIRE_MAX_AGE_DAYS", 7),
            profiles_path=os.getenv("NEWSACQUIRE_PROFILES_PATH") or None,
            database_url=os.getenv("NEWSACQUIRE_DATABASE_URL") or None,
            snippet_allowlist=_env_list("NEWSACQUIRE_SNIPPET_ALLOWLIST"),
            log_level=os.getenv("NEWSACQUIRE_LOG_LEVEL", "INFO"),
        )


_settings: Optional[Settings] = None


def get_settings() -> Settings:
    """Return the process-wide settings, loading them on first use."""
    global _settings
    if _settings is None:
        _settings = Settings.from_env()
    return _settings


def reset_settings() -> None:
    global _settings
    _settings = None
