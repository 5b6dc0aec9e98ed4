from __future__ import annotations

import os
from dataclasses import dataclass, field
from functools import lru_cache
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

DEFAULT_DATABASE_URL = "sqlite:///focus.db"
DEFAULT_TIMEZONE = "America/Toronto"


@dataclass(frozen=True, slots=True)
class Settings:
    database_url: str = DEFAULT_DATABASE_URL
    reference_timezone: ZoneInfo = field(default_factory=lambda: ZoneInfo(DEFAULT_TIMEZONE))
    cron_secret: str | None = None
    max_active_segment_seconds: int = 8 * 3600
    paused_auto_end_minutes: int = 60
    pomo_minutes: int = 25
    short_break_minutes: int = 5
    long_break_minutes: int = 15
    pomo_cycle_size: int = 4
    loop_reset_gap_minutes: int = 30
    cors_origins: tuple[str, ...] = ("http://localhost:3000",)
    log_level: str = "INFO"

    def target_seconds(self, mode: str) -> int | None:
        """Countdown length for a timed mode, None for the stopwatch."""
        minutes = {
            "pomo": self.pomo_minutes,
            "short-break": self.short_break_minutes,
            "long-break": self.long_break_minutes,
        }.get(mode)
        return None if minutes is None else minutes * 60


def _clamp(value: int, low: int, high: int) -> int:
    return min(high, max(low, value))


def _int_env(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    try:
        parsed = int(raw.strip())
    except ValueError as exc:
        raise ValueError(f"Environment variable {name} must be an integer") from exc

    if parsed <= 0:
        raise ValueError(f"Environment variable {name} must be positive")
    return parsed


def _timezone_from_env(name: str) -> ZoneInfo:
    tz_name = (os.getenv(name) or DEFAULT_TIMEZONE).strip()
    try:
        return ZoneInfo(tz_name)
    except ZoneInfoNotFoundError as exc:
        raise ValueError(f"Invalid timezone in {name}: {tz_name}") from exc


def load_settings() -> Settings:
    origins = os.getenv("CORS_ORIGINS", "http://localhost:3000")
    secret = (os.getenv("CRON_SECRET") or "").strip() or None

    return Settings(
        database_url=os.getenv("DATABASE_URL", DEFAULT_DATABASE_URL).strip(),
        reference_timezone=_timezone_from_env("REFERENCE_TIMEZONE"),
        cron_secret=secret,
        max_active_segment_seconds=_int_env("MAX_ACTIVE_SEGMENT_SECONDS", 8 * 3600),
        paused_auto_end_minutes=_int_env("PAUSED_AUTO_END_MINUTES", 60),
        # Same bounds the pomodoro settings dialog enforces.
        pomo_minutes=_clamp(_int_env("POMO_MINUTES", 25), 1, 120),
        short_break_minutes=_clamp(_int_env("SHORT_BREAK_MINUTES", 5), 1, 60),
        long_break_minutes=_clamp(_int_env("LONG_BREAK_MINUTES", 15), 1, 60),
        pomo_cycle_size=_int_env("POMO_CYCLE_SIZE", 4),
        loop_reset_gap_minutes=_int_env("LOOP_RESET_GAP_MINUTES", 30),
        cors_origins=tuple(o.strip() for o in origins.split(",") if o.strip()),
        log_level=os.getenv("LOG_LEVEL", "INFO").strip().upper(),
    )


@lru_cache
def get_settings() -> Settings:
    return load_settings()
