from __future__ import annotations

import os
from dataclasses import dataclass, field

from dotenv import load_dotenv

env_path = os.path.join(os.path.dirname(__file__), "..", ".env")
load_dotenv(env_path)


def _env_flag(name: str, default: bool = False) -> bool:
    raw = os.getenv(name, str(default)).strip().lower()
    return raw in {"1", "true", "yes", "on"}


def _env_int(name: str, default: int, minimum: int, maximum: int) -> int:
    raw = os.getenv(name, str(default)).strip()
    try:
        value = int(raw)
    except ValueError:
        value = default
    return max(minimum, min(maximum, value))


def _env_float(name: str, default: float, minimum: float, maximum: float) -> float:
    raw = os.getenv(name, str(default)).strip()
    try:
        value = float(raw)
    except ValueError:
        value = default
    return max(minimum, min(maximum, value))


def _env_str(name: str, default: str = "") -> str:
    return os.getenv(name, default).strip()


def _parse_csv_env(name: str, default: str) -> list[str]:
    raw = os.getenv(name, default)
    values = [item.strip() for item in raw.split(",") if item.strip()]
    return values or [default]


def _default_data_path(filename: str) -> str:
    return os.path.normpath(os.path.join(os.path.dirname(__file__), "..", "data", filename))


@dataclass(frozen=True)
class Settings:
    api_key: str = ""
    base_url: str = "https://v3.football.api-sports.io"
    timeout_seconds: float = 10.0
    min_request_interval_seconds: float = 1.0

    viewer_timezone: str = "UTC"

    cache_ttl_today_minutes: int = 30
    cache_ttl_past_minutes: int = 1440
    cache_ttl_future_minutes: int = 1440
    cache_file_path: str = field(default_factory=lambda: _default_data_path("fixture_cache.json"))
    cache_database_url: str = ""

    tournament_timezones_path: str = ""

    live_polling_enabled: bool = False
    live_poll_seconds: int = 60

    diagnostics_enabled: bool = False
    cors_origins: tuple[str, ...] = ("http://localhost:3000",)


def load_settings() -> Settings:
    """Build settings from the process environment (read once at startup)."""
    return Settings(
        api_key=_env_str("API_SPORTS_KEY"),
        base_url=_env_str("API_SPORTS_BASE_URL", "https://v3.football.api-sports.io").rstrip("/"),
        timeout_seconds=_env_float("REQUEST_TIMEOUT_SECONDS", 10.0, 1.0, 120.0),
        min_request_interval_seconds=_env_float("MIN_REQUEST_INTERVAL_SECONDS", 1.0, 0.0, 60.0),
        viewer_timezone=_env_str("VIEWER_TIMEZONE", "UTC") or "UTC",
        cache_ttl_today_minutes=_env_int("CACHE_TTL_TODAY_MINUTES", default=30, minimum=1, maximum=1440),
        cache_ttl_past_minutes=_env_int("CACHE_TTL_PAST_MINUTES", default=1440, minimum=1, maximum=43200),
        cache_ttl_future_minutes=_env_int(
            "CACHE_TTL_FUTURE_MINUTES", default=1440, minimum=1, maximum=43200
        ),
        cache_file_path=os.path.normpath(
            _env_str("FIXTURE_CACHE_PATH", _default_data_path("fixture_cache.json"))
        ),
        cache_database_url=_env_str("CACHE_DATABASE_URL", os.getenv("DATABASE_URL", "")),
        tournament_timezones_path=_env_str("TOURNAMENT_TIMEZONES_PATH"),
        live_polling_enabled=_env_flag("LIVE_POLLING_ENABLED", default=False),
        live_poll_seconds=_env_int("LIVE_POLL_SECONDS", default=60, minimum=15, maximum=600),
        diagnostics_enabled=_env_flag("DIAGNOSTICS_ENABLED", default=False),
        cors_origins=tuple(_parse_csv_env("CORS_ORIGINS", "http://localhost:3000")),
    )
