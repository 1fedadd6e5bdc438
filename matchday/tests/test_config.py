from __future__ import annotations

import pytest

from matchday.services.config import load_settings


@pytest.fixture
def clean_env(monkeypatch):
    for name in (
        "API_SPORTS_KEY",
        "VIEWER_TIMEZONE",
        "CACHE_TTL_TODAY_MINUTES",
        "CACHE_DATABASE_URL",
        "DATABASE_URL",
        "LIVE_POLL_SECONDS",
        "LIVE_POLLING_ENABLED",
        "DIAGNOSTICS_ENABLED",
        "CORS_ORIGINS",
    ):
        monkeypatch.delenv(name, raising=False)
    return monkeypatch


def test_defaults(clean_env) -> None:
    settings = load_settings()

    assert settings.api_key == ""
    assert settings.viewer_timezone == "UTC"
    assert settings.cache_ttl_today_minutes == 30
    assert settings.cache_ttl_past_minutes == 1440
    assert settings.live_polling_enabled is False
    assert settings.diagnostics_enabled is False
    assert settings.cors_origins == ("http://localhost:3000",)


def test_environment_overrides(clean_env) -> None:
    clean_env.setenv("API_SPORTS_KEY", " demo-key ")
    clean_env.setenv("VIEWER_TIMEZONE", "Europe/Berlin")
    clean_env.setenv("CACHE_TTL_TODAY_MINUTES", "10")
    clean_env.setenv("DATABASE_URL", "postgres://u@h/db")
    clean_env.setenv("LIVE_POLLING_ENABLED", "yes")
    clean_env.setenv("DIAGNOSTICS_ENABLED", "1")
    clean_env.setenv("CORS_ORIGINS", "https://a.example, https://b.example")

    settings = load_settings()

    assert settings.api_key == "demo-key"
    assert settings.viewer_timezone == "Europe/Berlin"
    assert settings.cache_ttl_today_minutes == 10
    assert settings.cache_database_url == "postgres://u@h/db"
    assert settings.live_polling_enabled is True
    assert settings.diagnostics_enabled is True
    assert settings.cors_origins == ("https://a.example", "https://b.example")


@pytest.mark.parametrize(("raw", "expected"), [("5", 15), ("9999", 600), ("abc", 60), ("120", 120)])
def test_live_poll_seconds_is_clamped(clean_env, raw: str, expected: int) -> None:
    clean_env.setenv("LIVE_POLL_SECONDS", raw)
    assert load_settings().live_poll_seconds == expected
