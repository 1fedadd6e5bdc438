from __future__ import annotations

import datetime as dt
import json
from pathlib import Path

import pytest

from matchday.services.fixture_models import Fixture
from matchday.services.timezone_converter import (
    DEFAULT_TOURNAMENT_CONFIG,
    TournamentTimezoneConfig,
    TournamentTimezoneConverter,
    load_tournament_configs,
)

CHAMPIONS_LEAGUE = 2
CLUB_WORLD_CUP = 15


def _fixture(fixture_id: int, kickoff: str, league_id: int) -> Fixture:
    return Fixture.from_api(
        {
            "fixture": {"id": fixture_id, "date": kickoff, "status": {"short": "NS"}},
            "league": {"id": league_id, "name": f"League {league_id}"},
            "teams": {"home": {"name": "Home"}, "away": {"name": "Away"}},
        }
    )


def test_early_morning_berlin_kickoff_belongs_to_previous_match_day() -> None:
    converter = TournamentTimezoneConverter("UTC")

    converted = converter.convert_to_user_timezone("2025-05-26T02:30:00+00:00", CHAMPIONS_LEAGUE)

    assert converted.original_timezone == "Europe/Berlin"
    assert converted.match_day == "2025-05-25"
    assert converted.user_match_day == "2025-05-26"
    assert converted.user_time == dt.datetime(2025, 5, 26, 2, 30, tzinfo=dt.UTC)


@pytest.mark.parametrize(
    ("kickoff", "expected"),
    [
        # Berlin is UTC+2 in summer: 04:00 UTC is exactly 06:00 local.
        ("2025-05-26T04:00:00+00:00", "2025-05-26"),
        ("2025-05-26T03:59:00+00:00", "2025-05-25"),
        ("2025-05-26T03:59:59+00:00", "2025-05-25"),
        ("2025-05-26T04:01:00+00:00", "2025-05-26"),
    ],
)
def test_match_day_boundary_minute_opens_the_new_day(kickoff: str, expected: str) -> None:
    converter = TournamentTimezoneConverter("UTC")
    assert converter.convert_to_user_timezone(kickoff, CHAMPIONS_LEAGUE).match_day == expected


def test_unknown_league_uses_utc_default() -> None:
    converter = TournamentTimezoneConverter("UTC")

    assert converter.tournament_config(999999) == DEFAULT_TOURNAMENT_CONFIG
    assert converter.tournament_config(None) == DEFAULT_TOURNAMENT_CONFIG

    converted = converter.convert_to_user_timezone("2025-05-26T05:59:00+00:00", 999999)
    assert converted.original_timezone == "UTC"
    assert converted.match_day == "2025-05-25"


def test_conversion_is_idempotent() -> None:
    converter = TournamentTimezoneConverter("America/New_York")
    first = converter.convert_to_user_timezone("2025-06-15T01:00:00+00:00", CLUB_WORLD_CUP)
    second = converter.convert_to_user_timezone("2025-06-15T01:00:00+00:00", CLUB_WORLD_CUP)
    assert first == second
    assert first.match_day == "2025-06-14"


def test_viewer_timezone_only_affects_display() -> None:
    utc_viewer = TournamentTimezoneConverter("UTC")
    tokyo_viewer = TournamentTimezoneConverter("Asia/Tokyo")

    kickoff = "2025-05-25T19:00:00+00:00"
    utc = utc_viewer.convert_to_user_timezone(kickoff, CHAMPIONS_LEAGUE)
    tokyo = tokyo_viewer.convert_to_user_timezone(kickoff, CHAMPIONS_LEAGUE)

    assert utc.match_day == tokyo.match_day == "2025-05-25"
    assert tokyo.user_match_day == "2025-05-26"
    assert tokyo.viewer_timezone == "Asia/Tokyo"


def test_unparseable_kickoff_falls_back_to_raw_calendar_date() -> None:
    converter = TournamentTimezoneConverter("UTC")

    converted = converter.convert_to_user_timezone("2025-05-26 kickoff TBC", CHAMPIONS_LEAGUE)

    assert converted.user_time is None
    assert converted.match_day == "2025-05-26"


def test_garbage_kickoff_yields_empty_match_day() -> None:
    converter = TournamentTimezoneConverter("UTC")
    assert converter.convert_to_user_timezone("garbage", None).match_day == ""


def test_group_and_filter_by_match_day() -> None:
    converter = TournamentTimezoneConverter("UTC")
    fixtures = [
        _fixture(1, "2025-05-25T19:00:00+00:00", CHAMPIONS_LEAGUE),
        _fixture(2, "2025-05-26T02:30:00+00:00", CHAMPIONS_LEAGUE),
        _fixture(3, "2025-05-26T12:00:00+00:00", CHAMPIONS_LEAGUE),
    ]

    grouped = converter.group_by_match_day(fixtures)
    assert [f.id for f in grouped["2025-05-25"]] == [1, 2]
    assert [f.id for f in grouped["2025-05-26"]] == [3]

    assert [f.id for f in converter.filter_for_date(fixtures, "2025-05-25")] == [1, 2]
    viewer_day = converter.filter_for_date(fixtures, "2025-05-26", use_viewer_timezone=True)
    assert [f.id for f in viewer_day] == [2, 3]


def test_is_on_match_day_reports_reason() -> None:
    converter = TournamentTimezoneConverter("UTC")

    matched, reason = converter.is_on_match_day("2025-05-26T02:30:00+00:00", "2025-05-25", 2)
    assert matched is True
    assert "2025-05-25" in reason

    matched, _ = converter.is_on_match_day("2025-05-26T02:30:00+00:00", "2025-05-26", 2)
    assert matched is False


def test_custom_boundary_from_config() -> None:
    configs = {
        77: TournamentTimezoneConfig(77, "Late League", "UTC", match_day_start="03:00"),
    }
    converter = TournamentTimezoneConverter("UTC", configs)

    assert converter.convert_to_user_timezone("2025-05-26T02:59:00+00:00", 77).match_day == "2025-05-25"
    assert converter.convert_to_user_timezone("2025-05-26T03:00:00+00:00", 77).match_day == "2025-05-26"


def test_load_tournament_configs_replaces_builtin_table(tmp_path: Path) -> None:
    path = tmp_path / "tournaments.json"
    path.write_text(
        json.dumps(
            [
                {"league_id": 39, "name": "Premier League", "timezone": "Europe/London"},
                {"league_id": 140, "name": "La Liga", "match_day_start": "25:00"},
                {"name": "missing id"},
                "not an object",
            ]
        ),
        encoding="utf-8",
    )

    configs = load_tournament_configs(str(path))

    assert set(configs) == {39}
    assert configs[39].timezone == "Europe/London"
    assert configs[39].match_day_start == "06:00"


@pytest.mark.parametrize("content", ["{not json", json.dumps({"league_id": 1})])
def test_unusable_config_file_keeps_builtin_table(tmp_path: Path, content: str) -> None:
    path = tmp_path / "tournaments.json"
    path.write_text(content, encoding="utf-8")

    configs = load_tournament_configs(str(path))

    assert configs[CHAMPIONS_LEAGUE].timezone == "Europe/Berlin"


def test_selected_day_defaults_to_viewer_today() -> None:
    converter = TournamentTimezoneConverter("Asia/Tokyo")
    now = dt.datetime(2025, 5, 25, 20, 0, tzinfo=dt.UTC)

    assert converter.selected_day(None, now) == dt.date(2025, 5, 26)
    assert converter.selected_day("2025-05-20T23:00:00+00:00", now) == dt.date(2025, 5, 20)
    assert converter.selected_day("soon", now) is None


def test_utc_dates_for_match_day_cover_every_configured_zone() -> None:
    day = dt.date(2024, 1, 21)

    assert TournamentTimezoneConverter("UTC").utc_dates_for_match_day(day) == [
        dt.date(2024, 1, 20),
        dt.date(2024, 1, 21),
        dt.date(2024, 1, 22),
    ]
    assert TournamentTimezoneConverter("UTC", configs={}).utc_dates_for_match_day(day) == [
        dt.date(2024, 1, 21),
        dt.date(2024, 1, 22),
    ]


def test_tokyo_kickoff_on_previous_utc_date_is_reachable() -> None:
    converter = TournamentTimezoneConverter("UTC")

    converted = converter.convert_to_user_timezone("2024-01-20T21:30:00Z", league_id=22)

    assert converted.match_day == "2024-01-21"
    assert dt.date(2024, 1, 20) in converter.utc_dates_for_match_day(dt.date(2024, 1, 21))
