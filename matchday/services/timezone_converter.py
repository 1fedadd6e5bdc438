from __future__ import annotations

import datetime as dt
import json
import os
from collections import defaultdict
from dataclasses import dataclass
from typing import Any

from loguru import logger

try:
    from matchday.services.dates import (
        local_now,
        minutes_since_midnight,
        naive_calendar_date,
        parse_calendar_date,
        parse_clock,
        parse_iso_datetime,
        resolve_timezone,
    )
    from matchday.services.fixture_models import Fixture
except ModuleNotFoundError:
    from services.dates import (
        local_now,
        minutes_since_midnight,
        naive_calendar_date,
        parse_calendar_date,
        parse_clock,
        parse_iso_datetime,
        resolve_timezone,
    )
    from services.fixture_models import Fixture


@dataclass(frozen=True)
class TournamentTimezoneConfig:
    league_id: int
    name: str
    timezone: str
    match_day_start: str = "06:00"


DEFAULT_TOURNAMENT_CONFIG = TournamentTimezoneConfig(
    league_id=0, name="Default", timezone="UTC", match_day_start="06:00"
)

TOURNAMENT_TIMEZONES: tuple[TournamentTimezoneConfig, ...] = (
    TournamentTimezoneConfig(15, "FIFA Club World Cup", "America/New_York"),
    TournamentTimezoneConfig(16, "CONCACAF Gold Cup", "America/Chicago"),
    TournamentTimezoneConfig(2, "UEFA Champions League", "Europe/Berlin"),
    TournamentTimezoneConfig(3, "UEFA Europa League", "Europe/Berlin"),
    TournamentTimezoneConfig(848, "UEFA Conference League", "Europe/Berlin"),
    TournamentTimezoneConfig(38, "UEFA U21 Championship", "Europe/Berlin"),
    TournamentTimezoneConfig(5, "UEFA Nations League", "Europe/Berlin"),
    TournamentTimezoneConfig(4, "Euro Championship", "Europe/Berlin"),
    # Host-dependent tournaments stay on UTC.
    TournamentTimezoneConfig(1, "World Cup", "UTC"),
    TournamentTimezoneConfig(9, "Copa America", "America/Santiago"),
    TournamentTimezoneConfig(22, "Asian Cup", "Asia/Tokyo"),
    TournamentTimezoneConfig(6, "Africa Cup of Nations", "Africa/Cairo"),
    TournamentTimezoneConfig(480, "Olympics Men", "UTC"),
    TournamentTimezoneConfig(481, "Olympics Women", "UTC"),
)


def load_tournament_configs(path: str | None = None) -> dict[int, TournamentTimezoneConfig]:
    configs = {config.league_id: config for config in TOURNAMENT_TIMEZONES}
    if not path:
        return configs

    if not os.path.exists(path):
        logger.warning(f"Tournament timezone file {path} not found. Using built-in table.")
        return configs

    try:
        with open(path, "r", encoding="utf-8") as handle:
            payload = json.load(handle)
    except (OSError, json.JSONDecodeError) as exc:
        logger.warning(f"Failed to read tournament timezones from {path}: {exc}")
        return configs

    if not isinstance(payload, list):
        logger.warning(f"Tournament timezone file {path} must hold a JSON list.")
        return configs

    loaded: dict[int, TournamentTimezoneConfig] = {}
    for item in payload:
        if not isinstance(item, dict):
            continue
        try:
            config = TournamentTimezoneConfig(
                league_id=int(item["league_id"]),
                name=str(item.get("name", "")).strip(),
                timezone=str(item.get("timezone", "UTC")).strip() or "UTC",
                match_day_start=str(item.get("match_day_start", "06:00")).strip(),
            )
            parse_clock(config.match_day_start)
        except (KeyError, TypeError, ValueError) as exc:
            logger.warning(f"Skipping tournament timezone entry {item}: {exc}")
            continue
        loaded[config.league_id] = config

    logger.info(f"Loaded {len(loaded)} tournament timezone entries from {path}.")
    return loaded


@dataclass(frozen=True)
class ConvertedTime:
    user_time: dt.datetime | None
    user_time_string: str
    original_timezone: str
    match_day: str
    user_match_day: str
    viewer_timezone: str


class TournamentTimezoneConverter:
    """Buckets kickoffs by each tournament's own match-day boundary."""

    def __init__(
        self,
        viewer_timezone: str = "UTC",
        configs: dict[int, TournamentTimezoneConfig] | None = None,
    ) -> None:
        self.viewer_timezone_name = str(viewer_timezone or "UTC")
        self.viewer_zone = resolve_timezone(self.viewer_timezone_name)
        self.configs = dict(configs) if configs is not None else load_tournament_configs()

    def tournament_config(self, league_id: int | None = None) -> TournamentTimezoneConfig:
        if not league_id:
            return DEFAULT_TOURNAMENT_CONFIG
        return self.configs.get(int(league_id), DEFAULT_TOURNAMENT_CONFIG)

    @staticmethod
    def _zone_for(config: TournamentTimezoneConfig) -> tuple[dt.tzinfo, str]:
        zone = resolve_timezone(config.timezone)
        if zone is dt.UTC:
            return zone, "UTC"
        return zone, config.timezone

    @staticmethod
    def _boundary_minutes(match_day_start: str) -> int:
        try:
            return parse_clock(match_day_start)
        except ValueError:
            logger.warning(f"Invalid match day start '{match_day_start}', using 06:00.")
            return 6 * 60

    @classmethod
    def match_day_for(cls, local_time: dt.datetime, match_day_start: str) -> dt.date:
        # The boundary minute itself opens the new match-day.
        if minutes_since_midnight(local_time) < cls._boundary_minutes(match_day_start):
            return local_time.date() - dt.timedelta(days=1)
        return local_time.date()

    def utc_dates_for_match_day(self, match_day: dt.date) -> list[dt.date]:
        """UTC calendar dates that can hold kickoffs belonging to ``match_day``.

        Each configured tournament's match-day runs from its local boundary to
        the next one; the union of those windows, seen in UTC, spans every
        upstream date that has to be requested.
        """
        next_day = match_day + dt.timedelta(days=1)
        first = last = match_day
        for config in (DEFAULT_TOURNAMENT_CONFIG, *self.configs.values()):
            zone, _ = self._zone_for(config)
            boundary = self._boundary_minutes(config.match_day_start)
            hour, minute = divmod(boundary, 60)
            start = dt.datetime(match_day.year, match_day.month, match_day.day, hour, minute, tzinfo=zone)
            end = dt.datetime(next_day.year, next_day.month, next_day.day, hour, minute, tzinfo=zone)
            start_day = start.astimezone(dt.UTC).date()
            end_day = (end - dt.timedelta(microseconds=1)).astimezone(dt.UTC).date()
            first = min(first, start_day)
            last = max(last, end_day)
        return [first + dt.timedelta(days=offset) for offset in range((last - first).days + 1)]

    def convert_to_user_timezone(
        self, fixture_datetime: Any, league_id: int | None = None
    ) -> ConvertedTime:
        config = self.tournament_config(league_id)
        parsed = parse_iso_datetime(fixture_datetime)
        if parsed is None:
            raw_day = naive_calendar_date(fixture_datetime) or ""
            logger.warning(
                f"Could not parse kickoff '{fixture_datetime}' for league={league_id}; "
                f"falling back to raw calendar date '{raw_day}'."
            )
            return ConvertedTime(
                user_time=None,
                user_time_string=str(fixture_datetime or ""),
                original_timezone="UTC",
                match_day=raw_day,
                user_match_day=raw_day,
                viewer_timezone=self.viewer_timezone_name,
            )

        zone, zone_name = self._zone_for(config)
        tournament_time = parsed.astimezone(zone)
        user_time = parsed.astimezone(self.viewer_zone)
        return ConvertedTime(
            user_time=user_time,
            user_time_string=user_time.strftime("%Y-%m-%d %H:%M:%S %Z"),
            original_timezone=zone_name,
            match_day=self.match_day_for(tournament_time, config.match_day_start).isoformat(),
            user_match_day=user_time.date().isoformat(),
            viewer_timezone=self.viewer_timezone_name,
        )

    def match_day_of(self, fixture: Fixture) -> str:
        return self.convert_to_user_timezone(fixture.date, fixture.league.id).match_day

    def group_by_match_day(self, fixtures: list[Fixture]) -> dict[str, list[Fixture]]:
        grouped: dict[str, list[Fixture]] = defaultdict(list)
        for fixture in fixtures:
            grouped[self.match_day_of(fixture)].append(fixture)
        return dict(grouped)

    def filter_for_date(
        self,
        fixtures: list[Fixture],
        target_date: str,
        use_viewer_timezone: bool = False,
    ) -> list[Fixture]:
        selected: list[Fixture] = []
        for fixture in fixtures:
            converted = self.convert_to_user_timezone(fixture.date, fixture.league.id)
            day = converted.user_match_day if use_viewer_timezone else converted.match_day
            if day == target_date:
                selected.append(fixture)
        return selected

    def is_on_match_day(
        self, fixture_datetime: Any, target_date: str, league_id: int | None = None
    ) -> tuple[bool, str]:
        match_day = self.convert_to_user_timezone(fixture_datetime, league_id).match_day
        if match_day == target_date:
            return True, f"tournament match day {match_day} matches {target_date}"
        return False, f"tournament match day {match_day or 'unknown'} differs from {target_date}"

    def current_viewer_date(self, now: dt.datetime | None = None) -> dt.date:
        current = now if now is not None else local_now(self.viewer_zone)
        return current.astimezone(self.viewer_zone).date()

    def selected_day(self, selected: Any, now: dt.datetime | None = None) -> dt.date | None:
        if selected is None or str(selected).strip() == "":
            return self.current_viewer_date(now)
        return parse_calendar_date(selected)
