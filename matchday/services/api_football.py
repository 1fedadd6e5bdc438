from __future__ import annotations

import datetime as dt
import threading
import time
from collections.abc import Callable
from typing import Any

import requests
from loguru import logger

try:
    from matchday.services.config import Settings, load_settings
    from matchday.services.fixture_cache import CacheTtlPolicy, FixtureCache
    from matchday.services.fixture_models import (
        NOT_STARTED_STATUSES,
        RECENT_RESULT_STATUSES,
        Fixture,
        has_started,
        parse_fixtures,
    )
    from matchday.services.persistent_store import PersistentStore
    from matchday.services.timezone_converter import (
        TournamentTimezoneConverter,
        load_tournament_configs,
    )
except ModuleNotFoundError:
    from services.config import Settings, load_settings
    from services.fixture_cache import CacheTtlPolicy, FixtureCache
    from services.fixture_models import (
        NOT_STARTED_STATUSES,
        RECENT_RESULT_STATUSES,
        Fixture,
        has_started,
        parse_fixtures,
    )
    from services.persistent_store import PersistentStore
    from services.timezone_converter import (
        TournamentTimezoneConverter,
        load_tournament_configs,
    )


def _dedupe_text(items: list[str]) -> list[str]:
    deduped: list[str] = []
    seen: set[str] = set()
    for item in items:
        value = str(item).strip()
        if not value or value in seen:
            continue
        seen.add(value)
        deduped.append(value)
    return deduped


def _summarize_live_error(raw_error: str) -> str:
    text = str(raw_error or "").strip()
    if not text:
        return "Upstream live refresh failed."

    lowered = text.lower()
    reasons: list[str] = []

    if "request limit" in lowered or "reached the request limit" in lowered:
        reasons.append("API daily request limit reached")

    if "too many requests" in lowered or "429" in lowered:
        reasons.append("API rate limit hit")

    if "free plans do not have access to this date" in lowered:
        reasons.append("Free-plan date window blocked")

    if "api_sports_key is not configured" in lowered:
        reasons.append("API key not configured")

    if "timed out" in lowered or "timeout" in lowered:
        reasons.append("Upstream request timed out")

    if not reasons:
        return "Upstream live refresh failed."

    return f"{', '.join(_dedupe_text(reasons))}."


def _is_daily_limit_error_text(raw_error: str) -> bool:
    text = str(raw_error or "").strip().lower()
    if not text:
        return False
    return "request limit" in text or "429" in text or "too many requests" in text


class FootballAPI:
    def __init__(
        self,
        settings: Settings | None = None,
        cache: FixtureCache | None = None,
        converter: TournamentTimezoneConverter | None = None,
    ) -> None:
        self.settings = settings or load_settings()
        self.api_key = self.settings.api_key
        self.base_url = self.settings.base_url.rstrip("/")
        self.timeout_seconds = self.settings.timeout_seconds
        self.min_request_interval_seconds = self.settings.min_request_interval_seconds

        self.converter = converter or TournamentTimezoneConverter(
            self.settings.viewer_timezone,
            load_tournament_configs(self.settings.tournament_timezones_path),
        )

        if cache is None:
            store = PersistentStore(
                database_url=self.settings.cache_database_url,
                file_path=self.settings.cache_file_path,
            )
            if store.use_postgres:
                logger.info("Using Postgres shared cache backend.")
            cache = FixtureCache(
                durable=store,
                namespace="shared_fixtures",
                ttl_policy=CacheTtlPolicy.from_settings(self.settings),
                timezone=self.settings.viewer_timezone,
            )
        self.cache = cache
        self.upcoming_cache = self._sibling_cache("upcoming")
        self.recent_cache = self._sibling_cache("recently_ended")

        self.session = requests.Session()
        session_headers = {"x-rapidapi-host": "v3.football.api-sports.io"}
        if self.api_key:
            session_headers["x-apisports-key"] = self.api_key
        self.session.headers.update(session_headers)

        self._last_request_monotonic = 0.0
        self._request_lock = threading.Lock()
        self._daily_cache_lock = threading.Lock()
        self.daily_cache_date = ""
        self.standings_cache: dict[str, list[dict[str, Any]]] = {}
        self.league_fixtures_cache: dict[str, list[Fixture]] = {}

    def _sibling_cache(self, namespace: str) -> FixtureCache:
        return FixtureCache(
            durable=self.cache.durable,
            namespace=namespace,
            ttl_policy=self.cache.ttl_policy,
            timezone=self.settings.viewer_timezone,
            clock=self.cache.clock,
        )

    @property
    def caches(self) -> tuple[FixtureCache, ...]:
        return (self.cache, self.upcoming_cache, self.recent_cache)

    def _throttle(self) -> None:
        if self.min_request_interval_seconds <= 0:
            return

        now = time.monotonic()
        elapsed = now - self._last_request_monotonic
        wait_for = self.min_request_interval_seconds - elapsed
        if wait_for > 0:
            time.sleep(wait_for)

        self._last_request_monotonic = time.monotonic()

    @staticmethod
    def _has_upstream_errors(upstream_errors: Any) -> bool:
        if isinstance(upstream_errors, dict):
            return any(bool(value) for value in upstream_errors.values())
        return bool(upstream_errors)

    @staticmethod
    def _format_upstream_errors(upstream_errors: Any) -> str:
        if isinstance(upstream_errors, dict):
            non_empty = {key: value for key, value in upstream_errors.items() if value}
            return str(non_empty)
        return str(upstream_errors)

    def _request_json_once(
        self, path: str, params: dict[str, Any]
    ) -> tuple[dict[str, Any] | None, str | None]:
        if not self.api_key:
            return None, "API_SPORTS_KEY is not configured"

        with self._request_lock:
            self._throttle()
            try:
                response = self.session.get(
                    f"{self.base_url}/{path}",
                    params=params,
                    timeout=self.timeout_seconds,
                )
                response.raise_for_status()
                payload = response.json()
            except (requests.exceptions.RequestException, ValueError) as exc:
                logger.warning(f"Request to {path} {params} failed: {exc}")
                return None, str(exc)

        if not isinstance(payload, dict):
            return None, f"malformed {path} response payload"

        upstream_errors = payload.get("errors")
        if self._has_upstream_errors(upstream_errors):
            formatted_error = self._format_upstream_errors(upstream_errors)
            logger.warning(f"Upstream rejected {path} {params}: {formatted_error}")
            return None, formatted_error

        return payload, None

    def _request_fixtures(
        self, params: dict[str, Any]
    ) -> tuple[list[Fixture] | None, str | None]:
        payload, error_message = self._request_json_once("fixtures", params)
        if payload is None:
            return None, error_message

        fixtures, rejected = parse_fixtures(payload.get("response", []))
        if rejected:
            logger.warning(
                "Dropped {} invalid fixture rows for {}: {}",
                len(rejected),
                params,
                "; ".join(rejected[:5]),
            )
        return fixtures, None

    def _roll_daily_caches(self) -> None:
        today_iso = self.cache.today_key()
        with self._daily_cache_lock:
            if self.daily_cache_date != today_iso:
                self.standings_cache.clear()
                self.league_fixtures_cache.clear()
                self.daily_cache_date = today_iso

    @staticmethod
    def _season_for_date(date_value: dt.date) -> int:
        return date_value.year if date_value.month >= 7 else date_value.year - 1

    def _fetch_fixtures_for_match_day(
        self, date_value: dt.date
    ) -> tuple[list[Fixture], list[str]]:
        """Fetch every fixture whose tournament match-day is ``date_value``.

        A tournament's match-day can start on the previous UTC date (zones east
        of UTC) or run into the next one (early-morning kickoffs), so every UTC
        date the configured tournaments can touch is requested.
        """
        upstream_issues: list[str] = []
        merged: dict[int, Fixture] = {}

        for day in self.converter.utc_dates_for_match_day(date_value):
            fixtures, error_message = self._request_fixtures({"date": day.isoformat()})
            if fixtures is None:
                upstream_issues.append(f"{day.isoformat()}: {error_message}")
                if _is_daily_limit_error_text(error_message or ""):
                    break
                continue
            for fixture in fixtures:
                merged[fixture.id] = fixture

        date_key = date_value.isoformat()
        on_day = [
            fixture
            for fixture in merged.values()
            if self.converter.match_day_of(fixture) == date_key
        ]
        on_day.sort(key=lambda fixture: (fixture.date, fixture.id))
        return on_day, upstream_issues

    def _resolve_date(self, date: str | None) -> tuple[str | None, dt.date | None]:
        if not date:
            today = self.converter.current_viewer_date()
            return today.isoformat(), today
        try:
            date_value = dt.date.fromisoformat(date)
        except ValueError:
            return None, None
        return date_value.isoformat(), date_value

    def _stale_payload(
        self, date: str, upstream_issues: list[str]
    ) -> dict[str, Any]:
        error_text = "; ".join(upstream_issues)
        warnings = [_summarize_live_error(error_text)]
        stale = self.cache.get_stale(date)
        if stale:
            logger.warning(f"Serving expired fixtures for {date} after upstream failure.")
            warnings.append(f"Using cached fixtures for {date} because live refresh failed.")
            return {
                "errors": error_text,
                "response": stale,
                "source": "stale_cache",
                "warnings": _dedupe_text(warnings),
                "upstream_issues": upstream_issues,
            }

        warnings.append(f"Unable to load fixtures for {date} from API and no cache is available.")
        return {
            "errors": error_text,
            "response": [],
            "source": "none",
            "warnings": _dedupe_text(warnings),
            "upstream_issues": upstream_issues,
        }

    def get_fixtures_by_date(self, date: str | None = None) -> dict[str, Any]:
        date_key, date_value = self._resolve_date(date)
        if date_key is None or date_value is None:
            return {
                "errors": "date must be in YYYY-MM-DD format",
                "response": [],
                "source": "none",
                "warnings": ["Invalid date format."],
            }

        upstream_issues: list[str] = []

        def fetch() -> list[Fixture]:
            fixtures, issues = self._fetch_fixtures_for_match_day(date_value)
            upstream_issues.extend(issues)
            return fixtures

        fixtures, from_cache = self.cache.get_or_fetch(date_key, fetch)
        if from_cache:
            return {
                "errors": {},
                "response": fixtures or [],
                "cached": True,
                "source": "cache",
                "warnings": [],
            }

        if fixtures:
            result: dict[str, Any] = {
                "errors": {},
                "response": fixtures,
                "source": "live" if not upstream_issues else "live_partial",
                "warnings": [],
            }
            if upstream_issues:
                result["warnings"] = [
                    f"Loaded partial fixtures for {date_key}: "
                    f"{len(upstream_issues)} request(s) failed."
                ]
                result["upstream_issues"] = upstream_issues
            return result

        if not upstream_issues:
            return {
                "errors": {},
                "response": [],
                "source": "live",
                "warnings": [f"No fixtures found for {date_key}."],
            }

        return self._stale_payload(date_key, upstream_issues)

    def _subset_for_day(
        self,
        date: str | None,
        cache: FixtureCache,
        keep: Callable[[Fixture], bool],
    ) -> dict[str, Any]:
        date_key, _ = self._resolve_date(date)
        if date_key is None:
            return self.get_fixtures_by_date(date)

        cached = cache.get(date_key)
        if cached is not None:
            return {"errors": {}, "response": cached, "source": "cache", "warnings": []}

        payload = self.get_fixtures_by_date(date_key)
        subset = [fixture for fixture in payload.get("response", []) if keep(fixture)]
        if subset and not payload.get("errors"):
            cache.put(date_key, subset)
        return {**payload, "response": subset}

    def get_upcoming_fixtures(self, date: str | None = None) -> dict[str, Any]:
        now = self.cache.clock()
        return self._subset_for_day(
            date,
            self.upcoming_cache,
            lambda fixture: fixture.status in NOT_STARTED_STATUSES
            and not has_started(fixture, now),
        )

    def get_recent_results(self, date: str | None = None) -> dict[str, Any]:
        return self._subset_for_day(
            date,
            self.recent_cache,
            lambda fixture: fixture.status in RECENT_RESULT_STATUSES,
        )

    def get_live_fixtures(self) -> dict[str, Any]:
        fixtures, error_message = self._request_fixtures({"live": "all"})
        if fixtures is None:
            return {
                "errors": error_message,
                "response": [],
                "source": "none",
                "warnings": [_summarize_live_error(error_message or "")],
            }
        return {"errors": {}, "response": fixtures, "source": "live", "warnings": []}

    def get_league_fixtures(self, league_id: int, season: int | None = None) -> dict[str, Any]:
        self._roll_daily_caches()
        season = season or self._season_for_date(self.converter.current_viewer_date())
        cache_key = f"{league_id}_{season}"

        with self._daily_cache_lock:
            cached = self.league_fixtures_cache.get(cache_key)
        if cached is not None:
            return {"errors": {}, "response": cached, "source": "cache", "warnings": []}

        fixtures, error_message = self._request_fixtures({"league": league_id, "season": season})
        if fixtures is None:
            logger.warning(
                "League fixtures fetch failed for league={} season={}: {}",
                league_id,
                season,
                error_message,
            )
            return {
                "errors": error_message,
                "response": [],
                "source": "none",
                "warnings": [_summarize_live_error(error_message or "")],
            }

        fixtures.sort(key=lambda fixture: (fixture.date, fixture.id))
        if fixtures:
            with self._daily_cache_lock:
                self.league_fixtures_cache[cache_key] = fixtures
        return {"errors": {}, "response": fixtures, "source": "live", "warnings": []}

    @staticmethod
    def _standing_row(row: dict[str, Any]) -> dict[str, Any] | None:
        team = row.get("team") or {}
        team_name = str(team.get("name", "") or "").strip()
        if not team_name:
            return None
        totals = row.get("all") or {}
        return {
            "rank": int(row.get("rank", 0) or 0),
            "team_id": team.get("id"),
            "team_name": team_name,
            "team_logo": team.get("logo"),
            "points": int(row.get("points", 0) or 0),
            "goals_diff": int(row.get("goalsDiff", 0) or 0),
            "played": int(totals.get("played", 0) or 0),
            "form": str(row.get("form", "") or ""),
            "group": str(row.get("group", "") or ""),
        }

    def get_standings(self, league_id: int, season: int | None = None) -> dict[str, Any]:
        self._roll_daily_caches()
        season = season or self._season_for_date(self.converter.current_viewer_date())
        cache_key = f"{league_id}_{season}"

        with self._daily_cache_lock:
            cached = self.standings_cache.get(cache_key)
        if cached is not None:
            return {"errors": {}, "response": cached, "source": "cache", "warnings": []}

        payload, error_message = self._request_json_once(
            "standings", {"league": league_id, "season": season}
        )
        if payload is None:
            logger.warning(
                "Standings fetch failed for league={} season={}: {}",
                league_id,
                season,
                error_message,
            )
            return {
                "errors": error_message,
                "response": [],
                "source": "none",
                "warnings": [_summarize_live_error(error_message or "")],
            }

        try:
            groups = payload["response"][0]["league"]["standings"]
        except (KeyError, IndexError, TypeError) as exc:
            logger.warning(
                f"Standings payload malformed for league={league_id} season={season}: {exc}"
            )
            return {
                "errors": "malformed standings response payload",
                "response": [],
                "source": "none",
                "warnings": ["Standings provider returned an unexpected payload."],
            }

        rows: list[dict[str, Any]] = []
        for group in groups if isinstance(groups, list) else []:
            for row in group if isinstance(group, list) else []:
                standing = self._standing_row(row) if isinstance(row, dict) else None
                if standing is not None:
                    rows.append(standing)

        if rows:
            with self._daily_cache_lock:
                self.standings_cache[cache_key] = rows
        return {"errors": {}, "response": rows, "source": "live", "warnings": []}

    def refresh_live_statuses(self, live_fixtures: list[Fixture]) -> int:
        """Drop cached day buckets that still list live matches as not started."""
        if not live_fixtures:
            return 0

        live_ids = {fixture.id for fixture in live_fixtures}
        now = self.cache.clock()
        date_keys = {self.converter.match_day_of(fixture) for fixture in live_fixtures}
        date_keys.add(self.cache.today_key())

        def went_live(fixture: Fixture) -> bool:
            return fixture.status in NOT_STARTED_STATUSES and fixture.id in live_ids

        def started(fixture: Fixture) -> bool:
            return went_live(fixture) or (
                fixture.status in NOT_STARTED_STATUSES and has_started(fixture, now)
            )

        invalidated = 0
        for date_key in sorted(date_keys):
            if self.cache.invalidate_if(date_key, went_live):
                invalidated += 1
            if self.upcoming_cache.invalidate_if(date_key, started):
                invalidated += 1

        if invalidated:
            logger.info(f"Invalidated {invalidated} cache entries after live status change.")
        return invalidated
