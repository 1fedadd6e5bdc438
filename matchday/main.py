from __future__ import annotations

import datetime as dt
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from typing import Any

from fastapi import Depends, FastAPI, HTTPException, Query, Request
from fastapi.middleware.cors import CORSMiddleware
from loguru import logger
from pydantic import BaseModel, Field

try:
    from matchday.services.api_football import FootballAPI
    from matchday.services.config import Settings, load_settings
    from matchday.services.fixture_filters import priority_of, select_featured
    from matchday.services.fixture_models import Fixture
    from matchday.services.live_poller import LivePoller
    from matchday.services.smart_time_filter import get_smart_time_label
    from matchday.services.time_classifier import debug_classification
except ModuleNotFoundError:
    from services.api_football import FootballAPI
    from services.config import Settings, load_settings
    from services.fixture_filters import priority_of, select_featured
    from services.fixture_models import Fixture
    from services.live_poller import LivePoller
    from services.smart_time_filter import get_smart_time_label
    from services.time_classifier import debug_classification


def _normalize_warnings(raw: Any) -> list[str]:
    if isinstance(raw, list):
        return [str(item).strip() for item in raw if str(item).strip()]
    if isinstance(raw, str) and raw.strip():
        return [raw.strip()]
    return []


def _dedupe(values: list[str]) -> list[str]:
    deduped: list[str] = []
    seen: set[str] = set()
    for value in values:
        if value in seen:
            continue
        seen.add(value)
        deduped.append(value)
    return deduped


def _validate_date(value: str | None) -> str | None:
    if not value:
        return None
    try:
        return dt.date.fromisoformat(value).isoformat()
    except ValueError as exc:
        raise HTTPException(status_code=400, detail="date must be in YYYY-MM-DD format") from exc


class TeamResponse(BaseModel):
    id: int | None = None
    name: str
    logo: str | None = None


class FixtureResponse(BaseModel):
    id: int
    kickoff: str
    status: str
    elapsed: int | None = None
    match_day: str
    league_id: int
    league: str
    country: str = ""
    league_logo: str | None = None
    home: TeamResponse
    away: TeamResponse
    home_goals: int | None = None
    away_goals: int | None = None
    priority: int | None = None
    label: str | None = None
    label_reason: str | None = None


class FixturesResponse(BaseModel):
    status: str = "success"
    date: str | None = None
    total: int
    fixtures: list[FixtureResponse]
    warnings: list[str] = Field(default_factory=list)
    source: str = "live"


class StandingResponse(BaseModel):
    rank: int
    team_id: int | None = None
    team_name: str
    team_logo: str | None = None
    points: int
    goals_diff: int = 0
    played: int = 0
    form: str = ""
    group: str = ""


class StandingsResponse(BaseModel):
    status: str = "success"
    league_id: int
    season: int | None = None
    standings: list[StandingResponse]
    warnings: list[str] = Field(default_factory=list)
    source: str = "live"


class ClassificationResponse(BaseModel):
    category: str
    reason: str
    fixture_time: str
    reference_time: str
    status: str
    is_within_time_range: bool


settings = load_settings()
api = FootballAPI(settings)


def get_settings() -> Settings:
    return settings


def get_api() -> FootballAPI:
    return api


def _refresh_from_live_payload(payload: Any) -> None:
    if isinstance(payload, dict):
        api.refresh_live_statuses(list(payload.get("response") or []))


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    for cache in api.caches:
        cache.open()

    poller: LivePoller | None = None
    if settings.live_polling_enabled and settings.api_key:
        poller = LivePoller(
            api.get_live_fixtures,
            settings.live_poll_seconds,
            on_update=_refresh_from_live_payload,
        )
        poller.start()
    elif settings.live_polling_enabled:
        logger.warning("Live polling requested but API_SPORTS_KEY is not configured.")
    app.state.live_poller = poller

    try:
        yield
    finally:
        if poller is not None:
            poller.stop()
        for cache in api.caches:
            cache.close()


app = FastAPI(
    title="Matchday Fixtures API",
    version="1.0.0",
    description="Match-day aware fixture lists, live scores and standings over API-Football.",
    lifespan=lifespan,
)

allow_credentials = "*" not in settings.cors_origins

app.add_middleware(
    CORSMiddleware,
    allow_origins=list(settings.cors_origins),
    allow_credentials=allow_credentials,
    allow_methods=["GET", "POST", "OPTIONS"],
    allow_headers=["*"],
)


def _fixture_response(
    fixture: Fixture,
    football: FootballAPI,
    priority: int | None = None,
    selected: str | None = None,
    classified: bool = False,
) -> FixtureResponse:
    label = label_reason = None
    if classified:
        outcome = get_smart_time_label(
            fixture.date,
            fixture.status,
            selected,
            league_id=fixture.league.id,
            converter=football.converter,
        )
        label, label_reason = outcome.label, outcome.reason

    return FixtureResponse(
        id=fixture.id,
        kickoff=fixture.kickoff_iso,
        status=fixture.status,
        elapsed=fixture.elapsed,
        match_day=football.converter.match_day_of(fixture),
        league_id=fixture.league.id,
        league=fixture.league.name,
        country=fixture.league.country,
        league_logo=fixture.league.logo,
        home=TeamResponse(**fixture.home.model_dump()),
        away=TeamResponse(**fixture.away.model_dump()),
        home_goals=fixture.goals.home,
        away_goals=fixture.goals.away,
        priority=priority,
        label=label,
        label_reason=label_reason,
    )


def _warnings_for(payload: dict[str, Any]) -> list[str]:
    warnings = _normalize_warnings(payload.get("warnings"))
    upstream_issues = payload.get("upstream_issues")
    if isinstance(upstream_issues, list) and upstream_issues:
        warnings.append(f"{len(upstream_issues)} upstream request(s) failed.")
    return _dedupe(warnings)


def _response_status(payload: dict[str, Any]) -> str:
    return "degraded" if payload.get("errors") else "success"


def _fixtures_response(
    payload: dict[str, Any],
    football: FootballAPI,
    date: str | None = None,
    fixtures: list[Fixture] | None = None,
    with_priority: bool = False,
    selected: str | None = None,
    classified: bool = False,
) -> FixturesResponse:
    rows = payload.get("response", []) if fixtures is None else fixtures
    if not isinstance(rows, list):
        raise HTTPException(status_code=502, detail="Malformed fixtures payload")

    return FixturesResponse(
        status=_response_status(payload),
        date=date,
        total=len(rows),
        fixtures=[
            _fixture_response(
                fixture,
                football,
                priority=priority_of(fixture) if with_priority else None,
                selected=selected,
                classified=classified,
            )
            for fixture in rows
        ],
        warnings=_warnings_for(payload),
        source=str(payload.get("source", "live")),
    )


@app.get("/healthz")
async def healthz() -> dict[str, str]:
    return {"status": "ok"}


@app.get("/readyz")
def readyz(
    request: Request,
    current: Settings = Depends(get_settings),
    football: FootballAPI = Depends(get_api),
) -> dict[str, Any]:
    poller = getattr(request.app.state, "live_poller", None)
    durable = football.cache.durable
    return {
        "status": "ready",
        "api_key_configured": bool(current.api_key),
        "viewer_timezone": current.viewer_timezone,
        "cache_backend": getattr(durable, "backend", "none"),
        "cache_database_configured": bool(current.cache_database_url),
        "cache_ttl_minutes": {
            "today": current.cache_ttl_today_minutes,
            "past": current.cache_ttl_past_minutes,
            "future": current.cache_ttl_future_minutes,
        },
        "caches": [cache.stats() for cache in football.caches],
        "live_polling": bool(poller is not None and poller.is_running),
        "live_poll_seconds": current.live_poll_seconds,
        "diagnostics_enabled": current.diagnostics_enabled,
    }


@app.get("/api/fixtures/date/{date}", response_model=FixturesResponse)
def get_fixtures_for_date(
    date: str,
    classified: bool = Query(default=False, description="Attach smart day labels"),
    selected: str | None = Query(
        default=None, description="Date on display for smart labels, YYYY-MM-DD"
    ),
    football: FootballAPI = Depends(get_api),
) -> FixturesResponse:
    date_key = _validate_date(date)
    selected_key = _validate_date(selected) or date_key
    payload = football.get_fixtures_by_date(date_key)
    return _fixtures_response(
        payload,
        football,
        date=date_key,
        selected=selected_key,
        classified=classified,
    )


@app.get("/api/fixtures/live", response_model=FixturesResponse)
def get_live_fixtures(
    request: Request,
    football: FootballAPI = Depends(get_api),
) -> FixturesResponse:
    poller = getattr(request.app.state, "live_poller", None)
    if poller is not None and poller.is_running and isinstance(poller.latest, dict):
        payload = {**poller.latest, "source": "poller"}
    else:
        payload = football.get_live_fixtures()
        football.refresh_live_statuses(list(payload.get("response") or []))
    return _fixtures_response(payload, football)


@app.get("/api/fixtures/upcoming", response_model=FixturesResponse)
def get_upcoming_fixtures(
    date: str | None = Query(default=None, description="Match day in ISO format YYYY-MM-DD"),
    football: FootballAPI = Depends(get_api),
) -> FixturesResponse:
    date_key = _validate_date(date)
    payload = football.get_upcoming_fixtures(date_key)
    return _fixtures_response(payload, football, date=date_key)


@app.get("/api/fixtures/recent", response_model=FixturesResponse)
def get_recent_results(
    date: str | None = Query(default=None, description="Match day in ISO format YYYY-MM-DD"),
    football: FootballAPI = Depends(get_api),
) -> FixturesResponse:
    date_key = _validate_date(date)
    payload = football.get_recent_results(date_key)
    return _fixtures_response(payload, football, date=date_key)


@app.get("/api/fixtures/featured", response_model=FixturesResponse)
def get_featured_fixtures(
    date: str | None = Query(default=None, description="Match day in ISO format YYYY-MM-DD"),
    limit: int = Query(default=10, ge=1, le=50),
    football: FootballAPI = Depends(get_api),
) -> FixturesResponse:
    date_key = _validate_date(date)
    payload = football.get_fixtures_by_date(date_key)
    rows = payload.get("response", [])
    if not isinstance(rows, list):
        raise HTTPException(status_code=502, detail="Malformed fixtures payload")

    featured = select_featured(rows, limit=limit, now=football.cache.clock())
    return _fixtures_response(
        payload,
        football,
        date=date_key,
        fixtures=featured,
        with_priority=True,
    )


@app.get("/api/leagues/{league_id}/fixtures", response_model=FixturesResponse)
def get_league_fixtures(
    league_id: int,
    season: int | None = Query(default=None, ge=1900, le=2100),
    football: FootballAPI = Depends(get_api),
) -> FixturesResponse:
    payload = football.get_league_fixtures(league_id, season)
    return _fixtures_response(payload, football)


@app.get("/api/leagues/{league_id}/standings", response_model=StandingsResponse)
def get_league_standings(
    league_id: int,
    season: int | None = Query(default=None, ge=1900, le=2100),
    football: FootballAPI = Depends(get_api),
) -> StandingsResponse:
    payload = football.get_standings(league_id, season)
    rows = payload.get("response", [])
    if not isinstance(rows, list):
        raise HTTPException(status_code=502, detail="Malformed standings payload")

    return StandingsResponse(
        status=_response_status(payload),
        league_id=league_id,
        season=season,
        standings=[StandingResponse(**row) for row in rows],
        warnings=_warnings_for(payload),
        source=str(payload.get("source", "live")),
    )


def _require_diagnostics(current: Settings = Depends(get_settings)) -> Settings:
    if not current.diagnostics_enabled:
        raise HTTPException(status_code=404, detail="Not Found")
    return current


@app.get("/api/debug/cache")
def debug_cache(
    _: Settings = Depends(_require_diagnostics),
    football: FootballAPI = Depends(get_api),
) -> dict[str, Any]:
    return {
        "today": football.cache.today_key(),
        "caches": [cache.stats() for cache in football.caches],
    }


@app.post("/api/debug/cache/sweep")
def debug_cache_sweep(
    _: Settings = Depends(_require_diagnostics),
    football: FootballAPI = Depends(get_api),
) -> dict[str, Any]:
    removed = {cache.namespace: cache.sweep() for cache in football.caches}
    return {"removed": removed, "total": sum(removed.values())}


@app.get("/api/debug/classify", response_model=ClassificationResponse)
def debug_classify(
    fixture_time: str = Query(..., min_length=1),
    status: str = Query(..., min_length=1, max_length=8),
    reference: str | None = Query(default=None),
    current: Settings = Depends(_require_diagnostics),
) -> ClassificationResponse:
    outcome = debug_classification(fixture_time, status, reference, current.viewer_timezone)
    return ClassificationResponse(
        category=outcome.category,
        reason=outcome.reason,
        fixture_time=outcome.fixture_time,
        reference_time=outcome.reference_time,
        status=outcome.status,
        is_within_time_range=outcome.is_within_time_range,
    )


if __name__ == "__main__":
    import uvicorn

    uvicorn.run("matchday.main:app", host="0.0.0.0", port=8000, reload=True)
