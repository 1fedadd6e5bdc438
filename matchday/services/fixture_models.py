from __future__ import annotations

import datetime as dt
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

NOT_STARTED_STATUSES = frozenset({"NS", "TBD"})
SCHEDULED_STATUSES = frozenset({"NS", "TBD", "PST"})
LIVE_STATUSES = frozenset({"LIVE", "1H", "2H", "HT", "ET", "BT", "P", "INT"})
FINISHED_STATUSES = frozenset({"FT", "AET", "PEN", "AWD", "WO", "ABD", "CANC", "SUSP"})
RECENT_RESULT_STATUSES = frozenset({"FT", "AET", "PEN"})


def _clean_logo(value: Any) -> str | None:
    text = str(value or "").strip()
    if text.lower().startswith(("http://", "https://")):
        return text
    return None


class LeagueRef(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: int
    name: str = ""
    country: str = ""
    logo: str | None = None
    season: int | None = None
    round: str | None = None

    @field_validator("logo", mode="before")
    @classmethod
    def _logo_url(cls, value: Any) -> str | None:
        return _clean_logo(value)

    @field_validator("name", "country", mode="before")
    @classmethod
    def _text(cls, value: Any) -> str:
        return str(value or "").strip()


class TeamRef(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: int | None = None
    name: str
    logo: str | None = None

    @field_validator("logo", mode="before")
    @classmethod
    def _logo_url(cls, value: Any) -> str | None:
        return _clean_logo(value)

    @field_validator("name", mode="before")
    @classmethod
    def _name(cls, value: Any) -> str:
        text = str(value or "").strip()
        if not text:
            raise ValueError("team name is required")
        return text


class Goals(BaseModel):
    model_config = ConfigDict(frozen=True)

    home: int | None = None
    away: int | None = None


class Fixture(BaseModel):
    """One match as returned by API-Football, validated at the network boundary."""

    model_config = ConfigDict(frozen=True)

    id: int
    date: dt.datetime
    status: str = Field(min_length=1)
    elapsed: int | None = None
    league: LeagueRef
    home: TeamRef
    away: TeamRef
    goals: Goals = Field(default_factory=Goals)

    @field_validator("date")
    @classmethod
    def _aware_date(cls, value: dt.datetime) -> dt.datetime:
        if value.tzinfo is None:
            return value.replace(tzinfo=dt.UTC)
        return value

    @field_validator("status", mode="before")
    @classmethod
    def _status_code(cls, value: Any) -> str:
        return str(value or "").strip().upper()

    @property
    def kickoff_iso(self) -> str:
        return self.date.isoformat()

    @classmethod
    def from_api(cls, row: dict[str, Any]) -> "Fixture":
        if not isinstance(row, dict):
            raise TypeError("fixture row must be an object")
        fixture = row.get("fixture") or {}
        status = fixture.get("status") or {}
        teams = row.get("teams") or {}
        return cls.model_validate(
            {
                "id": fixture.get("id"),
                "date": fixture.get("date"),
                "status": status.get("short") if isinstance(status, dict) else status,
                "elapsed": status.get("elapsed") if isinstance(status, dict) else None,
                "league": row.get("league") or {},
                "home": teams.get("home") or {},
                "away": teams.get("away") or {},
                "goals": row.get("goals") or {},
            }
        )

    def to_api(self) -> dict[str, Any]:
        return {
            "fixture": {
                "id": self.id,
                "date": self.kickoff_iso,
                "status": {"short": self.status, "elapsed": self.elapsed},
            },
            "league": self.league.model_dump(mode="json"),
            "teams": {
                "home": self.home.model_dump(mode="json"),
                "away": self.away.model_dump(mode="json"),
            },
            "goals": self.goals.model_dump(mode="json"),
        }


def parse_fixtures(rows: Any) -> tuple[list[Fixture], list[str]]:
    fixtures: list[Fixture] = []
    rejected: list[str] = []
    if not isinstance(rows, list):
        return fixtures, ["fixtures payload is not a list"]

    for index, row in enumerate(rows):
        try:
            fixtures.append(Fixture.from_api(row))
        except (ValidationError, TypeError) as exc:
            fixture_id = row.get("fixture", {}).get("id") if isinstance(row, dict) else None
            label = fixture_id if fixture_id is not None else f"row {index}"
            rejected.append(f"fixture {label}: {_summarize_validation_error(exc)}")
    return fixtures, rejected


def _summarize_validation_error(exc: Exception) -> str:
    if isinstance(exc, ValidationError):
        fields = [".".join(str(part) for part in err.get("loc", ())) for err in exc.errors()]
        return "invalid " + ", ".join(field for field in fields if field) if fields else "invalid"
    return str(exc)


def is_live(fixture: Fixture) -> bool:
    return fixture.status in LIVE_STATUSES


def is_finished(fixture: Fixture) -> bool:
    return fixture.status in FINISHED_STATUSES


def has_started(fixture: Fixture, now: dt.datetime | None = None) -> bool:
    if is_live(fixture) or is_finished(fixture):
        return True
    if fixture.status not in NOT_STARTED_STATUSES:
        return False
    current = now or dt.datetime.now(dt.UTC)
    return fixture.date <= current
