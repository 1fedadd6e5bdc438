from __future__ import annotations

import datetime as dt
from dataclasses import dataclass, field
from typing import Any, Literal

from loguru import logger

try:
    from matchday.services.dates import parse_iso_datetime
    from matchday.services.fixture_models import (
        FINISHED_STATUSES,
        LIVE_STATUSES,
        SCHEDULED_STATUSES,
        Fixture,
    )
    from matchday.services.timezone_converter import TournamentTimezoneConverter
except ModuleNotFoundError:
    from services.dates import parse_iso_datetime
    from services.fixture_models import (
        FINISHED_STATUSES,
        LIVE_STATUSES,
        SCHEDULED_STATUSES,
        Fixture,
    )
    from services.timezone_converter import TournamentTimezoneConverter

Label = Literal["today", "tomorrow", "yesterday", "custom"]

_RELATIVE_LABELS: dict[int, Label] = {0: "today", 1: "tomorrow", -1: "yesterday"}


@dataclass(frozen=True)
class SmartTimeResult:
    label: Label
    is_within_time_range: bool
    reason: str
    match_day: str
    selected_day: str
    status: str


@dataclass
class SmartFilterSummary:
    selected: list[Fixture] = field(default_factory=list)
    next_day: list[Fixture] = field(default_factory=list)
    rejected: list[tuple[Fixture, str]] = field(default_factory=list)
    status_breakdown: dict[str, int] = field(
        default_factory=lambda: {"scheduled": 0, "finished": 0, "live": 0, "other": 0}
    )

    @property
    def stats(self) -> dict[str, Any]:
        return {
            "total": len(self.selected) + len(self.next_day) + len(self.rejected),
            "selected": len(self.selected),
            "next_day": len(self.next_day),
            "rejected": len(self.rejected),
            "status_breakdown": dict(self.status_breakdown),
        }


def get_smart_time_label(
    fixture_datetime: Any,
    status: str,
    selected_date_context: Any = None,
    league_id: int | None = None,
    converter: TournamentTimezoneConverter | None = None,
    today: dt.date | None = None,
) -> SmartTimeResult:
    """Label a fixture relative to the date currently on display.

    The fixture's tournament match-day is compared with the date portion of
    ``selected_date_context``: the same day is ``today``, the day after is
    ``tomorrow``, the day before is ``yesterday`` and anything else is
    ``custom``. A live fixture counts as ``today`` while the viewer is looking
    at the real current date.
    """
    converter = converter or TournamentTimezoneConverter()
    status_code = str(status or "").strip().upper()

    selected_day = converter.selected_day(selected_date_context)
    kickoff = parse_iso_datetime(fixture_datetime)
    if kickoff is None or selected_day is None:
        return SmartTimeResult(
            label="custom",
            is_within_time_range=False,
            reason="invalid date format",
            match_day="",
            selected_day=selected_day.isoformat() if selected_day else "",
            status=status_code,
        )

    match_day_text = converter.convert_to_user_timezone(kickoff, league_id).match_day
    match_day = dt.date.fromisoformat(match_day_text)
    real_today = today or converter.current_viewer_date()

    if status_code in LIVE_STATUSES and selected_day == real_today:
        return SmartTimeResult(
            label="today",
            is_within_time_range=True,
            reason=f"live match ({status_code}) on the current slate",
            match_day=match_day_text,
            selected_day=selected_day.isoformat(),
            status=status_code,
        )

    offset = (match_day - selected_day).days
    label = _RELATIVE_LABELS.get(offset, "custom")
    if offset == 0:
        reason = f"match day {match_day_text} is the selected date"
    elif label == "custom":
        reason = f"match day {match_day_text} is {offset:+d} days from {selected_day.isoformat()}"
    else:
        reason = f"match day {match_day_text} is {label} relative to {selected_day.isoformat()}"

    return SmartTimeResult(
        label=label,
        is_within_time_range=True,
        reason=reason,
        match_day=match_day_text,
        selected_day=selected_day.isoformat(),
        status=status_code,
    )


def _status_bucket(status: str) -> str:
    if status in SCHEDULED_STATUSES:
        return "scheduled"
    if status in FINISHED_STATUSES:
        return "finished"
    if status in LIVE_STATUSES:
        return "live"
    return "other"


def filter_selected_day_fixtures(
    fixtures: list[Fixture],
    selected_date_context: Any = None,
    converter: TournamentTimezoneConverter | None = None,
    today: dt.date | None = None,
) -> SmartFilterSummary:
    converter = converter or TournamentTimezoneConverter()
    summary = SmartFilterSummary()

    for fixture in fixtures:
        outcome = get_smart_time_label(
            fixture.date,
            fixture.status,
            selected_date_context,
            league_id=fixture.league.id,
            converter=converter,
            today=today,
        )
        if outcome.label == "today":
            summary.selected.append(fixture)
            summary.status_breakdown[_status_bucket(fixture.status)] += 1
        elif outcome.label == "tomorrow":
            summary.next_day.append(fixture)
        else:
            summary.rejected.append((fixture, outcome.reason))
            logger.debug(f"Fixture {fixture.id} not on selected day: {outcome.reason}")

    return summary
