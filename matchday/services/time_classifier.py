"""Clock-based today/tomorrow/yesterday classification of fixtures.

The rules compare the time of day of the fixture against the reference time
in the viewer's timezone. Calendar dates only matter for finished matches.
"""

from __future__ import annotations

import datetime as dt
from dataclasses import dataclass
from typing import Any, Literal

from loguru import logger

try:
    from matchday.services.dates import (
        local_now,
        minutes_since_midnight,
        parse_iso_datetime,
        resolve_timezone,
    )
    from matchday.services.fixture_models import LIVE_STATUSES, NOT_STARTED_STATUSES, Fixture
except ModuleNotFoundError:
    from services.dates import (
        local_now,
        minutes_since_midnight,
        parse_iso_datetime,
        resolve_timezone,
    )
    from services.fixture_models import LIVE_STATUSES, NOT_STARTED_STATUSES, Fixture

Category = Literal["today", "tomorrow", "yesterday", "other"]


@dataclass(frozen=True)
class ClassificationResult:
    category: Category
    reason: str
    fixture_time: str
    reference_time: str
    status: str
    is_within_time_range: bool


def classify_fixture(
    fixture_datetime: Any,
    status: str,
    reference_datetime: Any = None,
    tz: dt.tzinfo | str | None = None,
) -> ClassificationResult:
    zone = resolve_timezone(tz)
    status_code = str(status or "").strip().upper()

    fixture_at = parse_iso_datetime(fixture_datetime, default_tz=zone)
    if reference_datetime is None:
        reference_at: dt.datetime | None = local_now(zone)
    else:
        reference_at = parse_iso_datetime(reference_datetime, default_tz=zone)

    if fixture_at is None or reference_at is None:
        return ClassificationResult(
            category="other",
            reason="invalid date format",
            fixture_time=str(fixture_datetime),
            reference_time=str(reference_datetime) if reference_datetime is not None else "",
            status=status_code,
            is_within_time_range=False,
        )

    fixture_local = fixture_at.astimezone(zone)
    reference_local = reference_at.astimezone(zone)
    fixture_clock = fixture_local.strftime("%H:%M")
    reference_clock = reference_local.strftime("%H:%M")
    fixture_minutes = minutes_since_midnight(fixture_local)
    reference_minutes = minutes_since_midnight(reference_local)

    def result(category: Category, reason: str) -> ClassificationResult:
        return ClassificationResult(
            category=category,
            reason=reason,
            fixture_time=fixture_local.isoformat(),
            reference_time=reference_local.isoformat(),
            status=status_code,
            is_within_time_range=True,
        )

    if status_code in NOT_STARTED_STATUSES:
        if fixture_minutes > reference_minutes:
            return result(
                "today", f"scheduled later today ({fixture_clock} > {reference_clock})"
            )
        if fixture_minutes < reference_minutes:
            return result(
                "tomorrow",
                f"time passed, rolls to next day ({fixture_clock} < {reference_clock})",
            )
        return result("today", f"starting now ({fixture_clock} = {reference_clock})")

    if status_code == "FT":
        fixture_day = fixture_local.date()
        reference_day = reference_local.date()
        # An earlier calendar date wins over the clock comparison.
        if fixture_day < reference_day:
            return result(
                "yesterday",
                f"finished on an earlier date ({fixture_day.isoformat()} < {reference_day.isoformat()})",
            )
        if fixture_minutes < reference_minutes:
            return result(
                "today", f"finished earlier today ({fixture_clock} < {reference_clock})"
            )
        return result("today", f"completed today ({fixture_clock})")

    if status_code in LIVE_STATUSES:
        return result("today", f"in progress ({status_code})")

    return result("other", f"unhandled status: {status_code or 'missing'}")


def classify(
    fixture: Fixture, reference_datetime: Any = None, tz: dt.tzinfo | str | None = None
) -> ClassificationResult:
    return classify_fixture(fixture.date, fixture.status, reference_datetime, tz)


def _filter_by_category(
    fixtures: list[Fixture],
    category: Category,
    reference_datetime: Any,
    tz: dt.tzinfo | str | None,
) -> list[Fixture]:
    selected: list[Fixture] = []
    for fixture in fixtures:
        outcome = classify(fixture, reference_datetime, tz)
        if outcome.category != category:
            continue
        logger.debug(
            "Fixture {} ({} vs {}) classified as {}: {}",
            fixture.id,
            fixture.home.name,
            fixture.away.name,
            category,
            outcome.reason,
        )
        selected.append(fixture)
    return selected


def filter_today_matches(
    fixtures: list[Fixture], reference_datetime: Any = None, tz: dt.tzinfo | str | None = None
) -> list[Fixture]:
    return _filter_by_category(fixtures, "today", reference_datetime, tz)


def filter_tomorrow_matches(
    fixtures: list[Fixture], reference_datetime: Any = None, tz: dt.tzinfo | str | None = None
) -> list[Fixture]:
    return _filter_by_category(fixtures, "tomorrow", reference_datetime, tz)


def filter_yesterday_matches(
    fixtures: list[Fixture], reference_datetime: Any = None, tz: dt.tzinfo | str | None = None
) -> list[Fixture]:
    return _filter_by_category(fixtures, "yesterday", reference_datetime, tz)


def debug_classification(
    fixture_datetime: Any,
    status: str,
    reference_datetime: Any = None,
    tz: dt.tzinfo | str | None = None,
) -> ClassificationResult:
    outcome = classify_fixture(fixture_datetime, status, reference_datetime, tz)
    logger.info(
        "Classification fixture={} status={} reference={} -> {} ({})",
        fixture_datetime,
        outcome.status,
        reference_datetime or "now",
        outcome.category,
        outcome.reason,
    )
    return outcome
