from __future__ import annotations

import datetime as dt
from typing import Any

try:
    from matchday.services.fixture_models import RECENT_RESULT_STATUSES, Fixture, is_live
except ModuleNotFoundError:
    from services.fixture_models import RECENT_RESULT_STATUSES, Fixture, is_live

# ---------------------------------------------------------------------------
# Deny-lists, grouped by category. Substring match on lower-cased league and
# team names.
# ---------------------------------------------------------------------------
WOMEN_TERMS: tuple[str, ...] = (
    "women",
    "womens",
    "girls",
    "feminine",
    "feminin",
    "donne",
    "frauen",
    "femenino",
)

YOUTH_TERMS: tuple[str, ...] = (
    "u15",
    "u16",
    "u17",
    "u18",
    "u19",
    "u20",
    "u21",
    "u23",
    "youth",
    "junior",
    "primavera",
    "juvenil",
    "academy",
    "boys",
)

LOWER_TIER_TERMS: tuple[str, ...] = (
    "reserve",
    "reserves",
    "amateur",
    "regional",
    "oberliga",
    "division 3",
    "division 4",
    "division 5",
    "third division",
    "fourth division",
    "2. bundesliga",
    "serie b",
    "serie c",
    "serie d",
    "segunda division",
    "tercera division",
    "league one",
    "league two",
    "non-league",
    "paulista",
    "carioca",
    "mineiro",
    "gaucho",
)

FRIENDLY_TERMS: tuple[str, ...] = (
    "friendlies",
    "friendly",
    "exhibition",
    "testimonial",
    "charity",
)

ESPORTS_TERMS: tuple[str, ...] = (
    "esoccer",
    "e-soccer",
    "esports",
    "efootball",
    "virtual",
    "cyber",
)

INDOOR_TERMS: tuple[str, ...] = (
    "futsal",
    "indoor",
    "beach",
)

QUALIFYING_TERMS: tuple[str, ...] = (
    "qualification",
    "qualifying",
    "preliminary",
)

EXCLUSION_CATEGORIES: dict[str, tuple[str, ...]] = {
    "women": WOMEN_TERMS,
    "youth": YOUTH_TERMS,
    "lower_tier": LOWER_TIER_TERMS,
    "friendly": FRIENDLY_TERMS,
    "esports": ESPORTS_TERMS,
    "indoor": INDOOR_TERMS,
    "qualifying": QUALIFYING_TERMS,
}

# Named top-tier international competitions that override the deny-lists.
ALLOWED_COMPETITION_TERMS: tuple[str, ...] = (
    "uefa",
    "champions league",
    "europa league",
    "conference league",
    "nations league",
    "european championship",
    "fifa",
    "world cup",
    "club world cup",
    "conmebol",
    "copa america",
    "libertadores",
    "sudamericana",
    "concacaf",
    "gold cup",
    "africa cup of nations",
    "asian cup",
)

BLOCKED_FEATURED_TERMS: tuple[str, ...] = (
    "tournoi maurice revello",
    "maurice revello",
    "tournoi maurice",
)

TOP_DOMESTIC_LEAGUE_IDS = frozenset({39, 140, 135, 78, 61})
MAJOR_DOMESTIC_LEAGUE_IDS = frozenset({45, 48, 143, 137, 81, 66, 301, 233})
INTERNATIONAL_COUNTRIES: tuple[str, ...] = ("world", "europe", "international")

RECENT_RESULT_WINDOW = dt.timedelta(hours=6)


def _norm(value: Any) -> str:
    if value is None:
        return ""
    return str(value).strip().lower()


def _contains_any(texts: tuple[str, ...], terms: tuple[str, ...]) -> bool:
    return any(term in text for text in texts for term in terms)


def is_allowed_competition(league_name: str) -> bool:
    return _contains_any((_norm(league_name),), ALLOWED_COMPETITION_TERMS)


def exclusion_reason(
    league_name: str,
    home_team: str,
    away_team: str,
    country: str | None = None,
) -> str | None:
    """Return the deny-list category that excludes a fixture, or ``None``."""
    league = _norm(league_name)
    names = (league, _norm(home_team), _norm(away_team))

    # Allow-listed competitions are vetoed only by the league name itself or
    # by a women's side; club names such as "Young Boys" never count.
    if is_allowed_competition(league):
        if _contains_any(names, WOMEN_TERMS):
            return "women"
        if _contains_any((league,), YOUTH_TERMS):
            return "youth"
        return None

    if _contains_any(names, WOMEN_TERMS):
        return "women"
    if _contains_any(names, YOUTH_TERMS):
        return "youth"

    if country is not None:
        country_text = _norm(country)
        if not country_text or country_text == "unknown":
            return "unknown_country"

    for category, terms in EXCLUSION_CATEGORIES.items():
        if _contains_any(names, terms):
            return category
    return None


def is_excluded(
    league_name: str,
    home_team: str,
    away_team: str,
    country: str | None = None,
) -> bool:
    return exclusion_reason(league_name, home_team, away_team, country) is not None


def is_fixture_excluded(fixture: Fixture) -> bool:
    return is_excluded(
        fixture.league.name,
        fixture.home.name,
        fixture.away.name,
        fixture.league.country,
    )


def _league_priority(league_id: int | None, league_name: str, country: str) -> int:
    name = _norm(league_name)
    country_text = _norm(country)

    if any(term in name for term in BLOCKED_FEATURED_TERMS) or "women" in name:
        return 9999

    is_international = (
        any(term in country_text for term in INTERNATIONAL_COUNTRIES)
        or "uefa" in name
        or "fifa" in name
        or "conmebol" in name
    )
    if is_international:
        if "nations league" in name:
            return 1
        if "champions league" in name:
            return 2
        if "europa league" in name:
            return 3
        if "conference league" in name:
            return 4
        if "world cup" in name and "qualification" not in name and "club" not in name:
            return 5
        if "euro" in name and "championship" in name:
            return 6
        if any(term in name for term in ("copa america", "libertadores", "sudamericana")):
            return 7
        if any(
            term in name
            for term in ("africa cup of nations", "asian cup", "gold cup", "club world cup")
        ):
            return 8
        if "world cup" in name and "qualification" in name:
            return 9
        return 50

    if league_id in TOP_DOMESTIC_LEAGUE_IDS:
        return 15
    if league_id in MAJOR_DOMESTIC_LEAGUE_IDS:
        return 20
    return 100


def priority_of(fixture: Fixture) -> int:
    return _league_priority(fixture.league.id, fixture.league.name, fixture.league.country)


def is_recently_finished(fixture: Fixture, now: dt.datetime | None = None) -> bool:
    if fixture.status not in RECENT_RESULT_STATUSES:
        return False
    current = now or dt.datetime.now(dt.UTC)
    return current - fixture.date < RECENT_RESULT_WINDOW


def sort_by_priority(fixtures: list[Fixture], now: dt.datetime | None = None) -> list[Fixture]:
    current = now or dt.datetime.now(dt.UTC)
    return sorted(
        fixtures,
        key=lambda fixture: (
            priority_of(fixture),
            not is_live(fixture),
            not is_recently_finished(fixture, current),
            fixture.league.name.lower(),
        ),
    )


def select_featured(
    fixtures: list[Fixture],
    limit: int = 10,
    now: dt.datetime | None = None,
) -> list[Fixture]:
    eligible = [fixture for fixture in fixtures if not is_fixture_excluded(fixture)]
    return sort_by_priority(eligible, now)[: max(0, int(limit))]


def geographic_priority(country: str, league_name: str) -> int:
    country_text = _norm(country)
    league = _norm(league_name)

    if any(name in country_text for name in ("england", "spain", "italy", "germany", "france")):
        return 1
    if (
        any(term in country_text for term in ("world", "europe"))
        or any(
            term in league
            for term in (
                "champions league",
                "europa league",
                "conference league",
                "world cup",
                "euro",
                "copa america",
            )
        )
    ):
        return 2
    if any(name in country_text for name in ("brazil", "saudi arabia", "egypt")):
        return 3
    if "conmebol" in country_text or "libertadores" in league or "sudamericana" in league:
        return 4
    return 999
