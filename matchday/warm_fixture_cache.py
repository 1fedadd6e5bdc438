from __future__ import annotations

import datetime as dt
import json

try:
    from matchday.services.api_football import FootballAPI
except ModuleNotFoundError:
    from services.api_football import FootballAPI


def _dedupe_text(values: list[str]) -> list[str]:
    deduped: list[str] = []
    seen: set[str] = set()
    for value in values:
        item = str(value).strip()
        if not item or item in seen:
            continue
        seen.add(item)
        deduped.append(item)
    return deduped


def warm(api: FootballAPI) -> dict:
    for cache in api.caches:
        cache.open()

    try:
        today = api.converter.current_viewer_date()
        requested_dates = [
            (today + dt.timedelta(days=offset)).isoformat() for offset in (-1, 0, 1)
        ]

        fixtures_loaded = 0
        warnings: list[str] = []
        source_by_date: dict[str, str] = {}
        count_by_date: dict[str, int] = {}

        for date_text in requested_dates:
            payload = api.get_fixtures_by_date(date_text)
            source_by_date[date_text] = str(payload.get("source", "unknown"))

            payload_warnings = payload.get("warnings")
            if isinstance(payload_warnings, list):
                warnings.extend([str(item) for item in payload_warnings])
            elif isinstance(payload_warnings, str):
                warnings.append(payload_warnings)

            fixtures = payload.get("response", [])
            if not isinstance(fixtures, list):
                continue

            count_by_date[date_text] = len(fixtures)
            fixtures_loaded += len(fixtures)

        return {
            "requested_dates": requested_dates,
            "fixtures_loaded": fixtures_loaded,
            "fixtures_by_date": count_by_date,
            "source_by_date": source_by_date,
            "warnings": _dedupe_text(warnings),
            "cache": [cache.stats() for cache in api.caches],
        }
    finally:
        # Durable entries stay behind for the next process; fast tiers go.
        for cache in api.caches:
            cache.close()


def main() -> None:
    print(json.dumps(warm(FootballAPI()), indent=2))


if __name__ == "__main__":
    main()
