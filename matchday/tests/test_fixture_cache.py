from __future__ import annotations

import datetime as dt
import json
import threading
from pathlib import Path

import pytest

from matchday.services.fixture_cache import CacheEntry, CacheTtlPolicy, FixtureCache
from matchday.services.fixture_models import Fixture
from matchday.services.persistent_store import PersistentStore, SessionStore

NOW = dt.datetime(2025, 5, 25, 12, 0, tzinfo=dt.UTC)
TODAY = "2025-05-25"


class FailingStore:
    def get(self, key: str) -> str | None:
        raise RuntimeError("durable store offline")

    def set(self, key: str, value: str) -> None:
        raise RuntimeError("durable store offline")

    def delete(self, key: str) -> None:
        raise RuntimeError("durable store offline")

    def keys(self, prefix: str = "") -> list[str]:
        raise RuntimeError("durable store offline")


def _fixture(fixture_id: int, status: str = "NS", kickoff: str = "2025-05-25T19:00:00+00:00") -> Fixture:
    return Fixture.from_api(
        {
            "fixture": {"id": fixture_id, "date": kickoff, "status": {"short": status}},
            "league": {"id": 39, "name": "Premier League", "country": "England"},
            "teams": {"home": {"name": "Arsenal"}, "away": {"name": "Chelsea"}},
            "goals": {"home": None, "away": None},
        }
    )


def _cache(tmp_path: Path, now: dt.datetime = NOW, **kwargs) -> FixtureCache:
    store = PersistentStore(file_path=str(tmp_path / "cache.json"))
    return FixtureCache(durable=store, clock=lambda: now, **kwargs)


def test_put_then_get_returns_equal_fixtures(tmp_path: Path) -> None:
    cache = _cache(tmp_path)
    fixtures = [_fixture(1), _fixture(2, "FT")]

    cache.put(TODAY, fixtures)

    assert cache.get(TODAY) == fixtures


@pytest.mark.parametrize(("age_minutes", "hit"), [(29, True), (31, False)])
def test_today_entry_expires_after_thirty_minutes(
    tmp_path: Path, age_minutes: int, hit: bool
) -> None:
    cache = _cache(tmp_path)
    fixtures = [_fixture(1)]

    cache.put(TODAY, fixtures, captured_at=NOW - dt.timedelta(minutes=age_minutes))

    assert (cache.get(TODAY) == fixtures) is hit
    if not hit:
        assert cache.get(TODAY) is None


@pytest.mark.parametrize("date_key", ["2025-05-24", "2025-05-26"])
def test_other_dates_live_for_a_day(tmp_path: Path, date_key: str) -> None:
    cache = _cache(tmp_path)

    cache.put(date_key, [_fixture(1)], captured_at=NOW - dt.timedelta(hours=23))
    assert cache.get(date_key) is not None

    cache.put(date_key, [_fixture(1)], captured_at=NOW - dt.timedelta(hours=25))
    assert cache.get(date_key) is None


def test_ttl_policy_is_configurable(tmp_path: Path) -> None:
    policy = CacheTtlPolicy(
        today=dt.timedelta(minutes=5),
        past=dt.timedelta(hours=48),
        future=dt.timedelta(hours=2),
    )
    cache = _cache(tmp_path, ttl_policy=policy)

    cache.put(TODAY, [_fixture(1)], captured_at=NOW - dt.timedelta(minutes=6))
    cache.put("2025-05-20", [_fixture(2)], captured_at=NOW - dt.timedelta(hours=30))
    cache.put("2025-05-27", [_fixture(3)], captured_at=NOW - dt.timedelta(hours=3))

    assert cache.get(TODAY) is None
    assert cache.get("2025-05-20") is not None
    assert cache.get("2025-05-27") is None


def test_durable_tier_survives_a_new_session(tmp_path: Path) -> None:
    first = _cache(tmp_path)
    first.put(TODAY, [_fixture(1)])
    first.close()

    second = _cache(tmp_path)
    assert second.memory == {}
    assert [f.id for f in second.get(TODAY)] == [1]
    # Hit in the durable tier is copied into the faster tiers.
    assert TODAY in second.memory
    assert second.session.get("session_shared_fixtures_" + TODAY) is not None


def test_persisted_layout(tmp_path: Path) -> None:
    cache = _cache(tmp_path)
    cache.put(TODAY, [_fixture(1)], captured_at=NOW)

    raw = cache.durable.get("shared_fixtures_" + TODAY)
    payload = json.loads(raw)

    assert payload["date"] == TODAY
    assert payload["timestamp"] == int(NOW.timestamp() * 1000)
    assert payload["fixtures"][0]["fixture"]["id"] == 1


def test_entry_under_wrong_key_is_ignored(tmp_path: Path) -> None:
    cache = _cache(tmp_path)
    entry = CacheEntry(date="2025-05-24", fixtures=(_fixture(1),), timestamp=NOW)
    cache.durable.set("shared_fixtures_" + TODAY, entry.to_json())

    assert cache.get(TODAY) is None


def test_corrupted_entry_is_a_miss_and_removed(tmp_path: Path) -> None:
    cache = _cache(tmp_path)
    cache.durable.set("shared_fixtures_" + TODAY, "{not json")

    assert cache.get(TODAY) is None
    assert cache.durable.get("shared_fixtures_" + TODAY) is None


def test_empty_lists_are_not_cached(tmp_path: Path) -> None:
    cache = _cache(tmp_path)
    cache.put(TODAY, [])

    assert cache.get(TODAY) is None
    assert cache.durable.keys() == []


def test_durable_failures_do_not_raise() -> None:
    cache = FixtureCache(durable=FailingStore(), clock=lambda: NOW)

    cache.put(TODAY, [_fixture(1)])
    cache.memory.clear()
    cache.session.clear()

    assert cache.get(TODAY) is None
    cache.invalidate(TODAY)
    assert cache.sweep() == 0


def test_invalidate_clears_every_tier(tmp_path: Path) -> None:
    cache = _cache(tmp_path)
    cache.put(TODAY, [_fixture(1)])

    cache.invalidate(TODAY)

    assert cache.memory == {}
    assert cache.session.keys() == []
    assert cache.durable.keys() == []
    assert cache.get(TODAY) is None


def test_invalidate_if_drops_entry_holding_started_match(tmp_path: Path) -> None:
    cache = _cache(tmp_path, namespace="upcoming")
    cache.put(TODAY, [_fixture(1, kickoff="2025-05-25T11:00:00+00:00"), _fixture(2)])

    assert cache.invalidate_if(TODAY, lambda f: f.id == 99) is False
    assert cache.get(TODAY) is not None

    assert cache.invalidate_if(TODAY, lambda f: f.date <= NOW) is True
    assert cache.get(TODAY) is None
    assert cache.durable.get("upcoming_" + TODAY) is None


def test_namespaces_are_isolated(tmp_path: Path) -> None:
    store = PersistentStore(file_path=str(tmp_path / "cache.json"))
    shared = FixtureCache(durable=store, clock=lambda: NOW)
    recent = FixtureCache(durable=store, namespace="recently_ended", clock=lambda: NOW)

    shared.put(TODAY, [_fixture(1)])

    assert recent.get(TODAY) is None
    assert store.keys("recently_ended_") == []


def test_sweep_removes_expired_and_corrupted_entries(tmp_path: Path) -> None:
    cache = _cache(tmp_path)
    cache.put(TODAY, [_fixture(1)], captured_at=NOW - dt.timedelta(hours=1))
    cache.put("2025-05-24", [_fixture(2)], captured_at=NOW - dt.timedelta(hours=1))
    cache.durable.set("shared_fixtures_2025-05-20", "corrupt")

    removed = cache.sweep()

    assert removed == 4
    assert cache.durable.keys() == ["shared_fixtures_2025-05-24"]
    assert list(cache.memory) == ["2025-05-24"]


def test_open_sweeps_and_close_clears_fast_tiers(tmp_path: Path) -> None:
    stale = _cache(tmp_path, now=NOW + dt.timedelta(days=2))
    stale.put(TODAY, [_fixture(1)], captured_at=NOW)

    with _cache(tmp_path, now=NOW + dt.timedelta(days=2)) as cache:
        assert cache.is_open is True
        assert cache.durable.keys() == []
        cache.put("2025-05-27", [_fixture(2)])
        assert cache.memory

    assert cache.is_open is False
    assert cache.memory == {}
    assert cache.session.keys() == []


def test_get_stale_serves_expired_entries(tmp_path: Path) -> None:
    cache = _cache(tmp_path)
    cache.put(TODAY, [_fixture(1)], captured_at=NOW - dt.timedelta(hours=3))

    assert cache.get(TODAY) is None
    assert [f.id for f in cache.get_stale(TODAY)] == [1]


def test_get_or_fetch_coalesces_concurrent_fetches(tmp_path: Path) -> None:
    cache = _cache(tmp_path)
    calls = {"value": 0}
    started = threading.Event()
    release = threading.Event()

    def fetch() -> list[Fixture]:
        calls["value"] += 1
        started.set()
        release.wait(2)
        return [_fixture(1)]

    results: list[tuple[list[Fixture] | None, bool]] = []
    workers = [threading.Thread(target=lambda: results.append(cache.get_or_fetch(TODAY, fetch))) for _ in range(4)]
    for worker in workers:
        worker.start()
    started.wait(2)
    release.set()
    for worker in workers:
        worker.join(5)

    assert calls["value"] == 1
    assert len(results) == 4
    assert sum(1 for _, from_cache in results if not from_cache) == 1
    assert all(fixtures and fixtures[0].id == 1 for fixtures, _ in results)
    assert cache._fetch_locks == {}


def test_get_or_fetch_does_not_store_empty_results(tmp_path: Path) -> None:
    cache = _cache(tmp_path)

    fixtures, from_cache = cache.get_or_fetch(TODAY, lambda: [])

    assert fixtures == []
    assert from_cache is False
    assert cache.get(TODAY) is None


def test_get_or_fetch_releases_per_date_locks(tmp_path: Path) -> None:
    cache = _cache(tmp_path)

    def failing_fetch() -> list[Fixture]:
        raise RuntimeError("upstream down")

    for day in range(1, 31):
        cache.get_or_fetch(f"2025-04-{day:02d}", lambda: [])
    with pytest.raises(RuntimeError):
        cache.get_or_fetch(TODAY, failing_fetch)

    assert cache._fetch_locks == {}


def test_stats_counts_entries_per_tier(tmp_path: Path) -> None:
    cache = _cache(tmp_path, session=SessionStore())
    cache.put(TODAY, [_fixture(1)])
    cache.put("2025-05-26", [_fixture(2)])

    stats = cache.stats()

    assert stats["memory"] == 2
    assert stats["session"] == 2
    assert stats["durable"] == 2
    assert stats["namespace"] == "shared_fixtures"
