"""Tiered TTL cache of fixture lists keyed by match-day.

Lookups probe the process memory map, then the session store, then the
durable store. A hit in a slower tier is copied into the faster ones. Writes
go through every tier; only the memory tier is required to succeed.
"""

from __future__ import annotations

import datetime as dt
import json
import threading
from collections.abc import Callable
from dataclasses import dataclass
from typing import Any, Protocol

from loguru import logger
from pydantic import ValidationError

try:
    from matchday.services.config import Settings
    from matchday.services.dates import resolve_timezone, today_iso
    from matchday.services.fixture_models import Fixture
    from matchday.services.persistent_store import SessionStore
except ModuleNotFoundError:
    from services.config import Settings
    from services.dates import resolve_timezone, today_iso
    from services.fixture_models import Fixture
    from services.persistent_store import SessionStore


class KeyValueStore(Protocol):
    def get(self, key: str) -> str | None: ...

    def set(self, key: str, value: str) -> None: ...

    def delete(self, key: str) -> None: ...

    def keys(self, prefix: str = "") -> list[str]: ...


def _utc_now() -> dt.datetime:
    return dt.datetime.now(dt.UTC)


@dataclass(frozen=True)
class CacheTtlPolicy:
    today: dt.timedelta = dt.timedelta(minutes=30)
    past: dt.timedelta = dt.timedelta(hours=24)
    future: dt.timedelta = dt.timedelta(hours=24)

    @classmethod
    def from_settings(cls, settings: Settings) -> "CacheTtlPolicy":
        return cls(
            today=dt.timedelta(minutes=settings.cache_ttl_today_minutes),
            past=dt.timedelta(minutes=settings.cache_ttl_past_minutes),
            future=dt.timedelta(minutes=settings.cache_ttl_future_minutes),
        )

    def max_age(self, date_key: str, today_key: str) -> dt.timedelta:
        if date_key == today_key:
            return self.today
        if date_key < today_key:
            return self.past
        return self.future


@dataclass(frozen=True)
class CacheEntry:
    date: str
    fixtures: tuple[Fixture, ...]
    timestamp: dt.datetime

    def to_json(self) -> str:
        return json.dumps(
            {
                "fixtures": [fixture.to_api() for fixture in self.fixtures],
                "timestamp": int(self.timestamp.timestamp() * 1000),
                "date": self.date,
            },
            ensure_ascii=False,
        )

    @classmethod
    def from_json(cls, raw: str) -> "CacheEntry":
        try:
            payload = json.loads(raw)
        except (TypeError, json.JSONDecodeError) as exc:
            raise ValueError(f"malformed cache JSON: {exc}") from exc
        if not isinstance(payload, dict):
            raise ValueError("cache entry is not an object")

        rows = payload.get("fixtures")
        date_key = payload.get("date")
        stamp = payload.get("timestamp")
        if not isinstance(rows, list) or not isinstance(date_key, str):
            raise ValueError("cache entry is missing fixtures or date")
        if not isinstance(stamp, (int, float)) or isinstance(stamp, bool):
            raise ValueError("cache entry is missing a numeric timestamp")

        try:
            fixtures = tuple(Fixture.from_api(row) for row in rows)
        except (ValidationError, TypeError) as exc:
            raise ValueError(f"cache entry holds an invalid fixture: {exc}") from exc

        return cls(
            date=date_key,
            fixtures=fixtures,
            timestamp=dt.datetime.fromtimestamp(stamp / 1000, tz=dt.UTC),
        )


class FixtureCache:
    def __init__(
        self,
        durable: KeyValueStore | None = None,
        session: KeyValueStore | None = None,
        namespace: str = "shared_fixtures",
        ttl_policy: CacheTtlPolicy | None = None,
        timezone: str = "UTC",
        clock: Callable[[], dt.datetime] | None = None,
    ) -> None:
        self.namespace = namespace
        self.durable = durable
        self.session = session if session is not None else SessionStore()
        self.ttl_policy = ttl_policy or CacheTtlPolicy()
        self.zone = resolve_timezone(timezone)
        self.clock = clock or _utc_now
        self.memory: dict[str, CacheEntry] = {}
        self._memory_lock = threading.RLock()
        self._fetch_locks: dict[str, tuple[threading.Lock, int]] = {}
        self._fetch_locks_guard = threading.Lock()
        self.is_open = False

    def __enter__(self) -> "FixtureCache":
        return self.open()

    def __exit__(self, *exc_info: Any) -> None:
        self.close()

    @property
    def durable_prefix(self) -> str:
        return f"{self.namespace}_"

    @property
    def session_prefix(self) -> str:
        return f"session_{self.namespace}_"

    def today_key(self) -> str:
        return today_iso(self.zone, self.clock())

    def open(self) -> "FixtureCache":
        removed = self.sweep()
        self.is_open = True
        logger.info(f"Fixture cache '{self.namespace}' opened; swept {removed} stale entries.")
        return self

    def close(self) -> None:
        with self._memory_lock:
            self.memory.clear()
        clear = getattr(self.session, "clear", None)
        if callable(clear):
            clear()
        else:
            for key in self.session.keys(self.session_prefix):
                self.session.delete(key)
        self.is_open = False

    def is_valid(self, entry: CacheEntry, date_key: str) -> bool:
        if entry.date != date_key:
            return False
        age = self.clock() - entry.timestamp
        return age < self.ttl_policy.max_age(date_key, self.today_key())

    def _read_tier(
        self, store: KeyValueStore, key: str, tier: str
    ) -> CacheEntry | None:
        try:
            raw = store.get(key)
        except Exception as exc:
            logger.warning(f"Fixture cache {tier} read failed for {key}: {exc}")
            return None
        if raw is None:
            return None

        try:
            return CacheEntry.from_json(raw)
        except ValueError as exc:
            logger.warning(f"Dropping corrupted {tier} cache entry {key}: {exc}")
            self._delete_quietly(store, key, tier)
            return None

    @staticmethod
    def _write_quietly(store: KeyValueStore, key: str, value: str, tier: str) -> None:
        try:
            store.set(key, value)
        except Exception as exc:
            logger.warning(f"Failed to store fixtures in {tier} tier under {key}: {exc}")

    @staticmethod
    def _delete_quietly(store: KeyValueStore, key: str, tier: str) -> None:
        try:
            store.delete(key)
        except Exception as exc:
            logger.warning(f"Failed to delete {key} from {tier} tier: {exc}")

    def get(self, date_key: str) -> list[Fixture] | None:
        with self._memory_lock:
            entry = self.memory.get(date_key)
        if entry is not None and self.is_valid(entry, date_key):
            logger.debug(f"Memory cache hit for {date_key} ({len(entry.fixtures)} fixtures)")
            return list(entry.fixtures)

        session_key = self.session_prefix + date_key
        entry = self._read_tier(self.session, session_key, "session")
        if entry is not None and self.is_valid(entry, date_key):
            with self._memory_lock:
                self.memory[date_key] = entry
            logger.debug(f"Session cache hit for {date_key} ({len(entry.fixtures)} fixtures)")
            return list(entry.fixtures)

        if self.durable is not None:
            durable_key = self.durable_prefix + date_key
            entry = self._read_tier(self.durable, durable_key, "durable")
            if entry is not None and self.is_valid(entry, date_key):
                with self._memory_lock:
                    self.memory[date_key] = entry
                self._write_quietly(self.session, session_key, entry.to_json(), "session")
                logger.debug(
                    f"Durable cache hit for {date_key} ({len(entry.fixtures)} fixtures)"
                )
                return list(entry.fixtures)

        logger.debug(f"No valid '{self.namespace}' cache for {date_key}")
        return None

    def get_stale(self, date_key: str) -> list[Fixture] | None:
        """Return the stored entry for ``date_key`` even when it has expired."""
        with self._memory_lock:
            entry = self.memory.get(date_key)
        if entry is None:
            entry = self._read_tier(self.session, self.session_prefix + date_key, "session")
        if entry is None and self.durable is not None:
            entry = self._read_tier(self.durable, self.durable_prefix + date_key, "durable")
        if entry is None or entry.date != date_key:
            return None
        return list(entry.fixtures)

    def put(
        self,
        date_key: str,
        fixtures: list[Fixture],
        captured_at: dt.datetime | None = None,
    ) -> None:
        if not fixtures:
            logger.debug(f"Skipping empty fixture list for {date_key}")
            return

        entry = CacheEntry(
            date=date_key,
            fixtures=tuple(fixtures),
            timestamp=captured_at or self.clock(),
        )
        with self._memory_lock:
            self.memory[date_key] = entry

        raw = entry.to_json()
        self._write_quietly(self.session, self.session_prefix + date_key, raw, "session")
        if self.durable is not None:
            self._write_quietly(self.durable, self.durable_prefix + date_key, raw, "durable")
        logger.info(f"Stored {len(fixtures)} fixtures for {date_key} in '{self.namespace}'.")

    def invalidate(self, date_key: str) -> None:
        with self._memory_lock:
            self.memory.pop(date_key, None)
        self._delete_quietly(self.session, self.session_prefix + date_key, "session")
        if self.durable is not None:
            self._delete_quietly(self.durable, self.durable_prefix + date_key, "durable")
        logger.info(f"Invalidated '{self.namespace}' cache for {date_key}.")

    def invalidate_if(self, date_key: str, predicate: Callable[[Fixture], bool]) -> bool:
        cached = self.get(date_key)
        if not cached:
            return False
        if not any(predicate(fixture) for fixture in cached):
            return False
        self.invalidate(date_key)
        return True

    def _sweep_store(self, store: KeyValueStore, prefix: str, tier: str) -> int:
        removed = 0
        try:
            keys = store.keys(prefix)
        except Exception as exc:
            logger.warning(f"Fixture cache sweep could not list {tier} keys: {exc}")
            return 0

        for key in keys:
            entry = self._read_tier(store, key, tier)
            if entry is None:
                # Corrupted entries were already removed by the read.
                removed += 1
                continue
            if key != prefix + entry.date or not self.is_valid(entry, entry.date):
                self._delete_quietly(store, key, tier)
                removed += 1
        return removed

    def sweep(self) -> int:
        removed = 0
        with self._memory_lock:
            for date_key, entry in list(self.memory.items()):
                if not self.is_valid(entry, date_key):
                    del self.memory[date_key]
                    removed += 1

        removed += self._sweep_store(self.session, self.session_prefix, "session")
        if self.durable is not None:
            removed += self._sweep_store(self.durable, self.durable_prefix, "durable")

        if removed:
            logger.info(f"Swept {removed} expired '{self.namespace}' cache entries.")
        return removed

    def _acquire_fetch_lock(self, date_key: str) -> threading.Lock:
        with self._fetch_locks_guard:
            lock, waiters = self._fetch_locks.get(date_key, (None, 0))
            if lock is None:
                lock = threading.Lock()
            self._fetch_locks[date_key] = (lock, waiters + 1)
            return lock

    def _release_fetch_lock(self, date_key: str) -> None:
        # Entries live only while some caller is waiting on or holding them.
        with self._fetch_locks_guard:
            lock, waiters = self._fetch_locks[date_key]
            if waiters <= 1:
                del self._fetch_locks[date_key]
            else:
                self._fetch_locks[date_key] = (lock, waiters - 1)

    def get_or_fetch(
        self,
        date_key: str,
        fetch: Callable[[], list[Fixture] | None],
    ) -> tuple[list[Fixture] | None, bool]:
        """Return ``(fixtures, from_cache)``; concurrent misses share one fetch."""
        cached = self.get(date_key)
        if cached is not None:
            return cached, True

        lock = self._acquire_fetch_lock(date_key)
        try:
            with lock:
                cached = self.get(date_key)
                if cached is not None:
                    return cached, True
                fixtures = fetch()
                if fixtures:
                    self.put(date_key, fixtures)
                return fixtures, False
        finally:
            self._release_fetch_lock(date_key)

    def stats(self) -> dict[str, Any]:
        with self._memory_lock:
            memory_size = len(self.memory)
        session_size = len(self.session.keys(self.session_prefix))
        durable_size = 0
        if self.durable is not None:
            try:
                durable_size = len(self.durable.keys(self.durable_prefix))
            except Exception as exc:
                logger.warning(f"Fixture cache stats could not list durable keys: {exc}")
        return {
            "namespace": self.namespace,
            "memory": memory_size,
            "session": session_size,
            "durable": durable_size,
            "total": memory_size + session_size + durable_size,
        }
