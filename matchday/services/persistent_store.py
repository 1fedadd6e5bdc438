from __future__ import annotations

import json
import os
import threading
from typing import Any

import psycopg
from loguru import logger


def _normalize_database_url(url: str) -> str:
    value = str(url or "").strip()
    if value.startswith("postgres://"):
        return "postgresql://" + value[len("postgres://") :]
    return value


class SessionStore:
    """Session-scoped key/value tier; lives as long as the cache session."""

    def __init__(self) -> None:
        self._items: dict[str, str] = {}
        self._lock = threading.Lock()

    def get(self, key: str) -> str | None:
        with self._lock:
            return self._items.get(key)

    def set(self, key: str, value: str) -> None:
        with self._lock:
            self._items[key] = value

    def delete(self, key: str) -> None:
        with self._lock:
            self._items.pop(key, None)

    def keys(self, prefix: str = "") -> list[str]:
        with self._lock:
            return [key for key in self._items if key.startswith(prefix)]

    def clear(self) -> None:
        with self._lock:
            self._items.clear()


class PersistentStore:
    """Durable key/value cache tier backed by a JSON file or Postgres."""

    def __init__(self, database_url: str | None = None, file_path: str | None = None) -> None:
        self.database_url = _normalize_database_url(database_url or "")
        self.file_path = file_path or ""
        self.use_postgres = bool(self.database_url)
        self.entries_table = "app_cache_entries"
        self._file_lock = threading.Lock()

        if self.use_postgres:
            self._ensure_postgres_schema()

    @property
    def backend(self) -> str:
        return "postgres" if self.use_postgres else "file"

    def _ensure_postgres_schema(self) -> None:
        try:
            with psycopg.connect(self.database_url, autocommit=True) as conn:
                with conn.cursor() as cur:
                    cur.execute(
                        f"""
                        CREATE TABLE IF NOT EXISTS {self.entries_table} (
                            cache_key TEXT PRIMARY KEY,
                            payload TEXT NOT NULL,
                            updated_at TIMESTAMPTZ NOT NULL DEFAULT NOW()
                        )
                        """
                    )
        except Exception as exc:
            logger.error(f"Failed to initialize Postgres cache schema: {exc}")
            self.use_postgres = False

    def _read_json_file(self) -> dict[str, Any]:
        path = self.file_path
        if not path or not os.path.exists(path):
            return {}
        try:
            with open(path, "r", encoding="utf-8") as handle:
                payload = json.load(handle)
        except (OSError, json.JSONDecodeError) as exc:
            logger.warning(f"Ignoring unreadable cache file {path}: {exc}")
            return {}
        if not isinstance(payload, dict):
            return {}
        return payload

    def _write_json_file(self, payload: dict[str, Any]) -> None:
        path = self.file_path
        if not path:
            return
        parent = os.path.dirname(path)
        if parent:
            os.makedirs(parent, exist_ok=True)
        with open(path, "w", encoding="utf-8") as handle:
            json.dump(payload, handle, ensure_ascii=False, indent=2)

    def get(self, key: str) -> str | None:
        if self.use_postgres:
            with psycopg.connect(self.database_url, autocommit=True) as conn:
                with conn.cursor() as cur:
                    cur.execute(
                        f"SELECT payload FROM {self.entries_table} WHERE cache_key = %s",
                        (key,),
                    )
                    row = cur.fetchone()
            return str(row[0]) if row else None

        with self._file_lock:
            value = self._read_json_file().get(key)
        if value is None:
            return None
        return value if isinstance(value, str) else json.dumps(value, ensure_ascii=False)

    def set(self, key: str, value: str) -> None:
        if self.use_postgres:
            with psycopg.connect(self.database_url, autocommit=True) as conn:
                with conn.cursor() as cur:
                    cur.execute(
                        f"""
                        INSERT INTO {self.entries_table} (cache_key, payload, updated_at)
                        VALUES (%s, %s, NOW())
                        ON CONFLICT (cache_key)
                        DO UPDATE SET payload = EXCLUDED.payload, updated_at = NOW()
                        """,
                        (key, value),
                    )
            return

        with self._file_lock:
            payload = self._read_json_file()
            payload[key] = value
            self._write_json_file(payload)

    def delete(self, key: str) -> None:
        if self.use_postgres:
            with psycopg.connect(self.database_url, autocommit=True) as conn:
                with conn.cursor() as cur:
                    cur.execute(
                        f"DELETE FROM {self.entries_table} WHERE cache_key = %s",
                        (key,),
                    )
            return

        with self._file_lock:
            payload = self._read_json_file()
            if key in payload:
                payload.pop(key)
                self._write_json_file(payload)

    def keys(self, prefix: str = "") -> list[str]:
        if self.use_postgres:
            with psycopg.connect(self.database_url, autocommit=True) as conn:
                with conn.cursor() as cur:
                    cur.execute(
                        f"SELECT cache_key FROM {self.entries_table} WHERE cache_key LIKE %s",
                        (prefix.replace("%", r"\%").replace("_", r"\_") + "%",),
                    )
                    rows = cur.fetchall()
            return [str(row[0]) for row in rows]

        with self._file_lock:
            return [key for key in self._read_json_file() if key.startswith(prefix)]
