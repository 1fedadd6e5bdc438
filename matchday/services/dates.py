from __future__ import annotations

import datetime as dt
import re
from typing import Any
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from loguru import logger

_CALENDAR_PREFIX = re.compile(r"^\s*(\d{4}-\d{2}-\d{2})")


def resolve_timezone(name: str | dt.tzinfo | None) -> dt.tzinfo:
    if isinstance(name, dt.tzinfo):
        return name
    text = str(name or "").strip()
    if not text or text.upper() == "UTC":
        return dt.UTC
    try:
        return ZoneInfo(text)
    except (ZoneInfoNotFoundError, ValueError):
        logger.warning(f"Unknown timezone '{text}', falling back to UTC.")
        return dt.UTC


def parse_iso_datetime(value: Any, default_tz: dt.tzinfo = dt.UTC) -> dt.datetime | None:
    if isinstance(value, dt.datetime):
        parsed = value
    else:
        text = str(value or "").strip()
        if not text:
            return None

        iso_text = text.replace("Z", "+00:00")
        try:
            parsed = dt.datetime.fromisoformat(iso_text)
        except ValueError:
            return None

    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=default_tz)
    return parsed


def parse_calendar_date(value: Any) -> dt.date | None:
    """Date portion of a YYYY-MM-DD string or full ISO timestamp."""
    if isinstance(value, dt.datetime):
        return value.date()
    if isinstance(value, dt.date):
        return value
    prefix = naive_calendar_date(value)
    if prefix is None:
        return None
    try:
        return dt.date.fromisoformat(prefix)
    except ValueError:
        return None


def naive_calendar_date(value: Any) -> str | None:
    match = _CALENDAR_PREFIX.match(str(value or ""))
    if not match:
        return None
    return match.group(1)


def local_now(tz: dt.tzinfo | None = None) -> dt.datetime:
    if tz is None:
        return dt.datetime.now().astimezone()
    return dt.datetime.now(tz)


def today_iso(tz: dt.tzinfo | None = None, now: dt.datetime | None = None) -> str:
    current = now if now is not None else local_now(tz)
    if tz is not None and current.tzinfo is not None:
        current = current.astimezone(tz)
    return current.date().isoformat()


def minutes_since_midnight(value: dt.datetime | dt.time) -> int:
    return value.hour * 60 + value.minute


def parse_clock(value: str) -> int:
    """Minutes since midnight for an "HH:MM" string."""
    hours_text, _, minutes_text = str(value).strip().partition(":")
    hours = int(hours_text)
    minutes = int(minutes_text or 0)
    if not (0 <= hours <= 23 and 0 <= minutes <= 59):
        raise ValueError(f"clock value out of range: {value!r}")
    return hours * 60 + minutes
