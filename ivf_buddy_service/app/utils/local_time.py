# app/utils/local_time.py
"""
Civil-date / wall-clock / instant conversions for a user's timezone.

A protocol speaks in civil days ("day 3 of the cycle, evening") while tasks are
stored as UTC instants. Every conversion here goes through ``zoneinfo`` local
time composition, so a 23h or 25h DST day is handled by the tz database rather
than by adding seconds to an instant.
"""
from __future__ import annotations

import re
from datetime import date, datetime, time, timedelta, timezone
from typing import Mapping, Optional, Tuple
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from app.core.config import DEFAULT_REMINDER_TIMES

UTC = timezone.utc

_HHMM_RE = re.compile(r"^([01]\d|2[0-3]):([0-5]\d)$")


def is_valid_hhmm(hhmm: str) -> bool:
    return bool(_HHMM_RE.match(hhmm or ""))


def parse_hhmm(hhmm: str) -> Tuple[int, int]:
    m = _HHMM_RE.match((hhmm or "").strip())
    if not m:
        raise ValueError(f"Invalid HH:MM time: {hhmm!r}")
    return int(m.group(1)), int(m.group(2))


def format_hhmm(hour: int, minute: int) -> str:
    return f"{hour:02d}:{minute:02d}"


def _hhmm_to_minutes(hhmm: str) -> int:
    h, m = parse_hhmm(hhmm)
    return h * 60 + m


def get_zone(tz_name: str) -> ZoneInfo:
    try:
        return ZoneInfo(tz_name)
    except (ZoneInfoNotFoundError, ValueError) as e:
        raise ValueError(f"Unknown timezone: {tz_name!r}") from e


def ensure_utc(instant: datetime) -> datetime:
    if instant.tzinfo is None:
        raise ValueError("instant must be timezone-aware")
    return instant.astimezone(UTC)


def utc_now() -> datetime:
    return datetime.now(UTC)


def local_from_civil(civil_date: date, hhmm: str, tz_name: str) -> datetime:
    """Compose a civil date and a wall-clock time in tz_name, returned as a UTC instant."""
    h, m = parse_hhmm(hhmm)
    local = datetime.combine(civil_date, time(h, m), tzinfo=get_zone(tz_name))
    return local.astimezone(UTC)


def resolve_due_instant(
    civil_date: date,
    time_of_day: Optional[str],
    exact_time: Optional[str],
    tz_name: str,
    reminder_times: Optional[Mapping[str, str]] = None,
) -> datetime:
    """
    exact_time wins; otherwise the named time_of_day is looked up in
    reminder_times; anything else falls back to the morning default.
    """
    table = reminder_times or DEFAULT_REMINDER_TIMES
    if exact_time:
        hhmm = exact_time
    elif time_of_day and time_of_day in table:
        hhmm = table[time_of_day]
    else:
        hhmm = table.get("morning", DEFAULT_REMINDER_TIMES["morning"])
    return local_from_civil(civil_date, hhmm, tz_name)


def to_local(instant: datetime, tz_name: str) -> datetime:
    return ensure_utc(instant).astimezone(get_zone(tz_name))


def local_today(now: datetime, tz_name: str) -> date:
    return to_local(now, tz_name).date()


def local_day_bounds(civil_date: date, tz_name: str) -> Tuple[datetime, datetime]:
    """[start, end) of a civil day as UTC instants."""
    zone = get_zone(tz_name)
    start = datetime.combine(civil_date, time(0, 0), tzinfo=zone)
    end = datetime.combine(civil_date + timedelta(days=1), time(0, 0), tzinfo=zone)
    return start.astimezone(UTC), end.astimezone(UTC)


def cycle_day_index(cycle_start: date, target: date) -> int:
    return (target - cycle_start).days


def is_within_quiet_hours(
    instant: datetime,
    quiet_hours: Optional[Mapping[str, str]],
    tz_name: str,
) -> bool:
    if not quiet_hours:
        return False

    local = to_local(instant, tz_name)
    current = local.hour * 60 + local.minute
    start = _hhmm_to_minutes(quiet_hours["start"])
    end = _hhmm_to_minutes(quiet_hours["end"])

    if start > end:
        # spans midnight, e.g. 21:00-08:00
        return current >= start or current < end
    return start <= current < end


def push_out_of_quiet_hours(
    instant: datetime,
    quiet_hours: Optional[Mapping[str, str]],
    tz_name: str,
) -> datetime:
    """
    Move an instant inside quiet hours to the quiet-hours end on the same local
    day it falls on. For a midnight-spanning window an evening instant lands on
    that morning's end time; it is never advanced to the next day.
    """
    if not quiet_hours or not is_within_quiet_hours(instant, quiet_hours, tz_name):
        return instant

    local_day = to_local(instant, tz_name).date()
    return local_from_civil(local_day, quiet_hours["end"], tz_name)


def to_iso(instant: datetime) -> str:
    """Fixed-width UTC text; stored columns compare correctly as strings."""
    return ensure_utc(instant).strftime("%Y-%m-%dT%H:%M:%S.%fZ")


def from_iso(value: str) -> datetime:
    return datetime.strptime(value, "%Y-%m-%dT%H:%M:%S.%fZ").replace(tzinfo=UTC)
