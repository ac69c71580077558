"""
Sanadenta Gateway: Clock / Calendar Math

Pure date and time helpers.  All wall-clock scheduling is interpreted in
the single clinic timezone; `to_instant` is the only place a local date
and time become an absolute instant.

Weekdays use ISO numbering: Monday=1 ... Sunday=7.
"""

from __future__ import annotations

import calendar
import re
from collections.abc import Collection
from datetime import date, datetime, time, timedelta, timezone
from zoneinfo import ZoneInfo

from errors import ValidationError

MONDAY = 1
THURSDAY = 4
FRIDAY = 5

DEFAULT_ALLOWED_WEEKDAYS: frozenset[int] = frozenset({MONDAY, THURSDAY, FRIDAY})

_DATE_RE = re.compile(r"^\d{4}-\d{2}-\d{2}$", re.ASCII)
_TIME_RE = re.compile(r"^\d{2}:\d{2}$", re.ASCII)


# ---------------------------------------------------------------------------
# Parsing
# ---------------------------------------------------------------------------

def parse_date(value: str | None) -> date:
    """Parse strict YYYY-MM-DD into a real calendar date."""
    text = (value or "").strip()
    if not _DATE_RE.match(text):
        raise ValidationError("bad-date", "Invalid date. Use YYYY-MM-DD.")
    try:
        return date.fromisoformat(text)
    except ValueError:
        raise ValidationError("bad-date", f"Not a calendar date: {text}") from None


def parse_time(value: str | None) -> time:
    """Parse strict 24-hour HH:MM."""
    text = (value or "").strip()
    if not _TIME_RE.match(text):
        raise ValidationError("bad-time", "Invalid time. Use HH:MM.")
    hour, minute = int(text[:2]), int(text[3:])
    if hour > 23 or minute > 59:
        raise ValidationError("bad-time", f"Not a wall-clock time: {text}")
    return time(hour, minute)


def format_time(value: time) -> str:
    return f"{value.hour:02d}:{value.minute:02d}"


def minutes_of_day(value: time) -> int:
    return value.hour * 60 + value.minute


def time_from_minutes(total: int) -> time:
    return time(total // 60, total % 60)


# ---------------------------------------------------------------------------
# Day rules
# ---------------------------------------------------------------------------

def is_allowed_weekday(day: date, allowed: Collection[int] = DEFAULT_ALLOWED_WEEKDAYS) -> bool:
    return day.isoweekday() in allowed


def last_monday_of_month(day: date) -> date:
    """
    Last Monday of `day`'s month: take the month's final day and walk
    back 0-6 days to a Monday.
    """
    last_dom = calendar.monthrange(day.year, day.month)[1]
    last_day = day.replace(day=last_dom)
    return last_day - timedelta(days=(last_day.isoweekday() - MONDAY) % 7)


def is_surgeon_day(day: date) -> bool:
    """The clinic's surgeon blocks the last Monday of every month."""
    return day == last_monday_of_month(day)


# ---------------------------------------------------------------------------
# Wall clock -> instant
# ---------------------------------------------------------------------------

def to_instant(day: date, wall: time, tz_name: str) -> datetime:
    """
    Combine a local date and wall-clock time in `tz_name` into an aware
    datetime, using the zone's offset at that very moment.

    Ambiguous times (autumn fall-back) resolve to their first occurrence.
    Times inside the spring-forward gap do not exist and are rejected.
    """
    zone = ZoneInfo(tz_name)
    local = datetime.combine(day, wall).replace(tzinfo=zone, fold=0)
    # A gap time does not survive a round trip through UTC.
    back = local.astimezone(timezone.utc).astimezone(zone)
    if back.replace(tzinfo=None) != local.replace(tzinfo=None):
        raise ValidationError(
            "nonexistent-local-time",
            f"{day.isoformat()} {format_time(wall)} does not exist in {tz_name}",
        )
    return local


def add_minutes(instant: datetime, minutes: int) -> datetime:
    """Elapsed-time addition: shift in UTC, then return to the instant's zone."""
    shifted = instant.astimezone(timezone.utc) + timedelta(minutes=minutes)
    return shifted.astimezone(instant.tzinfo)


def day_bounds(day: date, tz_name: str) -> tuple[datetime, datetime]:
    """Local midnight of `day` and of the following day."""
    return (
        to_instant(day, time(0, 0), tz_name),
        to_instant(day + timedelta(days=1), time(0, 0), tz_name),
    )
