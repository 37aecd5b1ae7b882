"""
Clock-string arithmetic for a single tenant-local day.

Times are "HH:MM" strings on the wire and integer minutes since midnight
inside the availability calculation.
"""

import re
from datetime import date, datetime

from .errors import InvalidFormat, InvalidRange

MINUTES_PER_DAY = 24 * 60

_CLOCK_RE = re.compile(r"[0-9]{2}:[0-9]{2}")
_DATE_RE = re.compile(r"[0-9]{4}-[0-9]{2}-[0-9]{2}")


def to_minutes(clock: str) -> int:
    """Convert "HH:MM" (24h) to minutes since midnight."""
    if not isinstance(clock, str) or not _CLOCK_RE.fullmatch(clock):
        raise InvalidFormat(f"Time must be HH:MM (24h), got {clock!r}")
    hours, minutes = int(clock[:2]), int(clock[3:])
    if hours > 23 or minutes > 59:
        raise InvalidRange(f"Time {clock} is not a valid time of day")
    return hours * 60 + minutes


def to_clock(minutes: int) -> str:
    """Convert minutes since midnight back to a zero-padded "HH:MM"."""
    if not 0 <= minutes < MINUTES_PER_DAY:
        raise InvalidRange(f"Minutes must be within [0, {MINUTES_PER_DAY}), got {minutes}")
    return f"{minutes // 60:02d}:{minutes % 60:02d}"


def parse_date(value: str) -> date:
    """Parse a YYYY-MM-DD calendar date."""
    if not isinstance(value, str) or not _DATE_RE.fullmatch(value):
        raise InvalidFormat(f"Date must be YYYY-MM-DD, got {value!r}")
    try:
        return datetime.strptime(value, "%Y-%m-%d").date()
    except ValueError:
        raise InvalidRange(f"Date {value} does not exist")


def combine(day: date, clock: str, tzinfo) -> datetime:
    """Local wall-clock datetime for a calendar date and "HH:MM"."""
    minutes = to_minutes(clock)
    return datetime(day.year, day.month, day.day, minutes // 60, minutes % 60, tzinfo=tzinfo)
