"""
Timezone-free wall-clock dates and times.

Appointments are stored as a calendar date plus "HH:MM" start and end times
as read off the shop's clock. These types never carry a timezone: converting
to or from an absolute instant happens only when reading the current time
(``now_wall_clock``) or at the storage boundary.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from enum import Enum
from typing import Iterator, Optional

import pendulum
from pendulum import Date

from .exceptions import ParseError, ValidationError

MINUTES_PER_DAY = 24 * 60

_DATE_PATTERN = re.compile(r"^(\d{4})-(\d{2})-(\d{2})$")
_TIME_PATTERN = re.compile(r"^(\d{2}):(\d{2})$")
_TIME_WITH_SECONDS_PATTERN = re.compile(r"^(\d{2}):(\d{2}):(\d{2})$")


@dataclass(frozen=True, order=True)
class WallClockDate:
    """
    A calendar date without time or timezone.

    Invariant: always denotes a real Gregorian date.
    """
    year: int
    month: int
    day: int

    def __post_init__(self):
        try:
            pendulum.date(self.year, self.month, self.day)
        except (TypeError, ValueError) as exc:
            raise ValidationError(
                f"Not a valid calendar date: {self.year}-{self.month}-{self.day}"
            ) from exc

    @classmethod
    def from_date(cls, value) -> "WallClockDate":
        """Build from any ``datetime.date`` (pendulum dates included)."""
        return cls(year=value.year, month=value.month, day=value.day)

    def to_date(self) -> Date:
        """Return the equivalent pendulum Date for calendar arithmetic."""
        return pendulum.date(self.year, self.month, self.day)

    @property
    def weekday_index(self) -> int:
        """Day of week as stored in shop hours: 0=Sunday ... 6=Saturday."""
        return self.to_date().isoweekday() % 7

    def add_days(self, days: int) -> "WallClockDate":
        return WallClockDate.from_date(self.to_date().add(days=days))

    def add_months(self, months: int) -> "WallClockDate":
        return WallClockDate.from_date(self.to_date().add(months=months))

    def __str__(self) -> str:
        return format_date(self)


@dataclass(frozen=True, order=True)
class WallClockTime:
    """
    A time of day with minute precision.

    Invariant: hour in [0, 23], minute in [0, 59].
    """
    hour: int
    minute: int

    def __post_init__(self):
        if not 0 <= self.hour <= 23:
            raise ValidationError(f"Hour must be between 0 and 23, got {self.hour}")
        if not 0 <= self.minute <= 59:
            raise ValidationError(f"Minute must be between 0 and 59, got {self.minute}")

    @classmethod
    def from_minutes(cls, total_minutes: int) -> "WallClockTime":
        """Build from minutes since midnight; must stay within the same day."""
        if not 0 <= total_minutes < MINUTES_PER_DAY:
            raise ValidationError(
                f"{total_minutes} minutes does not fall within a single day"
            )
        return cls(hour=total_minutes // 60, minute=total_minutes % 60)

    @property
    def minutes(self) -> int:
        """Minutes since midnight."""
        return self.hour * 60 + self.minute

    def add_minutes(self, minutes: int) -> "WallClockTime":
        """
        Shift the time by ``minutes``.

        Raises:
            ValidationError: If the result would cross midnight.
        """
        return WallClockTime.from_minutes(self.minutes + minutes)

    def __str__(self) -> str:
        return format_time(self)


@dataclass(frozen=True, order=True)
class WallClockInstant:
    """A date and time pair; ordering is by date, then time."""
    date: WallClockDate
    time: WallClockTime

    def __str__(self) -> str:
        return f"{format_date(self.date)} {format_time(self.time)}"


class Ordering(str, Enum):
    """Result of ``compare``."""
    BEFORE = "before"
    SAME = "same"
    AFTER = "after"


def parse_local_date(value: str) -> WallClockDate:
    """
    Parse a ``YYYY-MM-DD`` string.

    Raises:
        ParseError: If the string is malformed or names an impossible date
            (e.g. ``2024-02-30``).
    """
    if not isinstance(value, str):
        raise ParseError(f"Expected a date string, got {type(value).__name__}")

    match = _DATE_PATTERN.match(value)
    if not match:
        raise ParseError(f"Invalid date format (expected YYYY-MM-DD): {value!r}")

    year, month, day = (int(part) for part in match.groups())
    try:
        return WallClockDate(year=year, month=month, day=day)
    except ValidationError as exc:
        raise ParseError(f"Invalid calendar date: {value!r}") from exc


def parse_local_time(value: str) -> WallClockTime:
    """
    Parse an ``HH:MM`` string.

    Raises:
        ParseError: If the string is malformed or out of range.
    """
    if not isinstance(value, str):
        raise ParseError(f"Expected a time string, got {type(value).__name__}")

    match = _TIME_PATTERN.match(value)
    if not match:
        raise ParseError(f"Invalid time format (expected HH:MM): {value!r}")

    hour, minute = (int(part) for part in match.groups())
    try:
        return WallClockTime(hour=hour, minute=minute)
    except ValidationError as exc:
        raise ParseError(f"Time out of range: {value!r}") from exc


def normalize_time(value: str) -> WallClockTime:
    """
    Parse a time as stored by the database.

    Accepts ``HH:MM`` and ``HH:MM:SS``; seconds must be zero since slots
    have minute precision.
    """
    if isinstance(value, str):
        match = _TIME_WITH_SECONDS_PATTERN.match(value)
        if match:
            if match.group(3) != "00":
                raise ParseError(f"Seconds are not supported: {value!r}")
            return parse_local_time(value[:5])
    return parse_local_time(value)


def format_date(value: WallClockDate) -> str:
    return f"{value.year:04d}-{value.month:02d}-{value.day:02d}"


def format_time(value: WallClockTime) -> str:
    return f"{value.hour:02d}:{value.minute:02d}"


def combine(date: WallClockDate, time: WallClockTime) -> WallClockInstant:
    """Pair a date and a time. No timezone conversion is applied."""
    return WallClockInstant(date=date, time=time)


def compare(a: WallClockInstant, b: WallClockInstant) -> Ordering:
    """Total order over (date, time)."""
    if a < b:
        return Ordering.BEFORE
    if a > b:
        return Ordering.AFTER
    return Ordering.SAME


def now_wall_clock(timezone: Optional[str] = None) -> WallClockInstant:
    """
    Read the current wall-clock time, truncated to the minute.

    Args:
        timezone: IANA timezone of the shop. When omitted the local process
            clock is used, which is only correct for shops co-located with
            the process.
    """
    try:
        current = pendulum.now(timezone) if timezone else pendulum.now()
    except (ValueError, LookupError) as exc:
        raise ValidationError(f"Unknown timezone: {timezone!r}") from exc

    return combine(
        WallClockDate(year=current.year, month=current.month, day=current.day),
        WallClockTime(hour=current.hour, minute=current.minute),
    )


def is_in_past(instant: WallClockInstant, now: WallClockInstant) -> bool:
    return compare(instant, now) is Ordering.BEFORE


def minutes_between(start: WallClockTime, end: WallClockTime) -> int:
    """Signed number of minutes from ``start`` to ``end`` on the same day."""
    return end.minutes - start.minutes


def date_span(start: WallClockDate, end: WallClockDate) -> Iterator[WallClockDate]:
    """Yield every date from ``start`` through ``end`` inclusive."""
    current = start.to_date()
    last = end.to_date()
    while current <= last:
        yield WallClockDate.from_date(current)
        current = current.add(days=1)


def format_time_12h(value: WallClockTime) -> str:
    """
    Format for display, e.g. ``14:05`` -> ``2:05 PM``.
    """
    period = "PM" if value.hour >= 12 else "AM"
    hour = value.hour % 12 or 12
    return f"{hour}:{value.minute:02d} {period}"


def format_duration(minutes: int) -> str:
    """
    Format a duration for display.

    Example: 30 -> "30 min", 60 -> "1 hour", 90 -> "1h 30min"
    """
    if minutes < 60:
        return f"{minutes} min"

    hours, rest = divmod(minutes, 60)
    if rest == 0:
        return f"{hours} hour{'s' if hours > 1 else ''}"

    return f"{hours}h {rest}min"
