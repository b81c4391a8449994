"""
Domain models for shop hours, appointments and busy intervals.
"""

import dataclasses
from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, List, Mapping, Optional, Sequence

import pendulum
from pendulum import DateTime

from .exceptions import ParseError, ValidationError
from .time_model import (
    WallClockDate,
    WallClockTime,
    format_date,
    format_time,
    normalize_time,
    parse_local_date,
)

DAYS_OF_WEEK = [
    "Sunday",
    "Monday",
    "Tuesday",
    "Wednesday",
    "Thursday",
    "Friday",
    "Saturday",
]


class AppointmentStatus(str, Enum):
    PENDING = "pending"
    CONFIRMED = "confirmed"
    DECLINED = "declined"
    CANCELED = "canceled"
    NO_SHOW = "no_show"


# Appointments in these states no longer occupy their time slot.
INACTIVE_STATUSES = frozenset({AppointmentStatus.CANCELED, AppointmentStatus.DECLINED})


class AppointmentType(str, Enum):
    CONSULTATION = "consultation"
    FITTING = "fitting"
    PICKUP = "pickup"
    DELIVERY = "delivery"
    OTHER = "other"


def parse_status(value: Any) -> AppointmentStatus:
    """Coerce a raw status value, rejecting unknown states."""
    try:
        return AppointmentStatus(value)
    except ValueError:
        allowed = ", ".join(status.value for status in AppointmentStatus)
        raise ValidationError(
            f"Unknown appointment status {value!r} (allowed: {allowed})"
        ) from None


def parse_type(value: Any) -> AppointmentType:
    """Coerce a raw appointment type, rejecting unknown types."""
    try:
        return AppointmentType(value)
    except ValueError:
        allowed = ", ".join(kind.value for kind in AppointmentType)
        raise ValidationError(
            f"Unknown appointment type {value!r} (allowed: {allowed})"
        ) from None


@dataclass(frozen=True)
class ShopHoursEntry:
    """
    Opening hours for one weekday.

    Invariant: a closed day has no times; an open day opens before it closes.
    """
    day_of_week: int  # 0=Sunday, 6=Saturday
    open_time: Optional[WallClockTime]
    close_time: Optional[WallClockTime]
    is_closed: bool = False

    def __post_init__(self):
        if not isinstance(self.day_of_week, int) or not 0 <= self.day_of_week <= 6:
            raise ValidationError(
                f"day_of_week must be between 0 and 6, got {self.day_of_week!r}"
            )
        if self.is_closed:
            if self.open_time is not None or self.close_time is not None:
                raise ValidationError(
                    f"{DAYS_OF_WEEK[self.day_of_week]} is closed but has opening times"
                )
            return
        if self.open_time is None or self.close_time is None:
            raise ValidationError(
                f"{DAYS_OF_WEEK[self.day_of_week]} is open but is missing opening times"
            )
        if self.open_time >= self.close_time:
            raise ValidationError(
                f"Opening time {self.open_time} must be before closing time {self.close_time}"
            )

    @classmethod
    def closed(cls, day_of_week: int) -> "ShopHoursEntry":
        return cls(day_of_week=day_of_week, open_time=None, close_time=None, is_closed=True)

    @classmethod
    def from_record(cls, record: Mapping[str, Any]) -> "ShopHoursEntry":
        """
        Build from a shop_hours row such as
        ``{"day_of_week": 1, "open_time": "09:00:00", "close_time": "17:00:00", "is_closed": false}``.

        Raises:
            ValidationError: If the row is malformed.
        """
        try:
            is_closed = bool(record.get("is_closed", False))
            open_raw = record.get("open_time")
            close_raw = record.get("close_time")
            return cls(
                day_of_week=record["day_of_week"],
                open_time=None if open_raw is None else normalize_time(open_raw),
                close_time=None if close_raw is None else normalize_time(close_raw),
                is_closed=is_closed,
            )
        except KeyError as exc:
            raise ValidationError(f"Shop hours record is missing {exc}") from exc
        except ParseError as exc:
            raise ValidationError(f"Malformed shop hours record: {exc}") from exc

    def to_record(self) -> Dict[str, Any]:
        return {
            "day_of_week": self.day_of_week,
            "open_time": None if self.open_time is None else format_time(self.open_time),
            "close_time": None if self.close_time is None else format_time(self.close_time),
            "is_closed": self.is_closed,
        }

    @property
    def day_name(self) -> str:
        return DAYS_OF_WEEK[self.day_of_week]


def default_shop_hours() -> List[ShopHoursEntry]:
    """Monday to Friday 09:00-17:00, closed on weekends."""
    hours: List[ShopHoursEntry] = []
    for day in range(7):
        if day in (0, 6):
            hours.append(ShopHoursEntry.closed(day))
        else:
            hours.append(
                ShopHoursEntry(
                    day_of_week=day,
                    open_time=WallClockTime(9, 0),
                    close_time=WallClockTime(17, 0),
                )
            )
    return hours


def hours_for_weekday(
    shop_hours: Sequence[ShopHoursEntry], day_of_week: int
) -> Optional[ShopHoursEntry]:
    """Return the entry for a weekday, or None if the shop has none."""
    for entry in shop_hours:
        if entry.day_of_week == day_of_week:
            return entry
    return None


def is_shop_open(date: WallClockDate, shop_hours: Sequence[ShopHoursEntry]) -> bool:
    """
    Check whether the shop opens on a date.

    A weekday without an entry counts as open, matching how the shop hours
    table treats unset days.
    """
    entry = hours_for_weekday(shop_hours, date.weekday_index)
    return entry is None or not entry.is_closed


def can_create_appointment(
    date: WallClockDate,
    shop_hours: Sequence[ShopHoursEntry],
    today: WallClockDate,
) -> bool:
    """Appointments can be created on open days that are not in the past."""
    if date < today:
        return False
    return is_shop_open(date, shop_hours)


@dataclass(frozen=True)
class BufferedDuration:
    """Appointment length plus the idle gap required around it."""
    duration_minutes: int
    buffer_minutes: int = 0

    def __post_init__(self):
        if not isinstance(self.duration_minutes, int) or self.duration_minutes <= 0:
            raise ValidationError(
                f"Duration must be a positive number of minutes, got {self.duration_minutes!r}"
            )
        if not isinstance(self.buffer_minutes, int) or self.buffer_minutes < 0:
            raise ValidationError(
                f"Buffer must be zero or more minutes, got {self.buffer_minutes!r}"
            )


@dataclass(frozen=True)
class BusyInterval:
    """
    An occupied stretch of a single day.

    Invariant: start_time < end_time (no spans across midnight).
    """
    date: WallClockDate
    start_time: WallClockTime
    end_time: WallClockTime

    def __post_init__(self):
        if self.start_time >= self.end_time:
            raise ValidationError(
                f"Busy interval start {self.start_time} must be before end {self.end_time}"
            )

    def overlaps(self, other: "BusyInterval") -> bool:
        return (
            self.date == other.date
            and self.start_time < other.end_time
            and self.end_time > other.start_time
        )

    def __str__(self) -> str:
        return f"{self.date} {self.start_time}-{self.end_time}"


@dataclass(frozen=True)
class CalendarSettings:
    """Per-shop calendar settings."""
    buffer_time_minutes: int = 0
    default_appointment_duration: int = 30
    slot_interval_minutes: int = 15

    def __post_init__(self):
        BufferedDuration(self.default_appointment_duration, self.buffer_time_minutes)
        if self.slot_interval_minutes <= 0:
            raise ValidationError(
                f"Slot interval must be positive, got {self.slot_interval_minutes}"
            )

    def buffered_duration(self, duration_minutes: Optional[int] = None) -> BufferedDuration:
        return BufferedDuration(
            duration_minutes=(
                self.default_appointment_duration
                if duration_minutes is None
                else duration_minutes
            ),
            buffer_minutes=self.buffer_time_minutes,
        )


def _parse_timestamp(value: Any) -> Optional[DateTime]:
    if value is None or isinstance(value, DateTime):
        return value
    try:
        parsed = pendulum.parse(value)
    except (TypeError, ValueError) as exc:
        raise ParseError(f"Invalid timestamp: {value!r}") from exc
    if not isinstance(parsed, DateTime):
        raise ParseError(f"Invalid timestamp: {value!r}")
    return parsed


@dataclass(frozen=True)
class Appointment:
    """
    A booked appointment.

    Invariant: end_time > start_time on the same date.
    """
    id: str
    shop_id: str
    client_id: Optional[str]
    date: WallClockDate
    start_time: WallClockTime
    end_time: WallClockTime
    status: AppointmentStatus = AppointmentStatus.PENDING
    type: AppointmentType = AppointmentType.OTHER
    notes: Optional[str] = None
    created_at: Optional[DateTime] = None
    updated_at: Optional[DateTime] = None

    def __post_init__(self):
        if self.end_time <= self.start_time:
            raise ValidationError(
                f"End time {self.end_time} must be after start time {self.start_time}"
            )

    @classmethod
    def from_record(cls, record: Mapping[str, Any]) -> "Appointment":
        """
        Build from an appointments row with string dates and times.

        Raises:
            ParseError: If a date, time or timestamp is malformed.
            ValidationError: If required fields are missing or invalid.
        """
        try:
            return cls(
                id=str(record["id"]),
                shop_id=str(record["shop_id"]),
                client_id=record.get("client_id"),
                date=parse_local_date(record["date"]),
                start_time=normalize_time(record["start_time"]),
                end_time=normalize_time(record["end_time"]),
                status=parse_status(record.get("status", AppointmentStatus.PENDING.value)),
                type=parse_type(record.get("type", AppointmentType.OTHER.value)),
                notes=record.get("notes"),
                created_at=_parse_timestamp(record.get("created_at")),
                updated_at=_parse_timestamp(record.get("updated_at")),
            )
        except KeyError as exc:
            raise ValidationError(f"Appointment record is missing {exc}") from exc

    def to_record(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "shop_id": self.shop_id,
            "client_id": self.client_id,
            "date": format_date(self.date),
            "start_time": format_time(self.start_time),
            "end_time": format_time(self.end_time),
            "status": self.status.value,
            "type": self.type.value,
            "notes": self.notes,
            "created_at": None if self.created_at is None else self.created_at.to_iso8601_string(),
            "updated_at": None if self.updated_at is None else self.updated_at.to_iso8601_string(),
        }

    @property
    def is_active(self) -> bool:
        """Whether the appointment still occupies its slot."""
        return self.status not in INACTIVE_STATUSES

    def duration_minutes(self) -> int:
        return self.end_time.minutes - self.start_time.minutes

    def busy_interval(self) -> BusyInterval:
        return BusyInterval(date=self.date, start_time=self.start_time, end_time=self.end_time)

    def replace(self, **changes: Any) -> "Appointment":
        return dataclasses.replace(self, **changes)
