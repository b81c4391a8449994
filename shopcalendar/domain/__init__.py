"""
Domain layer - Pure scheduling logic without external dependencies.
"""

from .date_range import CalendarView, DateRange, adjacent_ranges
from .exceptions import FetchError, ParseError, SchedulingError, ValidationError
from .lifecycle import AppointmentPatch, PatchResult, apply_patch
from .models import (
    Appointment,
    AppointmentStatus,
    AppointmentType,
    BufferedDuration,
    BusyInterval,
    CalendarSettings,
    ShopHoursEntry,
)
from .slot_calculator import SlotCalculator, compute_available_slots
from .time_model import (
    WallClockDate,
    WallClockInstant,
    WallClockTime,
    combine,
    compare,
    format_date,
    format_time,
    now_wall_clock,
    parse_local_date,
    parse_local_time,
)

__all__ = [
    "Appointment",
    "AppointmentPatch",
    "AppointmentStatus",
    "AppointmentType",
    "BufferedDuration",
    "BusyInterval",
    "CalendarSettings",
    "CalendarView",
    "DateRange",
    "FetchError",
    "ParseError",
    "PatchResult",
    "SchedulingError",
    "ShopHoursEntry",
    "SlotCalculator",
    "ValidationError",
    "WallClockDate",
    "WallClockInstant",
    "WallClockTime",
    "adjacent_ranges",
    "apply_patch",
    "combine",
    "compare",
    "compute_available_slots",
    "format_date",
    "format_time",
    "now_wall_clock",
    "parse_local_date",
    "parse_local_time",
]
