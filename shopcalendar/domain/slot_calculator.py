"""
Core business logic for calculating bookable appointment slots.

This is pure domain logic without any external dependencies (no store
calls, no I/O). Everything the calculation needs is passed in by value.
"""

import logging
from typing import Any, Iterable, List, Mapping, Optional, Sequence, Tuple, Union

from .exceptions import ValidationError
from .models import (
    BufferedDuration,
    BusyInterval,
    CalendarSettings,
    ShopHoursEntry,
    hours_for_weekday,
)
from .time_model import WallClockDate, WallClockInstant, WallClockTime, now_wall_clock

logger = logging.getLogger(__name__)

# Candidate start times are generated at this step unless the appointment is shorter.
DEFAULT_SLOT_STEP_MINUTES = 15

ShopHoursInput = Union[ShopHoursEntry, Mapping[str, Any], None]


def compute_available_slots(
    date: WallClockDate,
    shop_hours_for_weekday: ShopHoursInput,
    busy_intervals: Iterable[BusyInterval],
    duration_minutes: int,
    buffer_minutes: int = 0,
    *,
    now: Optional[WallClockInstant] = None,
    step_minutes: Optional[int] = None,
) -> List[WallClockTime]:
    """
    Compute the start times at which a new appointment can be booked.

    Algorithm:
    1. Closed day or no hours entry -> nothing is bookable
    2. Generate candidate starts from opening time at a fixed step
    3. Drop candidates that would run past closing time
    4. Drop candidates overlapping a busy interval widened by the buffer
       on both sides, so neighbouring appointments stay ``buffer`` apart
    5. On the current day, drop candidates that are not after ``now``

    Args:
        date: Day to compute slots for
        shop_hours_for_weekday: Hours entry for ``date``'s weekday (or None)
        busy_intervals: Existing bookings; intervals on other dates are ignored
        duration_minutes: Length of the appointment to book
        buffer_minutes: Idle gap required around every appointment
        now: Current shop-local wall-clock time; read from the process
            clock when omitted
        step_minutes: Candidate spacing; defaults to 15 minutes, or the
            duration when that is shorter

    Returns:
        Ascending, de-duplicated list of start times

    Raises:
        ValidationError: On a non-positive duration or step, a negative
            buffer, or malformed shop hours
    """
    window = BufferedDuration(duration_minutes=duration_minutes, buffer_minutes=buffer_minutes)
    step = _resolve_step(window.duration_minutes, step_minutes)
    hours = _coerce_hours(shop_hours_for_weekday)

    # Step 1: closed or unknown day
    if hours is None or hours.is_closed:
        return []

    if hours.day_of_week != date.weekday_index:
        raise ValidationError(
            f"Shop hours for weekday {hours.day_of_week} do not apply to {date} "
            f"(weekday {date.weekday_index})"
        )

    now = now or now_wall_clock()
    if date < now.date:
        return []
    cutoff = now.time.minutes if date == now.date else None

    open_minutes = hours.open_time.minutes
    close_minutes = hours.close_time.minutes
    blocked = _blocked_windows(date, busy_intervals, window.buffer_minutes)

    slots: List[WallClockTime] = []

    # Step 2: candidates from opening through closing minus duration
    for start in range(open_minutes, close_minutes - window.duration_minutes + 1, step):
        end = start + window.duration_minutes

        # Step 3: must finish by closing time
        if end > close_minutes:
            continue

        # Step 5: not in the past
        if cutoff is not None and start <= cutoff:
            continue

        # Step 4: keep clear of buffered bookings
        if any(start < busy_end and end > busy_start for busy_start, busy_end in blocked):
            continue

        slots.append(WallClockTime.from_minutes(start))

    return slots


def _resolve_step(duration_minutes: int, step_minutes: Optional[int]) -> int:
    if step_minutes is None:
        return min(DEFAULT_SLOT_STEP_MINUTES, duration_minutes)
    if not isinstance(step_minutes, int) or step_minutes <= 0:
        raise ValidationError(f"Slot step must be a positive number of minutes, got {step_minutes!r}")
    return step_minutes


def _coerce_hours(value: ShopHoursInput) -> Optional[ShopHoursEntry]:
    if value is None or isinstance(value, ShopHoursEntry):
        return value
    if isinstance(value, Mapping):
        return ShopHoursEntry.from_record(value)
    raise ValidationError(f"Unsupported shop hours value: {value!r}")


def _blocked_windows(
    date: WallClockDate,
    busy_intervals: Iterable[BusyInterval],
    buffer_minutes: int,
) -> List[Tuple[int, int]]:
    """
    Widen each busy interval on ``date`` by the buffer on both sides.

    Windows are in minutes since midnight and may extend outside the day.
    """
    windows: List[Tuple[int, int]] = []
    for busy in busy_intervals:
        if not isinstance(busy, BusyInterval):
            raise ValidationError(f"Expected a BusyInterval, got {busy!r}")
        if busy.date != date:
            continue
        windows.append(
            (busy.start_time.minutes - buffer_minutes, busy.end_time.minutes + buffer_minutes)
        )
    return sorted(windows)


class SlotCalculator:
    """
    Calculates bookable slots for a shop's week of opening hours.

    Wraps ``compute_available_slots`` with the shop's calendar settings so
    callers only pass the day, the bookings and optionally a duration.
    """

    def __init__(self, shop_hours: Sequence[ShopHoursEntry], settings: CalendarSettings):
        self.shop_hours = list(shop_hours)
        self.settings = settings

    def hours_for(self, date: WallClockDate) -> Optional[ShopHoursEntry]:
        return hours_for_weekday(self.shop_hours, date.weekday_index)

    def find_available_slots(
        self,
        date: WallClockDate,
        busy_intervals: Iterable[BusyInterval],
        duration_minutes: Optional[int] = None,
        now: Optional[WallClockInstant] = None,
    ) -> List[WallClockTime]:
        """
        Find all bookable start times on ``date``.

        Args:
            date: Day to search
            busy_intervals: Existing bookings for that day
            duration_minutes: Appointment length; defaults to the shop's
                default appointment duration
            now: Current shop-local wall-clock time

        Returns:
            List of start times
        """
        window = self.settings.buffered_duration(duration_minutes)

        slots = compute_available_slots(
            date,
            self.hours_for(date),
            busy_intervals,
            window.duration_minutes,
            window.buffer_minutes,
            now=now,
            step_minutes=min(self.settings.slot_interval_minutes, window.duration_minutes),
        )

        logger.debug("Found %d slot(s) on %s for %d minutes", len(slots), date, window.duration_minutes)
        return slots

    def is_slot_available(
        self,
        date: WallClockDate,
        start_time: WallClockTime,
        end_time: WallClockTime,
        busy_intervals: Iterable[BusyInterval],
    ) -> bool:
        """
        Check an exact booking request against hours and buffered bookings.

        Unlike ``find_available_slots`` the start time need not sit on the
        slot grid.
        """
        hours = self.hours_for(date)
        if hours is None or hours.is_closed:
            return False
        if start_time < hours.open_time or end_time > hours.close_time:
            return False

        blocked = _blocked_windows(date, busy_intervals, self.settings.buffer_time_minutes)
        return not any(
            start_time.minutes < busy_end and end_time.minutes > busy_start
            for busy_start, busy_end in blocked
        )
