"""
Application services for booking, moving and cancelling appointments.

The service reads appointments through the ``RangeCache``, delegates slot
arithmetic to the domain ``SlotCalculator`` and update rules to
``apply_patch``. Every successful write invalidates the cached dates it
touched, so the next read goes back to the store.
"""

from __future__ import annotations

import logging
from typing import List, Optional, Protocol, Sequence, Tuple, Union

from ..domain.date_range import DateRange
from ..domain.exceptions import FetchError, SchedulingError, ValidationError
from ..domain.lifecycle import AppointmentPatch, PatchResult, apply_patch
from ..domain.models import (
    Appointment,
    AppointmentStatus,
    BusyInterval,
    CalendarSettings,
    ShopHoursEntry,
    default_shop_hours,
)
from ..domain.slot_calculator import SlotCalculator
from ..domain.time_model import (
    WallClockDate,
    WallClockInstant,
    WallClockTime,
    combine,
    is_in_past,
    now_wall_clock,
)
from .range_cache import AppointmentStoreProtocol, RangeCache

logger = logging.getLogger(__name__)


class ShopHoursProviderProtocol(Protocol):
    """Protocol describing where a shop's weekly opening hours come from."""

    async def get_shop_hours(self, shop_id: str) -> Sequence[ShopHoursEntry]:
        """Return the shop's hours entries; empty if none are stored."""


class CalendarSettingsProviderProtocol(Protocol):
    """Protocol describing where a shop's calendar settings come from."""

    async def get_calendar_settings(self, shop_id: str) -> Optional[CalendarSettings]:
        """Return the shop's settings, or None to use the defaults."""


class AppointmentService:
    """
    Orchestrates availability lookups and appointment writes for one shop.

    Reads go through the shared ``RangeCache`` so the calendar view and the
    booking form see the same data.
    """

    def __init__(
        self,
        store: AppointmentStoreProtocol,
        shop_hours_provider: ShopHoursProviderProtocol,
        settings_provider: CalendarSettingsProviderProtocol,
        cache: RangeCache,
        timezone: Optional[str] = None,
    ) -> None:
        self._store = store
        self._shop_hours_provider = shop_hours_provider
        self._settings_provider = settings_provider
        self._cache = cache
        self._timezone = timezone

    @property
    def shop_id(self) -> str:
        return self._cache.shop_id

    # ------------------------------------------------------------------
    # Availability
    # ------------------------------------------------------------------

    async def build_calculator(self) -> SlotCalculator:
        """Load hours and settings for the shop and wrap them in a calculator."""
        hours = list(await self._shop_hours_provider.get_shop_hours(self.shop_id))
        settings = await self._settings_provider.get_calendar_settings(self.shop_id)
        return SlotCalculator(
            shop_hours=hours or default_shop_hours(),
            settings=settings or CalendarSettings(),
        )

    async def busy_intervals(
        self, date: WallClockDate, exclude_id: Optional[str] = None
    ) -> List[BusyInterval]:
        """
        Busy intervals of the active appointments on ``date``.

        Args:
            date: Day to inspect
            exclude_id: Appointment to leave out, e.g. the one being moved

        Raises:
            FetchError: If the day cannot be loaded.
        """
        appointments = await self._cache.load(self.shop_id, DateRange.single(date))
        return [
            appointment.busy_interval()
            for appointment in appointments
            if appointment.is_active and appointment.id != exclude_id
        ]

    async def available_slots(
        self,
        date: WallClockDate,
        duration: Optional[int] = None,
        exclude_id: Optional[str] = None,
        now: Optional[WallClockInstant] = None,
    ) -> List[WallClockTime]:
        """
        Find bookable start times on ``date``.

        Args:
            date: Day to search
            duration: Appointment length in minutes; the shop default when omitted
            exclude_id: Appointment whose own slot should count as free
            now: Current shop-local time; read from the clock when omitted

        Returns:
            Ascending list of start times
        """
        calculator = await self.build_calculator()
        busy = await self.busy_intervals(date, exclude_id=exclude_id)
        return calculator.find_available_slots(
            date,
            busy,
            duration_minutes=duration,
            now=now or now_wall_clock(self._timezone),
        )

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    async def create_appointment(
        self,
        appointment: Appointment,
        now: Optional[WallClockInstant] = None,
    ) -> Appointment:
        """
        Book a new appointment.

        Raises:
            ValidationError: If the appointment starts in the past, falls
                outside opening hours or collides with another booking
                (buffer included).
            FetchError: If the store call fails.
        """
        if appointment.shop_id != self.shop_id:
            raise ValidationError(
                f"Appointment belongs to shop {appointment.shop_id}, not {self.shop_id}"
            )

        now = now or now_wall_clock(self._timezone)
        if is_in_past(combine(appointment.date, appointment.start_time), now):
            raise ValidationError(
                f"Cannot schedule an appointment in the past ({appointment.date} {appointment.start_time})"
            )

        if appointment.is_active:
            await self._ensure_slot_free(appointment)

        created = await self._write("create", self._store.create, appointment)
        self._cache.invalidate(self.shop_id, DateRange.single(created.date))
        logger.info("Created appointment %s on %s at %s", created.id, created.date, created.start_time)
        return created

    async def update_appointment(
        self,
        existing: Appointment,
        patch: Union[AppointmentPatch, dict],
        now: Optional[WallClockInstant] = None,
    ) -> Appointment:
        """
        Apply an edit to an appointment and persist it.

        A moved appointment goes back to ``pending`` unless the edit sets a
        status itself, and must land on a free slot.

        Raises:
            ValidationError: If the edit breaks the update rules or the new
                slot is taken.
            FetchError: If the store call fails.
        """
        result, updated = await self.preview_update(existing, patch, now=now)
        if not result.fields:
            return existing

        saved = await self._write("update", self._store.update, updated)
        self._invalidate_dates(existing.date, saved.date)
        if result.rescheduled:
            logger.info(
                "Rescheduled appointment %s from %s %s to %s %s (%s)",
                saved.id,
                existing.date,
                existing.start_time,
                saved.date,
                saved.start_time,
                saved.status.value,
            )
        return saved

    async def preview_update(
        self,
        existing: Appointment,
        patch: Union[AppointmentPatch, dict],
        now: Optional[WallClockInstant] = None,
    ) -> Tuple[PatchResult, Appointment]:
        """
        Validate an edit without persisting it.

        Returns:
            The fields the edit would write and the resulting appointment

        Raises:
            ValidationError: If the edit breaks the update rules, or the
                resulting active appointment claims time it did not hold
                before and that time is taken or outside opening hours.
        """
        result = apply_patch(existing, patch, now=now or now_wall_clock(self._timezone))
        updated = result.apply_to(existing)
        if _claims_new_slot(existing, updated):
            await self._ensure_slot_free(updated)
        return result, updated

    async def cancel_appointment(self, existing: Appointment) -> Appointment:
        """Mark an appointment canceled, freeing its slot."""
        return await self.update_appointment(existing, AppointmentPatch(status=AppointmentStatus.CANCELED))

    async def delete_appointment(self, existing: Appointment) -> Appointment:
        """Remove an appointment from the store."""
        deleted = await self._write("delete", self._store.delete, existing)
        self._invalidate_dates(existing.date)
        logger.info("Deleted appointment %s", existing.id)
        return deleted

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    async def _ensure_slot_free(self, appointment: Appointment) -> None:
        calculator = await self.build_calculator()
        busy = await self.busy_intervals(appointment.date, exclude_id=appointment.id)
        if not calculator.is_slot_available(
            appointment.date, appointment.start_time, appointment.end_time, busy
        ):
            raise ValidationError(
                f"{appointment.date} {appointment.start_time}-{appointment.end_time} "
                "is outside opening hours or overlaps another appointment"
            )

    async def _write(self, action: str, operation, appointment: Appointment) -> Appointment:
        try:
            return await operation(appointment)
        except SchedulingError:
            raise
        except Exception as exc:
            raise FetchError(f"Failed to {action} appointment {appointment.id}: {exc}") from exc

    def _invalidate_dates(self, *dates: WallClockDate) -> None:
        for date in sorted(set(dates)):
            self._cache.invalidate(self.shop_id, DateRange.single(date))


def _claims_new_slot(existing: Appointment, updated: Appointment) -> bool:
    """True if ``updated`` is active and occupies time ``existing`` did not hold."""
    if not updated.is_active:
        return False
    if not existing.is_active:
        return True
    return (existing.date, existing.start_time, existing.end_time) != (
        updated.date,
        updated.start_time,
        updated.end_time,
    )
