"""
Calendar navigation state for one shop.
"""

from __future__ import annotations

import asyncio
import logging
from typing import List, Optional

from ..domain.date_range import CalendarView, DateRange
from ..domain.exceptions import FetchError
from ..domain.models import Appointment
from ..domain.time_model import WallClockDate
from .range_cache import RangeCache

logger = logging.getLogger(__name__)


class CalendarSession:
    """
    Tracks the date and view a user is looking at and keeps them loaded.

    ``refresh()`` loads the visible range and then starts prefetching the
    neighbouring ranges so paging is instant.
    """

    def __init__(
        self,
        cache: RangeCache,
        current_date: WallClockDate,
        view: CalendarView = CalendarView.MONTH,
        prefetch: bool = True,
    ) -> None:
        self._cache = cache
        self.current_date = current_date
        self.view = CalendarView(view)
        self.prefetch = prefetch
        self.error: Optional[FetchError] = None
        self._prefetches: List[asyncio.Task] = []

    @property
    def shop_id(self) -> str:
        return self._cache.shop_id

    @property
    def date_range(self) -> DateRange:
        return DateRange.for_view(self.current_date, self.view)

    @property
    def appointments(self) -> List[Appointment]:
        """Cached appointments for the visible range."""
        return self._cache.get_for_range(self.date_range)

    @property
    def is_loaded(self) -> bool:
        return self._cache.is_range_loaded(self.date_range)

    async def refresh(self) -> List[Appointment]:
        """
        Load the visible range, then prefetch its neighbours.

        A failed load is kept in ``error`` and leaves whatever was cached
        on screen; no prefetch is started in that case.
        """
        current = self.date_range
        try:
            appointments = await self._cache.load(self.shop_id, current)
        except FetchError as exc:
            logger.warning("Loading %s for shop %s failed: %s", current, self.shop_id, exc)
            self.error = exc
            return self._cache.get_for_range(current)

        self.error = None
        if self.prefetch:
            self._prefetches = self._cache.prefetch_adjacent(current, self.view)
        self._cache.clear_stale(keep=current)
        return appointments

    async def wait_for_prefetch(self) -> None:
        """Wait for the prefetches started by the last ``refresh``."""
        if self._prefetches:
            await asyncio.gather(*self._prefetches)

    async def navigate_next(self) -> List[Appointment]:
        return await self.navigate_to(self._step(1))

    async def navigate_previous(self) -> List[Appointment]:
        return await self.navigate_to(self._step(-1))

    async def navigate_to(
        self, date: WallClockDate, view: Optional[CalendarView] = None
    ) -> List[Appointment]:
        """Move to ``date`` (and optionally another view) and refresh."""
        self.current_date = date
        if view is not None:
            self.view = CalendarView(view)
        return await self.refresh()

    def _step(self, direction: int) -> WallClockDate:
        if self.view is CalendarView.MONTH:
            return self.current_date.add_months(direction)
        if self.view is CalendarView.WEEK:
            return self.current_date.add_days(7 * direction)
        if self.view is CalendarView.DAY:
            return self.current_date.add_days(direction)
        return self.current_date.add_months(direction)
