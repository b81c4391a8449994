"""
In-memory cache of a shop's appointments keyed by date range.

A calendar view asks the cache for the range it displays. The first request
for a range fetches it from the appointment store; later reads are served
from memory. While the user pans the calendar the cache prefetches the
neighbouring ranges in the background.

Concurrency rules (single asyncio event loop, no locking):

- at most one fetch is in flight per ``(shop_id, range)``; concurrent callers
  share its result
- every fetch gets a monotonically increasing request id; a result that
  arrives after a newer request for an overlapping range already landed is
  discarded (last requested wins, not last to arrive)
- a fetch issued before an overlapping ``invalidate`` is discarded too, so a
  load racing a write never resurrects pre-write data
- a caller whose own fetch was discarded fetches again, so ``load`` never
  returns a partial range
"""

from __future__ import annotations

import asyncio
import itertools
import logging
from dataclasses import dataclass
from typing import Callable, Dict, List, Optional, Protocol, Sequence, Set, Tuple

import pendulum
from pendulum import DateTime

from ..domain.date_range import CalendarView, DateRange, adjacent_ranges
from ..domain.exceptions import FetchError, SchedulingError
from ..domain.models import Appointment
from ..domain.time_model import WallClockDate

logger = logging.getLogger(__name__)

DEFAULT_STALE_AFTER_SECONDS = 300
MAX_LOAD_ATTEMPTS = 3

CacheKey = Tuple[str, DateRange]


class AppointmentStoreProtocol(Protocol):
    """Protocol describing the persistence operations the engine relies on."""

    async def fetch_range(
        self,
        shop_id: str,
        start_date: WallClockDate,
        end_date: WallClockDate,
    ) -> Sequence[Appointment]:
        """Return the shop's appointments dated within the inclusive range."""

    async def create(self, appointment: Appointment) -> Appointment:
        """Persist a new appointment."""

    async def update(self, appointment: Appointment) -> Appointment:
        """Persist changes to an existing appointment."""

    async def delete(self, appointment: Appointment) -> Appointment:
        """Remove an appointment."""


@dataclass(frozen=True)
class CacheEntry:
    """Appointments returned by one successful load."""
    shop_id: str
    range: DateRange
    appointments: Tuple[Appointment, ...]
    loaded_at: DateTime
    request_id: int


class RangeCache:
    """
    Appointment cache for one open shop session.

    Create one per session and ``close()`` it on shop switch or logout.
    Most methods take an optional ``shop_id`` that defaults to the
    session's shop.
    """

    def __init__(
        self,
        store: AppointmentStoreProtocol,
        shop_id: str,
        *,
        stale_after_seconds: Optional[int] = DEFAULT_STALE_AFTER_SECONDS,
        clock: Callable[[], DateTime] = pendulum.now,
    ) -> None:
        """
        Args:
            store: Appointment store used for fetches
            shop_id: Shop this session belongs to
            stale_after_seconds: Age after which a loaded range counts as
                unloaded again; None keeps entries until invalidated
            clock: Source of load timestamps
        """
        self._store = store
        self.shop_id = shop_id
        self._stale_after = stale_after_seconds
        self._clock = clock

        self._request_ids = itertools.count(1)
        self._entries: Dict[str, List[CacheEntry]] = {}
        self._in_flight: Dict[CacheKey, asyncio.Task] = {}
        self._pending: Dict[int, CacheKey] = {}
        self._invalidations: Dict[str, List[Tuple[int, Optional[DateRange]]]] = {}
        self._errors: Dict[CacheKey, FetchError] = {}
        self._background: Set[asyncio.Task] = set()
        self._fetches: Set[asyncio.Task] = set()
        self._closed = False

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def is_range_loaded(self, date_range: DateRange, shop_id: Optional[str] = None) -> bool:
        """True only if every date in the range is covered by a fresh load."""
        fresh = [entry for entry in self._shop_entries(shop_id) if self._is_fresh(entry)]
        if not fresh:
            return False
        return all(
            any(entry.range.contains(date) for entry in fresh)
            for date in date_range.dates()
        )

    def get_for_range(
        self, date_range: DateRange, shop_id: Optional[str] = None
    ) -> List[Appointment]:
        """
        Cached appointments dated within the range, de-duplicated by id.

        When several entries cover the same date, the one from the newest
        request is authoritative for that date.
        """
        entries = sorted(
            (entry for entry in self._shop_entries(shop_id) if entry.range.overlaps(date_range)),
            key=lambda entry: entry.request_id,
        )

        by_id: Dict[str, Appointment] = {}
        for entry in entries:
            for appointment in entry.appointments:
                if not date_range.contains(appointment.date):
                    continue
                if self._authority_for(entries, appointment.date) is not entry:
                    continue
                by_id[appointment.id] = appointment

        return sorted(by_id.values(), key=lambda a: (a.date, a.start_time, a.id))

    def loaded_ranges(self, shop_id: Optional[str] = None) -> List[DateRange]:
        return [entry.range for entry in self._shop_entries(shop_id)]

    def last_error(
        self, date_range: DateRange, shop_id: Optional[str] = None
    ) -> Optional[FetchError]:
        """The failure of the latest load of exactly this range, if any."""
        return self._errors.get((shop_id or self.shop_id, date_range))

    # ------------------------------------------------------------------
    # Loading
    # ------------------------------------------------------------------

    async def load(self, shop_id: str, date_range: DateRange) -> List[Appointment]:
        """
        Make sure a range is cached and return its appointments.

        No fetch happens when the range is already loaded. Otherwise at most
        one fetch per ``(shop_id, range)`` runs; concurrent callers await the
        same result. Cancelling a caller does not cancel the shared fetch.

        A fetch whose result is discarded (an overlapping ``invalidate`` or
        a newer overlapping load landed first) is issued again, up to
        ``MAX_LOAD_ATTEMPTS`` fetches. If the range still is not loaded
        after that, the last fetched list is returned as is.

        Raises:
            FetchError: If the store call fails.
            SchedulingError: If the cache is closed before the load finishes.
        """
        key = (shop_id, date_range)
        fetched: List[Appointment] = []

        for _ in range(MAX_LOAD_ATTEMPTS):
            if self._closed:
                raise SchedulingError("Range cache has been closed")
            if self.is_range_loaded(date_range, shop_id):
                return self.get_for_range(date_range, shop_id)

            task = self._in_flight.get(key)
            if task is None:
                task = self._start_fetch(shop_id, date_range)

            try:
                fetched = await asyncio.shield(task)
            except asyncio.CancelledError:
                if self._closed and task.cancelled():
                    raise SchedulingError("Range cache was closed while loading") from None
                raise

        if self.is_range_loaded(date_range, shop_id):
            return self.get_for_range(date_range, shop_id)

        logger.warning(
            "Loads of %s for shop %s kept being superseded; returning the last fetched result",
            date_range,
            shop_id,
        )
        return fetched

    def prefetch_adjacent(
        self,
        current_range: DateRange,
        view: CalendarView,
        shop_id: Optional[str] = None,
    ) -> List[asyncio.Task]:
        """
        Load the ranges next to ``current_range`` in the background.

        Must be called from a running event loop. Failures are logged and
        swallowed. The returned tasks may be awaited but need not be.
        """
        shop_id = shop_id or self.shop_id
        tasks: List[asyncio.Task] = []

        for neighbour in adjacent_ranges(current_range.start_date, view):
            if self.is_range_loaded(neighbour, shop_id):
                continue
            task = asyncio.get_running_loop().create_task(self._prefetch(shop_id, neighbour))
            self._background.add(task)
            task.add_done_callback(self._background.discard)
            tasks.append(task)

        return tasks

    # ------------------------------------------------------------------
    # Invalidation and teardown
    # ------------------------------------------------------------------

    def invalidate(self, shop_id: str, date_range: Optional[DateRange] = None) -> int:
        """
        Drop cached entries so the next read reloads them.

        Args:
            shop_id: Shop whose entries to drop
            date_range: Entries overlapping this range are dropped; None
                drops everything for the shop

        Returns:
            Number of entries dropped
        """
        marker = next(self._request_ids)
        if any(key[0] == shop_id for key in self._pending.values()):
            self._invalidations.setdefault(shop_id, []).append((marker, date_range))

        entries = self._entries.get(shop_id, [])
        kept = [
            entry for entry in entries
            if date_range is not None and not entry.range.overlaps(date_range)
        ]
        self._entries[shop_id] = kept

        # Fetches already running may return pre-write data; new callers
        # must not join them.
        for key in list(self._in_flight):
            if key[0] == shop_id and (date_range is None or key[1].overlaps(date_range)):
                del self._in_flight[key]

        dropped = len(entries) - len(kept)
        logger.debug(
            "Invalidated %d entr%s for shop %s (%s)",
            dropped,
            "y" if dropped == 1 else "ies",
            shop_id,
            date_range or "all ranges",
        )
        return dropped

    def clear_stale(self, keep: Optional[DateRange] = None, shop_id: Optional[str] = None) -> int:
        """
        Drop entries older than the staleness limit.

        Entries overlapping ``keep`` (usually the visible range) are retained.

        Returns:
            Number of entries dropped
        """
        shop_id = shop_id or self.shop_id
        entries = self._entries.get(shop_id, [])
        kept = [
            entry for entry in entries
            if self._is_fresh(entry) or (keep is not None and entry.range.overlaps(keep))
        ]
        self._entries[shop_id] = kept
        return len(entries) - len(kept)

    async def close(self) -> None:
        """
        Cancel background prefetches and running fetches, then forget all
        cached data.

        Callers still waiting in ``load`` get a ``SchedulingError``.
        """
        self._closed = True
        # Prefetches first, so their cancellation is not mistaken for a close
        # of the fetch they are waiting on.
        for tasks in (list(self._background), list(self._fetches)):
            for task in tasks:
                task.cancel()
            if tasks:
                await asyncio.gather(*tasks, return_exceptions=True)

        self._entries.clear()
        self._in_flight.clear()
        self._errors.clear()
        self._invalidations.clear()
        self._pending.clear()

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _start_fetch(self, shop_id: str, date_range: DateRange) -> asyncio.Task:
        key = (shop_id, date_range)
        request_id = next(self._request_ids)
        task = asyncio.create_task(self._fetch(shop_id, date_range, request_id))
        self._fetches.add(task)
        task.add_done_callback(self._fetches.discard)
        task.add_done_callback(_mark_exception_retrieved)
        self._in_flight[key] = task
        self._pending[request_id] = key
        return task

    async def _fetch(
        self, shop_id: str, date_range: DateRange, request_id: int
    ) -> List[Appointment]:
        """Fetch one range; returns the range's appointments whether or not they were cached."""
        key = (shop_id, date_range)
        logger.debug("Fetching %s for shop %s (request %d)", date_range, shop_id, request_id)

        try:
            appointments = await self._store.fetch_range(
                shop_id, date_range.start_date, date_range.end_date
            )
        except FetchError as exc:
            self._errors[key] = exc
            raise
        except Exception as exc:
            error = FetchError(f"Failed to load appointments for {date_range}: {exc}")
            self._errors[key] = error
            raise error from exc
        else:
            return self._store_result(shop_id, date_range, request_id, appointments)
        finally:
            self._pending.pop(request_id, None)
            if self._in_flight.get(key) is asyncio.current_task():
                del self._in_flight[key]
            self._prune_invalidations(shop_id)

    async def _prefetch(self, shop_id: str, date_range: DateRange) -> None:
        try:
            await self.load(shop_id, date_range)
        except SchedulingError as exc:
            logger.warning("Prefetch of %s for shop %s failed: %s", date_range, shop_id, exc)

    def _store_result(
        self,
        shop_id: str,
        date_range: DateRange,
        request_id: int,
        appointments: Sequence[Appointment],
    ) -> List[Appointment]:
        in_range = sorted(
            (a for a in appointments if date_range.contains(a.date)),
            key=lambda a: (a.date, a.start_time, a.id),
        )
        if self._closed:
            return in_range

        if self._is_superseded(shop_id, date_range, request_id):
            logger.debug(
                "Discarding stale result for %s (request %d) of shop %s",
                date_range,
                request_id,
                shop_id,
            )
            return in_range

        entry = CacheEntry(
            shop_id=shop_id,
            range=date_range,
            appointments=tuple(in_range),
            loaded_at=self._clock(),
            request_id=request_id,
        )
        entries = self._entries.setdefault(shop_id, [])
        entries.append(entry)
        self._errors.pop((shop_id, date_range), None)

        # Entries whose every date is now owned by newer entries are dead weight.
        self._entries[shop_id] = [
            existing for existing in entries
            if not all(
                any(
                    other.request_id > existing.request_id and other.range.contains(date)
                    for other in entries
                )
                for date in existing.range.dates()
            )
        ]
        return in_range

    def _is_superseded(self, shop_id: str, date_range: DateRange, request_id: int) -> bool:
        for entry in self._entries.get(shop_id, []):
            if entry.request_id > request_id and entry.range.overlaps(date_range):
                return True
        for marker, invalidated in self._invalidations.get(shop_id, []):
            if marker > request_id and (invalidated is None or invalidated.overlaps(date_range)):
                return True
        return False

    def _prune_invalidations(self, shop_id: str) -> None:
        running = [request_id for request_id, key in self._pending.items() if key[0] == shop_id]
        if not running:
            self._invalidations.pop(shop_id, None)
            return
        oldest = min(running)
        self._invalidations[shop_id] = [
            (marker, invalidated)
            for marker, invalidated in self._invalidations.get(shop_id, [])
            if marker > oldest
        ]

    def _shop_entries(self, shop_id: Optional[str]) -> List[CacheEntry]:
        return self._entries.get(shop_id or self.shop_id, [])

    def _is_fresh(self, entry: CacheEntry) -> bool:
        if self._stale_after is None:
            return True
        return entry.loaded_at.add(seconds=self._stale_after) > self._clock()

    @staticmethod
    def _authority_for(entries: Sequence[CacheEntry], date: WallClockDate) -> Optional[CacheEntry]:
        owner: Optional[CacheEntry] = None
        for entry in entries:
            if entry.range.contains(date) and (owner is None or entry.request_id > owner.request_id):
                owner = entry
        return owner


def _mark_exception_retrieved(task: asyncio.Task) -> None:
    # Failures reach every awaiting caller and ``last_error``; a fetch whose
    # callers all went away must not also log "exception never retrieved".
    if not task.cancelled():
        task.exception()
