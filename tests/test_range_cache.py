"""
Tests for the appointment range cache.
"""

import asyncio

import pendulum
import pytest

from shopcalendar.domain.date_range import CalendarView, DateRange
from shopcalendar.domain.exceptions import FetchError, SchedulingError
from shopcalendar.domain.models import AppointmentStatus
from shopcalendar.services.range_cache import RangeCache

from helpers import SHOP, GatedStore, d, make_appointment, settle

FIRST_WEEK = DateRange.parse("2024-01-01", "2024-01-07")
JANUARY = DateRange.parse("2024-01-01", "2024-01-31")


class FakeClock:
    def __init__(self):
        self.current = pendulum.datetime(2024, 1, 1, 8, 0, tz="UTC")

    def __call__(self):
        return self.current

    def advance(self, seconds: int) -> None:
        self.current = self.current.add(seconds=seconds)


def test_repeated_loads_fetch_once():
    """A loaded range is served from memory."""
    store = GatedStore([make_appointment(date="2024-01-02")], gated=False)
    cache = RangeCache(store, SHOP)

    async def scenario():
        first = await cache.load(SHOP, FIRST_WEEK)
        second = await cache.load(SHOP, FIRST_WEEK)
        return first, second

    first, second = asyncio.run(scenario())

    assert len(store.calls) == 1
    assert first == second
    assert [a.id for a in first] == ["a1"]
    assert cache.is_range_loaded(FIRST_WEEK)


def test_concurrent_loads_share_one_fetch():
    """Two callers asking for the same range while it loads share one request."""
    store = GatedStore([make_appointment(date="2024-01-03")])
    cache = RangeCache(store, SHOP)

    async def scenario():
        first = asyncio.create_task(cache.load(SHOP, FIRST_WEEK))
        second = asyncio.create_task(cache.load(SHOP, FIRST_WEEK))
        await settle()
        store.release(0)
        return await asyncio.gather(first, second)

    first, second = asyncio.run(scenario())

    assert store.calls == [(SHOP, d("2024-01-01"), d("2024-01-07"))]
    assert first == second
    assert len(first) == 1


def test_sub_range_of_loaded_range_is_not_fetched():
    store = GatedStore([make_appointment(date="2024-01-20")], gated=False)
    cache = RangeCache(store, SHOP)

    async def scenario():
        await cache.load(SHOP, JANUARY)
        return await cache.load(SHOP, DateRange.single(d("2024-01-20")))

    day = asyncio.run(scenario())

    assert len(store.calls) == 1
    assert [a.id for a in day] == ["a1"]


def test_cancelled_caller_does_not_cancel_shared_fetch():
    store = GatedStore([make_appointment(date="2024-01-03")])
    cache = RangeCache(store, SHOP)

    async def scenario():
        impatient = asyncio.create_task(cache.load(SHOP, FIRST_WEEK))
        await settle()
        impatient.cancel()
        patient = asyncio.create_task(cache.load(SHOP, FIRST_WEEK))
        await settle()
        store.release(0)
        return await patient

    result = asyncio.run(scenario())

    assert len(store.calls) == 1
    assert len(result) == 1


def test_late_response_from_older_request_is_discarded():
    """The newest request wins even when the older response arrives last."""
    old = make_appointment(id="a1", date="2024-01-03", status=AppointmentStatus.PENDING)
    new = old.replace(status=AppointmentStatus.CONFIRMED)
    store = GatedStore()
    store.responses = {0: [old], 1: [new]}
    cache = RangeCache(store, SHOP)

    async def scenario():
        week = asyncio.create_task(cache.load(SHOP, FIRST_WEEK))
        await settle()
        month = asyncio.create_task(cache.load(SHOP, JANUARY))
        await settle()
        store.release(1)
        await month
        store.release(0)
        return await week

    week_result = asyncio.run(scenario())

    assert [a.status for a in week_result] == [AppointmentStatus.CONFIRMED]
    assert cache.get_for_range(FIRST_WEEK)[0].status is AppointmentStatus.CONFIRMED
    assert cache.loaded_ranges() == [JANUARY]


def test_newer_overlapping_entry_is_authoritative():
    """When responses arrive in order, the newer one owns the shared dates."""
    old = make_appointment(id="a1", date="2024-01-03", status=AppointmentStatus.PENDING)
    moved = old.replace(date=d("2024-01-20"))
    store = GatedStore()
    store.responses = {0: [old], 1: [moved]}
    cache = RangeCache(store, SHOP)

    async def scenario():
        week = asyncio.create_task(cache.load(SHOP, FIRST_WEEK))
        await settle()
        month = asyncio.create_task(cache.load(SHOP, JANUARY))
        await settle()
        store.release(0)
        await week
        store.release(1)
        await month

    asyncio.run(scenario())

    appointments = cache.get_for_range(JANUARY)
    assert len(appointments) == 1
    assert appointments[0].date == d("2024-01-20")
    assert cache.get_for_range(FIRST_WEEK) == []


def test_invalidate_drops_overlapping_entries():
    store = GatedStore([make_appointment(date="2024-01-03")], gated=False)
    cache = RangeCache(store, SHOP)
    february = DateRange.parse("2024-02-01", "2024-02-29")

    async def scenario():
        await cache.load(SHOP, FIRST_WEEK)
        await cache.load(SHOP, february)

    asyncio.run(scenario())

    assert cache.invalidate(SHOP, DateRange.single(d("2024-01-03"))) == 1
    assert not cache.is_range_loaded(FIRST_WEEK)
    assert cache.is_range_loaded(february)

    assert cache.invalidate(SHOP) == 1
    assert cache.loaded_ranges() == []


def test_invalidate_during_load_fetches_again():
    """A fetch issued before a write must not repopulate the cache; the caller gets fresh data."""
    before_write = make_appointment(date="2024-01-03", status=AppointmentStatus.PENDING)
    after_write = before_write.replace(status=AppointmentStatus.CONFIRMED)
    store = GatedStore()
    store.responses = {0: [before_write], 1: [after_write]}
    cache = RangeCache(store, SHOP)

    async def scenario():
        loading = asyncio.create_task(cache.load(SHOP, FIRST_WEEK))
        await settle()
        cache.invalidate(SHOP, DateRange.single(d("2024-01-03")))
        store.release(0)
        await settle(20)
        store.release(1)
        return await loading

    result = asyncio.run(scenario())

    assert len(store.calls) == 2
    assert [a.status for a in result] == [AppointmentStatus.CONFIRMED]
    assert cache.is_range_loaded(FIRST_WEEK)


def test_load_overtaken_by_newer_overlapping_load_fetches_again():
    """A week load discarded because a newer day load landed first still returns the whole week."""
    monday = make_appointment(id="mon", date="2024-01-01")
    friday = make_appointment(id="fri", date="2024-01-05")
    store = GatedStore([friday, monday])
    cache = RangeCache(store, SHOP)

    async def scenario():
        week = asyncio.create_task(cache.load(SHOP, FIRST_WEEK))
        await settle()
        day = asyncio.create_task(cache.load(SHOP, DateRange.single(d("2024-01-01"))))
        await settle()
        store.release(1)
        await day
        store.release(0)
        await settle(20)
        store.release(2)
        return await week

    result = asyncio.run(scenario())

    assert [a.id for a in result] == ["mon", "fri"]
    assert cache.is_range_loaded(FIRST_WEEK)
    assert len(store.calls) == 3


def test_load_gives_up_refetching_after_bounded_attempts():
    """When results never count as loaded, the last fetched list is returned."""
    store = GatedStore([make_appointment(date="2024-01-03")], gated=False)
    cache = RangeCache(store, SHOP, stale_after_seconds=0)

    result = asyncio.run(cache.load(SHOP, FIRST_WEEK))

    assert [a.id for a in result] == ["a1"]
    assert len(store.calls) == 3


def test_fetch_failure_is_reported_and_retried():
    store = GatedStore([make_appointment(date="2024-01-03")], gated=False)
    store.failures = {0: RuntimeError("connection reset")}
    cache = RangeCache(store, SHOP)

    async def scenario():
        with pytest.raises(FetchError, match="connection reset"):
            await cache.load(SHOP, FIRST_WEEK)
        assert isinstance(cache.last_error(FIRST_WEEK), FetchError)
        assert not cache.is_range_loaded(FIRST_WEEK)
        return await cache.load(SHOP, FIRST_WEEK)

    result = asyncio.run(scenario())

    assert len(result) == 1
    assert cache.last_error(FIRST_WEEK) is None


def test_concurrent_callers_all_see_the_failure():
    store = GatedStore()
    store.failures = {0: FetchError("store unavailable")}
    cache = RangeCache(store, SHOP)

    async def scenario():
        first = asyncio.create_task(cache.load(SHOP, FIRST_WEEK))
        second = asyncio.create_task(cache.load(SHOP, FIRST_WEEK))
        await settle()
        store.release(0)
        return await asyncio.gather(first, second, return_exceptions=True)

    results = asyncio.run(scenario())

    assert all(isinstance(result, FetchError) for result in results)
    assert len(store.calls) == 1


def test_prefetch_adjacent_weeks():
    store = GatedStore(gated=False)
    cache = RangeCache(store, SHOP)
    current = DateRange.for_view(d("2024-01-10"), CalendarView.WEEK)

    async def scenario():
        await cache.load(SHOP, current)
        tasks = cache.prefetch_adjacent(current, CalendarView.WEEK)
        await asyncio.gather(*tasks)

    asyncio.run(scenario())

    assert cache.is_range_loaded(DateRange.parse("2023-12-31", "2024-01-06"))
    assert cache.is_range_loaded(DateRange.parse("2024-01-14", "2024-01-20"))
    assert len(store.calls) == 3


def test_prefetch_skips_loaded_ranges():
    store = GatedStore(gated=False)
    cache = RangeCache(store, SHOP)
    current = DateRange.for_view(d("2024-01-10"), CalendarView.MONTH)

    async def scenario():
        await cache.load(SHOP, DateRange.parse("2024-02-01", "2024-02-29"))
        return cache.prefetch_adjacent(current, CalendarView.MONTH)

    tasks = asyncio.run(scenario())

    assert len(tasks) == 1


def test_prefetch_failure_is_swallowed():
    store = GatedStore(gated=False)
    store.failures = {0: RuntimeError("timeout")}
    cache = RangeCache(store, SHOP)
    current = DateRange.for_view(d("2024-01-10"), CalendarView.WEEK)
    previous_week = DateRange.parse("2023-12-31", "2024-01-06")

    async def scenario():
        tasks = cache.prefetch_adjacent(current, CalendarView.WEEK)
        await asyncio.gather(*tasks)

    asyncio.run(scenario())

    assert not cache.is_range_loaded(previous_week)
    assert isinstance(cache.last_error(previous_week), FetchError)
    assert cache.is_range_loaded(DateRange.parse("2024-01-14", "2024-01-20"))


def test_entries_go_stale():
    clock = FakeClock()
    store = GatedStore([make_appointment(date="2024-01-03")], gated=False)
    cache = RangeCache(store, SHOP, stale_after_seconds=300, clock=clock)

    asyncio.run(cache.load(SHOP, FIRST_WEEK))
    clock.advance(301)

    assert not cache.is_range_loaded(FIRST_WEEK)
    assert len(cache.get_for_range(FIRST_WEEK)) == 1

    asyncio.run(cache.load(SHOP, FIRST_WEEK))
    assert len(store.calls) == 2


def test_clear_stale_keeps_visible_range():
    clock = FakeClock()
    store = GatedStore(gated=False)
    cache = RangeCache(store, SHOP, stale_after_seconds=60, clock=clock)
    february = DateRange.parse("2024-02-01", "2024-02-29")

    async def scenario():
        await cache.load(SHOP, FIRST_WEEK)
        await cache.load(SHOP, february)

    asyncio.run(scenario())
    clock.advance(120)

    assert cache.clear_stale(keep=february) == 1
    assert cache.loaded_ranges() == [february]


def test_shops_are_cached_separately():
    store = GatedStore(
        [make_appointment(id="s", date="2024-01-03"), make_appointment(id="t", date="2024-01-03", shop_id="T")],
        gated=False,
    )
    cache = RangeCache(store, SHOP)

    async def scenario():
        own = await cache.load(SHOP, FIRST_WEEK)
        other = await cache.load("T", FIRST_WEEK)
        return own, other

    own, other = asyncio.run(scenario())

    assert [a.id for a in own] == ["s"]
    assert [a.id for a in other] == ["t"]
    assert len(store.calls) == 2


def test_closed_cache_rejects_loads():
    store = GatedStore(gated=False)
    cache = RangeCache(store, SHOP)

    async def scenario():
        await cache.load(SHOP, FIRST_WEEK)
        await cache.close()
        with pytest.raises(SchedulingError):
            await cache.load(SHOP, FIRST_WEEK)

    asyncio.run(scenario())

    assert cache.loaded_ranges() == []


def test_close_cancels_prefetches():
    store = GatedStore()
    cache = RangeCache(store, SHOP)
    current = DateRange.for_view(d("2024-01-10"), CalendarView.DAY)

    async def scenario():
        tasks = cache.prefetch_adjacent(current, CalendarView.DAY)
        await settle()
        await cache.close()
        return tasks

    tasks = asyncio.run(scenario())

    assert len(tasks) == 6
    assert all(task.done() for task in tasks)
    assert cache.loaded_ranges() == []


def test_close_cancels_running_loads():
    store = GatedStore()
    cache = RangeCache(store, SHOP)

    async def scenario():
        loading = asyncio.create_task(cache.load(SHOP, FIRST_WEEK))
        await settle()
        await cache.close()
        with pytest.raises(SchedulingError, match="closed while loading"):
            await loading

    asyncio.run(scenario())

    assert len(store.calls) == 1
    assert cache.loaded_ranges() == []
