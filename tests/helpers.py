"""Shared test helpers: appointment builders and a controllable store stub."""

import asyncio
from typing import Dict, List, Optional, Tuple

from shopcalendar.domain.models import Appointment, AppointmentStatus, AppointmentType
from shopcalendar.domain.time_model import (
    WallClockDate,
    WallClockInstant,
    combine,
    normalize_time,
    parse_local_date,
    parse_local_time,
)

SHOP = "S"


def d(value: str) -> WallClockDate:
    return parse_local_date(value)


def at(date: str, time: str) -> WallClockInstant:
    return combine(parse_local_date(date), parse_local_time(time))


def make_appointment(
    id: str = "a1",
    date: str = "2024-01-01",
    start: str = "10:00",
    end: str = "11:00",
    status: AppointmentStatus = AppointmentStatus.CONFIRMED,
    shop_id: str = SHOP,
    notes: Optional[str] = None,
) -> Appointment:
    """Helper to create an Appointment from strings."""
    return Appointment(
        id=id,
        shop_id=shop_id,
        client_id="client-1",
        date=parse_local_date(date),
        start_time=normalize_time(start),
        end_time=normalize_time(end),
        status=status,
        type=AppointmentType.FITTING,
        notes=notes,
    )


class GatedStore:
    """
    Store stub whose fetches block until the test releases them.

    ``fetch_range`` calls are recorded in ``calls``; each call waits on its
    own event so tests control the order in which responses arrive.
    """

    def __init__(self, appointments: Optional[List[Appointment]] = None, gated: bool = True):
        self.appointments: List[Appointment] = list(appointments or [])
        self.gated = gated
        self.calls: List[Tuple[str, WallClockDate, WallClockDate]] = []
        self.gates: List[asyncio.Event] = []
        self.failures: Dict[int, Exception] = {}
        self.responses: Dict[int, List[Appointment]] = {}

    async def fetch_range(self, shop_id, start_date, end_date):
        index = len(self.calls)
        self.calls.append((shop_id, start_date, end_date))
        gate = asyncio.Event()
        self.gates.append(gate)
        if self.gated:
            await gate.wait()
        if index in self.failures:
            raise self.failures[index]
        source = self.responses.get(index, self.appointments)
        return [
            a for a in source
            if a.shop_id == shop_id and start_date <= a.date <= end_date
        ]

    def release(self, index: int) -> None:
        self.gates[index].set()

    async def create(self, appointment):
        self.appointments.append(appointment)
        return appointment

    async def update(self, appointment):
        self.appointments = [a for a in self.appointments if a.id != appointment.id]
        self.appointments.append(appointment)
        return appointment

    async def delete(self, appointment):
        self.appointments = [a for a in self.appointments if a.id != appointment.id]
        return appointment


async def settle(rounds: int = 5) -> None:
    """Let pending tasks run up to their next await."""
    for _ in range(rounds):
        await asyncio.sleep(0)
