"""
In-memory appointment store for the CLI and for tests.
"""

import asyncio
import json
import logging
from pathlib import Path
from typing import Dict, Iterable, List, Optional, Tuple

import pendulum

from ..domain.exceptions import ValidationError
from ..domain.models import Appointment
from ..domain.time_model import WallClockDate

logger = logging.getLogger(__name__)


class InMemoryAppointmentStore:
    """
    Dict-backed store implementing ``AppointmentStoreProtocol``.

    Appointments can be seeded from a JSON file holding a list of
    appointment records (the same shape ``Appointment.to_record`` writes).
    Every ``fetch_range`` call is recorded in ``fetch_calls`` so callers
    can assert how often the backend was hit.
    """

    def __init__(
        self,
        appointments: Iterable[Appointment] = (),
        latency_seconds: float = 0.0,
    ):
        """
        Initialize the store.

        Args:
            appointments: Initial contents
            latency_seconds: Artificial delay applied to every call
        """
        self._appointments: Dict[str, Appointment] = {}
        for appointment in appointments:
            self._appointments[appointment.id] = appointment
        self.latency_seconds = latency_seconds
        self.fetch_calls: List[Tuple[str, WallClockDate, WallClockDate]] = []

    @classmethod
    def load_from_json(cls, data_file: Path, **kwargs) -> "InMemoryAppointmentStore":
        """
        Seed a store from a JSON file of appointment records.

        A missing file yields an empty store.

        Raises:
            ValueError: If the file is not a JSON list of valid records.
        """
        if not data_file.exists():
            logger.warning("Appointments file %s not found, starting empty", data_file)
            return cls(**kwargs)

        try:
            with open(data_file, "r", encoding="utf-8") as f:
                records = json.load(f)
        except json.JSONDecodeError as exc:
            raise ValueError(f"Invalid JSON in {data_file}: {exc}") from exc

        if not isinstance(records, list):
            raise ValueError(f"{data_file} must contain a list of appointments.")

        return cls((Appointment.from_record(record) for record in records), **kwargs)

    def all(self) -> List[Appointment]:
        return sorted(self._appointments.values(), key=lambda a: (a.date, a.start_time, a.id))

    def get(self, appointment_id: str) -> Optional[Appointment]:
        return self._appointments.get(appointment_id)

    async def fetch_range(
        self,
        shop_id: str,
        start_date: WallClockDate,
        end_date: WallClockDate,
    ) -> List[Appointment]:
        """Return the shop's appointments dated within the inclusive range."""
        self.fetch_calls.append((shop_id, start_date, end_date))
        await self._delay()
        return [
            appointment
            for appointment in self.all()
            if appointment.shop_id == shop_id and start_date <= appointment.date <= end_date
        ]

    async def create(self, appointment: Appointment) -> Appointment:
        await self._delay()
        if appointment.id in self._appointments:
            raise ValidationError(f"Appointment {appointment.id} already exists")
        now = pendulum.now("UTC")
        stored = appointment.replace(created_at=appointment.created_at or now, updated_at=now)
        self._appointments[stored.id] = stored
        return stored

    async def update(self, appointment: Appointment) -> Appointment:
        await self._delay()
        if appointment.id not in self._appointments:
            raise ValidationError(f"Appointment {appointment.id} does not exist")
        stored = appointment.replace(updated_at=pendulum.now("UTC"))
        self._appointments[stored.id] = stored
        return stored

    async def delete(self, appointment: Appointment) -> Appointment:
        await self._delay()
        try:
            return self._appointments.pop(appointment.id)
        except KeyError:
            raise ValidationError(f"Appointment {appointment.id} does not exist") from None

    async def _delay(self) -> None:
        if self.latency_seconds:
            await asyncio.sleep(self.latency_seconds)
