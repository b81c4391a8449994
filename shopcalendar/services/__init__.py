"""
Application services - coordinate stores, cache and domain logic.
"""

from .appointment_service import (
    AppointmentService,
    CalendarSettingsProviderProtocol,
    ShopHoursProviderProtocol,
)
from .calendar_session import CalendarSession
from .range_cache import AppointmentStoreProtocol, CacheEntry, RangeCache

__all__ = [
    "AppointmentService",
    "AppointmentStoreProtocol",
    "CacheEntry",
    "CalendarSession",
    "CalendarSettingsProviderProtocol",
    "RangeCache",
    "ShopHoursProviderProtocol",
]
