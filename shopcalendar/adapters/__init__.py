"""
Adapters layer - Appointment storage and configuration-backed providers.
"""

from .config_providers import ConfigCalendarSettingsProvider, ConfigShopHoursProvider
from .memory_store import InMemoryAppointmentStore

__all__ = [
    "ConfigCalendarSettingsProvider",
    "ConfigShopHoursProvider",
    "InMemoryAppointmentStore",
]
