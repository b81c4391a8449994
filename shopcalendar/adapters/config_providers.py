"""
Shop hours and calendar settings served from the YAML configuration.
"""

from typing import List, Optional

from ..config import AppConfig
from ..domain.models import CalendarSettings, ShopHoursEntry


class ConfigShopHoursProvider:
    """``ShopHoursProviderProtocol`` backed by ``AppConfig.shop_hours``."""

    def __init__(self, config: AppConfig):
        self.config = config

    async def get_shop_hours(self, shop_id: str) -> List[ShopHoursEntry]:
        if shop_id != self.config.shop_id:
            return []
        return self.config.to_shop_hours()


class ConfigCalendarSettingsProvider:
    """``CalendarSettingsProviderProtocol`` backed by ``AppConfig.calendar``."""

    def __init__(self, config: AppConfig):
        self.config = config

    async def get_calendar_settings(self, shop_id: str) -> Optional[CalendarSettings]:
        if shop_id != self.config.shop_id:
            return None
        return self.config.to_calendar_settings()
