"""
Configuration management using Pydantic models loaded from YAML.
"""

from pathlib import Path
from typing import Any, List, Optional

import yaml
from pydantic import BaseModel, Field, field_validator, model_validator

from .domain.exceptions import SchedulingError
from .domain.models import DAYS_OF_WEEK, CalendarSettings, ShopHoursEntry, default_shop_hours
from .domain.time_model import normalize_time


class CalendarSettingsConfig(BaseModel):
    """Per-shop booking settings."""
    buffer_time_minutes: int = 0
    default_appointment_duration: int = 30
    slot_interval_minutes: int = 15

    @field_validator("buffer_time_minutes")
    @classmethod
    def validate_buffer(cls, value: int) -> int:
        if value < 0:
            raise ValueError("buffer_time_minutes must not be negative")
        return value

    @field_validator("default_appointment_duration", "slot_interval_minutes")
    @classmethod
    def validate_positive(cls, value: int) -> int:
        """Ensure durations are positive."""
        if value <= 0:
            raise ValueError(f"Value must be greater than zero, got {value}")
        return value

    def to_calendar_settings(self) -> CalendarSettings:
        return CalendarSettings(
            buffer_time_minutes=self.buffer_time_minutes,
            default_appointment_duration=self.default_appointment_duration,
            slot_interval_minutes=self.slot_interval_minutes,
        )


class CacheConfig(BaseModel):
    """Appointment cache behaviour."""
    stale_after_seconds: int = 300
    prefetch_adjacent: bool = True

    @field_validator("stale_after_seconds")
    @classmethod
    def validate_stale_after(cls, value: int) -> int:
        if value <= 0:
            raise ValueError("stale_after_seconds must be greater than zero")
        return value


class ShopHoursConfig(BaseModel):
    """Opening hours for one weekday (0=Sunday ... 6=Saturday)."""
    day_of_week: int
    open_time: Optional[str] = None
    close_time: Optional[str] = None
    is_closed: bool = False

    @field_validator("day_of_week")
    @classmethod
    def validate_day(cls, value: int) -> int:
        """Validate weekday is between 0 and 6."""
        if not 0 <= value <= 6:
            raise ValueError(f"day_of_week must be between 0 and 6, got {value}")
        return value

    @field_validator("open_time", "close_time", mode="before")
    @classmethod
    def validate_time(cls, value: Any) -> Optional[str]:
        """Normalize HH:MM or HH:MM:00 to HH:MM."""
        if value is None:
            return value
        # YAML 1.1 reads unquoted 17:00 as the base-60 integer 1020.
        if isinstance(value, int) and not isinstance(value, bool):
            value = f"{value // 60:02d}:{value % 60:02d}"
        try:
            return str(normalize_time(value))
        except SchedulingError as exc:
            raise ValueError(str(exc)) from exc

    @model_validator(mode="after")
    def validate_hours_order(self) -> "ShopHoursConfig":
        """Ensure an open day opens before it closes."""
        self.to_entry()
        return self

    def to_entry(self) -> ShopHoursEntry:
        try:
            return ShopHoursEntry.from_record(self.model_dump())
        except SchedulingError as exc:
            raise ValueError(str(exc)) from exc


class AppConfig(BaseModel):
    """Application configuration."""
    shop_id: str
    timezone: str = "Europe/Berlin"
    log_level: str = "WARNING"
    calendar: CalendarSettingsConfig = Field(default_factory=CalendarSettingsConfig)
    cache: CacheConfig = Field(default_factory=CacheConfig)
    shop_hours: List[ShopHoursConfig] = Field(default_factory=list)
    appointments_file: Optional[Path] = None

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, value: str) -> str:
        level = value.upper()
        if level not in ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"):
            raise ValueError(f"Unknown log level: {value}")
        return level

    @field_validator("shop_hours")
    @classmethod
    def validate_unique_days(cls, value: List[ShopHoursConfig]) -> List[ShopHoursConfig]:
        """Ensure every weekday appears at most once."""
        seen: set[int] = set()
        for entry in value:
            if entry.day_of_week in seen:
                raise ValueError(
                    f"Duplicate shop hours for {DAYS_OF_WEEK[entry.day_of_week]}"
                )
            seen.add(entry.day_of_week)
        return value

    def to_shop_hours(self) -> List[ShopHoursEntry]:
        """Configured hours, or the default week when none are configured."""
        if not self.shop_hours:
            return default_shop_hours()
        return [entry.to_entry() for entry in self.shop_hours]

    def to_calendar_settings(self) -> CalendarSettings:
        return self.calendar.to_calendar_settings()

    def resolve_appointments_file(self, config_path: Path) -> Optional[Path]:
        """Resolve ``appointments_file`` relative to the config file."""
        if self.appointments_file is None:
            return None
        if self.appointments_file.is_absolute():
            return self.appointments_file
        return config_path.parent / self.appointments_file

    @classmethod
    def load_from_yaml(cls, config_path: Path) -> "AppConfig":
        """
        Load configuration from YAML file.

        Args:
            config_path: Path to the YAML config file

        Returns:
            AppConfig instance

        Raises:
            FileNotFoundError: If config file doesn't exist
            ValueError: If config is invalid
        """
        if not config_path.exists():
            raise FileNotFoundError(
                f"Config file not found: {config_path}\n"
                f"Please create a config.yaml file. See config.example.yaml for reference."
            )

        try:
            with open(config_path, "r", encoding="utf-8") as f:
                data = yaml.safe_load(f) or {}
        except yaml.YAMLError as exc:
            raise ValueError(f"Invalid YAML in {config_path}: {exc}") from exc

        if not isinstance(data, dict):
            raise ValueError("Config file must contain a mapping at the root level.")

        return cls(**data)


def get_default_config_path() -> Path:
    """Get the default configuration file path."""
    # Look for config.yaml in current directory
    current_dir = Path.cwd()
    config_path = current_dir / "config.yaml"

    if not config_path.exists():
        # Try in the project root (parent of the package)
        project_root = Path(__file__).parent.parent
        config_path = project_root / "config.yaml"

    return config_path
