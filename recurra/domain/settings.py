"""Application settings with Pydantic validation.

Settings are stored as JSON and validated using Pydantic models.
"""

from pathlib import Path
from typing import Optional

from pydantic import BaseModel, Field, model_validator


class StorageSettings(BaseModel):
    """Storage backend configuration."""

    backend: str = Field(default="sqlite", pattern="^sqlite$")
    db_path: Optional[Path] = None  # None = platform data dir

    model_config = {"validate_assignment": True}


class SchedulerSettings(BaseModel):
    """Periodic job timing.

    The engine only reports success/retry/failure; these values tell the
    scheduler how often to run each job and how long to back off.
    """

    generation_interval_hours: float = Field(default=24.0, gt=0, le=168)
    reminder_interval_hours: float = Field(default=24.0, gt=0, le=168)
    limit_check_interval_hours: float = Field(default=24.0, gt=0, le=168)
    initial_delay_minutes: float = Field(default=0.0, ge=0, le=24 * 60)
    backoff_seconds: float = Field(default=30.0, ge=1.0, le=3600.0)
    max_backoff_seconds: float = Field(default=1800.0, ge=1.0, le=24 * 3600.0)

    model_config = {"validate_assignment": True}

    @model_validator(mode="after")
    def _check_backoff(self) -> "SchedulerSettings":
        if self.max_backoff_seconds < self.backoff_seconds:
            raise ValueError("max_backoff_seconds must be >= backoff_seconds")
        return self


class ReminderSettings(BaseModel):
    """Upcoming-occurrence reminder configuration."""

    enabled: bool = True
    lookahead_days: int = Field(default=3, ge=0, le=3)

    model_config = {"validate_assignment": True}


class LimitSettings(BaseModel):
    """Spending-limit monitoring configuration."""

    enabled: bool = True
    reset_expired_periods: bool = True

    model_config = {"validate_assignment": True}


class LoggingSettings(BaseModel):
    """Logging configuration."""

    level: str = Field(default="INFO", pattern="^(DEBUG|INFO|WARNING|ERROR|CRITICAL)$")


class AppSettings(BaseModel):
    """Application settings with validation.

    All settings are validated using Pydantic. Invalid values will raise
    validation errors when loading from JSON.

    Example:
        >>> settings = AppSettings()
        >>> settings.reminders.lookahead_days = 2
        >>> settings.scheduler.generation_interval_hours = 12
    """

    storage: StorageSettings = Field(default_factory=StorageSettings)
    scheduler: SchedulerSettings = Field(default_factory=SchedulerSettings)
    reminders: ReminderSettings = Field(default_factory=ReminderSettings)
    limits: LimitSettings = Field(default_factory=LimitSettings)
    logging: LoggingSettings = Field(default_factory=LoggingSettings)

    model_config = {
        "validate_assignment": True,  # Validate on attribute assignment
        "extra": "forbid",  # Forbid extra fields
    }
