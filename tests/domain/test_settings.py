"""Tests for application settings."""

import pytest
from pathlib import Path
from pydantic import ValidationError

from recurra.domain.settings import (
    AppSettings,
    LimitSettings,
    ReminderSettings,
    SchedulerSettings,
    StorageSettings,
)


class TestAppSettings:
    """Tests for AppSettings defaults and validation."""

    def test_defaults(self):
        settings = AppSettings()

        assert settings.storage.backend == "sqlite"
        assert settings.storage.db_path is None
        assert settings.scheduler.generation_interval_hours == 24
        assert settings.reminders.enabled
        assert settings.reminders.lookahead_days == 3
        assert settings.limits.reset_expired_periods
        assert settings.logging.level == "INFO"

    def test_extra_fields_forbidden(self):
        with pytest.raises(ValidationError):
            AppSettings.model_validate({"theme": {"mode": "dark"}})

    def test_nested_assignment_is_validated(self):
        settings = AppSettings()

        with pytest.raises(ValidationError):
            settings.reminders.lookahead_days = 4

    def test_invalid_log_level(self):
        with pytest.raises(ValidationError):
            AppSettings.model_validate({"logging": {"level": "LOUD"}})

    def test_db_path_parsed_from_json(self):
        settings = AppSettings.model_validate({"storage": {"db_path": "/tmp/ledger.db"}})

        assert settings.storage.db_path == Path("/tmp/ledger.db")


class TestSectionSettings:
    """Tests for individual settings sections."""

    def test_only_sqlite_backend(self):
        with pytest.raises(ValidationError):
            StorageSettings(backend="postgres")

    @pytest.mark.parametrize("days", [0, 1, 2, 3])
    def test_lookahead_range(self, days):
        assert ReminderSettings(lookahead_days=days).lookahead_days == days

    def test_negative_lookahead_rejected(self):
        with pytest.raises(ValidationError):
            ReminderSettings(lookahead_days=-1)

    def test_interval_must_be_positive(self):
        with pytest.raises(ValidationError):
            SchedulerSettings(generation_interval_hours=0)

    def test_max_backoff_not_below_backoff(self):
        with pytest.raises(ValidationError):
            SchedulerSettings(backoff_seconds=120, max_backoff_seconds=60)

    def test_limit_settings(self):
        settings = LimitSettings(enabled=False)

        assert not settings.enabled
        assert settings.reset_expired_periods
