"""Per-user locations and the JSON settings file."""

import logging
from pathlib import Path
from typing import Optional

import platformdirs
from pydantic import ValidationError

from recurra.domain.settings import AppSettings

logger = logging.getLogger(__name__)

APP_NAME = "Recurra"
DB_FILENAME = "recurra.db"


def default_data_dir() -> Path:
    """Per-user directory holding the ledger database."""
    return Path(platformdirs.user_data_dir(APP_NAME, APP_NAME))


def default_config_path() -> Path:
    return Path(platformdirs.user_config_dir(APP_NAME, APP_NAME)) / "settings.json"


class SettingsStore:
    """Reads and writes AppSettings as pretty-printed JSON.

    A missing or unreadable file never stops the engine: ``load`` falls
    back to defaults and logs why.

    Example:
        >>> store = SettingsStore()
        >>> settings = store.load()
        >>> settings.reminders.lookahead_days = 1
        >>> store.save(settings)
    """

    def __init__(self, path: Optional[Path] = None):
        self._path = path or default_config_path()

    @property
    def path(self) -> Path:
        return self._path

    def exists(self) -> bool:
        return self._path.is_file()

    def load(self) -> AppSettings:
        """Load settings, or defaults if the file is absent or invalid."""
        if not self.exists():
            logger.debug(f"No settings at {self._path}, using defaults")
            return AppSettings()

        try:
            return AppSettings.model_validate_json(self._path.read_text())
        except (OSError, ValidationError) as e:
            logger.warning(f"Ignoring unusable settings file {self._path}: {e}")
            return AppSettings()

    def save(self, settings: AppSettings) -> None:
        self._path.parent.mkdir(parents=True, exist_ok=True)
        self._path.write_text(settings.model_dump_json(indent=2))
        logger.debug(f"Saved settings to {self._path}")

    def delete(self) -> bool:
        """Remove the settings file. Returns False if there was none."""
        try:
            self._path.unlink()
        except FileNotFoundError:
            return False
        return True

    def resolve_db_path(self, settings: AppSettings) -> Path:
        """Configured database path, else the per-user data directory."""
        return settings.storage.db_path or default_data_dir() / DB_FILENAME
