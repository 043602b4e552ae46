"""Persistence of the user's selections and watch list."""

import json
import logging
from pathlib import Path
from typing import Optional

from config import APP_CONFIG
from models import UserSettings


class SettingsManager:
    """Loads and saves the settings snapshot as a JSON document."""

    def __init__(self, logger: logging.Logger, settings_file: Optional[str] = None):
        """
        Initialize settings manager.

        Args:
            logger: Logger instance
            settings_file: Path of the settings document, defaults to SETTINGS_FILE
        """
        self.logger = logger
        self.settings_file = Path(settings_file or APP_CONFIG.settings_file)

    def load_settings(self) -> Optional[UserSettings]:
        """
        Load the saved settings.

        Returns:
            UserSettings, or None when nothing usable is saved
        """
        if not self.settings_file.exists():
            self.logger.info("Settings file does not exist, starting with defaults")
            return None

        try:
            with open(self.settings_file, 'r', encoding='utf-8') as f:
                content = f.read()
                if not content.strip():
                    self.logger.warning("Settings file is empty")
                    return None

                data = json.loads(content)

        except json.JSONDecodeError as e:
            self.logger.error(f"Error parsing settings file: {e}")
            return None
        except OSError as e:
            self.logger.error(f"Error loading settings: {e}")
            return None

        if not isinstance(data, dict):
            self.logger.error("Settings file does not contain a JSON object")
            return None

        settings = UserSettings.from_dict(data)
        self.logger.info(f"Loaded settings with {len(settings.listen_items)} watch items")
        return settings

    def save_settings(self, settings: UserSettings) -> bool:
        """
        Save the settings snapshot.

        Args:
            settings: Snapshot to write

        Returns:
            True if the file was written
        """
        try:
            self.settings_file.parent.mkdir(parents=True, exist_ok=True)

            # Write next to the target and swap, so a crash never leaves half a file
            tmp_file = self.settings_file.with_name(self.settings_file.name + ".tmp")
            with open(tmp_file, 'w', encoding='utf-8') as f:
                json.dump(settings.to_dict(), f, indent=2, ensure_ascii=False)
            tmp_file.replace(self.settings_file)

            self.logger.debug("Saved settings successfully")
            return True

        except (OSError, TypeError, ValueError) as e:
            self.logger.error(f"Error saving settings: {e}")
            return False

    def clear_settings(self) -> bool:
        """
        Remove the saved settings.

        Returns:
            True if nothing is saved afterwards
        """
        try:
            self.settings_file.unlink(missing_ok=True)
            self.logger.info("Cleared saved settings")
            return True
        except OSError as e:
            self.logger.error(f"Error clearing settings: {e}")
            return False
