"""
Manages loading, saving, and validating the application configuration using Pydantic.

This module defines the configuration schema as a Pydantic model (`Settings`)
and provides a manager class (`ConfigManager`) to handle persistence to a JSON file.
"""

import json
import time
import logging
from pathlib import Path
from typing import List, Optional

from pydantic import BaseModel, Field, field_validator, ValidationError

from .constants import (
    AUDIO_QUALITY_TIERS, DEFAULT_AUDIO_TIER, METADATA_TIMEOUT_SECONDS, ITEM_TIMEOUT_SECONDS,
    INTER_ITEM_COOLDOWN_SECONDS, PLAYLIST_ITEM_LIMIT
)
from .jobs import MediaMode


def _default_download_path() -> Path:
    downloads = Path.home() / 'Downloads'
    return downloads if downloads.is_dir() else Path.home()


class Settings(BaseModel):
    """
    Defines the application's configuration schema using Pydantic.

    This class provides type hints, default values, and validation logic for all
    configuration settings.
    """
    download_base_path: Path = Field(default_factory=_default_download_path)
    default_mode: MediaMode = MediaMode.VIDEO
    audio_quality: str = DEFAULT_AUDIO_TIER
    embed_thumbnail: bool = True
    metadata_timeout: int = Field(default=METADATA_TIMEOUT_SECONDS, ge=5, le=300)
    item_timeout: int = Field(default=ITEM_TIMEOUT_SECONDS, ge=30, le=7200)
    cooldown_seconds: float = Field(default=INTER_ITEM_COOLDOWN_SECONDS, ge=0, le=10)
    playlist_item_limit: int = Field(default=PLAYLIST_ITEM_LIMIT, ge=1, le=500)
    concurrent_fragments: int = Field(default=16, ge=1, le=32)
    ffmpeg_location: Optional[Path] = None
    log_level: str = 'INFO'
    check_for_updates_on_startup: bool = True
    skipped_update_version: str = ''

    @field_validator('log_level')
    @classmethod
    def validate_log_level(cls, value: str) -> str:
        """Ensures log_level is a valid logging level string."""
        upper_value = value.upper()
        allowed_levels: List[str] = ['DEBUG', 'INFO', 'WARNING', 'ERROR', 'CRITICAL']
        if upper_value not in allowed_levels:
            raise ValueError(f"'{value}' is not a valid log level. Must be one of {allowed_levels}.")
        return upper_value

    @field_validator('audio_quality')
    @classmethod
    def validate_audio_quality(cls, value: str) -> str:
        if value not in AUDIO_QUALITY_TIERS:
            raise ValueError(f"'{value}' is not an audio quality tier. Must be one of {list(AUDIO_QUALITY_TIERS)}.")
        return value

    @field_validator('download_base_path', mode='before')
    @classmethod
    def validate_download_base_path(cls, value) -> Path:
        """Falls back to the default folder when the configured one is missing."""
        path = Path(value)
        if not path.is_dir():
            return _default_download_path()
        return path


class ConfigManager:
    """Handles loading and saving the application configuration file."""
    def __init__(self, config_path: Path):
        """
        Initializes the ConfigManager.

        Args:
            config_path: The path to the configuration file.
        """
        self.config_path = config_path
        self.logger = logging.getLogger(__name__)
        # Ensure the configuration directory exists
        self.config_path.parent.mkdir(parents=True, exist_ok=True)

    def load(self) -> Settings:
        """
        Loads config from file, merges with defaults, validates, and returns it.

        If the file doesn't exist, is invalid, or an error occurs, a default
        configuration is returned. Invalid files are backed up.

        Returns:
            A validated Settings object.
        """
        if not self.config_path.exists():
            self.logger.info("Config file not found. Creating with default settings.")
            default_settings = Settings()
            self.save(default_settings)
            return default_settings

        try:
            config_data = json.loads(self.config_path.read_text(encoding='utf-8'))
            return Settings.model_validate(config_data)
        except (ValidationError, json.JSONDecodeError, IOError) as e:
            self.logger.error(f"Error loading {self.config_path}: {e}. Backing up and using defaults.")
            try:
                backup_path = self.config_path.with_suffix(f".{int(time.time())}.bak")
                self.config_path.rename(backup_path)
                self.logger.info(f"Backed up corrupted config to {backup_path}")
            except IOError as backup_e:
                self.logger.error(f"Could not back up corrupted config file: {backup_e}")
            return Settings()

    def save(self, settings: Settings):
        """
        Saves the provided settings object to the config file.

        Args:
            settings: The Settings object to save.
        """
        try:
            self.config_path.write_text(settings.model_dump_json(indent=4), encoding='utf-8')
        except IOError as e:
            self.logger.error(f"Error saving config file to {self.config_path}: {e}")
