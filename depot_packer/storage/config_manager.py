"""
Manages loading, validation, and migration of the INI configuration file.
"""

import configparser
import logging
import os
import sys
from pathlib import Path
from typing import Any

from pydantic import ValidationError

from depot_packer.exceptions import ConfigurationError
from depot_packer.models.config import AppConfig

log = logging.getLogger(__name__)

APP_DIR_NAME = "depot-packer"
CONFIG_FILE_NAME = "config.ini"


def default_config_dir() -> Path:
    """`%APPDATA%/depot-packer` on Windows, `$XDG_CONFIG_HOME/depot-packer` elsewhere."""
    if sys.platform == "win32":
        base = os.environ.get("APPDATA") or Path.home() / "AppData" / "Roaming"
    else:
        base = os.environ.get("XDG_CONFIG_HOME") or Path.home() / ".config"
    return Path(base) / APP_DIR_NAME


def default_config_path() -> Path:
    return default_config_dir() / CONFIG_FILE_NAME


def _ini_value(value: Any) -> str:
    if isinstance(value, bool):
        return "true" if value else "false"
    # configparser uses % for interpolation, so we must escape it
    return str(value).replace("%", "%%")


class ConfigManager:
    """Handles all operations related to the application's INI config file."""

    def __init__(self, config_file_path: Path):
        self.config_file_path = config_file_path
        self._parser = configparser.ConfigParser()

    def load_config(self, cli_options: dict[str, Any] | None = None) -> AppConfig:
        """
        Loads configuration from the INI file, applies CLI overrides, and validates it.

        Args:
            cli_options: A dictionary of options provided via the command line.

        Returns:
            A validated AppConfig object.

        Raises:
            ConfigurationError: If the config file is missing, invalid, or validation
            fails.
        """
        if not self.config_file_path.is_file():
            raise ConfigurationError(
                f"Configuration file not found at '{self.config_file_path}'. "
                "Please run 'depot-packer init' first."
            )

        try:
            self._parser.read(self.config_file_path, encoding="utf-8")
        except configparser.Error as e:
            raise ConfigurationError(f"Error parsing configuration file: {e}") from e

        if self._migrate_if_needed():
            log.info(
                "[yellow]Configuration file was updated with new default values."
                "[/yellow]"
            )

        try:
            config_from_file = self._get_config_as_dict()
        except (ValueError, configparser.Error) as e:
            raise ConfigurationError(f"Invalid value in configuration file: {e}") from e

        if cli_options:
            config_from_file.update(
                {key: value for key, value in cli_options.items() if value is not None}
            )

        try:
            config_dir = self.config_file_path.parent
            return AppConfig(**config_from_file, config_path=str(config_dir))
        except ValidationError as e:
            raise ConfigurationError(f"Configuration validation failed:\n{e}") from e

    def save_new_config(self, settings: dict[str, Any]) -> None:
        """
        Creates and saves a new configuration file.

        Args:
            settings: A dictionary of settings to save; missing keys get defaults.

        Raises:
            ConfigurationError: If the settings are invalid or cannot be written.
        """
        try:
            validated = AppConfig(**settings)
        except ValidationError as e:
            raise ConfigurationError(f"Configuration validation failed:\n{e}") from e

        config = configparser.ConfigParser()
        config["DEFAULT"] = {
            key: _ini_value(getattr(validated, key))
            for key in sorted(AppConfig.get_ini_keys())
        }

        try:
            self.config_file_path.parent.mkdir(parents=True, exist_ok=True)
            with open(self.config_file_path, "w", encoding="utf-8") as configfile:
                config.write(configfile)
        except OSError as e:
            raise ConfigurationError(f"Failed to save configuration file: {e}") from e

    def _get_config_as_dict(self) -> dict[str, Any]:
        """Reads the 'DEFAULT' section of the INI file into a dictionary."""
        section = self._parser["DEFAULT"]
        defaults = AppConfig()
        return {
            "downloader_path": section.get("downloader_path", defaults.downloader_path),
            "archiver_path": section.get("archiver_path", defaults.archiver_path),
            "output_dir": section.get("output_dir", defaults.output_dir),
            "skip_compression": section.getboolean("skip_compression", False),
            "compression_password_enabled": section.getboolean(
                "compression_password_enabled", False
            ),
            "compression_password": section.get("compression_password", ""),
            "default_qr_login": section.getboolean("default_qr_login", False),
            "log_line_cap": section.getint("log_line_cap", defaults.log_line_cap),
            "log_trim_margin": section.getint(
                "log_trim_margin", defaults.log_trim_margin
            ),
            "console_flush_interval_ms": section.getint(
                "console_flush_interval_ms", defaults.console_flush_interval_ms
            ),
        }

    def _migrate_if_needed(self) -> bool:
        """Adds missing default values to an existing config file."""
        defaults = AppConfig()
        needs_saving = False

        config_section = self._parser["DEFAULT"]

        for key in sorted(AppConfig.get_ini_keys()):
            if key not in config_section:
                config_section[key] = _ini_value(getattr(defaults, key))
                needs_saving = True
                log.debug(
                    f"Migrating config: added missing key '{key}' with "
                    f"value '{config_section[key]}'."
                )

        if needs_saving:
            try:
                with open(self.config_file_path, "w", encoding="utf-8") as f:
                    self._parser.write(f)
            except OSError as e:
                log.error(f"Could not save migrated configuration file: {e}")
                return False

        return needs_saving
