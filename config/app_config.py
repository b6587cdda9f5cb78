"""
Configuration management for CalendarHub.

Handles loading, validation, and saving of application configuration.
"""

import copy
import json
import logging
import os
from collections.abc import Mapping
from functools import lru_cache
from pathlib import Path
from types import MappingProxyType
from typing import Any, Dict

from config.constants import MAX_FETCH_WINDOW_MONTHS


APP_DIR_NAME = ".calendarhub"


def get_app_dir() -> Path:
    """Return the root directory for CalendarHub user data."""
    return Path.home() / APP_DIR_NAME


logger = logging.getLogger("calendarhub.config")


@lru_cache(maxsize=1)
def get_default_config_version() -> str:
    """Return the application version defined in the default config."""
    default_config_path = Path(__file__).parent / "default_config.json"

    try:
        with open(default_config_path, "r", encoding="utf-8") as config_file:
            data = json.load(config_file)
    except FileNotFoundError:
        logger.error("Default configuration file not found: %s", default_config_path)
        return "0.0.0"
    except json.JSONDecodeError as exc:
        logger.error(
            "Invalid JSON in default configuration file %s: %s",
            default_config_path,
            exc
        )
        return "0.0.0"

    version = data.get("version")
    if isinstance(version, str) and version.strip():
        return version.strip()

    logger.warning(
        "Default configuration missing valid 'version'; falling back to 0.0.0"
    )
    return "0.0.0"


class ConfigManager:
    """Manages application configuration with validation and persistence."""

    def __init__(self):
        """Initialize the configuration manager."""
        self.default_config_path = (
            Path(__file__).parent / "default_config.json"
        )
        self.user_config_dir = get_app_dir()
        self.user_config_path = self.user_config_dir / "app_config.json"
        self._config: Dict[str, Any] = {}
        self._default_config: Dict[str, Any] = {}
        self._load_config()

    def _load_config(self) -> None:
        """Load configuration from user config or default config."""
        try:
            logger.info(
                f"Loading default configuration from "
                f"{self.default_config_path}"
            )
            with open(self.default_config_path, 'r', encoding='utf-8') as f:
                self._default_config = json.load(f)

            user_config: Dict[str, Any] = {}
            if self.user_config_path.exists():
                logger.info(
                    f"Loading user configuration from "
                    f"{self.user_config_path}"
                )
                with open(self.user_config_path, 'r', encoding='utf-8') as f:
                    user_config = json.load(f)

            self._config = self._deep_merge(self._default_config, user_config)

            self._validate_config()
            logger.info("Configuration loaded and validated successfully")

        except FileNotFoundError as e:
            logger.error(f"Configuration file not found: {e}")
            raise
        except json.JSONDecodeError as e:
            logger.error(f"Invalid JSON in configuration file: {e}")
            raise
        except Exception as e:
            logger.error(f"Error loading configuration: {e}")
            raise

    def _validate_config(self) -> None:
        """Validate required configuration fields and types."""
        required_fields = {
            "version": str,
            "calendar": dict,
            "http": dict,
            "logging": dict,
            "providers": dict,
        }

        for field, expected_type in required_fields.items():
            if field not in self._config:
                raise ValueError(
                    f"Missing required configuration field: {field}"
                )
            if not isinstance(self._config[field], expected_type):
                raise TypeError(
                    f"Configuration field '{field}' must be of type "
                    f"{expected_type.__name__}, got "
                    f"{type(self._config[field]).__name__}"
                )

        self._validate_calendar_config()
        self._validate_http_config()
        self._validate_providers_config()

    def _validate_calendar_config(self) -> None:
        """Validate calendar synchronization configuration."""
        calendar_config = self._config["calendar"]
        for field in ("sync_interval_minutes", "fetch_window_months"):
            if field not in calendar_config:
                raise ValueError(f"Missing required field: calendar.{field}")

        interval = calendar_config["sync_interval_minutes"]
        if isinstance(interval, bool) or not isinstance(interval, int) or interval < 1:
            raise ValueError(
                "calendar.sync_interval_minutes must be a positive integer"
            )

        window = calendar_config["fetch_window_months"]
        if (isinstance(window, bool) or not isinstance(window, int) or
                not (1 <= window <= MAX_FETCH_WINDOW_MONTHS)):
            raise ValueError(
                "calendar.fetch_window_months must be an integer between "
                f"1 and {MAX_FETCH_WINDOW_MONTHS}"
            )

        if "auto_sync_enabled" in calendar_config:
            if not isinstance(calendar_config["auto_sync_enabled"], bool):
                raise TypeError("calendar.auto_sync_enabled must be a boolean")

        retry_config = calendar_config.get("retry")
        if retry_config is not None:
            if not isinstance(retry_config, dict):
                raise TypeError("calendar.retry must be a dictionary")
            max_attempts = retry_config.get("max_attempts", 0)
            if not isinstance(max_attempts, int) or max_attempts < 0:
                raise ValueError(
                    "calendar.retry.max_attempts must be a non-negative integer"
                )

    def _validate_http_config(self) -> None:
        """Validate HTTP client configuration."""
        http_config = self._config["http"]

        if "max_retries" in http_config:
            max_retries = http_config["max_retries"]
            if not isinstance(max_retries, int) or max_retries < 0:
                raise ValueError("http.max_retries must be a non-negative integer")

        for field in ("timeout", "base_delay"):
            if field in http_config:
                value = http_config[field]
                if not isinstance(value, (int, float)) or value < 0:
                    raise ValueError(f"http.{field} must be a non-negative number")

    def _validate_providers_config(self) -> None:
        """Validate per-provider credential sections."""
        for name, provider_config in self._config["providers"].items():
            if not isinstance(provider_config, dict):
                raise TypeError(f"providers.{name} must be a dictionary")
            if "enabled" in provider_config and not isinstance(
                provider_config["enabled"], bool
            ):
                raise TypeError(f"providers.{name}.enabled must be a boolean")

    def get(self, key: str, default: Any = None) -> Any:
        """
        Get a configuration value by key.

        Supports nested keys using dot notation (e.g., "calendar.fetch_window_months").

        Args:
            key: Configuration key (supports dot notation)
            default: Default value if key is not found

        Returns:
            Configuration value or default
        """
        keys = key.split('.')
        value = self._config

        for k in keys:
            if isinstance(value, dict) and k in value:
                value = value[k]
            else:
                return default

        return value

    def set(self, key: str, value: Any) -> None:
        """
        Set a configuration value by key.

        Supports nested keys using dot notation (e.g., "calendar.auto_sync_enabled").

        Args:
            key: Configuration key (supports dot notation)
            value: Value to set
        """
        keys = key.split('.')
        config = self._config

        for k in keys[:-1]:
            if k not in config:
                config[k] = {}
            config = config[k]

        config[keys[-1]] = value

    def save(self) -> None:
        """Save the current configuration to the user config file."""
        try:
            self.user_config_dir.mkdir(parents=True, exist_ok=True)

            self._validate_config()

            with open(self.user_config_path, 'w', encoding='utf-8') as f:
                json.dump(self._config, f, indent=2, ensure_ascii=False)

            # Provider credentials live in this file
            try:
                os.chmod(self.user_config_path, 0o600)
                logger.debug("Set secure permissions for config file")
            except OSError as e:
                logger.warning(f"Could not set file permissions: {e}")

            logger.info(f"Configuration saved to {self.user_config_path}")

        except Exception as e:
            logger.error(f"Error saving configuration: {e}")
            raise

    def get_all(self) -> Dict[str, Any]:
        """
        Get the entire configuration dictionary.

        Returns:
            Complete configuration dictionary
        """
        return self._clone_value(self._config)

    def reload(self) -> None:
        """Reload configuration from disk."""
        self._load_config()

    def get_defaults(self) -> Mapping[str, Any]:
        """Return an immutable view of the default configuration."""
        return self._deep_freeze(self._default_config)

    @classmethod
    def _deep_merge(cls, base: Dict[str, Any], override: Dict[str, Any]) -> Dict[str, Any]:
        """Recursively merge two dictionaries without mutating inputs."""
        result: Dict[str, Any] = {}

        for key, base_value in base.items():
            if key in override:
                override_value = override[key]
                if isinstance(base_value, dict) and isinstance(override_value, dict):
                    result[key] = cls._deep_merge(base_value, override_value)
                else:
                    result[key] = cls._clone_value(override_value)
            else:
                result[key] = cls._clone_value(base_value)

        for key, override_value in override.items():
            if key not in base:
                result[key] = cls._clone_value(override_value)

        return result

    @classmethod
    def _clone_value(cls, value: Any) -> Any:
        """Return a deep copy of supported container types."""
        if isinstance(value, dict):
            return {k: cls._clone_value(v) for k, v in value.items()}
        if isinstance(value, list):
            return [cls._clone_value(v) for v in value]
        return copy.deepcopy(value)

    @classmethod
    def _deep_freeze(cls, value: Any) -> Any:
        """Create an immutable representation of nested configuration data."""
        if isinstance(value, dict):
            frozen = {k: cls._deep_freeze(v) for k, v in value.items()}
            return MappingProxyType(frozen)
        if isinstance(value, list):
            return tuple(cls._deep_freeze(v) for v in value)
        return value
