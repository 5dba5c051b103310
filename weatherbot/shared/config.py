"""Configuration loading utilities.

Settings are loaded from a YAML file into an immutable ``Settings`` snapshot.
Long-running services keep the snapshot in a ``SettingsCell`` and read
``cell.current()`` at the point of use, so a reload (SIGHUP) swaps the whole
snapshot without restarting the relay.
"""

import logging
import os
import threading
from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional, Union

import yaml
from dotenv import load_dotenv

from .database import DBConfig, StorageConfig
from .errors import ConfigError
from .mqtt import MQTTConfig, TLSConfig

logger = logging.getLogger(__name__)

CONFIG_ENV_VAR = "WEATHERBOT_CONFIG"
DEFAULT_CONFIG_NAME = "weatherbot.yaml"


@dataclass(frozen=True)
class TelegramConfig:
    """Telegram Bot API settings."""
    token: str = field(default="", repr=False)
    api_url: str = "https://api.telegram.org"
    poll_timeout: int = 30
    request_timeout: float = 10.0
    max_concurrency: int = 1

    @classmethod
    def from_dict(cls, data: dict) -> "TelegramConfig":
        return cls(
            token=os.getenv("TELEGRAM_TOKEN") or data.get("token", ""),
            api_url=data.get("api_url", "https://api.telegram.org").rstrip("/"),
            poll_timeout=int(data.get("poll_timeout", 30)),
            request_timeout=float(data.get("request_timeout", 10.0)),
            max_concurrency=int(data.get("max_concurrency", 1)),
        )


@dataclass(frozen=True)
class APIConfig:
    """REST API listen address."""
    host: str = "127.0.0.1"
    port: int = 8080

    @classmethod
    def from_dict(cls, data: dict) -> "APIConfig":
        return cls(
            host=data.get("host", "127.0.0.1"),
            port=int(data.get("port", 8080)),
        )


@dataclass(frozen=True)
class Settings:
    """Immutable configuration snapshot."""
    mqtt: MQTTConfig = field(default_factory=MQTTConfig)
    tls: TLSConfig = field(default_factory=TLSConfig)
    telegram: TelegramConfig = field(default_factory=TelegramConfig)
    storage: StorageConfig = field(default_factory=StorageConfig)
    api: APIConfig = field(default_factory=APIConfig)
    log_level: str = "INFO"

    @classmethod
    def from_dict(cls, data: dict) -> "Settings":
        """Create settings from a parsed configuration dictionary."""
        try:
            storage_data = dict(data.get("storage") or {})
            # Top-level db_path is accepted as a shortcut for storage.path
            if "db_path" in data and "path" not in storage_data:
                storage_data["path"] = data["db_path"]

            return cls(
                mqtt=MQTTConfig.from_dict(data.get("mqtt") or {}),
                tls=TLSConfig.from_dict(data.get("tls") or {}),
                telegram=TelegramConfig.from_dict(data.get("telegram") or {}),
                storage=StorageConfig.from_dict(storage_data),
                api=APIConfig.from_dict(data.get("api") or {}),
                log_level=str(data.get("log_level", "INFO")).upper(),
            )
        except (TypeError, ValueError, AttributeError) as e:
            raise ConfigError(f"Invalid configuration: {e}") from e


def get_config_path(
    config_name: Optional[str] = None,
    config_dir: Optional[Union[str, Path]] = None,
) -> Path:
    """Get path to the configuration file.

    Args:
        config_name: Name of config file (without path). Defaults to
            weatherbot.yaml.
        config_dir: Directory containing config files. If None, uses
            the 'config' directory at the repo root.

    Returns:
        Path to the configuration file. WEATHERBOT_CONFIG, when set,
        overrides the default location.
    """
    if config_name is None and config_dir is None:
        env_path = os.getenv(CONFIG_ENV_VAR)
        if env_path:
            return Path(env_path)

    if config_dir is None:
        # Default to repo_root/config/
        package_dir = Path(__file__).parent.parent.parent
        config_dir = package_dir / "config"

    return Path(config_dir) / (config_name or DEFAULT_CONFIG_NAME)


def load_yaml_config(
    config_path: Optional[Union[str, Path]] = None,
    load_env: bool = True,
) -> dict:
    """Load YAML configuration file.

    Args:
        config_path: Path to config file. If None, uses get_config_path().
        load_env: Whether to load .env file first.

    Returns:
        Configuration dictionary.

    Raises:
        ConfigError: If the file doesn't exist or is not valid YAML.
    """
    if load_env:
        load_dotenv()

    config_path = Path(config_path) if config_path else get_config_path()

    if not config_path.exists():
        raise ConfigError(f"Config file not found: {config_path}")

    try:
        with open(config_path, "r") as f:
            data = yaml.safe_load(f) or {}
    except yaml.YAMLError as e:
        raise ConfigError(f"Invalid YAML in {config_path}: {e}") from e

    if not isinstance(data, dict):
        raise ConfigError(f"Config file {config_path} must contain a mapping")
    return data


def load_settings(
    config_path: Optional[Union[str, Path]] = None,
    load_env: bool = True,
) -> Settings:
    """Load a settings snapshot from YAML and environment variables."""
    return Settings.from_dict(load_yaml_config(config_path, load_env=load_env))


class SettingsCell:
    """Holds the current settings snapshot.

    Replacement is a single swap under a lock; readers never observe a
    partially updated snapshot.
    """

    def __init__(self, settings: Settings, config_path: Optional[Union[str, Path]] = None):
        self._settings = settings
        self._config_path = config_path
        self._lock = threading.Lock()

    def current(self) -> Settings:
        with self._lock:
            return self._settings

    def replace(self, settings: Settings) -> Settings:
        """Swap in a new snapshot and return the previous one."""
        with self._lock:
            previous, self._settings = self._settings, settings
        return previous

    def reload(self) -> Settings:
        """Re-read the configuration file and swap in the result.

        Returns:
            The previous snapshot.

        Raises:
            ConfigError: If the file cannot be loaded; the current snapshot
                is kept.
        """
        settings = load_settings(self._config_path)
        logger.info(f"Reloaded configuration from {self._config_path or get_config_path()}")
        return self.replace(settings)
