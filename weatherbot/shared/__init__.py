"""Shared utilities for weatherbot services."""

from .models import Reading, RawTelemetry, Subscriber
from .database import DBConfig, StorageConfig, open_storage
from .config import Settings, SettingsCell, load_settings, get_config_path
from .mqtt import MQTTConfig, TLSConfig
from .logging import setup_logging

__all__ = [
    "Reading",
    "RawTelemetry",
    "Subscriber",
    "DBConfig",
    "StorageConfig",
    "open_storage",
    "Settings",
    "SettingsCell",
    "load_settings",
    "get_config_path",
    "MQTTConfig",
    "TLSConfig",
    "setup_logging",
]
