"""Core components of the plugin runtime."""

from .config import RuntimeConfig, get_config, reload_config
from .event_bus import Event, EventBus
from .logger import setup_logger, get_logger
from .settings import SettingsStore
from .storage import Storage, MemoryStorage, SQLiteStorage, init_storage

__all__ = [
    "RuntimeConfig",
    "get_config",
    "reload_config",
    "Event",
    "EventBus",
    "setup_logger",
    "get_logger",
    "SettingsStore",
    "Storage",
    "MemoryStorage",
    "SQLiteStorage",
    "init_storage",
]
