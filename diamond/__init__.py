"""
Diamond configuration client

Discovers the Diamond server fleet, polls one configuration value,
caches it locally for offline resilience and notifies watchers when it
changes.
"""

from .common import (
    ConfigKey,
    ConfigTimeoutError,
    ConfigValue,
    ConfigVersion,
    ConfigWatcher,
    DiamondConfigError,
    DiamondError,
    DiamondSettings,
    FetchFailedError,
    ResolutionFailedError,
    StorageUnavailableError,
    SubscriberState,
    WatcherError,
    load_settings,
)
from .manager import DiamondManager, new_diamond_manager
from .services.config import ConfigFetcher, HttpConfigFetcher

__version__ = "0.1.0"

__all__ = [
    "DiamondManager",
    "new_diamond_manager",
    "DiamondSettings",
    "load_settings",
    "ConfigFetcher",
    "HttpConfigFetcher",
    "ConfigKey",
    "ConfigValue",
    "ConfigVersion",
    "ConfigWatcher",
    "SubscriberState",
    "DiamondError",
    "DiamondConfigError",
    "StorageUnavailableError",
    "ResolutionFailedError",
    "FetchFailedError",
    "ConfigTimeoutError",
    "WatcherError",
]
