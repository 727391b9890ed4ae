"""
Common Utilities

Shared modules used across all subsystems:
- config.py - Client settings
- models.py - Domain types (ConfigKey, ConfigValue, lifecycle enums)
- exceptions.py - Custom exception classes
- logging_setup.py - Structured logging setup
- scheduler.py - Fixed-interval scheduler
- http.py - Shared HTTP client factory
"""

from .config import DiamondSettings, load_settings
from .models import (
    ConfigKey,
    ConfigValue,
    ConfigVersion,
    ConfigWatcher,
    PollPhase,
    SubscriberState,
    content_md5,
)
from .exceptions import (
    DiamondError,
    DiamondConfigError,
    StorageUnavailableError,
    ResolutionFailedError,
    FetchFailedError,
    ConfigTimeoutError,
    WatcherError,
)
from .logging_setup import (
    setup_logging,
    get_service_logger,
    log_fetch,
    log_config_change,
)
from .scheduler import ScheduledLoop
from .http import create_http_client

__all__ = [
    # Config
    "DiamondSettings",
    "load_settings",
    # Models
    "ConfigKey",
    "ConfigValue",
    "ConfigVersion",
    "ConfigWatcher",
    "PollPhase",
    "SubscriberState",
    "content_md5",
    # Exceptions
    "DiamondError",
    "DiamondConfigError",
    "StorageUnavailableError",
    "ResolutionFailedError",
    "FetchFailedError",
    "ConfigTimeoutError",
    "WatcherError",
    # Logging
    "setup_logging",
    "get_service_logger",
    "log_fetch",
    "log_config_change",
    # Scheduling / transport
    "ScheduledLoop",
    "create_http_client",
]
