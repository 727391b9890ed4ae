"""
Config Service - Configuration Polling

Responsibilities:
- Fetch the configuration value from the resolved servers (every 5 seconds)
- Fail over between servers within a poll
- Detect changes by fingerprint and persist them locally
- Notify registered watchers of changes
"""

from .poller import ConfigPollLoop
from .sync import ConfigFetcher, HttpConfigFetcher, server_base_url

__all__ = ["ConfigPollLoop", "ConfigFetcher", "HttpConfigFetcher", "server_base_url"]
