"""
Client Settings

Tunables for the synchronization engine. Defaults match the public
Diamond deployment; every value can be overridden per manager instance,
from a YAML file or from the environment.
"""

import os
from dataclasses import dataclass, fields, replace
from pathlib import Path
from typing import Any

import yaml

from .exceptions import DiamondConfigError, StorageUnavailableError
from .logging_setup import get_service_logger

logger = get_service_logger("settings")

DEFAULT_ADDRESS_ENDPOINT = "http://a.b.c:8080/diamond-server/diamond"
DEFAULT_CONFIG_PATH = "/diamond-server/config.co"

# Settings that must be strictly positive
_POSITIVE_FIELDS = (
    "server_address_refresh_interval_s",
    "config_poll_interval_s",
    "http_connect_timeout_s",
    "http_request_timeout_s",
    "initial_resolve_timeout_s",
    "snapshot_max_versions",
)


@dataclass(frozen=True)
class DiamondSettings:
    """Runtime configuration for one DiamondManager"""
    address_endpoint: str = DEFAULT_ADDRESS_ENDPOINT
    product: str = "diamond"
    config_root: Path | None = None  # None = <home>/.<product>

    # Intervals
    server_address_refresh_interval_s: float = 300.0
    config_poll_interval_s: float = 5.0

    # HTTP transport
    http_connect_timeout_s: float = 2.0
    http_request_timeout_s: float = 5.0
    http_max_retries: int = 10

    # Config servers
    server_port: int = 8080
    config_path: str = DEFAULT_CONFIG_PATH

    # Startup / resilience
    initial_resolve_timeout_s: float = 30.0
    fallback_to_persisted_addresses: bool = True
    restart_cooldown_s: float = 1.0

    # Point-in-time snapshots kept per key
    snapshot_max_versions: int = 5

    def __post_init__(self) -> None:
        for name in _POSITIVE_FIELDS:
            if getattr(self, name) <= 0:
                raise DiamondConfigError(f"{name} must be positive")
        if self.http_max_retries < 0:
            raise DiamondConfigError("http_max_retries must not be negative")
        if self.restart_cooldown_s < 0:
            raise DiamondConfigError("restart_cooldown_s must not be negative")
        if not self.address_endpoint.startswith(("http://", "https://")):
            raise DiamondConfigError(f"Invalid address endpoint: {self.address_endpoint}")

    def resolve_root(self) -> Path:
        """Directory holding ServerAddress, data/ and snapshot/"""
        if self.config_root is not None:
            return Path(self.config_root).expanduser()
        try:
            home = Path.home()
        except (KeyError, RuntimeError) as e:
            raise StorageUnavailableError(f"Cannot resolve home directory: {e}") from e
        return home / f".{self.product}"

    def with_overrides(self, **overrides: Any) -> "DiamondSettings":
        return replace(self, **overrides)


def _find_settings_path() -> Path | None:
    """Find settings file"""
    env_path = os.environ.get("DIAMOND_CONFIG")
    possible_paths = [
        Path(env_path) if env_path else None,
        Path("~/.diamond/config.yaml").expanduser(),
        Path("/etc/diamond/config.yaml"),
    ]

    for path in possible_paths:
        if path is not None and path.exists():
            return path

    return None


def _load_yaml(path: Path) -> dict:
    """Load settings from YAML file"""
    try:
        with open(path, "r", encoding="utf-8") as f:
            data = yaml.safe_load(f) or {}
    except FileNotFoundError:
        logger.warning(f"Settings file not found: {path}")
        return {}
    except (yaml.YAMLError, OSError) as e:
        logger.error(f"Error parsing settings {path}: {e}")
        return {}

    if not isinstance(data, dict):
        logger.error(f"Settings file {path} is not a mapping")
        return {}

    # Accept both a flat file and one nested under "diamond:"
    nested = data.get("diamond")
    if isinstance(nested, dict):
        return nested
    return data


def load_settings(path: str | Path | None = None, **overrides: Any) -> DiamondSettings:
    """
    Build settings from file, environment and explicit overrides.

    Precedence (lowest to highest): defaults, YAML file, environment
    variables, keyword overrides.

    Args:
        path: Settings file. Searched in the usual locations when omitted.
        **overrides: Field values that win over everything else

    Returns:
        Validated DiamondSettings
    """
    settings_path = Path(path) if path else _find_settings_path()
    data = _load_yaml(settings_path) if settings_path else {}

    known = {f.name for f in fields(DiamondSettings)}
    unknown = set(data) - known
    if unknown:
        logger.warning(f"Ignoring unknown settings: {sorted(unknown)}")
    values = {k: v for k, v in data.items() if k in known}

    if os.environ.get("DIAMOND_ADDRESS_ENDPOINT"):
        values["address_endpoint"] = os.environ["DIAMOND_ADDRESS_ENDPOINT"]
    if os.environ.get("DIAMOND_CONFIG_ROOT"):
        values["config_root"] = os.environ["DIAMOND_CONFIG_ROOT"]

    values.update(overrides)

    if values.get("config_root") is not None:
        values["config_root"] = Path(values["config_root"])

    try:
        return DiamondSettings(**values)
    except TypeError as e:
        raise DiamondConfigError(str(e)) from e
