"""
Domain Types

Identity, value and lifecycle types shared by the store, the
subscribers and the manager facade.
"""

import hashlib
from dataclasses import dataclass
from enum import Enum
from typing import Any, Awaitable, Callable, Union
from urllib.parse import quote

# Watchers receive the new content string; coroutine functions are awaited
ConfigWatcher = Callable[[str], Union[None, Awaitable[None]]]


class SubscriberState(str, Enum):
    """Lifecycle of a background subscriber"""
    CREATED = "created"
    RUNNING = "running"
    DEGRADED = "degraded"
    STOPPED = "stopped"


class PollPhase(str, Enum):
    """Where the poll loop is inside a tick"""
    IDLE = "idle"
    FETCHING = "fetching"
    PERSISTING = "persisting"
    NOTIFYING = "notifying"


def content_md5(content: str) -> str:
    """Hex MD5 of the UTF-8 encoded content"""
    return hashlib.md5(content.encode("utf-8")).hexdigest()


def _safe_component(part: str) -> str:
    encoded = quote(part, safe="")
    # quote() leaves dots alone
    if encoded in (".", ".."):
        encoded = encoded.replace(".", "%2E")
    return encoded


@dataclass(frozen=True)
class ConfigKey:
    """Identity of one configuration value stream"""
    group: str
    data_id: str

    def __post_init__(self) -> None:
        if not self.group or not self.data_id:
            raise ValueError("group and data_id must be non-empty")

    @property
    def path_parts(self) -> tuple[str, str]:
        """Filesystem-safe (group, data_id) components"""
        return _safe_component(self.group), _safe_component(self.data_id)

    def __str__(self) -> str:
        return f"{self.group}/{self.data_id}"


@dataclass(frozen=True)
class ConfigValue:
    """A fetched configuration payload plus its fingerprint"""
    content: str
    md5: str
    last_modified: str | None = None
    found: bool = True

    @classmethod
    def from_content(
        cls,
        content: str,
        last_modified: str | None = None,
    ) -> "ConfigValue":
        return cls(content=content, md5=content_md5(content), last_modified=last_modified)

    @classmethod
    def absent(cls) -> "ConfigValue":
        """Value for a configuration the server does not know"""
        return cls(content="", md5="", found=False)

    @property
    def fingerprint(self) -> str:
        return self.md5 if self.found else ""


@dataclass(frozen=True)
class ConfigVersion:
    """Metadata of one point-in-time config snapshot"""
    version: str
    md5: str
    file: str

    def to_dict(self) -> dict[str, Any]:
        return {"version": self.version, "md5": self.md5, "file": self.file}
