"""
Local Snapshot Store

File-based storage for offline operation. Layout under the root
(default ~/.diamond):

    ServerAddress                       newline-delimited server list
    data/<group>/<data_id>              last fetched value per key
    snapshot/<group>/<data_id>/v_<ts>   point-in-time history per key

Every write goes to a temp file in the target directory and is renamed
over the destination, so readers never observe a partial file.
"""

import os
import tempfile
from datetime import datetime, timezone
from pathlib import Path
from typing import Iterable

from diamond.common.exceptions import StorageUnavailableError
from diamond.common.logging_setup import get_service_logger
from diamond.common.models import ConfigKey, ConfigValue, ConfigVersion

logger = get_service_logger("storage.snapshot")

SERVER_ADDRESS_FILE = "ServerAddress"
DATA_DIR = "data"
SNAPSHOT_DIR = "snapshot"
VERSION_PREFIX = "v_"


def atomic_write_text(path: Path, text: str) -> None:
    """Write text to path via temp file + rename"""
    fd, temp_name = tempfile.mkstemp(
        dir=str(path.parent),
        prefix=f".{path.name}.",
        suffix=".tmp",
    )
    try:
        with os.fdopen(fd, "w", encoding="utf-8", newline="") as f:
            f.write(text)
            f.flush()
            os.fsync(f.fileno())
        os.replace(temp_name, path)
    except BaseException:
        try:
            os.unlink(temp_name)
        except OSError:
            pass
        raise


class SnapshotStore:
    """
    Durable key→value storage for the resolver and the poll loop.

    The resolver only touches ServerAddress and the poll loop only
    touches data/ and snapshot/, so no cross-writer locking is needed.
    """

    def __init__(self, root: Path, max_versions: int = 5):
        self.root = Path(root)
        self.data_dir = self.root / DATA_DIR
        self.snapshot_dir = self.root / SNAPSHOT_DIR
        self.server_address_file = self.root / SERVER_ADDRESS_FILE
        self.max_versions = max_versions

    def ensure_directories(self) -> None:
        """
        Create root, data and snapshot directories.

        Raises:
            StorageUnavailableError: if any directory cannot be created
        """
        for directory in (self.root, self.data_dir, self.snapshot_dir):
            try:
                directory.mkdir(parents=True, exist_ok=True)
            except OSError as e:
                raise StorageUnavailableError(
                    f"Cannot create directory {directory}: {e}",
                    path=str(directory),
                ) from e
            if not directory.is_dir():
                raise StorageUnavailableError(
                    f"Path exists and is not a directory: {directory}",
                    path=str(directory),
                )

    # ---- server addresses ----

    def write_server_addresses(self, addresses: Iterable[str]) -> None:
        """Overwrite the ServerAddress file with one address per line"""
        text = "".join(f"{addr}\n" for addr in addresses)
        try:
            self.root.mkdir(parents=True, exist_ok=True)
            atomic_write_text(self.server_address_file, text)
        except OSError as e:
            raise StorageUnavailableError(
                f"Cannot write {self.server_address_file}: {e}",
                path=str(self.server_address_file),
            ) from e

    def read_server_addresses(self) -> list[str]:
        """
        Read the persisted server list.

        Returns:
            Addresses in file order, or an empty list on first run
        """
        try:
            text = self.server_address_file.read_text(encoding="utf-8")
        except FileNotFoundError:
            return []
        except (OSError, UnicodeDecodeError) as e:
            raise StorageUnavailableError(
                f"Cannot read {self.server_address_file}: {e}",
                path=str(self.server_address_file),
            ) from e

        return [line.strip() for line in text.splitlines() if line.strip()]

    # ---- config values ----

    def _data_path(self, key: ConfigKey) -> Path:
        group, data_id = key.path_parts
        return self.data_dir / group / data_id

    def _history_dir(self, key: ConfigKey) -> Path:
        group, data_id = key.path_parts
        return self.snapshot_dir / group / data_id

    def write_config_snapshot(self, key: ConfigKey, value: ConfigValue) -> None:
        """Persist the last fetched value for key and record a history entry"""
        path = self._data_path(key)
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            atomic_write_text(path, value.content)
        except OSError as e:
            raise StorageUnavailableError(
                f"Cannot write config snapshot {path}: {e}",
                path=str(path),
            ) from e

        self._write_version(key, value)

    def read_config_snapshot(self, key: ConfigKey) -> ConfigValue | None:
        """
        Load the last persisted value for key.

        Returns:
            The cached value, or None when nothing has been persisted yet
        """
        path = self._data_path(key)
        try:
            content = path.read_text(encoding="utf-8")
        except FileNotFoundError:
            return None
        except (OSError, UnicodeDecodeError) as e:
            raise StorageUnavailableError(
                f"Cannot read config snapshot {path}: {e}",
                path=str(path),
            ) from e

        return ConfigValue.from_content(content)

    def delete_config_snapshot(self, key: ConfigKey) -> bool:
        """Remove the cached value for key. Returns True if a file was removed."""
        path = self._data_path(key)
        try:
            path.unlink()
            return True
        except FileNotFoundError:
            return False
        except OSError as e:
            raise StorageUnavailableError(
                f"Cannot delete config snapshot {path}: {e}",
                path=str(path),
            ) from e

    # ---- point-in-time history ----

    def _write_version(self, key: ConfigKey, value: ConfigValue) -> None:
        history_dir = self._history_dir(key)
        # Sortable, filename-safe UTC timestamp
        stamp = datetime.now(timezone.utc).strftime("%Y%m%dT%H%M%S%fZ")
        version_file = history_dir / f"{VERSION_PREFIX}{stamp}"

        try:
            history_dir.mkdir(parents=True, exist_ok=True)
            atomic_write_text(version_file, value.content)
        except OSError as e:
            raise StorageUnavailableError(
                f"Cannot write config version {version_file}: {e}",
                path=str(version_file),
            ) from e

        self._cleanup_old_versions(history_dir)

    def _version_files(self, history_dir: Path) -> list[Path]:
        if not history_dir.is_dir():
            return []
        return sorted(
            (p for p in history_dir.glob(f"{VERSION_PREFIX}*") if p.is_file()),
            reverse=True,
        )

    def _cleanup_old_versions(self, history_dir: Path) -> None:
        """Remove version files beyond max_versions"""
        for old_file in self._version_files(history_dir)[self.max_versions:]:
            try:
                old_file.unlink()
                logger.debug(f"Removed old config version: {old_file.name}")
            except OSError as e:
                logger.warning(f"Could not remove old config version {old_file}: {e}")

    def list_versions(self, key: ConfigKey) -> list[ConfigVersion]:
        """
        List point-in-time snapshots for key.

        Returns:
            Newest first
        """
        versions = []
        for version_file in self._version_files(self._history_dir(key)):
            try:
                content = version_file.read_text(encoding="utf-8")
            except (OSError, UnicodeDecodeError):
                continue
            versions.append(ConfigVersion(
                version=version_file.name[len(VERSION_PREFIX):],
                md5=ConfigValue.from_content(content).md5,
                file=version_file.name,
            ))
        return versions

    def read_version(self, key: ConfigKey, version: str) -> ConfigValue | None:
        """Load one point-in-time snapshot, or None if it does not exist"""
        version_file = self._history_dir(key) / f"{VERSION_PREFIX}{version}"
        # Version strings come from list_versions; refuse anything path-like
        if version_file.parent != self._history_dir(key):
            return None
        try:
            return ConfigValue.from_content(version_file.read_text(encoding="utf-8"))
        except FileNotFoundError:
            return None
        except (OSError, UnicodeDecodeError) as e:
            logger.error(f"Error loading version {version}: {e}")
            return None
