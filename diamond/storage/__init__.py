"""
Local Storage

Durable on-disk snapshots of the server list and configuration values,
used for cold-start and offline resilience.
"""

from .snapshot import SnapshotStore, atomic_write_text

__all__ = ["SnapshotStore", "atomic_write_text"]
