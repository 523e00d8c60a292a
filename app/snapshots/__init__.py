"""
Snapshot source providers.

The backup service owns snapshots; lifecycle services only list candidate
metadata and request deletions through a SnapshotSource.
"""

from app.snapshots.base import Snapshot, SnapshotSource
from app.snapshots.factory import get_snapshot_source, reset_snapshot_source, set_snapshot_source

__all__ = [
    "Snapshot",
    "SnapshotSource",
    "get_snapshot_source",
    "set_snapshot_source",
    "reset_snapshot_source",
]
