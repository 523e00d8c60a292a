# app/snapshots/memory_source.py
"""
In-memory snapshot source for development and testing.

NOT for production use: contents vanish with the process.
"""

import logging
import threading
import uuid

from app.snapshots.base import Snapshot, SnapshotSource

logger = logging.getLogger(__name__)


class InMemorySnapshotSource(SnapshotSource):
    """Thread-safe catalogue of snapshots grouped by organization."""

    def __init__(self, snapshots: dict[uuid.UUID, list[Snapshot]] | None = None):
        self._lock = threading.Lock()
        self._by_org: dict[uuid.UUID, list[Snapshot]] = {
            org_id: list(items) for org_id, items in (snapshots or {}).items()
        }

    @property
    def name(self) -> str:
        return "memory"

    def add(self, org_id: uuid.UUID, snapshot: Snapshot) -> None:
        with self._lock:
            self._by_org.setdefault(org_id, []).append(snapshot)

    def list_candidates(self, org_id: uuid.UUID) -> list[Snapshot]:
        with self._lock:
            return list(self._by_org.get(org_id, []))

    def delete(self, snapshot_id: str) -> bool:
        with self._lock:
            for org_id, items in self._by_org.items():
                for i, snapshot in enumerate(items):
                    if snapshot.id == snapshot_id:
                        del items[i]
                        logger.debug(f"Deleted snapshot {snapshot_id} from org {org_id}")
                        return True
        return False
