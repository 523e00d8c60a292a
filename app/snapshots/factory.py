# app/snapshots/factory.py
"""
Factory function for creating the snapshot source.
"""

import logging
from typing import Optional

from app.config import get_settings
from app.snapshots.base import SnapshotSource

logger = logging.getLogger(__name__)

# Global singleton instance
_snapshot_source: Optional[SnapshotSource] = None


def get_snapshot_source() -> SnapshotSource:
    """
    Get or create the snapshot source instance.

    Environment:
        SNAPSHOT_SOURCE: 'http' (default) or 'memory'
        SNAPSHOT_SOURCE_URL: required for 'http'
    """
    global _snapshot_source

    if _snapshot_source is not None:
        return _snapshot_source

    settings = get_settings()
    name = settings.SNAPSHOT_SOURCE

    if name == "http":
        if not settings.SNAPSHOT_SOURCE_URL:
            raise RuntimeError("SNAPSHOT_SOURCE_URL must be set when SNAPSHOT_SOURCE=http")
        from app.snapshots.http_source import HttpSnapshotSource

        _snapshot_source = HttpSnapshotSource(
            base_url=settings.SNAPSHOT_SOURCE_URL,
            api_key=settings.SNAPSHOT_SOURCE_API_KEY,
            timeout=settings.SNAPSHOT_SOURCE_TIMEOUT_SECONDS,
            max_attempts=settings.SNAPSHOT_SOURCE_MAX_ATTEMPTS,
        )
    elif name == "memory":
        from app.snapshots.memory_source import InMemorySnapshotSource

        _snapshot_source = InMemorySnapshotSource()
    else:
        raise ValueError(f"Unknown snapshot source: {name}. Available: http, memory")

    logger.info(f"Snapshot source initialized: {_snapshot_source.name}")
    return _snapshot_source


def set_snapshot_source(source: SnapshotSource) -> None:
    """
    Set a custom snapshot source (useful for testing).
    """
    global _snapshot_source
    _snapshot_source = source


def reset_snapshot_source() -> None:
    """
    Reset the snapshot source singleton (for testing).
    """
    global _snapshot_source
    _snapshot_source = None
