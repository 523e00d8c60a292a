# app/snapshots/base.py
"""
Snapshot source interface.

Design principles:
- Snapshots (and their bytes) belong to the backup service, not to us
- We only read candidate metadata and ask the source to delete by id
- Classification is resolved upstream; every Snapshot arrives tagged
- A deleted snapshot disappears from list_candidates(), which is what
  makes enforcement retries idempotent
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import UTC, datetime
from typing import Any, Optional
import uuid

from app.models import ClassificationLevel, DataType


@dataclass(frozen=True)
class Snapshot:
    """Candidate snapshot metadata, read-only to this service."""
    id: str
    classification_level: ClassificationLevel | str
    created_at: datetime
    size_bytes: int = 0
    repository_id: Optional[str] = None
    schedule_id: Optional[str] = None
    data_types: tuple[DataType | str, ...] = ()


def parse_classification(value: Any) -> ClassificationLevel | str:
    """
    Map a raw classification tag to the enum.

    Unknown tags are kept verbatim so the engine can report that no rule
    governs them instead of guessing a level.
    """
    text = str(value).strip().lower()
    try:
        return ClassificationLevel(text)
    except ValueError:
        return text


def parse_data_types(values: Any) -> tuple[DataType | str, ...]:
    """Map raw data type tags to the enum, keeping unknown tags verbatim."""
    if isinstance(values, str):
        values = [values]
    parsed: list[DataType | str] = []
    for value in values or ():
        text = str(value).strip().lower()
        if not text:
            continue
        try:
            tag: DataType | str = DataType(text)
        except ValueError:
            tag = text
        if tag not in parsed:
            parsed.append(tag)
    return tuple(parsed)


def parse_timestamp(value: Any) -> datetime:
    """Parse an ISO-8601 timestamp; naive values are taken as UTC."""
    if isinstance(value, datetime):
        ts = value
    else:
        text = str(value)
        if text.endswith("Z"):
            text = text[:-1] + "+00:00"
        ts = datetime.fromisoformat(text)
    if ts.tzinfo is None:
        ts = ts.replace(tzinfo=UTC)
    return ts


def snapshot_from_dict(data: dict) -> Snapshot:
    """Build a Snapshot from a source payload row."""
    return Snapshot(
        id=str(data["id"]),
        classification_level=parse_classification(data.get("classification_level", "")),
        created_at=parse_timestamp(data["created_at"]),
        size_bytes=int(data.get("size_bytes") or 0),
        repository_id=str(data["repository_id"]) if data.get("repository_id") else None,
        schedule_id=str(data["schedule_id"]) if data.get("schedule_id") else None,
        data_types=parse_data_types(data.get("data_types")),
    )


class SnapshotSource(ABC):
    """
    Abstract interface for the backup service's snapshot catalogue.

    Implementations must:
    - Raise SourceUnavailableError when the catalogue cannot be reached
    - Return False from delete() when the snapshot is already gone
    - Raise SnapshotDeletionError when a delete is refused
    """

    @property
    @abstractmethod
    def name(self) -> str:
        """Source name (e.g., 'http', 'memory')."""
        pass

    @abstractmethod
    def list_candidates(self, org_id: uuid.UUID) -> list[Snapshot]:
        """
        List every snapshot of an organization that retention applies to.

        Returns:
            Snapshots in the source's own order
        """
        pass

    @abstractmethod
    def delete(self, snapshot_id: str) -> bool:
        """
        Delete a snapshot.

        Returns:
            True if deleted, False if it no longer existed
        """
        pass
