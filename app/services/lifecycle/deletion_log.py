# app/services/lifecycle/deletion_log.py
"""
Append-only audit trail of snapshots deleted by enforcement.

Events are committed before policy counters are touched, so after a crash
the log is ahead of the counters and reconcile_counters() can rebuild
them by replaying it.
"""

import logging
import uuid
from datetime import UTC, datetime

from sqlalchemy import func
from sqlalchemy.orm import Session

from app.models import LifecycleDeletionEvent

logger = logging.getLogger(__name__)


def append_event(
    db: Session,
    org_id: uuid.UUID,
    policy_id: uuid.UUID,
    snapshot_id: str,
    reason: str,
    size_bytes: int,
    deleted_by: str,
    repository_id: str | None = None,
    deleted_at: datetime | None = None,
) -> LifecycleDeletionEvent:
    """Write and commit one deletion event."""
    event = LifecycleDeletionEvent(
        org_id=org_id,
        policy_id=policy_id,
        snapshot_id=snapshot_id,
        repository_id=repository_id,
        reason=reason,
        size_bytes=size_bytes,
        deleted_by=deleted_by,
        deleted_at=deleted_at or datetime.now(UTC),
    )
    db.add(event)
    db.commit()
    db.refresh(event)

    logger.info(
        f"Recorded deletion of snapshot {snapshot_id} ({size_bytes} bytes) for policy {policy_id}",
        extra={
            "event": "snapshot_deleted",
            "policy_id": str(policy_id),
            "org_id": str(org_id),
            "snapshot_id": snapshot_id,
            "size_bytes": size_bytes,
        },
    )
    return event


def list_recent_deletions(db: Session, org_id: uuid.UUID, limit: int = 100) -> list[LifecycleDeletionEvent]:
    """Most recent deletion events for an organization, newest first."""
    return (
        db.query(LifecycleDeletionEvent)
        .filter(LifecycleDeletionEvent.org_id == org_id)
        .order_by(LifecycleDeletionEvent.deleted_at.desc())
        .limit(limit)
        .all()
    )


def list_policy_deletions(db: Session, policy_id: uuid.UUID, limit: int = 100) -> list[LifecycleDeletionEvent]:
    """Most recent deletion events produced by one policy, newest first."""
    return (
        db.query(LifecycleDeletionEvent)
        .filter(LifecycleDeletionEvent.policy_id == policy_id)
        .order_by(LifecycleDeletionEvent.deleted_at.desc())
        .limit(limit)
        .all()
    )


def sum_for_policy(db: Session, policy_id: uuid.UUID) -> tuple[int, int]:
    """(event count, total bytes) logged for a policy."""
    count, total = (
        db.query(
            func.count(LifecycleDeletionEvent.id),
            func.coalesce(func.sum(LifecycleDeletionEvent.size_bytes), 0),
        )
        .filter(LifecycleDeletionEvent.policy_id == policy_id)
        .one()
    )
    return int(count or 0), int(total or 0)
