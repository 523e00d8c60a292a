# app/services/lifecycle/hold_service.py
"""
Legal hold registry.

A hold on a snapshot id overrides every retention decision for it. Holds
never expire; they stay until an admin lifts them.
"""

import logging
import uuid
from datetime import UTC, datetime

from sqlalchemy.orm import Session

from app.constants import PolicyLimits
from app.models import LegalHold
from app.services.lifecycle.errors import NotFoundError, ValidationError

logger = logging.getLogger(__name__)


def _validate_snapshot_id(snapshot_id: str) -> str:
    text = str(snapshot_id or "").strip()
    if not text:
        raise ValidationError("snapshot_id is required")
    if len(text) > PolicyLimits.SNAPSHOT_ID_MAX_CHARS:
        raise ValidationError(f"snapshot_id must be at most {PolicyLimits.SNAPSHOT_ID_MAX_CHARS} characters")
    return text


def get_hold(db: Session, org_id: uuid.UUID, snapshot_id: str) -> LegalHold:
    """Get the hold on a snapshot. Raises NotFoundError if there is none."""
    hold = (
        db.query(LegalHold)
        .filter(LegalHold.org_id == org_id, LegalHold.snapshot_id == snapshot_id)
        .first()
    )
    if not hold:
        raise NotFoundError(f"No legal hold on snapshot '{snapshot_id}'")
    return hold


def list_holds(db: Session, org_id: uuid.UUID) -> list[LegalHold]:
    """List all holds of an organization, newest first."""
    return (
        db.query(LegalHold)
        .filter(LegalHold.org_id == org_id)
        .order_by(LegalHold.placed_at.desc())
        .all()
    )


def hold_set(db: Session, org_id: uuid.UUID) -> frozenset[str]:
    """Snapshot ids currently on hold for an organization."""
    rows = db.query(LegalHold.snapshot_id).filter(LegalHold.org_id == org_id).all()
    return frozenset(row.snapshot_id for row in rows)



def is_on_hold(db: Session, org_id: uuid.UUID, snapshot_id: str) -> bool:
    """Point lookup used right before a deletion, so a hold placed mid-run still counts."""
    return (
        db.query(LegalHold.id)
        .filter(LegalHold.org_id == org_id, LegalHold.snapshot_id == snapshot_id)
        .first()
        is not None
    )


def place_hold(
    db: Session,
    org_id: uuid.UUID,
    snapshot_id: str,
    reason: str,
    placed_by: str,
) -> LegalHold:
    """
    Place a legal hold on a snapshot.

    Idempotent: placing a hold on an already-held snapshot keeps the
    original hold (id, placed_at) and replaces its reason.
    """
    snapshot_id = _validate_snapshot_id(snapshot_id)
    reason = str(reason or "").strip()
    if not reason:
        raise ValidationError("reason is required")
    if len(reason) > PolicyLimits.HOLD_REASON_MAX_CHARS:
        raise ValidationError(f"reason must be at most {PolicyLimits.HOLD_REASON_MAX_CHARS} characters")

    existing = (
        db.query(LegalHold)
        .filter(LegalHold.org_id == org_id, LegalHold.snapshot_id == snapshot_id)
        .first()
    )

    if existing:
        existing.reason = reason
        existing.updated_at = datetime.now(UTC)
        db.add(existing)
        db.commit()
        db.refresh(existing)
        logger.info(
            f"Updated legal hold reason on snapshot {snapshot_id}",
            extra={"event": "hold_updated", "org_id": str(org_id), "snapshot_id": snapshot_id},
        )
        return existing

    hold = LegalHold(
        org_id=org_id,
        snapshot_id=snapshot_id,
        reason=reason,
        placed_by=placed_by,
    )
    db.add(hold)
    db.commit()
    db.refresh(hold)

    logger.info(
        f"Placed legal hold on snapshot {snapshot_id} by {placed_by}",
        extra={"event": "hold_placed", "org_id": str(org_id), "snapshot_id": snapshot_id},
    )
    return hold


def lift_hold(db: Session, org_id: uuid.UUID, snapshot_id: str) -> None:
    """
    Remove the hold on a snapshot.

    Raises NotFoundError when the snapshot has no hold; lifting is never a
    silent no-op.
    """
    hold = get_hold(db, org_id, snapshot_id)
    db.delete(hold)
    db.commit()

    logger.info(
        f"Lifted legal hold on snapshot {snapshot_id}",
        extra={"event": "hold_lifted", "org_id": str(org_id), "snapshot_id": snapshot_id},
    )
