# app/models.py
"""
Snapshot lifecycle database models.

Tables:
- LifecyclePolicy: Classification-keyed retention rules per organization
- LegalHold: Administrative holds that block deletion of a snapshot
- LifecycleDeletionEvent: Append-only audit trail of enforced deletions

Snapshots themselves are owned by the backup service and are never
stored here.
"""

from datetime import UTC, datetime
from enum import Enum
import uuid

from sqlalchemy import (
    BigInteger,
    Boolean,
    Column,
    DateTime,
    Index,
    JSON,
    String,
    Text,
    UniqueConstraint,
    Uuid,
)

from app.database import Base


def _utcnow() -> datetime:
    return datetime.now(UTC)


# -----------------------------------------------------------------------------
# Enums
# -----------------------------------------------------------------------------

class ClassificationLevel(str, Enum):
    """Data sensitivity of a snapshot, in increasing order."""
    PUBLIC = "public"
    INTERNAL = "internal"
    CONFIDENTIAL = "confidential"
    RESTRICTED = "restricted"

    @property
    def rank(self) -> int:
        return CLASSIFICATION_ORDER[self]


CLASSIFICATION_ORDER = {
    ClassificationLevel.PUBLIC: 0,
    ClassificationLevel.INTERNAL: 1,
    ClassificationLevel.CONFIDENTIAL: 2,
    ClassificationLevel.RESTRICTED: 3,
}


class DataType(str, Enum):
    """Kind of data found in a snapshot; selects per-level retention overrides."""
    PII = "pii"
    PHI = "phi"
    PCI = "pci"
    PROPRIETARY = "proprietary"
    GENERAL = "general"


class PolicyStatus(str, Enum):
    """Lifecycle policy status. Only ACTIVE policies are enforced on schedule."""
    DRAFT = "draft"
    ACTIVE = "active"
    DISABLED = "disabled"


class SnapshotAction(str, Enum):
    """Decision produced by the evaluation engine for one snapshot."""
    KEEP = "keep"                  # Within minimum retention, or no rule
    CAN_DELETE = "can_delete"      # Past minimum, ceiling not reached
    MUST_DELETE = "must_delete"    # At or past maximum retention
    HOLD = "hold"                  # Under legal hold


class EnforcementMode(str, Enum):
    """Which evaluation actions a scheduled enforcement run deletes."""
    MUST_DELETE_ONLY = "must_delete_only"
    INCLUDE_CAN_DELETE = "include_can_delete"


# -----------------------------------------------------------------------------
# LifecyclePolicy
# -----------------------------------------------------------------------------

class LifecyclePolicy(Base):
    """
    Retention rules keyed by classification level.

    Rules are stored the way admins edit them: a JSON list of
    {"level": ..., "retention": {...}, "data_type_overrides": [...]} rows,
    one per level. Aggregate counters are derived from the deletion event
    log and can be rebuilt from it.

    The enforcement_* columns are the cross-process run claim: set while a
    run is in flight, cleared when it ends.
    """
    __tablename__ = "lifecycle_policies"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    org_id = Column(Uuid, nullable=False)
    name = Column(String(255), nullable=False)
    description = Column(Text, nullable=True)
    status = Column(String(16), nullable=False, default=PolicyStatus.DRAFT.value)
    enforcement_mode = Column(String(32), nullable=False, default=EnforcementMode.MUST_DELETE_ONLY.value)
    rules = Column(JSON, nullable=False, default=list)
    repository_ids = Column(JSON, nullable=True)  # None = all repositories
    schedule_ids = Column(JSON, nullable=True)  # None = all schedules

    # Enforcement claim
    enforcement_run_id = Column(String(36), nullable=True)
    enforcement_started_at = Column(DateTime(timezone=True), nullable=True)
    enforcement_cancel_requested = Column(Boolean, nullable=False, default=False)

    # Aggregates
    deletion_count = Column(BigInteger, nullable=False, default=0)
    bytes_reclaimed = Column(BigInteger, nullable=False, default=0)
    last_evaluated_at = Column(DateTime(timezone=True), nullable=True)
    last_deletion_at = Column(DateTime(timezone=True), nullable=True)

    created_by = Column(String(255), nullable=True)
    created_at = Column(DateTime(timezone=True), default=_utcnow, nullable=False)
    updated_at = Column(DateTime(timezone=True), default=_utcnow, onupdate=_utcnow)

    __table_args__ = (
        Index("ix_lifecycle_policies_org_id", "org_id"),
        Index("ix_lifecycle_policies_status", "status"),
    )

    @property
    def is_active(self) -> bool:
        return self.status == PolicyStatus.ACTIVE.value


# -----------------------------------------------------------------------------
# LegalHold
# -----------------------------------------------------------------------------

class LegalHold(Base):
    """A hold blocks every retention decision for one snapshot until lifted."""
    __tablename__ = "legal_holds"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    org_id = Column(Uuid, nullable=False)
    snapshot_id = Column(String(255), nullable=False)
    reason = Column(Text, nullable=False)
    placed_by = Column(String(255), nullable=False)
    placed_at = Column(DateTime(timezone=True), default=_utcnow, nullable=False)
    updated_at = Column(DateTime(timezone=True), default=_utcnow, onupdate=_utcnow)

    __table_args__ = (
        UniqueConstraint("org_id", "snapshot_id", name="uq_legal_holds_org_snapshot"),
        Index("ix_legal_holds_org_id", "org_id"),
    )


# -----------------------------------------------------------------------------
# LifecycleDeletionEvent
# -----------------------------------------------------------------------------

class LifecycleDeletionEvent(Base):
    """
    Immutable record of a snapshot deleted by enforcement.

    policy_id deliberately has no foreign key: events outlive the policy
    that produced them.
    """
    __tablename__ = "lifecycle_deletion_events"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    org_id = Column(Uuid, nullable=False)
    policy_id = Column(Uuid, nullable=False)
    snapshot_id = Column(String(255), nullable=False)
    repository_id = Column(String(255), nullable=True)
    reason = Column(Text, nullable=False)
    size_bytes = Column(BigInteger, nullable=False, default=0)
    deleted_by = Column(String(255), nullable=False)
    deleted_at = Column(DateTime(timezone=True), default=_utcnow, nullable=False)

    __table_args__ = (
        Index("ix_lifecycle_deletion_events_org_deleted_at", "org_id", "deleted_at"),
        Index("ix_lifecycle_deletion_events_policy_id", "policy_id"),
    )
