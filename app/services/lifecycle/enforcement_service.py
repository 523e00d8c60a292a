# app/services/lifecycle/enforcement_service.py
"""
Enforcement executor.

Invoked by the scheduler once per active policy per cycle. Handles:
- At most one run per policy at a time, across processes: an in-process
  lease plus a claim on the policy row (a second trigger gets
  ConflictError and skips the cycle; a claim older than
  ENFORCEMENT_LEASE_TIMEOUT_SECONDS is taken over)
- Rules frozen at lease acquisition; edits apply to the next run
- Same evaluation engine as the dry run
- Deletion event appended before policy counters are bumped
- Partial failure: committed deletions stay, the next run retries the rest
- Legal holds re-checked right before each deletion
- Cooperative cancellation between deletions, from this process or another
"""

import logging
import threading
import uuid
from dataclasses import dataclass, field
from datetime import UTC, datetime, timedelta
from typing import Optional

from sqlalchemy import or_
from sqlalchemy.orm import Session

from app.config import get_settings
from app.constants import EnforcementDefaults
from app.logging_config import ProgressTracker, log_stage
from app.models import EnforcementMode, LifecyclePolicy, PolicyStatus, SnapshotAction
from app.services.lifecycle.deletion_log import append_event
from app.services.lifecycle.dry_run_service import evaluate_org
from app.services.lifecycle.errors import (
    ConflictError,
    NotFoundError,
    SnapshotDeletionError,
    SourceUnavailableError,
)
from app.services.lifecycle.evaluator import SnapshotEvaluation
from app.services.lifecycle.hold_service import is_on_hold
from app.services.lifecycle.policy_service import get_policy, list_active_policies, policy_rules
from app.snapshots.base import SnapshotSource

logger = logging.getLogger(__name__)


# -----------------------------------------------------------------------------
# Per-policy leases
# -----------------------------------------------------------------------------


@dataclass
class EnforcementLease:
    """Exclusive right to run enforcement for one policy."""

    policy_id: uuid.UUID
    run_id: str = field(default_factory=lambda: str(uuid.uuid4()))
    acquired_at: datetime = field(default_factory=lambda: datetime.now(UTC))
    _cancel: threading.Event = field(default_factory=threading.Event, init=False, repr=False)

    @property
    def cancel_requested(self) -> bool:
        return self._cancel.is_set()

    def cancel(self) -> None:
        self._cancel.set()


class EnforcementLockRegistry:
    """
    In-process registry of running enforcement leases, keyed by policy id.

    Acquisition never blocks: a held lease means "skip this cycle".
    """

    def __init__(self):
        self._lock = threading.Lock()
        self._leases: dict[uuid.UUID, EnforcementLease] = {}

    def try_acquire(self, policy_id: uuid.UUID) -> Optional[EnforcementLease]:
        with self._lock:
            if policy_id in self._leases:
                return None
            lease = EnforcementLease(policy_id=policy_id)
            self._leases[policy_id] = lease
            return lease

    def release(self, lease: EnforcementLease) -> None:
        with self._lock:
            current = self._leases.get(lease.policy_id)
            if current is lease:
                del self._leases[lease.policy_id]

    def is_running(self, policy_id: uuid.UUID) -> bool:
        with self._lock:
            return policy_id in self._leases

    def request_cancellation(self, policy_id: uuid.UUID) -> bool:
        """Ask a running enforcement to stop after its current deletion."""
        with self._lock:
            lease = self._leases.get(policy_id)
        if not lease:
            return False
        lease.cancel()
        logger.info(
            f"Cancellation requested for enforcement of policy {policy_id}",
            extra={"event": "enforcement_cancel_requested", "policy_id": str(policy_id)},
        )
        return True

    def running(self) -> list[uuid.UUID]:
        with self._lock:
            return list(self._leases)


# Global registry shared by the API, the CLI and the scheduler hook
enforcement_locks = EnforcementLockRegistry()


# -----------------------------------------------------------------------------
# Results
# -----------------------------------------------------------------------------


@dataclass
class EnforcementResult:
    """Result of an enforcement run."""

    policy_id: str
    success: bool = True
    skipped: bool = False
    skip_reason: Optional[str] = None
    cancelled: bool = False
    aborted: bool = False
    run_id: Optional[str] = None
    enforcement_mode: Optional[str] = None
    snapshots_evaluated: int = 0
    snapshots_targeted: int = 0
    snapshots_deleted: int = 0
    snapshots_already_deleted: int = 0
    snapshots_failed: int = 0
    snapshots_held: int = 0
    bytes_reclaimed: int = 0
    deleted_snapshot_ids: list[str] = field(default_factory=list)
    errors: list[str] = field(default_factory=list)


def _targets(evaluations: list[SnapshotEvaluation], mode: str) -> list[SnapshotEvaluation]:
    actions = {SnapshotAction.MUST_DELETE}
    if mode == EnforcementMode.INCLUDE_CAN_DELETE.value:
        actions.add(SnapshotAction.CAN_DELETE)
    return [e for e in evaluations if e.action in actions]


def _bump_counters(db: Session, policy_id: uuid.UUID, size_bytes: int, deleted_at: datetime) -> None:
    """Atomic increment so concurrent policy edits are not overwritten."""
    db.query(LifecyclePolicy).filter(LifecyclePolicy.id == policy_id).update(
        {
            LifecyclePolicy.deletion_count: LifecyclePolicy.deletion_count + 1,
            LifecyclePolicy.bytes_reclaimed: LifecyclePolicy.bytes_reclaimed + size_bytes,
            LifecyclePolicy.last_deletion_at: deleted_at,
            LifecyclePolicy.updated_at: LifecyclePolicy.updated_at,
        },
        synchronize_session=False,
    )
    db.commit()


def _mark_evaluated(db: Session, policy_id: uuid.UUID, evaluated_at: datetime) -> None:
    db.query(LifecyclePolicy).filter(LifecyclePolicy.id == policy_id).update(
        {
            LifecyclePolicy.last_evaluated_at: evaluated_at,
            LifecyclePolicy.updated_at: LifecyclePolicy.updated_at,
        },
        synchronize_session=False,
    )
    db.commit()


# -----------------------------------------------------------------------------
# Cross-process claim
# -----------------------------------------------------------------------------


def _claim_policy(db: Session, policy_id: uuid.UUID, lease: EnforcementLease) -> bool:
    """
    Claim the policy row for this run with a conditional update.

    Succeeds when no run holds the claim or the holder started more than
    ENFORCEMENT_LEASE_TIMEOUT_SECONDS ago (a crashed process).
    """
    stale_cutoff = lease.acquired_at - timedelta(seconds=get_settings().ENFORCEMENT_LEASE_TIMEOUT_SECONDS)
    rows = (
        db.query(LifecyclePolicy)
        .filter(
            LifecyclePolicy.id == policy_id,
            or_(
                LifecyclePolicy.enforcement_run_id.is_(None),
                LifecyclePolicy.enforcement_started_at < stale_cutoff,
            ),
        )
        .update(
            {
                LifecyclePolicy.enforcement_run_id: lease.run_id,
                LifecyclePolicy.enforcement_started_at: lease.acquired_at,
                LifecyclePolicy.enforcement_cancel_requested: False,
                LifecyclePolicy.updated_at: LifecyclePolicy.updated_at,
            },
            synchronize_session=False,
        )
    )
    db.commit()
    return rows == 1


def _release_claim(db: Session, policy_id: uuid.UUID, run_id: str) -> None:
    db.query(LifecyclePolicy).filter(
        LifecyclePolicy.id == policy_id,
        LifecyclePolicy.enforcement_run_id == run_id,
    ).update(
        {
            LifecyclePolicy.enforcement_run_id: None,
            LifecyclePolicy.enforcement_started_at: None,
            LifecyclePolicy.enforcement_cancel_requested: False,
            LifecyclePolicy.updated_at: LifecyclePolicy.updated_at,
        },
        synchronize_session=False,
    )
    db.commit()


def _cancel_requested_elsewhere(db: Session, policy_id: uuid.UUID, run_id: str) -> bool:
    row = (
        db.query(LifecyclePolicy.enforcement_cancel_requested)
        .filter(LifecyclePolicy.id == policy_id, LifecyclePolicy.enforcement_run_id == run_id)
        .first()
    )
    return bool(row and row.enforcement_cancel_requested)


def cancel_enforcement(
    db: Session,
    policy_id: uuid.UUID,
    registry: EnforcementLockRegistry = enforcement_locks,
) -> bool:
    """
    Ask a running enforcement of a policy to stop after its current deletion.

    Reaches runs in this process directly and runs in other processes
    through the policy row. Returns False when nothing is running.
    """
    requested_here = registry.request_cancellation(policy_id)
    rows = (
        db.query(LifecyclePolicy)
        .filter(LifecyclePolicy.id == policy_id, LifecyclePolicy.enforcement_run_id.isnot(None))
        .update(
            {
                LifecyclePolicy.enforcement_cancel_requested: True,
                LifecyclePolicy.updated_at: LifecyclePolicy.updated_at,
            },
            synchronize_session=False,
        )
    )
    db.commit()
    return requested_here or rows > 0


# -----------------------------------------------------------------------------
# Enforcement
# -----------------------------------------------------------------------------


def run_enforcement(
    db: Session,
    source: SnapshotSource,
    policy_id: uuid.UUID,
    now: Optional[datetime] = None,
    initiated_by: str = EnforcementDefaults.INITIATED_BY_SCHEDULER,
    org_id: Optional[uuid.UUID] = None,
    registry: EnforcementLockRegistry = enforcement_locks,
) -> EnforcementResult:
    """
    Enforce one policy: delete the snapshots its rules require deleting.

    Only ACTIVE policies are enforced. `must_delete` snapshots are always
    targeted; `can_delete` ones only when the policy's enforcement_mode is
    include_can_delete.

    Raises:
        ConflictError: another run for this policy, in this process or
            another one, holds the lease
        NotFoundError: the policy does not exist
    """
    lease = registry.try_acquire(policy_id)
    if lease is None:
        logger.info(
            f"Enforcement already running for policy {policy_id}, skipping",
            extra={"event": "enforcement_conflict", "policy_id": str(policy_id)},
        )
        raise ConflictError(f"Enforcement already running for policy '{policy_id}'")

    try:
        get_policy(db, policy_id, org_id)
        if not _claim_policy(db, policy_id, lease):
            logger.info(
                f"Enforcement of policy {policy_id} claimed by another process, skipping",
                extra={"event": "enforcement_conflict", "policy_id": str(policy_id)},
            )
            raise ConflictError(f"Enforcement already running for policy '{policy_id}'")

        try:
            with log_stage("lifecycle_enforcement", trace_id=lease.run_id):
                return _run_with_lease(db, source, lease, now, initiated_by, org_id)
        except Exception:
            db.rollback()
            raise
        finally:
            _release_claim(db, policy_id, lease.run_id)
    finally:
        registry.release(lease)


def _run_with_lease(
    db: Session,
    source: SnapshotSource,
    lease: EnforcementLease,
    now: Optional[datetime],
    initiated_by: str,
    org_id: Optional[uuid.UUID],
) -> EnforcementResult:
    now = now or datetime.now(UTC)
    policy = get_policy(db, lease.policy_id, org_id)

    # Everything the run needs is copied now; later edits wait for the next run
    policy_id = policy.id
    policy_org_id = policy.org_id
    policy_name = policy.name
    status = policy.status
    mode = policy.enforcement_mode
    repository_ids = list(policy.repository_ids or [])
    schedule_ids = list(policy.schedule_ids or [])
    rules = policy_rules(policy)

    result = EnforcementResult(policy_id=str(policy_id), run_id=lease.run_id, enforcement_mode=mode)

    if status != PolicyStatus.ACTIVE.value:
        result.skipped = True
        result.skip_reason = f"policy status is {status}"
        logger.info(
            f"Skipping enforcement of policy {policy_name}: status is {status}",
            extra={"event": "enforcement_skipped", "policy_id": str(policy_id)},
        )
        return result

    try:
        evaluation = evaluate_org(
            db,
            source,
            policy_org_id,
            rules,
            repository_ids=repository_ids,
            schedule_ids=schedule_ids,
            now=now,
            policy_id=str(policy_id),
        )
    except SourceUnavailableError as e:
        logger.error(
            f"Enforcement of policy {policy_name} aborted: {e}",
            extra={"event": "enforcement_source_unavailable", "policy_id": str(policy_id)},
        )
        result.success = False
        result.aborted = True
        result.errors.append(str(e))
        return result

    targets = _targets(evaluation.evaluations, mode)
    result.snapshots_evaluated = evaluation.total_snapshots
    result.snapshots_targeted = len(targets)

    tracker = ProgressTracker(total=len(targets), stage="lifecycle_enforcement", log_every=25)

    for target in targets:
        if lease.cancel_requested or _cancel_requested_elsewhere(db, policy_id, lease.run_id):
            result.cancelled = True
            logger.warning(
                f"Enforcement of policy {policy_name} cancelled after {result.snapshots_deleted} deletions",
                extra={"event": "enforcement_cancelled", "policy_id": str(policy_id)},
            )
            break

        # The hold set was read at evaluation time; a hold placed since wins
        if is_on_hold(db, policy_org_id, target.snapshot_id):
            result.snapshots_held += 1
            logger.info(
                f"Snapshot {target.snapshot_id} placed on hold during the run, skipping",
                extra={
                    "event": "snapshot_hold_skipped",
                    "policy_id": str(policy_id),
                    "snapshot_id": target.snapshot_id,
                },
            )
            tracker.increment()
            continue

        try:
            deleted = source.delete(target.snapshot_id)
        except SourceUnavailableError as e:
            logger.error(
                f"Snapshot source unavailable while deleting {target.snapshot_id}; "
                f"stopping with {len(targets) - tracker.processed} remaining",
                extra={
                    "event": "enforcement_source_unavailable",
                    "policy_id": str(policy_id),
                    "snapshot_id": target.snapshot_id,
                },
            )
            result.success = False
            result.aborted = True
            result.errors.append(str(e))
            tracker.increment(success=False)
            break
        except SnapshotDeletionError as e:
            logger.error(
                f"Failed to delete snapshot {target.snapshot_id}: {e}",
                extra={
                    "event": "snapshot_delete_failed",
                    "policy_id": str(policy_id),
                    "snapshot_id": target.snapshot_id,
                },
            )
            result.success = False
            result.snapshots_failed += 1
            result.errors.append(str(e))
            tracker.increment(success=False)
            continue

        if not deleted:
            result.snapshots_already_deleted += 1
            tracker.increment()
            continue

        deleted_at = datetime.now(UTC)
        append_event(
            db,
            org_id=policy_org_id,
            policy_id=policy_id,
            snapshot_id=target.snapshot_id,
            reason=target.reason,
            size_bytes=target.size_bytes,
            deleted_by=initiated_by,
            repository_id=target.repository_id,
            deleted_at=deleted_at,
        )
        _bump_counters(db, policy_id, target.size_bytes, deleted_at)

        result.snapshots_deleted += 1
        result.bytes_reclaimed += target.size_bytes
        result.deleted_snapshot_ids.append(target.snapshot_id)
        tracker.increment()

    if targets:
        tracker.finish()
    _mark_evaluated(db, policy_id, now)

    logger.info(
        f"Enforcement of policy {policy_name} complete: {result.snapshots_deleted} deleted, "
        f"{result.snapshots_already_deleted} already gone, {result.snapshots_held} held, "
        f"{result.snapshots_failed} failed "
        f"of {result.snapshots_targeted} targeted ({result.bytes_reclaimed} bytes reclaimed)",
        extra={
            "event": "enforcement_complete",
            "policy_id": str(policy_id),
            "org_id": str(policy_org_id),
            "items_processed": result.snapshots_deleted,
            "items_failed": result.snapshots_failed,
            "size_bytes": result.bytes_reclaimed,
        },
    )
    return result


def run_scheduled_cycle(
    db: Session,
    source: SnapshotSource,
    now: Optional[datetime] = None,
    registry: EnforcementLockRegistry = enforcement_locks,
) -> list[EnforcementResult]:
    """
    One scheduler tick: enforce every active policy.

    A policy whose previous run is still going is skipped, not queued. Any
    other failure is recorded against its policy and the cycle moves on.
    """
    results = []
    policy_ids = [policy.id for policy in list_active_policies(db)]
    for policy_id in policy_ids:
        try:
            results.append(run_enforcement(db, source, policy_id, now=now, registry=registry))
        except ConflictError as e:
            results.append(EnforcementResult(policy_id=str(policy_id), skipped=True, skip_reason=str(e)))
        except NotFoundError as e:
            results.append(EnforcementResult(policy_id=str(policy_id), skipped=True, skip_reason=str(e)))
        except Exception as e:
            db.rollback()
            logger.error(
                f"Enforcement of policy {policy_id} failed: {e}",
                extra={"event": "enforcement_failed", "policy_id": str(policy_id)},
            )
            results.append(EnforcementResult(policy_id=str(policy_id), success=False, errors=[str(e)]))

    logger.info(
        f"Scheduled enforcement cycle: {len(results)} policies, "
        f"{sum(r.snapshots_deleted for r in results)} snapshots deleted",
        extra={"event": "enforcement_cycle_complete", "items_processed": len(results)},
    )
    return results
