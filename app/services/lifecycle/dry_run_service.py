# app/services/lifecycle/dry_run_service.py
"""
Dry-run simulator.

Reads the current policy rules, the organization's legal holds and the
candidate snapshot list, then runs the evaluation engine once. Never
writes to the database or the snapshot source; two calls over unchanged
state return equal results; evaluated_at is left out of the comparison.
"""

import logging
import uuid
from collections.abc import Iterable, Mapping
from datetime import UTC, datetime
from typing import Any, Optional

from sqlalchemy.orm import Session

from app.logging_config import log_stage
from app.services.lifecycle.evaluator import DryRunResult, Rules, evaluate
from app.services.lifecycle.hold_service import hold_set
from app.services.lifecycle.policy_service import get_policy, policy_rules, validate_rules
from app.snapshots.base import Snapshot, SnapshotSource

logger = logging.getLogger(__name__)


def scope_to_repositories(
    snapshots: Iterable[Snapshot],
    repository_ids: Optional[Iterable[str]],
) -> list[Snapshot]:
    """Keep snapshots of the given repositories (None or empty = all)."""
    allowed = set(repository_ids or [])
    if not allowed:
        return list(snapshots)
    return [s for s in snapshots if s.repository_id in allowed]


def scope_to_schedules(
    snapshots: Iterable[Snapshot],
    schedule_ids: Optional[Iterable[str]],
) -> list[Snapshot]:
    """
    Keep snapshots taken by the given schedules (None or empty = all).

    With a schedule filter set, snapshots without a schedule (manual ones)
    are out of scope.
    """
    allowed = set(schedule_ids or [])
    if not allowed:
        return list(snapshots)
    return [s for s in snapshots if s.schedule_id in allowed]


def evaluate_org(
    db: Session,
    source: SnapshotSource,
    org_id: uuid.UUID,
    rules: Rules,
    repository_ids: Optional[Iterable[str]] = None,
    now: Optional[datetime] = None,
    policy_id: Optional[str] = None,
    schedule_ids: Optional[Iterable[str]] = None,
) -> DryRunResult:
    """
    Gather holds and candidates for an organization and evaluate them.

    Shared by dry runs and enforcement. SourceUnavailableError propagates
    untouched: no partial results.
    """
    now = now or datetime.now(UTC)
    holds = hold_set(db, org_id)
    snapshots = scope_to_schedules(
        scope_to_repositories(source.list_candidates(org_id), repository_ids),
        schedule_ids,
    )
    return evaluate(rules, holds, snapshots, now, policy_id=policy_id)


def dry_run(
    db: Session,
    source: SnapshotSource,
    policy_id: uuid.UUID,
    org_id: Optional[uuid.UUID] = None,
    now: Optional[datetime] = None,
) -> DryRunResult:
    """
    Preview what enforcing a saved policy would do right now.

    Works for draft and disabled policies too.
    """
    policy = get_policy(db, policy_id, org_id)
    rules = policy_rules(policy)

    with log_stage("lifecycle_dry_run"):
        result = evaluate_org(
            db,
            source,
            policy.org_id,
            rules,
            repository_ids=policy.repository_ids,
            schedule_ids=policy.schedule_ids,
            now=now,
            policy_id=str(policy.id),
        )

    logger.info(
        f"Dry run for policy {policy.name}: {result.total_snapshots} snapshots "
        f"({result.keep_count} keep, {result.can_delete_count} can_delete, "
        f"{result.must_delete_count} must_delete, {result.hold_count} hold)",
        extra={
            "event": "dry_run_complete",
            "policy_id": str(policy.id),
            "org_id": str(policy.org_id),
            "items_processed": result.total_snapshots,
        },
    )
    return result


def preview(
    db: Session,
    source: SnapshotSource,
    org_id: uuid.UUID,
    rules: Iterable[Mapping[str, Any]],
    repository_ids: Optional[Iterable[str]] = None,
    now: Optional[datetime] = None,
    schedule_ids: Optional[Iterable[str]] = None,
) -> DryRunResult:
    """Dry run of unsaved rules, validated exactly as on save."""
    validated = validate_rules(rules)
    with log_stage("lifecycle_preview"):
        return evaluate_org(
            db,
            source,
            org_id,
            validated,
            repository_ids=repository_ids,
            schedule_ids=schedule_ids,
            now=now,
        )
