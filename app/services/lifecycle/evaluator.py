# app/services/lifecycle/evaluator.py
"""
Snapshot lifecycle evaluation engine.

Pure functions over immutable inputs: the same engine backs dry runs and
enforcement, so what a preview reports is exactly what enforcement does.
No I/O, no clock reads; callers pass one `now` for the whole run.

Decision order per snapshot (first match wins):
1. Legal hold             -> hold
2. No rule for the level  -> keep
3. age < min_days         -> keep
4. max_days > 0 and age >= max_days -> must_delete
5. otherwise              -> can_delete

The window used in steps 3-5 is the level's retention, tightened by the
overrides for every data type the snapshot carries.
"""

from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Optional

from app.constants import RetentionDefaults, TimeConstants
from app.models import ClassificationLevel, DataType, SnapshotAction
from app.snapshots.base import Snapshot


@dataclass(frozen=True)
class RetentionDuration:
    """
    Retention window in days.

    min_days is the compliance floor; max_days is the cost ceiling
    (0 = no ceiling, keep forever once past the floor).
    """
    min_days: int
    max_days: int = 0

    @property
    def has_ceiling(self) -> bool:
        return self.max_days > 0


@dataclass(frozen=True)
class ClassificationRule:
    """Retention for one classification level plus per-data-type overrides."""
    retention: RetentionDuration
    data_type_overrides: Mapping[DataType, RetentionDuration] = field(default_factory=dict)

    def override_for(self, data_type: DataType | str) -> Optional[RetentionDuration]:
        try:
            return self.data_type_overrides.get(DataType(data_type))
        except ValueError:
            return None

    def retention_for(self, data_types: Iterable[DataType | str] = ()) -> RetentionDuration:
        """
        Most restrictive window across the level and the snapshot's data types.

        The longest minimum wins; for the maximum, "no ceiling" beats any
        ceiling and otherwise the longest ceiling wins. Data types without
        an override leave the level's window as is.
        """
        min_days = self.retention.min_days
        max_days = self.retention.max_days
        for data_type in data_types:
            override = self.override_for(data_type)
            if override is None:
                continue
            min_days = max(min_days, override.min_days)
            if not override.has_ceiling or (max_days > 0 and override.max_days > max_days):
                max_days = override.max_days
        return RetentionDuration(min_days, max_days)


Rules = Mapping[ClassificationLevel, ClassificationRule]


@dataclass(frozen=True)
class SnapshotEvaluation:
    """Engine decision for a single snapshot."""
    snapshot_id: str
    age_days: int
    classification_level: ClassificationLevel | str
    action: SnapshotAction
    reason: str
    min_retention_days: int = 0
    max_retention_days: int = 0
    days_until_deletable: int = 0
    days_until_auto_delete: int = 0  # 0 when there is no ceiling
    is_on_legal_hold: bool = False
    size_bytes: int = 0
    snapshot_time: Optional[datetime] = None
    repository_id: Optional[str] = None
    schedule_id: Optional[str] = None
    data_types: tuple[DataType | str, ...] = ()

    @property
    def is_deletion_candidate(self) -> bool:
        return self.action in (SnapshotAction.CAN_DELETE, SnapshotAction.MUST_DELETE)


@dataclass
class DryRunResult:
    """
    Aggregate engine output. Counts always sum to total_snapshots.

    evaluated_at is metadata about the run, not part of the result: two
    evaluations of unchanged state compare equal.
    """
    evaluated_at: datetime = field(compare=False)
    policy_id: Optional[str] = None
    total_snapshots: int = 0
    keep_count: int = 0
    can_delete_count: int = 0
    must_delete_count: int = 0
    hold_count: int = 0
    total_size_to_delete: int = 0
    evaluations: list[SnapshotEvaluation] = field(default_factory=list)

    def add(self, evaluation: SnapshotEvaluation) -> None:
        """Append an evaluation and update the aggregates."""
        self.evaluations.append(evaluation)
        self.total_snapshots += 1

        if evaluation.action == SnapshotAction.KEEP:
            self.keep_count += 1
        elif evaluation.action == SnapshotAction.CAN_DELETE:
            self.can_delete_count += 1
            self.total_size_to_delete += evaluation.size_bytes
        elif evaluation.action == SnapshotAction.MUST_DELETE:
            self.must_delete_count += 1
            self.total_size_to_delete += evaluation.size_bytes
        elif evaluation.action == SnapshotAction.HOLD:
            self.hold_count += 1

    def with_action(self, *actions: SnapshotAction) -> list[SnapshotEvaluation]:
        return [e for e in self.evaluations if e.action in actions]


def default_rules() -> dict[ClassificationLevel, ClassificationRule]:
    """Starting-point rules aligned with common compliance frameworks."""
    return {
        ClassificationLevel.PUBLIC: ClassificationRule(
            RetentionDuration(RetentionDefaults.PUBLIC_MIN_DAYS, RetentionDefaults.PUBLIC_MAX_DAYS)
        ),
        ClassificationLevel.INTERNAL: ClassificationRule(
            RetentionDuration(RetentionDefaults.INTERNAL_MIN_DAYS, RetentionDefaults.INTERNAL_MAX_DAYS)
        ),
        ClassificationLevel.CONFIDENTIAL: ClassificationRule(
            RetentionDuration(RetentionDefaults.CONFIDENTIAL_MIN_DAYS, RetentionDefaults.CONFIDENTIAL_MAX_DAYS),
            data_type_overrides={
                DataType.PII: RetentionDuration(
                    RetentionDefaults.CONFIDENTIAL_PII_MIN_DAYS, RetentionDefaults.CONFIDENTIAL_PII_MAX_DAYS
                ),
            },
        ),
        ClassificationLevel.RESTRICTED: ClassificationRule(
            RetentionDuration(RetentionDefaults.RESTRICTED_MIN_DAYS, RetentionDefaults.RESTRICTED_MAX_DAYS),
            data_type_overrides={
                DataType.PHI: RetentionDuration(
                    RetentionDefaults.RESTRICTED_PHI_MIN_DAYS, RetentionDefaults.RESTRICTED_PHI_MAX_DAYS
                ),
                DataType.PCI: RetentionDuration(
                    RetentionDefaults.RESTRICTED_PCI_MIN_DAYS, RetentionDefaults.RESTRICTED_PCI_MAX_DAYS
                ),
            },
        ),
    }


def _as_utc(ts: datetime) -> datetime:
    return ts.replace(tzinfo=UTC) if ts.tzinfo is None else ts


def age_in_days(created_at: datetime, now: datetime) -> int:
    """Whole days elapsed, floored (negative for snapshots dated in the future)."""
    elapsed = (_as_utc(now) - _as_utc(created_at)).total_seconds()
    return int(elapsed // TimeConstants.SECONDS_PER_DAY)


def _tag(value: DataType | str) -> str:
    return str(getattr(value, "value", value))


def evaluate_snapshot(
    rules: Rules,
    holds: Iterable[str] | frozenset[str],
    snapshot: Snapshot,
    now: datetime,
) -> SnapshotEvaluation:
    """Decide what should happen to one snapshot."""
    age = age_in_days(snapshot.created_at, now)
    base = {
        "snapshot_id": snapshot.id,
        "age_days": age,
        "classification_level": snapshot.classification_level,
        "size_bytes": snapshot.size_bytes,
        "snapshot_time": snapshot.created_at,
        "repository_id": snapshot.repository_id,
        "schedule_id": snapshot.schedule_id,
        "data_types": snapshot.data_types,
    }

    if snapshot.id in holds:
        return SnapshotEvaluation(
            **base,
            action=SnapshotAction.HOLD,
            reason="under legal hold",
            is_on_legal_hold=True,
        )

    rule = rules.get(snapshot.classification_level)
    if rule is None:
        return SnapshotEvaluation(
            **base,
            action=SnapshotAction.KEEP,
            reason="no retention rule configured for this classification",
        )

    retention = rule.retention_for(snapshot.data_types)
    window = {
        "min_retention_days": retention.min_days,
        "max_retention_days": retention.max_days,
        "days_until_deletable": retention.min_days - age,
        "days_until_auto_delete": retention.max_days - age if retention.has_ceiling else 0,
    }

    if age < retention.min_days:
        action = SnapshotAction.KEEP
        reason = f"within minimum retention ({age}/{retention.min_days} days)"
    elif retention.has_ceiling and age >= retention.max_days:
        action = SnapshotAction.MUST_DELETE
        reason = f"exceeded maximum retention ({age}/{retention.max_days} days)"
    elif retention.has_ceiling:
        action = SnapshotAction.CAN_DELETE
        reason = (
            f"eligible for deletion (age {age} >= min {retention.min_days} days, "
            f"below max {retention.max_days} days)"
        )
    else:
        action = SnapshotAction.CAN_DELETE
        reason = f"eligible for deletion (age {age} >= min {retention.min_days} days, no maximum configured)"

    overridden = [_tag(dt) for dt in snapshot.data_types if rule.override_for(dt) is not None]
    if overridden:
        reason = f"{reason}; {', '.join(overridden)} override applied"

    return SnapshotEvaluation(**base, **window, action=action, reason=reason)


def evaluate(
    rules: Rules,
    holds: Iterable[str],
    snapshots: Iterable[Snapshot],
    now: datetime,
    policy_id: Optional[str] = None,
) -> DryRunResult:
    """
    Evaluate every candidate snapshot against the rules.

    Evaluations keep the candidate order. Callers must validate rules
    first; on valid input this never raises.
    """
    hold_set = holds if isinstance(holds, frozenset) else frozenset(holds)
    result = DryRunResult(evaluated_at=now, policy_id=policy_id)
    for snapshot in snapshots:
        result.add(evaluate_snapshot(rules, hold_set, snapshot, now))
    return result
