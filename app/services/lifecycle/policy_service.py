# app/services/lifecycle/policy_service.py
"""
Lifecycle policy management service.

Handles CRUD operations for lifecycle policies and validates retention
rules before anything is written. Status changes never trigger an
evaluation; only ACTIVE policies are picked up by scheduled enforcement.
"""

import logging
import uuid
from collections.abc import Iterable, Mapping
from types import MappingProxyType
from typing import Any, Optional

from sqlalchemy.orm import Session

from app.config import get_settings
from app.constants import PolicyLimits
from app.models import (
    CLASSIFICATION_ORDER,
    ClassificationLevel,
    DataType,
    EnforcementMode,
    LifecyclePolicy,
    PolicyStatus,
)
from app.services.lifecycle.deletion_log import sum_for_policy
from app.services.lifecycle.errors import NotFoundError, ValidationError
from app.services.lifecycle.evaluator import ClassificationRule, RetentionDuration, Rules

logger = logging.getLogger(__name__)


# -----------------------------------------------------------------------------
# Validation
# -----------------------------------------------------------------------------


def _parse_days(value: Any, field_name: str, level: str) -> int:
    if isinstance(value, bool) or not isinstance(value, int):
        raise ValidationError(f"{field_name} for '{level}' must be an integer")
    if value < 0:
        raise ValidationError(f"{field_name} for '{level}' must not be negative")
    return value


def validate_retention(min_days: Any, max_days: Any, level: str) -> RetentionDuration:
    """Validate one retention window. Invalid windows are rejected, never clamped."""
    min_value = _parse_days(min_days, "min_days", level)
    max_value = _parse_days(max_days, "max_days", level)
    if max_value > 0 and max_value < min_value:
        raise ValidationError(
            f"max_days ({max_value}) must be 0 or at least min_days ({min_value}) for '{level}'"
        )
    return RetentionDuration(min_days=min_value, max_days=max_value)


def _validate_overrides(rows: Any, level: str) -> dict[DataType, RetentionDuration]:
    if rows is None:
        return {}
    if isinstance(rows, (str, bytes)) or not isinstance(rows, Iterable):
        raise ValidationError(f"data_type_overrides for '{level}' must be a list")

    overrides: dict[DataType, RetentionDuration] = {}
    for row in rows:
        if not isinstance(row, Mapping):
            raise ValidationError(f"each data type override for '{level}' must be an object")

        raw_type = row.get("data_type")
        try:
            data_type = DataType(str(raw_type).strip().lower())
        except ValueError:
            raise ValidationError(
                f"unknown data type '{raw_type}' for '{level}'; "
                f"expected one of {[dt.value for dt in DataType]}"
            )

        if data_type in overrides:
            raise ValidationError(f"data type '{data_type.value}' appears more than once for '{level}'")

        retention = row.get("retention")
        if not isinstance(retention, Mapping):
            raise ValidationError(f"retention for '{level}/{data_type.value}' must be an object")

        overrides[data_type] = validate_retention(
            retention.get("min_days", 0),
            retention.get("max_days", 0),
            f"{level}/{data_type.value}",
        )
    return overrides


def validate_rules(rows: Iterable[Mapping[str, Any]] | None) -> dict[ClassificationLevel, ClassificationRule]:
    """
    Turn editable rule rows into a level-keyed mapping.

    Each row is {"level": str, "retention": {"min_days": int, "max_days": int},
    "data_type_overrides": [{"data_type": str, "retention": {...}}]}, the
    overrides being optional. Raises ValidationError for an empty list,
    unknown or repeated levels or data types, and invalid windows.
    """
    rules: dict[ClassificationLevel, ClassificationRule] = {}

    for row in rows or []:
        if not isinstance(row, Mapping):
            raise ValidationError("each rule must be an object with 'level' and 'retention'")

        raw_level = row.get("level")
        try:
            level = ClassificationLevel(str(raw_level).strip().lower())
        except ValueError:
            raise ValidationError(
                f"unknown classification level '{raw_level}'; "
                f"expected one of {[lvl.value for lvl in ClassificationLevel]}"
            )

        if level in rules:
            raise ValidationError(f"classification level '{level.value}' appears more than once")

        retention = row.get("retention")
        if not isinstance(retention, Mapping):
            raise ValidationError(f"retention for '{level.value}' must be an object")

        rules[level] = ClassificationRule(
            retention=validate_retention(
                retention.get("min_days", 0),
                retention.get("max_days", 0),
                level.value,
            ),
            data_type_overrides=_validate_overrides(row.get("data_type_overrides"), level.value),
        )

    if not rules:
        raise ValidationError("at least one rule is required")

    return rules


def _window_row(duration: RetentionDuration) -> dict:
    return {"min_days": duration.min_days, "max_days": duration.max_days}


def rules_to_rows(rules: Mapping[ClassificationLevel, ClassificationRule]) -> list[dict]:
    """Serialize a rule mapping for storage, ordered by sensitivity."""
    return [
        {
            "level": level.value,
            "retention": _window_row(rule.retention),
            "data_type_overrides": [
                {"data_type": data_type.value, "retention": _window_row(duration)}
                for data_type, duration in rule.data_type_overrides.items()
            ],
        }
        for level, rule in sorted(rules.items(), key=lambda item: CLASSIFICATION_ORDER[item[0]])
    ]


def _parse_status(value: Any) -> str:
    try:
        return PolicyStatus(value).value
    except ValueError:
        raise ValidationError(f"invalid status '{value}'; expected draft, active or disabled")


def _parse_enforcement_mode(value: Any) -> str:
    try:
        return EnforcementMode(value).value
    except ValueError:
        raise ValidationError(f"invalid enforcement_mode '{value}'; expected must_delete_only or include_can_delete")


def _validate_name(name: Any) -> str:
    text = str(name or "").strip()
    if not text:
        raise ValidationError("name is required")
    if len(text) > PolicyLimits.NAME_MAX_CHARS:
        raise ValidationError(f"name must be at most {PolicyLimits.NAME_MAX_CHARS} characters")
    return text


def _normalize_ids(ids: Optional[Iterable[str]], field_name: str) -> Optional[list[str]]:
    """De-duplicate a scope list. An empty list means no restriction (None)."""
    if ids is None:
        return None
    if isinstance(ids, (str, bytes)):
        raise ValidationError(f"{field_name} must be a list")
    seen: list[str] = []
    for value in ids:
        text = str(value).strip()
        if not text:
            raise ValidationError(f"{field_name} must not contain empty values")
        if text not in seen:
            seen.append(text)
    return seen or None


def _normalize_description(description: Optional[str]) -> Optional[str]:
    if description is None:
        return None
    text = str(description).strip()
    if len(text) > PolicyLimits.DESCRIPTION_MAX_CHARS:
        raise ValidationError(f"description must be at most {PolicyLimits.DESCRIPTION_MAX_CHARS} characters")
    return text or None


# -----------------------------------------------------------------------------
# Reads
# -----------------------------------------------------------------------------


def get_policy(db: Session, policy_id: uuid.UUID, org_id: Optional[uuid.UUID] = None) -> LifecyclePolicy:
    """
    Get a policy by id.

    When org_id is given, policies of other organizations are reported as
    missing rather than forbidden.
    """
    policy = db.query(LifecyclePolicy).filter(LifecyclePolicy.id == policy_id).first()
    if not policy or (org_id is not None and policy.org_id != org_id):
        raise NotFoundError(f"Lifecycle policy '{policy_id}' not found")
    return policy


def list_policies(db: Session, org_id: uuid.UUID) -> list[LifecyclePolicy]:
    """List all lifecycle policies of an organization."""
    return (
        db.query(LifecyclePolicy)
        .filter(LifecyclePolicy.org_id == org_id)
        .order_by(LifecyclePolicy.name, LifecyclePolicy.created_at)
        .all()
    )


def list_active_policies(db: Session, org_id: Optional[uuid.UUID] = None) -> list[LifecyclePolicy]:
    """Policies eligible for scheduled enforcement."""
    query = db.query(LifecyclePolicy).filter(LifecyclePolicy.status == PolicyStatus.ACTIVE.value)
    if org_id is not None:
        query = query.filter(LifecyclePolicy.org_id == org_id)
    return query.order_by(LifecyclePolicy.created_at).all()


def policy_rules(policy: LifecyclePolicy) -> Rules:
    """Immutable level -> ClassificationRule mapping for the engine."""
    return MappingProxyType(validate_rules(policy.rules))


# -----------------------------------------------------------------------------
# Writes
# -----------------------------------------------------------------------------


def create_policy(
    db: Session,
    org_id: uuid.UUID,
    name: str,
    rules: Iterable[Mapping[str, Any]],
    description: Optional[str] = None,
    status: str = PolicyStatus.DRAFT.value,
    enforcement_mode: Optional[str] = None,
    repository_ids: Optional[Iterable[str]] = None,
    schedule_ids: Optional[Iterable[str]] = None,
    created_by: Optional[str] = None,
) -> LifecyclePolicy:
    """
    Create a new lifecycle policy.

    Args:
        db: Database session
        org_id: Owning organization
        name: Display name
        rules: Editable rule rows, one per classification level
        description: Optional free text
        status: draft, active or disabled
        enforcement_mode: Defaults to DEFAULT_ENFORCEMENT_MODE
        repository_ids: Restrict the policy to these repositories (None = all)
        schedule_ids: Restrict the policy to snapshots of these schedules (None = all)
        created_by: Actor recorded for audit

    Returns:
        The created LifecyclePolicy

    Raises:
        ValidationError: if any field or rule is invalid
    """
    validated_name = _validate_name(name)
    validated_rules = validate_rules(rules)
    validated_status = _parse_status(status)
    mode = _parse_enforcement_mode(enforcement_mode or get_settings().DEFAULT_ENFORCEMENT_MODE)

    policy = LifecyclePolicy(
        org_id=org_id,
        name=validated_name,
        description=_normalize_description(description),
        status=validated_status,
        enforcement_mode=mode,
        rules=rules_to_rows(validated_rules),
        repository_ids=_normalize_ids(repository_ids, "repository_ids"),
        schedule_ids=_normalize_ids(schedule_ids, "schedule_ids"),
        deletion_count=0,
        bytes_reclaimed=0,
        created_by=created_by,
    )

    db.add(policy)
    db.commit()
    db.refresh(policy)

    logger.info(
        f"Created lifecycle policy: {policy.name} (status={policy.status})",
        extra={"event": "policy_created", "policy_id": str(policy.id), "org_id": str(org_id)},
    )
    return policy


def update_policy(
    db: Session,
    policy_id: uuid.UUID,
    org_id: Optional[uuid.UUID] = None,
    name: Optional[str] = None,
    description: Optional[str] = None,
    status: Optional[str] = None,
    rules: Optional[Iterable[Mapping[str, Any]]] = None,
    enforcement_mode: Optional[str] = None,
    repository_ids: Optional[Iterable[str]] = None,
    schedule_ids: Optional[Iterable[str]] = None,
) -> LifecyclePolicy:
    """
    Update an existing lifecycle policy.

    Only updates fields that are explicitly provided (not None). An empty
    description clears it; an empty repository_ids or schedule_ids list
    removes that restriction so the policy covers everything. Everything
    is validated before the policy is touched, so a rejected update leaves
    it unchanged. An enforcement run already in progress keeps the rules it
    started with.
    """
    policy = get_policy(db, policy_id, org_id)

    changes: dict[str, Any] = {}
    if name is not None:
        changes["name"] = _validate_name(name)
    if description is not None:
        changes["description"] = _normalize_description(description)
    if status is not None:
        changes["status"] = _parse_status(status)
    if rules is not None:
        changes["rules"] = rules_to_rows(validate_rules(rules))
    if enforcement_mode is not None:
        changes["enforcement_mode"] = _parse_enforcement_mode(enforcement_mode)
    if repository_ids is not None:
        changes["repository_ids"] = _normalize_ids(repository_ids, "repository_ids")
    if schedule_ids is not None:
        changes["schedule_ids"] = _normalize_ids(schedule_ids, "schedule_ids")

    for key, value in changes.items():
        setattr(policy, key, value)

    db.add(policy)
    db.commit()
    db.refresh(policy)

    logger.info(
        f"Updated lifecycle policy: {policy.name} ({', '.join(sorted(changes)) or 'no changes'})",
        extra={"event": "policy_updated", "policy_id": str(policy.id), "org_id": str(policy.org_id)},
    )
    return policy


def set_status(
    db: Session,
    policy_id: uuid.UUID,
    status: str,
    org_id: Optional[uuid.UUID] = None,
) -> LifecyclePolicy:
    """Move a policy between draft, active and disabled (any direction)."""
    return update_policy(db, policy_id, org_id=org_id, status=status)


def delete_policy(db: Session, policy_id: uuid.UUID, org_id: Optional[uuid.UUID] = None) -> None:
    """Delete a policy. Its deletion events stay in the audit log."""
    policy = get_policy(db, policy_id, org_id)
    name = policy.name
    db.delete(policy)
    db.commit()

    logger.info(
        f"Deleted lifecycle policy: {name}",
        extra={"event": "policy_deleted", "policy_id": str(policy_id)},
    )


def reconcile_counters(db: Session, policy_id: uuid.UUID) -> LifecyclePolicy:
    """
    Rebuild deletion_count and bytes_reclaimed from the deletion event log.

    Needed only if a run crashed between logging a deletion and bumping
    the counters.
    """
    policy = get_policy(db, policy_id)
    count, total = sum_for_policy(db, policy_id)

    if policy.deletion_count != count or policy.bytes_reclaimed != total:
        logger.warning(
            f"Reconciling counters for policy {policy_id}: "
            f"{policy.deletion_count}/{policy.bytes_reclaimed} -> {count}/{total}",
            extra={"event": "counters_reconciled", "policy_id": str(policy_id)},
        )
        policy.deletion_count = count
        policy.bytes_reclaimed = total
        db.add(policy)
        db.commit()
        db.refresh(policy)

    return policy
