# app/services/lifecycle/__init__.py
"""
Snapshot lifecycle services.

Classification-keyed retention for backup snapshots:
- Legal hold          -> never deleted
- age < min_days      -> keep
- age >= max_days > 0 -> must_delete
- otherwise           -> can_delete

Services:
- evaluator: Pure evaluation engine shared by dry runs and enforcement
- policy_service: Lifecycle policy CRUD and rule validation
- hold_service: Legal hold registry
- dry_run_service: Read-only simulation
- enforcement_service: Per-policy locked deletion runs
- deletion_log: Append-only audit trail
"""

from app.services.lifecycle.deletion_log import (
    append_event,
    list_policy_deletions,
    list_recent_deletions,
)
from app.services.lifecycle.dry_run_service import (
    dry_run,
    evaluate_org,
    preview,
    scope_to_repositories,
    scope_to_schedules,
)
from app.services.lifecycle.enforcement_service import (
    EnforcementLockRegistry,
    EnforcementResult,
    cancel_enforcement,
    enforcement_locks,
    run_enforcement,
    run_scheduled_cycle,
)
from app.services.lifecycle.errors import (
    ConflictError,
    LifecycleError,
    NotFoundError,
    SnapshotDeletionError,
    SourceUnavailableError,
    ValidationError,
)
from app.services.lifecycle.evaluator import (
    ClassificationRule,
    DryRunResult,
    RetentionDuration,
    SnapshotEvaluation,
    default_rules,
    evaluate,
    evaluate_snapshot,
)
from app.services.lifecycle.hold_service import get_hold, is_on_hold, list_holds, lift_hold, place_hold
from app.services.lifecycle.policy_service import (
    create_policy,
    delete_policy,
    get_policy,
    list_active_policies,
    list_policies,
    reconcile_counters,
    set_status,
    update_policy,
    validate_rules,
)

__all__ = [
    # Engine
    "RetentionDuration",
    "ClassificationRule",
    "SnapshotEvaluation",
    "DryRunResult",
    "default_rules",
    "evaluate",
    "evaluate_snapshot",
    # Policy
    "create_policy",
    "get_policy",
    "list_policies",
    "list_active_policies",
    "update_policy",
    "set_status",
    "delete_policy",
    "validate_rules",
    "reconcile_counters",
    # Holds
    "place_hold",
    "lift_hold",
    "get_hold",
    "is_on_hold",
    "list_holds",
    # Dry run
    "dry_run",
    "preview",
    "evaluate_org",
    "scope_to_repositories",
    "scope_to_schedules",
    # Enforcement
    "run_enforcement",
    "run_scheduled_cycle",
    "cancel_enforcement",
    "EnforcementResult",
    "EnforcementLockRegistry",
    "enforcement_locks",
    # Deletion log
    "append_event",
    "list_recent_deletions",
    "list_policy_deletions",
    # Errors
    "LifecycleError",
    "ValidationError",
    "NotFoundError",
    "ConflictError",
    "SourceUnavailableError",
    "SnapshotDeletionError",
]
