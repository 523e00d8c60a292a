# app/schemas/lifecycle.py
"""
Schemas for lifecycle policy, legal hold and enforcement endpoints.
"""

import uuid
from datetime import datetime

from pydantic import BaseModel, Field

# -----------------------------------------------------------------------------
# Rules
# -----------------------------------------------------------------------------


class RetentionWindow(BaseModel):
    """Retention window in days. max_days 0 = no ceiling."""

    min_days: int = Field(..., description="Minimum age before a snapshot may be deleted")
    max_days: int = Field(0, description="Age at which a snapshot must be deleted (0 = never)")


class DataTypeOverrideRow(BaseModel):
    """Retention override for snapshots carrying one data type."""

    data_type: str = Field(..., description="pii|phi|pci|proprietary|general")
    retention: RetentionWindow


class RetentionRuleRow(BaseModel):
    """One editable rule row; the service rejects unknown or repeated levels."""

    level: str = Field(..., description="public|internal|confidential|restricted")
    retention: RetentionWindow
    data_type_overrides: list[DataTypeOverrideRow] = Field(
        default_factory=list,
        description="Per data type windows; the most restrictive merge applies when several match",
    )


# -----------------------------------------------------------------------------
# Policies
# -----------------------------------------------------------------------------


class PolicyCreateRequest(BaseModel):
    """Request to create a lifecycle policy."""

    name: str = Field(..., max_length=255)
    description: str | None = Field(None, max_length=2000)
    rules: list[RetentionRuleRow] | None = Field(
        None, description="Rule rows (default: built-in per-level defaults)"
    )
    status: str = Field("draft", description="draft|active|disabled")
    enforcement_mode: str | None = Field(None, description="must_delete_only|include_can_delete")
    repository_ids: list[str] | None = Field(None, description="Restrict to these repositories (default: all)")
    schedule_ids: list[str] | None = Field(None, description="Restrict to snapshots of these schedules (default: all)")


class PolicyUpdateRequest(BaseModel):
    """
    Partial update. Omitted fields are left unchanged.

    An empty description clears it; an empty repository_ids or schedule_ids
    list removes that restriction.
    """

    name: str | None = Field(None, max_length=255)
    description: str | None = Field(None, max_length=2000, description="\"\" clears the description")
    rules: list[RetentionRuleRow] | None = None
    status: str | None = Field(None, description="draft|active|disabled")
    enforcement_mode: str | None = None
    repository_ids: list[str] | None = Field(None, description="[] = all repositories")
    schedule_ids: list[str] | None = Field(None, description="[] = all schedules")


class PolicyResponse(BaseModel):
    """Lifecycle policy details."""

    id: uuid.UUID
    org_id: uuid.UUID
    name: str
    description: str | None = None
    status: str
    enforcement_mode: str
    rules: list[RetentionRuleRow]
    repository_ids: list[str] | None = None
    schedule_ids: list[str] | None = None
    deletion_count: int
    bytes_reclaimed: int
    last_evaluated_at: datetime | None = None
    last_deletion_at: datetime | None = None
    created_by: str | None = None
    created_at: datetime | None = None
    updated_at: datetime | None = None


# -----------------------------------------------------------------------------
# Dry run
# -----------------------------------------------------------------------------


class PreviewRequest(BaseModel):
    """Dry run of unsaved rules."""

    rules: list[RetentionRuleRow]
    repository_ids: list[str] | None = None
    schedule_ids: list[str] | None = None


class EvaluationResponse(BaseModel):
    """Engine decision for one snapshot."""

    snapshot_id: str
    repository_id: str | None = None
    schedule_id: str | None = None
    classification_level: str
    data_types: list[str] = Field(default_factory=list)
    snapshot_time: datetime | None = None
    age_days: int
    size_bytes: int
    action: str
    reason: str
    min_retention_days: int
    max_retention_days: int
    days_until_deletable: int
    days_until_auto_delete: int
    is_on_legal_hold: bool


class DryRunResponse(BaseModel):
    """
    Dry run result: aggregates plus every evaluation, in candidate order.

    The evaluation time is sent in the X-Evaluated-At header so that two
    dry runs over unchanged state return identical bodies.
    """

    dry_run: bool = True
    policy_id: str | None = None
    total_snapshots: int
    keep_count: int
    can_delete_count: int
    must_delete_count: int
    hold_count: int
    total_size_to_delete: int
    evaluations: list[EvaluationResponse] = Field(default_factory=list)


# -----------------------------------------------------------------------------
# Enforcement
# -----------------------------------------------------------------------------


class EnforceRequest(BaseModel):
    """Request to run enforcement now."""

    confirm: bool = Field(False, description="Required: enforcement permanently deletes snapshots")


class EnforcementResponse(BaseModel):
    """Enforcement run result."""

    policy_id: str
    run_id: str | None = None
    success: bool
    skipped: bool
    skip_reason: str | None = None
    cancelled: bool
    aborted: bool
    enforcement_mode: str | None = None
    snapshots_evaluated: int
    snapshots_targeted: int
    snapshots_deleted: int
    snapshots_already_deleted: int
    snapshots_failed: int
    snapshots_held: int = 0
    bytes_reclaimed: int
    deleted_snapshot_ids: list[str] = Field(default_factory=list)
    errors: list[str] = Field(default_factory=list)


class CancelResponse(BaseModel):
    """Result of a cancellation request."""

    policy_id: str
    cancellation_requested: bool


class DeletionEventResponse(BaseModel):
    """One audit log entry."""

    id: uuid.UUID
    org_id: uuid.UUID
    policy_id: uuid.UUID
    snapshot_id: str
    repository_id: str | None = None
    reason: str
    size_bytes: int
    deleted_by: str
    deleted_at: datetime


# -----------------------------------------------------------------------------
# Legal holds
# -----------------------------------------------------------------------------


class HoldRequest(BaseModel):
    """Request to place (or re-place) a legal hold."""

    reason: str = Field(..., min_length=1, max_length=1000)


class HoldResponse(BaseModel):
    """Legal hold details."""

    id: uuid.UUID
    org_id: uuid.UUID
    snapshot_id: str
    reason: str
    placed_by: str
    placed_at: datetime
    updated_at: datetime | None = None
