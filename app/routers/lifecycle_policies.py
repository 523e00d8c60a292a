# app/routers/lifecycle_policies.py
"""
Admin endpoints for snapshot lifecycle policies.

GET    /v1/lifecycle-policies                      - List policies of the org
POST   /v1/lifecycle-policies                      - Create a policy
POST   /v1/lifecycle-policies/preview              - Dry run of unsaved rules
GET    /v1/lifecycle-policies/{id}                 - Get a policy
PUT    /v1/lifecycle-policies/{id}                 - Update a policy (partial)
DELETE /v1/lifecycle-policies/{id}                 - Delete a policy
POST   /v1/lifecycle-policies/{id}/dry-run         - Preview what enforcement would do
POST   /v1/lifecycle-policies/{id}/enforce         - Run enforcement now
POST   /v1/lifecycle-policies/{id}/enforce/cancel  - Stop a running enforcement
GET    /v1/lifecycle-policies/{id}/deletions       - Deletions made by a policy
GET    /v1/lifecycle-deletions                     - Recent deletions of the org

Every endpoint requires X-API-Key and is scoped by X-Org-ID. Dry-run
responses carry the evaluation time in the X-Evaluated-At header.
"""

import logging
import uuid

from fastapi import APIRouter, Depends, HTTPException, Query, Response
from sqlalchemy.orm import Session

from app.auth import get_actor, get_org_id, require_admin_key
from app.config import get_settings
from app.database import get_db
from app.models import LifecycleDeletionEvent, LifecyclePolicy
from app.schemas.lifecycle import (
    CancelResponse,
    DeletionEventResponse,
    DryRunResponse,
    EnforcementResponse,
    EnforceRequest,
    EvaluationResponse,
    PolicyCreateRequest,
    PolicyResponse,
    PolicyUpdateRequest,
    PreviewRequest,
)
from app.services.lifecycle import (
    DryRunResult,
    EnforcementResult,
    cancel_enforcement,
    create_policy,
    default_rules,
    delete_policy,
    dry_run,
    get_policy,
    list_policies,
    list_policy_deletions,
    list_recent_deletions,
    preview,
    run_enforcement,
    update_policy,
)
from app.services.lifecycle.policy_service import rules_to_rows
from app.snapshots import SnapshotSource, get_snapshot_source

logger = logging.getLogger(__name__)

router = APIRouter(tags=["lifecycle-policies"])


# -----------------------------------------------------------------------------
# Helpers
# -----------------------------------------------------------------------------


def _policy_response(policy: LifecyclePolicy) -> PolicyResponse:
    return PolicyResponse(
        id=policy.id,
        org_id=policy.org_id,
        name=policy.name,
        description=policy.description,
        status=policy.status,
        enforcement_mode=policy.enforcement_mode,
        rules=policy.rules,
        repository_ids=policy.repository_ids,
        schedule_ids=policy.schedule_ids,
        deletion_count=policy.deletion_count or 0,
        bytes_reclaimed=policy.bytes_reclaimed or 0,
        last_evaluated_at=policy.last_evaluated_at,
        last_deletion_at=policy.last_deletion_at,
        created_by=policy.created_by,
        created_at=policy.created_at,
        updated_at=policy.updated_at,
    )


def _tag(value) -> str:
    return str(getattr(value, "value", value))


def _set_evaluated_at(response: Response, result: DryRunResult) -> None:
    response.headers["X-Evaluated-At"] = result.evaluated_at.isoformat()


def _dry_run_response(result: DryRunResult) -> DryRunResponse:
    return DryRunResponse(
        policy_id=result.policy_id,
        total_snapshots=result.total_snapshots,
        keep_count=result.keep_count,
        can_delete_count=result.can_delete_count,
        must_delete_count=result.must_delete_count,
        hold_count=result.hold_count,
        total_size_to_delete=result.total_size_to_delete,
        evaluations=[
            EvaluationResponse(
                snapshot_id=e.snapshot_id,
                repository_id=e.repository_id,
                schedule_id=e.schedule_id,
                classification_level=_tag(e.classification_level),
                data_types=[_tag(dt) for dt in e.data_types],
                snapshot_time=e.snapshot_time,
                age_days=e.age_days,
                size_bytes=e.size_bytes,
                action=e.action.value,
                reason=e.reason,
                min_retention_days=e.min_retention_days,
                max_retention_days=e.max_retention_days,
                days_until_deletable=e.days_until_deletable,
                days_until_auto_delete=e.days_until_auto_delete,
                is_on_legal_hold=e.is_on_legal_hold,
            )
            for e in result.evaluations
        ],
    )


def _enforcement_response(result: EnforcementResult) -> EnforcementResponse:
    return EnforcementResponse(
        policy_id=result.policy_id,
        run_id=result.run_id,
        success=result.success,
        skipped=result.skipped,
        skip_reason=result.skip_reason,
        cancelled=result.cancelled,
        aborted=result.aborted,
        enforcement_mode=result.enforcement_mode,
        snapshots_evaluated=result.snapshots_evaluated,
        snapshots_targeted=result.snapshots_targeted,
        snapshots_deleted=result.snapshots_deleted,
        snapshots_already_deleted=result.snapshots_already_deleted,
        snapshots_failed=result.snapshots_failed,
        snapshots_held=result.snapshots_held,
        bytes_reclaimed=result.bytes_reclaimed,
        deleted_snapshot_ids=result.deleted_snapshot_ids,
        errors=result.errors,
    )


def _deletion_response(event: LifecycleDeletionEvent) -> DeletionEventResponse:
    return DeletionEventResponse(
        id=event.id,
        org_id=event.org_id,
        policy_id=event.policy_id,
        snapshot_id=event.snapshot_id,
        repository_id=event.repository_id,
        reason=event.reason,
        size_bytes=event.size_bytes,
        deleted_by=event.deleted_by,
        deleted_at=event.deleted_at,
    )


def _page_size(limit: int | None) -> int:
    settings = get_settings()
    return min(limit or settings.DELETION_EVENTS_DEFAULT_LIMIT, settings.DELETION_EVENTS_MAX_LIMIT)


def _rule_rows(rules) -> list[dict]:
    return [rule.model_dump() for rule in rules]


# -----------------------------------------------------------------------------
# Policies
# -----------------------------------------------------------------------------


@router.get("/v1/lifecycle-policies", response_model=list[PolicyResponse])
def list_lifecycle_policies(
    db: Session = Depends(get_db),
    org_id: uuid.UUID = Depends(get_org_id),
    _: None = Depends(require_admin_key),
) -> list[PolicyResponse]:
    """List all lifecycle policies of the organization."""
    return [_policy_response(p) for p in list_policies(db, org_id)]


@router.post("/v1/lifecycle-policies", response_model=PolicyResponse, status_code=201)
def create_lifecycle_policy(
    request: PolicyCreateRequest,
    db: Session = Depends(get_db),
    org_id: uuid.UUID = Depends(get_org_id),
    actor: str = Depends(get_actor),
    _: None = Depends(require_admin_key),
) -> PolicyResponse:
    """
    Create a lifecycle policy.

    Without `rules`, the policy starts from the built-in per-level defaults.
    New policies are drafts unless `status` says otherwise.
    """
    rows = _rule_rows(request.rules) if request.rules is not None else rules_to_rows(default_rules())

    policy = create_policy(
        db,
        org_id=org_id,
        name=request.name,
        rules=rows,
        description=request.description,
        status=request.status,
        enforcement_mode=request.enforcement_mode,
        repository_ids=request.repository_ids,
        schedule_ids=request.schedule_ids,
        created_by=actor,
    )
    return _policy_response(policy)


@router.post("/v1/lifecycle-policies/preview", response_model=DryRunResponse)
def preview_lifecycle_rules(
    request: PreviewRequest,
    response: Response,
    db: Session = Depends(get_db),
    org_id: uuid.UUID = Depends(get_org_id),
    source: SnapshotSource = Depends(get_snapshot_source),
    _: None = Depends(require_admin_key),
) -> DryRunResponse:
    """
    Evaluate unsaved rules against the organization's snapshots.

    Nothing is stored or deleted.
    """
    result = preview(
        db,
        source,
        org_id,
        _rule_rows(request.rules),
        repository_ids=request.repository_ids,
        schedule_ids=request.schedule_ids,
    )
    _set_evaluated_at(response, result)
    return _dry_run_response(result)


@router.get("/v1/lifecycle-policies/{policy_id}", response_model=PolicyResponse)
def get_lifecycle_policy(
    policy_id: uuid.UUID,
    db: Session = Depends(get_db),
    org_id: uuid.UUID = Depends(get_org_id),
    _: None = Depends(require_admin_key),
) -> PolicyResponse:
    """Get one lifecycle policy."""
    return _policy_response(get_policy(db, policy_id, org_id))


@router.put("/v1/lifecycle-policies/{policy_id}", response_model=PolicyResponse)
def update_lifecycle_policy(
    policy_id: uuid.UUID,
    request: PolicyUpdateRequest,
    db: Session = Depends(get_db),
    org_id: uuid.UUID = Depends(get_org_id),
    _: None = Depends(require_admin_key),
) -> PolicyResponse:
    """
    Update a lifecycle policy.

    Only provided fields change; an empty description, repository_ids or
    schedule_ids clears it. A running enforcement keeps the rules it
    started with; the next run picks up the new ones.
    """
    policy = update_policy(
        db,
        policy_id,
        org_id=org_id,
        name=request.name,
        description=request.description,
        status=request.status,
        rules=_rule_rows(request.rules) if request.rules is not None else None,
        enforcement_mode=request.enforcement_mode,
        repository_ids=request.repository_ids,
        schedule_ids=request.schedule_ids,
    )
    return _policy_response(policy)


@router.delete("/v1/lifecycle-policies/{policy_id}", status_code=204)
def delete_lifecycle_policy(
    policy_id: uuid.UUID,
    db: Session = Depends(get_db),
    org_id: uuid.UUID = Depends(get_org_id),
    _: None = Depends(require_admin_key),
) -> Response:
    """Delete a lifecycle policy. Its deletion events are kept."""
    delete_policy(db, policy_id, org_id)
    return Response(status_code=204)


# -----------------------------------------------------------------------------
# Dry run and enforcement
# -----------------------------------------------------------------------------


@router.post("/v1/lifecycle-policies/{policy_id}/dry-run", response_model=DryRunResponse)
def dry_run_lifecycle_policy(
    policy_id: uuid.UUID,
    response: Response,
    db: Session = Depends(get_db),
    org_id: uuid.UUID = Depends(get_org_id),
    source: SnapshotSource = Depends(get_snapshot_source),
    _: None = Depends(require_admin_key),
) -> DryRunResponse:
    """
    Preview what enforcing this policy would do right now.

    Works for draft and disabled policies. Never deletes anything.
    """
    result = dry_run(db, source, policy_id, org_id=org_id)
    _set_evaluated_at(response, result)
    return _dry_run_response(result)


@router.post("/v1/lifecycle-policies/{policy_id}/enforce", response_model=EnforcementResponse)
def enforce_lifecycle_policy(
    policy_id: uuid.UUID,
    request: EnforceRequest,
    db: Session = Depends(get_db),
    org_id: uuid.UUID = Depends(get_org_id),
    actor: str = Depends(get_actor),
    source: SnapshotSource = Depends(get_snapshot_source),
    _: None = Depends(require_admin_key),
) -> EnforcementResponse:
    """
    Run enforcement for an active policy now.

    **WARNING**: This permanently deletes snapshots.

    Requires `confirm: true`. Returns 409 if a run for this policy is
    already in progress.
    """
    if not request.confirm:
        raise HTTPException(
            status_code=400,
            detail="Enforcement requires 'confirm: true'",
        )

    result = run_enforcement(db, source, policy_id, initiated_by=actor, org_id=org_id)
    return _enforcement_response(result)


@router.post("/v1/lifecycle-policies/{policy_id}/enforce/cancel", response_model=CancelResponse)
def cancel_lifecycle_enforcement(
    policy_id: uuid.UUID,
    db: Session = Depends(get_db),
    org_id: uuid.UUID = Depends(get_org_id),
    _: None = Depends(require_admin_key),
) -> CancelResponse:
    """
    Ask a running enforcement to stop after its current deletion, whether
    it runs in this process or another one.

    `cancellation_requested` is false when nothing was running.
    """
    policy = get_policy(db, policy_id, org_id)
    requested = cancel_enforcement(db, policy.id)
    return CancelResponse(policy_id=str(policy.id), cancellation_requested=requested)


# -----------------------------------------------------------------------------
# Deletion log
# -----------------------------------------------------------------------------


@router.get("/v1/lifecycle-policies/{policy_id}/deletions", response_model=list[DeletionEventResponse])
def list_lifecycle_policy_deletions(
    policy_id: uuid.UUID,
    limit: int | None = Query(None, ge=1, description="Max events (capped by DELETION_EVENTS_MAX_LIMIT)"),
    db: Session = Depends(get_db),
    org_id: uuid.UUID = Depends(get_org_id),
    _: None = Depends(require_admin_key),
) -> list[DeletionEventResponse]:
    """Deletions made by one policy, newest first."""
    policy = get_policy(db, policy_id, org_id)
    return [_deletion_response(e) for e in list_policy_deletions(db, policy.id, limit=_page_size(limit))]


@router.get("/v1/lifecycle-deletions", response_model=list[DeletionEventResponse])
def list_lifecycle_deletions(
    limit: int | None = Query(None, ge=1, description="Max events (capped by DELETION_EVENTS_MAX_LIMIT)"),
    db: Session = Depends(get_db),
    org_id: uuid.UUID = Depends(get_org_id),
    _: None = Depends(require_admin_key),
) -> list[DeletionEventResponse]:
    """Most recent deletions across all policies of the organization."""
    return [_deletion_response(e) for e in list_recent_deletions(db, org_id, limit=_page_size(limit))]
