# app/routers/legal_holds.py
"""
Admin endpoints for legal holds.

GET    /v1/legal-holds                  - All holds of the org
GET    /v1/snapshots/{snapshot_id}/hold - Hold on one snapshot
POST   /v1/snapshots/{snapshot_id}/hold - Place (or re-place) a hold
DELETE /v1/snapshots/{snapshot_id}/hold - Lift a hold
"""

import logging
import uuid

from fastapi import APIRouter, Depends, Response
from sqlalchemy.orm import Session

from app.auth import get_actor, get_org_id, require_admin_key
from app.database import get_db
from app.models import LegalHold
from app.schemas.lifecycle import HoldRequest, HoldResponse
from app.services.lifecycle import get_hold, list_holds, lift_hold, place_hold

logger = logging.getLogger(__name__)

router = APIRouter(tags=["legal-holds"])


def _hold_response(hold: LegalHold) -> HoldResponse:
    return HoldResponse(
        id=hold.id,
        org_id=hold.org_id,
        snapshot_id=hold.snapshot_id,
        reason=hold.reason,
        placed_by=hold.placed_by,
        placed_at=hold.placed_at,
        updated_at=hold.updated_at,
    )


@router.get("/v1/legal-holds", response_model=list[HoldResponse])
def list_legal_holds(
    db: Session = Depends(get_db),
    org_id: uuid.UUID = Depends(get_org_id),
    _: None = Depends(require_admin_key),
) -> list[HoldResponse]:
    """List every legal hold of the organization, newest first."""
    return [_hold_response(h) for h in list_holds(db, org_id)]


@router.get("/v1/snapshots/{snapshot_id}/hold", response_model=HoldResponse)
def get_legal_hold(
    snapshot_id: str,
    db: Session = Depends(get_db),
    org_id: uuid.UUID = Depends(get_org_id),
    _: None = Depends(require_admin_key),
) -> HoldResponse:
    """Get the hold on a snapshot (404 if it is not held)."""
    return _hold_response(get_hold(db, org_id, snapshot_id))


@router.post("/v1/snapshots/{snapshot_id}/hold", response_model=HoldResponse)
def place_legal_hold(
    snapshot_id: str,
    request: HoldRequest,
    db: Session = Depends(get_db),
    org_id: uuid.UUID = Depends(get_org_id),
    actor: str = Depends(get_actor),
    _: None = Depends(require_admin_key),
) -> HoldResponse:
    """
    Place a legal hold on a snapshot.

    Idempotent: holding an already-held snapshot keeps the original hold
    and replaces its reason. The snapshot does not need to exist in the
    snapshot source yet.
    """
    hold = place_hold(db, org_id, snapshot_id, reason=request.reason, placed_by=actor)
    return _hold_response(hold)


@router.delete("/v1/snapshots/{snapshot_id}/hold", status_code=204)
def lift_legal_hold(
    snapshot_id: str,
    db: Session = Depends(get_db),
    org_id: uuid.UUID = Depends(get_org_id),
    _: None = Depends(require_admin_key),
) -> Response:
    """Lift the hold on a snapshot (404 if it is not held)."""
    lift_hold(db, org_id, snapshot_id)
    return Response(status_code=204)
