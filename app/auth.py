"""Shared authentication and request-scope dependencies."""

import os
import secrets
import uuid

from fastapi import Header, HTTPException

from app.constants import EnforcementDefaults


def require_admin_key(
    x_api_key: str | None = Header(default=None, alias="X-API-Key"),
) -> None:
    """Validate admin API key. Fails closed if ADMIN_API_KEY is not set."""
    expected_key = os.getenv("ADMIN_API_KEY")

    if not expected_key:
        raise HTTPException(
            status_code=500,
            detail="Server misconfiguration: admin authentication not configured",
        )

    if not x_api_key or not secrets.compare_digest(x_api_key, expected_key):
        raise HTTPException(
            status_code=401,
            detail="Invalid or missing API key",
        )


def get_org_id(
    x_org_id: str | None = Header(default=None, alias="X-Org-ID"),
) -> uuid.UUID:
    """Organization the request is scoped to."""
    if not x_org_id:
        raise HTTPException(status_code=400, detail="Missing X-Org-ID header")
    try:
        return uuid.UUID(x_org_id)
    except ValueError:
        raise HTTPException(status_code=400, detail="X-Org-ID must be a UUID")


def get_actor(
    x_actor: str | None = Header(default=None, alias="X-Actor"),
) -> str:
    """Name recorded on holds and deletion events (defaults to 'admin')."""
    actor = (x_actor or "").strip()
    return actor[:255] if actor else EnforcementDefaults.INITIATED_BY_ADMIN
