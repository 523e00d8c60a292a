# app/main.py
"""
Snapshot lifecycle API.

Admin-facing service that evaluates backup snapshots against
classification-keyed retention policies, previews the outcome and
enforces deletions.
"""

from fastapi import FastAPI

from app.config import get_settings
from app.exception_handlers import register_exception_handlers
from app.logging_config import configure_logging
from app.routers import legal_holds_router, lifecycle_policies_router

settings = get_settings()
configure_logging(json_format=settings.LOG_JSON, level=settings.LOG_LEVEL)

app = FastAPI(title="Snapshot Lifecycle API")

register_exception_handlers(app)

app.include_router(lifecycle_policies_router)
app.include_router(legal_holds_router)


# ---------------------------------------------------------------------------
# Health
# ---------------------------------------------------------------------------


@app.get("/health")
def health() -> dict:
    return {"status": "ok", "service": "snapshot-lifecycle-api", "environment": settings.ENVIRONMENT}
