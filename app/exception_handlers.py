"""Map lifecycle service errors to HTTP responses.

Register with register_exception_handlers(app).
"""

import logging

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from app.services.lifecycle.errors import (
    ConflictError,
    LifecycleError,
    NotFoundError,
    SnapshotDeletionError,
    SourceUnavailableError,
    ValidationError,
)

logger = logging.getLogger(__name__)

# Checked in order; the first matching class wins
_ERROR_STATUS: tuple[tuple[type[LifecycleError], int], ...] = (
    (ValidationError, 400),
    (NotFoundError, 404),
    (ConflictError, 409),
    (SourceUnavailableError, 503),
    (SnapshotDeletionError, 502),
)


def status_for(exc: LifecycleError) -> int:
    for error_type, status in _ERROR_STATUS:
        if isinstance(exc, error_type):
            return status
    return 500


def _lifecycle_exception_handler(request: Request, exc: LifecycleError) -> JSONResponse:
    status = status_for(exc)
    if status >= 500:
        logger.error(f"{request.method} {request.url.path} failed: {exc}")
    return JSONResponse(status_code=status, content={"detail": str(exc)})


def register_exception_handlers(app: FastAPI) -> None:
    app.add_exception_handler(LifecycleError, _lifecycle_exception_handler)
