# app/routers/__init__.py
"""
API routers for v1 endpoints.
"""

from app.routers.legal_holds import router as legal_holds_router
from app.routers.lifecycle_policies import router as lifecycle_policies_router

__all__ = [
    "lifecycle_policies_router",
    "legal_holds_router",
]
