# app/schemas/__init__.py
"""
Pydantic schemas for API request/response validation.
"""

from app.schemas.lifecycle import (
    CancelResponse,
    DataTypeOverrideRow,
    DeletionEventResponse,
    DryRunResponse,
    EnforceRequest,
    EnforcementResponse,
    EvaluationResponse,
    HoldRequest,
    HoldResponse,
    PolicyCreateRequest,
    PolicyResponse,
    PolicyUpdateRequest,
    PreviewRequest,
    RetentionRuleRow,
    RetentionWindow,
)

__all__ = [
    # Policies
    "RetentionWindow",
    "DataTypeOverrideRow",
    "RetentionRuleRow",
    "PolicyCreateRequest",
    "PolicyUpdateRequest",
    "PolicyResponse",
    # Dry run
    "PreviewRequest",
    "EvaluationResponse",
    "DryRunResponse",
    # Enforcement
    "EnforceRequest",
    "EnforcementResponse",
    "CancelResponse",
    "DeletionEventResponse",
    # Legal holds
    "HoldRequest",
    "HoldResponse",
]
