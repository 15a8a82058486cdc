"""Schemas layer - Pydantic models for API validation.

Schemas define the shape of data for API requests and responses.
They handle validation, serialization, and documentation.
"""

from app.schemas.effectiveness import (
    CriterionScoreResponse,
    InsightsResponse,
    ProgressDetail,
    RunDetailResponse,
    RunResponse,
    RunStatusResponse,
    StartRunRequest,
    StartRunResponse,
)

__all__ = [
    "CriterionScoreResponse",
    "InsightsResponse",
    "ProgressDetail",
    "RunDetailResponse",
    "RunResponse",
    "RunStatusResponse",
    "StartRunRequest",
    "StartRunResponse",
]
