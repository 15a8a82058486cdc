"""Pydantic schemas for the effectiveness API.

Responses serialize with camelCase keys:
- StartRunRequest / StartRunResponse: Trigger a run
- RunResponse / RunDetailResponse: A run with its criterion scores
- RunStatusResponse: Lightweight polling payload
- ProgressDetail: Snapshot of step progress
- InsightsResponse: Generated or cached insights
"""

from datetime import datetime
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

StepStateValue = Literal["pending", "done", "failed"]
EffectiveStatusValue = Literal["completed", "partial", "failed", "running"]


class CamelModel(BaseModel):
    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        from_attributes=True,
    )


class StartRunRequest(CamelModel):
    """Request schema for starting an effectiveness run."""

    force: bool = Field(
        default=False,
        description="Supersede any in-flight run for the client instead of reusing it",
    )


class StartRunResponse(CamelModel):
    run_id: str = Field(..., description="Id of the started (or reused) run")


class ProgressDetail(CamelModel):
    """Step-level progress snapshot."""

    overall_percent: int = Field(0, ge=0, le=100, description="Percent of steps accounted for")
    current_phase: str = Field("", description="Human-readable phase label")
    time_remaining: str | None = Field(
        None, description="Estimated time remaining, e.g. '1m 20s'"
    )
    step_states: dict[str, StepStateValue] = Field(
        default_factory=dict,
        description="Step key to pending/done/failed",
    )


class CriterionScoreResponse(CamelModel):
    id: str
    run_id: str
    competitor_id: str | None = Field(None, description="NULL means the client website")
    criterion: str
    score: float = Field(..., ge=0, le=10)
    passes: bool
    tier: int = Field(..., ge=1, le=3, description="Highest tier that produced the score")
    evidence: dict[str, Any] = Field(default_factory=dict)
    created_at: datetime
    updated_at: datetime


class RunResponse(CamelModel):
    """A run as shown to callers, with its derived effective status."""

    id: str
    client_id: str
    status: str = Field(..., description="Raw state machine status")
    effective_status: EffectiveStatusValue = Field(
        ..., description="Display status derived from status and client results"
    )
    overall_score: float | None = None
    screenshot_url: str | None = None
    full_page_screenshot_url: str | None = None
    progress: int = Field(0, ge=0, le=100)
    progress_detail: ProgressDetail = Field(default_factory=ProgressDetail)
    error_message: str | None = None
    created_at: datetime
    updated_at: datetime


class RunDetailResponse(CamelModel):
    run: RunResponse
    criterion_scores: list[CriterionScoreResponse] = Field(default_factory=list)


class RunStatusResponse(CamelModel):
    """Polling payload."""

    run_id: str
    status: str
    effective_status: EffectiveStatusValue
    should_continue_polling: bool
    progress: int = Field(0, ge=0, le=100)
    progress_detail: ProgressDetail = Field(default_factory=ProgressDetail)


class InsightsResponse(CamelModel):
    run_id: str
    source: Literal["model", "fallback"]
    primary_issue: str
    root_cause: str = ""
    business_impact: str = ""
    key_insight: str
    quick_wins: list[str] = Field(default_factory=list)
    strategic_initiatives: list[str] = Field(default_factory=list)
    confidence: float = Field(0.0, ge=0, le=1)
    generated_at: datetime
