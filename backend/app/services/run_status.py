"""Effective status derivation.

The one place that decides what a run looks like to callers. The API
serializer, the polling endpoint and the insights trigger all import it.
"""

from enum import Enum

from app.models.effectiveness_run import RunStatus


class EffectiveStatus(str, Enum):
    COMPLETED = "completed"
    PARTIAL = "partial"
    FAILED = "failed"
    RUNNING = "running"


# Every non-terminal status plus the legacy "analyzing" alias
IN_PROGRESS_STATUSES: frozenset[str] = frozenset(
    {status.value for status in RunStatus if not status.is_terminal} | {"analyzing"}
)

INSIGHT_READY_STATUSES = frozenset({EffectiveStatus.COMPLETED, EffectiveStatus.PARTIAL})


def derive_effective_status(raw_status: str, criterion_score_count: int) -> EffectiveStatus:
    """Map a raw run status plus result count to the displayed status.

    - in progress (or unknown) -> running
    - completed -> completed
    - failed with at least one score -> partial
    - failed with no scores -> failed
    """
    # RunStatus members hash by name, so compare on the plain value
    raw = raw_status.value if isinstance(raw_status, RunStatus) else raw_status
    if raw in IN_PROGRESS_STATUSES:
        return EffectiveStatus.RUNNING
    if raw == RunStatus.COMPLETED.value:
        return EffectiveStatus.COMPLETED
    if raw == RunStatus.FAILED.value:
        if criterion_score_count > 0:
            return EffectiveStatus.PARTIAL
        return EffectiveStatus.FAILED
    return EffectiveStatus.RUNNING


def should_continue_polling(raw_status: str, criterion_score_count: int) -> bool:
    return derive_effective_status(raw_status, criterion_score_count) is EffectiveStatus.RUNNING


def insights_available(raw_status: str, criterion_score_count: int) -> bool:
    return derive_effective_status(raw_status, criterion_score_count) in INSIGHT_READY_STATUSES
