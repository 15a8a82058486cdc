"""ProgressTracker: step bookkeeping for a single run.

Pure in-memory state with one writer (the run's engines, on one event loop)
and any number of readers. Readers get a frozen ProgressSnapshot whose step
mapping is a read-only copy, so later marks never leak into a snapshot that
was already handed out.

Step keys:
    client_scrape, client_<criterion>_tier<n>
    competitor_<i>_scrape, competitor_<i>_<criterion>_tier<n>
"""

import math
import time
from collections.abc import Callable, Mapping
from dataclasses import dataclass
from enum import Enum
from types import MappingProxyType
from typing import Any

from app.models.criterion_score import Criterion
from app.services.rubric import criteria_for_tier
from app.services.scoring import Tier

CLIENT_TARGET = "client"
INSIGHTS_PHASE = "Generating insights"


class StepState(str, Enum):
    PENDING = "pending"
    DONE = "done"
    FAILED = "failed"


class StepCategory(Enum):
    """Step categories in pipeline order, with label and prior duration (s)."""

    SCRAPE = ("scrape", "Scraping websites", 8.0)
    TIER1 = ("tier1", "Analyzing page structure", 0.8)
    TIER2 = ("tier2", "Running AI analysis", 1.5)
    TIER3 = ("tier3", "Measuring performance", 35.0)

    def __init__(self, suffix: str, label: str, prior_seconds: float) -> None:
        self.suffix = suffix
        self.label = label
        self.prior_seconds = prior_seconds

    @classmethod
    def of(cls, step_key: str) -> "StepCategory":
        for category in cls:
            if step_key.endswith(f"_{category.suffix}"):
                return category
        raise UnknownStepError(step_key)


class StepAlreadyRecordedError(RuntimeError):
    """A step was marked done/failed more than once."""

    def __init__(self, step_key: str, state: StepState) -> None:
        self.step_key = step_key
        self.state = state
        super().__init__(f"Step {step_key} already recorded as {state.value}")


class UnknownStepError(LookupError):
    """A step key outside the tracker's step set."""

    def __init__(self, step_key: str) -> None:
        self.step_key = step_key
        super().__init__(f"Unknown progress step: {step_key}")


def target_key(competitor_index: int | None) -> str:
    return CLIENT_TARGET if competitor_index is None else f"competitor_{competitor_index}"


def scrape_step(target: str) -> str:
    return f"{target}_scrape"


def tier_step(target: str, criterion: Criterion, tier: Tier) -> str:
    return f"{target}_{criterion.value}_{tier.step_suffix}"


def target_steps(target: str) -> list[str]:
    """All step keys for one target, in pipeline order."""
    steps = [scrape_step(target)]
    for tier in Tier:
        steps.extend(tier_step(target, c, tier) for c in criteria_for_tier(tier))
    return steps


def format_duration(seconds: float) -> str:
    """45s, 2m 5s, 3m."""
    total = max(1, math.ceil(seconds))
    minutes, secs = divmod(total, 60)
    if minutes == 0:
        return f"{secs}s"
    if secs == 0:
        return f"{minutes}m"
    return f"{minutes}m {secs}s"


@dataclass(frozen=True)
class ProgressSnapshot:
    overall_percent: int
    current_phase: str
    time_remaining: str | None
    step_states: Mapping[str, str]

    def to_dict(self) -> dict[str, Any]:
        """camelCase payload stored in progress_detail and returned by the API."""
        data: dict[str, Any] = {
            "overallPercent": self.overall_percent,
            "currentPhase": self.current_phase,
            "stepStates": dict(self.step_states),
        }
        if self.time_remaining is not None:
            data["timeRemaining"] = self.time_remaining
        return data


class ProgressTracker:
    """Progress for exactly one run."""

    def __init__(self, run_id: str, clock: Callable[[], float] = time.monotonic) -> None:
        self.run_id = run_id
        self._clock = clock
        self._steps: dict[str, StepState] = {}
        self._started_at: float | None = None

    @property
    def total_steps(self) -> int:
        return len(self._steps)

    @property
    def accounted_steps(self) -> int:
        return sum(1 for state in self._steps.values() if state is not StepState.PENDING)

    def set_total_steps(self, competitor_count: int) -> None:
        """Initialize the step set for the client plus ``competitor_count`` competitors."""
        if self._steps:
            raise RuntimeError(f"Progress steps already initialized for run {self.run_id}")
        if competitor_count < 0:
            raise ValueError("competitor_count must be >= 0")

        targets = [target_key(None), *(target_key(i) for i in range(competitor_count))]
        self._steps = {
            step: StepState.PENDING for target in targets for step in target_steps(target)
        }
        self._started_at = self._clock()

    def mark_step_complete(self, step_key: str) -> None:
        self._record(step_key, StepState.DONE)

    def mark_step_failed(self, step_key: str) -> None:
        self._record(step_key, StepState.FAILED)

    def _record(self, step_key: str, state: StepState) -> None:
        current = self._steps.get(step_key)
        if current is None:
            raise UnknownStepError(step_key)
        if current is not StepState.PENDING:
            raise StepAlreadyRecordedError(step_key, current)
        self._steps[step_key] = state

    def get_state(self) -> ProgressSnapshot:
        total = len(self._steps)
        accounted = self.accounted_steps
        pending = [key for key, state in self._steps.items() if state is StepState.PENDING]

        percent = int(accounted * 100 / total) if total else 0
        return ProgressSnapshot(
            overall_percent=percent,
            current_phase=self._current_phase(pending),
            time_remaining=self._time_remaining(pending, accounted),
            step_states=MappingProxyType({k: v.value for k, v in self._steps.items()}),
        )

    def _current_phase(self, pending: list[str]) -> str:
        if not self._steps:
            return StepCategory.SCRAPE.label
        pending_categories = {StepCategory.of(key) for key in pending}
        for category in StepCategory:
            if category in pending_categories:
                return category.label
        return INSIGHTS_PHASE

    def _time_remaining(self, pending: list[str], accounted: int) -> str | None:
        if not pending:
            return None
        if accounted == 0 or self._started_at is None:
            seconds = sum(StepCategory.of(key).prior_seconds for key in pending)
        else:
            elapsed = max(0.0, self._clock() - self._started_at)
            seconds = elapsed / accounted * len(pending)
        return format_duration(seconds)
