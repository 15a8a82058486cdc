"""TieredRunEngine: drives one target through scrape, tier 1, tier 2, tier 3.

Fallback policy:
- Scrape exhausted: step failed, continue with empty PageData (tier 1 floors to 0)
- Tier 1: always produces a score
- Tier 2/3: timeout, provider error or any unexpected error keeps the prior
  tier's score and marks the step failed; sibling criteria are unaffected
- PersistenceError and RunSupersededError always propagate; an in-flight
  tier 2 batch is cancelled before they do

Every step reports exactly one tracker update. The run's cancellation token
is checked between steps; once superseded the engine raises
RunSupersededError before writing anything else.
"""

import asyncio
import time
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from enum import Enum
from typing import Protocol

from app.core.logging import effectiveness_logger, get_logger
from app.models.criterion_score import Criterion
from app.models.effectiveness_run import RunStatus
from app.services.content_extraction import PageData
from app.services.criterion_evaluator import CriterionEvaluator
from app.services.errors import (
    AIError,
    ExternalAPIError,
    PersistenceError,
    RunSupersededError,
    ScrapeError,
)
from app.services.progress_tracker import (
    ProgressSnapshot,
    ProgressTracker,
    scrape_step,
    tier_step,
)
from app.services.rubric import criteria_for_tier
from app.services.scoring import CriterionResult, Tier
from app.services.scraper import WebsiteScraper

logger = get_logger(__name__)

PhaseListener = Callable[[RunStatus], Awaitable[None]]
PageListener = Callable[[PageData], Awaitable[None]]


class CancellationState(str, Enum):
    ACTIVE = "active"
    SUPERSEDED = "superseded"


class RunCancellationToken:
    """Cooperative cancellation flag shared by every engine of one run."""

    def __init__(self, run_id: str) -> None:
        self.run_id = run_id
        self._state = CancellationState.ACTIVE
        self.superseded_by: str | None = None

    @property
    def state(self) -> CancellationState:
        return self._state

    @property
    def is_active(self) -> bool:
        return self._state is CancellationState.ACTIVE

    def supersede(self, superseded_by: str | None = None) -> None:
        self._state = CancellationState.SUPERSEDED
        self.superseded_by = superseded_by

    def raise_if_superseded(self) -> None:
        if not self.is_active:
            raise RunSupersededError(self.run_id)


class ResultSink(Protocol):
    """Where an engine persists its results. Failures raise PersistenceError."""

    async def save_score(self, competitor_id: str | None, result: CriterionResult) -> None: ...

    async def save_progress(self, snapshot: ProgressSnapshot) -> None: ...


@dataclass
class EngineTarget:
    """A website under analysis: the client (competitor_id None) or a competitor."""

    key: str
    url: str
    competitor_id: str | None = None
    label: str | None = None

    @property
    def is_client(self) -> bool:
        return self.competitor_id is None


@dataclass
class TargetOutcome:
    target: EngineTarget
    scores: dict[Criterion, CriterionResult] = field(default_factory=dict)
    scrape_failed: bool = False
    failed_steps: list[str] = field(default_factory=list)
    duration_ms: float = 0.0


class TieredRunEngine:
    """One instance per target per run."""

    def __init__(
        self,
        run_id: str,
        target: EngineTarget,
        scraper: WebsiteScraper,
        evaluator: CriterionEvaluator,
        sink: ResultSink,
        tracker: ProgressTracker,
        token: RunCancellationToken,
        model_timeout: float,
        measurement_timeout: float,
        on_phase: PhaseListener | None = None,
        on_page: PageListener | None = None,
    ) -> None:
        self.run_id = run_id
        self.target = target
        self._scraper = scraper
        self._evaluator = evaluator
        self._sink = sink
        self._tracker = tracker
        self._token = token
        self._model_timeout = model_timeout
        self._measurement_timeout = measurement_timeout
        self._on_phase = on_phase
        self._on_page = on_page
        self._outcome = TargetOutcome(target=target)

    async def run(self) -> TargetOutcome:
        """Execute every step for the target.

        Raises:
            RunSupersededError: The run was superseded mid-flight
            PersistenceError: A result could not be stored
        """
        start_time = time.monotonic()

        await self._phase(RunStatus.SCRAPING)
        page = await self._scrape()

        await self._phase(RunStatus.TIER1_ANALYZING)
        for criterion in criteria_for_tier(Tier.HTML):
            self._token.raise_if_superseded()
            result = self._evaluator.evaluate_html(criterion, page)
            await self._accept(result)
        await self._phase(RunStatus.TIER1_COMPLETE)

        await self._phase(RunStatus.TIER2_ANALYZING)
        await self._run_model_steps(page)
        await self._phase(RunStatus.TIER2_COMPLETE)

        await self._phase(RunStatus.TIER3_ANALYZING)
        for criterion in criteria_for_tier(Tier.MEASUREMENT):
            await self._run_measurement_step(criterion)

        self._outcome.duration_ms = (time.monotonic() - start_time) * 1000
        logger.info(
            "Target analysis finished",
            extra={
                "run_id": self.run_id,
                "target": self.target.key,
                "competitor_id": self.target.competitor_id,
                "score_count": len(self._outcome.scores),
                "failed_steps": len(self._outcome.failed_steps),
                "duration_ms": round(self._outcome.duration_ms, 2),
            },
        )
        return self._outcome

    async def _phase(self, status: RunStatus) -> None:
        self._token.raise_if_superseded()
        if self._on_phase is not None:
            await self._on_phase(status)

    async def _scrape(self) -> PageData:
        step = scrape_step(self.target.key)
        try:
            page = await self._scraper.fetch(self.target.url)
        except ScrapeError as e:
            self._token.raise_if_superseded()
            effectiveness_logger.target_failed(self.run_id, self.target.key, e.message)
            self._outcome.scrape_failed = True
            await self._mark(step, failed=True)
            return PageData(url=self.target.url)

        self._token.raise_if_superseded()
        if self._on_page is not None:
            await self._on_page(page)
        await self._mark(step, failed=False)
        return page

    async def _run_model_steps(self, page: PageData) -> None:
        """Tier 2 criteria run concurrently; a fatal error cancels the rest."""
        tasks = [
            asyncio.create_task(self._run_model_step(criterion, page))
            for criterion in criteria_for_tier(Tier.MODEL)
        ]
        try:
            await asyncio.gather(*tasks)
        except BaseException:
            for task in tasks:
                task.cancel()
            await asyncio.gather(*tasks, return_exceptions=True)
            raise

    async def _run_model_step(self, criterion: Criterion, page: PageData) -> None:
        step = tier_step(self.target.key, criterion, Tier.MODEL)
        try:
            result = await asyncio.wait_for(
                self._evaluator.evaluate_model(criterion, page),
                timeout=self._model_timeout,
            )
        except asyncio.TimeoutError:
            await self._fall_back(
                step, criterion, Tier.MODEL, f"timed out after {self._model_timeout}s"
            )
            return
        except AIError as e:
            await self._fall_back(step, criterion, Tier.MODEL, f"{e.code}: {e.message}")
            return
        except (PersistenceError, RunSupersededError):
            raise
        except Exception as e:
            self._log_unexpected(criterion, Tier.MODEL, e)
            await self._fall_back(step, criterion, Tier.MODEL, f"unexpected {type(e).__name__}")
            return

        self._token.raise_if_superseded()
        await self._accept(result)

    async def _run_measurement_step(self, criterion: Criterion) -> None:
        step = tier_step(self.target.key, criterion, Tier.MEASUREMENT)
        self._token.raise_if_superseded()
        try:
            result = await asyncio.wait_for(
                self._evaluator.evaluate_measurement(criterion, self.target.url),
                timeout=self._measurement_timeout,
            )
        except asyncio.TimeoutError:
            await self._fall_back(
                step, criterion, Tier.MEASUREMENT, f"timed out after {self._measurement_timeout}s"
            )
            return
        except ExternalAPIError as e:
            await self._fall_back(step, criterion, Tier.MEASUREMENT, f"{e.code}: {e.message}")
            return
        except (PersistenceError, RunSupersededError):
            raise
        except Exception as e:
            self._log_unexpected(criterion, Tier.MEASUREMENT, e)
            await self._fall_back(
                step, criterion, Tier.MEASUREMENT, f"unexpected {type(e).__name__}"
            )
            return

        self._token.raise_if_superseded()
        await self._accept(result)

    def _log_unexpected(self, criterion: Criterion, tier: Tier, error: Exception) -> None:
        logger.error(
            "Unexpected error in evaluation tier",
            extra={
                "run_id": self.run_id,
                "target": self.target.key,
                "criterion": criterion.value,
                "tier": int(tier),
                "error_type": type(error).__name__,
                "error": str(error),
            },
            exc_info=True,
        )

    async def _fall_back(self, step: str, criterion: Criterion, tier: Tier, reason: str) -> None:
        self._token.raise_if_superseded()
        effectiveness_logger.tier_fallback(
            self.run_id, self.target.key, criterion.value, int(tier), reason
        )
        await self._mark(step, failed=True)

    async def _accept(self, result: CriterionResult) -> None:
        await self._sink.save_score(self.target.competitor_id, result)
        self._outcome.scores[result.criterion] = result
        await self._mark(tier_step(self.target.key, result.criterion, result.tier), failed=False)

    async def _mark(self, step: str, failed: bool) -> None:
        if failed:
            self._tracker.mark_step_failed(step)
            self._outcome.failed_steps.append(step)
        else:
            self._tracker.mark_step_complete(step)
        await self._sink.save_progress(self._tracker.get_state())
