"""RunOrchestrator: owns the effectiveness run lifecycle.

Starts runs, drives the client engine and the competitor fan-out
concurrently, persists results, finalizes the run and triggers insights.

Everything in-flight (cancellation token, progress tracker, asyncio task)
lives in a registry keyed strictly by run_id. "Latest run for a client" is a
database lookup, never a key into that registry.

Background work never shares a session: every write opens its own
transaction through persistence_scope, because AsyncSession is not safe for
concurrent use by the client engine and the competitor engines.
"""

import asyncio
import time
from dataclasses import dataclass, field
from typing import Any

from app.core.config import Settings, get_settings
from app.core.logging import effectiveness_logger, get_logger
from app.integrations.claude import get_claude
from app.integrations.crawl4ai import get_crawl4ai
from app.integrations.pagespeed import get_pagespeed
from app.models.criterion_score import Criterion, CriterionScore
from app.models.effectiveness_run import RUN_STATUS_ORDER, EffectivenessRun, RunStatus
from app.repositories.effectiveness import EffectivenessRepository, persistence_scope
from app.services.competitor import CompetitorCoordinator, CompetitorOutcome
from app.services.content_extraction import PageData
from app.services.criterion_evaluator import CriterionEvaluator
from app.services.errors import (
    ClientNotFoundError,
    EffectivenessError,
    InvalidStatusTransitionError,
    PersistenceError,
    RunNotFoundError,
    RunSupersededError,
    ValidationError,
)
from app.services.insights import InsightsGenerator, InsightsResult, SessionScope
from app.services.model_evaluator import ModelEvaluator
from app.services.progress_tracker import (
    CLIENT_TARGET,
    ProgressSnapshot,
    ProgressTracker,
    target_key,
)
from app.services.rubric import RUBRIC, weighted_overall_score
from app.services.run_status import (
    EffectiveStatus,
    derive_effective_status,
    insights_available,
    should_continue_polling,
)
from app.services.scoring import CriterionResult, ScoringConfig
from app.services.scraper import WebsiteScraper
from app.services.tiered_engine import (
    EngineTarget,
    RunCancellationToken,
    TargetOutcome,
    TieredRunEngine,
)

logger = get_logger(__name__)

SHUTDOWN_GRACE_SECONDS = 5.0
NO_CLIENT_SCORES_MESSAGE = "No criterion scores were produced for the client website"


class RunWriter:
    """ResultSink for one run. Each write is its own transaction."""

    def __init__(
        self,
        run_id: str,
        token: RunCancellationToken,
        scope: SessionScope = persistence_scope,
    ) -> None:
        self.run_id = run_id
        self._token = token
        self._scope = scope

    async def save_score(self, competitor_id: str | None, result: CriterionResult) -> None:
        self._token.raise_if_superseded()
        async with self._scope("Save criterion score") as session:
            await EffectivenessRepository(session).upsert_score(
                self.run_id, competitor_id, result
            )

    async def save_progress(self, snapshot: ProgressSnapshot) -> None:
        self._token.raise_if_superseded()
        async with self._scope("Save run progress") as session:
            await EffectivenessRepository(session).update_progress(
                self.run_id, snapshot.to_dict()
            )

    async def save_screenshots(self, page: PageData) -> None:
        self._token.raise_if_superseded()
        async with self._scope("Save run screenshots") as session:
            await EffectivenessRepository(session).set_screenshots(
                self.run_id, page.screenshot_url, page.full_page_screenshot_url
            )


class PhaseRecorder:
    """Moves the run status along with the client engine, forward only."""

    def __init__(
        self,
        run_id: str,
        token: RunCancellationToken,
        scope: SessionScope = persistence_scope,
    ) -> None:
        self.run_id = run_id
        self._token = token
        self._scope = scope
        self.current = RunStatus.PENDING

    async def __call__(self, status: RunStatus) -> None:
        if RUN_STATUS_ORDER.index(status) <= RUN_STATUS_ORDER.index(self.current):
            return
        self._token.raise_if_superseded()
        async with self._scope(f"Transition run to {status.value}") as session:
            moved = await EffectivenessRepository(session).transition_status(
                self.run_id, status
            )
        if moved:
            self.current = status


@dataclass
class ActiveRun:
    run_id: str
    client_id: str
    token: RunCancellationToken
    tracker: ProgressTracker
    task: asyncio.Task[None] | None = None
    started_at: float = field(default_factory=time.monotonic)


@dataclass
class RunDetails:
    """A run, its scores and its derived status, as returned to callers."""

    run: EffectivenessRun
    scores: list[CriterionScore]
    client_score_count: int
    effective_status: EffectiveStatus
    live_progress: ProgressSnapshot | None = None

    @property
    def progress(self) -> int:
        if self.live_progress is not None:
            return max(self.run.progress, self.live_progress.overall_percent)
        return self.run.progress

    @property
    def progress_detail(self) -> dict[str, Any]:
        if self.live_progress is not None and (
            self.live_progress.overall_percent >= self.run.progress
        ):
            return self.live_progress.to_dict()
        return self.run.progress_detail or {}

    @property
    def should_continue_polling(self) -> bool:
        return should_continue_polling(self.run.status, self.client_score_count)


class RunOrchestrator:
    """Top-level coordinator for effectiveness runs."""

    def __init__(
        self,
        scraper: WebsiteScraper,
        evaluator: CriterionEvaluator,
        insights: InsightsGenerator,
        settings: Settings | None = None,
        scope: SessionScope = persistence_scope,
    ) -> None:
        self._scraper = scraper
        self._evaluator = evaluator
        self._insights = insights
        self._settings = settings or get_settings()
        self._scope = scope
        self._active: dict[str, ActiveRun] = {}
        self._start_locks: dict[str, asyncio.Lock] = {}

    @property
    def active_run_ids(self) -> list[str]:
        return list(self._active)

    def is_running(self, run_id: str) -> bool:
        return run_id in self._active

    async def wait_for_run(self, run_id: str) -> None:
        """Block until the run's background task has finished."""
        active = self._active.get(run_id)
        if active is not None and active.task is not None:
            await asyncio.shield(active.task)

    # Starting runs

    async def start_run(self, client_id: str, force: bool = False) -> str:
        """Start (or reuse) a run for a client and return its id.

        Raises:
            ClientNotFoundError: Unknown client
            ValidationError: Client has no active configuration
            PersistenceError: On database errors
        """
        # One check-and-create per client at a time; the scope commits inside
        async with self._start_locks.setdefault(client_id, asyncio.Lock()):
            return await self._start_locked(client_id, force)

    async def _start_locked(self, client_id: str, force: bool) -> str:
        async with self._scope("Start effectiveness run") as session:
            repo = EffectivenessRepository(session)
            client = await repo.get_client(client_id)
            if client is None:
                raise ClientNotFoundError(client_id)
            if not client.has_active_configuration:
                raise ValidationError(
                    "client_id",
                    client_id,
                    "Client has no active configuration (inactive or missing website URL)",
                )

            active_runs = await repo.get_active_runs(client_id)
            if active_runs and not force:
                logger.info(
                    "Reusing active run",
                    extra={"client_id": client_id, "run_id": active_runs[0].id},
                )
                return active_runs[0].id

            run = await repo.create_run(client_id)
            run_id = run.id
            for prior in active_runs:
                await self._supersede(repo, prior.id, superseded_by=run_id)

            client_target = EngineTarget(
                key=CLIENT_TARGET, url=client.website_url.strip(), label=client.name
            )
            competitor_targets = [
                EngineTarget(
                    key=target_key(index),
                    url=competitor.url,
                    competitor_id=competitor.id,
                    label=competitor.label or competitor.domain,
                )
                for index, competitor in enumerate(client.competitors)
            ]

        active = ActiveRun(
            run_id=run_id,
            client_id=client_id,
            token=RunCancellationToken(run_id),
            tracker=ProgressTracker(run_id),
        )
        active.tracker.set_total_steps(len(competitor_targets))
        self._active[run_id] = active
        active.task = asyncio.create_task(
            self._execute(active, client_target, competitor_targets),
            name=f"effectiveness-run-{run_id}",
        )
        active.task.add_done_callback(lambda _task: self._active.pop(run_id, None))

        effectiveness_logger.run_started(run_id, client_id, len(competitor_targets))
        return run_id

    async def _supersede(
        self,
        repo: EffectivenessRepository,
        run_id: str,
        superseded_by: str | None,
    ) -> None:
        active = self._active.get(run_id)
        if active is not None:
            active.token.supersede(superseded_by)
        message = (
            f"Superseded by run {superseded_by}"
            if superseded_by
            else "Interrupted by service shutdown"
        )
        await repo.transition_status(run_id, RunStatus.FAILED, error_message=message)
        effectiveness_logger.run_superseded(run_id, superseded_by)

    # Execution

    async def _execute(
        self,
        active: ActiveRun,
        client_target: EngineTarget,
        competitor_targets: list[EngineTarget],
    ) -> None:
        run_id = active.run_id
        token = active.token
        writer = RunWriter(run_id, token, self._scope)
        phases = PhaseRecorder(run_id, token, self._scope)

        try:
            await phases(RunStatus.INITIALIZING)
            await writer.save_progress(active.tracker.get_state())

            client_engine = self._engine(
                active,
                client_target,
                writer,
                on_phase=phases,
                on_page=writer.save_screenshots,
            )
            coordinator = CompetitorCoordinator(
                run_id,
                token,
                engine_factory=lambda target: self._engine(active, target, writer),
                concurrency=self._settings.effectiveness_competitor_concurrency,
            )
            results = await asyncio.gather(
                client_engine.run(),
                coordinator.run(competitor_targets),
                return_exceptions=True,
            )
            client_outcome, competitor_outcomes = self._unpack(results)

            await phases(RunStatus.GENERATING_INSIGHTS)
            status, client_score_count = await self._finalize(
                active, client_outcome, competitor_outcomes
            )
        except RunSupersededError:
            logger.info(
                "Run stopped after supersession",
                extra={"run_id": run_id, "superseded_by": token.superseded_by},
            )
            return
        except (PersistenceError, InvalidStatusTransitionError) as e:
            logger.error(
                "Run stopped on unrecoverable error",
                extra={"run_id": run_id, "error_code": e.code, "error": e.message},
                exc_info=True,
            )
            return
        except Exception as e:
            logger.error(
                "Run failed unexpectedly",
                extra={
                    "run_id": run_id,
                    "error_type": type(e).__name__,
                    "error": str(e),
                },
                exc_info=True,
            )
            await self._mark_failed(run_id, f"Unexpected error: {type(e).__name__}")
            return

        if self._settings.effectiveness_auto_insights and insights_available(
            status.value, client_score_count
        ):
            await self._auto_insights(run_id)

    def _engine(
        self,
        active: ActiveRun,
        target: EngineTarget,
        writer: RunWriter,
        on_phase: PhaseRecorder | None = None,
        on_page: Any = None,
    ) -> TieredRunEngine:
        return TieredRunEngine(
            run_id=active.run_id,
            target=target,
            scraper=self._scraper,
            evaluator=self._evaluator,
            sink=writer,
            tracker=active.tracker,
            token=active.token,
            model_timeout=self._settings.effectiveness_model_timeout,
            measurement_timeout=self._settings.effectiveness_measurement_timeout,
            on_phase=on_phase,
            on_page=on_page,
        )

    @staticmethod
    def _unpack(
        results: list[Any],
    ) -> tuple[TargetOutcome, list[CompetitorOutcome]]:
        """Re-raise gathered failures: persistence first, then supersession."""
        errors = [r for r in results if isinstance(r, BaseException)]
        for error in errors:
            if isinstance(error, PersistenceError):
                raise error
        for error in errors:
            if isinstance(error, RunSupersededError):
                raise error
        if errors:
            raise errors[0]
        client_outcome, competitor_outcomes = results
        return client_outcome, competitor_outcomes

    async def _finalize(
        self,
        active: ActiveRun,
        client_outcome: TargetOutcome,
        competitor_outcomes: list[CompetitorOutcome],
    ) -> tuple[RunStatus, int]:
        """Terminal write. Competitor outcomes are reported, never decisive."""
        run_id = active.run_id
        active.token.raise_if_superseded()

        async with self._scope("Finalize run") as session:
            repo = EffectivenessRepository(session)
            client_scores = {
                Criterion(row.criterion): row.score
                for row in await repo.list_client_scores(run_id)
            }
            client_score_count = len(client_scores)
            if client_score_count == 0:
                status = RunStatus.FAILED
                overall_score = None
                error_message: str | None = NO_CLIENT_SCORES_MESSAGE
            else:
                status = RunStatus.COMPLETED
                overall_score = weighted_overall_score(client_scores)
                error_message = None
            finalized = await repo.finalize(run_id, status, overall_score, error_message)

        if not finalized:
            # A concurrent supersession or shutdown already closed the run
            raise RunSupersededError(run_id)

        if 0 < client_score_count < len(RUBRIC):
            logger.warning(
                "Run completed with missing client criteria",
                extra={
                    "run_id": run_id,
                    "client_score_count": client_score_count,
                    "missing": sorted(c.value for c in set(RUBRIC) - set(client_scores)),
                },
            )
        logger.info(
            "Run targets summary",
            extra={
                "run_id": run_id,
                "client_scrape_failed": client_outcome.scrape_failed,
                "client_failed_steps": len(client_outcome.failed_steps),
                "competitors_succeeded": sum(1 for o in competitor_outcomes if o.succeeded),
                "competitors_failed": sum(1 for o in competitor_outcomes if not o.succeeded),
            },
        )
        effectiveness_logger.status_transition(
            run_id, RunStatus.GENERATING_INSIGHTS.value, status.value
        )
        effectiveness_logger.run_finalized(
            run_id,
            status.value,
            overall_score,
            client_score_count,
            (time.monotonic() - active.started_at) * 1000,
        )
        return status, client_score_count

    async def _mark_failed(self, run_id: str, message: str) -> None:
        try:
            async with self._scope("Mark run failed") as session:
                await EffectivenessRepository(session).finalize(
                    run_id, RunStatus.FAILED, None, message
                )
        except PersistenceError as e:
            logger.error(
                "Could not mark run failed",
                extra={"run_id": run_id, "error": e.message},
                exc_info=True,
            )

    async def _auto_insights(self, run_id: str) -> None:
        timeout = self._settings.effectiveness_insights_timeout
        try:
            await asyncio.wait_for(self._insights.generate(run_id), timeout=timeout)
        except asyncio.TimeoutError:
            logger.warning(
                "Automatic insights timed out",
                extra={"run_id": run_id, "timeout_seconds": timeout},
            )
        except EffectivenessError as e:
            logger.warning(
                "Automatic insights failed",
                extra={"run_id": run_id, "error_code": e.code, "error": e.message},
            )

    # Reads

    def get_live_progress(self, run_id: str) -> ProgressSnapshot | None:
        """Snapshot from the in-memory tracker while the run executes."""
        active = self._active.get(run_id)
        if active is None:
            return None
        return active.tracker.get_state()

    async def get_run(self, run_id: str) -> RunDetails:
        """Raises RunNotFoundError for unknown runs."""
        async with self._scope("Get effectiveness run") as session:
            repo = EffectivenessRepository(session)
            run = await repo.get_run(run_id)
            if run is None:
                raise RunNotFoundError(run_id)
            return await self._details(repo, run)

    async def get_latest_run(self, client_id: str) -> RunDetails:
        """Most recent run for a client.

        Raises:
            ClientNotFoundError: Unknown client
            RunNotFoundError: The client has never been analyzed
        """
        async with self._scope("Get latest effectiveness run") as session:
            repo = EffectivenessRepository(session)
            if await repo.get_client(client_id) is None:
                raise ClientNotFoundError(client_id)
            run = await repo.get_latest_run(client_id)
            if run is None:
                raise RunNotFoundError(f"latest run for client {client_id}")
            return await self._details(repo, run)

    async def _details(self, repo: EffectivenessRepository, run: EffectivenessRun) -> RunDetails:
        scores = await repo.list_scores(run.id)
        client_score_count = sum(1 for s in scores if s.competitor_id is None)
        return RunDetails(
            run=run,
            scores=scores,
            client_score_count=client_score_count,
            effective_status=derive_effective_status(run.status, client_score_count),
            live_progress=self.get_live_progress(run.id),
        )

    # Insights

    async def generate_insights(self, run_id: str) -> InsightsResult:
        return await self._insights.generate(run_id)

    async def get_cached_insights(self, run_id: str) -> dict[str, Any] | None:
        async with self._scope("Get cached insights") as session:
            run = await EffectivenessRepository(session).get_run(run_id)
            if run is None:
                raise RunNotFoundError(run_id)
            return run.insights

    # Shutdown

    async def shutdown(self) -> None:
        """Supersede every in-flight run and wait briefly for its task to stop."""
        if not self._active:
            return
        active_runs = list(self._active.values())
        logger.info("Superseding active runs for shutdown", extra={"count": len(active_runs)})

        try:
            async with self._scope("Supersede runs on shutdown") as session:
                repo = EffectivenessRepository(session)
                for active in active_runs:
                    await self._supersede(repo, active.run_id, superseded_by=None)
        except PersistenceError as e:
            logger.error(
                "Could not mark active runs failed on shutdown",
                extra={"error": e.message},
                exc_info=True,
            )
            for active in active_runs:
                active.token.supersede(None)

        tasks = [a.task for a in active_runs if a.task is not None and not a.task.done()]
        if not tasks:
            return
        _done, pending = await asyncio.wait(tasks, timeout=SHUTDOWN_GRACE_SECONDS)
        for task in pending:
            task.cancel()
        if pending:
            await asyncio.gather(*pending, return_exceptions=True)


# Global orchestrator instance
run_orchestrator: RunOrchestrator | None = None


async def init_orchestrator() -> RunOrchestrator:
    """Build the global orchestrator from the global integration clients."""
    global run_orchestrator
    if run_orchestrator is None:
        claude = await get_claude()
        config = ScoringConfig.from_settings()
        run_orchestrator = RunOrchestrator(
            scraper=WebsiteScraper(await get_crawl4ai()),
            evaluator=CriterionEvaluator(
                config,
                model=ModelEvaluator(claude, config),
                measurement=await get_pagespeed(),
            ),
            insights=InsightsGenerator(claude),
        )
        logger.info("Run orchestrator initialized")
    return run_orchestrator


async def close_orchestrator() -> None:
    global run_orchestrator
    if run_orchestrator is not None:
        await run_orchestrator.shutdown()
        run_orchestrator = None


async def get_orchestrator() -> RunOrchestrator:
    """Dependency for getting the run orchestrator."""
    if run_orchestrator is None:
        return await init_orchestrator()
    return run_orchestrator
