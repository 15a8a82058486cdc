"""CompetitorCoordinator: bounded fan-out of TieredRunEngine over competitors.

Uses asyncio.Semaphore for concurrency limiting and asyncio.gather to wait
for every competitor. A competitor failing never reaches the orchestrator;
it is reported as an unsuccessful CompetitorOutcome instead. Only
PersistenceError (fatal) and RunSupersededError (quiet stop) propagate.
"""

import asyncio
from collections.abc import Callable
from dataclasses import dataclass

from app.core.logging import effectiveness_logger, get_logger
from app.services.errors import PersistenceError, RunSupersededError
from app.services.tiered_engine import (
    EngineTarget,
    RunCancellationToken,
    TargetOutcome,
    TieredRunEngine,
)

logger = get_logger(__name__)

EngineFactory = Callable[[EngineTarget], TieredRunEngine]


@dataclass
class CompetitorOutcome:
    competitor_id: str
    target_key: str
    url: str
    succeeded: bool
    scores_count: int = 0
    error: str | None = None


class CompetitorCoordinator:
    def __init__(
        self,
        run_id: str,
        token: RunCancellationToken,
        engine_factory: EngineFactory,
        concurrency: int,
    ) -> None:
        self.run_id = run_id
        self._token = token
        self._engine_factory = engine_factory
        self._concurrency = max(1, concurrency)

    async def run(self, targets: list[EngineTarget]) -> list[CompetitorOutcome]:
        """Analyze every competitor and wait for all of them.

        Raises:
            PersistenceError: A competitor's results could not be stored
            RunSupersededError: The run was superseded
        """
        if not targets:
            return []

        semaphore = asyncio.Semaphore(self._concurrency)

        async def run_with_semaphore(target: EngineTarget) -> CompetitorOutcome:
            async with semaphore:
                self._token.raise_if_superseded()
                return await self._run_one(target)

        results = await asyncio.gather(
            *(run_with_semaphore(t) for t in targets), return_exceptions=True
        )

        outcomes: list[CompetitorOutcome] = []
        superseded: RunSupersededError | None = None
        for target, item in zip(targets, results, strict=True):
            if isinstance(item, PersistenceError):
                raise item
            if isinstance(item, RunSupersededError):
                superseded = item
                continue
            if isinstance(item, BaseException):
                # Only CancelledError and friends reach here
                raise item
            outcomes.append(item)

        if superseded is not None:
            raise superseded

        logger.info(
            "Competitor analysis completed",
            extra={
                "run_id": self.run_id,
                "competitor_count": len(targets),
                "succeeded": sum(1 for o in outcomes if o.succeeded),
                "failed": sum(1 for o in outcomes if not o.succeeded),
            },
        )
        return outcomes

    async def _run_one(self, target: EngineTarget) -> CompetitorOutcome:
        engine = self._engine_factory(target)
        try:
            outcome = await engine.run()
        except (PersistenceError, RunSupersededError):
            raise
        except Exception as e:
            logger.error(
                "Competitor engine failed",
                extra={
                    "run_id": self.run_id,
                    "target": target.key,
                    "competitor_id": target.competitor_id,
                    "error_type": type(e).__name__,
                    "error": str(e),
                },
                exc_info=True,
            )
            effectiveness_logger.target_failed(self.run_id, target.key, str(e))
            return CompetitorOutcome(
                competitor_id=target.competitor_id or "",
                target_key=target.key,
                url=target.url,
                succeeded=False,
                error=f"{type(e).__name__}: {e}",
            )
        return self._to_outcome(outcome)

    @staticmethod
    def _to_outcome(outcome: TargetOutcome) -> CompetitorOutcome:
        target = outcome.target
        error = None
        if outcome.scrape_failed:
            error = "Scrape failed"
        elif not outcome.scores:
            error = "No criterion scores produced"
        return CompetitorOutcome(
            competitor_id=target.competitor_id or "",
            target_key=target.key,
            url=target.url,
            succeeded=error is None,
            scores_count=len(outcome.scores),
            error=error,
        )
