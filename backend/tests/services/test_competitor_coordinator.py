"""Tests for CompetitorCoordinator fan-out and failure isolation."""

import asyncio

import pytest

from app.services.competitor import CompetitorCoordinator
from app.services.criterion_evaluator import CriterionEvaluator
from app.services.errors import PersistenceError, RunSupersededError
from app.services.progress_tracker import ProgressTracker
from app.services.tiered_engine import (
    EngineTarget,
    RunCancellationToken,
    TargetOutcome,
    TieredRunEngine,
)

from conftest import FakeMeasurement, FakeModel, FakeScraper, MemorySink


def competitor_targets(count: int) -> list[EngineTarget]:
    return [
        EngineTarget(
            key=f"competitor_{i}",
            url=f"https://rival{i}.example",
            competitor_id=f"comp-{i}",
        )
        for i in range(count)
    ]


class StubEngine:
    """Engine stand-in that records how many engines run at once."""

    active = 0
    peak = 0

    def __init__(self, target: EngineTarget, error: BaseException | None = None) -> None:
        self.target = target
        self.error = error

    async def run(self) -> TargetOutcome:
        StubEngine.active += 1
        StubEngine.peak = max(StubEngine.peak, StubEngine.active)
        try:
            await asyncio.sleep(0.01)
            if self.error is not None:
                raise self.error
            return TargetOutcome(target=self.target, scores={"seo": object()})  # type: ignore[dict-item]
        finally:
            StubEngine.active -= 1


@pytest.fixture(autouse=True)
def reset_stub_engine():
    StubEngine.active = 0
    StubEngine.peak = 0


class TestCompetitorCoordinator:
    """Competitor failures never reach the caller."""

    async def test_runs_real_engines_for_each_competitor(self, scoring_config) -> None:
        targets = competitor_targets(2)
        scraper = FakeScraper(failing={targets[1].url})
        tracker = ProgressTracker("run-1")
        tracker.set_total_steps(len(targets))
        sink = MemorySink()
        token = RunCancellationToken("run-1")
        evaluator = CriterionEvaluator(
            scoring_config,
            model=FakeModel(),  # type: ignore[arg-type]
            measurement=FakeMeasurement(),  # type: ignore[arg-type]
        )

        def factory(target: EngineTarget) -> TieredRunEngine:
            return TieredRunEngine(
                run_id="run-1",
                target=target,
                scraper=scraper,  # type: ignore[arg-type]
                evaluator=evaluator,
                sink=sink,
                tracker=tracker,
                token=token,
                model_timeout=0.5,
                measurement_timeout=0.5,
            )

        coordinator = CompetitorCoordinator("run-1", token, factory, concurrency=2)
        outcomes = await coordinator.run(targets)

        by_id = {o.competitor_id: o for o in outcomes}
        assert by_id["comp-0"].succeeded is True
        assert by_id["comp-0"].scores_count == 8
        assert by_id["comp-1"].succeeded is False
        assert by_id["comp-1"].error == "Scrape failed"
        assert {cid for cid, _ in sink.scores} == {"comp-0", "comp-1"}

    async def test_no_targets(self) -> None:
        coordinator = CompetitorCoordinator(
            "run-1", RunCancellationToken("run-1"), StubEngine, concurrency=2
        )

        assert await coordinator.run([]) == []

    async def test_concurrency_is_bounded(self) -> None:
        coordinator = CompetitorCoordinator(
            "run-1", RunCancellationToken("run-1"), StubEngine, concurrency=2
        )

        outcomes = await coordinator.run(competitor_targets(5))

        assert len(outcomes) == 5
        assert StubEngine.peak == 2

    async def test_unexpected_error_becomes_failed_outcome(self) -> None:
        def factory(target: EngineTarget) -> StubEngine:
            if target.key == "competitor_1":
                return StubEngine(target, ValueError("layout exploded"))
            return StubEngine(target)

        coordinator = CompetitorCoordinator(
            "run-1", RunCancellationToken("run-1"), factory, concurrency=3
        )

        outcomes = await coordinator.run(competitor_targets(3))

        failed = [o for o in outcomes if not o.succeeded]
        assert len(failed) == 1
        assert failed[0].competitor_id == "comp-1"
        assert failed[0].error == "ValueError: layout exploded"

    async def test_persistence_error_propagates(self) -> None:
        def factory(target: EngineTarget) -> StubEngine:
            return StubEngine(target, PersistenceError("save_score", "disk full"))

        coordinator = CompetitorCoordinator(
            "run-1", RunCancellationToken("run-1"), factory, concurrency=2
        )

        with pytest.raises(PersistenceError):
            await coordinator.run(competitor_targets(2))

    async def test_supersession_propagates(self) -> None:
        token = RunCancellationToken("run-1")
        token.supersede("run-2")
        coordinator = CompetitorCoordinator("run-1", token, StubEngine, concurrency=2)

        with pytest.raises(RunSupersededError):
            await coordinator.run(competitor_targets(2))

    async def test_concurrency_floor_of_one(self) -> None:
        coordinator = CompetitorCoordinator(
            "run-1", RunCancellationToken("run-1"), StubEngine, concurrency=0
        )

        await coordinator.run(competitor_targets(3))

        assert StubEngine.peak == 1
