"""Tests for EffectivenessRepository guards and score upserts."""

from unittest.mock import AsyncMock, MagicMock
from uuid import uuid4

import pytest
from sqlalchemy.exc import SQLAlchemyError

from app.models.criterion_score import Criterion
from app.models.effectiveness_run import RunStatus
from app.repositories.effectiveness import EffectivenessRepository, persistence_scope
from app.services.errors import InvalidStatusTransitionError, PersistenceError
from app.services.scoring import CriterionResult, Tier


def result(criterion: Criterion, score: float, tier: Tier = Tier.HTML) -> CriterionResult:
    return CriterionResult(
        criterion=criterion,
        score=score,
        passes=score >= 6.0,
        tier=tier,
        evidence={"source": "html", "passed": [], "failed": []},
    )


@pytest.fixture
async def seeded(create_client, db_session):
    """A client with one competitor and a fresh pending run."""
    client = await create_client(competitors=["rival.example"])
    repo = EffectivenessRepository(db_session)
    loaded = await repo.get_client(client.id)
    run = await repo.create_run(client.id)
    await db_session.commit()
    return repo, loaded, run


class TestClientsAndRuns:
    async def test_get_client_loads_competitors(self, seeded) -> None:
        _, client, _ = seeded

        assert [c.domain for c in client.competitors] == ["rival.example"]
        assert client.competitors[0].url == "https://rival.example"

    async def test_unknown_client(self, db_session) -> None:
        repo = EffectivenessRepository(db_session)

        assert await repo.get_client(str(uuid4())) is None

    async def test_create_run_defaults(self, seeded) -> None:
        _, _, run = seeded

        assert run.status == RunStatus.PENDING.value
        assert run.progress == 0
        assert run.progress_detail == {}
        assert run.overall_score is None

    async def test_active_runs_exclude_terminal(self, seeded) -> None:
        repo, client, run = seeded
        done = await repo.create_run(client.id)
        await repo.finalize(done.id, RunStatus.COMPLETED, 7.5)

        active = await repo.get_active_runs(client.id)

        assert [r.id for r in active] == [run.id]


class TestStatusTransitions:
    """Status writes move forward and never touch a terminal run."""

    async def test_forward_transition(self, seeded) -> None:
        repo, _, run = seeded

        assert await repo.transition_status(run.id, RunStatus.SCRAPING) is True
        await repo.session.commit()

        refreshed = await repo.get_run(run.id)
        await repo.session.refresh(refreshed)
        assert refreshed.status == RunStatus.SCRAPING.value

    async def test_regression_rejected(self, seeded) -> None:
        repo, _, run = seeded
        await repo.transition_status(run.id, RunStatus.TIER2_ANALYZING)

        with pytest.raises(InvalidStatusTransitionError):
            await repo.transition_status(run.id, RunStatus.SCRAPING)

    async def test_terminal_run_refuses_writes(self, seeded) -> None:
        repo, _, run = seeded
        await repo.finalize(run.id, RunStatus.FAILED, None, "Superseded by run x")

        assert await repo.transition_status(run.id, RunStatus.SCRAPING) is False
        assert await repo.transition_status(run.id, RunStatus.FAILED) is False

    async def test_unknown_run(self, db_session) -> None:
        repo = EffectivenessRepository(db_session)

        assert await repo.transition_status(str(uuid4()), RunStatus.SCRAPING) is False

    async def test_failed_reachable_with_message(self, seeded) -> None:
        repo, _, run = seeded

        assert await repo.transition_status(
            run.id, RunStatus.FAILED, error_message="Interrupted by service shutdown"
        )
        await repo.session.commit()

        refreshed = await repo.get_run(run.id)
        await repo.session.refresh(refreshed)
        assert refreshed.error_message == "Interrupted by service shutdown"


class TestProgressAndFinalize:
    async def test_progress_only_moves_forward(self, seeded) -> None:
        repo, _, run = seeded

        assert await repo.update_progress(run.id, {"overallPercent": 40}) is True
        assert await repo.update_progress(run.id, {"overallPercent": 40}) is True
        assert await repo.update_progress(run.id, {"overallPercent": 25}) is False

    async def test_progress_refused_after_finalize(self, seeded) -> None:
        repo, _, run = seeded
        await repo.finalize(run.id, RunStatus.COMPLETED, 8.1)

        assert await repo.update_progress(run.id, {"overallPercent": 100}) is False
        assert await repo.set_screenshots(run.id, "/a.png", "/b.png") is False

    async def test_finalize_completed_sets_full_progress(self, seeded) -> None:
        repo, _, run = seeded

        assert await repo.finalize(run.id, RunStatus.COMPLETED, 8.1) is True
        await repo.session.commit()

        refreshed = await repo.get_run(run.id)
        await repo.session.refresh(refreshed)
        assert refreshed.progress == 100
        assert refreshed.overall_score == 8.1

    async def test_finalize_is_one_shot(self, seeded) -> None:
        repo, _, run = seeded
        await repo.finalize(run.id, RunStatus.COMPLETED, 8.1)

        assert await repo.finalize(run.id, RunStatus.FAILED, None, "late") is False

    async def test_finalize_requires_terminal_status(self, seeded) -> None:
        repo, _, run = seeded

        with pytest.raises(ValueError):
            await repo.finalize(run.id, RunStatus.TIER3_ANALYZING, None)

    async def test_insights_allowed_on_terminal_run(self, seeded) -> None:
        repo, _, run = seeded
        await repo.finalize(run.id, RunStatus.COMPLETED, 8.1)

        assert await repo.save_insights(run.id, {"primary_issue": "x"}) is True


class TestScores:
    """One row per (run, target, criterion); later tiers overwrite it."""

    async def test_later_tier_overwrites_row(self, seeded) -> None:
        repo, _, run = seeded

        await repo.upsert_score(run.id, None, result(Criterion.CTAS, 5.0))
        await repo.upsert_score(run.id, None, result(Criterion.CTAS, 8.5, Tier.MODEL))

        scores = await repo.list_scores(run.id)
        assert len(scores) == 1
        assert scores[0].score == 8.5
        assert scores[0].tier == 2
        assert scores[0].passes is True

    async def test_client_and_competitor_rows_are_separate(self, seeded) -> None:
        repo, client, run = seeded
        competitor_id = client.competitors[0].id

        await repo.upsert_score(run.id, competitor_id, result(Criterion.SEO, 4.0))
        await repo.upsert_score(run.id, None, result(Criterion.SEO, 9.0))
        await repo.upsert_score(run.id, None, result(Criterion.UX, 7.0))

        scores = await repo.list_scores(run.id)
        assert [s.competitor_id for s in scores] == [None, None, competitor_id]
        assert await repo.count_client_scores(run.id) == 2
        assert [s.criterion for s in await repo.list_client_scores(run.id)] == ["seo", "ux"]


class TestErrorTranslation:
    """Database errors surface as PersistenceError."""

    async def test_repository_wraps_sqlalchemy_errors(self) -> None:
        session = MagicMock()
        session.execute = AsyncMock(side_effect=SQLAlchemyError("connection reset"))
        repo = EffectivenessRepository(session)

        with pytest.raises(PersistenceError) as exc_info:
            await repo.get_run(str(uuid4()))

        assert exc_info.value.operation == "get run"

    async def test_persistence_scope_wraps_commit_errors(self, mock_db_manager) -> None:
        with pytest.raises(PersistenceError, match="Save things failed"):
            async with persistence_scope("Save things"):
                raise SQLAlchemyError("disk I/O error")
