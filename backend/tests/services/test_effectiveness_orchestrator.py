"""Tests for RunOrchestrator against the SQLite test database."""

import asyncio
from unittest.mock import AsyncMock
from uuid import uuid4

import httpx
import pytest

from app.integrations.pagespeed import PageSpeedClient
from app.models.criterion_score import Criterion
from app.models.effectiveness_run import RunStatus
from app.repositories.effectiveness import EffectivenessRepository
from app.services.criterion_evaluator import CriterionEvaluator
from app.services.effectiveness import (
    NO_CLIENT_SCORES_MESSAGE,
    ActiveRun,
    RunOrchestrator,
)
from app.services.errors import ClientNotFoundError, RunNotFoundError, ValidationError
from app.services.insights import InsightsGenerator
from app.services.progress_tracker import ProgressTracker
from app.services.run_status import EffectiveStatus
from app.services.tiered_engine import EngineTarget, RunCancellationToken, TargetOutcome

from conftest import get_test_settings

CLIENT_URL = "https://acme.example"


async def run_to_completion(orchestrator: RunOrchestrator, client_id: str, **kwargs) -> str:
    run_id = await orchestrator.start_run(client_id, **kwargs)
    await orchestrator.wait_for_run(run_id)
    return run_id


class TestStartRun:
    """Validation and reuse rules for starting a run."""

    async def test_unknown_client(self, orchestrator) -> None:
        with pytest.raises(ClientNotFoundError):
            await orchestrator.start_run(str(uuid4()))

    async def test_inactive_client(self, orchestrator, create_client) -> None:
        client = await create_client(is_active=False)

        with pytest.raises(ValidationError) as exc_info:
            await orchestrator.start_run(client.id)

        assert exc_info.value.field == "client_id"

    async def test_client_without_website(self, orchestrator, create_client) -> None:
        client = await create_client(website_url="   ")

        with pytest.raises(ValidationError):
            await orchestrator.start_run(client.id)

    async def test_active_run_is_reused(self, orchestrator, create_client, fake_scraper) -> None:
        client = await create_client()
        fake_scraper.delay = 0.2

        first = await orchestrator.start_run(client.id)
        second = await orchestrator.start_run(client.id)
        await orchestrator.wait_for_run(first)

        assert first == second

    async def test_concurrent_starts_share_one_run(
        self, orchestrator, create_client, fake_scraper
    ) -> None:
        client = await create_client()
        fake_scraper.delay = 0.2

        first, second = await asyncio.gather(
            orchestrator.start_run(client.id), orchestrator.start_run(client.id)
        )
        await orchestrator.wait_for_run(first)
        latest = await orchestrator.get_latest_run(client.id)

        assert first == second
        assert latest.run.id == first

    async def test_force_supersedes_active_run(
        self, orchestrator, create_client, fake_scraper
    ) -> None:
        client = await create_client()
        fake_scraper.delay = 0.2

        first = await orchestrator.start_run(client.id)
        second = await orchestrator.start_run(client.id, force=True)
        await orchestrator.wait_for_run(first)
        await orchestrator.wait_for_run(second)

        old = await orchestrator.get_run(first)
        new = await orchestrator.get_run(second)
        assert first != second
        assert old.run.status == RunStatus.FAILED.value
        assert old.run.error_message == f"Superseded by run {second}"
        assert old.client_score_count == 0
        assert new.run.status == RunStatus.COMPLETED.value

    async def test_new_run_after_previous_finished(self, orchestrator, create_client) -> None:
        client = await create_client()

        first = await run_to_completion(orchestrator, client.id)
        second = await run_to_completion(orchestrator, client.id)

        assert first != second


class TestRunExecution:
    """End-to-end runs with fake collaborators."""

    async def test_completed_run(self, orchestrator, create_client) -> None:
        client = await create_client(competitors=["rival.example", "other.example"])

        run_id = await run_to_completion(orchestrator, client.id)
        details = await orchestrator.get_run(run_id)

        assert details.run.status == RunStatus.COMPLETED.value
        assert details.effective_status is EffectiveStatus.COMPLETED
        assert details.progress == 100
        assert details.client_score_count == len(Criterion)
        assert len(details.scores) == 3 * len(Criterion)
        assert details.run.overall_score is not None
        assert 0 < details.run.overall_score <= 10
        assert details.run.screenshot_url == "/screenshots/acme-example.png"
        assert details.should_continue_polling is False
        assert not orchestrator.is_running(run_id)

    async def test_scores_record_highest_tier(self, orchestrator, create_client) -> None:
        client = await create_client()

        run_id = await run_to_completion(orchestrator, client.id)
        details = await orchestrator.get_run(run_id)

        tiers = {s.criterion: s.tier for s in details.scores if s.competitor_id is None}
        assert tiers[Criterion.POSITIONING.value] == 2
        assert tiers[Criterion.SPEED.value] == 3
        assert tiers[Criterion.SEO.value] == 1

    async def test_progress_detail_persisted(self, orchestrator, create_client) -> None:
        client = await create_client(competitors=["rival.example"])

        run_id = await run_to_completion(orchestrator, client.id)
        details = await orchestrator.get_run(run_id)

        step_states = details.progress_detail["stepStates"]
        assert step_states["client_scrape"] == "done"
        assert step_states["competitor_0_speed_tier3"] == "done"

    async def test_competitor_failure_is_not_decisive(
        self, orchestrator, create_client, fake_scraper
    ) -> None:
        client = await create_client(competitors=["rival.example"])
        fake_scraper.failing = {"https://rival.example"}

        run_id = await run_to_completion(orchestrator, client.id)
        details = await orchestrator.get_run(run_id)

        assert details.run.status == RunStatus.COMPLETED.value
        competitor_scores = [s for s in details.scores if s.competitor_id is not None]
        assert competitor_scores
        assert all(
            s.score == 0.0 for s in competitor_scores if s.criterion != Criterion.SPEED.value
        )

    async def test_competitor_model_timeout_is_isolated(
        self, orchestrator, create_client, fake_model, async_session_factory
    ) -> None:
        client = await create_client(competitors=["slow.example", "rival.example"])
        fake_model.behaviour = {"https://slow.example": "timeout"}

        run_id = await run_to_completion(orchestrator, client.id)
        details = await orchestrator.get_run(run_id)
        async with async_session_factory() as session:
            loaded = await EffectivenessRepository(session).get_client(client.id)
        ids = {c.domain: c.id for c in loaded.competitors}

        assert details.run.status == RunStatus.COMPLETED.value
        tiers = {(s.competitor_id, s.criterion): s.tier for s in details.scores}
        for criterion in (Criterion.POSITIONING, Criterion.CTAS, Criterion.BRAND_STORY):
            assert tiers[(ids["slow.example"], criterion.value)] == 1
            assert tiers[(ids["rival.example"], criterion.value)] == 2
            assert tiers[(None, criterion.value)] == 2
        assert tiers[(ids["slow.example"], Criterion.SPEED.value)] == 3
        assert tiers[(ids["rival.example"], Criterion.SPEED.value)] == 3

    async def test_measurement_error_page_keeps_run_completed(
        self, mock_db_manager, create_client, fake_scraper, fake_model, scoring_config
    ) -> None:
        pagespeed = PageSpeedClient(
            timeout=5.0,
            max_retries=1,
            retry_delay=0.0,
            transport=httpx.MockTransport(
                lambda request: httpx.Response(400, text="<html>Bad Request</html>")
            ),
        )
        orchestrator = RunOrchestrator(
            scraper=fake_scraper,  # type: ignore[arg-type]
            evaluator=CriterionEvaluator(
                scoring_config,
                model=fake_model,  # type: ignore[arg-type]
                measurement=pagespeed,
            ),
            insights=InsightsGenerator(None),
            settings=get_test_settings(),
        )
        client = await create_client()

        run_id = await run_to_completion(orchestrator, client.id)
        details = await orchestrator.get_run(run_id)
        await pagespeed.close()

        assert details.run.status == RunStatus.COMPLETED.value
        assert details.client_score_count == len(Criterion)
        speed = next(
            s for s in details.scores
            if s.competitor_id is None and s.criterion == Criterion.SPEED.value
        )
        assert speed.tier == 1
        assert details.progress_detail["stepStates"]["client_speed_tier3"] == "failed"

    async def test_client_scrape_failure_floors_scores(
        self, orchestrator, create_client, fake_scraper
    ) -> None:
        client = await create_client()
        fake_scraper.failing = {CLIENT_URL}

        run_id = await run_to_completion(orchestrator, client.id)
        details = await orchestrator.get_run(run_id)

        assert details.run.status == RunStatus.COMPLETED.value
        client_scores = {s.criterion: s for s in details.scores if s.competitor_id is None}
        assert client_scores[Criterion.TRUST.value].score == 0.0
        assert client_scores[Criterion.SPEED.value].tier == 3
        assert details.run.screenshot_url is None

    async def test_unexpected_error_fails_run(
        self, orchestrator, create_client, fake_scraper
    ) -> None:
        client = await create_client()
        fake_scraper.fetch = AsyncMock(side_effect=RuntimeError("browser crashed"))

        run_id = await run_to_completion(orchestrator, client.id)
        details = await orchestrator.get_run(run_id)

        assert details.run.status == RunStatus.FAILED.value
        assert details.run.error_message == "Unexpected error: RuntimeError"
        assert details.effective_status is EffectiveStatus.FAILED

    async def test_finalize_without_client_scores_fails_run(
        self, orchestrator, create_client, async_session_factory
    ) -> None:
        client = await create_client()
        async with async_session_factory() as session:
            run = await EffectivenessRepository(session).create_run(client.id)
            await session.commit()
        active = ActiveRun(
            run_id=run.id,
            client_id=client.id,
            token=RunCancellationToken(run.id),
            tracker=ProgressTracker(run.id),
        )

        status, count = await orchestrator._finalize(
            active, TargetOutcome(target=EngineTarget(key="client", url=CLIENT_URL)), []
        )
        details = await orchestrator.get_run(run.id)

        assert (status, count) == (RunStatus.FAILED, 0)
        assert details.run.error_message == NO_CLIENT_SCORES_MESSAGE
        assert details.run.overall_score is None
        assert details.effective_status is EffectiveStatus.FAILED

    async def test_shutdown_interrupts_active_runs(
        self, orchestrator, create_client, fake_scraper
    ) -> None:
        client = await create_client()
        fake_scraper.delay = 0.3

        run_id = await orchestrator.start_run(client.id)
        await orchestrator.shutdown()
        details = await orchestrator.get_run(run_id)

        assert details.run.status == RunStatus.FAILED.value
        assert details.run.error_message == "Interrupted by service shutdown"
        assert orchestrator.active_run_ids == []

    async def test_auto_insights_cached_after_completion(
        self, mock_db_manager, create_client, fake_scraper, evaluator
    ) -> None:
        orchestrator = RunOrchestrator(
            scraper=fake_scraper,  # type: ignore[arg-type]
            evaluator=evaluator,
            insights=InsightsGenerator(None),
            settings=get_test_settings(effectiveness_auto_insights=True),
        )
        client = await create_client()

        run_id = await run_to_completion(orchestrator, client.id)
        cached = await orchestrator.get_cached_insights(run_id)

        assert cached is not None
        assert cached["source"] == "fallback"
        assert cached["run_id"] == run_id


class TestReads:
    """get_run, get_latest_run and cached insights lookups."""

    async def test_unknown_run(self, orchestrator) -> None:
        with pytest.raises(RunNotFoundError):
            await orchestrator.get_run(str(uuid4()))

    async def test_latest_run_is_most_recent(self, orchestrator, create_client) -> None:
        client = await create_client()
        await run_to_completion(orchestrator, client.id)
        second = await run_to_completion(orchestrator, client.id)

        latest = await orchestrator.get_latest_run(client.id)

        assert latest.run.id == second

    async def test_latest_run_unknown_client(self, orchestrator) -> None:
        with pytest.raises(ClientNotFoundError):
            await orchestrator.get_latest_run(str(uuid4()))

    async def test_latest_run_for_client_never_analyzed(
        self, orchestrator, create_client
    ) -> None:
        client = await create_client()

        with pytest.raises(RunNotFoundError):
            await orchestrator.get_latest_run(client.id)

    async def test_cached_insights_absent_until_generated(
        self, orchestrator, create_client
    ) -> None:
        client = await create_client()
        run_id = await run_to_completion(orchestrator, client.id)

        assert await orchestrator.get_cached_insights(run_id) is None

        result = await orchestrator.generate_insights(run_id)
        cached = await orchestrator.get_cached_insights(run_id)

        assert cached is not None
        assert cached["primary_issue"] == result.primary_issue

    async def test_cached_insights_unknown_run(self, orchestrator) -> None:
        with pytest.raises(RunNotFoundError):
            await orchestrator.get_cached_insights(str(uuid4()))
