"""Tests for insights generation and the rule-based fallback."""

import json
from unittest.mock import AsyncMock, MagicMock
from uuid import uuid4

import pytest

from app.integrations.claude import CompletionResult
from app.models.criterion_score import Criterion, CriterionScore
from app.models.effectiveness_run import RunStatus
from app.repositories.effectiveness import EffectivenessRepository
from app.services.errors import AIError, InsightsNotAvailableError, RunNotFoundError
from app.services.insights import (
    InsightsGenerator,
    build_insights_prompt,
    describe_check,
    fallback_insights,
    parse_insights,
    priority_issues,
    score_context,
)
from app.services.scoring import CriterionResult, Tier

MODEL_REPLY = {
    "primary_issue": "The hero never says who the product is for",
    "root_cause": "Generic headline",
    "business_impact": "Visitors bounce before reaching pricing",
    "key_insight": "With a score of 6.2/10, positioning is the main gap.",
    "quick_wins": ["Rewrite the headline", ""],
    "strategic_initiatives": ["Publish two case studies"],
    "confidence": 0.8,
}


def score_row(
    criterion: Criterion, score: float, failed: list[str] | None = None
) -> CriterionScore:
    return CriterionScore(
        criterion=criterion.value,
        score=score,
        passes=score >= 6.0,
        tier=1,
        evidence={"source": "html", "passed": [], "failed": failed or []},
    )


def make_claude(result: CompletionResult) -> MagicMock:
    claude = MagicMock()
    claude.available = True
    claude.complete = AsyncMock(return_value=result)
    return claude


@pytest.fixture
def seed_run(create_client, async_session_factory):
    """Create a run with client scores in the given status."""

    async def _seed(status: RunStatus, scores: dict[Criterion, float]) -> str:
        client = await create_client()
        async with async_session_factory() as session:
            repo = EffectivenessRepository(session)
            run = await repo.create_run(client.id)
            for criterion, value in scores.items():
                await repo.upsert_score(
                    run.id,
                    None,
                    CriterionResult(
                        criterion=criterion,
                        score=value,
                        passes=value >= 6.0,
                        tier=Tier.HTML,
                        evidence={"source": "html", "passed": [], "failed": ["testimonials"]},
                    ),
                )
            if status.is_terminal:
                await repo.finalize(run.id, status, 6.2 if scores else None)
            else:
                await repo.transition_status(run.id, status)
            await session.commit()
            return run.id

    return _seed


class TestHelpers:
    @pytest.mark.parametrize(
        ("score", "label"),
        [(2.0, "poor"), (5.5, "average"), (7.9, "good"), (9.1, "excellent")],
    )
    def test_score_context(self, score, label) -> None:
        assert score_context(score)[0] == label

    def test_priority_issues_skip_strong_criteria(self) -> None:
        scores = [
            score_row(Criterion.SEO, 9.0),
            score_row(Criterion.CTAS, 3.0),
            score_row(Criterion.ACCESSIBILITY, 3.0),
        ]

        issues = priority_issues(scores)

        assert [c for c, _, _ in issues] == [Criterion.CTAS, Criterion.ACCESSIBILITY]

    def test_describe_check(self) -> None:
        assert describe_check("testimonials") == "Add named customer testimonials"
        assert describe_check("heading_order") == "Fix heading order"

    def test_prompt_mentions_client_and_scores(self) -> None:
        client = MagicMock(
            website_url="https://acme.example",
            industry_vertical="B2B SaaS",
            business_size=None,
        )
        client.name = "Acme Analytics"

        prompt = build_insights_prompt(client, 5.0, [score_row(Criterion.TRUST, 4.0)])

        assert "Acme Analytics" in prompt
        assert "- Trust: 4.0/10" in prompt
        assert "(average)" in prompt


class TestParseInsights:
    def test_valid_reply(self) -> None:
        result = parse_insights("run-1", MODEL_REPLY)

        assert result.source == "model"
        assert result.quick_wins == ["Rewrite the headline"]
        assert result.confidence == 0.8

    def test_confidence_clamped(self) -> None:
        result = parse_insights("run-1", {**MODEL_REPLY, "confidence": 3})

        assert result.confidence == 1.0

    def test_missing_required_fields(self) -> None:
        with pytest.raises(AIError, match="key_insight"):
            parse_insights("run-1", {"primary_issue": "x"})


class TestFallbackInsights:
    def test_weakest_criterion_leads(self) -> None:
        scores = [
            score_row(Criterion.SEO, 8.0),
            score_row(Criterion.TRUST, 2.5, failed=["testimonials", "client_logos"]),
        ]

        result = fallback_insights("run-1", 5.2, scores)

        assert result.source == "fallback"
        assert "2.5/10" in result.primary_issue
        assert result.quick_wins[0] == "Add named customer testimonials"
        assert result.key_insight.startswith("With a score of 5.2/10")
        assert result.confidence == 0.5

    def test_no_scores(self) -> None:
        result = fallback_insights("run-1", None, [])

        assert result.confidence == 0.2
        assert result.quick_wins == []


class TestInsightsGenerator:
    """generate() gates on effective status and always caches a result."""

    async def test_model_insights_cached(self, mock_db_manager, seed_run) -> None:
        run_id = await seed_run(RunStatus.COMPLETED, {Criterion.POSITIONING: 4.0})
        claude = make_claude(CompletionResult(success=True, text=json.dumps(MODEL_REPLY)))

        result = await InsightsGenerator(claude).generate(run_id)

        assert result.source == "model"
        async with mock_db_manager.session_factory() as session:
            run = await EffectivenessRepository(session).get_run(run_id)
        assert run.insights["primary_issue"] == MODEL_REPLY["primary_issue"]
        assert run.insights_generated_at is not None

    async def test_temperature_follows_overall_score(
        self, mock_db_manager, seed_run
    ) -> None:
        run_id = await seed_run(RunStatus.FAILED, {Criterion.POSITIONING: 4.0})
        claude = make_claude(CompletionResult(success=True, text=json.dumps(MODEL_REPLY)))

        await InsightsGenerator(claude).generate(run_id)

        assert claude.complete.await_args.kwargs["temperature"] == 0.1

    async def test_model_failure_falls_back(self, mock_db_manager, seed_run) -> None:
        run_id = await seed_run(RunStatus.COMPLETED, {Criterion.TRUST: 3.0})
        claude = make_claude(
            CompletionResult(success=False, error="overloaded", error_type="server")
        )

        result = await InsightsGenerator(claude).generate(run_id)

        assert result.source == "fallback"
        assert "Trust" in result.primary_issue

    async def test_regeneration_overwrites_cache(self, mock_db_manager, seed_run) -> None:
        run_id = await seed_run(RunStatus.COMPLETED, {Criterion.TRUST: 3.0})
        claude = make_claude(CompletionResult(success=True, text=json.dumps(MODEL_REPLY)))

        first = await InsightsGenerator(claude).generate(run_id)
        async with mock_db_manager.session_factory() as session:
            first_run = await EffectivenessRepository(session).get_run(run_id)
        first_at = first_run.insights_generated_at
        second = await InsightsGenerator(None).generate(run_id)
        async with mock_db_manager.session_factory() as session:
            second_run = await EffectivenessRepository(session).get_run(run_id)

        assert first.run_id == run_id
        assert second.run_id == run_id
        assert first_run.insights["source"] == "model"
        assert second_run.insights["source"] == "fallback"
        assert second_run.insights_generated_at >= first_at

    async def test_partial_run_is_eligible(self, mock_db_manager, seed_run) -> None:
        run_id = await seed_run(RunStatus.FAILED, {Criterion.SEO: 5.0})

        result = await InsightsGenerator(None).generate(run_id)

        assert result.run_id == run_id

    async def test_running_run_is_not_eligible(self, mock_db_manager, seed_run) -> None:
        run_id = await seed_run(RunStatus.SCRAPING, {})

        with pytest.raises(InsightsNotAvailableError) as exc_info:
            await InsightsGenerator(None).generate(run_id)

        assert exc_info.value.effective_status == "running"

    async def test_failed_run_without_scores_is_not_eligible(
        self, mock_db_manager, seed_run
    ) -> None:
        run_id = await seed_run(RunStatus.FAILED, {})

        with pytest.raises(InsightsNotAvailableError):
            await InsightsGenerator(None).generate(run_id)

    async def test_unknown_run(self, mock_db_manager) -> None:
        with pytest.raises(RunNotFoundError):
            await InsightsGenerator(None).generate(str(uuid4()))
