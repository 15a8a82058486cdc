"""Tests for the tier 2 model evaluator."""

import json
from unittest.mock import AsyncMock, MagicMock

import pytest

from app.integrations.claude import CompletionResult
from app.models.criterion_score import Criterion
from app.services.errors import (
    AIError,
    AIQuotaExceededError,
    AIRateLimitError,
    AIResponseError,
    AITimeoutError,
)
from app.services.model_evaluator import (
    MODEL_MAX_TOKENS,
    ModelEvaluator,
    completion_error,
    parse_json_response,
)
from app.services.rubric import MODEL_SYSTEM_PROMPT
from app.services.scoring import Tier

CTA_PAYLOAD = {
    "primary_cta_clear": True,
    "action_oriented": True,
    "message_match": True,
    "hierarchy_clear": True,
    "primary_cta": "Get started",
    "reasoning": "One dominant button in the hero.",
}


def make_claude(result: CompletionResult, available: bool = True) -> MagicMock:
    claude = MagicMock()
    claude.available = available
    claude.model = "claude-test"
    claude.complete = AsyncMock(return_value=result)
    return claude


class TestParseJsonResponse:
    """Model replies are parsed leniently but never guessed at."""

    def test_plain_object(self) -> None:
        assert parse_json_response('{"a": true}') == {"a": True}

    def test_code_fence(self) -> None:
        text = '```json\n{"a": 1}\n```'

        assert parse_json_response(text) == {"a": 1}

    def test_surrounding_prose(self) -> None:
        text = 'Here is my assessment:\n{"a": false}\nLet me know!'

        assert parse_json_response(text) == {"a": False}

    @pytest.mark.parametrize("text", [None, "", "   "])
    def test_empty_reply(self, text) -> None:
        with pytest.raises(AIResponseError, match="empty"):
            parse_json_response(text)

    def test_no_object(self) -> None:
        with pytest.raises(AIResponseError, match="no JSON object"):
            parse_json_response("I cannot evaluate this page.")

    def test_invalid_json(self) -> None:
        with pytest.raises(AIResponseError, match="not valid JSON"):
            parse_json_response('{"a": tru}')


class TestCompletionError:
    @pytest.mark.parametrize(
        ("error_type", "expected"),
        [
            ("timeout", AITimeoutError),
            ("rate_limit", AIRateLimitError),
            ("quota_exceeded", AIQuotaExceededError),
        ],
    )
    def test_specific_errors(self, error_type, expected) -> None:
        error = completion_error(
            CompletionResult(success=False, error="boom", error_type=error_type)
        )

        assert type(error) is expected
        assert error.message == "boom"

    def test_other_errors_are_generic(self) -> None:
        error = completion_error(
            CompletionResult(success=False, error_type="server", status_code=503)
        )

        assert type(error) is AIError
        assert error.details["status_code"] == 503


class TestModelEvaluator:
    """ModelEvaluator.evaluate over a mocked Claude client."""

    async def test_successful_evaluation(self, sample_page, scoring_config) -> None:
        claude = make_claude(CompletionResult(success=True, text=json.dumps(CTA_PAYLOAD)))
        evaluator = ModelEvaluator(claude, scoring_config)

        result = await evaluator.evaluate(Criterion.CTAS, sample_page)

        assert result.tier is Tier.MODEL
        assert result.score == 10.0
        assert result.passes is True
        assert result.evidence["source"] == "model"
        assert result.evidence["model"] == "claude-test"
        assert result.evidence["primary_cta"] == "Get started"

    async def test_prompt_sent_with_system_prompt(self, sample_page, scoring_config) -> None:
        claude = make_claude(CompletionResult(success=True, text=json.dumps(CTA_PAYLOAD)))

        await ModelEvaluator(claude, scoring_config).evaluate(Criterion.CTAS, sample_page)

        claude.complete.assert_awaited_once()
        kwargs = claude.complete.await_args.kwargs
        assert kwargs["system_prompt"] == MODEL_SYSTEM_PROMPT
        assert kwargs["max_tokens"] == MODEL_MAX_TOKENS

    async def test_missing_flags_rejected(self, sample_page, scoring_config) -> None:
        payload = {k: v for k, v in CTA_PAYLOAD.items() if k != "message_match"}
        claude = make_claude(CompletionResult(success=True, text=json.dumps(payload)))

        with pytest.raises(AIResponseError) as exc_info:
            await ModelEvaluator(claude, scoring_config).evaluate(Criterion.CTAS, sample_page)

        assert exc_info.value.details["missing_fields"] == ["message_match"]

    async def test_failed_completion_raises(self, sample_page, scoring_config) -> None:
        claude = make_claude(
            CompletionResult(success=False, error="slow down", error_type="rate_limit")
        )

        with pytest.raises(AIRateLimitError):
            await ModelEvaluator(claude, scoring_config).evaluate(
                Criterion.POSITIONING, sample_page
            )

    async def test_criterion_without_model_tier(self, sample_page, scoring_config) -> None:
        claude = make_claude(CompletionResult(success=True, text="{}"))

        with pytest.raises(AIError, match="no model evaluation"):
            await ModelEvaluator(claude, scoring_config).evaluate(Criterion.SEO, sample_page)

        claude.complete.assert_not_awaited()

    def test_available_follows_client(self, scoring_config) -> None:
        claude = make_claude(CompletionResult(success=True), available=False)

        assert ModelEvaluator(claude, scoring_config).available is False
