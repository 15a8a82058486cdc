"""Tier 2 evaluator: model-assisted scoring over the Claude client.

Turns a rubric prompt into a CriterionResult, translating every way the call
can go wrong into the AIError family so the engine can fall back to tier 1.
"""

import json
import re
from typing import Any

from app.core.logging import get_logger
from app.integrations.claude import (
    ERROR_CIRCUIT_OPEN,
    ERROR_INVALID_RESPONSE,
    ERROR_NOT_CONFIGURED,
    ERROR_QUOTA,
    ERROR_RATE_LIMIT,
    ERROR_TIMEOUT,
    ClaudeClient,
    CompletionResult,
)
from app.models.criterion_score import Criterion
from app.services.content_extraction import PageData
from app.services.errors import (
    AIError,
    AIQuotaExceededError,
    AIRateLimitError,
    AIResponseError,
    AITimeoutError,
)
from app.services.rubric import MODEL_SYSTEM_PROMPT, RUBRIC
from app.services.scoring import CriterionResult, ScoringConfig, Tier, build_result

logger = get_logger(__name__)

MODEL_MAX_TOKENS = 800
CODE_FENCE_PATTERN = re.compile(r"^```(?:json)?\s*|\s*```$", re.IGNORECASE)


def parse_json_response(text: str | None) -> dict[str, Any]:
    """Extract the JSON object from a model reply.

    Tolerates markdown code fences and leading/trailing prose.

    Raises:
        AIResponseError: No parseable JSON object in the reply
    """
    if not text or not text.strip():
        raise AIResponseError("Model returned an empty response")

    cleaned = CODE_FENCE_PATTERN.sub("", text.strip())
    start = cleaned.find("{")
    end = cleaned.rfind("}")
    if start == -1 or end <= start:
        raise AIResponseError(
            "Model response contained no JSON object",
            details={"response_preview": cleaned[:200]},
        )

    try:
        payload = json.loads(cleaned[start : end + 1])
    except json.JSONDecodeError as e:
        raise AIResponseError(
            f"Model response was not valid JSON: {e}",
            details={"response_preview": cleaned[:200]},
        ) from e

    if not isinstance(payload, dict):
        raise AIResponseError("Model response JSON was not an object")
    return payload


def completion_error(result: CompletionResult) -> AIError:
    """Map an unsuccessful completion onto the AIError family."""
    details = {"error_type": result.error_type, "status_code": result.status_code}
    message = result.error or "Model call failed"
    if result.error_type == ERROR_TIMEOUT:
        return AITimeoutError(message, details)
    if result.error_type == ERROR_RATE_LIMIT:
        return AIRateLimitError(message, details)
    if result.error_type == ERROR_QUOTA:
        return AIQuotaExceededError(message, details)
    if result.error_type == ERROR_INVALID_RESPONSE:
        return AIResponseError(message, details)
    return AIError(message, details)


class ModelEvaluator:
    """Scores positioning, brand story and CTAs with a generative model."""

    def __init__(self, claude: ClaudeClient, config: ScoringConfig | None = None) -> None:
        self._claude = claude
        self._config = config or ScoringConfig.from_settings()

    @property
    def available(self) -> bool:
        return self._claude.available

    async def evaluate(self, criterion: Criterion, page: PageData) -> CriterionResult:
        """Run the tier 2 evaluation for one criterion of one page.

        Raises:
            AIError: Any failure (subclass indicates which)
        """
        definition = RUBRIC[criterion]
        if definition.model_prompt is None or definition.score_model is None:
            raise AIError(
                f"{criterion.value} has no model evaluation",
                details={"criterion": criterion.value},
            )

        prompt = definition.model_prompt(page, self._config)
        result = await self._claude.complete(
            prompt,
            system_prompt=MODEL_SYSTEM_PROMPT,
            max_tokens=MODEL_MAX_TOKENS,
        )
        if not result.success:
            if result.error_type in (ERROR_NOT_CONFIGURED, ERROR_CIRCUIT_OPEN):
                logger.debug(
                    "Model evaluation skipped",
                    extra={"criterion": criterion.value, "reason": result.error},
                )
            raise completion_error(result)

        payload = parse_json_response(result.text)
        missing = [f for f in definition.model_fields if not isinstance(payload.get(f), bool)]
        if missing:
            raise AIResponseError(
                f"Model response for {criterion.value} is missing fields: {', '.join(missing)}",
                details={"criterion": criterion.value, "missing_fields": missing},
            )

        assessment = definition.score_model(payload, page, self._config)
        assessment.evidence["model"] = self._claude.model
        return build_result(criterion, Tier.MODEL, assessment, self._config, source="model")
