"""CriterionEvaluator: one criterion, one tier, one target.

Stateless apart from its injected collaborators. Tier 1 never raises; tiers
2 and 3 raise AIError / ExternalAPIError and leave the fallback decision to
the engine.
"""

from app.core.logging import get_logger
from app.integrations.pagespeed import PageSpeedClient
from app.models.criterion_score import Criterion
from app.services.content_extraction import PageData
from app.services.errors import AIError, ExternalAPIError
from app.services.model_evaluator import ModelEvaluator
from app.services.rubric import RUBRIC
from app.services.scoring import (
    CriterionResult,
    ScoringConfig,
    Tier,
    build_result,
    empty_result,
)

logger = get_logger(__name__)


class CriterionEvaluator:
    def __init__(
        self,
        config: ScoringConfig,
        model: ModelEvaluator | None = None,
        measurement: PageSpeedClient | None = None,
    ) -> None:
        self._config = config
        self._model = model
        self._measurement = measurement

    @property
    def config(self) -> ScoringConfig:
        return self._config

    def evaluate_html(self, criterion: Criterion, page: PageData) -> CriterionResult:
        """Tier 1 score from HTML and headers. Never raises."""
        if page.is_empty:
            return empty_result(criterion, "no_page_content")

        try:
            assessment = RUBRIC[criterion].score_html(page, self._config)
        except Exception as e:
            logger.error(
                "Tier 1 heuristic failed",
                extra={
                    "criterion": criterion.value,
                    "target_url": page.url,
                    "error_type": type(e).__name__,
                    "error": str(e),
                },
                exc_info=True,
            )
            return empty_result(criterion, "heuristic_error")

        return build_result(criterion, Tier.HTML, assessment, self._config, source="html")

    async def evaluate_model(self, criterion: Criterion, page: PageData) -> CriterionResult:
        """Tier 2 score from the model.

        Raises:
            AIError: No evaluator, no content, or the call failed
        """
        if self._model is None or not self._model.available:
            raise AIError(
                "Model evaluation not configured",
                details={"criterion": criterion.value},
            )
        if page.is_empty:
            raise AIError(
                "No page content to evaluate",
                details={"criterion": criterion.value, "target_url": page.url},
            )
        return await self._model.evaluate(criterion, page)

    async def evaluate_measurement(self, criterion: Criterion, url: str) -> CriterionResult:
        """Tier 3 score from the measurement provider.

        Raises:
            ExternalAPIError: No provider, or the provider call failed
        """
        definition = RUBRIC[criterion]
        if self._measurement is None or definition.score_measurement is None:
            raise ExternalAPIError(
                "pagespeed",
                f"No measurement available for {criterion.value}",
            )
        measurement = await self._measurement.measure(url)
        assessment = definition.score_measurement(measurement, self._config)
        return build_result(
            criterion, Tier.MEASUREMENT, assessment, self._config, source="pagespeed"
        )
