"""InsightsGenerator: AI recommendations for a finished run.

Insights are only offered for runs whose effective status is completed or
partial. Each call regenerates and overwrites the cached result on the run.
When the model is unavailable or its reply cannot be parsed, a rule-based
result is built from the lowest-scoring criteria instead, so generation
itself never fails for an eligible run.
"""

import time
from collections.abc import Callable, Sequence
from contextlib import AbstractAsyncContextManager
from dataclasses import asdict, dataclass, field
from datetime import UTC, datetime
from typing import Any

from sqlalchemy.ext.asyncio import AsyncSession

from app.core.logging import get_logger
from app.integrations.claude import ClaudeClient
from app.models.client import Client
from app.models.criterion_score import Criterion, CriterionScore
from app.repositories.effectiveness import EffectivenessRepository, persistence_scope
from app.services.errors import AIError, InsightsNotAvailableError, RunNotFoundError
from app.services.model_evaluator import completion_error, parse_json_response
from app.services.rubric import RUBRIC
from app.services.run_status import derive_effective_status, insights_available

logger = get_logger(__name__)

SessionScope = Callable[[str], AbstractAsyncContextManager[AsyncSession]]

INSIGHTS_MAX_TOKENS = 1200
PRIORITY_SCORE_CEILING = 7.0

# Business impact and ease of implementation per criterion (0-1)
CRITERION_IMPACT = {
    Criterion.POSITIONING: 0.9,
    Criterion.CTAS: 0.85,
    Criterion.TRUST: 0.8,
    Criterion.SPEED: 0.75,
    Criterion.UX: 0.7,
    Criterion.BRAND_STORY: 0.65,
    Criterion.SEO: 0.6,
    Criterion.ACCESSIBILITY: 0.55,
}
CRITERION_EASE = {
    Criterion.CTAS: 0.9,
    Criterion.POSITIONING: 0.8,
    Criterion.TRUST: 0.75,
    Criterion.BRAND_STORY: 0.7,
    Criterion.UX: 0.6,
    Criterion.SEO: 0.5,
    Criterion.ACCESSIBILITY: 0.4,
    Criterion.SPEED: 0.3,
}

CHECK_RECOMMENDATIONS = {
    "audience_named": "Name your target customer in the headline",
    "outcome_present": "Add a concrete outcome or benefit to the hero text",
    "capability_clear": "State plainly what you do above the fold",
    "brevity_check": "Shorten the hero headline",
    "buzzword_free": "Replace generic buzzwords with specific claims",
    "client_logos": "Show recognizable client logos",
    "testimonials": "Add named customer testimonials",
    "case_studies": "Publish case studies with measurable results",
    "recent_content": "Refresh proof points with recent examples",
    "proof_near_claims": "Place proof next to the claims it supports",
    "above_fold_cta": "Put the primary call to action above the fold",
    "primary_hierarchy": "Make one primary action visually dominant",
    "form_cta": "Offer a short contact or demo form",
    "mobile_viewport": "Add a responsive viewport meta tag",
    "navigation": "Simplify the main navigation",
    "image_alt_text": "Add descriptive alt text to images",
    "landmarks": "Use semantic landmarks (header, main, footer)",
    "meta_description": "Write a meta description for the home page",
    "structured_data": "Add structured data markup",
    "lcp_good": "Reduce largest contentful paint below the limit",
    "cls_good": "Stabilize layout shifts during load",
    "render_blocking": "Defer render-blocking scripts and styles",
}


def score_context(overall_score: float) -> tuple[str, str]:
    """Score range label and analysis focus."""
    if overall_score <= 3:
        return "poor", "fundamental credibility and usability issues"
    if overall_score <= 6:
        return "average", "key user experience and conversion gaps"
    if overall_score <= 8:
        return "good", "optimization and fine-tuning opportunities"
    return "excellent", "advanced optimization and competitive advantages"


def priority_issues(scores: Sequence[CriterionScore]) -> list[tuple[Criterion, float, float]]:
    """(criterion, score, priority) for weak criteria, highest priority first.

    priority = impact * (1 + distance from 10) * ease
    """
    issues = []
    for row in scores:
        if row.score >= PRIORITY_SCORE_CEILING:
            continue
        criterion = Criterion(row.criterion)
        impact = CRITERION_IMPACT[criterion] * (1 + (10 - row.score) / 10)
        issues.append((criterion, row.score, impact * CRITERION_EASE[criterion]))
    return sorted(issues, key=lambda issue: issue[2], reverse=True)


def failed_checks(scores: Sequence[CriterionScore]) -> list[str]:
    checks: list[str] = []
    for row in scores:
        checks.extend((row.evidence or {}).get("failed", []))
    return checks


def describe_check(check: str) -> str:
    return CHECK_RECOMMENDATIONS.get(check, f"Fix {check.replace('_', ' ')}")


INSIGHTS_SYSTEM_PROMPT = """You are an expert website effectiveness analyst \
specializing in conversion optimization, user experience and digital marketing.

Base every insight on the provided scores and failed checks rather than \
generic advice. Prioritize high-impact fixes and pair quick wins with \
strategic improvements.

Return only valid JSON in the requested format."""


def build_insights_prompt(
    client: Client,
    overall_score: float | None,
    scores: Sequence[CriterionScore],
) -> str:
    score = overall_score or 0.0
    score_range, focus = score_context(score)
    criteria_lines = "\n".join(
        f"- {RUBRIC[Criterion(row.criterion)].label}: {row.score}/10 "
        f"(tier {row.tier}, {'passes' if row.passes else 'fails'})"
        for row in scores
    )
    priorities = "\n".join(
        f"- {RUBRIC[c].label}: {s}/10 (priority {p:.2f})"
        for c, s, p in priority_issues(scores)[:3]
    ) or "- none below 7/10"
    checks = ", ".join(c.replace("_", " ") for c in failed_checks(scores)) or "none"

    return f"""Analyze this website effectiveness data for {client.name}.

Website: {client.website_url}
Industry: {client.industry_vertical or "unspecified"}
Business size: {client.business_size or "unspecified"}
Overall score: {score}/10 ({score_range})

Criterion scores:
{criteria_lines}

Top priority issues:
{priorities}

Failed checks: {checks}

Analysis focus: {focus}

Respond with JSON only:
{{
  "primary_issue": "the single biggest gap, one sentence",
  "root_cause": "why the gap exists, based on the evidence",
  "business_impact": "what the gap costs the business",
  "key_insight": "2-3 sentences starting with 'With a score of X/10'",
  "quick_wins": ["one-sentence action", "..."],
  "strategic_initiatives": ["one-sentence initiative", "..."],
  "confidence": 0.0
}}"""


@dataclass
class InsightsResult:
    run_id: str
    source: str
    primary_issue: str
    root_cause: str
    business_impact: str
    key_insight: str
    quick_wins: list[str] = field(default_factory=list)
    strategic_initiatives: list[str] = field(default_factory=list)
    confidence: float = 0.0
    generated_at: str = field(default_factory=lambda: datetime.now(UTC).isoformat())

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


def _string_list(value: Any) -> list[str]:
    if not isinstance(value, list):
        return []
    return [str(item) for item in value if str(item).strip()]


def parse_insights(run_id: str, payload: dict[str, Any]) -> InsightsResult:
    """Validate a model reply.

    Raises:
        AIError: Required text fields are missing
    """
    required = ("primary_issue", "key_insight")
    missing = [name for name in required if not str(payload.get(name) or "").strip()]
    if missing:
        raise AIError(
            f"Insights response missing fields: {', '.join(missing)}",
            details={"missing_fields": missing},
        )
    try:
        confidence = float(payload.get("confidence", 0.0))
    except (TypeError, ValueError):
        confidence = 0.0
    return InsightsResult(
        run_id=run_id,
        source="model",
        primary_issue=str(payload["primary_issue"]),
        root_cause=str(payload.get("root_cause") or ""),
        business_impact=str(payload.get("business_impact") or ""),
        key_insight=str(payload["key_insight"]),
        quick_wins=_string_list(payload.get("quick_wins")),
        strategic_initiatives=_string_list(payload.get("strategic_initiatives")),
        confidence=min(1.0, max(0.0, confidence)),
    )


def fallback_insights(
    run_id: str,
    overall_score: float | None,
    scores: Sequence[CriterionScore],
) -> InsightsResult:
    """Rule-based insights from the lowest-scoring criteria."""
    score = overall_score or 0.0
    ranked = sorted(scores, key=lambda row: (row.score, row.criterion))
    if not ranked:
        return InsightsResult(
            run_id=run_id,
            source="fallback",
            primary_issue="No criterion scores were recorded for the client website",
            root_cause="The website could not be analyzed",
            business_impact="Effectiveness cannot be assessed until the site is reachable",
            key_insight=f"With a score of {score}/10, the analysis has no data to explain it.",
            confidence=0.2,
        )

    weakest = ranked[0]
    weakest_label = RUBRIC[Criterion(weakest.criterion)].label
    score_range, focus = score_context(score)
    checks = failed_checks(ranked[:3])

    quick_wins: list[str] = []
    for check in checks:
        recommendation = describe_check(check)
        if recommendation not in quick_wins:
            quick_wins.append(recommendation)
    strategic = [
        f"Raise {RUBRIC[c].label.lower()} from {s}/10"
        for c, s, _ in priority_issues(ranked)[:3]
    ]

    return InsightsResult(
        run_id=run_id,
        source="fallback",
        primary_issue=f"{weakest_label} is the weakest area at {weakest.score}/10",
        root_cause=(
            "Failed checks: " + ", ".join(c.replace("_", " ") for c in checks)
            if checks
            else f"{weakest_label} scored low without specific failed checks"
        ),
        business_impact=f"Overall effectiveness is {score_range}; focus on {focus}",
        key_insight=(
            f"With a score of {score}/10, the site's main gap is "
            f"{weakest_label.lower()} ({weakest.score}/10)."
        ),
        quick_wins=quick_wins[:4],
        strategic_initiatives=strategic,
        confidence=0.5,
    )


class InsightsGenerator:
    """Generates and caches insights for a run."""

    def __init__(
        self, claude: ClaudeClient | None, scope: SessionScope = persistence_scope
    ) -> None:
        self._claude = claude
        self._scope = scope

    async def generate(self, run_id: str) -> InsightsResult:
        """Regenerate insights for ``run_id`` and overwrite the cached copy.

        Raises:
            RunNotFoundError: Unknown run
            InsightsNotAvailableError: Effective status is not completed/partial
            PersistenceError: The run could not be read or written
        """
        start_time = time.monotonic()
        async with self._scope("Load run for insights") as session:
            repo = EffectivenessRepository(session)
            run = await repo.get_run(run_id)
            if run is None:
                raise RunNotFoundError(run_id)
            count = await repo.count_client_scores(run_id)
            if not insights_available(run.status, count):
                effective = derive_effective_status(run.status, count)
                raise InsightsNotAvailableError(run_id, effective.value)
            client = await repo.get_client(run.client_id)
            scores = await repo.list_client_scores(run_id)
            overall_score = run.overall_score

        result = await self._from_model(run_id, client, overall_score, scores)
        if result is None:
            result = fallback_insights(run_id, overall_score, scores)

        async with self._scope("Save run insights") as session:
            await EffectivenessRepository(session).save_insights(run_id, result.to_dict())

        logger.info(
            "Insights generated",
            extra={
                "run_id": run_id,
                "source": result.source,
                "duration_ms": round((time.monotonic() - start_time) * 1000, 2),
            },
        )
        return result

    async def _from_model(
        self,
        run_id: str,
        client: Client | None,
        overall_score: float | None,
        scores: Sequence[CriterionScore],
    ) -> InsightsResult | None:
        if self._claude is None or not self._claude.available or client is None or not scores:
            return None

        prompt = build_insights_prompt(client, overall_score, scores)
        result = await self._claude.complete(
            prompt,
            system_prompt=INSIGHTS_SYSTEM_PROMPT,
            max_tokens=INSIGHTS_MAX_TOKENS,
            temperature=0.0 if (overall_score or 0) <= 4 else 0.1,
        )
        try:
            if not result.success:
                raise completion_error(result)
            return parse_insights(run_id, parse_json_response(result.text))
        except AIError as e:
            logger.warning(
                "Model insights unavailable, using rule-based fallback",
                extra={"run_id": run_id, "error_code": e.code, "error": e.message},
            )
            return None
