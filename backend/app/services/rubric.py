"""The effectiveness rubric: one CriterionDefinition per Criterion.

RUBRIC is a closed registry. Every Criterion member must have exactly one
definition with a positive weight; both are checked at import time
so a missing or stray criterion fails loudly instead of silently scoring 0.

Each definition exposes a uniform interface per tier:
- tier 1: score_html(page, config) -> Assessment
- tier 2: model_prompt(page, config) -> str and
          score_model(payload, page, config) -> Assessment
- tier 3: score_measurement(measurement, config) -> Assessment
"""

from collections.abc import Callable, Mapping
from dataclasses import dataclass
from typing import Any

from app.integrations.pagespeed import PageSpeedMeasurement
from app.models.criterion_score import Criterion
from app.services import page_heuristics
from app.services.content_extraction import (
    PageData,
    extract_ctas,
    extract_hero,
    extract_story_text,
)
from app.services.scoring import Assessment, ScoringConfig, Tier

MISSING_CRITERION_PENALTY = 0.05

HtmlScorer = Callable[[PageData, ScoringConfig], Assessment]
PromptBuilder = Callable[[PageData, ScoringConfig], str]
ModelScorer = Callable[[dict[str, Any], PageData, ScoringConfig], Assessment]
MeasurementScorer = Callable[[PageSpeedMeasurement, ScoringConfig], Assessment]

POSITIONING_FIELDS = ("audience_named", "outcome_present", "capability_clear", "brevity_check")
BRAND_STORY_FIELDS = ("pov_present", "mechanism_named", "outcomes_recent", "case_complete")
CTA_FIELDS = ("primary_cta_clear", "action_oriented", "message_match", "hierarchy_clear")

MODEL_SYSTEM_PROMPT = (
    "You are a senior conversion-rate and brand strategist auditing company "
    "websites. Judge only the content you are given. Respond with a single JSON "
    "object and nothing else."
)


@dataclass(frozen=True)
class CriterionDefinition:
    criterion: Criterion
    label: str
    weight: float
    score_html: HtmlScorer
    model_prompt: PromptBuilder | None = None
    model_fields: tuple[str, ...] = ()
    score_model: ModelScorer | None = None
    score_measurement: MeasurementScorer | None = None

    @property
    def tiers(self) -> tuple[Tier, ...]:
        tiers = [Tier.HTML]
        if self.model_prompt is not None and self.score_model is not None:
            tiers.append(Tier.MODEL)
        if self.score_measurement is not None:
            tiers.append(Tier.MEASUREMENT)
        return tuple(tiers)


# Tier 2 prompts


def positioning_prompt(page: PageData, config: ScoringConfig) -> str:
    hero = extract_hero(page.soup)
    return f"""Analyze the hero section copy of {page.url} for these criteria.
- audience_named: Is the target audience clearly identified?
- outcome_present: Is a specific outcome or benefit mentioned?
- capability_clear: Is what the company does clearly stated?
- brevity_check: Is the main headline concise (at most {config.hero_words} words)?
- buzzwords: Which of these buzzwords appear: {", ".join(config.buzzwords)}?

Headline: {hero.headline or "(none)"}
Subheading: {hero.subheading or "(none)"}
Supporting copy: {hero.paragraph or "(none)"}

Return JSON:
{{
  "audience_named": boolean,
  "audience_evidence": "exact text identifying the audience or null",
  "outcome_present": boolean,
  "outcome_evidence": "exact text describing the outcome or null",
  "capability_clear": boolean,
  "capability_evidence": "exact text describing the capability or null",
  "brevity_check": boolean,
  "buzzwords": ["buzzword", ...],
  "confidence": 0-1
}}"""


def brand_story_prompt(page: PageData, config: ScoringConfig) -> str:
    return f"""Analyze this website content for brand story elements.
- pov_present: Is there a clear point of view or unique perspective?
- mechanism_named: Is the specific method or approach named?
- outcomes_recent: Are outcomes from the last {config.recent_months} months mentioned?
- case_complete: Is there a complete case study or success story?

Content: {extract_story_text(page.soup)}

Return JSON:
{{
  "pov_present": boolean,
  "pov_evidence": "exact text showing the POV or null",
  "mechanism_named": boolean,
  "mechanism_evidence": "exact text describing the mechanism or null",
  "outcomes_recent": boolean,
  "outcomes_evidence": "exact text of recent outcomes or null",
  "case_complete": boolean,
  "case_evidence": "case study description or null",
  "confidence": 0-1
}}"""


def ctas_prompt(page: PageData, config: ScoringConfig) -> str:
    ctas = extract_ctas(page.soup)
    listing = "\n".join(
        f"- \"{c.text}\" -> {c.href or '(no link)'}"
        f"{' [above fold]' if c.above_fold else ''}"
        for c in ctas[:15]
    ) or "(no calls to action found)"
    hero = extract_hero(page.soup)
    return f"""Evaluate the calls to action on {page.url}.
- primary_cta_clear: Is there one obvious primary action for a first-time visitor?
- action_oriented: Do CTA labels start with a concrete verb and state what happens next?
- message_match: Do CTA labels match the promise made in the hero copy?
- hierarchy_clear: Is the primary CTA visually and verbally dominant over secondary
  ones (roughly {config.cta_dominance}x more prominent)?

Hero copy: {hero.combined or "(none)"}
Calls to action:
{listing}

Return JSON:
{{
  "primary_cta_clear": boolean,
  "primary_cta": "label of the primary CTA or null",
  "action_oriented": boolean,
  "message_match": boolean,
  "hierarchy_clear": boolean,
  "reasoning": "one or two sentences",
  "confidence": 0-1
}}"""


# Tier 2 scoring


def _score_flags(
    payload: dict[str, Any],
    flags: tuple[str, ...],
    evidence_keys: tuple[str, ...] = (),
) -> Assessment:
    a = Assessment(
        evidence={key: payload.get(key) for key in evidence_keys if payload.get(key)}
    )
    for flag in flags:
        a.check(flag, payload.get(flag) is True, 2.5)
    if isinstance(payload.get("confidence"), (int, float)):
        a.evidence["confidence"] = payload["confidence"]
    return a


def score_positioning_model(
    payload: dict[str, Any], page: PageData, config: ScoringConfig
) -> Assessment:
    a = _score_flags(
        payload,
        POSITIONING_FIELDS,
        ("audience_evidence", "outcome_evidence", "capability_evidence"),
    )
    buzzwords = payload.get("buzzwords") or []
    if isinstance(buzzwords, list) and buzzwords:
        a.evidence["buzzwords"] = [str(b) for b in buzzwords]
        a.penalize("buzzword_free", 0.5 * len(buzzwords))
    return a


def score_brand_story_model(
    payload: dict[str, Any], page: PageData, config: ScoringConfig
) -> Assessment:
    return _score_flags(
        payload,
        BRAND_STORY_FIELDS,
        ("pov_evidence", "mechanism_evidence", "outcomes_evidence", "case_evidence"),
    )


def score_ctas_model(
    payload: dict[str, Any], page: PageData, config: ScoringConfig
) -> Assessment:
    return _score_flags(payload, CTA_FIELDS, ("primary_cta", "reasoning"))


# Tier 3 scoring


def estimate_performance_score(web_vitals: Mapping[str, float]) -> float:
    """Approximate a Lighthouse score when the provider omits one."""
    score = 100.0
    lcp = web_vitals.get("lcp", 0.0)
    cls = web_vitals.get("cls", 0.0)
    fid = web_vitals.get("fid", 0.0)

    if lcp > 4.0:
        score -= 30
    elif lcp > 2.5:
        score -= 15

    if cls > 0.25:
        score -= 25
    elif cls > 0.1:
        score -= 10

    if fid > 300:
        score -= 20
    elif fid > 100:
        score -= 5

    return max(0.0, score)


def score_speed_measurement(
    measurement: PageSpeedMeasurement, config: ScoringConfig
) -> Assessment:
    vitals = measurement.web_vitals
    performance = measurement.performance_score
    estimated = performance is None
    if estimated:
        performance = estimate_performance_score(vitals)

    a = Assessment(
        evidence={
            "performance_score": performance,
            "performance_estimated": estimated,
            "web_vitals": dict(vitals),
            "thresholds": {"lcp_limit": config.lcp_limit, "cls_limit": config.cls_limit},
        }
    )
    score = performance / 10

    lcp = vitals.get("lcp", 0.0)
    if lcp <= 2.5:
        a.passed.append("lcp_good")
    elif lcp <= config.lcp_limit:
        a.passed.append("lcp_acceptable")
        score *= 0.8
    else:
        a.failed.append("lcp_poor")
        score *= 0.5

    cls = vitals.get("cls", 0.0)
    if cls <= 0.1:
        a.passed.append("cls_good")
    elif cls <= config.cls_limit:
        a.passed.append("cls_acceptable")
        score *= 0.9
    else:
        a.failed.append("cls_poor")
        score *= 0.7

    fid = vitals.get("fid", 0.0)
    if fid <= 100:
        a.passed.append("fid_good")
    elif fid <= 300:
        a.passed.append("fid_acceptable")
        score *= 0.95
    else:
        a.failed.append("fid_poor")
        score *= 0.8

    a.points = score
    return a


RUBRIC: dict[Criterion, CriterionDefinition] = {
    Criterion.POSITIONING: CriterionDefinition(
        criterion=Criterion.POSITIONING,
        label="Positioning",
        weight=0.15,
        score_html=page_heuristics.score_positioning,
        model_prompt=positioning_prompt,
        model_fields=POSITIONING_FIELDS,
        score_model=score_positioning_model,
    ),
    Criterion.UX: CriterionDefinition(
        criterion=Criterion.UX,
        label="User Experience",
        weight=0.15,
        score_html=page_heuristics.score_ux,
    ),
    Criterion.TRUST: CriterionDefinition(
        criterion=Criterion.TRUST,
        label="Trust",
        weight=0.125,
        score_html=page_heuristics.score_trust,
    ),
    Criterion.CTAS: CriterionDefinition(
        criterion=Criterion.CTAS,
        label="Calls to Action",
        weight=0.125,
        score_html=page_heuristics.score_ctas,
        model_prompt=ctas_prompt,
        model_fields=CTA_FIELDS,
        score_model=score_ctas_model,
    ),
    Criterion.BRAND_STORY: CriterionDefinition(
        criterion=Criterion.BRAND_STORY,
        label="Brand Story",
        weight=0.125,
        score_html=page_heuristics.score_brand_story,
        model_prompt=brand_story_prompt,
        model_fields=BRAND_STORY_FIELDS,
        score_model=score_brand_story_model,
    ),
    Criterion.ACCESSIBILITY: CriterionDefinition(
        criterion=Criterion.ACCESSIBILITY,
        label="Accessibility",
        weight=0.075,
        score_html=page_heuristics.score_accessibility,
    ),
    Criterion.SEO: CriterionDefinition(
        criterion=Criterion.SEO,
        label="SEO",
        weight=0.075,
        score_html=page_heuristics.score_seo,
    ),
    Criterion.SPEED: CriterionDefinition(
        criterion=Criterion.SPEED,
        label="Speed",
        weight=0.125,
        score_html=page_heuristics.score_speed_static,
        score_measurement=score_speed_measurement,
    ),
}


def _validate_rubric(rubric: Mapping[Criterion, CriterionDefinition]) -> None:
    missing = set(Criterion) - set(rubric)
    extra = set(rubric) - set(Criterion)
    if missing or extra:
        raise RuntimeError(
            f"Rubric does not match Criterion: missing={sorted(c.value for c in missing)} "
            f"extra={sorted(str(c) for c in extra)}"
        )
    for criterion, definition in rubric.items():
        if definition.criterion is not criterion:
            raise RuntimeError(f"Rubric entry {criterion.value} is keyed to the wrong criterion")
        if definition.weight <= 0:
            raise RuntimeError(f"Rubric entry {criterion.value} needs a positive weight")


_validate_rubric(RUBRIC)


def criteria_for_tier(tier: Tier) -> list[Criterion]:
    """Criteria participating in ``tier``, in Criterion declaration order."""
    return [c for c in Criterion if tier in RUBRIC[c].tiers]


def steps_per_target() -> int:
    """Scrape plus one step per criterion per tier."""
    return 1 + sum(len(d.tiers) for d in RUBRIC.values())


def weighted_overall_score(scores: Mapping[Criterion, float]) -> float | None:
    """Weighted mean of the given criterion scores.

    Each rubric criterion absent from ``scores`` costs 5% of the result.
    Returns None when there is nothing to aggregate.
    """
    if not scores:
        return None
    total_weight = sum(RUBRIC[c].weight for c in scores)
    mean = sum(RUBRIC[c].weight * score for c, score in scores.items()) / total_weight
    missing = len(RUBRIC) - len(scores)
    return round(max(0.0, mean * (1 - MISSING_CRITERION_PENALTY * missing)), 1)
