"""Scoring primitives shared by every rubric tier.

ScoringConfig carries the tunables from settings, Assessment accumulates
points and named checks while a heuristic runs, and CriterionResult is the
immutable outcome that gets persisted as a CriterionScore row.
"""

from dataclasses import dataclass, field
from enum import IntEnum
from typing import Any

from app.core.config import Settings, get_settings
from app.models.criterion_score import Criterion

MAX_SCORE = 10.0


class Tier(IntEnum):
    """Evaluation tiers in escalating cost order."""

    HTML = 1
    MODEL = 2
    MEASUREMENT = 3

    @property
    def step_suffix(self) -> str:
        return f"tier{self.value}"


@dataclass(frozen=True)
class ScoringConfig:
    """Rubric tunables. Built from settings unless a test supplies its own."""

    buzzwords: tuple[str, ...] = ()
    recent_months: int = 24
    hero_words: int = 22
    cta_dominance: float = 1.15
    proof_distance_px: int = 600
    lcp_limit: float = 3.0
    cls_limit: float = 0.1
    viewport_width: int = 1440
    viewport_height: int = 900
    passing_score: float = 6.0

    @classmethod
    def from_settings(cls, settings: Settings | None = None) -> "ScoringConfig":
        settings = settings or get_settings()
        return cls(
            buzzwords=tuple(settings.scoring_buzzwords),
            recent_months=settings.scoring_recent_months,
            hero_words=settings.scoring_hero_words,
            cta_dominance=settings.scoring_cta_dominance,
            proof_distance_px=settings.scoring_proof_distance_px,
            lcp_limit=settings.scoring_lcp_limit,
            cls_limit=settings.scoring_cls_limit,
            viewport_width=settings.scoring_viewport_width,
            viewport_height=settings.scoring_viewport_height,
            passing_score=settings.effectiveness_passing_score,
        )


@dataclass
class Assessment:
    """Mutable accumulator used while one criterion is being scored."""

    points: float = 0.0
    passed: list[str] = field(default_factory=list)
    failed: list[str] = field(default_factory=list)
    evidence: dict[str, Any] = field(default_factory=dict)

    def check(
        self,
        name: str,
        condition: bool,
        points: float,
        partial: float = 0.0,
        partial_condition: bool = False,
    ) -> bool:
        """Award ``points`` when condition holds, ``partial`` when only the
        weaker condition holds, and record the check either way."""
        if condition:
            self.points += points
            self.passed.append(name)
            return True
        if partial_condition and partial:
            self.points += partial
        self.failed.append(name)
        return False

    def grade(self, name: str, earned: float, maximum: float) -> None:
        """Record a multi-level check; only full marks count as passed."""
        self.points += earned
        if earned >= maximum:
            self.passed.append(name)
        else:
            self.failed.append(name)

    def penalize(self, name: str, points: float) -> None:
        self.points -= points
        self.failed.append(name)

    def to_evidence(self, source: str) -> dict[str, Any]:
        return {
            "source": source,
            **self.evidence,
            "passed": list(self.passed),
            "failed": list(self.failed),
        }


@dataclass(frozen=True)
class CriterionResult:
    """Score for one criterion of one target at one tier."""

    criterion: Criterion
    score: float
    passes: bool
    tier: Tier
    evidence: dict[str, Any] = field(default_factory=dict)


def clamp_score(value: float) -> float:
    """Clamp to the 0-10 scale and round to one decimal."""
    return round(min(MAX_SCORE, max(0.0, value)), 1)


def build_result(
    criterion: Criterion,
    tier: Tier,
    assessment: Assessment,
    config: ScoringConfig,
    source: str,
) -> CriterionResult:
    score = clamp_score(assessment.points)
    return CriterionResult(
        criterion=criterion,
        score=score,
        passes=score >= config.passing_score,
        tier=tier,
        evidence=assessment.to_evidence(source),
    )


def empty_result(criterion: Criterion, reason: str) -> CriterionResult:
    """Zero score used when a page has no content or a heuristic blows up."""
    return CriterionResult(
        criterion=criterion,
        score=0.0,
        passes=False,
        tier=Tier.HTML,
        evidence={"source": "html", "passed": [], "failed": [reason]},
    )
