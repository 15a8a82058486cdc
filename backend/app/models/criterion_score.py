"""CriterionScore model and the closed Criterion rubric enum.

One row per (run, target, criterion). competitor_id NULL means the client.
Later tiers overwrite the row in place; the unique constraint treats NULL
competitor ids as equal so client rows cannot be duplicated either.
"""

from datetime import UTC, datetime
from enum import Enum
from typing import Any
from uuid import uuid4

from sqlalchemy import (
    Boolean,
    DateTime,
    Float,
    ForeignKey,
    Integer,
    String,
    UniqueConstraint,
    text,
)
from sqlalchemy.dialects.postgresql import JSONB, UUID
from sqlalchemy.orm import Mapped, mapped_column

from app.core.database import Base


class Criterion(str, Enum):
    """The fixed effectiveness rubric."""

    POSITIONING = "positioning"
    UX = "ux"
    TRUST = "trust"
    CTAS = "ctas"
    BRAND_STORY = "brand_story"
    ACCESSIBILITY = "accessibility"
    SEO = "seo"
    SPEED = "speed"


class CriterionScore(Base):
    """A single criterion measurement for one target within a run.

    Attributes:
        id: UUID primary key
        run_id: Owning EffectivenessRun
        competitor_id: Competitor scored, or NULL for the client
        criterion: Criterion value
        score: 0-10, one decimal
        passes: Whether the score meets the passing threshold
        tier: Highest tier (1, 2 or 3) that produced this score
        evidence: Tier-specific payload justifying the score
        created_at: When the first tier wrote the row
        updated_at: When a later tier last overwrote it

    Example evidence (speed, tier 3):
        {
            "source": "pagespeed",
            "performance_score": 87,
            "web_vitals": {"lcp": 2.1, "cls": 0.04, "fid": 35},
            "passed": ["lcp_good", "cls_good", "fid_good"],
            "failed": []
        }
    """

    __tablename__ = "criterion_scores"
    __table_args__ = (
        UniqueConstraint(
            "run_id",
            "competitor_id",
            "criterion",
            name="uq_criterion_scores_run_target_criterion",
            postgresql_nulls_not_distinct=True,
        ),
    )

    id: Mapped[str] = mapped_column(
        UUID(as_uuid=False),
        primary_key=True,
        default=lambda: str(uuid4()),
        server_default=text("gen_random_uuid()"),
    )

    run_id: Mapped[str] = mapped_column(
        UUID(as_uuid=False),
        ForeignKey("effectiveness_runs.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )

    competitor_id: Mapped[str | None] = mapped_column(
        UUID(as_uuid=False),
        ForeignKey("competitors.id", ondelete="CASCADE"),
        nullable=True,
        index=True,
    )

    criterion: Mapped[str] = mapped_column(
        String(50),
        nullable=False,
    )

    score: Mapped[float] = mapped_column(
        Float,
        nullable=False,
        default=0.0,
    )

    passes: Mapped[bool] = mapped_column(
        Boolean,
        nullable=False,
        default=False,
    )

    tier: Mapped[int] = mapped_column(
        Integer,
        nullable=False,
        default=1,
    )

    evidence: Mapped[dict[str, Any]] = mapped_column(
        JSONB,
        nullable=False,
        default=dict,
        server_default=text("'{}'::jsonb"),
    )

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=lambda: datetime.now(UTC),
        server_default=text("now()"),
    )

    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=lambda: datetime.now(UTC),
        server_default=text("now()"),
        onupdate=lambda: datetime.now(UTC),
    )

    @property
    def is_client(self) -> bool:
        return self.competitor_id is None

    def __repr__(self) -> str:
        return (
            f"<CriterionScore(run_id={self.run_id!r}, competitor_id={self.competitor_id!r}, "
            f"criterion={self.criterion!r}, score={self.score!r}, tier={self.tier!r})>"
        )
