"""EffectivenessRun model and the run status state machine.

A run is one analysis of a client website (and implicitly its competitors).
Status only moves forward through RUN_STATUS_ORDER; FAILED may be entered
from any non-terminal status. Once terminal, only the insights columns are
ever written again.
"""

from datetime import UTC, datetime
from enum import Enum
from typing import Any
from uuid import uuid4

from sqlalchemy import DateTime, Float, ForeignKey, Integer, String, Text, text
from sqlalchemy.dialects.postgresql import JSONB, UUID
from sqlalchemy.orm import Mapped, mapped_column

from app.core.database import Base


class RunStatus(str, Enum):
    """Raw run status values."""

    PENDING = "pending"
    INITIALIZING = "initializing"
    SCRAPING = "scraping"
    TIER1_ANALYZING = "tier1_analyzing"
    TIER1_COMPLETE = "tier1_complete"
    TIER2_ANALYZING = "tier2_analyzing"
    TIER2_COMPLETE = "tier2_complete"
    TIER3_ANALYZING = "tier3_analyzing"
    GENERATING_INSIGHTS = "generating_insights"
    COMPLETED = "completed"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in TERMINAL_STATUSES

    def can_transition_to(self, new: "RunStatus") -> bool:
        """Forward-only transitions; FAILED is reachable from any live status."""
        if self.is_terminal:
            return False
        if new == RunStatus.FAILED:
            return True
        return RUN_STATUS_ORDER.index(new) > RUN_STATUS_ORDER.index(self)


RUN_STATUS_ORDER: tuple[RunStatus, ...] = (
    RunStatus.PENDING,
    RunStatus.INITIALIZING,
    RunStatus.SCRAPING,
    RunStatus.TIER1_ANALYZING,
    RunStatus.TIER1_COMPLETE,
    RunStatus.TIER2_ANALYZING,
    RunStatus.TIER2_COMPLETE,
    RunStatus.TIER3_ANALYZING,
    RunStatus.GENERATING_INSIGHTS,
    RunStatus.COMPLETED,
)

TERMINAL_STATUSES = frozenset({RunStatus.COMPLETED, RunStatus.FAILED})


class EffectivenessRun(Base):
    """One effectiveness analysis execution.

    Attributes:
        id: UUID primary key
        client_id: Client being analyzed
        status: Raw RunStatus value
        overall_score: Weighted client score (0-10), set at finalize
        screenshot_url: Above-the-fold screenshot of the client site
        full_page_screenshot_url: Full page screenshot of the client site
        progress: Percent of steps accounted for (0-100, never decreases)
        progress_detail: Last ProgressTracker snapshot (see ProgressSnapshot)
        error_message: Why the run failed or was superseded
        insights: Cached InsightsResult payload
        insights_generated_at: When insights were last (re)generated
        created_at: Timestamp when run was created
        updated_at: Timestamp when run was last written

    Example progress_detail:
        {
            "overallPercent": 46,
            "currentPhase": "Running AI analysis",
            "timeRemaining": "1m 10s",
            "stepStates": {"client_scrape": "done", "client_seo_tier1": "done", ...}
        }
    """

    __tablename__ = "effectiveness_runs"

    id: Mapped[str] = mapped_column(
        UUID(as_uuid=False),
        primary_key=True,
        default=lambda: str(uuid4()),
        server_default=text("gen_random_uuid()"),
    )

    client_id: Mapped[str] = mapped_column(
        UUID(as_uuid=False),
        ForeignKey("clients.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )

    status: Mapped[str] = mapped_column(
        String(50),
        nullable=False,
        default=RunStatus.PENDING.value,
        server_default=text("'pending'"),
        index=True,
    )

    overall_score: Mapped[float | None] = mapped_column(
        Float,
        nullable=True,
    )

    screenshot_url: Mapped[str | None] = mapped_column(
        Text,
        nullable=True,
    )

    full_page_screenshot_url: Mapped[str | None] = mapped_column(
        Text,
        nullable=True,
    )

    progress: Mapped[int] = mapped_column(
        Integer,
        nullable=False,
        default=0,
        server_default=text("0"),
    )

    progress_detail: Mapped[dict[str, Any]] = mapped_column(
        JSONB,
        nullable=False,
        default=dict,
        server_default=text("'{}'::jsonb"),
    )

    error_message: Mapped[str | None] = mapped_column(
        Text,
        nullable=True,
    )

    insights: Mapped[dict[str, Any] | None] = mapped_column(
        JSONB,
        nullable=True,
    )

    insights_generated_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True),
        nullable=True,
    )

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=lambda: datetime.now(UTC),
        server_default=text("now()"),
        index=True,
    )

    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=lambda: datetime.now(UTC),
        server_default=text("now()"),
        onupdate=lambda: datetime.now(UTC),
    )

    @property
    def run_status(self) -> RunStatus:
        return RunStatus(self.status)

    @property
    def is_terminal(self) -> bool:
        return self.run_status.is_terminal

    def __repr__(self) -> str:
        return (
            f"<EffectivenessRun(id={self.id!r}, client_id={self.client_id!r}, "
            f"status={self.status!r})>"
        )
