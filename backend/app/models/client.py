"""Client model: the business whose website is scored.

A client owns a list of competitors and any number of effectiveness runs.
The pipeline only reads clients; it never modifies them.
"""

from datetime import UTC, datetime
from typing import TYPE_CHECKING
from uuid import uuid4

from sqlalchemy import Boolean, DateTime, String, text
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import Mapped, mapped_column, relationship

from app.core.database import Base

if TYPE_CHECKING:
    from app.models.competitor import Competitor


class Client(Base):
    """Client model.

    Attributes:
        id: UUID primary key
        name: Client display name (used in insight prompts)
        website_url: The client's website; a run cannot start without it
        is_active: Inactive clients cannot start runs
        industry_vertical: Free-text industry, e.g. "B2B SaaS"
        business_size: e.g. "small", "mid-market", "enterprise"
        created_at: Timestamp when record was created
        updated_at: Timestamp when record was last updated
    """

    __tablename__ = "clients"

    id: Mapped[str] = mapped_column(
        UUID(as_uuid=False),
        primary_key=True,
        default=lambda: str(uuid4()),
        server_default=text("gen_random_uuid()"),
    )

    name: Mapped[str] = mapped_column(
        String(255),
        nullable=False,
        index=True,
    )

    website_url: Mapped[str | None] = mapped_column(
        String(2048),
        nullable=True,
    )

    is_active: Mapped[bool] = mapped_column(
        Boolean,
        nullable=False,
        default=True,
        server_default=text("true"),
    )

    industry_vertical: Mapped[str | None] = mapped_column(
        String(255),
        nullable=True,
    )

    business_size: Mapped[str | None] = mapped_column(
        String(50),
        nullable=True,
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

    competitors: Mapped[list["Competitor"]] = relationship(
        "Competitor",
        back_populates="client",
        cascade="all, delete-orphan",
        order_by="Competitor.created_at",
    )

    @property
    def has_active_configuration(self) -> bool:
        """True when the client can be analyzed."""
        return bool(self.is_active and self.website_url and self.website_url.strip())

    def __repr__(self) -> str:
        return f"<Client(id={self.id!r}, name={self.name!r}, active={self.is_active!r})>"
