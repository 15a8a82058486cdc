"""Competitor model: a website compared against the client.

Competitors are reference data owned by a client. A run reads them in
creation order; the list index becomes the competitor's step index.
"""

from datetime import UTC, datetime
from typing import TYPE_CHECKING
from uuid import uuid4

from sqlalchemy import DateTime, ForeignKey, String, UniqueConstraint, text
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import Mapped, mapped_column, relationship

from app.core.database import Base

if TYPE_CHECKING:
    from app.models.client import Client


class Competitor(Base):
    """Competitor model.

    Attributes:
        id: UUID primary key
        client_id: Owning client
        domain: Competitor domain, e.g. "rival.com" (a full URL is also accepted)
        label: Optional friendly name shown next to its scores
        created_at: Timestamp when record was created
    """

    __tablename__ = "competitors"
    __table_args__ = (
        UniqueConstraint("client_id", "domain", name="uq_competitors_client_domain"),
    )

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

    domain: Mapped[str] = mapped_column(
        String(2048),
        nullable=False,
    )

    label: Mapped[str | None] = mapped_column(
        String(255),
        nullable=True,
    )

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=lambda: datetime.now(UTC),
        server_default=text("now()"),
    )

    client: Mapped["Client"] = relationship("Client", back_populates="competitors")

    @property
    def url(self) -> str:
        """Fetchable URL for the competitor's homepage."""
        domain = self.domain.strip()
        if domain.startswith(("http://", "https://")):
            return domain
        return f"https://{domain}"

    def __repr__(self) -> str:
        return f"<Competitor(id={self.id!r}, domain={self.domain!r})>"
