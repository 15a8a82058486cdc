"""Create clients, competitors, effectiveness_runs and criterion_scores tables.

Revision ID: 0001
Revises:
Create Date: 2026-10-19

"""

from collections.abc import Sequence

import sqlalchemy as sa
from alembic import op
from sqlalchemy.dialects import postgresql

# revision identifiers, used by Alembic.
revision: str = "0001"
down_revision: str | None = None
branch_labels: str | Sequence[str] | None = None
depends_on: str | Sequence[str] | None = None


def _id_column() -> sa.Column:
    return sa.Column(
        "id",
        postgresql.UUID(as_uuid=False),
        server_default=sa.text("gen_random_uuid()"),
        nullable=False,
    )


def _timestamp_column(name: str) -> sa.Column:
    return sa.Column(
        name,
        sa.DateTime(timezone=True),
        server_default=sa.text("now()"),
        nullable=False,
    )


def upgrade() -> None:
    """Create effectiveness tables."""
    op.create_table(
        "clients",
        _id_column(),
        sa.Column("name", sa.String(length=255), nullable=False),
        sa.Column("website_url", sa.String(length=2048), nullable=True),
        sa.Column(
            "is_active",
            sa.Boolean(),
            server_default=sa.text("true"),
            nullable=False,
        ),
        sa.Column("industry_vertical", sa.String(length=255), nullable=True),
        sa.Column("business_size", sa.String(length=50), nullable=True),
        _timestamp_column("created_at"),
        _timestamp_column("updated_at"),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_clients_name", "clients", ["name"], unique=False)

    op.create_table(
        "competitors",
        _id_column(),
        sa.Column("client_id", postgresql.UUID(as_uuid=False), nullable=False),
        sa.Column("domain", sa.String(length=2048), nullable=False),
        sa.Column("label", sa.String(length=255), nullable=True),
        _timestamp_column("created_at"),
        sa.PrimaryKeyConstraint("id"),
        sa.ForeignKeyConstraint(
            ["client_id"],
            ["clients.id"],
            name="fk_competitors_client_id",
            ondelete="CASCADE",
        ),
        sa.UniqueConstraint("client_id", "domain", name="uq_competitors_client_domain"),
    )
    op.create_index("ix_competitors_client_id", "competitors", ["client_id"], unique=False)

    op.create_table(
        "effectiveness_runs",
        _id_column(),
        sa.Column("client_id", postgresql.UUID(as_uuid=False), nullable=False),
        sa.Column(
            "status",
            sa.String(length=50),
            server_default=sa.text("'pending'"),
            nullable=False,
        ),
        sa.Column("overall_score", sa.Float(), nullable=True),
        sa.Column("screenshot_url", sa.Text(), nullable=True),
        sa.Column("full_page_screenshot_url", sa.Text(), nullable=True),
        sa.Column(
            "progress",
            sa.Integer(),
            server_default=sa.text("0"),
            nullable=False,
        ),
        sa.Column(
            "progress_detail",
            postgresql.JSONB(astext_type=sa.Text()),
            server_default=sa.text("'{}'::jsonb"),
            nullable=False,
        ),
        sa.Column("error_message", sa.Text(), nullable=True),
        sa.Column("insights", postgresql.JSONB(astext_type=sa.Text()), nullable=True),
        sa.Column("insights_generated_at", sa.DateTime(timezone=True), nullable=True),
        _timestamp_column("created_at"),
        _timestamp_column("updated_at"),
        sa.PrimaryKeyConstraint("id"),
        sa.ForeignKeyConstraint(
            ["client_id"],
            ["clients.id"],
            name="fk_effectiveness_runs_client_id",
            ondelete="CASCADE",
        ),
        sa.CheckConstraint(
            "progress >= 0 AND progress <= 100",
            name="ck_effectiveness_runs_progress_range",
        ),
    )
    op.create_index(
        "ix_effectiveness_runs_client_id", "effectiveness_runs", ["client_id"], unique=False
    )
    op.create_index(
        "ix_effectiveness_runs_status", "effectiveness_runs", ["status"], unique=False
    )
    op.create_index(
        "ix_effectiveness_runs_created_at", "effectiveness_runs", ["created_at"], unique=False
    )

    op.create_table(
        "criterion_scores",
        _id_column(),
        sa.Column("run_id", postgresql.UUID(as_uuid=False), nullable=False),
        sa.Column("competitor_id", postgresql.UUID(as_uuid=False), nullable=True),
        sa.Column("criterion", sa.String(length=50), nullable=False),
        sa.Column("score", sa.Float(), nullable=False),
        sa.Column("passes", sa.Boolean(), nullable=False),
        sa.Column("tier", sa.Integer(), nullable=False),
        sa.Column(
            "evidence",
            postgresql.JSONB(astext_type=sa.Text()),
            server_default=sa.text("'{}'::jsonb"),
            nullable=False,
        ),
        _timestamp_column("created_at"),
        _timestamp_column("updated_at"),
        sa.PrimaryKeyConstraint("id"),
        sa.ForeignKeyConstraint(
            ["run_id"],
            ["effectiveness_runs.id"],
            name="fk_criterion_scores_run_id",
            ondelete="CASCADE",
        ),
        sa.ForeignKeyConstraint(
            ["competitor_id"],
            ["competitors.id"],
            name="fk_criterion_scores_competitor_id",
            ondelete="CASCADE",
        ),
        sa.CheckConstraint("score >= 0 AND score <= 10", name="ck_criterion_scores_score_range"),
        sa.CheckConstraint("tier IN (1, 2, 3)", name="ck_criterion_scores_tier"),
        sa.UniqueConstraint(
            "run_id",
            "competitor_id",
            "criterion",
            name="uq_criterion_scores_run_target_criterion",
            postgresql_nulls_not_distinct=True,
        ),
    )
    op.create_index(
        "ix_criterion_scores_run_id", "criterion_scores", ["run_id"], unique=False
    )
    op.create_index(
        "ix_criterion_scores_competitor_id", "criterion_scores", ["competitor_id"], unique=False
    )


def downgrade() -> None:
    """Drop effectiveness tables."""
    op.drop_index("ix_criterion_scores_competitor_id", table_name="criterion_scores")
    op.drop_index("ix_criterion_scores_run_id", table_name="criterion_scores")
    op.drop_table("criterion_scores")
    op.drop_index("ix_effectiveness_runs_created_at", table_name="effectiveness_runs")
    op.drop_index("ix_effectiveness_runs_status", table_name="effectiveness_runs")
    op.drop_index("ix_effectiveness_runs_client_id", table_name="effectiveness_runs")
    op.drop_table("effectiveness_runs")
    op.drop_index("ix_competitors_client_id", table_name="competitors")
    op.drop_table("competitors")
    op.drop_index("ix_clients_name", table_name="clients")
    op.drop_table("clients")
