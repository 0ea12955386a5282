"""Baseline schema for the signal engine.

Revision ID: 001_baseline
Revises:
Create Date: 2026-10-18

Creates sectors, companies, formulas, signals, quarterly data and the
signal job history. Matches app/database/orm.py.
"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

# revision identifiers, used by Alembic.
revision: str = "001_baseline"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


JSONType = sa.JSON().with_variant(postgresql.JSONB(), "postgresql")


def upgrade() -> None:
    """Create all tables."""
    # ==========================================================================
    # FORMULAS
    # ==========================================================================

    op.create_table(
        "formulas",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column("name", sa.Text(), unique=True, nullable=False),
        sa.Column("scope", sa.String(20), nullable=False, server_default="global"),
        sa.Column("scope_value", sa.Text()),
        sa.Column("condition", sa.Text(), nullable=False),
        sa.Column("signal", sa.Text(), nullable=False),
        sa.Column("priority", sa.Integer(), nullable=False, server_default="999"),
        sa.Column("enabled", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("formula_type", sa.String(20)),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.CheckConstraint(
            "scope IN ('global', 'sector', 'company')",
            name="ck_formulas_scope",
        ),
        sa.CheckConstraint(
            "formula_type IS NULL OR formula_type IN ('simple', 'excel')",
            name="ck_formulas_formula_type",
        ),
    )
    op.create_index("idx_formulas_enabled_priority", "formulas", ["enabled", "priority"])

    # ==========================================================================
    # SECTORS & COMPANIES
    # ==========================================================================

    op.create_table(
        "sectors",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column("name", sa.Text(), unique=True, nullable=False),
        sa.Column("description", sa.Text()),
        sa.Column(
            "assigned_formula_id",
            sa.String(36),
            sa.ForeignKey("formulas.id", ondelete="SET NULL"),
        ),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
    )

    op.create_table(
        "companies",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column("ticker", sa.Text(), nullable=False),
        sa.Column("name", sa.Text(), nullable=False),
        sa.Column("sector_id", sa.String(36), sa.ForeignKey("sectors.id"), nullable=False),
        sa.Column(
            "assigned_formula_id",
            sa.String(36),
            sa.ForeignKey("formulas.id", ondelete="SET NULL"),
        ),
        sa.Column("market_cap", sa.Numeric(20, 2)),
        sa.Column("financial_data", JSONType),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.UniqueConstraint("ticker", "sector_id", name="uq_companies_ticker_sector"),
    )
    op.create_index("idx_companies_ticker", "companies", ["ticker"])
    op.create_index("idx_companies_sector", "companies", ["sector_id"])

    # ==========================================================================
    # SIGNALS
    # ==========================================================================

    op.create_table(
        "signals",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column(
            "company_id",
            sa.String(36),
            sa.ForeignKey("companies.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column(
            "formula_id",
            sa.String(36),
            sa.ForeignKey("formulas.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("signal", sa.Text()),
        sa.Column("value", sa.Float(precision=53)),
        sa.Column("metadata", JSONType),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
    )
    op.create_index("idx_signals_company", "signals", ["company_id"])
    op.create_index("idx_signals_updated", "signals", ["updated_at"])

    # ==========================================================================
    # QUARTERLY SERIES
    # ==========================================================================

    op.create_table(
        "quarterly_data",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column("ticker", sa.Text(), nullable=False),
        sa.Column(
            "company_id",
            sa.String(36),
            sa.ForeignKey("companies.id", ondelete="SET NULL"),
        ),
        sa.Column("quarter", sa.Text(), nullable=False),
        sa.Column("metric_name", sa.Text(), nullable=False),
        sa.Column("metric_value", sa.Numeric(20, 4)),
        sa.Column("scrape_timestamp", sa.DateTime(timezone=True)),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.UniqueConstraint(
            "ticker", "quarter", "metric_name", "scrape_timestamp",
            name="uq_quarterly_data_ticker_quarter_metric",
        ),
    )
    op.create_index("idx_quarterly_data_ticker", "quarterly_data", ["ticker"])

    # ==========================================================================
    # JOB HISTORY
    # ==========================================================================

    op.create_table(
        "signal_jobs",
        sa.Column("id", sa.String(64), primary_key=True),
        sa.Column("job_type", sa.String(20), nullable=False),
        sa.Column("company_ids", JSONType),
        sa.Column("batch_size", sa.Integer(), nullable=False, server_default="50"),
        sa.Column("status", sa.String(20), nullable=False, server_default="pending"),
        sa.Column("progress", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("processed", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("total", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("signals_generated", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("error", sa.Text()),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.Column("started_at", sa.DateTime(timezone=True)),
        sa.Column("completed_at", sa.DateTime(timezone=True)),
        sa.CheckConstraint(
            "status IN ('pending', 'processing', 'completed', 'failed', 'cancelled')",
            name="ck_signal_jobs_status",
        ),
        sa.CheckConstraint(
            "job_type IN ('incremental', 'full', 'company')",
            name="ck_signal_jobs_job_type",
        ),
    )
    op.create_index("idx_signal_jobs_status", "signal_jobs", ["status"])
    op.create_index("idx_signal_jobs_created", "signal_jobs", ["created_at"])


def downgrade() -> None:
    """Drop all tables."""
    op.drop_table("signal_jobs")
    op.drop_table("quarterly_data")
    op.drop_table("signals")
    op.drop_table("companies")
    op.drop_table("sectors")
    op.drop_table("formulas")
