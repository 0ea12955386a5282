"""SQLAlchemy ORM models for the signal engine.

This module defines all database tables using SQLAlchemy 2.0 ORM style.
JSON columns map to JSONB on PostgreSQL and to plain JSON elsewhere so the
same models run against SQLite in tests.

Usage:
    from app.database.orm import Company, Signal
    from app.database.connection import get_session

    async with get_session() as session:
        company = await session.get(Company, company_id)
        company.financial_data = {"roe": 0.18, "pe": 21.4}
        await session.commit()
"""

from __future__ import annotations

import uuid
from datetime import UTC, datetime
from decimal import Decimal
from typing import Any

from sqlalchemy import (
    JSON,
    Boolean,
    CheckConstraint,
    DateTime,
    Float,
    ForeignKey,
    Index,
    Integer,
    MetaData,
    Numeric,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import (
    DeclarativeBase,
    Mapped,
    mapped_column,
    relationship,
)


# Naming convention for constraints and indexes (deterministic names for Alembic)
NAMING_CONVENTION = {
    "ix": "ix_%(column_0_label)s",
    "uq": "uq_%(table_name)s_%(column_0_name)s",
    "ck": "ck_%(table_name)s_%(constraint_name)s",
    "fk": "fk_%(table_name)s_%(column_0_name)s_%(referred_table_name)s",
    "pk": "pk_%(table_name)s",
}

JSONType = JSON().with_variant(JSONB(), "postgresql")


def _uuid() -> str:
    return str(uuid.uuid4())


def _utcnow() -> datetime:
    # Python-side so staleness comparisons never depend on transaction start time
    return datetime.now(UTC)


class Base(DeclarativeBase):
    """Base class for all ORM models with naming convention."""
    metadata = MetaData(naming_convention=NAMING_CONVENTION)


# =============================================================================
# COMPANIES & SECTORS
# =============================================================================


class Sector(Base):
    """Industry sector grouping companies, with an optional formula override."""
    __tablename__ = "sectors"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid)
    name: Mapped[str] = mapped_column(Text, unique=True, nullable=False)
    description: Mapped[str | None] = mapped_column(Text)
    assigned_formula_id: Mapped[str | None] = mapped_column(
        ForeignKey("formulas.id", ondelete="SET NULL")
    )
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utcnow)

    companies: Mapped[list[Company]] = relationship(back_populates="sector")


class Company(Base):
    """Listed company with a flat financial-data record."""
    __tablename__ = "companies"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid)
    ticker: Mapped[str] = mapped_column(Text, nullable=False)
    name: Mapped[str] = mapped_column(Text, nullable=False)
    sector_id: Mapped[str] = mapped_column(ForeignKey("sectors.id"), nullable=False)
    assigned_formula_id: Mapped[str | None] = mapped_column(
        ForeignKey("formulas.id", ondelete="SET NULL")
    )
    market_cap: Mapped[Decimal | None] = mapped_column(Numeric(20, 2))
    financial_data: Mapped[dict[str, Any] | None] = mapped_column(JSONType)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utcnow)
    # Sole staleness signal: advances on every data mutation
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=_utcnow, onupdate=_utcnow
    )

    sector: Mapped[Sector] = relationship(back_populates="companies")
    signals: Mapped[list[Signal]] = relationship(back_populates="company")

    __table_args__ = (
        UniqueConstraint("ticker", "sector_id", name="uq_companies_ticker_sector"),
        Index("idx_companies_ticker", "ticker"),
        Index("idx_companies_sector", "sector_id"),
    )


# =============================================================================
# FORMULAS & SIGNALS
# =============================================================================


class Formula(Base):
    """Operator-authored rule that classifies a company with a signal."""
    __tablename__ = "formulas"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid)
    name: Mapped[str] = mapped_column(Text, unique=True, nullable=False)
    scope: Mapped[str] = mapped_column(String(20), nullable=False, default="global")
    scope_value: Mapped[str | None] = mapped_column(Text)
    condition: Mapped[str] = mapped_column(Text, nullable=False)
    signal: Mapped[str] = mapped_column(Text, nullable=False)
    priority: Mapped[int] = mapped_column(Integer, nullable=False, default=999)
    enabled: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    # Null means classify from the condition text
    formula_type: Mapped[str | None] = mapped_column(String(20))
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utcnow)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=_utcnow, onupdate=_utcnow
    )

    __table_args__ = (
        CheckConstraint(
            "scope IN ('global', 'sector', 'company')",
            name="scope",
        ),
        CheckConstraint(
            "formula_type IS NULL OR formula_type IN ('simple', 'excel')",
            name="formula_type",
        ),
        Index("idx_formulas_enabled_priority", "enabled", "priority"),
    )


class Signal(Base):
    """Current verdict for a company; replaced wholesale on every pass."""
    __tablename__ = "signals"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid)
    company_id: Mapped[str] = mapped_column(
        ForeignKey("companies.id", ondelete="CASCADE"), nullable=False
    )
    formula_id: Mapped[str] = mapped_column(
        ForeignKey("formulas.id", ondelete="CASCADE"), nullable=False
    )
    signal: Mapped[str | None] = mapped_column(Text)  # Null for score-only outcomes
    value: Mapped[float | None] = mapped_column(Float(precision=53))
    signal_metadata: Mapped[dict[str, Any] | None] = mapped_column("metadata", JSONType)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utcnow)

    company: Mapped[Company] = relationship(back_populates="signals")

    __table_args__ = (
        Index("idx_signals_company", "company_id"),
        Index("idx_signals_updated", "updated_at"),
    )


# =============================================================================
# QUARTERLY SERIES
# =============================================================================


class QuarterlyData(Base):
    """One metric value for one ticker in one quarter."""
    __tablename__ = "quarterly_data"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid)
    ticker: Mapped[str] = mapped_column(Text, nullable=False)
    company_id: Mapped[str | None] = mapped_column(ForeignKey("companies.id", ondelete="SET NULL"))
    quarter: Mapped[str] = mapped_column(Text, nullable=False)
    metric_name: Mapped[str] = mapped_column(Text, nullable=False)
    metric_value: Mapped[float | None] = mapped_column(Numeric(20, 4, asdecimal=False))
    scrape_timestamp: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utcnow)

    __table_args__ = (
        UniqueConstraint(
            "ticker", "quarter", "metric_name", "scrape_timestamp",
            name="uq_quarterly_data_ticker_quarter_metric",
        ),
        Index("idx_quarterly_data_ticker", "ticker"),
    )


# =============================================================================
# BACKGROUND JOBS
# =============================================================================


class SignalJob(Base):
    """Durable record of a signal recomputation job."""
    __tablename__ = "signal_jobs"

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    job_type: Mapped[str] = mapped_column(String(20), nullable=False)
    company_ids: Mapped[list | None] = mapped_column(JSONType)
    batch_size: Mapped[int] = mapped_column(Integer, nullable=False, default=50)
    status: Mapped[str] = mapped_column(String(20), nullable=False, default="pending")
    progress: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    processed: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    total: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    signals_generated: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    error: Mapped[str | None] = mapped_column(Text)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utcnow)
    started_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    completed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))

    __table_args__ = (
        CheckConstraint(
            "status IN ('pending', 'processing', 'completed', 'failed', 'cancelled')",
            name="status",
        ),
        CheckConstraint(
            "job_type IN ('incremental', 'full', 'company')",
            name="job_type",
        ),
        Index("idx_signal_jobs_status", "status"),
        Index("idx_signal_jobs_created", "created_at"),
    )
