"""Signal repository using SQLAlchemy ORM.

A company has at most one signal row. Reconciliation replaces it wholesale
(delete then insert, in one transaction) instead of updating in place.

Staleness has no dirty flag: a company is stale when it has no signal or
its signal is older than the company's own ``updated_at``.

Usage:
    from app.repositories import signals_orm as signals_repo

    stale = await signals_repo.find_stale_companies()
    stats = await signals_repo.get_signal_statistics()
"""

from __future__ import annotations

from datetime import UTC, datetime
from typing import Any

from sqlalchemy import delete, func, or_, select
from sqlalchemy.orm import selectinload

from app.core.logging import get_logger
from app.database.connection import get_session
from app.database.orm import Company, Signal
from app.formulas.resolver import SignalResult


logger = get_logger("repositories.signals_orm")


def _signal_to_dict(signal: Signal) -> dict[str, Any]:
    """Convert ORM model to dictionary."""
    return {
        "id": signal.id,
        "company_id": signal.company_id,
        "formula_id": signal.formula_id,
        "signal": signal.signal,
        "value": signal.value,
        "metadata": signal.signal_metadata,
        "created_at": signal.created_at,
        "updated_at": signal.updated_at,
    }


# =============================================================================
# RECONCILIATION
# =============================================================================


async def replace_company_signal(company_id: str, result: SignalResult | None) -> bool:
    """Atomically replace a company's signal.

    Deletes every existing signal row for the company and inserts one new
    row when ``result`` is given. Both steps commit together or not at all.

    Returns:
        True if a new row was inserted
    """
    async with get_session() as session:
        async with session.begin():
            await session.execute(delete(Signal).where(Signal.company_id == company_id))
            if result is None:
                return False
            now = datetime.now(UTC)
            session.add(
                Signal(
                    company_id=company_id,
                    formula_id=result.formula_id,
                    signal=result.signal,
                    value=result.value,
                    signal_metadata=result.metadata(),
                    created_at=now,
                    updated_at=now,
                )
            )
        return True


async def get_company_signals(company_id: str) -> list[dict[str, Any]]:
    """All signal rows for a company (normally zero or one)."""
    async with get_session() as session:
        result = await session.execute(
            select(Signal)
            .where(Signal.company_id == company_id)
            .order_by(Signal.updated_at.desc())
        )
        return [_signal_to_dict(s) for s in result.scalars().all()]


# =============================================================================
# STALENESS
# =============================================================================


def _stale_company_ids():
    return (
        select(Company.id)
        .outerjoin(Signal, Signal.company_id == Company.id)
        .where(or_(Signal.id.is_(None), Signal.updated_at < Company.updated_at))
    )


async def find_stale_companies() -> list[Company]:
    """Companies with no signal or a signal older than their data."""
    async with get_session() as session:
        result = await session.execute(
            select(Company)
            .options(selectinload(Company.sector))
            .where(Company.id.in_(_stale_company_ids()))
            .order_by(Company.ticker, Company.id)
        )
        return list(result.scalars().all())


async def get_stale_signal_count() -> int:
    """Number of companies whose signal needs recomputing."""
    async with get_session() as session:
        result = await session.execute(
            select(func.count(func.distinct(Company.id)))
            .select_from(Company)
            .outerjoin(Signal, Signal.company_id == Company.id)
            .where(or_(Signal.id.is_(None), Signal.updated_at < Company.updated_at))
        )
        return int(result.scalar() or 0)


# =============================================================================
# STATISTICS
# =============================================================================


async def get_signal_distribution() -> list[dict[str, Any]]:
    """Signal counts per label, most common first. Score-only rows are excluded."""
    async with get_session() as session:
        count = func.count(Signal.id)
        result = await session.execute(
            select(Signal.signal, count)
            .where(Signal.signal.is_not(None), func.trim(Signal.signal) != "")
            .group_by(Signal.signal)
            .order_by(count.desc(), Signal.signal.desc())
        )
        return [{"signal": label, "count": int(n)} for label, n in result.all()]


async def get_signal_statistics() -> dict[str, Any]:
    """Totals, stale count, last calculation time and distribution."""
    async with get_session() as session:
        total = await session.execute(select(func.count(Signal.id)))
        last = await session.execute(select(func.max(Signal.updated_at)))
        total_signals = int(total.scalar() or 0)
        last_calculation = last.scalar()

    return {
        "total_signals": total_signals,
        "stale_signals": await get_stale_signal_count(),
        "last_calculation_time": last_calculation,
        "signals_by_type": await get_signal_distribution(),
    }


# =============================================================================
# MAINTENANCE
# =============================================================================


async def cleanup_duplicate_signals() -> int:
    """Delete all but the newest signal row per company.

    Returns:
        Number of deleted rows
    """
    async with get_session() as session:
        result = await session.execute(
            select(Signal.id, Signal.company_id)
            .order_by(Signal.company_id, Signal.updated_at.desc(), Signal.created_at.desc())
        )
        seen: set[str] = set()
        duplicates: list[str] = []
        for signal_id, company_id in result.all():
            if company_id in seen:
                duplicates.append(signal_id)
            else:
                seen.add(company_id)

        if duplicates:
            await session.execute(delete(Signal).where(Signal.id.in_(duplicates)))
            await session.commit()
            logger.info(f"Removed {len(duplicates)} duplicate signals")
        return len(duplicates)
