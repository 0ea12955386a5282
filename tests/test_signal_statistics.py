"""
Tests for signal statistics and duplicate cleanup.
"""

from datetime import UTC, datetime, timedelta

import pytest

from app.database.connection import get_session
from app.database.orm import Signal
from app.formulas.resolver import SignalResult
from app.repositories import companies_orm, formulas_orm, signals_orm
from app.schemas.formulas import FormulaCreate


async def seed():
    sector = await companies_orm.create_sector("Retail")
    companies = [
        await companies_orm.create_company(f"r{i}", f"Retailer {i}", sector.id)
        for i in range(4)
    ]
    formula = await formulas_orm.create_formula(
        FormulaCreate(name="Any", condition="roe > 0", signal="BUY")
    )
    return companies, formula


def result(formula, signal=None, value=None) -> SignalResult:
    return SignalResult(
        formula_id=formula.id,
        formula_name=formula.name,
        condition=formula.condition,
        signal=signal,
        value=value,
    )


class TestSignalStatistics:
    """Totals and label distribution."""

    @pytest.mark.asyncio
    async def test_empty(self, db_engine):
        stats = await signals_orm.get_signal_statistics()
        assert stats == {
            "total_signals": 0,
            "stale_signals": 0,
            "last_calculation_time": None,
            "signals_by_type": [],
        }

    @pytest.mark.asyncio
    async def test_distribution_ordered_by_count(self, db_engine):
        companies, formula = await seed()
        await signals_orm.replace_company_signal(companies[0].id, result(formula, "BUY"))
        await signals_orm.replace_company_signal(companies[1].id, result(formula, "SELL"))
        await signals_orm.replace_company_signal(companies[2].id, result(formula, "SELL"))
        await signals_orm.replace_company_signal(companies[3].id, result(formula, value=0.7))

        distribution = await signals_orm.get_signal_distribution()
        assert distribution == [
            {"signal": "SELL", "count": 2},
            {"signal": "BUY", "count": 1},
        ]

        stats = await signals_orm.get_signal_statistics()
        assert stats["total_signals"] == 4
        assert stats["stale_signals"] == 0
        assert stats["last_calculation_time"] is not None

    @pytest.mark.asyncio
    async def test_score_only_signal_stores_value(self, db_engine):
        companies, formula = await seed()
        await signals_orm.replace_company_signal(companies[0].id, result(formula, value=1.25))

        stored = await signals_orm.get_company_signals(companies[0].id)
        assert stored[0]["signal"] is None
        assert stored[0]["value"] == pytest.approx(1.25)

    @pytest.mark.asyncio
    async def test_replace_with_none_clears(self, db_engine):
        companies, formula = await seed()
        assert await signals_orm.replace_company_signal(companies[0].id, result(formula, "BUY"))
        assert await signals_orm.replace_company_signal(companies[0].id, None) is False
        assert await signals_orm.get_company_signals(companies[0].id) == []


class TestCleanupDuplicates:
    """Only the newest row per company survives cleanup."""

    @pytest.mark.asyncio
    async def test_keeps_latest(self, db_engine):
        companies, formula = await seed()
        now = datetime.now(UTC)
        async with get_session() as session:
            for minutes, label in ((3, "OLD"), (5, "OLDER"), (1, "NEWEST")):
                stamp = now - timedelta(minutes=minutes)
                session.add(
                    Signal(
                        company_id=companies[0].id,
                        formula_id=formula.id,
                        signal=label,
                        created_at=stamp,
                        updated_at=stamp,
                    )
                )
            session.add(
                Signal(company_id=companies[1].id, formula_id=formula.id, signal="ONLY")
            )
            await session.commit()

        deleted = await signals_orm.cleanup_duplicate_signals()

        assert deleted == 2
        remaining = await signals_orm.get_company_signals(companies[0].id)
        assert [s["signal"] for s in remaining] == ["NEWEST"]
        assert len(await signals_orm.get_company_signals(companies[1].id)) == 1

    @pytest.mark.asyncio
    async def test_nothing_to_clean(self, db_engine):
        assert await signals_orm.cleanup_duplicate_signals() == 0
