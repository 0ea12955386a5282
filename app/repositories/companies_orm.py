"""Company and sector repository using SQLAlchemy ORM.

Companies are always returned with their sector loaded so the scope
resolver can read the sector-level formula override.

Usage:
    from app.repositories import companies_orm as companies_repo

    companies = await companies_repo.list_companies()
    await companies_repo.update_financial_data(company_id, {"roe": 0.22})
"""

from __future__ import annotations

from collections.abc import Sequence
from datetime import UTC, datetime
from decimal import Decimal
from typing import Any

from sqlalchemy import select
from sqlalchemy.orm import selectinload

from app.core.logging import get_logger
from app.database.connection import get_session
from app.database.orm import Company, Sector


logger = get_logger("repositories.companies_orm")


# =============================================================================
# SECTORS
# =============================================================================


async def create_sector(
    name: str,
    *,
    description: str | None = None,
    assigned_formula_id: str | None = None,
) -> Sector:
    """Create a sector."""
    async with get_session() as session:
        sector = Sector(
            name=name,
            description=description,
            assigned_formula_id=assigned_formula_id,
        )
        session.add(sector)
        await session.commit()
        await session.refresh(sector)
        return sector


async def assign_sector_formula(sector_id: str, formula_id: str | None) -> bool:
    """Set or clear the sector-level formula override.

    Returns:
        True if the sector exists
    """
    async with get_session() as session:
        sector = await session.get(Sector, sector_id)
        if sector is None:
            return False
        sector.assigned_formula_id = formula_id
        await session.commit()
        return True


# =============================================================================
# COMPANIES
# =============================================================================


async def create_company(
    ticker: str,
    name: str,
    sector_id: str,
    *,
    financial_data: dict[str, Any] | None = None,
    market_cap: Decimal | str | float | None = None,
    assigned_formula_id: str | None = None,
) -> Company:
    """Create a company."""
    async with get_session() as session:
        company = Company(
            ticker=ticker.upper(),
            name=name,
            sector_id=sector_id,
            financial_data=financial_data,
            market_cap=Decimal(str(market_cap)) if market_cap is not None else None,
            assigned_formula_id=assigned_formula_id,
        )
        session.add(company)
        await session.commit()
        return await _get_company(session, company.id)


async def _get_company(session, company_id: str) -> Company | None:
    result = await session.execute(
        select(Company)
        .options(selectinload(Company.sector))
        .where(Company.id == company_id)
        .execution_options(populate_existing=True)
    )
    return result.scalar_one_or_none()


async def get_company(company_id: str) -> Company | None:
    """Get a company by id with its sector loaded."""
    async with get_session() as session:
        return await _get_company(session, company_id)


async def list_companies() -> list[Company]:
    """List every company, ordered by ticker."""
    async with get_session() as session:
        result = await session.execute(
            select(Company)
            .options(selectinload(Company.sector))
            .order_by(Company.ticker, Company.id)
        )
        return list(result.scalars().all())


async def get_companies_by_ids(company_ids: Sequence[str]) -> list[Company]:
    """Fetch the companies whose ids are listed (missing ids are skipped)."""
    if not company_ids:
        return []
    async with get_session() as session:
        result = await session.execute(
            select(Company)
            .options(selectinload(Company.sector))
            .where(Company.id.in_(list(company_ids)))
            .order_by(Company.ticker, Company.id)
        )
        return list(result.scalars().all())


async def update_financial_data(
    company_id: str,
    financial_data: dict[str, Any],
    *,
    market_cap: Decimal | str | float | None = None,
) -> bool:
    """Replace a company's financial data, advancing ``updated_at``.

    Returns:
        True if the company exists
    """
    async with get_session() as session:
        company = await session.get(Company, company_id)
        if company is None:
            return False
        company.financial_data = dict(financial_data)
        if market_cap is not None:
            company.market_cap = Decimal(str(market_cap))
        company.updated_at = datetime.now(UTC)
        await session.commit()
        logger.debug(f"Updated financial data for {company.ticker}")
        return True


async def assign_company_formula(company_id: str, formula_id: str | None) -> bool:
    """Set or clear the company-level formula override.

    Returns:
        True if the company exists
    """
    async with get_session() as session:
        company = await session.get(Company, company_id)
        if company is None:
            return False
        company.assigned_formula_id = formula_id
        await session.commit()
        return True


async def touch_company(company_id: str) -> bool:
    """Mark a company's data as changed so its signal becomes stale."""
    async with get_session() as session:
        company = await session.get(Company, company_id)
        if company is None:
            return False
        company.updated_at = datetime.now(UTC)
        await session.commit()
        return True
