"""Quarterly metric series repository using SQLAlchemy ORM.

The engine only reads quarterly data; ``add_quarterly_data`` exists for
importers and tests.
"""

from __future__ import annotations

from collections.abc import Iterable
from datetime import datetime
from typing import Any

from sqlalchemy import select

from app.database.connection import get_session
from app.database.orm import QuarterlyData


async def get_quarterly_data_by_ticker(ticker: str) -> list[QuarterlyData]:
    """All metric rows for a ticker, oldest scrape first.

    Later scrapes of the same quarter and metric come last so they win
    when rows are folded into a series.
    """
    async with get_session() as session:
        result = await session.execute(
            select(QuarterlyData)
            .where(QuarterlyData.ticker == ticker.upper())
            .order_by(
                QuarterlyData.scrape_timestamp.asc().nulls_first(),
                QuarterlyData.created_at.asc(),
            )
        )
        return list(result.scalars().all())


async def add_quarterly_data(
    ticker: str,
    rows: Iterable[tuple[str, str, Any]],
    *,
    company_id: str | None = None,
    scrape_timestamp: datetime | None = None,
) -> int:
    """Insert ``(quarter, metric_name, metric_value)`` rows for a ticker.

    Returns:
        Number of rows inserted
    """
    records = [
        QuarterlyData(
            ticker=ticker.upper(),
            company_id=company_id,
            quarter=quarter,
            metric_name=metric_name,
            metric_value=metric_value,
            scrape_timestamp=scrape_timestamp,
        )
        for quarter, metric_name, metric_value in rows
    ]
    async with get_session() as session:
        session.add_all(records)
        await session.commit()
    return len(records)
