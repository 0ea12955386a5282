"""Pytest configuration and fixtures."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, AsyncGenerator

import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import AsyncEngine, create_async_engine
from sqlalchemy.pool import StaticPool

from app.database import connection as db_conn
from app.database.orm import Base


@pytest_asyncio.fixture
async def db_engine() -> AsyncGenerator[AsyncEngine, None]:
    """Fresh in-memory SQLite schema bound as the application engine."""
    engine = create_async_engine(
        "sqlite+aiosqlite://",
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    db_conn.bind_engine(engine)
    yield engine

    await db_conn.close_sqlalchemy_engine()


# ============================================================================
# In-memory stand-ins for unit tests that do not need the database
# ============================================================================


@dataclass
class FakeSector:
    id: str = "sector-tech"
    assigned_formula_id: str | None = None


@dataclass
class FakeCompany:
    id: str = "company-1"
    ticker: str = "ACME"
    financial_data: dict[str, Any] | None = None
    market_cap: Any = None
    assigned_formula_id: str | None = None
    sector: FakeSector = field(default_factory=FakeSector)


@dataclass
class FakeFormula:
    id: str
    condition: str
    signal: str = "BUY"
    name: str = ""
    scope: str = "global"
    priority: int = 999
    enabled: bool = True
    formula_type: str | None = None

    def __post_init__(self):
        self.name = self.name or f"formula {self.id}"


@dataclass
class FakeRow:
    quarter: str
    metric_name: str
    metric_value: Any


def series_loader(rows: list[FakeRow]):
    """Async loader returning fixed rows for any ticker."""

    async def load(ticker: str) -> list[FakeRow]:
        return rows

    return load


def quarterly_rows(metric: str, values: list[Any], start_year: int = 2022) -> list[FakeRow]:
    """One row per quarter, oldest first, labelled ``YYYY-Qn``."""
    rows = []
    for i, value in enumerate(values):
        year, quarter = start_year + i // 4, i % 4 + 1
        rows.append(FakeRow(f"{year}-Q{quarter}", metric, value))
    return rows


@pytest.fixture
def company() -> FakeCompany:
    return FakeCompany(
        financial_data={"roe": 0.25, "debt": 0.3, "pe": 14.0, "eps": 3.2},
        market_cap="2500000000.00",
    )
