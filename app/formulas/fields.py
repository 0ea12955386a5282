"""Canonical financial fields for simple conditions.

Operators type field names loosely ("P/E" becomes "peratio", "Debt_To_E"
becomes "debttoe"). Every accepted spelling resolves onto the closed
``FinancialField`` enum, and a company's open ``financial_data`` map is read
into a typed snapshot keyed by that enum.
"""

from __future__ import annotations

import math
from decimal import Decimal, InvalidOperation
from enum import Enum
from typing import Any, Protocol

from app.core.exceptions import UnknownField


class FinancialField(str, Enum):
    """Fields a simple condition may reference."""

    ROE = "roe"
    PE = "pe"
    DEBT = "debt"
    REVENUE = "revenue"
    NET_INCOME = "netIncome"
    EPS = "eps"
    MARKET_CAP = "marketCap"


# Normalized spelling -> canonical field
FIELD_ALIASES: dict[str, FinancialField] = {
    "roe": FinancialField.ROE,
    "pe": FinancialField.PE,
    "peratio": FinancialField.PE,
    "debt": FinancialField.DEBT,
    "debttoe": FinancialField.DEBT,
    "debttoequity": FinancialField.DEBT,
    "revenue": FinancialField.REVENUE,
    "netincome": FinancialField.NET_INCOME,
    "eps": FinancialField.EPS,
    "marketcap": FinancialField.MARKET_CAP,
}


class CompanyLike(Protocol):
    """Subset of the Company model the evaluators read."""

    market_cap: Any
    financial_data: dict[str, Any] | None


def normalize_field_name(raw: str) -> str:
    """Lower-case and strip underscores and whitespace."""
    return "".join(ch for ch in raw.lower() if ch != "_" and not ch.isspace())


def resolve_field(raw: str) -> FinancialField:
    """Map a loosely-typed field name onto its canonical field.

    Raises:
        UnknownField: No alias matches the normalized name.
    """
    field = FIELD_ALIASES.get(normalize_field_name(raw))
    if field is None:
        raise UnknownField(
            f"Unknown field: {raw}. Supported fields: {', '.join(FIELD_ALIASES)}",
            details={"field": raw},
        )
    return field


def to_number(value: Any) -> float | None:
    """Coerce a stored value to a finite float, or None when it is not numeric."""
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, (int, float, Decimal)):
        number = float(value)
    elif isinstance(value, str):
        text = value.strip()
        if not text:
            return None
        try:
            number = float(Decimal(text))
        except (InvalidOperation, ValueError):
            return None
    else:
        return None
    return number if math.isfinite(number) else None


def financial_snapshot(company: CompanyLike) -> dict[FinancialField, float]:
    """Read the company's numeric values for every canonical field.

    ``marketCap`` comes from the company's own decimal column; all other
    fields come from ``financial_data``. Missing or non-numeric values are
    left out of the snapshot.
    """
    data = company.financial_data or {}
    snapshot: dict[FinancialField, float] = {}

    for field in FinancialField:
        raw = company.market_cap if field is FinancialField.MARKET_CAP else data.get(field.value)
        number = to_number(raw)
        if number is not None:
            snapshot[field] = number

    return snapshot
