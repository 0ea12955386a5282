"""Scope resolution: pick the formula that applies to a company and run it.

Tiers, first applicable wins:

1. the company's own assigned formula (if enabled)
2. the company's sector assigned formula (if enabled)
3. the enabled global formula with the lowest priority (ties by id)

Once a tier yields a formula, lower tiers are never consulted, even when
the selected formula does not fire.
"""

from __future__ import annotations

from collections.abc import Sequence
from dataclasses import dataclass, field
from typing import Any

from app.core.config import settings
from app.core.logging import get_logger

from .expression import evaluate_expression, sort_quarters
from .expression.evaluator import MetricLoader
from .outcome import (
    EvaluationOutcome,
    FormulaKind,
    Matched,
    NotMatched,
    Score,
    formula_kind,
    outcome_from_expression,
    outcome_from_simple,
)
from .simple import evaluate_simple

logger = get_logger("formulas.resolver")


@dataclass
class SignalResult:
    """A resolved signal ready to be stored."""

    formula_id: str
    formula_name: str
    condition: str
    signal: str | None
    value: float | None = None
    used_quarters: list[str] = field(default_factory=list)

    def metadata(self) -> dict[str, Any]:
        return {
            "condition": self.condition,
            "formula_name": self.formula_name,
            "used_quarters": list(self.used_quarters),
        }


@dataclass
class Resolution:
    """What happened when resolving one company."""

    formula: Any | None = None
    outcome: EvaluationOutcome | None = None
    result: SignalResult | None = None
    error: str | None = None

    @property
    def failed(self) -> bool:
        return self.error is not None


def _enabled_by_id(formulas: Sequence[Any]) -> dict[str, Any]:
    return {f.id: f for f in formulas if f.enabled}


def _sector_formula_id(company: Any) -> str | None:
    sector = getattr(company, "sector", None)
    return getattr(sector, "assigned_formula_id", None) if sector is not None else None


def select_formula(company: Any, all_formulas: Sequence[Any]) -> Any | None:
    """Pick the single applicable formula for ``company`` or None."""
    enabled = _enabled_by_id(all_formulas)

    if company.assigned_formula_id and company.assigned_formula_id in enabled:
        return enabled[company.assigned_formula_id]

    sector_formula_id = _sector_formula_id(company)
    if sector_formula_id and sector_formula_id in enabled:
        return enabled[sector_formula_id]

    global_formulas = [f for f in enabled.values() if f.scope == "global"]
    if not global_formulas:
        return None
    return min(global_formulas, key=lambda f: (f.priority, str(f.id)))


def _preloaded(rows: Sequence[Any]) -> MetricLoader:
    async def load(ticker: str) -> Sequence[Any]:
        return rows

    return load


async def _evaluate(
    company: Any,
    formula: Any,
    loader: MetricLoader | None,
    window_size: int,
) -> tuple[EvaluationOutcome, list[str]]:
    kind = formula_kind(formula.formula_type, formula.condition)

    if kind is FormulaKind.SIMPLE:
        return outcome_from_simple(evaluate_simple(company, formula.condition), formula.signal), []

    if loader is None:
        from app.repositories.quarterly_data_orm import get_quarterly_data_by_ticker

        loader = get_quarterly_data_by_ticker

    rows = await loader(company.ticker)
    window = sort_quarters(r.quarter for r in rows)[:window_size]
    evaluated = await evaluate_expression(
        company.ticker,
        formula.condition,
        window,
        loader=_preloaded(rows),
    )
    return outcome_from_expression(evaluated.result, formula.signal), evaluated.used_quarters


async def resolve_signal(
    company: Any,
    all_formulas: Sequence[Any],
    *,
    loader: MetricLoader | None = None,
    window_size: int | None = None,
) -> Resolution:
    """Resolve and evaluate the applicable formula for one company.

    Never raises: evaluation errors are logged and reported through
    ``Resolution.error`` so one bad company cannot abort a batch.

    Args:
        company: Company with ``sector`` loaded
        all_formulas: Candidate formulas (disabled ones are ignored)
        loader: Quarterly data loader for Excel formulas
        window_size: Newest quarters exposed to Excel formulas

    Returns:
        Resolution with the selected formula and, when it fired or
        scored, the SignalResult to store
    """
    formula = select_formula(company, all_formulas)
    if formula is None:
        return Resolution()

    try:
        outcome, used_quarters = await _evaluate(
            company,
            formula,
            loader,
            window_size or settings.signal_quarter_window,
        )
    except Exception as e:
        logger.warning(
            f"Formula '{formula.name}' failed for {company.ticker} ({company.id}): {e}",
            extra={"extra_fields": {"formula_id": formula.id, "company_id": company.id}},
        )
        return Resolution(formula=formula, error=str(e))

    if isinstance(outcome, NotMatched):
        return Resolution(formula=formula, outcome=outcome)

    result = SignalResult(
        formula_id=formula.id,
        formula_name=formula.name,
        condition=formula.condition,
        signal=outcome.label if isinstance(outcome, Matched) else None,
        value=outcome.value if isinstance(outcome, Score) else None,
        used_quarters=used_quarters,
    )
    return Resolution(formula=formula, outcome=outcome, result=result)
