"""Formula repository using SQLAlchemy ORM.

Formulas are validated and tagged with their kind when written, so the
engine never has to guess how to evaluate a stored condition.
"""

from __future__ import annotations

from sqlalchemy import select

from app.core.exceptions import FormulaError
from app.core.logging import get_logger
from app.database.connection import get_session
from app.database.orm import Formula
from app.formulas.expression import parse_expression
from app.formulas.outcome import FormulaKind
from app.formulas.simple import parse_condition
from app.schemas.formulas import FormulaCreate


logger = get_logger("repositories.formulas_orm")


def validate_condition(kind: FormulaKind, condition: str) -> None:
    """Check that ``condition`` parses as the given kind.

    Raises:
        InvalidFormula / UnknownField: Bad simple condition
        ExpressionEvaluationError: Bad Excel expression
    """
    if kind is FormulaKind.SIMPLE:
        parse_condition(condition)
    else:
        parse_expression(condition)


async def create_formula(data: FormulaCreate) -> Formula:
    """Validate and store a new formula.

    Raises:
        FormulaError: The condition does not parse as its kind
    """
    kind = data.formula_type or FormulaKind.SIMPLE
    try:
        validate_condition(kind, data.condition)
    except FormulaError as e:
        logger.info(f"Rejected formula '{data.name}': {e.message}")
        raise

    async with get_session() as session:
        formula = Formula(
            name=data.name,
            scope=data.scope,
            scope_value=data.scope_value,
            condition=data.condition,
            signal=data.signal,
            priority=data.priority,
            enabled=data.enabled,
            formula_type=kind.value,
        )
        session.add(formula)
        await session.commit()
        await session.refresh(formula)
        return formula


async def get_formula(formula_id: str) -> Formula | None:
    """Get a formula by id."""
    async with get_session() as session:
        return await session.get(Formula, formula_id)


async def list_enabled_formulas() -> list[Formula]:
    """All enabled formulas, by priority then id."""
    async with get_session() as session:
        result = await session.execute(
            select(Formula)
            .where(Formula.enabled == True)  # noqa: E712
            .order_by(Formula.priority, Formula.id)
        )
        return list(result.scalars().all())


async def set_formula_enabled(formula_id: str, enabled: bool) -> bool:
    """Enable or disable a formula.

    Returns:
        True if the formula exists
    """
    async with get_session() as session:
        formula = await session.get(Formula, formula_id)
        if formula is None:
            return False
        formula.enabled = enabled
        await session.commit()
        return True
