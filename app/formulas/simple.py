"""Simple condition evaluator.

A simple condition is a chain of ``field operator number`` clauses joined by
either ``and`` or ``or`` (never both):

    roe > 0.20 and debt < 0.5
    pe < 12 or eps >= 3

Parsing is separate from evaluation so conditions can be validated when a
formula is authored.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from enum import Enum

from app.core.exceptions import InvalidFormula

from .fields import CompanyLike, FinancialField, financial_snapshot, resolve_field

EQUALITY_EPSILON = 0.0001

_CLAUSE_RE = re.compile(
    r"^(?P<field>[A-Za-z_][\w ]*?)\s*(?P<op>[<>=!]+)\s*(?P<value>[-+]?(?:\d+\.?\d*|\.\d+))$"
)
_AND_SPLIT = re.compile(r" and ", re.IGNORECASE)
_OR_SPLIT = re.compile(r" or ", re.IGNORECASE)


class LogicOperator(str, Enum):
    """How clause results are combined."""

    AND = "AND"
    OR = "OR"


class ComparisonOperator(str, Enum):
    GT = ">"
    LT = "<"
    GE = ">="
    LE = "<="
    EQ = "="
    NE = "!="


@dataclass(frozen=True)
class Clause:
    """One ``field operator value`` comparison."""

    field: FinancialField
    operator: ComparisonOperator
    value: float

    def matches(self, actual: float | None) -> bool:
        # Missing data fails the clause instead of the whole evaluation
        if actual is None:
            return False
        op = self.operator
        if op is ComparisonOperator.GT:
            return actual > self.value
        if op is ComparisonOperator.LT:
            return actual < self.value
        if op is ComparisonOperator.GE:
            return actual >= self.value
        if op is ComparisonOperator.LE:
            return actual <= self.value
        if op is ComparisonOperator.EQ:
            return abs(actual - self.value) < EQUALITY_EPSILON
        return abs(actual - self.value) >= EQUALITY_EPSILON


@dataclass(frozen=True)
class ParsedCondition:
    """Clauses plus the operator combining them."""

    clauses: tuple[Clause, ...]
    logic: LogicOperator

    def evaluate(self, company: CompanyLike) -> bool:
        snapshot = financial_snapshot(company)
        results = (clause.matches(snapshot.get(clause.field)) for clause in self.clauses)
        if self.logic is LogicOperator.AND:
            return all(results)
        return any(results)


def _parse_clause(part: str) -> Clause:
    match = _CLAUSE_RE.match(part.strip())
    if not match:
        raise InvalidFormula(
            f'Invalid condition format: "{part.strip()}". '
            'Expected format: "field operator value" (e.g., "roe > 0.20")',
            details={"clause": part.strip()},
        )

    try:
        operator = ComparisonOperator(match.group("op"))
    except ValueError:
        raise InvalidFormula(
            f"Unsupported operator: {match.group('op')}",
            details={"clause": part.strip()},
        ) from None

    return Clause(
        field=resolve_field(match.group("field")),
        operator=operator,
        value=float(match.group("value")),
    )


def parse_condition(text: str) -> ParsedCondition:
    """Parse a simple condition.

    Args:
        text: Condition text, e.g. ``"roe > 0.20 and debt < 0.5"``

    Returns:
        ParsedCondition with resolved canonical fields

    Raises:
        InvalidFormula: Text is empty, malformed, or mixes AND with OR
        UnknownField: A clause names a field with no canonical mapping
    """
    text = (text or "").strip()
    if not text:
        raise InvalidFormula("Condition is empty")

    lowered = text.lower()
    has_and = " and " in lowered
    has_or = " or " in lowered

    if has_and and has_or:
        raise InvalidFormula(
            "Mixed AND/OR operators not supported. Split into multiple formulas.",
            details={"condition": text},
        )

    if has_and:
        logic, parts = LogicOperator.AND, _AND_SPLIT.split(text)
    else:
        logic, parts = LogicOperator.OR, _OR_SPLIT.split(text)

    return ParsedCondition(clauses=tuple(_parse_clause(p) for p in parts), logic=logic)


def evaluate_simple(company: CompanyLike, condition_text: str) -> bool:
    """Evaluate a simple condition against a company's financial data."""
    return parse_condition(condition_text).evaluate(company)
