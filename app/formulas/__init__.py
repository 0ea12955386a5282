"""Formula evaluation: field mapping, simple conditions, expressions and scope resolution.

Usage:
    from app.formulas import evaluate_simple, resolve_signal

    evaluate_simple(company, "roe > 0.20 and debt < 0.5")
    resolution = await resolve_signal(company, formulas)
"""

from .expression import ExpressionResult, evaluate_expression
from .fields import FinancialField, financial_snapshot, resolve_field
from .outcome import (
    EvaluationOutcome,
    FormulaKind,
    Matched,
    NotMatched,
    Score,
    classify_condition,
)
from .resolver import Resolution, SignalResult, resolve_signal, select_formula
from .simple import Clause, LogicOperator, ParsedCondition, evaluate_simple, parse_condition


__all__ = [
    "Clause",
    "EvaluationOutcome",
    "ExpressionResult",
    "FinancialField",
    "FormulaKind",
    "LogicOperator",
    "Matched",
    "NotMatched",
    "ParsedCondition",
    "Resolution",
    "Score",
    "SignalResult",
    "classify_condition",
    "evaluate_expression",
    "evaluate_simple",
    "financial_snapshot",
    "parse_condition",
    "resolve_field",
    "resolve_signal",
    "select_formula",
]
