"""Evaluation outcomes and the formula kinds that produce them."""

from __future__ import annotations

import math
import re
from dataclasses import dataclass
from enum import Enum
from typing import Any, Union

from .expression import NO_SIGNAL, known_function_names
from .expression.values import is_number


class FormulaKind(str, Enum):
    """Which evaluator a formula runs on. Stored as ``formulas.formula_type``."""

    SIMPLE = "simple"
    EXCEL = "excel"


_QUARTER_REFERENCE_RE = re.compile(r"[QP]\d+")
_FUNCTION_CALL_RE = re.compile(
    r"\b(" + "|".join(sorted(known_function_names(), key=len, reverse=True)) + r")\s*\(",
    re.IGNORECASE,
)


def classify_condition(condition: str) -> FormulaKind:
    """Decide the kind of a condition written without an explicit type.

    Quarter references (``Q12``, ``P3``) or a library function call mark an
    Excel expression; anything else is a simple condition.
    """
    if _QUARTER_REFERENCE_RE.search(condition) or _FUNCTION_CALL_RE.search(condition):
        return FormulaKind.EXCEL
    return FormulaKind.SIMPLE


def formula_kind(formula_type: str | None, condition: str) -> FormulaKind:
    """Kind of a stored formula; untyped legacy rows are classified by text."""
    if formula_type:
        return FormulaKind(formula_type)
    return classify_condition(condition)


@dataclass(frozen=True)
class Matched:
    """Formula fired and emits ``label``."""

    label: str


@dataclass(frozen=True)
class NotMatched:
    """Formula evaluated cleanly but did not fire."""


@dataclass(frozen=True)
class Score:
    """Formula produced a numeric score without a label."""

    value: float


EvaluationOutcome = Union[Matched, NotMatched, Score]


def outcome_from_simple(result: bool, formula_signal: str) -> EvaluationOutcome:
    return Matched(formula_signal) if result else NotMatched()


def outcome_from_expression(result: Any, formula_signal: str) -> EvaluationOutcome:
    """Map an expression result onto an outcome.

    ``True`` emits the formula's own label, a non-empty string other than
    ``"No Signal"`` is itself the label, a finite number is a score.
    Everything else did not fire.
    """
    if result is True:
        return Matched(formula_signal)
    if isinstance(result, str):
        if result and result != NO_SIGNAL:
            return Matched(result)
        return NotMatched()
    if is_number(result) and math.isfinite(result):
        return Score(float(result))
    return NotMatched()
