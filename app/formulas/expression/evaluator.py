"""Excel-style expression evaluation over a company's quarterly series.

Quarter references are anchored at the newest quarter of the window:

    Sales[Q12]    newest quarter
    Sales[Q11]    one quarter back (also Sales[P12] and Sales(-1))
    Sales[Q1]     eleven quarters back
    Sales(0)      newest quarter, same as a bare ``Sales``

Missing data never raises. Arithmetic on a missing value yields null,
comparisons against null are false, and a null final result is reported
as ``"No Signal"``. Malformed formulas raise ``ExpressionEvaluationError``.
"""

from __future__ import annotations

import math
from collections import ChainMap
from collections.abc import Awaitable, Callable, Sequence
from dataclasses import dataclass, field
from typing import Any

from app.core.config import settings
from app.core.exceptions import ExpressionEvaluationError
from app.core.logging import get_logger

from .functions import FUNCTIONS
from .parser import (
    ArrayLiteral,
    Binary,
    Call,
    Compare,
    Invoke,
    Lambda,
    Let,
    Literal,
    MetricRef,
    Name,
    Node,
    Percent,
    Unary,
    parse_expression,
    strip_formula,
)
from .quarters import MetricRow, QuarterSeries
from .values import NO_SIGNAL, LambdaValue, Value, is_number

logger = get_logger("formulas.expression")

COMPARISON_EPSILON = 1e-7

MetricLoader = Callable[[str], Awaitable[Sequence[MetricRow]]]


@dataclass
class MetricSubstitution:
    """One metric reference and the value it resolved to."""

    reference: str
    metric_name: str
    quarter: str | None
    position: int
    value: float | None
    fallback_used: bool = False
    start: int = 0
    end: int = 0

    def to_dict(self) -> dict[str, Any]:
        return {
            "reference": self.reference,
            "metric_name": self.metric_name,
            "quarter": self.quarter,
            "position": self.position,
            "value": self.value,
            "fallback_used": self.fallback_used,
        }


@dataclass
class ExpressionTrace:
    """Record of which metric values an evaluation consumed."""

    original_formula: str
    formula_with_substitutions: str
    substitutions: list[MetricSubstitution] = field(default_factory=list)
    used_quarters: list[str] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "original_formula": self.original_formula,
            "formula_with_substitutions": self.formula_with_substitutions,
            "substitutions": [s.to_dict() for s in self.substitutions],
            "used_quarters": list(self.used_quarters),
        }


@dataclass
class ExpressionResult:
    """Outcome of evaluating one expression for one ticker."""

    result: Value
    result_type: str
    used_quarters: list[str]
    trace: ExpressionTrace | None = None

    def to_dict(self) -> dict[str, Any]:
        data = {
            "result": self.result,
            "result_type": self.result_type,
            "used_quarters": list(self.used_quarters),
        }
        if self.trace is not None:
            data["trace"] = self.trace.to_dict()
        return data


def result_type_of(value: Value) -> str:
    if isinstance(value, bool):
        return "boolean"
    if is_number(value):
        return "number"
    if isinstance(value, list):
        return "array"
    return "string"


def _no_signal_result(text: str, collect_trace: bool) -> ExpressionResult:
    trace = ExpressionTrace(original_formula=text, formula_with_substitutions=text) if collect_trace else None
    return ExpressionResult(result=NO_SIGNAL, result_type="string", used_quarters=[], trace=trace)


class ExpressionEvaluator:
    """Evaluates parsed expressions against one quarterly series."""

    def __init__(
        self,
        series: QuarterSeries,
        *,
        collect_trace: bool = False,
        verbose: bool | None = None,
    ):
        self.series = series
        self.collect_trace = collect_trace
        self.verbose = settings.excel_formula_verbose_logging if verbose is None else verbose
        self._used_positions: set[int] = set()
        self._substitutions: dict[tuple[int, int], MetricSubstitution] = {}
        self._text = ""

    def evaluate(self, text: str) -> ExpressionResult:
        """Parse and evaluate ``text``."""
        self._text = strip_formula(text)
        self._used_positions = set()
        self._substitutions = {}

        tree = parse_expression(self._text)
        value = self.eval(tree, ChainMap())
        if value is None or isinstance(value, LambdaValue):
            value = NO_SIGNAL

        used = [self.series.quarters[p] for p in sorted(self._used_positions)]
        trace = None
        if self.collect_trace:
            substitutions = sorted(self._substitutions.values(), key=lambda s: s.start)
            trace = ExpressionTrace(
                original_formula=self._text,
                formula_with_substitutions=self._substituted_text(substitutions),
                substitutions=substitutions,
                used_quarters=used,
            )
        return ExpressionResult(
            result=value,
            result_type=result_type_of(value),
            used_quarters=used,
            trace=trace,
        )

    def _substituted_text(self, substitutions: list[MetricSubstitution]) -> str:
        text = self._text
        for sub in sorted(substitutions, key=lambda s: s.start, reverse=True):
            rendered = "null" if sub.value is None else repr(sub.value)
            text = text[:sub.start] + rendered + text[sub.end:]
        return text

    # --- Tree walking ---

    def eval(self, node: Node, scope: ChainMap) -> Value:
        if isinstance(node, Literal):
            return node.value
        if isinstance(node, ArrayLiteral):
            return [self.eval(item, scope) for item in node.items]
        if isinstance(node, Name):
            if node.name in scope:
                return scope[node.name]
            return self.metric(node.name, 0, node.start, node.end)
        if isinstance(node, MetricRef):
            return self.metric(node.metric, node.position, node.start, node.end)
        if isinstance(node, Invoke):
            return self.invoke(node, scope)
        if isinstance(node, Call):
            args = [self.eval(arg, scope) for arg in node.args]
            return FUNCTIONS[node.function].impl(args, self)
        if isinstance(node, Unary):
            operand = self.eval(node.operand, scope)
            return -operand if is_number(operand) else None
        if isinstance(node, Percent):
            operand = self.eval(node.operand, scope)
            return operand / 100 if is_number(operand) else operand
        if isinstance(node, Binary):
            return self.arithmetic(node.operator, self.eval(node.left, scope), self.eval(node.right, scope))
        if isinstance(node, Compare):
            return self.compare(node.operator, self.eval(node.left, scope), self.eval(node.right, scope))
        if isinstance(node, Let):
            inner = scope.new_child()
            for name, value_node in node.bindings:
                inner[name] = self.eval(value_node, inner)
            return self.eval(node.body, inner)
        if isinstance(node, Lambda):
            return LambdaValue(params=node.params, body=node.body, scope=scope)
        raise ExpressionEvaluationError(f"Unsupported expression node {type(node).__name__}")

    def call_lambda(self, function: LambdaValue, args: list[Value]) -> Value:
        if len(args) != len(function.params):
            raise ExpressionEvaluationError(
                f"LAMBDA expects {len(function.params)} argument(s), got {len(args)}"
            )
        scope = ChainMap(dict(zip(function.params, args)), function.scope)
        return self.eval(function.body, scope)

    def invoke(self, node: Invoke, scope: ChainMap) -> Value:
        bound = scope.get(node.name)
        args = [self.eval(arg, scope) for arg in node.args]
        if isinstance(bound, LambdaValue):
            return self.call_lambda(bound, args)

        if len(args) != 1:
            raise ExpressionEvaluationError(
                f"Unknown function: {node.name}",
                details={"function": node.name},
            )
        offset = args[0]
        if not is_number(offset) or not float(offset).is_integer():
            raise ExpressionEvaluationError(
                f"{node.name}(offset) requires an integer offset",
                details={"metric": node.name},
            )
        if offset > 0:
            # Offsets point backwards from the newest quarter
            return None
        return self.metric(node.name, -int(offset), node.start, node.end)

    def metric(self, name: str, position: int, start: int, end: int) -> float | None:
        lookup = self.series.lookup(name, position)
        if lookup.quarter is not None:
            self._used_positions.add(position)

        if self.verbose:
            logger.debug(
                f"{self._text[start:end]} -> {lookup.value} "
                f"(quarter={lookup.quarter}, fallback={lookup.fallback_used})"
            )

        if self.collect_trace:
            self._substitutions[(start, end)] = MetricSubstitution(
                reference=self._text[start:end],
                metric_name=name,
                quarter=lookup.quarter,
                position=position,
                value=lookup.value,
                fallback_used=lookup.fallback_used,
                start=start,
                end=end,
            )
        return lookup.value

    @staticmethod
    def arithmetic(operator: str, left: Value, right: Value) -> Value:
        if not is_number(left) or not is_number(right):
            return None
        if operator == "+":
            return left + right
        if operator == "-":
            return left - right
        if operator == "*":
            return left * right
        if right == 0:
            return None
        return left / right

    @staticmethod
    def compare(operator: str, left: Value, right: Value) -> bool:
        if left is None or right is None:
            return False

        if is_number(left) and is_number(right):
            if math.isnan(left) or math.isnan(right):
                return False
            if operator == ">":
                return left > right
            if operator == "<":
                return left < right
            if operator == ">=":
                return left >= right - COMPARISON_EPSILON
            if operator == "<=":
                return left <= right + COMPARISON_EPSILON
            if operator == "=":
                return abs(left - right) < COMPARISON_EPSILON
            return abs(left - right) >= COMPARISON_EPSILON

        if operator == "=":
            return left == right and type(left) is type(right)
        if operator in ("<>", "!="):
            return not (left == right and type(left) is type(right))
        return False


async def evaluate_expression(
    ticker: str,
    expression_text: str,
    quarter_window: Sequence[str] | None = None,
    *,
    loader: MetricLoader | None = None,
    collect_trace: bool = False,
    verbose: bool | None = None,
) -> ExpressionResult:
    """Evaluate an Excel-style formula against a ticker's quarterly data.

    Args:
        ticker: Company ticker whose quarterly series is loaded
        expression_text: Formula text, optionally starting with ``=``
        quarter_window: Quarter labels to restrict evaluation to
        loader: Async callable returning metric rows for a ticker
        collect_trace: Attach an ``ExpressionTrace`` to the result
        verbose: Log every metric lookup (defaults to settings)

    Returns:
        ExpressionResult with the value, its type and the quarters read

    Raises:
        ExpressionEvaluationError: The formula is malformed
    """
    # Syntax errors surface even when the ticker has no data
    parse_expression(expression_text)

    if loader is None:
        from app.repositories.quarterly_data_orm import get_quarterly_data_by_ticker

        loader = get_quarterly_data_by_ticker

    rows = await loader(ticker)
    if not rows:
        logger.debug(f"No quarterly data for {ticker}, returning '{NO_SIGNAL}'")
        return _no_signal_result(strip_formula(expression_text), collect_trace)

    series = QuarterSeries.from_rows(rows, quarter_window)
    evaluator = ExpressionEvaluator(series, collect_trace=collect_trace, verbose=verbose)
    result = evaluator.evaluate(expression_text)

    logger.debug(
        f"Evaluated formula for {ticker}: {result.result!r} ({result.result_type}), "
        f"quarters={result.used_quarters}"
    )
    return result
