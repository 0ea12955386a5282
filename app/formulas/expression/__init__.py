"""Excel-style expression language over quarterly metric series."""

from .evaluator import (
    ExpressionEvaluator,
    ExpressionResult,
    ExpressionTrace,
    MetricSubstitution,
    evaluate_expression,
)
from .functions import FUNCTIONS, known_function_names
from .parser import parse_expression
from .quarters import QuarterSeries, normalize_metric_value, sort_quarters
from .values import NO_SIGNAL


__all__ = [
    "FUNCTIONS",
    "NO_SIGNAL",
    "ExpressionEvaluator",
    "ExpressionResult",
    "ExpressionTrace",
    "MetricSubstitution",
    "QuarterSeries",
    "evaluate_expression",
    "known_function_names",
    "normalize_metric_value",
    "parse_expression",
    "sort_quarters",
]
