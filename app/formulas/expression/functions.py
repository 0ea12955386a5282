"""Function library available to expressions.

Functions receive already-evaluated arguments. Arity is checked when the
formula is parsed, so implementations may index their arguments freely.
Functions return ``None`` for inputs they cannot compute (non-numeric
operands, out-of-range indices) rather than raising.
"""

from __future__ import annotations

import math
from collections.abc import Callable
from dataclasses import dataclass
from typing import Protocol

from app.core.exceptions import ExpressionEvaluationError

from .values import (
    NO_SIGNAL,
    LambdaValue,
    Value,
    as_list,
    flatten,
    is_number,
    is_valid_number,
    numbers_in,
    to_boolean,
    to_text,
)

CRITERIA_EPSILON = 1e-7
XLOOKUP_EPSILON = 1e-10

# Parsed as special forms rather than called with evaluated arguments
SPECIAL_FORMS = frozenset({"LET", "LAMBDA"})


class CallContext(Protocol):
    def call_lambda(self, function: LambdaValue, args: list[Value]) -> Value: ...


@dataclass(frozen=True)
class FunctionSpec:
    name: str
    min_args: int
    max_args: int | None
    impl: Callable[[list[Value], CallContext], Value]

    def check_arity(self, count: int) -> None:
        if count < self.min_args or (self.max_args is not None and count > self.max_args):
            if self.max_args is None:
                expected = f"at least {self.min_args}"
            elif self.min_args == self.max_args:
                expected = str(self.min_args)
            else:
                expected = f"{self.min_args} to {self.max_args}"
            raise ExpressionEvaluationError(
                f"{self.name} requires {expected} argument(s), got {count}",
                details={"function": self.name, "arguments": count},
            )


FUNCTIONS: dict[str, FunctionSpec] = {}


def register(name: str, min_args: int, max_args: int | None = None):
    """Register a library function under ``name``."""

    def decorator(func: Callable[[list[Value], CallContext], Value]):
        FUNCTIONS[name] = FunctionSpec(name, min_args, max_args, func)
        return func

    return decorator


def known_function_names() -> frozenset[str]:
    return frozenset(FUNCTIONS) | SPECIAL_FORMS


def _number(value: Value) -> float | None:
    return float(value) if is_valid_number(value) else None


# =============================================================================
# LOGICAL
# =============================================================================


@register("IF", 2, 3)
def _if(args: list[Value], ctx: CallContext) -> Value:
    chosen = args[1] if to_boolean(args[0]) else (args[2] if len(args) == 3 else NO_SIGNAL)
    return NO_SIGNAL if chosen is None else chosen


@register("AND", 1)
def _and(args: list[Value], ctx: CallContext) -> Value:
    return all(to_boolean(a) for a in args)


@register("OR", 1)
def _or(args: list[Value], ctx: CallContext) -> Value:
    return any(to_boolean(a) for a in args)


@register("NOT", 1, 1)
def _not(args: list[Value], ctx: CallContext) -> Value:
    return not to_boolean(args[0])


@register("ISNUMBER", 1, 1)
def _isnumber(args: list[Value], ctx: CallContext) -> Value:
    return is_valid_number(args[0])


@register("ISBLANK", 1, 1)
def _isblank(args: list[Value], ctx: CallContext) -> Value:
    return args[0] is None or args[0] == ""


# =============================================================================
# MATH
# =============================================================================


@register("SUM", 1)
def _sum(args: list[Value], ctx: CallContext) -> Value:
    return math.fsum(numbers_in(args))


@register("AVERAGE", 1)
def _average(args: list[Value], ctx: CallContext) -> Value:
    nums = numbers_in(args)
    return math.fsum(nums) / len(nums) if nums else None


@register("MAX", 1)
def _max(args: list[Value], ctx: CallContext) -> Value:
    nums = numbers_in(args)
    return max(nums) if nums else None


@register("MIN", 1)
def _min(args: list[Value], ctx: CallContext) -> Value:
    nums = numbers_in(args)
    return min(nums) if nums else None


@register("COUNT", 1)
def _count(args: list[Value], ctx: CallContext) -> Value:
    return float(sum(1 for v in flatten(args) if is_number(v) or isinstance(v, str)))


def _scaled(args: list[Value], rounder: Callable[[float], float]) -> Value:
    value, digits = _number(args[0]), _number(args[1])
    if value is None or digits is None:
        return None
    factor = 10 ** digits
    return rounder(value * factor) / factor


@register("ROUND", 2, 2)
def _round(args: list[Value], ctx: CallContext) -> Value:
    # Half away from zero, unlike Python's banker's rounding
    return _scaled(args, lambda x: math.copysign(math.floor(abs(x) + 0.5), x))


@register("ROUNDUP", 2, 2)
def _roundup(args: list[Value], ctx: CallContext) -> Value:
    return _scaled(args, math.ceil)


@register("ROUNDDOWN", 2, 2)
def _rounddown(args: list[Value], ctx: CallContext) -> Value:
    return _scaled(args, math.floor)


@register("ABS", 1, 1)
def _abs(args: list[Value], ctx: CallContext) -> Value:
    value = _number(args[0])
    return abs(value) if value is not None else None


@register("SQRT", 1, 1)
def _sqrt(args: list[Value], ctx: CallContext) -> Value:
    value = _number(args[0])
    if value is None or value < 0:
        return None
    return math.sqrt(value)


@register("POWER", 2, 2)
def _power(args: list[Value], ctx: CallContext) -> Value:
    base, exponent = _number(args[0]), _number(args[1])
    if base is None or exponent is None:
        return None
    try:
        return math.pow(base, exponent)
    except (ValueError, OverflowError, ZeroDivisionError):
        return None


@register("LOG", 1, 2)
def _log(args: list[Value], ctx: CallContext) -> Value:
    value = _number(args[0])
    base = _number(args[1]) if len(args) == 2 else 10.0
    if value is None or value <= 0 or base is None or base <= 0 or base == 1:
        return None
    return math.log(value) / math.log(base)


def _significance(args: list[Value]) -> float:
    if len(args) == 2:
        significance = _number(args[1])
        if significance is not None and significance > 0:
            return significance
    return 1.0


@register("CEILING", 1, 2)
def _ceiling(args: list[Value], ctx: CallContext) -> Value:
    value = _number(args[0])
    if value is None:
        return None
    significance = _significance(args)
    return math.ceil(value / significance) * significance


@register("FLOOR", 1, 2)
def _floor(args: list[Value], ctx: CallContext) -> Value:
    value = _number(args[0])
    if value is None:
        return None
    significance = _significance(args)
    return math.floor(value / significance) * significance


# =============================================================================
# TEXT
# =============================================================================


@register("TRIM", 1, 1)
def _trim(args: list[Value], ctx: CallContext) -> Value:
    return to_text(args[0]).strip()


@register("CONCAT", 1)
@register("CONCATENATE", 1)
def _concat(args: list[Value], ctx: CallContext) -> Value:
    return "".join(to_text(a) for a in args)


# =============================================================================
# ERROR HANDLING
# =============================================================================


@register("IFERROR", 2, 2)
def _iferror(args: list[Value], ctx: CallContext) -> Value:
    value = args[0]
    if value is None or (is_number(value) and math.isnan(value)):
        return args[1]
    return value


@register("NOTNULL", 1, 2)
def _notnull(args: list[Value], ctx: CallContext) -> Value:
    if args[0] is not None:
        return args[0]
    return args[1] if len(args) == 2 else None


@register("COALESCE", 1)
def _coalesce(args: list[Value], ctx: CallContext) -> Value:
    return next((a for a in args if a is not None), None)


# =============================================================================
# CONDITIONAL AGGREGATION
# =============================================================================


def _criteria_number(text: str) -> float | None:
    try:
        return float(text)
    except ValueError:
        return None


def matches_criteria(value: Value, criteria: Value) -> bool:
    """Excel-style criteria matching: ``">10"``, ``"<>x"``, ``"=5"`` or exact."""
    if criteria is None:
        return value is None

    if isinstance(criteria, str):
        text = criteria.strip()
        for prefix in (">=", "<=", "<>", "!=", ">", "<", "="):
            if not text.startswith(prefix):
                continue
            operand = text[len(prefix):].strip()
            number = _criteria_number(operand)
            if number is not None and is_number(value):
                if prefix == ">=":
                    return value >= number
                if prefix == "<=":
                    return value <= number
                if prefix in ("<>", "!="):
                    return abs(value - number) >= CRITERIA_EPSILON
                if prefix == ">":
                    return value > number
                if prefix == "<":
                    return value < number
                return abs(value - number) < CRITERIA_EPSILON
            if prefix in ("<>", "!="):
                return to_text(value) != operand
            if prefix == "=":
                return to_text(value) == operand
            return False
        return value == text or to_text(value) == text

    if is_number(criteria) and is_number(value):
        return abs(value - criteria) < CRITERIA_EPSILON
    return value == criteria


@register("SUMIF", 2, 3)
def _sumif(args: list[Value], ctx: CallContext) -> Value:
    criteria_range = as_list(args[0])
    sum_range = as_list(args[2]) if len(args) == 3 else criteria_range
    total = 0.0
    for candidate, addend in zip(criteria_range, sum_range):
        if matches_criteria(candidate, args[1]) and is_valid_number(addend):
            total += addend
    return total


@register("COUNTIF", 2, 2)
def _countif(args: list[Value], ctx: CallContext) -> Value:
    return float(sum(1 for v in as_list(args[0]) if matches_criteria(v, args[1])))


# =============================================================================
# ARRAYS
# =============================================================================


@register("CHOOSE", 2)
def _choose(args: list[Value], ctx: CallContext) -> Value:
    choices = args[1:]

    def pick(index: Value) -> Value:
        if not is_valid_number(index):
            return None
        position = int(round(index))
        return choices[position - 1] if 1 <= position <= len(choices) else None

    if isinstance(args[0], list):
        return [pick(i) for i in args[0]]
    return pick(args[0])


@register("SEQUENCE", 1, 4)
def _sequence(args: list[Value], ctx: CallContext) -> Value:
    def arg(position: int, default: float) -> float:
        if len(args) > position and is_valid_number(args[position]):
            return float(args[position])
        return default

    rows = max(0, int(arg(0, 0)))
    cols = max(0, int(arg(1, 1)))
    start, step = arg(2, 1.0), arg(3, 1.0)
    return [start + i * step for i in range(rows * cols)]


@register("MAP", 2, 2)
def _map(args: list[Value], ctx: CallContext) -> Value:
    function = args[1]
    if not isinstance(function, LambdaValue):
        raise ExpressionEvaluationError("MAP second argument must be a LAMBDA")
    return [ctx.call_lambda(function, [item]) for item in as_list(args[0])]


@register("INDEX", 2, 3)
def _index(args: list[Value], ctx: CallContext) -> Value:
    array = args[0]
    if not isinstance(array, list) or not is_valid_number(args[1]):
        return None
    position = max(1, int(round(args[1])))
    return array[position - 1] if position <= len(array) else None


def _xlookup_match(a: Value, b: Value) -> bool:
    if is_number(a) and is_number(b):
        return abs(a - b) < XLOOKUP_EPSILON
    return a == b and type(a) is type(b)


@register("XLOOKUP", 3, 6)
def _xlookup(args: list[Value], ctx: CallContext) -> Value:
    needle = args[0]
    lookup_array = as_list(args[1])
    return_array = as_list(args[2])
    if_not_found = args[3] if len(args) >= 4 else None
    search_last_first = len(args) >= 6 and is_number(args[5]) and args[5] == -1

    indices = range(len(lookup_array))
    if search_last_first:
        indices = reversed(indices)

    for i in indices:
        if _xlookup_match(needle, lookup_array[i]):
            return return_array[i] if i < len(return_array) else if_not_found
    return if_not_found
