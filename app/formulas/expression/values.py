"""Runtime values produced while evaluating an expression."""

from __future__ import annotations

import math
from collections.abc import Iterator, Mapping
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, Union

if TYPE_CHECKING:
    from .parser import Node

NO_SIGNAL = "No Signal"


@dataclass(frozen=True)
class LambdaValue:
    """A LAMBDA closed over the bindings visible where it was written."""

    params: tuple[str, ...]
    body: Node
    scope: Mapping[str, Any]


Value = Union[bool, float, str, None, list, LambdaValue]


def is_number(value: Any) -> bool:
    """True for int/float values (bools are not numbers here)."""
    return isinstance(value, (int, float)) and not isinstance(value, bool)


def is_valid_number(value: Any) -> bool:
    return is_number(value) and not math.isnan(value)


def to_boolean(value: Value) -> bool:
    """Truthiness used by IF, AND, OR and NOT."""
    if value is None:
        return False
    if isinstance(value, bool):
        return value
    if is_number(value):
        return value != 0 and not math.isnan(value)
    if isinstance(value, str):
        return len(value) > 0 and value.lower() != "false"
    if isinstance(value, list):
        return len(value) > 0
    return isinstance(value, LambdaValue)


def to_text(value: Value) -> str:
    """Render a value the way text functions concatenate it."""
    if value is None:
        return ""
    if isinstance(value, bool):
        return "TRUE" if value else "FALSE"
    if is_number(value):
        if math.isfinite(value) and float(value).is_integer():
            return str(int(value))
        return repr(float(value))
    if isinstance(value, list):
        return ",".join(to_text(item) for item in value)
    if isinstance(value, LambdaValue):
        return "LAMBDA"
    return str(value)


def flatten(values: list[Value]) -> Iterator[Value]:
    """Yield scalars from arguments, expanding nested arrays."""
    for value in values:
        if isinstance(value, list):
            yield from flatten(value)
        else:
            yield value


def as_list(value: Value) -> list[Value]:
    return value if isinstance(value, list) else [value]


def numbers_in(values: list[Value]) -> list[float]:
    return [float(v) for v in flatten(values) if is_valid_number(v)]
