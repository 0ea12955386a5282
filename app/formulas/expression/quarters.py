"""Quarterly metric series exposed to expressions.

Quarters are ordered newest first. Position 0 is the newest quarter of the
window, position 1 the one before it, and so on. All reference forms
(``Metric[Q12]``, ``Metric[P12]``, ``Metric(-1)``) are translated to a
position before lookup.
"""

from __future__ import annotations

import re
from collections.abc import Iterable, Sequence
from dataclasses import dataclass
from datetime import date, datetime
from typing import Any, Protocol


# Bracket references are anchored so that Q12 is the newest quarter
NEWEST_QUARTER_INDEX = 12

PERCENT_NAME_MARKERS = ("%", "Growth", "YoY", "QoQ")
PERCENT_NAME_MARKERS_CI = ("opm", "margin")

OPM_MARKERS = ("opm", "operatingprofitmargin", "operatingmargin")
FINANCING_MARGIN_NAMES = (
    "Financing Margin %",
    "Financing Margin",
    "financingmargin",
    "financing_margin",
)

_QUARTER_YEAR_RE = re.compile(r"^(\d{4})\s*[-/ ]?\s*Q([1-4])$", re.IGNORECASE)
_YEAR_QUARTER_RE = re.compile(r"^Q([1-4])\s*[-/ ]?\s*(?:FY)?(\d{2}|\d{4})$", re.IGNORECASE)
_DATE_FORMATS = ("%b %Y", "%B %Y", "%b-%Y", "%b-%y", "%b %y", "%Y-%m", "%m/%d/%Y", "%d/%m/%Y")


class MetricRow(Protocol):
    """One stored metric value (satisfied by ``QuarterlyData`` rows)."""

    quarter: str
    metric_name: str
    metric_value: Any


@dataclass(frozen=True)
class MetricLookup:
    """Result of resolving one metric reference."""

    value: float | None
    quarter: str | None
    fallback_used: bool = False


def parse_quarter_label(label: str) -> date | None:
    """Best-effort conversion of a quarter label to a date for ordering."""
    text = label.strip()
    try:
        return date.fromisoformat(text[:10])
    except ValueError:
        pass

    match = _QUARTER_YEAR_RE.match(text)
    if match:
        return date(int(match.group(1)), int(match.group(2)) * 3, 1)
    match = _YEAR_QUARTER_RE.match(text)
    if match:
        year = int(match.group(2))
        if year < 100:
            year += 2000
        return date(year, int(match.group(1)) * 3, 1)

    for fmt in _DATE_FORMATS:
        try:
            return datetime.strptime(text, fmt).date()
        except ValueError:
            continue
    return None


def sort_quarters(labels: Iterable[str]) -> list[str]:
    """Unique quarter labels, newest first.

    Labels that parse as dates come first in date order. Anything else
    follows in descending string order.
    """

    def sort_key(label: str) -> tuple[int, int, str]:
        parsed = parse_quarter_label(label)
        if parsed is None:
            return (0, 0, label)
        return (1, parsed.toordinal(), label)

    return sorted(set(labels), key=sort_key, reverse=True)


def normalize_metric_key(name: str) -> str:
    """Lookup key: lower-case with ``()%``, whitespace and underscores removed."""
    return re.sub(r"[()%\s_]", "", name.lower())


def is_percentage_metric(metric_name: str) -> bool:
    lowered = metric_name.lower()
    return any(marker in metric_name for marker in PERCENT_NAME_MARKERS) or any(
        marker in lowered for marker in PERCENT_NAME_MARKERS_CI
    )


def normalize_metric_value(value: Any, metric_name: str) -> float | None:
    """Convert a stored value to a float, scaling percentages to fractions.

    ``"20%"`` and a value of 20 stored under ``"OPM %"`` both become 0.2.
    """
    if value is None or isinstance(value, bool):
        return None

    had_percent_sign = False
    if isinstance(value, str):
        had_percent_sign = "%" in value
        try:
            number = float(value.replace("%", "").replace(",", "").strip())
        except ValueError:
            return None
    else:
        try:
            number = float(value)
        except (TypeError, ValueError):
            return None

    if number != number:  # NaN
        return None

    if had_percent_sign or is_percentage_metric(metric_name):
        return number / 100
    return number


class QuarterSeries:
    """Per-quarter metric values for one ticker, ordered newest first."""

    def __init__(self, quarters: Sequence[str], values: dict[str, dict[str, float | None]]):
        self.quarters = list(quarters)
        self._values = values

    @classmethod
    def from_rows(
        cls,
        rows: Iterable[MetricRow],
        window: Sequence[str] | None = None,
    ) -> QuarterSeries:
        """Build a series from stored rows, optionally restricted to a window.

        Later rows for the same quarter and metric overwrite earlier ones, so
        callers pass rows ordered by scrape time.
        """
        rows = list(rows)
        allowed = set(window) if window else None
        quarters = sort_quarters(
            r.quarter for r in rows if allowed is None or r.quarter in allowed
        )

        values: dict[str, dict[str, float | None]] = {q: {} for q in quarters}
        for row in rows:
            metrics = values.get(row.quarter)
            if metrics is None:
                continue
            normalized = normalize_metric_value(row.metric_value, row.metric_name)
            metrics[row.metric_name] = normalized
            metrics[normalize_metric_key(row.metric_name)] = normalized

        return cls(quarters, values)

    def __len__(self) -> int:
        return len(self.quarters)

    def label_at(self, position: int) -> str | None:
        if 0 <= position < len(self.quarters):
            return self.quarters[position]
        return None

    def metric_names(self, quarter: str) -> list[str]:
        return list(self._values.get(quarter, {}))

    def _find(self, metrics: dict[str, float | None], name: str) -> float | None:
        if name in metrics:
            return metrics[name]
        return metrics.get(normalize_metric_key(name))

    def lookup(self, metric_name: str, position: int) -> MetricLookup:
        """Value of ``metric_name`` at ``position`` (0 = newest).

        Out-of-range positions and missing metrics resolve to ``None``.
        Operating-margin metrics fall back to financing margin when absent.
        """
        quarter = self.label_at(position)
        if quarter is None:
            return MetricLookup(value=None, quarter=None)

        metrics = self._values.get(quarter, {})
        value = self._find(metrics, metric_name)
        if value is not None:
            return MetricLookup(value=value, quarter=quarter)

        key = normalize_metric_key(metric_name)
        if any(marker in key for marker in OPM_MARKERS):
            for fallback in FINANCING_MARGIN_NAMES:
                fallback_value = self._find(metrics, fallback)
                if fallback_value is not None:
                    return MetricLookup(value=fallback_value, quarter=quarter, fallback_used=True)

        return MetricLookup(value=None, quarter=quarter)


def position_for_quarter_index(index: int) -> int:
    """Translate a bracket index (``Q12`` newest) to a position from newest."""
    return NEWEST_QUARTER_INDEX - index
