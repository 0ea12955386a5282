"""
Tests for the Excel-style expression evaluator.

Quarter convention used throughout: the fixture series holds fourteen
quarters 2022-Q1 .. 2025-Q2 with Sales values 1 .. 14, so the newest
quarter (Q12, position 0) is 2025-Q2 with Sales = 14.
"""

import math

import pytest

from app.core.exceptions import ExpressionEvaluationError
from app.formulas.expression import (
    NO_SIGNAL,
    QuarterSeries,
    evaluate_expression,
    normalize_metric_value,
    parse_expression,
    sort_quarters,
)
from app.formulas.expression.quarters import parse_quarter_label

from conftest import FakeRow, quarterly_rows, series_loader


@pytest.fixture
def sales_loader():
    return series_loader(quarterly_rows("Sales", list(range(1, 15))))


async def evaluate(text, loader, **kwargs):
    return await evaluate_expression("ACME", text, loader=loader, **kwargs)


# =============================================================================
# Quarter Series Tests
# =============================================================================


class TestQuarterSeries:
    """Ordering and normalization of stored quarterly rows."""

    def test_sort_quarter_labels_newest_first(self):
        assert sort_quarters(["2023-Q1", "2022-Q4", "2023-Q2", "2023-Q1"]) == [
            "2023-Q2",
            "2023-Q1",
            "2022-Q4",
        ]

    def test_sort_month_year_labels(self):
        assert sort_quarters(["Mar 2023", "Dec 2022", "Jun 2023"]) == [
            "Jun 2023",
            "Mar 2023",
            "Dec 2022",
        ]

    def test_parse_quarter_label_formats(self):
        assert parse_quarter_label("2023-03-31").year == 2023
        assert parse_quarter_label("Q2 FY24").month == 6
        assert parse_quarter_label("not a quarter") is None

    def test_percentage_normalization(self):
        assert normalize_metric_value("20%", "Sales") == pytest.approx(0.2)
        assert normalize_metric_value(20, "OPM %") == pytest.approx(0.2)
        assert normalize_metric_value(20, "Sales Growth") == pytest.approx(0.2)
        assert normalize_metric_value(20, "Sales") == 20.0
        assert normalize_metric_value("1,200", "Sales") == 1200.0
        assert normalize_metric_value("n/a", "Sales") is None
        assert normalize_metric_value(None, "Sales") is None

    def test_later_rows_overwrite_earlier(self):
        rows = [FakeRow("2024-Q1", "Sales", 1), FakeRow("2024-Q1", "Sales", 2)]
        series = QuarterSeries.from_rows(rows)
        assert series.lookup("Sales", 0).value == 2.0

    def test_lookup_is_tolerant_of_spelling(self):
        series = QuarterSeries.from_rows([FakeRow("2024-Q1", "Net Profit", 7)])
        assert series.lookup("NetProfit", 0).value == 7.0
        assert series.lookup("net_profit", 0).value == 7.0

    def test_out_of_range_position(self):
        series = QuarterSeries.from_rows(quarterly_rows("Sales", [1, 2]))
        lookup = series.lookup("Sales", 5)
        assert lookup.value is None
        assert lookup.quarter is None


# =============================================================================
# Quarter Reference Tests
# =============================================================================


class TestQuarterReferences:
    """All reference forms agree on which quarter they read."""

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "text, expected",
        [
            ("Sales[Q12]", 14.0),
            ("Sales[Q11]", 13.0),
            ("Sales[12]", 14.0),
            ("Sales[P12]", 13.0),
            ("Sales(0)", 14.0),
            ("Sales(-1)", 13.0),
            ("Sales", 14.0),
            ("Sales[Q1]", 3.0),
        ],
    )
    async def test_reference_forms(self, sales_loader, text, expected):
        result = await evaluate(text, sales_loader)
        assert result.result == expected
        assert result.result_type == "number"

    @pytest.mark.asyncio
    async def test_positive_offset_is_null(self, sales_loader):
        result = await evaluate("Sales(1)", sales_loader)
        assert result.result == NO_SIGNAL

    @pytest.mark.asyncio
    async def test_window_limits_quarters(self, sales_loader):
        rows = quarterly_rows("Sales", list(range(1, 15)))
        window = sort_quarters(r.quarter for r in rows)[:12]

        inside = await evaluate("Sales[Q1]", sales_loader, quarter_window=window)
        outside = await evaluate("ISBLANK(Sales[Q0])", sales_loader, quarter_window=window)

        assert inside.result == 3.0
        assert outside.result is True

    @pytest.mark.asyncio
    async def test_used_quarters_only_lists_referenced(self, sales_loader):
        result = await evaluate(
            "LET(growth, Sales[Q12] / Sales[Q8] - 1, IF(growth > 0.2, \"BUY\", \"HOLD\"))",
            sales_loader,
        )
        assert result.result == "BUY"
        assert result.used_quarters == ["2025-Q2", "2024-Q2"]

    @pytest.mark.asyncio
    async def test_comparison_between_quarters(self, sales_loader):
        result = await evaluate("=Sales[Q12] > Sales[Q11]", sales_loader)
        assert result.result is True
        assert result.result_type == "boolean"
        assert result.used_quarters == ["2025-Q2", "2025-Q1"]


# =============================================================================
# Missing Data Tests
# =============================================================================


class TestMissingData:
    """Missing values never raise."""

    @pytest.mark.asyncio
    async def test_no_rows_is_no_signal(self):
        result = await evaluate("Sales[Q12] > 0", series_loader([]))
        assert result.result == NO_SIGNAL
        assert result.result_type == "string"
        assert result.used_quarters == []

    @pytest.mark.asyncio
    async def test_missing_metric_comparison_is_false(self, sales_loader):
        result = await evaluate("Profit[Q12] > 5", sales_loader)
        assert result.result is False

    @pytest.mark.asyncio
    async def test_missing_metric_arithmetic_is_no_signal(self, sales_loader):
        result = await evaluate("Profit[Q12] + 1", sales_loader)
        assert result.result == NO_SIGNAL

    @pytest.mark.asyncio
    async def test_division_by_zero_is_no_signal(self, sales_loader):
        result = await evaluate("Sales / 0", sales_loader)
        assert result.result == NO_SIGNAL

    @pytest.mark.asyncio
    async def test_operating_margin_falls_back_to_financing_margin(self):
        loader = series_loader([FakeRow("2024-Q4", "Financing Margin %", 15)])
        result = await evaluate("OPM[Q12]", loader, collect_trace=True)

        assert result.result == pytest.approx(0.15)
        assert result.trace.substitutions[0].fallback_used is True

    @pytest.mark.asyncio
    async def test_percentage_metric_is_fraction(self):
        loader = series_loader([FakeRow("2024-Q4", "OPM %", 20)])
        result = await evaluate("OPM > 15%", loader)
        assert result.result is True


# =============================================================================
# Function Library Tests
# =============================================================================


class TestFunctions:
    """Spot checks across the function library."""

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "text, expected",
        [
            ('IF(Sales > 10, "BUY", "SELL")', "BUY"),
            ('IF(Sales < 10, "BUY", "SELL")', "SELL"),
            ("AND(TRUE, Sales > 1)", True),
            ("OR(FALSE, Sales < 1)", False),
            ("NOT(Sales < 1)", True),
            ("SUM(Sales[Q12], Sales[Q11], 1)", 28.0),
            ("AVERAGE({1, 2, 3})", 2.0),
            ("MAX({1, 5, 3})", 5.0),
            ("MIN(4, 2, 8)", 2.0),
            ("ROUND(2.5, 0)", 3.0),
            ("ROUND(-2.5, 0)", -3.0),
            ("ROUNDDOWN(2.79, 1)", 2.7),
            ("ABS(-3)", 3.0),
            ("POWER(2, 10)", 1024.0),
            ("LOG(1000)", 3.0),
            ('CONCAT("Q", 12)', "Q12"),
            ("IFERROR(Sales / 0, -1)", -1.0),
            ("COALESCE(Profit, Sales)", 14.0),
            ('COUNTIF({1, 5, 10}, ">4")', 2.0),
            ('SUMIF({1, 5, 10}, ">4")', 15.0),
            ('CHOOSE(2, "low", "mid", "high")', "mid"),
            ('XLOOKUP(2, {1, 2, 3}, {"a", "b", "c"})', "b"),
            ('XLOOKUP(9, {1, 2, 3}, {"a", "b", "c"}, "none")', "none"),
            ("INDEX({10, 20, 30}, 3)", 30.0),
        ],
    )
    async def test_function(self, sales_loader, text, expected):
        result = await evaluate(text, sales_loader)
        if isinstance(expected, float):
            assert result.result == pytest.approx(expected)
        else:
            assert result.result == expected

    @pytest.mark.asyncio
    async def test_choose_out_of_range_is_no_signal(self, sales_loader):
        result = await evaluate('CHOOSE(5, "a", "b")', sales_loader)
        assert result.result == NO_SIGNAL

    @pytest.mark.asyncio
    async def test_sequence_returns_array(self, sales_loader):
        result = await evaluate("SEQUENCE(3)", sales_loader)
        assert result.result == [1.0, 2.0, 3.0]
        assert result.result_type == "array"

    @pytest.mark.asyncio
    async def test_map_with_lambda(self, sales_loader):
        result = await evaluate("SUM(MAP({1, 2, 3}, LAMBDA(x, x * 2)))", sales_loader)
        assert result.result == 12.0

    @pytest.mark.asyncio
    async def test_let_bound_lambda_call(self, sales_loader):
        result = await evaluate("LET(double, LAMBDA(x, x * 2), double(Sales))", sales_loader)
        assert result.result == 28.0

    @pytest.mark.asyncio
    async def test_lambda_closes_over_let_bindings(self, sales_loader):
        result = await evaluate("LET(k, 3, f, LAMBDA(x, x * k), f(2))", sales_loader)
        assert result.result == 6.0

    @pytest.mark.asyncio
    async def test_bare_lambda_result_is_no_signal(self, sales_loader):
        result = await evaluate("LAMBDA(x, x)", sales_loader)
        assert result.result == NO_SIGNAL

    @pytest.mark.asyncio
    async def test_string_equality(self, sales_loader):
        result = await evaluate('"a" = "a"', sales_loader)
        assert result.result is True


# =============================================================================
# Error Tests
# =============================================================================


class TestExpressionErrors:
    """Malformed formulas raise ExpressionEvaluationError."""

    @pytest.mark.parametrize(
        "text",
        [
            "",
            "Sales[Q12] >",
            "Sales[Q12",
            "Sales[X]",
            "ROUND(1)",
            "IF(1)",
            "LET(x, 1)",
            "LET(1, 2, 3)",
            "LAMBDA(x)",
            "LAMBDA(x, x, x + 1)",
            "Sales # 3",
            "'unterminated",
            "1.2.3",
        ],
    )
    def test_parse_errors(self, text):
        with pytest.raises(ExpressionEvaluationError):
            parse_expression(text)

    @pytest.mark.asyncio
    async def test_syntax_error_surfaces_without_data(self):
        calls = []

        async def loader(ticker):
            calls.append(ticker)
            return []

        with pytest.raises(ExpressionEvaluationError):
            await evaluate("Sales[Q12] >", loader)
        assert calls == []

    @pytest.mark.asyncio
    async def test_unknown_function(self, sales_loader):
        with pytest.raises(ExpressionEvaluationError, match="Unknown function"):
            await evaluate("Foo(1, 2)", sales_loader)

    @pytest.mark.asyncio
    async def test_non_integer_offset(self, sales_loader):
        with pytest.raises(ExpressionEvaluationError):
            await evaluate("Sales(0.5)", sales_loader)

    @pytest.mark.asyncio
    async def test_map_requires_lambda(self, sales_loader):
        with pytest.raises(ExpressionEvaluationError):
            await evaluate("MAP({1, 2}, 3)", sales_loader)

    def test_error_payload(self):
        with pytest.raises(ExpressionEvaluationError) as exc:
            parse_expression("Sales >")
        payload = exc.value.to_dict()
        assert payload["error"] == "EXPRESSION_EVALUATION_ERROR"
        assert "position" in payload["details"]


# =============================================================================
# Trace Tests
# =============================================================================


class TestTrace:
    """Evaluation trace records each metric substitution."""

    @pytest.mark.asyncio
    async def test_substitutions(self, sales_loader):
        result = await evaluate("Sales[Q12] > Sales[Q11]", sales_loader, collect_trace=True)
        trace = result.trace

        assert trace.original_formula == "Sales[Q12] > Sales[Q11]"
        assert trace.formula_with_substitutions == "14.0 > 13.0"
        assert [s.reference for s in trace.substitutions] == ["Sales[Q12]", "Sales[Q11]"]
        assert [s.quarter for s in trace.substitutions] == ["2025-Q2", "2025-Q1"]

    @pytest.mark.asyncio
    async def test_missing_value_rendered_as_null(self, sales_loader):
        result = await evaluate("Profit[Q12] > 1", sales_loader, collect_trace=True)
        assert result.trace.formula_with_substitutions == "null > 1"

    @pytest.mark.asyncio
    async def test_trace_off_by_default(self, sales_loader):
        result = await evaluate("Sales", sales_loader)
        assert result.trace is None
        assert "trace" not in result.to_dict()

    @pytest.mark.asyncio
    async def test_to_dict(self, sales_loader):
        result = await evaluate("Sales * 2", sales_loader, collect_trace=True)
        data = result.to_dict()
        assert data["result"] == 28.0
        assert data["result_type"] == "number"
        assert data["trace"]["substitutions"][0]["value"] == 14.0
        assert not math.isnan(data["result"])
