"""
Tests for field mapping and the simple condition evaluator.
"""

import pytest

from app.core.exceptions import InvalidFormula, UnknownField
from app.formulas.fields import (
    FinancialField,
    financial_snapshot,
    normalize_field_name,
    resolve_field,
    to_number,
)
from app.formulas.simple import LogicOperator, evaluate_simple, parse_condition

from conftest import FakeCompany


# =============================================================================
# Field Mapping Tests
# =============================================================================


class TestFieldMapping:
    """Loosely typed field names resolve to canonical fields."""

    @pytest.mark.parametrize(
        "raw, expected",
        [
            ("ROE", FinancialField.ROE),
            ("Pe", FinancialField.PE),
            ("PE_Ratio", FinancialField.PE),
            ("Debt_To_E", FinancialField.DEBT),
            ("debt to equity", FinancialField.DEBT),
            ("Net Income", FinancialField.NET_INCOME),
            ("market_cap", FinancialField.MARKET_CAP),
        ],
    )
    def test_aliases(self, raw, expected):
        assert resolve_field(raw) is expected

    def test_normalize_strips_underscores_and_spaces(self):
        assert normalize_field_name(" Debt_To E ") == "debttoe"

    def test_unknown_field_raises(self):
        with pytest.raises(UnknownField) as exc:
            resolve_field("dividendYield")
        assert exc.value.details["field"] == "dividendYield"
        assert exc.value.error_code == "UNKNOWN_FIELD"

    def test_to_number(self):
        assert to_number("12.5") == 12.5
        assert to_number(3) == 3.0
        assert to_number("n/a") is None
        assert to_number("") is None
        assert to_number(True) is None
        assert to_number(float("nan")) is None
        assert to_number(None) is None

    def test_snapshot_reads_market_cap_column(self):
        company = FakeCompany(
            financial_data={"roe": "0.2", "marketCap": 1, "pe": "bad"},
            market_cap="1500.50",
        )
        snapshot = financial_snapshot(company)
        assert snapshot[FinancialField.ROE] == 0.2
        assert snapshot[FinancialField.MARKET_CAP] == 1500.50
        assert FinancialField.PE not in snapshot


# =============================================================================
# Parsing Tests
# =============================================================================


class TestParseCondition:
    """Condition text is parsed into clauses up front."""

    def test_and_chain(self):
        parsed = parse_condition("roe > 0.20 and debt < 0.5")
        assert parsed.logic is LogicOperator.AND
        assert [c.field for c in parsed.clauses] == [FinancialField.ROE, FinancialField.DEBT]

    def test_single_clause_is_or(self):
        parsed = parse_condition("pe <= 15")
        assert parsed.logic is LogicOperator.OR
        assert len(parsed.clauses) == 1

    def test_and_is_case_insensitive(self):
        parsed = parse_condition("roe > 0.1 AND eps >= 2")
        assert parsed.logic is LogicOperator.AND
        assert len(parsed.clauses) == 2

    def test_mixed_and_or_rejected(self):
        with pytest.raises(InvalidFormula, match="Mixed AND/OR"):
            parse_condition("roe > 0.2 and pe < 15 or debt < 0.5")

    @pytest.mark.parametrize("text", ["", "   ", "roe >", "roe ~ 5", "> 5", "roe > abc"])
    def test_malformed(self, text):
        with pytest.raises(InvalidFormula):
            parse_condition(text)

    def test_unsupported_operator(self):
        with pytest.raises(InvalidFormula, match="Unsupported operator"):
            parse_condition("roe => 0.2")

    def test_unknown_field(self):
        with pytest.raises(UnknownField):
            parse_condition("beta > 1")


# =============================================================================
# Evaluation Tests
# =============================================================================


class TestEvaluateSimple:
    """Evaluation against a company's financial data."""

    def test_and_matches(self, company):
        assert evaluate_simple(company, "roe > 0.20 and debt < 0.5") is True

    def test_and_fails_on_one_clause(self, company):
        assert evaluate_simple(company, "roe > 0.20 and debt < 0.2") is False

    def test_or_matches_on_one_clause(self, company):
        assert evaluate_simple(company, "pe < 10 or eps >= 3") is True

    def test_missing_field_fails_clause_not_evaluation(self):
        company = FakeCompany(financial_data={"roe": 0.3})
        assert evaluate_simple(company, "pe < 15") is False
        assert evaluate_simple(company, "pe < 15 or roe > 0.2") is True

    def test_no_financial_data(self):
        company = FakeCompany(financial_data=None)
        assert evaluate_simple(company, "roe > 0") is False

    def test_equality_uses_tolerance(self):
        company = FakeCompany(financial_data={"pe": 15.00005})
        assert evaluate_simple(company, "pe = 15") is True
        assert evaluate_simple(company, "pe != 15") is False
        assert evaluate_simple(company, "pe != 15.1") is True

    def test_market_cap(self, company):
        assert evaluate_simple(company, "marketCap > 1000000000") is True

    def test_negative_threshold(self):
        company = FakeCompany(financial_data={"netIncome": -50})
        assert evaluate_simple(company, "net_income < -10") is True

    def test_mixed_operators_raise(self, company):
        with pytest.raises(InvalidFormula):
            evaluate_simple(company, "roe > 0.2 and pe < 15 or debt < 0.5")
