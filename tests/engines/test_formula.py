"""
Tests for restricted formula evaluation.

Covers:
- Allowed arithmetic, comparisons, conditionals and functions
- Rejection of calls, attributes, strings and unknown names
- Arithmetic failures surfaced as configuration errors
"""

from decimal import Decimal

import pytest

from payroll_engines.formula import evaluate_formula, validate_formula
from payroll_kernel.exceptions import InvalidComponentConfigurationError

VALUES = {
    "BASE_SALARY": Decimal("5000"),
    "gross_pay": Decimal("5800"),
    "taxable_income": Decimal("5800"),
    "net_pay": Decimal("5800"),
}


class TestValidateFormula:

    @pytest.mark.parametrize(
        "expression",
        [
            "BASE_SALARY * 0.05",
            "min(gross_pay, 6000) - 100",
            "BASE_SALARY if gross_pay > 1000 else 0",
            "round(gross_pay / 3, 2)",
            "-abs(net_pay)",
            "gross_pay > 0 and not net_pay < 0",
        ],
    )
    def test_allowed(self, expression):
        assert validate_formula(expression) == []

    @pytest.mark.parametrize(
        "expression, fragment",
        [
            ("__import__('os')", "Disallowed function call"),
            ("gross_pay.real", "Attribute"),
            ("'text'", "Disallowed constant"),
            ("gross_pay ** 2", "Pow"),
            ("[gross_pay]", "List"),
            ("lambda: 1", "Lambda"),
            ("max(gross_pay, default=0)", "Keyword"),
            ("gross_pay +", "Syntax error"),
            ("True", "Disallowed constant"),
        ],
    )
    def test_rejected(self, expression, fragment):
        errors = validate_formula(expression)
        assert errors
        assert any(fragment in e.message for e in errors)

    def test_unknown_name_with_name_set(self):
        errors = validate_formula("BONUS * 2", frozenset(VALUES))
        assert [e.message for e in errors] == ["Unknown name: BONUS"]


class TestEvaluateFormula:

    def test_arithmetic(self):
        assert evaluate_formula("PENSION", "BASE_SALARY * 0.05", VALUES) == Decimal("250.00")

    def test_decimal_literal_is_exact(self):
        assert evaluate_formula("X", "0.1 + 0.2", VALUES) == Decimal("0.3")

    def test_conditional(self):
        assert evaluate_formula("X", "100 if gross_pay > 6000 else 50", VALUES) == Decimal("50")

    def test_min_and_round(self):
        assert evaluate_formula("X", "round(min(gross_pay, 1000) / 3, 2)", VALUES) == Decimal("333.33")

    def test_division_by_zero(self):
        with pytest.raises(InvalidComponentConfigurationError) as exc_info:
            evaluate_formula("X", "gross_pay / 0", VALUES)
        assert exc_info.value.component_code == "X"
        assert "ZeroDivision" in exc_info.value.reason or "DivisionByZero" in exc_info.value.reason

    def test_unknown_name(self):
        with pytest.raises(InvalidComponentConfigurationError, match="Unknown name"):
            evaluate_formula("X", "MISSING + 1", VALUES)
