"""
Tests for currency validation and money rounding.

Covers:
- ISO 4217 codes accepted, normalized and rejected
- Precision-derived rounding tolerance
- round_money half-up to the currency's minor unit
- display_decimal trimming of unrounded intermediates
"""

from decimal import Decimal

import pytest

from payroll_kernel.domain.currency import CurrencyRegistry, display_decimal, round_money


class TestCurrencyRegistry:

    def test_valid_codes(self):
        for code in ["SRD", "USD", "EUR", "ANG", "JPY"]:
            assert CurrencyRegistry.is_valid(code)
            assert CurrencyRegistry.validate(code) == code

    def test_codes_normalized(self):
        assert CurrencyRegistry.validate(" srd ") == "SRD"

    @pytest.mark.parametrize("code", ["XYZ", "US", "SRDD", "", None])
    def test_invalid_codes(self, code):
        assert not CurrencyRegistry.is_valid(code)
        with pytest.raises(ValueError):
            CurrencyRegistry.validate(code)

    def test_wrong_length_message(self):
        with pytest.raises(ValueError, match="must be 3 characters"):
            CurrencyRegistry.validate("US")

    def test_tolerance_follows_precision(self):
        assert CurrencyRegistry.get_info("SRD").rounding_tolerance == Decimal("0.01")
        assert CurrencyRegistry.get_info("JPY").rounding_tolerance == Decimal("1")
        assert CurrencyRegistry.get_info("KWD").rounding_tolerance == Decimal("0.001")

    def test_unknown_currency_uses_default_places(self):
        assert CurrencyRegistry.get_decimal_places("XYZ") == 2


class TestRoundMoney:

    @pytest.mark.parametrize(
        "amount, expected",
        [
            ("157.355", "157.36"),
            ("157.345", "157.35"),
            ("0.005", "0.01"),
            ("-0.005", "-0.01"),
            ("5000", "5000.00"),
        ],
    )
    def test_half_up_to_cents(self, amount, expected):
        assert round_money(Decimal(amount)) == Decimal(expected)
        assert str(round_money(Decimal(amount))) == expected

    def test_zero_decimal_currency(self):
        assert round_money(Decimal("1234.5"), "JPY") == Decimal("1235")

    def test_three_decimal_currency(self):
        assert round_money(Decimal("1.2345"), "KWD") == Decimal("1.235")


class TestDisplayDecimal:

    def test_long_intermediate_trimmed(self):
        assert str(display_decimal(Decimal("3033.000000000000000000000000"))) == "3033"

    def test_rounds_half_up_to_six_places(self):
        assert display_decimal(Decimal("30.33") / Decimal("364")) == Decimal("0.083324")
        assert display_decimal(Decimal("0.12345650001")) == Decimal("0.123457")

    def test_short_values_untouched(self):
        assert str(display_decimal(Decimal("550.00"))) == "550.00"
        assert str(display_decimal(Decimal("36400"))) == "36400"
