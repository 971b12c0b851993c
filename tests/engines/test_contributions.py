"""Tests for flat-rate social contributions."""

from decimal import Decimal

from payroll_engines.contributions import calculate_flat_rate_contribution
from payroll_engines.wage_period import normalize_wage_period
from payroll_kernel.domain.types import TaxType, WagePeriodType
from tests.factories import flat_rule_set


class TestFlatRateContribution:

    def setup_method(self):
        self.monthly = normalize_wage_period(WagePeriodType.MONTHLY)
        self.weekly = normalize_wage_period(WagePeriodType.WEEKLY)

    def test_uncapped_rate(self):
        rule_set = flat_rule_set(TaxType.SOCIAL_SECURITY, "4")

        result = calculate_flat_rate_contribution(Decimal("5000"), rule_set, self.monthly)

        assert result.amount == Decimal("200")
        assert result.cap is None
        assert not result.capped

    def test_cap_is_prorated_to_wage_period(self):
        # 36400 per year is 700 per week
        rule_set = flat_rule_set(TaxType.SOCIAL_SECURITY, "50", annual_cap="36400")

        result = calculate_flat_rate_contribution(Decimal("2000"), rule_set, self.weekly)

        assert result.uncapped == Decimal("1000")
        assert result.cap == Decimal("700")
        assert result.amount == Decimal("700")
        assert result.capped

    def test_under_cap(self):
        rule_set = flat_rule_set(TaxType.MEDICARE, "1", annual_cap="36400")
        result = calculate_flat_rate_contribution(Decimal("2000"), rule_set, self.weekly)
        assert result.amount == Decimal("20")
        assert not result.capped

    def test_negative_base_is_zero(self):
        rule_set = flat_rule_set(TaxType.MEDICARE, "1")
        assert calculate_flat_rate_contribution(Decimal("-10"), rule_set, self.monthly).amount == 0
