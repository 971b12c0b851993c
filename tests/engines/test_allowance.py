"""
Tests for the allowance resolver.

Covers:
- Tax-free sum prorated by wage period
- Residency evaluated at the wage period end date; non-residents get nothing
- Twelve monthly shares approximate the annual figure
- Applied amount capped at eligible income
- Percentage allowances
- Capped yearly exemptions (holiday allowance, gratuity)
"""

from datetime import date
from decimal import Decimal

import pytest
from hypothesis import given, settings
from hypothesis import strategies as st

from payroll_engines.allowance import (
    REASON_APPLIED,
    REASON_CAPPED,
    REASON_NON_RESIDENT,
    AllowanceResolver,
    apply_capped_allowance,
    prorate,
)
from payroll_engines.rule_resolver import RuleCatalog, RuleSetResolver
from payroll_engines.wage_period import normalize_wage_period
from payroll_kernel.domain.currency import round_money
from payroll_kernel.domain.types import ResidencyStatus, WagePeriodType
from payroll_kernel.exceptions import NoApplicableAllowanceError
from tests.factories import allowance, monthly_catalog, profile

JANUARY_END = date(2025, 1, 31)

annual_amounts = st.decimals(
    min_value=Decimal("0"), max_value=Decimal("10000000"), places=2,
    allow_nan=False, allow_infinity=False,
)


def _resolver(*allowances):
    catalog = monthly_catalog(allowances=allowances) if allowances else monthly_catalog()
    return AllowanceResolver(RuleSetResolver(catalog))


class TestProrate:

    def test_monthly_share_of_tax_free_sum(self):
        monthly = normalize_wage_period(WagePeriodType.MONTHLY)
        assert round_money(prorate(Decimal("36400"), monthly)) == Decimal("3033.00")

    def test_weekly_share(self):
        weekly = normalize_wage_period(WagePeriodType.WEEKLY)
        assert prorate(Decimal("36400"), weekly) == Decimal("700")

    @given(annual=annual_amounts)
    @settings(max_examples=200)
    def test_twelve_monthly_shares_approximate_annual(self, annual):
        """12 x 30.33 / 364 = 0.99989: twelve months fall just short of the year."""
        monthly = normalize_wage_period(WagePeriodType.MONTHLY)

        total = prorate(annual, monthly) * 12

        assert total <= annual
        assert annual - total <= annual * Decimal("0.0002")

    @given(annual=annual_amounts)
    @settings(max_examples=100)
    def test_weekly_and_daily_shares_sum_to_annual(self, annual):
        weekly = normalize_wage_period(WagePeriodType.WEEKLY)
        daily = normalize_wage_period(WagePeriodType.DAILY)

        assert round_money(prorate(annual, weekly) * 52) == annual
        assert round_money(prorate(annual, daily) * 364) == annual


class TestAllowanceResolver:

    def setup_method(self):
        self.monthly = normalize_wage_period(WagePeriodType.MONTHLY)

    def test_resident_receives_prorated_sum(self):
        result = _resolver().resolve(profile(), self.monthly, JANUARY_END, Decimal("5000"))

        assert round_money(result.applied_amount) == Decimal("3033.00")
        assert result.annual_amount == Decimal("36400")
        assert result.reason == REASON_APPLIED
        assert result.allowance_id is not None

    def test_non_resident_receives_zero(self):
        employee = profile(residency=ResidencyStatus.NON_RESIDENT)

        result = _resolver().resolve(employee, self.monthly, JANUARY_END, Decimal("5000"))

        assert result.applied_amount == Decimal("0")
        assert result.reason == REASON_NON_RESIDENT
        assert result.allowance_id is None

    def test_residency_evaluated_at_period_end(self):
        """Becoming resident on the last day of the period counts."""
        employee = profile(residency_effective_date=JANUARY_END)
        result = _resolver().resolve(employee, self.monthly, JANUARY_END, Decimal("5000"))
        assert result.reason == REASON_APPLIED

    @pytest.mark.parametrize("period_type", list(WagePeriodType))
    @pytest.mark.parametrize(
        "effective_date",
        [date(2020, 1, 1), JANUARY_END, date(2025, 6, 1)],
        ids=["before-period", "at-period-end", "after-period"],
    )
    def test_non_resident_zero_for_every_period_and_date(self, period_type, effective_date):
        employee = profile(
            residency=ResidencyStatus.NON_RESIDENT,
            residency_effective_date=effective_date,
        )
        wage_period = normalize_wage_period(period_type)

        result = _resolver().resolve(employee, wage_period, JANUARY_END, Decimal("5000"))

        assert result.applied_amount == Decimal("0")
        assert result.reason == REASON_NON_RESIDENT

    def test_recorded_prior_residency_applies_before_change(self):
        """A change to non-resident in February leaves January resident only if recorded."""
        employee = profile(
            residency=ResidencyStatus.NON_RESIDENT,
            residency_effective_date=date(2025, 2, 1),
            prior_residency=ResidencyStatus.RESIDENT,
        )

        january = _resolver().resolve(employee, self.monthly, JANUARY_END, Decimal("5000"))
        february = _resolver().resolve(employee, self.monthly, date(2025, 2, 28), Decimal("5000"))

        assert january.reason == REASON_APPLIED
        assert february.reason == REASON_NON_RESIDENT

    def test_prior_non_resident_before_becoming_resident(self):
        employee = profile(
            residency_effective_date=date(2025, 2, 1),
            prior_residency=ResidencyStatus.NON_RESIDENT,
        )

        result = _resolver().resolve(employee, self.monthly, JANUARY_END, Decimal("5000"))

        assert result.applied_amount == Decimal("0")

    def test_capped_at_income(self):
        result = _resolver().resolve(profile(), self.monthly, JANUARY_END, Decimal("1200"))

        assert result.applied_amount == Decimal("1200")
        assert round_money(result.prorated_amount) == Decimal("3033.00")
        assert result.reason == REASON_CAPPED

    def test_negative_income_applies_nothing(self):
        result = _resolver().resolve(profile(), self.monthly, JANUARY_END, Decimal("-50"))
        assert result.applied_amount == Decimal("0")

    def test_percentage_allowance(self):
        resolver = _resolver(allowance(amount="10", is_percentage=True))

        result = resolver.resolve(profile(), self.monthly, JANUARY_END, Decimal("5000"))

        assert result.applied_amount == Decimal("500")
        assert result.is_percentage

    def test_missing_tax_free_sum_is_configuration_error(self):
        resolver = AllowanceResolver(RuleSetResolver(RuleCatalog()))

        with pytest.raises(NoApplicableAllowanceError) as exc_info:
            resolver.resolve(profile(), self.monthly, JANUARY_END, Decimal("5000"))

        assert exc_info.value.code == "NO_APPLICABLE_ALLOWANCE"
        assert exc_info.value.allowance_type == "tax_free_sum"


class TestApplyCappedAllowance:

    def test_fully_exempt_under_cap(self):
        result = apply_capped_allowance(Decimal("3000"), Decimal("10016"), Decimal("0"))

        assert result.applied == Decimal("3000")
        assert result.taxable_amount == Decimal("0")
        assert result.remaining_for_year == Decimal("7016")

    def test_partially_exempt_when_cap_nearly_used(self):
        result = apply_capped_allowance(Decimal("3000"), Decimal("10016"), Decimal("9000"))

        assert result.applied == Decimal("1016")
        assert result.taxable_amount == Decimal("1984")
        assert result.remaining_for_year == Decimal("0")

    def test_cap_exhausted(self):
        result = apply_capped_allowance(Decimal("500"), Decimal("10016"), Decimal("12000"))

        assert result.applied == Decimal("0")
        assert result.taxable_amount == Decimal("500")
