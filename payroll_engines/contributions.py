"""Flat-rate social contributions (e.g. AOV old-age pension, AWW widows' fund)."""

from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal
from uuid import UUID

from payroll_kernel.domain.types import TaxRuleSet
from payroll_engines.brackets import checked_brackets
from payroll_engines.wage_period import WagePeriodSpec

ZERO = Decimal("0")
HUNDRED = Decimal("100")


@dataclass(frozen=True)
class ContributionResult:
    base: Decimal
    rate_percentage: Decimal
    uncapped: Decimal
    cap: Decimal | None
    amount: Decimal
    rule_set_id: UUID
    rule_set_version: int

    @property
    def capped(self) -> bool:
        return self.cap is not None and self.amount < self.uncapped


def calculate_flat_rate_contribution(
    base: Decimal,
    rule_set: TaxRuleSet,
    wage_period: WagePeriodSpec,
) -> ContributionResult:
    """
    ``base * rate``, capped at the rule set's ``annual_cap`` prorated to the
    wage period.  The rate is that of the first bracket.
    """
    rate = checked_brackets(rule_set)[0].rate_percentage
    taxable = max(Decimal(base), ZERO)
    uncapped = taxable * rate / HUNDRED

    cap = None
    amount = uncapped
    if rule_set.annual_cap is not None:
        cap = rule_set.annual_cap * wage_period.annual_fraction
        amount = min(uncapped, cap)

    return ContributionResult(
        base=taxable,
        rate_percentage=rate,
        uncapped=uncapped,
        cap=cap,
        amount=amount,
        rule_set_id=rule_set.rule_set_id,
        rule_set_version=rule_set.version,
    )
