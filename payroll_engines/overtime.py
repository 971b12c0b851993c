"""
Overtime Special-Rate Calculator -- tiered flat rates for opted-in overtime.

Responsibility:
    Splits overtime income into the jurisdiction's configured tiers and
    taxes each tier at its flat rate.  Tier boundaries and rates come from
    the effective ``overtime`` rule set; nothing is hardcoded here.

Architecture position:
    Engines -- pure calculation layer, zero I/O.

Invariants enforced:
    - Applies only when the profile is opted in as of the pay date.
      Otherwise the caller folds overtime into ordinary wage income.
    - Overtime income is never also run through the wage tax brackets.
    - Unrounded result; the caller rounds the component total once.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date
from decimal import Decimal
from uuid import UUID

from payroll_kernel.domain.types import EmployeeTaxProfile, TaxRuleSet
from payroll_kernel.logging_config import get_logger
from payroll_engines.brackets import calculate_bracket_tax, checked_brackets
from payroll_engines.tracer import traced_engine
from payroll_engines.wage_period import WagePeriodSpec

logger = get_logger("engines.overtime")

ZERO = Decimal("0")


@dataclass(frozen=True)
class OvertimeTierLine:
    tier: int
    lower: Decimal
    upper: Decimal | None
    rate_percentage: Decimal
    income_in_tier: Decimal
    tax: Decimal


@dataclass(frozen=True)
class OvertimeTaxResult:
    overtime_income: Decimal
    tax: Decimal
    rule_set_id: UUID
    rule_set_version: int
    lines: tuple[OvertimeTierLine, ...] = ()


def is_overtime_opted_in(profile: EmployeeTaxProfile, pay_date: date) -> bool:
    """Whether the standing opt-in flag is in effect on ``pay_date``."""
    return profile.overtime_opted_in_as_of(pay_date)


class OvertimeCalculator:
    """Applies an ``overtime`` rule set's tier table to overtime income."""

    @traced_engine("overtime_tiers", "1.0", fingerprint_fields=("overtime_income",))
    def calculate(
        self,
        *,
        overtime_income: Decimal,
        rule_set: TaxRuleSet,
        wage_period: WagePeriodSpec,
    ) -> OvertimeTaxResult:
        # Tier bounds are expressed per bracket_period, like wage tax tables
        factor = wage_period.conversion_factor(rule_set.bracket_period)
        converted = max(Decimal(overtime_income), ZERO) * factor
        result = calculate_bracket_tax(converted, checked_brackets(rule_set))

        lines = tuple(
            OvertimeTierLine(
                tier=line.order,
                lower=line.income_min,
                upper=line.income_max,
                rate_percentage=line.rate_percentage,
                income_in_tier=line.taxable_in_bracket,
                tax=line.tax,
            )
            for line in result.lines
        )
        tax = result.tax if factor == 1 else result.tax / factor
        return OvertimeTaxResult(
            overtime_income=max(Decimal(overtime_income), ZERO),
            tax=tax,
            rule_set_id=rule_set.rule_set_id,
            rule_set_version=rule_set.version,
            lines=lines,
        )
