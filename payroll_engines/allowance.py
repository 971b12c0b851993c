"""
Allowance Resolver -- tax-free sums prorated by wage period.

Responsibility:
    Determines how much of a paycheck's regular taxable income is exempt
    under the jurisdiction's tax-free sum, and how much of a holiday
    allowance or bonus/gratuity payment falls under its yearly exempt cap.

Architecture position:
    Engines -- pure calculation layer, zero I/O.

Invariants enforced:
    - Non-residents (as of the wage period end date) receive zero.
    - A fixed allowance amount is an annual figure, always multiplied by
      ``periods_covered * days_in_period / 364`` before use.
    - The applied allowance never exceeds the income it is applied to.

Failure modes:
    - NoApplicableAllowanceError / AmbiguousAllowanceError from the
      resolver.  A resident with no tax-free sum configured is a
      configuration error, never a silent zero.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date
from decimal import Decimal
from uuid import UUID

from payroll_kernel.domain.types import AllowanceType, EmployeeTaxProfile
from payroll_kernel.logging_config import get_logger
from payroll_engines.rule_resolver import RuleSetResolver
from payroll_engines.wage_period import WagePeriodSpec

logger = get_logger("engines.allowance")

ZERO = Decimal("0")
HUNDRED = Decimal("100")

REASON_NON_RESIDENT = "non_resident"
REASON_APPLIED = "applied"
REASON_CAPPED = "capped_at_income"


@dataclass(frozen=True)
class AllowanceResult:
    """Outcome of resolving the tax-free sum for one paycheck."""

    applied_amount: Decimal
    prorated_amount: Decimal
    annual_amount: Decimal
    annual_fraction: Decimal
    reason: str
    allowance_id: UUID | None = None
    allowance_version: int | None = None
    is_percentage: bool = False

    @classmethod
    def zero(cls, reason: str, annual_fraction: Decimal) -> "AllowanceResult":
        return cls(
            applied_amount=ZERO,
            prorated_amount=ZERO,
            annual_amount=ZERO,
            annual_fraction=annual_fraction,
            reason=reason,
        )


@dataclass(frozen=True)
class CappedAllowanceResult:
    """Exempt part of one capped payment (holiday allowance, gratuity)."""

    applied: Decimal
    remaining_for_year: Decimal
    taxable_amount: Decimal


def prorate(annual_amount: Decimal, wage_period: WagePeriodSpec) -> Decimal:
    """Annual figure times the wage period's share of the 364-day year."""
    return annual_amount * wage_period.annual_fraction


class AllowanceResolver:
    """Resolves the tax-free sum for a profile and wage period."""

    def __init__(self, resolver: RuleSetResolver):
        self._resolver = resolver

    def resolve(
        self,
        profile: EmployeeTaxProfile,
        wage_period: WagePeriodSpec,
        as_of: date,
        eligible_income: Decimal,
    ) -> AllowanceResult:
        """
        Tax-free sum for one paycheck.

        Args:
            profile: The employee's tax profile.
            wage_period: Normalized wage period of the paycheck.
            as_of: The wage period end date; residency is evaluated here.
            eligible_income: Regular taxable income after pre-tax
                deductions.  The applied amount is capped at this figure.
        """
        fraction = wage_period.annual_fraction

        if not profile.is_resident_as_of(as_of):
            logger.info(
                "allowance_skipped_non_resident",
                extra={"employee_id": str(profile.employee_id), "as_of": as_of},
            )
            return AllowanceResult.zero(REASON_NON_RESIDENT, fraction)

        allowance = self._resolver.resolve_allowance(
            profile.jurisdiction, AllowanceType.TAX_FREE_SUM, as_of,
        )

        income = max(Decimal(eligible_income), ZERO)
        if allowance.is_percentage:
            # Already expressed against this paycheck's income
            prorated = income * allowance.amount / HUNDRED
        else:
            prorated = prorate(allowance.amount, wage_period)

        applied = min(prorated, income)
        return AllowanceResult(
            applied_amount=applied,
            prorated_amount=prorated,
            annual_amount=allowance.amount,
            annual_fraction=fraction,
            reason=REASON_CAPPED if applied < prorated else REASON_APPLIED,
            allowance_id=allowance.allowance_id,
            allowance_version=allowance.version,
            is_percentage=allowance.is_percentage,
        )


def apply_capped_allowance(
    amount: Decimal,
    annual_cap: Decimal,
    used_to_date: Decimal,
) -> CappedAllowanceResult:
    """
    Exempt as much of ``amount`` as the remaining yearly cap allows.

    ``used_to_date`` is the exempt amount already applied on finalized
    paychecks in the same calendar year.
    """
    payment = max(Decimal(amount), ZERO)
    remaining = max(annual_cap - used_to_date, ZERO)
    applied = min(payment, remaining)
    return CappedAllowanceResult(
        applied=applied,
        remaining_for_year=remaining - applied,
        taxable_amount=payment - applied,
    )
