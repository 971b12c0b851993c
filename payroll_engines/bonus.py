"""
Special Bonus (Smoothed) Tax Calculator -- bijzondere beloning.

Responsibility:
    Taxes a bonus as the sum of the additional tax it would have caused if
    it had been paid evenly across the wage periods (loontijdvakken) it
    covers, instead of at the marginal rate of the period it is paid in.

Architecture position:
    Engines -- pure calculation layer, zero I/O.

Algorithm:
    1. ``average = bonus_amount / loontijdvakken_covered``.
    2. For each regular income period, resolve that period's own wage tax
       rule set (as of the period end) and compute
       ``tax(income + average) - tax(income)``.
    3. The bonus tax is the sum of the increments.  It replaces, not adds
       to, a marginal-rate calculation on the bonus.

Fallback policy (data sufficiency, not an error):
    - Fewer history periods than ``loontijdvakken_covered``: the bonus is
      spread over the available periods only (``average = bonus / n``).
    - No history at all: the current paycheck's regular taxable income is
      used as the single period.
    Both set ``fallback_applied`` on the result and log a warning, except
    for a one-period bonus without history, which is simply taxed in the
    current period.

Failure modes:
    - InvalidBonusConfigurationError: ``loontijdvakken_covered < 1`` or
      more history periods than covered periods.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date
from decimal import Decimal
from uuid import UUID

from payroll_kernel.domain.types import TaxType, WagePeriodType
from payroll_kernel.exceptions import InvalidBonusConfigurationError
from payroll_kernel.logging_config import get_logger
from payroll_engines.brackets import BracketTaxCalculator
from payroll_engines.rule_resolver import RuleSetResolver
from payroll_engines.tracer import traced_engine
from payroll_engines.wage_period import PERIODS_PER_YEAR, WagePeriodSpec

logger = get_logger("engines.bonus")

ZERO = Decimal("0")

FALLBACK_PARTIAL_HISTORY = "partial_history"
FALLBACK_CURRENT_PERIOD = "current_period_only"


@dataclass(frozen=True)
class RegularIncomePeriod:
    """Regular taxable income of one past wage period."""

    period_end: date
    income: Decimal


@dataclass(frozen=True)
class BonusContext:
    """Inputs for smoothing one bonus payment."""

    bonus_amount: Decimal
    bonus_type: str
    loontijdvakken_covered: int
    regular_income_periods: tuple[RegularIncomePeriod, ...] = ()

    @classmethod
    def for_bonus_type(
        cls,
        bonus_amount: Decimal,
        bonus_type: str,
        period_type: WagePeriodType,
        regular_income_periods: tuple[RegularIncomePeriod, ...] = (),
    ) -> "BonusContext":
        """Derive ``loontijdvakken_covered`` from the bonus type."""
        return cls(
            bonus_amount=bonus_amount,
            bonus_type=bonus_type,
            loontijdvakken_covered=loontijdvakken_for_bonus_type(bonus_type, period_type),
            regular_income_periods=tuple(regular_income_periods),
        )


@dataclass(frozen=True)
class BonusPeriodLine:
    period_end: date
    income: Decimal
    rule_set_id: UUID
    rule_set_version: int
    tax_without_bonus: Decimal
    tax_with_bonus: Decimal
    increment: Decimal


@dataclass(frozen=True)
class BonusTaxResult:
    """Smoothed bonus tax, unrounded, with one line per period used."""

    bonus_amount: Decimal
    loontijdvakken_covered: int
    periods_used: int
    average_per_period: Decimal
    tax: Decimal
    lines: tuple[BonusPeriodLine, ...] = ()
    fallback_applied: bool = False
    fallback_reason: str | None = None

    @classmethod
    def zero(cls, context: BonusContext) -> "BonusTaxResult":
        return cls(
            bonus_amount=Decimal(context.bonus_amount),
            loontijdvakken_covered=context.loontijdvakken_covered,
            periods_used=0,
            average_per_period=ZERO,
            tax=ZERO,
        )

    @property
    def rule_set_ids(self) -> tuple[UUID, ...]:
        seen: dict[UUID, None] = {}
        for line in self.lines:
            seen.setdefault(line.rule_set_id, None)
        return tuple(seen)


_PERIODS_DIVISOR = {
    "quarterly": 4,
    "semi_annual": 2,
}
_ONE_PERIOD = frozenset({"spot", "performance", "monthly"})
_FULL_YEAR = frozenset({"annual", "13th_month", "thirteenth_month", "year_end"})


def loontijdvakken_for_bonus_type(bonus_type: str, period_type: WagePeriodType) -> int:
    """
    Number of wage periods a bonus of this type covers.

    Spot, performance and monthly bonuses cover one period; quarterly and
    semi-annual bonuses cover a quarter or half of the year's periods;
    annual and 13th-month payments cover the whole year.  Unknown types
    are treated as one period.
    """
    key = (bonus_type or "").strip().lower().replace("-", "_")
    periods = PERIODS_PER_YEAR[WagePeriodType(period_type)]
    if key in _ONE_PERIOD:
        return 1
    if key in _FULL_YEAR:
        return periods
    if key in _PERIODS_DIVISOR:
        return max(1, periods // _PERIODS_DIVISOR[key])
    return 1


class SmoothedBonusCalculator:
    """Computes the smoothed tax attributable to a bonus."""

    def __init__(self, bracket_calculator: BracketTaxCalculator | None = None):
        self._brackets = bracket_calculator or BracketTaxCalculator()

    @traced_engine("bonus_smoothing", "1.0", fingerprint_fields=("context", "current_income"))
    def calculate(
        self,
        *,
        context: BonusContext,
        jurisdiction: str,
        wage_period: WagePeriodSpec,
        resolver: RuleSetResolver,
        current_income: Decimal,
        current_period_end: date,
    ) -> BonusTaxResult:
        """
        Smoothed tax on ``context.bonus_amount``.

        Args:
            context: Bonus amount, covered periods and regular income history.
            jurisdiction: Jurisdiction whose wage tax schedules apply.
            wage_period: Wage period of the paycheck paying the bonus.
            resolver: Effective-dated rule lookup.
            current_income: This paycheck's regular taxable income, used
                when no history is available.
            current_period_end: Resolution date for the current period.
        """
        covered = context.loontijdvakken_covered
        if covered is None or int(covered) != covered or covered < 1:
            raise InvalidBonusConfigurationError(
                "loontijdvakken_covered must be an integer >= 1", covered,
            )

        bonus = Decimal(context.bonus_amount)
        if bonus <= ZERO:
            return BonusTaxResult.zero(context)

        history = tuple(context.regular_income_periods)
        if len(history) > covered:
            raise InvalidBonusConfigurationError(
                f"{len(history)} regular income periods supplied for "
                f"{covered} covered periods",
                covered,
            )

        fallback_reason = None
        if not history:
            # A one-period bonus with no history is taxed in the current period
            if covered > 1:
                fallback_reason = FALLBACK_CURRENT_PERIOD
            periods = ((current_period_end, Decimal(current_income), wage_period),)
        else:
            if len(history) < covered:
                fallback_reason = FALLBACK_PARTIAL_HISTORY
            single = wage_period.single()
            periods = tuple((p.period_end, Decimal(p.income), single) for p in history)

        if fallback_reason is not None:
            logger.warning(
                "bonus_history_fallback",
                extra={
                    "bonus_type": context.bonus_type,
                    "loontijdvakken_covered": covered,
                    "periods_available": len(history),
                    "fallback_reason": fallback_reason,
                },
            )

        average = bonus / len(periods)
        lines: list[BonusPeriodLine] = []
        total = ZERO
        for period_end, income, period_spec in periods:
            rule_set = resolver.resolve(jurisdiction, TaxType.WAGE_TAX, period_end)
            without = self._brackets.tax_for(rule_set, income, period_spec).tax
            with_bonus = self._brackets.tax_for(rule_set, income + average, period_spec).tax
            increment = with_bonus - without
            total += increment
            lines.append(
                BonusPeriodLine(
                    period_end=period_end,
                    income=income,
                    rule_set_id=rule_set.rule_set_id,
                    rule_set_version=rule_set.version,
                    tax_without_bonus=without,
                    tax_with_bonus=with_bonus,
                    increment=increment,
                )
            )

        return BonusTaxResult(
            bonus_amount=bonus,
            loontijdvakken_covered=covered,
            periods_used=len(periods),
            average_per_period=average,
            tax=total,
            lines=tuple(lines),
            fallback_applied=fallback_reason is not None,
            fallback_reason=fallback_reason,
        )
