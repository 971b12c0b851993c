"""
WagePeriod Normalizer -- canonical day counts and annual fractions.

Responsibility:
    Converts a wage-period type (loontijdvak) into a WagePeriodSpec carrying
    the canonical day count and the fraction of the 364-day statutory year
    the paycheck covers.  Every allowance proration and every bracket
    table conversion is derived from the resulting WagePeriodSpec.

Architecture position:
    Engines -- pure calculation layer, zero I/O.

Invariants enforced:
    - Canonical days: yearly=364, monthly=30.33, weekly=7, daily=1.
    - ``annual_fraction = periods_covered * days_in_period / 364``.
    - Malformed input is rejected before any calculation begins.

Failure modes:
    - InvalidWagePeriodError for an unknown period type,
      ``periods_covered <= 0`` or ``days_in_period <= 0``.
"""

from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal

from payroll_kernel.domain.types import WagePeriodType
from payroll_kernel.exceptions import InvalidWagePeriodError

ANNUAL_DAYS = Decimal("364")

CANONICAL_DAYS: dict[WagePeriodType, Decimal] = {
    WagePeriodType.YEARLY: Decimal("364"),
    WagePeriodType.MONTHLY: Decimal("30.33"),
    WagePeriodType.WEEKLY: Decimal("7"),
    WagePeriodType.DAILY: Decimal("1"),
}

# Working-day convention for daily wages (used when counting bonus periods)
PERIODS_PER_YEAR: dict[WagePeriodType, int] = {
    WagePeriodType.YEARLY: 1,
    WagePeriodType.MONTHLY: 12,
    WagePeriodType.WEEKLY: 52,
    WagePeriodType.DAILY: 260,
}


@dataclass(frozen=True)
class WagePeriodSpec:
    """A normalized wage period."""

    period_type: WagePeriodType
    periods_covered: Decimal
    days_in_period: Decimal

    @property
    def covered_days(self) -> Decimal:
        return self.periods_covered * self.days_in_period

    @property
    def annual_fraction(self) -> Decimal:
        """Fraction of the statutory year covered, unrounded."""
        return self.covered_days / ANNUAL_DAYS

    def conversion_factor(self, bracket_period: WagePeriodType) -> Decimal:
        """Multiplier converting this period's income into ``bracket_period`` terms.

        Exactly 1 when the paycheck covers one canonical period of the
        bracket table's own type.
        """
        target_days = CANONICAL_DAYS[bracket_period]
        if target_days == self.covered_days:
            return Decimal("1")
        return target_days / self.covered_days

    def single(self) -> "WagePeriodSpec":
        """The same period type covering exactly one period."""
        return WagePeriodSpec(
            period_type=self.period_type,
            periods_covered=Decimal("1"),
            days_in_period=self.days_in_period,
        )


def _coerce_period_type(period_type: WagePeriodType | str) -> WagePeriodType:
    if isinstance(period_type, WagePeriodType):
        return period_type
    try:
        return WagePeriodType(str(period_type).strip().lower())
    except ValueError:
        raise InvalidWagePeriodError(
            period_type,
            f"expected one of {', '.join(t.value for t in WagePeriodType)}",
        ) from None


def canonical_days(period_type: WagePeriodType | str) -> Decimal:
    """Canonical day count for a wage period type."""
    return CANONICAL_DAYS[_coerce_period_type(period_type)]


def normalize_wage_period(
    period_type: WagePeriodType | str,
    periods_covered: Decimal | int | str = 1,
    days_in_period: Decimal | int | str | None = None,
) -> WagePeriodSpec:
    """
    Build a WagePeriodSpec.

    Args:
        period_type: yearly, monthly, weekly or daily.
        periods_covered: How many periods the paycheck covers; may be
            fractional (e.g. 0.5 for a half month).
        days_in_period: Override of the canonical day count.

    Raises:
        InvalidWagePeriodError: On any malformed input.
    """
    resolved_type = _coerce_period_type(period_type)

    try:
        covered = Decimal(str(periods_covered))
    except ArithmeticError:
        raise InvalidWagePeriodError(periods_covered, "periods_covered is not a number") from None
    if not covered.is_finite() or covered <= 0:
        raise InvalidWagePeriodError(periods_covered, "periods_covered must be positive")

    if days_in_period is None:
        days = CANONICAL_DAYS[resolved_type]
    else:
        try:
            days = Decimal(str(days_in_period))
        except ArithmeticError:
            raise InvalidWagePeriodError(days_in_period, "days_in_period is not a number") from None
        if not days.is_finite() or days <= 0:
            raise InvalidWagePeriodError(days_in_period, "days_in_period must be positive")

    return WagePeriodSpec(
        period_type=resolved_type,
        periods_covered=covered,
        days_in_period=days,
    )
