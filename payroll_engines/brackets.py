"""
Bracket Tax Calculator -- progressive schedules over Decimal income.

Responsibility:
    Pure functions over a sorted bracket list and a taxable income value:
    the per-bracket marginal sum, the precomputed cumulative-base lookup,
    and the bracket table validation both depend on.

Architecture position:
    Engines -- pure calculation layer, zero I/O.

Invariants enforced:
    - Negative taxable income is treated as zero.
    - Nothing is rounded here.  Callers round once, on the final total of a
      component, with ``round_money``.
    - The cumulative-base path (``fixed_amount`` + marginal rate) agrees
      with an independent per-bracket recomputation for every income.
    - Bracket tables are contiguous, non-overlapping, start at zero and
      have at most one open-ended top bracket.

Failure modes:
    - BracketTableError for an invalid table.
"""

from __future__ import annotations

from dataclasses import dataclass, replace
from functools import lru_cache
from decimal import Decimal
from typing import Sequence

from payroll_kernel.domain.types import CalculationMethod, TaxBracket, TaxRuleSet
from payroll_kernel.exceptions import BracketTableError
from payroll_kernel.logging_config import get_logger
from payroll_engines.wage_period import WagePeriodSpec

logger = get_logger("engines.brackets")

ZERO = Decimal("0")
HUNDRED = Decimal("100")

# Stored fixed amounts may be rounded to cents
CUMULATIVE_BASE_TOLERANCE = Decimal("0.01")


@dataclass(frozen=True)
class BracketLine:
    """Tax attributable to one bracket."""

    order: int
    income_min: Decimal
    income_max: Decimal | None
    rate_percentage: Decimal
    taxable_in_bracket: Decimal
    tax: Decimal


@dataclass(frozen=True)
class BracketTaxResult:
    """Unrounded tax on one income figure, with per-bracket breakdown.

    ``income`` and ``lines`` are in the bracket table's own period terms;
    ``tax`` is converted back to the paycheck's period.
    """

    income: Decimal
    tax: Decimal
    lines: tuple[BracketLine, ...] = ()
    conversion_factor: Decimal = Decimal("1")

    @property
    def effective_rate(self) -> Decimal:
        if self.income == ZERO:
            return ZERO
        return self.tax * self.conversion_factor / self.income


def _sorted(brackets: Sequence[TaxBracket]) -> list[TaxBracket]:
    return sorted(brackets, key=lambda b: b.order)


def validate_bracket_table(
    brackets: Sequence[TaxBracket],
    rule_set_id: str = "",
    require_cumulative_bases: bool = False,
) -> tuple[TaxBracket, ...]:
    """
    Check a bracket table and return it sorted by ``order``.

    Args:
        brackets: The table.
        rule_set_id: Identifier used in error messages.
        require_cumulative_bases: Also require every ``fixed_amount`` to
            equal the tax on all income below ``income_min``.

    Raises:
        BracketTableError: Empty table, duplicate order, gap, overlap,
            misplaced open bracket, bad bound or bad rate.
    """
    if not brackets:
        raise BracketTableError(rule_set_id, "no brackets")

    ordered = _sorted(brackets)
    orders = [b.order for b in ordered]
    if len(set(orders)) != len(orders):
        raise BracketTableError(rule_set_id, f"duplicate bracket order in {orders}")

    if ordered[0].income_min != ZERO:
        raise BracketTableError(rule_set_id, "first bracket must start at 0")

    for index, bracket in enumerate(ordered):
        if not ZERO <= bracket.rate_percentage <= HUNDRED:
            raise BracketTableError(
                rule_set_id,
                f"bracket {bracket.order} rate {bracket.rate_percentage} outside 0..100",
            )
        is_last = index == len(ordered) - 1
        if bracket.income_max is None:
            if not is_last:
                raise BracketTableError(
                    rule_set_id, f"bracket {bracket.order} is open-ended but not last",
                )
            continue
        if bracket.income_max <= bracket.income_min:
            raise BracketTableError(
                rule_set_id, f"bracket {bracket.order} income_max must exceed income_min",
            )
        if not is_last:
            following = ordered[index + 1]
            if following.income_min > bracket.income_max:
                raise BracketTableError(
                    rule_set_id,
                    f"gap between {bracket.income_max} and {following.income_min}",
                )
            if following.income_min < bracket.income_max:
                raise BracketTableError(
                    rule_set_id,
                    f"overlap between brackets {bracket.order} and {following.order}",
                )

    if require_cumulative_bases:
        for stored, expected in zip(ordered, cumulative_bases(ordered)):
            if abs(stored.fixed_amount - expected.fixed_amount) > CUMULATIVE_BASE_TOLERANCE:
                raise BracketTableError(
                    rule_set_id,
                    f"bracket {stored.order} fixed_amount {stored.fixed_amount} "
                    f"does not match cumulative base {expected.fixed_amount}",
                )

    return tuple(ordered)


@lru_cache(maxsize=256)
def checked_brackets(rule_set: TaxRuleSet) -> tuple[TaxBracket, ...]:
    """
    The rule set's table, sorted, after the same checks publication applies.

    Catalogs can reach the calculator without going through publication,
    so every table is checked before its first use.  Results are cached
    per rule set version.

    Raises:
        BracketTableError: Gap, overlap or other invalid table.
    """
    try:
        return validate_bracket_table(
            rule_set.brackets,
            rule_set_id=rule_set.version_key,
            require_cumulative_bases=rule_set.calculation_method is CalculationMethod.GRADUATED,
        )
    except BracketTableError as exc:
        logger.error(
            "bracket_table_rejected",
            extra={"rule_set_id": str(rule_set.rule_set_id), "reason": exc.reason},
        )
        raise


def cumulative_bases(brackets: Sequence[TaxBracket]) -> tuple[TaxBracket, ...]:
    """Return the table with each ``fixed_amount`` set to the tax below its floor."""
    result: list[TaxBracket] = []
    running = ZERO
    for bracket in _sorted(brackets):
        result.append(replace(bracket, fixed_amount=running))
        if bracket.income_max is not None:
            running += (bracket.income_max - bracket.income_min) * bracket.rate_percentage / HUNDRED
    return tuple(result)


def calculate_bracket_tax(
    income: Decimal,
    brackets: Sequence[TaxBracket],
) -> BracketTaxResult:
    """
    Per-bracket marginal sum.

    For each bracket the taxable slice is ``min(income, max) - min``
    floored at zero; the open-ended top bracket absorbs the remainder.
    """
    taxable = max(Decimal(income), ZERO)
    lines: list[BracketLine] = []
    total = ZERO
    for bracket in _sorted(brackets):
        ceiling = taxable if bracket.income_max is None else min(taxable, bracket.income_max)
        in_bracket = max(ceiling - bracket.income_min, ZERO)
        tax = in_bracket * bracket.rate_percentage / HUNDRED
        total += tax
        lines.append(
            BracketLine(
                order=bracket.order,
                income_min=bracket.income_min,
                income_max=bracket.income_max,
                rate_percentage=bracket.rate_percentage,
                taxable_in_bracket=in_bracket,
                tax=tax,
            )
        )
    return BracketTaxResult(income=taxable, tax=total, lines=tuple(lines))


def calculate_graduated_tax(
    income: Decimal,
    brackets: Sequence[TaxBracket],
) -> BracketTaxResult:
    """
    Cumulative-base lookup: ``fixed_amount`` of the bracket the income falls
    in, plus the marginal rate on the part of income above its floor.

    Requires ``fixed_amount`` to hold the cumulative bases
    (see ``cumulative_bases``).
    """
    taxable = max(Decimal(income), ZERO)
    ordered = _sorted(brackets)
    for bracket in ordered:
        if bracket.contains(taxable):
            marginal = (taxable - bracket.income_min) * bracket.rate_percentage / HUNDRED
            line = BracketLine(
                order=bracket.order,
                income_min=bracket.income_min,
                income_max=bracket.income_max,
                rate_percentage=bracket.rate_percentage,
                taxable_in_bracket=taxable - bracket.income_min,
                tax=bracket.fixed_amount + marginal,
            )
            return BracketTaxResult(
                income=taxable,
                tax=bracket.fixed_amount + marginal,
                lines=(line,),
            )
    # Only reachable when the top bracket is closed and income exceeds it
    last = ordered[-1]
    marginal = (last.income_max - last.income_min) * last.rate_percentage / HUNDRED
    return BracketTaxResult(income=taxable, tax=last.fixed_amount + marginal)


def calculate_flat_tax(income: Decimal, rate_percentage: Decimal) -> BracketTaxResult:
    """Single rate over the whole (non-negative) base."""
    taxable = max(Decimal(income), ZERO)
    tax = taxable * rate_percentage / HUNDRED
    line = BracketLine(
        order=1,
        income_min=ZERO,
        income_max=None,
        rate_percentage=rate_percentage,
        taxable_in_bracket=taxable,
        tax=tax,
    )
    return BracketTaxResult(income=taxable, tax=tax, lines=(line,))


class BracketTaxCalculator:
    """
    Applies a rule set's schedule to a paycheck amount.

    Income for a paycheck is first converted into the bracket table's own
    period (``rule_set.bracket_period``) via its WagePeriodSpec, the
    schedule is applied, and the tax is converted back.  When the paycheck
    covers exactly one canonical period of the table's type the conversion
    factor is exactly 1 and no division takes place.
    """

    def tax_for(
        self,
        rule_set: TaxRuleSet,
        income: Decimal,
        wage_period: WagePeriodSpec,
    ) -> BracketTaxResult:
        brackets = checked_brackets(rule_set)
        factor = wage_period.conversion_factor(rule_set.bracket_period)
        converted = Decimal(income) * factor

        method = rule_set.calculation_method
        if method == CalculationMethod.GRADUATED:
            result = calculate_graduated_tax(converted, brackets)
        elif method == CalculationMethod.FLAT_RATE:
            result = calculate_flat_tax(converted, brackets[0].rate_percentage)
        else:
            result = calculate_bracket_tax(converted, brackets)

        tax = result.tax if factor == 1 else result.tax / factor
        return BracketTaxResult(
            income=result.income,
            tax=tax,
            lines=result.lines,
            conversion_factor=factor,
        )

    def incremental_tax(
        self,
        rule_set: TaxRuleSet,
        base_income: Decimal,
        additional_income: Decimal,
        wage_period: WagePeriodSpec,
    ) -> Decimal:
        """``tax(base + additional) - tax(base)``, unrounded."""
        with_extra = self.tax_for(rule_set, base_income + additional_income, wage_period)
        without = self.tax_for(rule_set, base_income, wage_period)
        return with_extra.tax - without.tax
