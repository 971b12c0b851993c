"""
Pay Component Pipeline -- dependency-ordered composition of a paycheck.

Responsibility:
    Orders an organization's pay components by their declared
    dependencies, computes each component's amount from the running
    totals exposed so far, and accumulates gross pay, taxable income,
    total tax, total deductions and net pay.

Architecture position:
    Engines -- pure calculation layer, zero I/O.  Tax amounts are
    delegated to a TaxStage supplied by the paycheck calculator.

Invariants enforced:
    - Execution order is a topological order of ``depends_on``; ties are
      broken by ascending ``(sequence_order, code)``.
    - A dependency cycle raises before any amount is computed.
    - Each component amount is rounded exactly once (ROUND_HALF_UP); all
      totals are sums of rounded amounts.
    - No taxable earning or pre-tax deduction may run after a tax
      component, so every tax sees its complete base.

Failure modes:
    - ComponentDependencyCycleError, UnknownComponentDependencyError,
      InvalidComponentConfigurationError.
"""

from __future__ import annotations

import heapq
from collections.abc import Mapping, Sequence
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Protocol

from payroll_kernel.domain.currency import round_money
from payroll_kernel.domain.types import (
    AllowanceType,
    CalculationType,
    ComponentCategory,
    IncomeKind,
    PayComponent,
)
from payroll_kernel.exceptions import (
    ComponentDependencyCycleError,
    InvalidComponentConfigurationError,
    UnknownComponentDependencyError,
)
from payroll_kernel.logging_config import get_logger
from payroll_engines.formula import evaluate_formula, validate_formula

logger = get_logger("engines.pipeline")

ZERO = Decimal("0")
HUNDRED = Decimal("100")

_EARNING_CATEGORIES = frozenset({ComponentCategory.EARNING, ComponentCategory.REIMBURSEMENT})
_DEDUCTION_CATEGORIES = frozenset({ComponentCategory.DEDUCTION, ComponentCategory.BENEFIT})


@dataclass(frozen=True)
class ComponentInput:
    """Per-paycheck input for one component (an earnings[] or deductions[] entry)."""

    code: str
    amount: Decimal | None = None
    quantity: Decimal | None = None
    rate: Decimal | None = None


@dataclass(frozen=True)
class PaycheckComponentResult:
    """One itemized paycheck line. Immutable once the paycheck is finalized."""

    component_code: str
    amount: Decimal
    is_deduction: bool
    is_taxable: bool
    category: ComponentCategory
    exempt_amount: Decimal = ZERO
    allowance_type: AllowanceType | None = None


@dataclass
class RunningTotals:
    """Totals exposed to each component as the pipeline advances."""

    gross_pay: Decimal = ZERO
    taxable_regular: Decimal = ZERO
    taxable_overtime: Decimal = ZERO
    taxable_bonus: Decimal = ZERO
    pre_tax_deductions: Decimal = ZERO
    total_tax: Decimal = ZERO
    total_deductions: Decimal = ZERO
    employer_costs: Decimal = ZERO
    net_pay: Decimal = ZERO
    amounts: dict[str, Decimal] = field(default_factory=dict)

    @property
    def regular_taxable_income(self) -> Decimal:
        """Regular taxable earnings after pre-tax deductions."""
        return self.taxable_regular - self.pre_tax_deductions

    @property
    def taxable_income(self) -> Decimal:
        return (
            self.taxable_regular + self.taxable_overtime + self.taxable_bonus
            - self.pre_tax_deductions
        )

    def add_taxable(self, kind: IncomeKind, amount: Decimal) -> None:
        if kind is IncomeKind.OVERTIME:
            self.taxable_overtime += amount
        elif kind is IncomeKind.BONUS:
            self.taxable_bonus += amount
        else:
            self.taxable_regular += amount

    def formula_values(self) -> dict[str, Decimal]:
        values = dict(self.amounts)
        values["gross_pay"] = self.gross_pay
        values["taxable_income"] = self.taxable_income
        values["net_pay"] = self.net_pay
        return values


class TaxStage(Protocol):
    """Computes tax components and capped exemptions for the pipeline."""

    def exempt_amount(self, component: PayComponent, amount: Decimal) -> Decimal:
        ...

    def tax_amount(self, component: PayComponent, totals: RunningTotals) -> Decimal:
        ...

    @property
    def allowance_applied(self) -> Decimal:
        ...


@dataclass(frozen=True)
class PipelineResult:
    gross_pay: Decimal
    taxable_income: Decimal
    total_tax: Decimal
    total_deductions: Decimal
    net_pay: Decimal
    components: tuple[PaycheckComponentResult, ...]
    execution_order: tuple[str, ...]
    taxable_regular: Decimal = ZERO
    taxable_overtime: Decimal = ZERO
    taxable_bonus: Decimal = ZERO
    pre_tax_deductions: Decimal = ZERO
    employer_costs: Decimal = ZERO

    def amount_for(self, code: str) -> Decimal:
        return sum(
            (c.amount for c in self.components if c.component_code == code), ZERO,
        )


def _find_cycle(remaining: set[str], by_code: Mapping[str, PayComponent]) -> list[str]:
    """Walk dependency edges inside ``remaining`` until a node repeats."""
    start = min(remaining)
    path: list[str] = []
    seen: dict[str, int] = {}
    node = start
    while node not in seen:
        seen[node] = len(path)
        path.append(node)
        node = min(d for d in by_code[node].depends_on if d in remaining)
    return path[seen[node]:]


def build_execution_order(components: Sequence[PayComponent]) -> tuple[PayComponent, ...]:
    """
    Topologically sort components (Kahn's algorithm).

    Among components whose dependencies are satisfied, the one with the
    lowest ``(sequence_order, code)`` runs first.

    Raises:
        InvalidComponentConfigurationError: Duplicate component code.
        UnknownComponentDependencyError: A dependency names no component.
        ComponentDependencyCycleError: The dependency graph has a cycle.
    """
    by_code: dict[str, PayComponent] = {}
    for component in components:
        if component.code in by_code:
            raise InvalidComponentConfigurationError(component.code, "duplicate component code")
        by_code[component.code] = component

    dependents: dict[str, list[str]] = {code: [] for code in by_code}
    indegree: dict[str, int] = {}
    for component in components:
        deps = set(component.depends_on)
        for dep in deps:
            if dep not in by_code:
                raise UnknownComponentDependencyError(component.code, dep)
            dependents[dep].append(component.code)
        indegree[component.code] = len(deps)

    ready = [(c.sequence_order, c.code) for c in components if indegree[c.code] == 0]
    heapq.heapify(ready)
    ordered: list[PayComponent] = []
    while ready:
        _, code = heapq.heappop(ready)
        ordered.append(by_code[code])
        for dependent in dependents[code]:
            indegree[dependent] -= 1
            if indegree[dependent] == 0:
                heapq.heappush(ready, (by_code[dependent].sequence_order, dependent))

    if len(ordered) < len(by_code):
        remaining = {code for code, degree in indegree.items() if degree > 0}
        cycle = _find_cycle(remaining, by_code)
        logger.error("component_dependency_cycle", extra={"component_codes": cycle})
        raise ComponentDependencyCycleError(cycle)

    return tuple(ordered)


def validate_component(component: PayComponent) -> None:
    """Static configuration checks for a single component."""
    if component.category is ComponentCategory.TAX:
        if component.tax_kind is None:
            raise InvalidComponentConfigurationError(component.code, "tax component needs tax_kind")
        return
    ctype = component.calculation_type
    if ctype is CalculationType.PERCENTAGE and component.percentage is None:
        raise InvalidComponentConfigurationError(component.code, "percentage is required")
    if ctype is CalculationType.FORMULA:
        if not component.formula:
            raise InvalidComponentConfigurationError(component.code, "formula is required")
        errors = validate_formula(component.formula)
        if errors:
            raise InvalidComponentConfigurationError(
                component.code, "; ".join(e.message for e in errors),
            )
    if ctype is CalculationType.TIERED and not component.tiers:
        raise InvalidComponentConfigurationError(component.code, "tiers are required")


class PayComponentPipeline:
    """
    Executes a component graph for one paycheck.

    Construct once per component configuration; ``run`` is pure and may be
    called for any number of paychecks.
    """

    def __init__(self, components: Sequence[PayComponent], currency: str = "SRD"):
        for component in components:
            validate_component(component)
        self._order = build_execution_order(components)
        self._currency = currency

    @property
    def execution_order(self) -> tuple[PayComponent, ...]:
        return self._order

    def component(self, code: str) -> PayComponent | None:
        for component in self._order:
            if component.code == code:
                return component
        return None

    def run(
        self,
        inputs: Mapping[str, ComponentInput],
        tax_stage: TaxStage,
    ) -> PipelineResult:
        totals = RunningTotals()
        lines: list[PaycheckComponentResult] = []
        tax_started = False

        for component in self._order:
            component_input = inputs.get(component.code)
            category = component.category

            if category is ComponentCategory.TAX:
                raw = tax_stage.tax_amount(component, totals)
                tax_started = True
            else:
                raw = self._compute(component, component_input, totals)
                if raw is None:
                    totals.amounts[component.code] = ZERO
                    continue
                if tax_started and (
                    (category in _EARNING_CATEGORIES and component.is_taxable)
                    or (category in _DEDUCTION_CATEGORIES and component.is_pre_tax)
                ):
                    raise InvalidComponentConfigurationError(
                        component.code,
                        "affects taxable income but is ordered after a tax component",
                    )

            amount = round_money(raw, self._currency)
            totals.amounts[component.code] = amount
            exempt = self._accumulate(component, amount, totals, tax_stage)

            if category is ComponentCategory.TAX and amount == ZERO and component_input is None:
                continue
            lines.append(
                PaycheckComponentResult(
                    component_code=component.code,
                    amount=amount,
                    is_deduction=component.is_deduction,
                    is_taxable=component.is_taxable,
                    category=category,
                    exempt_amount=exempt,
                    allowance_type=component.allowance_type,
                )
            )

        allowance = round_money(tax_stage.allowance_applied, self._currency)
        return PipelineResult(
            gross_pay=totals.gross_pay,
            taxable_income=max(totals.taxable_income - allowance, ZERO),
            total_tax=totals.total_tax,
            total_deductions=totals.total_deductions,
            net_pay=totals.net_pay,
            components=tuple(lines),
            execution_order=tuple(c.code for c in self._order),
            taxable_regular=totals.taxable_regular,
            taxable_overtime=totals.taxable_overtime,
            taxable_bonus=totals.taxable_bonus,
            pre_tax_deductions=totals.pre_tax_deductions,
            employer_costs=totals.employer_costs,
        )

    def _accumulate(
        self,
        component: PayComponent,
        amount: Decimal,
        totals: RunningTotals,
        tax_stage: TaxStage,
    ) -> Decimal:
        """Fold a rounded amount into the totals; returns the exempt part."""
        category = component.category
        exempt = ZERO
        if category in _EARNING_CATEGORIES:
            if component.affects_gross_pay:
                totals.gross_pay += amount
            if component.is_taxable:
                if component.allowance_type is not None:
                    exempt = round_money(
                        tax_stage.exempt_amount(component, amount), self._currency,
                    )
                totals.add_taxable(component.income_kind, amount - exempt)
            if component.affects_net_pay:
                totals.net_pay += amount
        elif category in _DEDUCTION_CATEGORIES:
            totals.total_deductions += amount
            if component.is_pre_tax:
                totals.pre_tax_deductions += amount
            if component.affects_net_pay:
                totals.net_pay -= amount
        elif category is ComponentCategory.TAX:
            totals.total_tax += amount
            if component.affects_net_pay:
                totals.net_pay -= amount
        else:
            totals.employer_costs += amount
        return exempt

    def _base(self, component: PayComponent, totals: RunningTotals) -> Decimal:
        if component.depends_on:
            return sum((totals.amounts.get(d, ZERO) for d in component.depends_on), ZERO)
        return totals.gross_pay

    def _compute(
        self,
        component: PayComponent,
        component_input: ComponentInput | None,
        totals: RunningTotals,
    ) -> Decimal | None:
        """Unrounded amount, or None when the component does not apply."""
        ctype = component.calculation_type
        if component_input is not None and component_input.amount is not None:
            if ctype is not CalculationType.HOURLY_RATE:
                return Decimal(component_input.amount)

        if ctype is CalculationType.FIXED:
            return component.amount

        if ctype is CalculationType.HOURLY_RATE:
            if component_input is None:
                return None
            if component_input.amount is not None and component_input.quantity is None:
                return Decimal(component_input.amount)
            rate = component_input.rate if component_input.rate is not None else component.rate
            if component_input.quantity is None or rate is None:
                raise InvalidComponentConfigurationError(
                    component.code, "hourly_rate needs a quantity and a rate",
                )
            return Decimal(component_input.quantity) * Decimal(rate)

        if ctype is CalculationType.PERCENTAGE:
            return self._base(component, totals) * component.percentage / HUNDRED

        if ctype is CalculationType.TIERED:
            base = max(self._base(component, totals), ZERO)
            total = ZERO
            for tier in component.tiers:
                ceiling = base if tier.upper is None else min(base, tier.upper)
                total += max(ceiling - tier.lower, ZERO) * tier.rate_percentage / HUNDRED
            return total

        return evaluate_formula(component.code, component.formula, totals.formula_values())
