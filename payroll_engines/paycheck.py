"""
Paycheck Calculator -- one employee, one pay period, gross to net.

Responsibility:
    Validates a paycheck request, runs the pay component pipeline and
    wires its tax components to the rule resolver, allowance resolver,
    bracket calculator, bonus smoothing, overtime tiers and flat-rate
    contributions.  Collects every rule version applied and every
    intermediate breakdown so the assembler can persist them.

Architecture position:
    Engines -- pure calculation layer, zero I/O.  No clock is read; the
    same request and context always produce an equal result.

Invariants enforced:
    - Input errors are raised before any amount is computed.
    - The tax-free sum is resolved once per paycheck, on the wage period
      end date, and only reduces regular (ordinary) taxable income.
    - Rule sets are resolved on the wage period end date; overtime opt-in
      is evaluated on the pay date.
    - A taxable income stream with no tax component to tax it is a
      configuration error, never a silent zero.

Failure modes:
    - CalculationInputError subclasses for malformed requests.
    - ConfigurationError subclasses from resolution, brackets and the
      component graph.
"""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, field, fields, is_dataclass, replace
from datetime import date
from decimal import Decimal
from typing import Any
from uuid import UUID

from payroll_kernel.domain.currency import display_decimal
from payroll_kernel.domain.types import (
    Allowance,
    AllowanceType,
    ComponentCategory,
    EmployeeTaxProfile,
    IncomeKind,
    PayComponent,
    TaxKind,
    TaxRuleSet,
    TaxType,
)
from payroll_kernel.exceptions import (
    InvalidBonusConfigurationError,
    InvalidComponentConfigurationError,
    InvalidPaycheckInputError,
)
from payroll_kernel.logging_config import LogContext, get_logger
from payroll_kernel.utils.hashing import hash_payload
from payroll_engines.allowance import (
    AllowanceResolver,
    AllowanceResult,
    apply_capped_allowance,
)
from payroll_engines.bonus import BonusContext, BonusTaxResult, SmoothedBonusCalculator
from payroll_engines.brackets import BracketLine, BracketTaxCalculator
from payroll_engines.contributions import ContributionResult, calculate_flat_rate_contribution
from payroll_engines.overtime import OvertimeCalculator, OvertimeTaxResult, is_overtime_opted_in
from payroll_engines.pipeline import (
    ComponentInput,
    PayComponentPipeline,
    PaycheckComponentResult,
    PipelineResult,
    RunningTotals,
)
from payroll_engines.rule_resolver import RuleCatalog, RuleSetResolver
from payroll_engines.tracer import traced_engine
from payroll_engines.wage_period import WagePeriodSpec, normalize_wage_period

logger = get_logger("engines.paycheck")

ZERO = Decimal("0")
HUNDRED = Decimal("100")

_EARNING_CATEGORIES = frozenset({ComponentCategory.EARNING, ComponentCategory.REIMBURSEMENT})
_DEDUCTION_CATEGORIES = frozenset({ComponentCategory.DEDUCTION, ComponentCategory.BENEFIT})
_INCOME_TAX_KINDS = frozenset({TaxKind.WAGE, TaxKind.BONUS, TaxKind.OVERTIME})
_CONTRIBUTION_TYPES = {
    TaxKind.SOCIAL_SECURITY: TaxType.SOCIAL_SECURITY,
    TaxKind.MEDICARE: TaxType.MEDICARE,
}


@dataclass(frozen=True)
class PaycheckRequest:
    """Everything that varies per paycheck."""

    employee_id: UUID
    pay_period_start: date
    pay_period_end: date
    pay_date: date
    earnings: tuple[ComponentInput, ...] = ()
    bonus_context: BonusContext | None = None
    deductions: tuple[ComponentInput, ...] = ()
    wage_period: WagePeriodSpec | None = None


@dataclass(frozen=True)
class PaycheckContext:
    """Read-only inputs loaded from repositories for one calculation."""

    profile: EmployeeTaxProfile
    components: tuple[PayComponent, ...]
    catalog: RuleCatalog
    ytd_capped_usage: Mapping[AllowanceType, Decimal] = field(default_factory=dict)
    currency: str = "SRD"


@dataclass(frozen=True)
class AppliedRuleVersion:
    """A rule set or allowance version that contributed to a paycheck."""

    kind: str
    record_id: UUID
    record_type: str
    jurisdiction: str
    version: int

    def to_dict(self) -> dict[str, Any]:
        return {
            "kind": self.kind,
            "id": str(self.record_id),
            "type": self.record_type,
            "jurisdiction": self.jurisdiction,
            "version": self.version,
        }


@dataclass(frozen=True)
class TaxCalculationResult:
    income_tax: Decimal
    social_security_tax: Decimal
    medicare_tax: Decimal
    total_tax: Decimal
    taxable_income: Decimal
    bracket_breakdown: tuple[BracketLine, ...] = ()


@dataclass(frozen=True)
class PaycheckCalculationResult:
    """Outcome of ``PaycheckCalculator.calculate``; carries no timestamps."""

    employee_id: UUID
    pay_period_start: date
    pay_period_end: date
    pay_date: date
    currency: str
    gross_pay: Decimal
    taxable_income: Decimal
    total_tax: Decimal
    total_deductions: Decimal
    net_pay: Decimal
    components: tuple[PaycheckComponentResult, ...]
    tax: TaxCalculationResult
    wage_period: WagePeriodSpec
    allowance: AllowanceResult | None = None
    bonus: BonusTaxResult | None = None
    overtime: OvertimeTaxResult | None = None
    contributions: tuple[ContributionResult, ...] = ()
    applied_rule_versions: tuple[AppliedRuleVersion, ...] = ()
    notes: tuple[str, ...] = ()
    input_fingerprint: str = ""

    @property
    def bonus_fallback_applied(self) -> bool:
        return self.bonus is not None and self.bonus.fallback_applied

    @property
    def allowance_applied(self) -> Decimal:
        return self.allowance.applied_amount if self.allowance is not None else ZERO

    @property
    def proration(self) -> dict[str, Any]:
        return {
            "wage_period_type": self.wage_period.period_type.value,
            "periods_covered": self.wage_period.periods_covered,
            "days_in_period": self.wage_period.days_in_period,
            "annual_fraction": self.wage_period.annual_fraction,
            "allowance_applied": self.allowance_applied,
        }

    @property
    def calculation_details(self) -> dict[str, Any]:
        """Intermediate breakdowns for persistence and audit.

        Unrounded intermediates are trimmed with ``display_decimal``; the
        amounts on the components are the authoritative ones.
        """
        return _reported({
            "proration": self.proration,
            "bracket_breakdown": self.tax.bracket_breakdown,
            "allowance": self.allowance,
            "bonus": self.bonus,
            "overtime": self.overtime,
            "contributions": self.contributions,
            "notes": self.notes,
        })


def _reported(value: Any) -> Any:
    if isinstance(value, Decimal):
        return display_decimal(value)
    if is_dataclass(value) and not isinstance(value, type):
        return {f.name: _reported(getattr(value, f.name)) for f in fields(value)}
    if isinstance(value, Mapping):
        return {key: _reported(item) for key, item in value.items()}
    if isinstance(value, (list, tuple)):
        return [_reported(item) for item in value]
    return value


class PaycheckTaxStage:
    """
    Tax side of one pipeline run.

    Holds the per-paycheck state the tax components share: the lazily
    resolved tax-free sum, the capped exemptions used so far, and the
    breakdowns and rule versions to report.
    """

    def __init__(
        self,
        *,
        profile: EmployeeTaxProfile,
        resolver: RuleSetResolver,
        wage_period: WagePeriodSpec,
        as_of: date,
        pay_date: date,
        bonus_context: BonusContext | None,
        ytd_capped_usage: Mapping[AllowanceType, Decimal],
        bracket_calculator: BracketTaxCalculator,
        bonus_calculator: SmoothedBonusCalculator,
        overtime_calculator: OvertimeCalculator,
    ):
        self._profile = profile
        self._resolver = resolver
        self._wage_period = wage_period
        self._as_of = as_of
        self._bonus_context = bonus_context
        self._ytd = ytd_capped_usage
        self._brackets = bracket_calculator
        self._bonus_calculator = bonus_calculator
        self._overtime_calculator = overtime_calculator
        self._allowance_resolver = AllowanceResolver(resolver)

        self.overtime_opted_in = is_overtime_opted_in(profile, pay_date)
        self.allowance: AllowanceResult | None = None
        self.bracket_breakdown: tuple[BracketLine, ...] = ()
        self.bonus: BonusTaxResult | None = None
        self.overtime: OvertimeTaxResult | None = None
        self.contributions: list[ContributionResult] = []
        self.notes: list[str] = []
        self._applied: dict[UUID, AppliedRuleVersion] = {}
        self._exempt_used: dict[AllowanceType, Decimal] = {}

    @property
    def applied_rule_versions(self) -> tuple[AppliedRuleVersion, ...]:
        return tuple(self._applied.values())

    @property
    def allowance_applied(self) -> Decimal:
        return self.allowance.applied_amount if self.allowance is not None else ZERO

    def _record_rule_set(self, rule_set: TaxRuleSet) -> None:
        self._applied.setdefault(
            rule_set.rule_set_id,
            AppliedRuleVersion(
                kind="rule_set",
                record_id=rule_set.rule_set_id,
                record_type=rule_set.tax_type.value,
                jurisdiction=rule_set.jurisdiction,
                version=rule_set.version,
            ),
        )

    def _record_allowance(self, allowance: Allowance) -> None:
        self._applied.setdefault(
            allowance.allowance_id,
            AppliedRuleVersion(
                kind="allowance",
                record_id=allowance.allowance_id,
                record_type=allowance.allowance_type.value,
                jurisdiction=allowance.jurisdiction,
                version=allowance.version,
            ),
        )

    def _resolve(self, tax_type: TaxType) -> TaxRuleSet:
        rule_set = self._resolver.resolve(self._profile.jurisdiction, tax_type, self._as_of)
        self._record_rule_set(rule_set)
        return rule_set

    def _eligible_income(self, totals: RunningTotals) -> Decimal:
        """Income taxed through the ordinary brackets, before the allowance."""
        income = totals.regular_taxable_income
        if not self.overtime_opted_in:
            income += totals.taxable_overtime
        return income

    def allowance_for(self, totals: RunningTotals) -> AllowanceResult:
        if self.allowance is None:
            self.allowance = self._allowance_resolver.resolve(
                self._profile, self._wage_period, self._as_of, self._eligible_income(totals),
            )
            if self.allowance.allowance_id is not None:
                self._applied.setdefault(
                    self.allowance.allowance_id,
                    AppliedRuleVersion(
                        kind="allowance",
                        record_id=self.allowance.allowance_id,
                        record_type=AllowanceType.TAX_FREE_SUM.value,
                        jurisdiction=self._profile.jurisdiction,
                        version=self.allowance.allowance_version or 1,
                    ),
                )
            else:
                self.notes.append(f"allowance:{self.allowance.reason}")
        return self.allowance

    def _ordinary_base(self, totals: RunningTotals) -> Decimal:
        return self._eligible_income(totals) - self.allowance_for(totals).applied_amount

    # TaxStage protocol

    def exempt_amount(self, component: PayComponent, amount: Decimal) -> Decimal:
        if not self._profile.is_resident_as_of(self._as_of):
            return ZERO
        allowance_type = component.allowance_type
        allowance = self._resolver.find_allowance(
            self._profile.jurisdiction, allowance_type, self._as_of,
        )
        if allowance is None:
            return ZERO
        self._record_allowance(allowance)
        if allowance.is_percentage:
            return max(amount, ZERO) * allowance.amount / HUNDRED

        used = self._ytd.get(allowance_type, ZERO) + self._exempt_used.get(allowance_type, ZERO)
        capped = apply_capped_allowance(amount, allowance.amount, used)
        self._exempt_used[allowance_type] = self._exempt_used.get(allowance_type, ZERO) + capped.applied
        return capped.applied

    def tax_amount(self, component: PayComponent, totals: RunningTotals) -> Decimal:
        kind = component.tax_kind
        if kind is TaxKind.WAGE:
            return self._wage_tax(totals)
        if kind is TaxKind.OVERTIME:
            return self._overtime_tax(totals)
        if kind is TaxKind.BONUS:
            return self._bonus_tax(totals)
        return self._contribution(_CONTRIBUTION_TYPES[kind], totals)

    def _wage_tax(self, totals: RunningTotals) -> Decimal:
        base = self._ordinary_base(totals)
        rule_set = self._resolve(TaxType.WAGE_TAX)
        result = self._brackets.tax_for(rule_set, base, self._wage_period)
        self.bracket_breakdown = result.lines
        return result.tax

    def _overtime_tax(self, totals: RunningTotals) -> Decimal:
        income = totals.taxable_overtime
        if income <= ZERO or not self.overtime_opted_in:
            return ZERO
        rule_set = self._resolve(TaxType.OVERTIME)
        self.overtime = self._overtime_calculator.calculate(
            overtime_income=income, rule_set=rule_set, wage_period=self._wage_period,
        )
        return self.overtime.tax

    def _bonus_tax(self, totals: RunningTotals) -> Decimal:
        income = totals.taxable_bonus
        if income <= ZERO:
            return ZERO
        context = self._bonus_context or BonusContext(
            bonus_amount=income, bonus_type="spot", loontijdvakken_covered=1,
        )
        context = replace(context, bonus_amount=income)
        self.bonus = self._bonus_calculator.calculate(
            context=context,
            jurisdiction=self._profile.jurisdiction,
            wage_period=self._wage_period,
            resolver=self._resolver,
            current_income=self._ordinary_base(totals),
            current_period_end=self._as_of,
        )
        for line in self.bonus.lines:
            self._applied.setdefault(
                line.rule_set_id,
                AppliedRuleVersion(
                    kind="rule_set",
                    record_id=line.rule_set_id,
                    record_type=TaxType.WAGE_TAX.value,
                    jurisdiction=self._profile.jurisdiction,
                    version=line.rule_set_version,
                ),
            )
        if self.bonus.fallback_applied:
            self.notes.append(f"bonus_history_fallback:{self.bonus.fallback_reason}")
        return self.bonus.tax

    def _contribution(self, tax_type: TaxType, totals: RunningTotals) -> Decimal:
        rule_set = self._resolve(tax_type)
        result = calculate_flat_rate_contribution(
            totals.taxable_income, rule_set, self._wage_period,
        )
        self.contributions.append(result)
        return result.amount


class PaycheckCalculator:
    """Pure gross-to-net calculation for one paycheck."""

    def __init__(
        self,
        bracket_calculator: BracketTaxCalculator | None = None,
        bonus_calculator: SmoothedBonusCalculator | None = None,
        overtime_calculator: OvertimeCalculator | None = None,
    ):
        self._brackets = bracket_calculator or BracketTaxCalculator()
        self._bonus = bonus_calculator or SmoothedBonusCalculator(self._brackets)
        self._overtime = overtime_calculator or OvertimeCalculator()

    @traced_engine("paycheck", "1.0")
    def calculate(
        self,
        request: PaycheckRequest,
        context: PaycheckContext,
    ) -> PaycheckCalculationResult:
        """
        Calculate one paycheck.

        Raises:
            CalculationInputError: Malformed request (before any calculation).
            ConfigurationError: Missing/ambiguous rules, bad brackets,
                component cycles or an untaxed income stream.
        """
        profile = context.profile
        with LogContext.bind(employee_id=request.employee_id):
            wage_period = self._validate(request, context)
            pipeline = PayComponentPipeline(context.components, context.currency)
            inputs = self._inputs(request, pipeline)

            stage = PaycheckTaxStage(
                profile=profile,
                resolver=RuleSetResolver(context.catalog),
                wage_period=wage_period,
                as_of=request.pay_period_end,
                pay_date=request.pay_date,
                bonus_context=request.bonus_context,
                ytd_capped_usage=context.ytd_capped_usage,
                bracket_calculator=self._brackets,
                bonus_calculator=self._bonus,
                overtime_calculator=self._overtime,
            )
            result = pipeline.run(inputs, stage)
            self._check_taxed(pipeline, result, stage)

            if result.taxable_overtime > ZERO and not stage.overtime_opted_in:
                stage.notes.append("overtime_taxed_as_wages")

            tax = self._tax_result(pipeline, result, stage)
            fingerprint = self._fingerprint(request, context, wage_period)

            logger.info(
                "paycheck_calculated",
                extra={
                    "gross_pay": result.gross_pay,
                    "taxable_income": result.taxable_income,
                    "total_tax": result.total_tax,
                    "net_pay": result.net_pay,
                    "input_fingerprint": fingerprint,
                },
            )

        return PaycheckCalculationResult(
            employee_id=request.employee_id,
            pay_period_start=request.pay_period_start,
            pay_period_end=request.pay_period_end,
            pay_date=request.pay_date,
            currency=context.currency,
            gross_pay=result.gross_pay,
            taxable_income=result.taxable_income,
            total_tax=result.total_tax,
            total_deductions=result.total_deductions,
            net_pay=result.net_pay,
            components=result.components,
            tax=tax,
            wage_period=wage_period,
            allowance=stage.allowance,
            bonus=stage.bonus,
            overtime=stage.overtime,
            contributions=tuple(stage.contributions),
            applied_rule_versions=stage.applied_rule_versions,
            notes=tuple(stage.notes),
            input_fingerprint=fingerprint,
        )

    # Validation

    def _validate(self, request: PaycheckRequest, context: PaycheckContext) -> WagePeriodSpec:
        if request.employee_id != context.profile.employee_id:
            raise InvalidPaycheckInputError(
                "employee_id", "does not match the tax profile supplied",
            )
        if request.pay_period_start > request.pay_period_end:
            raise InvalidPaycheckInputError(
                "pay_period_start", "must not be after pay_period_end",
            )

        by_code = {c.code: c for c in context.components}
        self._validate_inputs("earnings", request.earnings, by_code, _EARNING_CATEGORIES)
        self._validate_inputs("deductions", request.deductions, by_code, _DEDUCTION_CATEGORIES)

        bonus_context = request.bonus_context
        if bonus_context is not None:
            covered = bonus_context.loontijdvakken_covered
            if covered is None or int(covered) != covered or covered < 1:
                raise InvalidBonusConfigurationError(
                    "loontijdvakken_covered must be an integer >= 1", covered,
                )

        if request.wage_period is not None:
            return request.wage_period
        return normalize_wage_period(context.profile.wage_period_type)

    @staticmethod
    def _validate_inputs(field_name, entries, by_code, categories) -> None:
        seen: set[str] = set()
        for entry in entries:
            component = by_code.get(entry.code)
            if component is None:
                raise InvalidPaycheckInputError(field_name, f"unknown component code {entry.code!r}")
            if component.category not in categories:
                raise InvalidPaycheckInputError(
                    field_name, f"component {entry.code!r} is a {component.category.value}",
                )
            if entry.code in seen:
                raise InvalidPaycheckInputError(field_name, f"duplicate component code {entry.code!r}")
            seen.add(entry.code)
            for attr in ("amount", "quantity", "rate"):
                value = getattr(entry, attr)
                if value is not None and Decimal(value) < ZERO:
                    raise InvalidPaycheckInputError(
                        field_name, f"{entry.code} {attr} must not be negative",
                    )

    def _inputs(
        self,
        request: PaycheckRequest,
        pipeline: PayComponentPipeline,
    ) -> dict[str, ComponentInput]:
        """Merge earnings and deductions; attach a bonus context to its earning."""
        inputs = {e.code: e for e in request.earnings}
        inputs.update({d.code: d for d in request.deductions})

        bonus_context = request.bonus_context
        if bonus_context is None:
            return inputs

        bonus_components = [
            c for c in pipeline.execution_order
            if c.category is ComponentCategory.EARNING and c.income_kind is IncomeKind.BONUS
        ]
        supplied = [inputs[c.code] for c in bonus_components if c.code in inputs]
        if supplied:
            total = sum((Decimal(e.amount or 0) for e in supplied), ZERO)
            if total != Decimal(bonus_context.bonus_amount):
                raise InvalidPaycheckInputError(
                    "bonus_context",
                    f"bonus_amount {bonus_context.bonus_amount} does not match "
                    f"bonus earnings {total}",
                )
            return inputs

        if Decimal(bonus_context.bonus_amount) <= ZERO:
            return inputs
        if not bonus_components:
            raise InvalidPaycheckInputError(
                "bonus_context", "no bonus earning component is configured",
            )
        target = min(bonus_components, key=lambda c: (c.sequence_order, c.code))
        inputs[target.code] = ComponentInput(code=target.code, amount=bonus_context.bonus_amount)
        return inputs

    @staticmethod
    def _check_taxed(
        pipeline: PayComponentPipeline,
        result: PipelineResult,
        stage: PaycheckTaxStage,
    ) -> None:
        kinds = {
            c.tax_kind for c in pipeline.execution_order
            if c.category is ComponentCategory.TAX
        }
        ordinary = result.taxable_regular - result.pre_tax_deductions
        if not stage.overtime_opted_in:
            ordinary += result.taxable_overtime
        if ordinary > ZERO and TaxKind.WAGE not in kinds:
            raise InvalidComponentConfigurationError(
                "wage_tax", "taxable wages present but no wage tax component is configured",
            )
        if result.taxable_bonus > ZERO and TaxKind.BONUS not in kinds:
            raise InvalidComponentConfigurationError(
                "bonus_tax", "bonus income present but no bonus tax component is configured",
            )
        if (
            result.taxable_overtime > ZERO
            and stage.overtime_opted_in
            and TaxKind.OVERTIME not in kinds
        ):
            raise InvalidComponentConfigurationError(
                "overtime_tax", "opted-in overtime present but no overtime tax component is configured",
            )

    @staticmethod
    def _tax_result(
        pipeline: PayComponentPipeline,
        result: PipelineResult,
        stage: PaycheckTaxStage,
    ) -> TaxCalculationResult:
        by_kind: dict[TaxKind, Decimal] = {}
        for line in result.components:
            if line.category is not ComponentCategory.TAX:
                continue
            kind = pipeline.component(line.component_code).tax_kind
            by_kind[kind] = by_kind.get(kind, ZERO) + line.amount

        return TaxCalculationResult(
            income_tax=sum((by_kind.get(k, ZERO) for k in _INCOME_TAX_KINDS), ZERO),
            social_security_tax=by_kind.get(TaxKind.SOCIAL_SECURITY, ZERO),
            medicare_tax=by_kind.get(TaxKind.MEDICARE, ZERO),
            total_tax=result.total_tax,
            taxable_income=result.taxable_income,
            bracket_breakdown=stage.bracket_breakdown,
        )

    @staticmethod
    def _fingerprint(
        request: PaycheckRequest,
        context: PaycheckContext,
        wage_period: WagePeriodSpec,
    ) -> str:
        return hash_payload({
            "request": request,
            "wage_period": wage_period,
            "profile": context.profile,
            "components": context.components,
            "rule_sets": context.catalog.rule_sets,
            "allowances": context.catalog.allowances,
            "ytd_capped_usage": {
                AllowanceType(k).value: v for k, v in context.ytd_capped_usage.items()
            },
            "currency": context.currency,
        })
