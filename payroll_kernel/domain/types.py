"""
Payroll domain types -- immutable rule, profile and component values.

Responsibility:
    Defines the frozen value objects the calculation engines consume:
    TaxRuleSet / TaxBracket (progressive schedules and tiered rates),
    Allowance (tax-free sums), EmployeeTaxProfile (residency and overtime
    opt-in), PayComponent (pipeline nodes) and the enums that classify them.

Architecture position:
    Kernel > Domain -- pure functional core, zero I/O.
    ORM models convert to these via ``to_dto()``; engines never see ORM rows.

Invariants enforced:
    - All monetary fields are Decimal, never float.
    - Effective windows are half-open ``[effective_from, effective_to)``.
    - Profile flags hold from their effective date.  Before it, the prior
      value recorded with the last change applies; with none recorded the
      current residency applies and overtime opt-in is off.

Audit relevance:
    ``rule_set_id``, ``allowance_id`` and ``version`` are copied onto every
    paycheck so a historical result can be reproduced from the exact rule
    versions that produced it.
"""

from dataclasses import dataclass, field
from datetime import date
from decimal import Decimal
from enum import Enum
from uuid import UUID

from payroll_kernel.domain.effective import is_effective


class WagePeriodType(str, Enum):
    """Statutory wage period (loontijdvak)."""

    YEARLY = "yearly"
    MONTHLY = "monthly"
    WEEKLY = "weekly"
    DAILY = "daily"


class ResidencyStatus(str, Enum):
    """Tax residency. Only residents receive the tax-free allowance."""

    RESIDENT = "resident"
    NON_RESIDENT = "non_resident"


class TaxType(str, Enum):
    """Kinds of tax rule set a jurisdiction publishes."""

    WAGE_TAX = "wage_tax"
    OVERTIME = "overtime"
    SOCIAL_SECURITY = "social_security"
    MEDICARE = "medicare"


class CalculationMethod(str, Enum):
    """How a rule set's brackets turn income into tax.

    BRACKET   -- per-bracket marginal sum.
    GRADUATED -- precomputed cumulative base (``fixed_amount``) plus the
                 marginal rate of the bracket the income falls in.
    FLAT_RATE -- single rate on the whole base, optionally capped.
    """

    BRACKET = "bracket"
    FLAT_RATE = "flat_rate"
    GRADUATED = "graduated"


class AllowanceType(str, Enum):
    TAX_FREE_SUM = "tax_free_sum"
    HOLIDAY_ALLOWANCE = "holiday_allowance"
    BONUS_GRATUITY = "bonus_gratuity"


class ComponentCategory(str, Enum):
    EARNING = "earning"
    DEDUCTION = "deduction"
    TAX = "tax"
    BENEFIT = "benefit"
    EMPLOYER_COST = "employer_cost"
    REIMBURSEMENT = "reimbursement"


class CalculationType(str, Enum):
    FIXED = "fixed"
    PERCENTAGE = "percentage"
    FORMULA = "formula"
    HOURLY_RATE = "hourly_rate"
    TIERED = "tiered"


class IncomeKind(str, Enum):
    """Which tax treatment a taxable earning receives."""

    REGULAR = "regular"
    OVERTIME = "overtime"
    BONUS = "bonus"


class TaxKind(str, Enum):
    """Which calculator a tax component delegates to."""

    WAGE = "wage"
    BONUS = "bonus"
    OVERTIME = "overtime"
    SOCIAL_SECURITY = "social_security"
    MEDICARE = "medicare"


DEDUCTION_CATEGORIES = frozenset(
    {ComponentCategory.DEDUCTION, ComponentCategory.TAX, ComponentCategory.BENEFIT}
)


@dataclass(frozen=True)
class TaxBracket:
    """One contiguous income range of a schedule.

    ``fixed_amount`` is the cumulative tax owed on all income below
    ``income_min``. ``income_max=None`` marks the open-ended top bracket.
    """

    order: int
    income_min: Decimal
    income_max: Decimal | None
    rate_percentage: Decimal
    fixed_amount: Decimal = Decimal("0")

    @property
    def rate(self) -> Decimal:
        return self.rate_percentage / Decimal("100")

    def contains(self, income: Decimal) -> bool:
        if income < self.income_min:
            return False
        return self.income_max is None or income < self.income_max


@dataclass(frozen=True)
class TaxRuleSet:
    """A published, effective-dated tax schedule.

    ``bracket_period`` is the wage period the bracket bounds are expressed
    in. Income for any other period is converted before lookup.
    """

    rule_set_id: UUID
    jurisdiction: str
    tax_type: TaxType
    calculation_method: CalculationMethod
    effective_from: date
    brackets: tuple[TaxBracket, ...]
    effective_to: date | None = None
    annual_cap: Decimal | None = None
    bracket_period: WagePeriodType = WagePeriodType.YEARLY
    name: str = ""
    version: int = 1

    def is_effective(self, as_of: date) -> bool:
        return is_effective(self.effective_from, self.effective_to, as_of)

    @property
    def sorted_brackets(self) -> tuple[TaxBracket, ...]:
        return tuple(sorted(self.brackets, key=lambda b: b.order))

    @property
    def version_key(self) -> str:
        return f"{self.jurisdiction}:{self.tax_type.value}:v{self.version}"


@dataclass(frozen=True)
class Allowance:
    """A tax-free allowance.

    For ``tax_free_sum`` a fixed ``amount`` is an annual figure prorated
    by wage period. For ``holiday_allowance`` and ``bonus_gratuity`` the
    amount is the yearly exempt cap.
    """

    allowance_id: UUID
    allowance_type: AllowanceType
    jurisdiction: str
    amount: Decimal
    effective_from: date
    is_percentage: bool = False
    effective_to: date | None = None
    name: str = ""
    version: int = 1

    def is_effective(self, as_of: date) -> bool:
        return is_effective(self.effective_from, self.effective_to, as_of)


@dataclass(frozen=True)
class EmployeeTaxProfile:
    """Read-only tax profile of one employee."""

    employee_id: UUID
    jurisdiction: str
    residency_status: ResidencyStatus
    residency_effective_date: date
    overtime_opt_in: bool = False
    overtime_opt_in_date: date | None = None
    filing_status: str | None = None
    wage_period_type: WagePeriodType = WagePeriodType.MONTHLY
    prior_residency_status: ResidencyStatus | None = None
    prior_overtime_opt_in: bool | None = None

    def residency_as_of(self, as_of: date) -> ResidencyStatus:
        if as_of >= self.residency_effective_date or self.prior_residency_status is None:
            return self.residency_status
        return self.prior_residency_status

    def is_resident_as_of(self, as_of: date) -> bool:
        return self.residency_as_of(as_of) is ResidencyStatus.RESIDENT

    def overtime_opted_in_as_of(self, as_of: date) -> bool:
        if self.overtime_opt_in_date is None or as_of >= self.overtime_opt_in_date:
            return self.overtime_opt_in
        return bool(self.prior_overtime_opt_in)


@dataclass(frozen=True)
class ComponentTier:
    """One tier of a ``tiered`` pay component (bounds on the base amount)."""

    lower: Decimal
    upper: Decimal | None
    rate_percentage: Decimal


@dataclass(frozen=True)
class PayComponent:
    """A node in an organization's pay component graph."""

    code: str
    category: ComponentCategory
    calculation_type: CalculationType
    sequence_order: int = 0
    depends_on: tuple[str, ...] = ()
    is_taxable: bool = True
    affects_gross_pay: bool = True
    affects_net_pay: bool = True
    name: str = ""
    is_pre_tax: bool = False
    income_kind: IncomeKind = IncomeKind.REGULAR
    tax_kind: TaxKind | None = None
    amount: Decimal | None = None
    rate: Decimal | None = None
    percentage: Decimal | None = None
    formula: str | None = None
    tiers: tuple[ComponentTier, ...] = field(default_factory=tuple)
    allowance_type: AllowanceType | None = None

    @property
    def is_deduction(self) -> bool:
        return self.category in DEDUCTION_CATEGORIES
