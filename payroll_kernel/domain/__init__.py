"""
Pure domain layer.

No ORM, database, clock reads or I/O. All values are immutable and
deterministic.
"""

from payroll_kernel.domain.clock import Clock, DeterministicClock, SystemClock
from payroll_kernel.domain.currency import CurrencyInfo, CurrencyRegistry, round_money
from payroll_kernel.domain.effective import is_effective, windows_overlap
from payroll_kernel.domain.types import (
    Allowance,
    AllowanceType,
    CalculationMethod,
    CalculationType,
    ComponentCategory,
    ComponentTier,
    EmployeeTaxProfile,
    IncomeKind,
    PayComponent,
    ResidencyStatus,
    TaxBracket,
    TaxKind,
    TaxRuleSet,
    TaxType,
    WagePeriodType,
)

__all__ = [
    "Allowance",
    "AllowanceType",
    "CalculationMethod",
    "CalculationType",
    "Clock",
    "ComponentCategory",
    "ComponentTier",
    "CurrencyInfo",
    "CurrencyRegistry",
    "DeterministicClock",
    "EmployeeTaxProfile",
    "IncomeKind",
    "PayComponent",
    "ResidencyStatus",
    "SystemClock",
    "TaxBracket",
    "TaxKind",
    "TaxRuleSet",
    "TaxType",
    "WagePeriodType",
    "is_effective",
    "round_money",
    "windows_overlap",
]
