"""
Module: payroll_engines
Responsibility:
    Package entrypoint that re-exports the public symbols of the pure
    payroll calculation engines.  This is the canonical import surface for
    payroll_services and payroll_batch.

Architecture position:
    Engines -- pure calculation layer, zero I/O.
    May only import payroll_kernel domain types, exceptions, hashing and
    logging (and sibling engine modules).
    MUST NOT import payroll_services, payroll_batch or the ORM models.

Invariants enforced:
    - Purity: engines never read the clock.  Dates are explicit parameters.
    - Decimal-only arithmetic; rounding happens once per component total.
    - Determinism: identical inputs always produce identical outputs.

Audit relevance:
    Engine invocations are traced via ``@traced_engine`` (see
    ``payroll_engines.tracer``), emitting PAYROLL_ENGINE_TRACE records.

Usage:
    from payroll_engines import PaycheckCalculator, PaycheckRequest, PaycheckContext
    from payroll_engines.brackets import calculate_bracket_tax
    from payroll_engines.wage_period import normalize_wage_period
"""

from payroll_kernel.logging_config import get_logger

logger = get_logger("engines")

from payroll_engines.allowance import (
    AllowanceResolver,
    AllowanceResult,
    CappedAllowanceResult,
    apply_capped_allowance,
    prorate,
)
from payroll_engines.bonus import (
    BonusContext,
    BonusPeriodLine,
    BonusTaxResult,
    RegularIncomePeriod,
    SmoothedBonusCalculator,
    loontijdvakken_for_bonus_type,
)
from payroll_engines.brackets import (
    BracketLine,
    BracketTaxCalculator,
    BracketTaxResult,
    calculate_bracket_tax,
    calculate_flat_tax,
    calculate_graduated_tax,
    checked_brackets,
    cumulative_bases,
    validate_bracket_table,
)
from payroll_engines.contributions import (
    ContributionResult,
    calculate_flat_rate_contribution,
)
from payroll_engines.formula import evaluate_formula, validate_formula
from payroll_engines.overtime import (
    OvertimeCalculator,
    OvertimeTaxResult,
    OvertimeTierLine,
    is_overtime_opted_in,
)
from payroll_engines.paycheck import (
    AppliedRuleVersion,
    PaycheckCalculationResult,
    PaycheckCalculator,
    PaycheckContext,
    PaycheckRequest,
    PaycheckTaxStage,
    TaxCalculationResult,
)
from payroll_engines.pipeline import (
    ComponentInput,
    PayComponentPipeline,
    PaycheckComponentResult,
    PipelineResult,
    RunningTotals,
    build_execution_order,
)
from payroll_engines.rule_resolver import RuleCatalog, RuleSetResolver
from payroll_engines.tracer import compute_input_fingerprint, traced_engine
from payroll_engines.wage_period import (
    ANNUAL_DAYS,
    CANONICAL_DAYS,
    PERIODS_PER_YEAR,
    WagePeriodSpec,
    canonical_days,
    normalize_wage_period,
)

__all__ = [
    "ANNUAL_DAYS",
    "AllowanceResolver",
    "AllowanceResult",
    "AppliedRuleVersion",
    "BonusContext",
    "BonusPeriodLine",
    "BonusTaxResult",
    "BracketLine",
    "BracketTaxCalculator",
    "BracketTaxResult",
    "CANONICAL_DAYS",
    "CappedAllowanceResult",
    "ComponentInput",
    "ContributionResult",
    "OvertimeCalculator",
    "OvertimeTaxResult",
    "OvertimeTierLine",
    "PERIODS_PER_YEAR",
    "PayComponentPipeline",
    "PaycheckCalculationResult",
    "PaycheckCalculator",
    "PaycheckComponentResult",
    "PaycheckContext",
    "PaycheckRequest",
    "PaycheckTaxStage",
    "PipelineResult",
    "RegularIncomePeriod",
    "RuleCatalog",
    "RuleSetResolver",
    "RunningTotals",
    "SmoothedBonusCalculator",
    "TaxCalculationResult",
    "WagePeriodSpec",
    "apply_capped_allowance",
    "build_execution_order",
    "calculate_bracket_tax",
    "calculate_flat_rate_contribution",
    "calculate_flat_tax",
    "calculate_graduated_tax",
    "canonical_days",
    "compute_input_fingerprint",
    "cumulative_bases",
    "evaluate_formula",
    "is_overtime_opted_in",
    "loontijdvakken_for_bonus_type",
    "normalize_wage_period",
    "prorate",
    "traced_engine",
    "checked_brackets",
    "validate_bracket_table",
    "validate_formula",
]
