"""
Pack Validator (``payroll_config.validator``).

Responsibility
--------------
Validates a ``JurisdictionPack`` before it is used or imported, ensuring
structural integrity of every schedule, allowance and component graph.

Invariants enforced
-------------------
* Bracket tables are contiguous, start at zero and have rates in 0..100
  (``payroll_engines.brackets.validate_bracket_table``).
* No two versions of the same rule set or allowance overlap in time.
* Every enum-valued field names a known member.
* The default component graph is acyclic and every formula passes the
  restricted AST validator.

Failure modes
-------------
* Validation errors (``PackValidationResult.errors``)  -> the pack MUST
  NOT be imported or used.
* Warnings  -> the pack may be used but should be reviewed.
"""

from __future__ import annotations

from collections import defaultdict
from dataclasses import dataclass, field

from payroll_config.bridges import build_allowance, build_pay_component, build_rule_set
from payroll_config.schema import JurisdictionPack
from payroll_engines.brackets import validate_bracket_table
from payroll_engines.pipeline import build_execution_order, validate_component
from payroll_kernel.domain.currency import CurrencyRegistry
from payroll_kernel.domain.effective import windows_overlap
from payroll_kernel.domain.types import CalculationMethod, TaxType
from payroll_kernel.exceptions import PayrollEngineError


@dataclass
class PackValidationResult:
    """
    Result of pack validation.

    ``is_valid`` is True only when ``errors`` is empty.
    """

    errors: list[str] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)

    @property
    def is_valid(self) -> bool:
        return len(self.errors) == 0

    def add_error(self, msg: str) -> None:
        self.errors.append(msg)

    def add_warning(self, msg: str) -> None:
        self.warnings.append(msg)


def validate_pack(pack: JurisdictionPack) -> PackValidationResult:
    """Validate a parsed pack; never raises for content problems."""
    result = PackValidationResult()

    if not CurrencyRegistry.is_valid(pack.currency):
        result.add_error(f"Unknown currency: {pack.currency}")

    _validate_rule_sets(pack, result)
    _validate_allowances(pack, result)
    _validate_components(pack, result)

    return result


def _validate_rule_sets(pack: JurisdictionPack, result: PackValidationResult) -> None:
    windows: dict[str, list] = defaultdict(list)
    for definition in pack.rule_sets:
        label = f"rule set {definition.tax_type} v{definition.version}"
        try:
            rule_set = build_rule_set(pack.jurisdiction, definition)
        except ValueError as exc:
            result.add_error(f"{label}: {exc}")
            continue

        try:
            validate_bracket_table(
                rule_set.brackets,
                rule_set_id=label,
                require_cumulative_bases=rule_set.calculation_method is CalculationMethod.GRADUATED,
            )
        except PayrollEngineError as exc:
            result.add_error(str(exc))

        if rule_set.effective_to is not None and rule_set.effective_to <= rule_set.effective_from:
            result.add_error(f"{label}: effective_to must be after effective_from")

        for other in windows[definition.tax_type]:
            if windows_overlap(
                other.effective_from, other.effective_to,
                rule_set.effective_from, rule_set.effective_to,
            ):
                result.add_error(
                    f"{label} overlaps v{other.version} "
                    f"[{other.effective_from}, {other.effective_to})"
                )
        windows[definition.tax_type].append(rule_set)

    if TaxType.WAGE_TAX.value not in windows:
        result.add_warning("Pack has no wage_tax rule set")


def _validate_allowances(pack: JurisdictionPack, result: PackValidationResult) -> None:
    windows: dict[str, list] = defaultdict(list)
    for definition in pack.allowances:
        label = f"allowance {definition.allowance_type} v{definition.version}"
        try:
            allowance = build_allowance(pack.jurisdiction, definition)
        except ValueError as exc:
            result.add_error(f"{label}: {exc}")
            continue
        if allowance.amount < 0:
            result.add_error(f"{label}: amount must not be negative")
        for other in windows[definition.allowance_type]:
            if windows_overlap(
                other.effective_from, other.effective_to,
                allowance.effective_from, allowance.effective_to,
            ):
                result.add_error(f"{label} overlaps v{other.version}")
        windows[definition.allowance_type].append(allowance)


def _validate_components(pack: JurisdictionPack, result: PackValidationResult) -> None:
    components = []
    for definition in pack.pay_components:
        try:
            component = build_pay_component(definition)
            validate_component(component)
        except ValueError as exc:
            result.add_error(f"component {definition.code}: {exc}")
            continue
        except PayrollEngineError as exc:
            result.add_error(str(exc))
            continue
        components.append(component)

    try:
        build_execution_order(components)
    except PayrollEngineError as exc:
        result.add_error(str(exc))
