"""
Config -> Engine Bridges.

Functions that convert JurisdictionPack definitions into engine domain
types.  These live in payroll_config (the producer) because the kernel
and the engines must never import payroll_config.

Usage:
    from payroll_config.bridges import build_rule_catalog, build_pay_components

    pack = get_active_pack("SR", date(2025, 3, 31))
    catalog = build_rule_catalog(pack)
    components = build_pay_components(pack)
"""

from __future__ import annotations

from decimal import Decimal
from uuid import UUID, uuid5

from payroll_config.schema import AllowanceDef, JurisdictionPack, PayComponentDef, RuleSetDef
from payroll_engines.brackets import cumulative_bases
from payroll_engines.rule_resolver import RuleCatalog
from payroll_kernel.domain.types import (
    Allowance,
    AllowanceType,
    CalculationMethod,
    CalculationType,
    ComponentCategory,
    ComponentTier,
    IncomeKind,
    PayComponent,
    TaxBracket,
    TaxKind,
    TaxRuleSet,
    TaxType,
    WagePeriodType,
)

# Fixed namespace for deterministic rule identifiers within a pack.
# Published rows get fresh identifiers from RuleCatalogService.
_PACK_UUID_NAMESPACE = UUID("5b7f0f7e-3c55-4d61-9a7b-2f4b8e1d6c90")


def rule_set_uuid(jurisdiction: str, definition: RuleSetDef) -> UUID:
    return uuid5(
        _PACK_UUID_NAMESPACE,
        f"rule_set:{jurisdiction}:{definition.tax_type}:v{definition.version}:"
        f"{definition.effective_from.isoformat()}",
    )


def allowance_uuid(jurisdiction: str, definition: AllowanceDef) -> UUID:
    return uuid5(
        _PACK_UUID_NAMESPACE,
        f"allowance:{jurisdiction}:{definition.allowance_type}:v{definition.version}:"
        f"{definition.effective_from.isoformat()}",
    )


def build_rule_set(jurisdiction: str, definition: RuleSetDef) -> TaxRuleSet:
    """
    Translate a RuleSetDef.

    When no bracket declares ``fixed_amount`` the cumulative bases are
    derived from the table, so ``graduated`` schedules can be authored
    with rates only.
    """
    brackets = tuple(
        TaxBracket(
            order=b.order,
            income_min=b.income_min,
            income_max=b.income_max,
            rate_percentage=b.rate_percentage,
            fixed_amount=b.fixed_amount if b.fixed_amount is not None else Decimal("0"),
        )
        for b in definition.brackets
    )
    if all(b.fixed_amount is None for b in definition.brackets):
        brackets = cumulative_bases(brackets)

    return TaxRuleSet(
        rule_set_id=rule_set_uuid(jurisdiction, definition),
        jurisdiction=jurisdiction,
        tax_type=TaxType(definition.tax_type),
        calculation_method=CalculationMethod(definition.calculation_method),
        effective_from=definition.effective_from,
        effective_to=definition.effective_to,
        brackets=brackets,
        annual_cap=definition.annual_cap,
        bracket_period=WagePeriodType(definition.bracket_period),
        name=definition.name,
        version=definition.version,
    )


def build_allowance(jurisdiction: str, definition: AllowanceDef) -> Allowance:
    return Allowance(
        allowance_id=allowance_uuid(jurisdiction, definition),
        allowance_type=AllowanceType(definition.allowance_type),
        jurisdiction=jurisdiction,
        amount=definition.amount,
        effective_from=definition.effective_from,
        effective_to=definition.effective_to,
        is_percentage=definition.is_percentage,
        name=definition.name,
        version=definition.version,
    )


def build_pay_component(definition: PayComponentDef) -> PayComponent:
    return PayComponent(
        code=definition.code,
        category=ComponentCategory(definition.category),
        calculation_type=CalculationType(definition.calculation_type),
        sequence_order=definition.sequence_order,
        depends_on=definition.depends_on,
        is_taxable=definition.is_taxable,
        affects_gross_pay=definition.affects_gross_pay,
        affects_net_pay=definition.affects_net_pay,
        name=definition.name,
        is_pre_tax=definition.is_pre_tax,
        income_kind=IncomeKind(definition.income_kind),
        tax_kind=TaxKind(definition.tax_kind) if definition.tax_kind else None,
        amount=definition.amount,
        rate=definition.rate,
        percentage=definition.percentage,
        formula=definition.formula,
        tiers=tuple(
            ComponentTier(lower=t.lower, upper=t.upper, rate_percentage=t.rate_percentage)
            for t in definition.tiers
        ),
        allowance_type=AllowanceType(definition.allowance_type) if definition.allowance_type else None,
    )


def build_rule_catalog(pack: JurisdictionPack) -> RuleCatalog:
    """Read-only catalog of every rule set and allowance in the pack."""
    return RuleCatalog(
        rule_sets=tuple(build_rule_set(pack.jurisdiction, r) for r in pack.rule_sets),
        allowances=tuple(build_allowance(pack.jurisdiction, a) for a in pack.allowances),
        currency=pack.currency,
        checksum=pack.checksum,
    )


def build_pay_components(pack: JurisdictionPack) -> tuple[PayComponent, ...]:
    return tuple(build_pay_component(c) for c in pack.pay_components)
