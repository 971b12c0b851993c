"""
JurisdictionPack schema.

Defines the human-authored, reviewable source artifact for a
jurisdiction's payroll tax configuration.  YAML packs are parsed into
these types by the loader and translated into engine domain types by the
bridges.

Key distinction:
  JurisdictionPack = source artifact (human-authored, versioned, checksummed)
  RuleCatalog      = runtime artifact (engine domain types, read-only)
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date
from decimal import Decimal

# ---------------------------------------------------------------------------
# Engine settings
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class EngineSettings:
    """Runtime knobs for calculation and payroll runs."""

    currency: str = "SRD"
    max_workers: int = 4


# ---------------------------------------------------------------------------
# Rule definitions (declarative data, no executable logic)
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class BracketDef:
    order: int
    income_min: Decimal
    income_max: Decimal | None
    rate_percentage: Decimal
    fixed_amount: Decimal | None = None  # None: derived from the table


@dataclass(frozen=True)
class RuleSetDef:
    """One effective-dated version of a tax schedule."""

    tax_type: str
    calculation_method: str
    effective_from: date
    brackets: tuple[BracketDef, ...]
    name: str = ""
    effective_to: date | None = None
    bracket_period: str = "yearly"
    annual_cap: Decimal | None = None
    version: int = 1


@dataclass(frozen=True)
class AllowanceDef:
    allowance_type: str
    amount: Decimal
    effective_from: date
    is_percentage: bool = False
    effective_to: date | None = None
    name: str = ""
    version: int = 1


@dataclass(frozen=True)
class ComponentTierDef:
    lower: Decimal
    upper: Decimal | None
    rate_percentage: Decimal


@dataclass(frozen=True)
class PayComponentDef:
    """One node of the default pay component graph."""

    code: str
    category: str
    calculation_type: str
    sequence_order: int = 0
    depends_on: tuple[str, ...] = ()
    is_taxable: bool = True
    affects_gross_pay: bool = True
    affects_net_pay: bool = True
    name: str = ""
    is_pre_tax: bool = False
    income_kind: str = "regular"
    tax_kind: str | None = None
    amount: Decimal | None = None
    rate: Decimal | None = None
    percentage: Decimal | None = None
    formula: str | None = None
    tiers: tuple[ComponentTierDef, ...] = ()
    allowance_type: str | None = None


# ---------------------------------------------------------------------------
# Pack
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class JurisdictionPack:
    """All payroll tax configuration for one jurisdiction."""

    pack_id: str
    jurisdiction: str
    version: int
    effective_from: date
    engine: EngineSettings = field(default_factory=EngineSettings)
    rule_sets: tuple[RuleSetDef, ...] = ()
    allowances: tuple[AllowanceDef, ...] = ()
    pay_components: tuple[PayComponentDef, ...] = ()
    effective_to: date | None = None
    description: str = ""
    checksum: str = ""

    @property
    def currency(self) -> str:
        return self.engine.currency
