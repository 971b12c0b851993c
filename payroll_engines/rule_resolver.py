"""
RuleSet Resolver -- effective-dated lookup of rule sets and allowances.

Responsibility:
    Given a jurisdiction, a tax type (or allowance type) and a date, return
    the single published version whose window ``[effective_from,
    effective_to)`` contains the date.

Architecture position:
    Engines -- pure calculation layer, zero I/O.  Works over a read-only
    RuleCatalog snapshot loaded once per calculation or per payroll run.

Invariants enforced:
    - Exactly one match or a configuration error; a tax is never silently
      skipped.

Failure modes:
    - NoApplicableRuleSetError / NoApplicableAllowanceError: no version
      covers the date.
    - AmbiguousRuleSetError / AmbiguousAllowanceError: overlapping windows.
"""

from __future__ import annotations

from collections import defaultdict
from dataclasses import dataclass, field
from datetime import date

from payroll_kernel.domain.types import Allowance, AllowanceType, TaxRuleSet, TaxType
from payroll_kernel.exceptions import (
    AmbiguousAllowanceError,
    AmbiguousRuleSetError,
    NoApplicableAllowanceError,
    NoApplicableRuleSetError,
)
from payroll_kernel.logging_config import get_logger

logger = get_logger("engines.rule_resolver")


@dataclass(frozen=True)
class RuleCatalog:
    """Immutable snapshot of every published rule set and allowance."""

    rule_sets: tuple[TaxRuleSet, ...] = ()
    allowances: tuple[Allowance, ...] = ()
    currency: str = "SRD"
    checksum: str | None = field(default=None, compare=False)


class RuleSetResolver:
    """Resolves effective-dated rule versions from a RuleCatalog."""

    def __init__(self, catalog: RuleCatalog):
        self._catalog = catalog
        self._rule_sets: dict[tuple[str, TaxType], list[TaxRuleSet]] = defaultdict(list)
        self._allowances: dict[tuple[str, AllowanceType], list[Allowance]] = defaultdict(list)
        for rule_set in catalog.rule_sets:
            self._rule_sets[(rule_set.jurisdiction, rule_set.tax_type)].append(rule_set)
        for allowance in catalog.allowances:
            self._allowances[(allowance.jurisdiction, allowance.allowance_type)].append(allowance)

    @property
    def catalog(self) -> RuleCatalog:
        return self._catalog

    def find(
        self,
        jurisdiction: str,
        tax_type: TaxType,
        as_of: date,
    ) -> TaxRuleSet | None:
        """The effective rule set, or None. Overlaps still raise."""
        matches = [
            r for r in self._rule_sets.get((jurisdiction, TaxType(tax_type)), ())
            if r.is_effective(as_of)
        ]
        if len(matches) > 1:
            ids = sorted(str(r.rule_set_id) for r in matches)
            logger.error(
                "rule_set_ambiguous",
                extra={
                    "jurisdiction": jurisdiction,
                    "tax_type": TaxType(tax_type).value,
                    "as_of": as_of,
                    "rule_set_ids": ids,
                },
            )
            raise AmbiguousRuleSetError(jurisdiction, TaxType(tax_type).value, as_of, ids)
        return matches[0] if matches else None

    def resolve(
        self,
        jurisdiction: str,
        tax_type: TaxType,
        as_of: date,
    ) -> TaxRuleSet:
        """
        The rule set effective on ``as_of``.

        Raises:
            NoApplicableRuleSetError: No version covers the date.
            AmbiguousRuleSetError: More than one version covers the date.
        """
        rule_set = self.find(jurisdiction, tax_type, as_of)
        if rule_set is None:
            logger.error(
                "rule_set_not_found",
                extra={
                    "jurisdiction": jurisdiction,
                    "tax_type": TaxType(tax_type).value,
                    "as_of": as_of,
                },
            )
            raise NoApplicableRuleSetError(jurisdiction, TaxType(tax_type).value, as_of)
        return rule_set

    def find_allowance(
        self,
        jurisdiction: str,
        allowance_type: AllowanceType,
        as_of: date,
    ) -> Allowance | None:
        """The effective allowance, or None. Overlaps still raise."""
        matches = [
            a for a in self._allowances.get((jurisdiction, AllowanceType(allowance_type)), ())
            if a.is_effective(as_of)
        ]
        if len(matches) > 1:
            ids = sorted(str(a.allowance_id) for a in matches)
            raise AmbiguousAllowanceError(
                jurisdiction, AllowanceType(allowance_type).value, as_of, ids,
            )
        return matches[0] if matches else None

    def resolve_allowance(
        self,
        jurisdiction: str,
        allowance_type: AllowanceType,
        as_of: date,
    ) -> Allowance:
        """
        The allowance effective on ``as_of``.

        Raises:
            NoApplicableAllowanceError: No version covers the date.
            AmbiguousAllowanceError: More than one version covers the date.
        """
        allowance = self.find_allowance(jurisdiction, allowance_type, as_of)
        if allowance is None:
            raise NoApplicableAllowanceError(
                jurisdiction, AllowanceType(allowance_type).value, as_of,
            )
        return allowance
