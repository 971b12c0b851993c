"""
Tests for pack validation and the config-to-engine bridges.

Covers:
- Bracket table defects reported as errors
- Overlapping rule set and allowance versions
- Unknown enum values and currencies
- Component graph checks (cycles, formulas)
- Deterministic identifiers and derived cumulative bases
"""

from datetime import date
from decimal import Decimal

import pytest
import yaml

from payroll_config import get_active_pack, validate_pack
from payroll_config.bridges import (
    build_pay_components,
    build_rule_catalog,
    build_rule_set,
    rule_set_uuid,
)
from payroll_config.loader import parse_pack
from payroll_engines.rule_resolver import RuleSetResolver
from payroll_kernel.domain.types import CalculationMethod, TaxType
from tests.factories import PACK_YAML


def _pack(mutate=None):
    data = yaml.safe_load(PACK_YAML)
    if mutate is not None:
        mutate(data)
    return parse_pack(data)


class TestValidatePack:

    def test_valid_pack(self):
        result = validate_pack(_pack())
        assert result.is_valid, result.errors
        assert result.warnings == []

    def test_bundled_pack_is_valid(self):
        assert validate_pack(get_active_pack("SR", date(2025, 1, 1))).is_valid

    def test_bracket_gap(self):
        def gap(data):
            data["rule_sets"][0]["brackets"][1]["min"] = 4000

        result = validate_pack(_pack(gap))

        assert not result.is_valid
        assert any("gap" in e for e in result.errors)

    def test_overlapping_rule_set_versions(self):
        def overlap(data):
            second = dict(data["rule_sets"][0], version=2, effective_from="2025-06-01")
            data["rule_sets"].append(second)

        result = validate_pack(_pack(overlap))

        assert any("overlaps v1" in e for e in result.errors)

    def test_consecutive_versions_do_not_overlap(self):
        def supersede(data):
            data["rule_sets"][0]["effective_to"] = "2025-06-01"
            second = dict(data["rule_sets"][0], version=2, effective_from="2025-06-01")
            second.pop("effective_to")
            data["rule_sets"].append(second)

        assert validate_pack(_pack(supersede)).is_valid

    def test_overlapping_allowances(self):
        def overlap(data):
            data["allowances"].append(dict(data["allowances"][0], version=2))

        result = validate_pack(_pack(overlap))

        assert any("allowance tax_free_sum v2 overlaps" in e for e in result.errors)

    def test_inverted_window(self):
        def inverted(data):
            data["rule_sets"][0]["effective_to"] = "2024-12-31"

        result = validate_pack(_pack(inverted))

        assert any("effective_to must be after" in e for e in result.errors)

    def test_unknown_tax_type(self):
        def unknown(data):
            data["rule_sets"][0]["tax_type"] = "income_tax"

        result = validate_pack(_pack(unknown))

        assert not result.is_valid
        assert "Pack has no wage_tax rule set" in result.warnings

    def test_unknown_currency(self):
        def currency(data):
            data["currency"] = "XYZ"

        assert "Unknown currency: XYZ" in validate_pack(_pack(currency)).errors

    def test_component_cycle(self):
        def cycle(data):
            data["pay_components"].extend([
                {"code": "A", "category": "deduction", "calculation_type": "fixed", "depends_on": ["B"]},
                {"code": "B", "category": "deduction", "calculation_type": "fixed", "depends_on": ["A"]},
            ])

        result = validate_pack(_pack(cycle))

        assert any("cycle" in e for e in result.errors)

    def test_rejected_formula(self):
        def formula(data):
            data["pay_components"].append({
                "code": "MEAL", "category": "earning", "calculation_type": "formula",
                "formula": "__import__('os').getcwd()",
            })

        result = validate_pack(_pack(formula))

        assert any("MEAL" in e for e in result.errors)


class TestBridges:

    def test_rule_set_ids_are_deterministic(self):
        first = build_rule_catalog(_pack())
        second = build_rule_catalog(_pack())

        assert first.rule_sets[0].rule_set_id == second.rule_sets[0].rule_set_id
        assert first.allowances[0].allowance_id == second.allowances[0].allowance_id

    def test_id_depends_on_version(self):
        definition = _pack().rule_sets[0]
        from dataclasses import replace

        assert rule_set_uuid("XX", definition) != rule_set_uuid("XX", replace(definition, version=2))

    def test_cumulative_bases_derived(self):
        rule_set = build_rule_set("XX", _pack().rule_sets[0])

        assert rule_set.calculation_method is CalculationMethod.GRADUATED
        assert [b.fixed_amount for b in rule_set.sorted_brackets] == [Decimal("0"), Decimal("280")]

    def test_catalog_resolves(self):
        catalog = build_rule_catalog(_pack())
        rule_set = RuleSetResolver(catalog).resolve("XX", TaxType.WAGE_TAX, date(2025, 3, 31))

        assert rule_set.tax_type is TaxType.WAGE_TAX
        assert catalog.currency == "SRD"
        assert catalog.checksum

    def test_pay_components(self):
        codes = [c.code for c in build_pay_components(_pack())]
        assert codes == ["BASE_SALARY", "WAGE_TAX"]

    def test_unknown_enum_raises(self):
        def unknown(data):
            data["rule_sets"][0]["calculation_method"] = "lottery"

        with pytest.raises(ValueError):
            build_rule_set("XX", _pack(unknown).rule_sets[0])
