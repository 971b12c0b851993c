"""
Tests for RuleCatalogService.

Covers:
- Append-only publication with version = previous + 1
- Overlap rejection and atomic supersession
- Immutability of published versions
- Pack import (including skipped component codes)
- Version comparison
- Audit events for publication and supersession
"""

from datetime import date
from decimal import Decimal
from uuid import uuid4

import pytest

from payroll_config import get_active_pack
from payroll_engines.rule_resolver import RuleSetResolver
from payroll_kernel.domain.types import AllowanceType, TaxType
from payroll_kernel.exceptions import (
    AmbiguousAllowanceError,
    AmbiguousRuleSetError,
    BracketTableError,
    ImmutabilityViolationError,
    InvalidRuleVersionError,
    RuleVersionNotFoundError,
)
from payroll_kernel.models.audit_event import AuditAction
from payroll_kernel.models.pay_component import PayComponentModel
from payroll_kernel.models.rule_set import TaxRuleSetModel
from payroll_services.rule_catalog import compare_rule_sets
from tests.factories import (
    BASE_SALARY,
    JURISDICTION,
    allowance,
    bracket,
    wage_tax_rule_set,
)

MID_YEAR = date(2025, 7, 1)


class TestPublishRuleSet:

    def test_first_version(self, rule_catalog_service, organization_id, test_actor_id):
        draft = wage_tax_rule_set(version=7)

        published = rule_catalog_service.publish_rule_set(draft, organization_id, test_actor_id)

        assert published.version == 1
        assert published.rule_set_id != draft.rule_set_id
        assert rule_catalog_service.get_rule_set(published.rule_set_id) == published

    def test_version_increments(self, rule_catalog_service, organization_id, test_actor_id):
        rule_catalog_service.publish_rule_set(
            wage_tax_rule_set(effective_to=MID_YEAR), organization_id, test_actor_id,
        )
        second = rule_catalog_service.publish_rule_set(
            wage_tax_rule_set(effective_from=MID_YEAR), organization_id, test_actor_id,
        )
        assert second.version == 2

    def test_versions_are_per_organization(self, rule_catalog_service, organization_id, test_actor_id):
        rule_catalog_service.publish_rule_set(wage_tax_rule_set(), organization_id, test_actor_id)
        other = rule_catalog_service.publish_rule_set(wage_tax_rule_set(), uuid4(), test_actor_id)
        assert other.version == 1

    def test_overlap_rejected(self, rule_catalog_service, organization_id, test_actor_id):
        rule_catalog_service.publish_rule_set(wage_tax_rule_set(), organization_id, test_actor_id)

        with pytest.raises(AmbiguousRuleSetError):
            rule_catalog_service.publish_rule_set(
                wage_tax_rule_set(effective_from=MID_YEAR), organization_id, test_actor_id,
            )

    def test_invalid_brackets_rejected(self, rule_catalog_service, organization_id, test_actor_id):
        gapped = wage_tax_rule_set(brackets=(bracket(1, "0", "100", "5"), bracket(2, "200", None, "10")))
        with pytest.raises(BracketTableError):
            rule_catalog_service.publish_rule_set(gapped, organization_id, test_actor_id)

    def test_empty_window_rejected(self, rule_catalog_service, organization_id, test_actor_id):
        with pytest.raises(InvalidRuleVersionError):
            rule_catalog_service.publish_rule_set(
                wage_tax_rule_set(effective_to=date(2025, 1, 1)), organization_id, test_actor_id,
            )

    def test_audited(self, rule_catalog_service, audit_service, organization_id, test_actor_id):
        published = rule_catalog_service.publish_rule_set(wage_tax_rule_set(), organization_id, test_actor_id)

        trace = audit_service.get_trace("TaxRuleSet", published.rule_set_id)

        assert trace.actions == (AuditAction.RULE_SET_PUBLISHED,)
        assert trace.entries[0].payload["version"] == 1


class TestSupersedeRuleSet:

    def test_closes_previous_and_publishes(
        self, rule_catalog_service, audit_service, organization_id, test_actor_id,
    ):
        first = rule_catalog_service.publish_rule_set(wage_tax_rule_set(), organization_id, test_actor_id)
        raised = wage_tax_rule_set(effective_from=MID_YEAR, brackets=(bracket(1, "0", None, "10"),))

        second = rule_catalog_service.supersede_rule_set(
            first.rule_set_id, raised, organization_id, test_actor_id,
        )

        assert rule_catalog_service.get_rule_set(first.rule_set_id).effective_to == MID_YEAR
        assert second.version == 2
        resolver = RuleSetResolver(rule_catalog_service.load_catalog(organization_id))
        assert resolver.resolve(JURISDICTION, TaxType.WAGE_TAX, date(2025, 6, 30)).version == 1
        assert resolver.resolve(JURISDICTION, TaxType.WAGE_TAX, MID_YEAR).version == 2
        assert audit_service.get_trace("TaxRuleSet", first.rule_set_id).actions == (
            AuditAction.RULE_SET_PUBLISHED, AuditAction.RULE_SET_SUPERSEDED,
        )

    def test_already_closed(self, rule_catalog_service, organization_id, test_actor_id):
        first = rule_catalog_service.publish_rule_set(wage_tax_rule_set(), organization_id, test_actor_id)
        rule_catalog_service.supersede_rule_set(
            first.rule_set_id, wage_tax_rule_set(effective_from=MID_YEAR), organization_id, test_actor_id,
        )

        with pytest.raises(InvalidRuleVersionError, match="already closed"):
            rule_catalog_service.supersede_rule_set(
                first.rule_set_id, wage_tax_rule_set(effective_from=date(2025, 10, 1)),
                organization_id, test_actor_id,
            )

    def test_must_start_after_previous(self, rule_catalog_service, organization_id, test_actor_id):
        first = rule_catalog_service.publish_rule_set(
            wage_tax_rule_set(effective_from=MID_YEAR), organization_id, test_actor_id,
        )
        with pytest.raises(InvalidRuleVersionError, match="must start after"):
            rule_catalog_service.supersede_rule_set(
                first.rule_set_id, wage_tax_rule_set(), organization_id, test_actor_id,
            )

    def test_unknown_previous(self, rule_catalog_service, organization_id, test_actor_id):
        with pytest.raises(RuleVersionNotFoundError) as exc_info:
            rule_catalog_service.supersede_rule_set(
                uuid4(), wage_tax_rule_set(), organization_id, test_actor_id,
            )
        assert exc_info.value.code == "RULE_VERSION_NOT_FOUND"

    def test_other_organization_is_not_found(self, rule_catalog_service, organization_id, test_actor_id):
        first = rule_catalog_service.publish_rule_set(wage_tax_rule_set(), organization_id, test_actor_id)
        with pytest.raises(RuleVersionNotFoundError):
            rule_catalog_service.supersede_rule_set(
                first.rule_set_id, wage_tax_rule_set(effective_from=MID_YEAR), uuid4(), test_actor_id,
            )


class TestPublishedVersionsAreImmutable:

    def test_rate_change_blocked(self, rule_catalog_service, session, organization_id, test_actor_id):
        published = rule_catalog_service.publish_rule_set(wage_tax_rule_set(), organization_id, test_actor_id)
        model = session.get(TaxRuleSetModel, published.rule_set_id)

        model.brackets[0].rate_percentage = Decimal("9")
        with pytest.raises(ImmutabilityViolationError):
            session.flush()

    def test_header_change_blocked(self, rule_catalog_service, session, organization_id, test_actor_id):
        published = rule_catalog_service.publish_rule_set(wage_tax_rule_set(), organization_id, test_actor_id)
        model = session.get(TaxRuleSetModel, published.rule_set_id)

        model.bracket_period = "weekly"
        with pytest.raises(ImmutabilityViolationError):
            session.flush()

    def test_delete_blocked(self, rule_catalog_service, session, organization_id, test_actor_id):
        published = rule_catalog_service.publish_rule_set(wage_tax_rule_set(), organization_id, test_actor_id)
        model = session.get(TaxRuleSetModel, published.rule_set_id)

        session.delete(model)
        with pytest.raises(ImmutabilityViolationError):
            session.flush()


class TestAllowances:

    def test_publish_and_supersede(self, rule_catalog_service, organization_id, test_actor_id):
        first = rule_catalog_service.publish_allowance(allowance(), organization_id, test_actor_id)
        second = rule_catalog_service.supersede_allowance(
            first.allowance_id,
            allowance(amount="40000", effective_from=MID_YEAR),
            organization_id,
            test_actor_id,
        )

        resolver = RuleSetResolver(rule_catalog_service.load_catalog(organization_id))
        assert resolver.resolve_allowance(
            JURISDICTION, AllowanceType.TAX_FREE_SUM, MID_YEAR,
        ).amount == Decimal("40000")
        assert second.version == 2

    def test_overlap_rejected(self, rule_catalog_service, organization_id, test_actor_id):
        rule_catalog_service.publish_allowance(allowance(), organization_id, test_actor_id)
        with pytest.raises(AmbiguousAllowanceError):
            rule_catalog_service.publish_allowance(allowance(amount="1"), organization_id, test_actor_id)

    def test_negative_amount_rejected(self, rule_catalog_service, organization_id, test_actor_id):
        with pytest.raises(InvalidRuleVersionError, match="negative"):
            rule_catalog_service.publish_allowance(allowance(amount="-1"), organization_id, test_actor_id)


class TestImportPack:

    def test_imports_bundled_pack(self, rule_catalog_service, organization_id, test_actor_id):
        pack = get_active_pack("SR", date(2025, 1, 1))

        result = rule_catalog_service.import_pack(pack, organization_id, test_actor_id)

        assert len(result.rule_sets) == len(pack.rule_sets)
        assert len(result.allowances) == len(pack.allowances)
        assert result.skipped_components == ()
        overtime_versions = sorted(r.version for r in result.rule_sets if r.tax_type is TaxType.OVERTIME)
        assert overtime_versions == [1, 2]

        catalog = rule_catalog_service.load_catalog(organization_id)
        rule_set = RuleSetResolver(catalog).resolve("SR", TaxType.OVERTIME, date(2025, 8, 31))
        assert rule_set.version == 2

    def test_existing_components_skipped(
        self, rule_catalog_service, session, organization_id, test_actor_id,
    ):
        session.add(PayComponentModel.from_dto(BASE_SALARY, organization_id, created_by_id=test_actor_id))
        session.flush()

        result = rule_catalog_service.import_pack(
            get_active_pack("SR", date(2025, 1, 1)), organization_id, test_actor_id,
        )

        assert result.skipped_components == ("BASE_SALARY",)
        assert "BASE_SALARY" not in [c.code for c in result.components]

    def test_second_import_overlaps(self, rule_catalog_service, organization_id, test_actor_id):
        pack = get_active_pack("SR", date(2025, 1, 1))
        rule_catalog_service.import_pack(pack, organization_id, test_actor_id)

        with pytest.raises(AmbiguousRuleSetError):
            rule_catalog_service.import_pack(pack, organization_id, test_actor_id)


class TestCompareRuleSets:

    def test_identical(self):
        rule_set = wage_tax_rule_set()
        assert compare_rule_sets(rule_set, rule_set).is_empty

    def test_bracket_changes(self):
        before = wage_tax_rule_set()
        after = wage_tax_rule_set(
            brackets=(
                bracket(1, "0", "3500", "8"),
                bracket(2, "3500", "7000", "19"),
                bracket(3, "7000", None, "30"),
            ),
            version=2,
        )

        diff = compare_rule_sets(before, after)

        assert diff.from_version == 1
        assert diff.to_version == 2
        assert [b.order for b in diff.removed] == [4]
        assert [c.order for c in diff.changed] == [2, 3]
        assert diff.added == ()

    def test_header_changes(self, rule_catalog_service):
        from payroll_kernel.domain.types import WagePeriodType

        diff = rule_catalog_service.compare_rule_sets(
            wage_tax_rule_set(), wage_tax_rule_set(bracket_period=WagePeriodType.YEARLY),
        )

        assert diff.field_changes == (
            ("bracket_period", WagePeriodType.MONTHLY, WagePeriodType.YEARLY),
        )
