"""
RuleCatalogService -- publication of effective-dated rule sets and allowances.

Responsibility:
    Appends new versions of tax rule sets and allowances, closes superseded
    versions, imports YAML jurisdiction packs, compares two versions of a
    schedule and hands out read-only catalog snapshots.

Architecture position:
    Services -- imperative shell.  Consumes the bracket validator from
    ``payroll_engines`` and the pack bridges from ``payroll_config``;
    writes through the ORM models and AuditService.

Invariants enforced:
    - Append-only versioning: ``version = previous + 1`` per
      (organization, jurisdiction, type).  Published rows are never edited
      except for the one-time close of an open-ended ``effective_to``.
    - No two versions of the same key overlap in time.
    - Every bracket table is validated before it is stored.

Failure modes:
    - AmbiguousRuleSetError / AmbiguousAllowanceError: overlapping window.
    - BracketTableError: gaps, overlaps or bad bounds in the schedule.
    - RuleVersionNotFoundError: superseding an unknown version.
    - InvalidRuleVersionError: closing a version that is already closed,
      or a window whose end is not after its start.

Audit relevance:
    Every publication and every supersession writes an audit event.
"""

from __future__ import annotations

from dataclasses import dataclass, replace
from datetime import date
from decimal import Decimal
from uuid import UUID, uuid4

from sqlalchemy import select
from sqlalchemy.orm import Session

from payroll_config.bridges import build_allowance, build_pay_component, build_rule_set
from payroll_config.schema import JurisdictionPack
from payroll_config.validator import validate_pack
from payroll_engines.brackets import validate_bracket_table
from payroll_engines.rule_resolver import RuleCatalog
from payroll_kernel.domain.clock import Clock, SystemClock
from payroll_kernel.domain.effective import windows_overlap
from payroll_kernel.domain.types import (
    Allowance,
    CalculationMethod,
    PayComponent,
    TaxBracket,
    TaxRuleSet,
)
from payroll_kernel.exceptions import (
    AmbiguousAllowanceError,
    AmbiguousRuleSetError,
    InvalidRuleVersionError,
    RuleVersionNotFoundError,
)
from payroll_kernel.logging_config import get_logger
from payroll_kernel.models.pay_component import PayComponentModel
from payroll_kernel.models.rule_set import AllowanceModel, TaxRuleSetModel
from payroll_kernel.services.audit_service import AuditService
from payroll_services.repositories import SqlPayrollRepository

logger = get_logger("services.rule_catalog")


@dataclass(frozen=True)
class BracketChange:
    order: int
    before: TaxBracket
    after: TaxBracket


@dataclass(frozen=True)
class RuleSetDiff:
    """Bracket-level and header-level differences between two schedules."""

    from_version: int
    to_version: int
    added: tuple[TaxBracket, ...] = ()
    removed: tuple[TaxBracket, ...] = ()
    changed: tuple[BracketChange, ...] = ()
    field_changes: tuple[tuple[str, object, object], ...] = ()

    @property
    def is_empty(self) -> bool:
        return not (self.added or self.removed or self.changed or self.field_changes)


@dataclass(frozen=True)
class PackImportResult:
    pack_id: str
    checksum: str
    rule_sets: tuple[TaxRuleSet, ...] = ()
    allowances: tuple[Allowance, ...] = ()
    components: tuple[PayComponent, ...] = ()
    skipped_components: tuple[str, ...] = ()


_COMPARED_FIELDS = ("calculation_method", "bracket_period", "annual_cap")


def compare_rule_sets(a: TaxRuleSet, b: TaxRuleSet) -> RuleSetDiff:
    """
    Differences going from ``a`` to ``b``.

    Brackets are matched on ``order``: present only in ``b`` is added,
    present only in ``a`` is removed, present in both with any differing
    bound, rate or base is changed.
    """
    before = {br.order: br for br in a.brackets}
    after = {br.order: br for br in b.brackets}

    added = tuple(after[o] for o in sorted(after.keys() - before.keys()))
    removed = tuple(before[o] for o in sorted(before.keys() - after.keys()))
    changed = tuple(
        BracketChange(order=o, before=before[o], after=after[o])
        for o in sorted(before.keys() & after.keys())
        if before[o] != after[o]
    )
    field_changes = tuple(
        (name, getattr(a, name), getattr(b, name))
        for name in _COMPARED_FIELDS
        if getattr(a, name) != getattr(b, name)
    )
    return RuleSetDiff(
        from_version=a.version,
        to_version=b.version,
        added=added,
        removed=removed,
        changed=changed,
        field_changes=field_changes,
    )


class RuleCatalogService:
    """
    Publishes and supersedes rule versions for one session.

    Non-goals:
        - Does NOT call ``session.commit()`` -- caller controls boundaries.
        - Does NOT delete or rewrite published versions.
    """

    def __init__(
        self,
        session: Session,
        clock: Clock | None = None,
        auditor: AuditService | None = None,
    ):
        self._session = session
        self._clock = clock or SystemClock()
        self._auditor = auditor or AuditService(session, self._clock)

    # Rule sets

    def publish_rule_set(
        self,
        rule_set: TaxRuleSet,
        organization_id: UUID,
        actor_id: UUID,
    ) -> TaxRuleSet:
        """
        Append a new version of a rule set.

        The stored version gets a fresh id and ``version = previous + 1``;
        the identifier and version on ``rule_set`` are ignored.

        Raises:
            BracketTableError: Invalid schedule.
            InvalidRuleVersionError: ``effective_to`` not after ``effective_from``.
            AmbiguousRuleSetError: Window overlaps an existing version.
        """
        validate_bracket_table(
            rule_set.brackets,
            rule_set_id=rule_set.version_key,
            require_cumulative_bases=rule_set.calculation_method is CalculationMethod.GRADUATED,
        )
        self._check_window("TaxRuleSet", rule_set.effective_from, rule_set.effective_to)

        existing = self._rule_set_versions(organization_id, rule_set)
        overlapping = [
            m for m in existing
            if windows_overlap(
                m.effective_from, m.effective_to,
                rule_set.effective_from, rule_set.effective_to,
            )
        ]
        if overlapping:
            raise AmbiguousRuleSetError(
                rule_set.jurisdiction,
                rule_set.tax_type.value,
                rule_set.effective_from,
                sorted(str(m.id) for m in overlapping) + [str(rule_set.rule_set_id)],
            )

        version = max((m.version for m in existing), default=0) + 1
        published = replace(rule_set, rule_set_id=uuid4(), version=version)
        self._session.add(
            TaxRuleSetModel.from_dto(published, organization_id, created_by_id=actor_id)
        )
        self._session.flush()

        self._auditor.record_rule_set_published(
            rule_set_id=published.rule_set_id,
            jurisdiction=published.jurisdiction,
            tax_type=published.tax_type.value,
            version=published.version,
            effective_from=published.effective_from,
            effective_to=published.effective_to,
            actor_id=actor_id,
        )
        logger.info(
            "rule_set_published",
            extra={
                "rule_set_id": str(published.rule_set_id),
                "jurisdiction": published.jurisdiction,
                "tax_type": published.tax_type.value,
                "version": published.version,
                "effective_from": published.effective_from,
            },
        )
        return published

    def supersede_rule_set(
        self,
        previous_id: UUID,
        new_rule_set: TaxRuleSet,
        organization_id: UUID,
        actor_id: UUID,
    ) -> TaxRuleSet:
        """
        Close ``previous_id`` at ``new_rule_set.effective_from`` and publish
        the new version, atomically.

        Raises:
            RuleVersionNotFoundError: ``previous_id`` is not a rule set of
                this organization.
            InvalidRuleVersionError: The previous version is already closed,
                belongs to another key, or starts on or after the new one.
        """
        previous = self._session.get(TaxRuleSetModel, previous_id)
        if previous is None or previous.organization_id != organization_id:
            raise RuleVersionNotFoundError("TaxRuleSet", str(previous_id))
        if (previous.jurisdiction, previous.tax_type) != (
            new_rule_set.jurisdiction, new_rule_set.tax_type.value,
        ):
            raise InvalidRuleVersionError(
                "TaxRuleSet", "a version can only be superseded by the same jurisdiction and tax type",
            )
        self._check_closable("TaxRuleSet", previous, new_rule_set.effective_from)

        with self._session.begin_nested():
            previous.effective_to = new_rule_set.effective_from
            previous.updated_by_id = actor_id
            self._session.flush()
            published = self.publish_rule_set(new_rule_set, organization_id, actor_id)
            self._auditor.record_rule_set_superseded(
                rule_set_id=previous.id,
                effective_to=new_rule_set.effective_from,
                superseded_by=published.rule_set_id,
                actor_id=actor_id,
            )

        logger.info(
            "rule_set_superseded",
            extra={
                "rule_set_id": str(previous.id),
                "superseded_by": str(published.rule_set_id),
                "effective_to": new_rule_set.effective_from,
            },
        )
        return published

    # Allowances

    def publish_allowance(
        self,
        allowance: Allowance,
        organization_id: UUID,
        actor_id: UUID,
    ) -> Allowance:
        """
        Append a new version of an allowance.

        Raises:
            InvalidRuleVersionError: Negative amount or an empty window.
            AmbiguousAllowanceError: Window overlaps an existing version.
        """
        if allowance.amount < Decimal("0"):
            raise InvalidRuleVersionError("Allowance", "amount must not be negative")
        self._check_window("Allowance", allowance.effective_from, allowance.effective_to)

        existing = self._allowance_versions(organization_id, allowance)
        overlapping = [
            m for m in existing
            if windows_overlap(
                m.effective_from, m.effective_to,
                allowance.effective_from, allowance.effective_to,
            )
        ]
        if overlapping:
            raise AmbiguousAllowanceError(
                allowance.jurisdiction,
                allowance.allowance_type.value,
                allowance.effective_from,
                sorted(str(m.id) for m in overlapping) + [str(allowance.allowance_id)],
            )

        version = max((m.version for m in existing), default=0) + 1
        published = replace(allowance, allowance_id=uuid4(), version=version)
        self._session.add(
            AllowanceModel.from_dto(published, organization_id, created_by_id=actor_id)
        )
        self._session.flush()

        self._auditor.record_allowance_published(
            allowance_id=published.allowance_id,
            jurisdiction=published.jurisdiction,
            allowance_type=published.allowance_type.value,
            version=published.version,
            amount=published.amount,
            effective_from=published.effective_from,
            actor_id=actor_id,
        )
        logger.info(
            "allowance_published",
            extra={
                "allowance_id": str(published.allowance_id),
                "allowance_type": published.allowance_type.value,
                "version": published.version,
                "amount": published.amount,
            },
        )
        return published

    def supersede_allowance(
        self,
        previous_id: UUID,
        new_allowance: Allowance,
        organization_id: UUID,
        actor_id: UUID,
    ) -> Allowance:
        """Close ``previous_id`` and publish ``new_allowance`` atomically."""
        previous = self._session.get(AllowanceModel, previous_id)
        if previous is None or previous.organization_id != organization_id:
            raise RuleVersionNotFoundError("Allowance", str(previous_id))
        if (previous.jurisdiction, previous.allowance_type) != (
            new_allowance.jurisdiction, new_allowance.allowance_type.value,
        ):
            raise InvalidRuleVersionError(
                "Allowance", "a version can only be superseded by the same jurisdiction and type",
            )
        self._check_closable("Allowance", previous, new_allowance.effective_from)

        with self._session.begin_nested():
            previous.effective_to = new_allowance.effective_from
            previous.updated_by_id = actor_id
            self._session.flush()
            return self.publish_allowance(new_allowance, organization_id, actor_id)

    # Packs

    def import_pack(
        self,
        pack: JurisdictionPack,
        organization_id: UUID,
        actor_id: UUID,
    ) -> PackImportResult:
        """
        Publish every rule set and allowance of a pack and register its
        default pay components.

        Components whose code already exists for the organization are left
        untouched and reported in ``skipped_components``.  Everything is
        published inside one SAVEPOINT.

        Raises:
            ValueError: The pack fails validation.
        """
        validation = validate_pack(pack)
        if not validation.is_valid:
            raise ValueError(
                f"Pack {pack.pack_id} failed validation:\n"
                + "\n".join(f"  - {e}" for e in validation.errors)
            )

        existing_codes = set(self._session.execute(
            select(PayComponentModel.code).where(
                PayComponentModel.organization_id == organization_id,
            )
        ).scalars().all())

        rule_sets: list[TaxRuleSet] = []
        allowances: list[Allowance] = []
        components: list[PayComponent] = []
        skipped: list[str] = []

        with self._session.begin_nested():
            for definition in sorted(
                pack.rule_sets, key=lambda d: (d.tax_type, d.effective_from),
            ):
                rule_sets.append(self.publish_rule_set(
                    build_rule_set(pack.jurisdiction, definition), organization_id, actor_id,
                ))
            for definition in sorted(
                pack.allowances, key=lambda d: (d.allowance_type, d.effective_from),
            ):
                allowances.append(self.publish_allowance(
                    build_allowance(pack.jurisdiction, definition), organization_id, actor_id,
                ))
            for definition in pack.pay_components:
                if definition.code in existing_codes:
                    skipped.append(definition.code)
                    continue
                component = build_pay_component(definition)
                self._session.add(
                    PayComponentModel.from_dto(component, organization_id, created_by_id=actor_id)
                )
                components.append(component)
            self._session.flush()

        logger.info(
            "pack_imported",
            extra={
                "pack_id": pack.pack_id,
                "checksum": pack.checksum,
                "rule_set_count": len(rule_sets),
                "allowance_count": len(allowances),
                "component_count": len(components),
                "skipped_components": skipped,
            },
        )
        return PackImportResult(
            pack_id=pack.pack_id,
            checksum=pack.checksum,
            rule_sets=tuple(rule_sets),
            allowances=tuple(allowances),
            components=tuple(components),
            skipped_components=tuple(skipped),
        )

    # Queries

    def compare_rule_sets(self, a: TaxRuleSet, b: TaxRuleSet) -> RuleSetDiff:
        return compare_rule_sets(a, b)

    def get_rule_set(self, rule_set_id: UUID) -> TaxRuleSet:
        model = self._session.get(TaxRuleSetModel, rule_set_id)
        if model is None:
            raise RuleVersionNotFoundError("TaxRuleSet", str(rule_set_id))
        return model.to_dto()

    def load_catalog(self, organization_id: UUID, currency: str = "SRD") -> RuleCatalog:
        """Read-only snapshot of every published version."""
        return SqlPayrollRepository(self._session, organization_id, currency).load_catalog()

    # Internal helpers

    @staticmethod
    def _check_window(record_type: str, effective_from: date, effective_to: date | None) -> None:
        if effective_to is not None and effective_to <= effective_from:
            raise InvalidRuleVersionError(
                record_type, "effective_to must be after effective_from",
            )

    @staticmethod
    def _check_closable(record_type: str, previous, effective_to: date) -> None:
        if previous.effective_to is not None:
            raise InvalidRuleVersionError(
                record_type,
                f"version {previous.version} is already closed at {previous.effective_to}",
            )
        if effective_to <= previous.effective_from:
            raise InvalidRuleVersionError(
                record_type,
                f"new version must start after {previous.effective_from}",
            )

    def _rule_set_versions(self, organization_id: UUID, rule_set: TaxRuleSet):
        return self._session.execute(
            select(TaxRuleSetModel).where(
                TaxRuleSetModel.organization_id == organization_id,
                TaxRuleSetModel.jurisdiction == rule_set.jurisdiction,
                TaxRuleSetModel.tax_type == rule_set.tax_type.value,
            )
        ).scalars().all()

    def _allowance_versions(self, organization_id: UUID, allowance: Allowance):
        return self._session.execute(
            select(AllowanceModel).where(
                AllowanceModel.organization_id == organization_id,
                AllowanceModel.jurisdiction == allowance.jurisdiction,
                AllowanceModel.allowance_type == allowance.allowance_type.value,
            )
        ).scalars().all()
