"""
Payroll repositories -- read access to the inputs of a paycheck calculation.

Responsibility:
    Loads everything the pure ``PaycheckCalculator`` needs and nothing
    else: the employee's tax profile, a read-only rule catalog snapshot,
    the organization's active pay components, year-to-date usage of capped
    allowances and the latest finalized pay date.

Architecture position:
    Services -- the read side of the imperative shell.  Two interchangeable
    implementations satisfy ``PayrollRepository``:

        SqlPayrollRepository       SQLAlchemy session, one organization
        InMemoryPayrollRepository  plain Python state, for tests and tools

Invariants enforced:
    - Repositories never add, flush or commit; they return domain DTOs,
      not ORM rows.
    - Year-to-date usage counts finalized, non-voided paychecks only.

Failure modes:
    - TaxProfileNotFoundError: the employee has no profile.
"""

from __future__ import annotations

from collections import defaultdict
from collections.abc import Iterable
from datetime import date
from decimal import Decimal
from typing import Protocol, runtime_checkable
from uuid import UUID

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from payroll_engines.rule_resolver import RuleCatalog
from payroll_kernel.domain.types import (
    Allowance,
    AllowanceType,
    EmployeeTaxProfile,
    PayComponent,
    TaxRuleSet,
)
from payroll_kernel.exceptions import TaxProfileNotFoundError
from payroll_kernel.models.pay_component import PayComponentModel
from payroll_kernel.models.paycheck import (
    PaycheckComponentModel,
    PaycheckModel,
    PaycheckStatus,
)
from payroll_kernel.models.rule_set import AllowanceModel, TaxRuleSetModel
from payroll_kernel.models.tax_profile import EmployeeTaxProfileModel


@runtime_checkable
class PayrollRepository(Protocol):
    """Protocol for the read side of paycheck calculation.

    Implementations: SqlPayrollRepository, InMemoryPayrollRepository.
    """

    def get_profile(self, employee_id: UUID) -> EmployeeTaxProfile:
        """The employee's tax profile.

        Raises:
            TaxProfileNotFoundError: When the employee has none.
        """
        ...

    def load_catalog(self) -> RuleCatalog:
        """Every published rule set and allowance, as one snapshot."""
        ...

    def load_components(self) -> tuple[PayComponent, ...]:
        """The active pay component graph."""
        ...

    def ytd_capped_usage(
        self,
        employee_id: UUID,
        pay_date: date,
    ) -> dict[AllowanceType, Decimal]:
        """Exempt amounts already used this calendar year, before ``pay_date``."""
        ...

    def last_finalized_pay_date(self, employee_id: UUID) -> date | None:
        ...


class SqlPayrollRepository:
    """PayrollRepository over a SQLAlchemy session, scoped to one organization."""

    def __init__(self, session: Session, organization_id: UUID, currency: str = "SRD"):
        self._session = session
        self._organization_id = organization_id
        self._currency = currency

    @property
    def organization_id(self) -> UUID:
        return self._organization_id

    def get_profile(self, employee_id: UUID) -> EmployeeTaxProfile:
        model = self._session.execute(
            select(EmployeeTaxProfileModel).where(
                EmployeeTaxProfileModel.organization_id == self._organization_id,
                EmployeeTaxProfileModel.employee_id == employee_id,
            )
        ).scalar_one_or_none()
        if model is None:
            raise TaxProfileNotFoundError(str(employee_id))
        return model.to_dto()

    def load_catalog(self) -> RuleCatalog:
        rule_sets = self._session.execute(
            select(TaxRuleSetModel)
            .where(TaxRuleSetModel.organization_id == self._organization_id)
            .order_by(
                TaxRuleSetModel.jurisdiction,
                TaxRuleSetModel.tax_type,
                TaxRuleSetModel.version,
            )
        ).scalars().all()
        allowances = self._session.execute(
            select(AllowanceModel)
            .where(AllowanceModel.organization_id == self._organization_id)
            .order_by(
                AllowanceModel.jurisdiction,
                AllowanceModel.allowance_type,
                AllowanceModel.version,
            )
        ).scalars().all()
        return RuleCatalog(
            rule_sets=tuple(r.to_dto() for r in rule_sets),
            allowances=tuple(a.to_dto() for a in allowances),
            currency=self._currency,
        )

    def load_components(self) -> tuple[PayComponent, ...]:
        models = self._session.execute(
            select(PayComponentModel)
            .where(
                PayComponentModel.organization_id == self._organization_id,
                PayComponentModel.is_active.is_(True),
            )
            .order_by(PayComponentModel.sequence_order, PayComponentModel.code)
        ).scalars().all()
        return tuple(m.to_dto() for m in models)

    def ytd_capped_usage(
        self,
        employee_id: UUID,
        pay_date: date,
    ) -> dict[AllowanceType, Decimal]:
        rows = self._session.execute(
            select(
                PaycheckComponentModel.allowance_type,
                func.sum(PaycheckComponentModel.exempt_amount),
            )
            .join(PaycheckModel, PaycheckComponentModel.paycheck_id == PaycheckModel.id)
            .where(
                PaycheckModel.organization_id == self._organization_id,
                PaycheckModel.employee_id == employee_id,
                PaycheckModel.status == PaycheckStatus.FINALIZED.value,
                PaycheckModel.pay_date >= date(pay_date.year, 1, 1),
                PaycheckModel.pay_date < pay_date,
                PaycheckComponentModel.allowance_type.is_not(None),
            )
            .group_by(PaycheckComponentModel.allowance_type)
        ).all()
        return {
            AllowanceType(allowance_type): Decimal(str(total))
            for allowance_type, total in rows
            if total is not None
        }

    def last_finalized_pay_date(self, employee_id: UUID) -> date | None:
        return self._session.execute(
            select(func.max(PaycheckModel.pay_date)).where(
                PaycheckModel.organization_id == self._organization_id,
                PaycheckModel.employee_id == employee_id,
                PaycheckModel.status == PaycheckStatus.FINALIZED.value,
            )
        ).scalar_one_or_none()


class InMemoryPayrollRepository:
    """PayrollRepository backed by plain Python state.

    ``record_paycheck`` stands in for the assembler so year-to-date usage
    and the retroactivity check can be exercised without a database.
    """

    def __init__(
        self,
        profiles: Iterable[EmployeeTaxProfile] = (),
        rule_sets: Iterable[TaxRuleSet] = (),
        allowances: Iterable[Allowance] = (),
        components: Iterable[PayComponent] = (),
        currency: str = "SRD",
    ):
        self._profiles = {p.employee_id: p for p in profiles}
        self._rule_sets = list(rule_sets)
        self._allowances = list(allowances)
        self._components = tuple(components)
        self._currency = currency
        # employee_id -> [(pay_date, {allowance_type: exempt})]
        self._paychecks: dict[UUID, list[tuple[date, dict[AllowanceType, Decimal]]]] = (
            defaultdict(list)
        )

    @classmethod
    def from_catalog(
        cls,
        catalog: RuleCatalog,
        profiles: Iterable[EmployeeTaxProfile] = (),
        components: Iterable[PayComponent] = (),
    ) -> "InMemoryPayrollRepository":
        return cls(
            profiles=profiles,
            rule_sets=catalog.rule_sets,
            allowances=catalog.allowances,
            components=components,
            currency=catalog.currency,
        )

    def put_profile(self, profile: EmployeeTaxProfile) -> None:
        self._profiles[profile.employee_id] = profile

    def get_profile(self, employee_id: UUID) -> EmployeeTaxProfile:
        profile = self._profiles.get(employee_id)
        if profile is None:
            raise TaxProfileNotFoundError(str(employee_id))
        return profile

    def load_catalog(self) -> RuleCatalog:
        return RuleCatalog(
            rule_sets=tuple(self._rule_sets),
            allowances=tuple(self._allowances),
            currency=self._currency,
        )

    def load_components(self) -> tuple[PayComponent, ...]:
        return self._components

    def record_paycheck(
        self,
        employee_id: UUID,
        pay_date: date,
        exempt_by_type: dict[AllowanceType, Decimal] | None = None,
    ) -> None:
        self._paychecks[employee_id].append((pay_date, dict(exempt_by_type or {})))

    def ytd_capped_usage(
        self,
        employee_id: UUID,
        pay_date: date,
    ) -> dict[AllowanceType, Decimal]:
        usage: dict[AllowanceType, Decimal] = {}
        for paid_on, exempt in self._paychecks.get(employee_id, ()):
            if paid_on.year != pay_date.year or paid_on >= pay_date:
                continue
            for allowance_type, amount in exempt.items():
                usage[allowance_type] = usage.get(allowance_type, Decimal("0")) + amount
        return usage

    def last_finalized_pay_date(self, employee_id: UUID) -> date | None:
        dates = [paid_on for paid_on, _ in self._paychecks.get(employee_id, ())]
        return max(dates) if dates else None
