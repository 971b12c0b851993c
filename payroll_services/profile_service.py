"""
TaxProfileService -- audited mutation of employee tax profiles.

Responsibility:
    Creates tax profiles and records residency and overtime opt-in
    transitions.  Every transition writes an append-only
    ``TaxProfileChangeModel`` row (old value, new value, effective date,
    reason) and an audit event in the same SAVEPOINT.

Architecture position:
    Services -- imperative shell over the kernel models and AuditService.

Invariants enforced:
    - A profile flag holds from its effective date; the value it replaced
      is kept on the profile as the prior value for earlier dates.
    - A change effective on or before the employee's latest finalized pay
      date is rejected, so finalized paychecks stay reproducible.

Failure modes:
    - TaxProfileNotFoundError: no profile for the employee.
    - RetroactiveProfileChangeError: the change reaches back into a
      finalized pay date.
"""

from __future__ import annotations

from datetime import date
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.orm import Session

from payroll_kernel.domain.clock import Clock, SystemClock
from payroll_kernel.domain.types import EmployeeTaxProfile, ResidencyStatus
from payroll_kernel.exceptions import RetroactiveProfileChangeError, TaxProfileNotFoundError
from payroll_kernel.logging_config import LogContext, get_logger
from payroll_kernel.models.audit_event import AuditAction
from payroll_kernel.models.tax_profile import EmployeeTaxProfileModel, TaxProfileChangeModel
from payroll_kernel.services.audit_service import AuditService
from payroll_services.repositories import SqlPayrollRepository

logger = get_logger("services.tax_profile")

RESIDENCY_FIELD = "residency_status"
OVERTIME_OPT_IN_FIELD = "overtime_opt_in"


def _flag(value: bool) -> str:
    return "true" if value else "false"


class TaxProfileService:
    """
    Tax profile mutations for one organization.

    Non-goals:
        - Does NOT call ``session.commit()`` -- caller controls boundaries.
        - Does NOT manage employee master data.
    """

    def __init__(
        self,
        session: Session,
        organization_id: UUID,
        clock: Clock | None = None,
        auditor: AuditService | None = None,
    ):
        self._session = session
        self._organization_id = organization_id
        self._clock = clock or SystemClock()
        self._auditor = auditor or AuditService(session, self._clock)
        self._repository = SqlPayrollRepository(session, organization_id)

    def create_profile(self, profile: EmployeeTaxProfile, actor_id: UUID) -> EmployeeTaxProfile:
        model = EmployeeTaxProfileModel.from_dto(
            profile, self._organization_id, created_by_id=actor_id,
        )
        self._session.add(model)
        self._session.flush()
        logger.info(
            "tax_profile_created",
            extra={
                "employee_id": str(profile.employee_id),
                "jurisdiction": profile.jurisdiction,
                "residency_status": profile.residency_status.value,
            },
        )
        return model.to_dto()

    def get_profile(self, employee_id: UUID) -> EmployeeTaxProfile:
        return self._get_model(employee_id).to_dto()

    def set_residency(
        self,
        employee_id: UUID,
        status: ResidencyStatus,
        effective_date: date,
        actor_id: UUID,
        reason: str | None = None,
    ) -> EmployeeTaxProfile:
        """
        Record a residency transition effective on ``effective_date``.

        Raises:
            TaxProfileNotFoundError: No profile for the employee.
            RetroactiveProfileChangeError: ``effective_date`` is on or
                before the latest finalized pay date.
        """
        status = ResidencyStatus(status)
        model = self._get_model(employee_id)
        if (
            model.residency_status == status.value
            and model.residency_effective_date == effective_date
        ):
            return model.to_dto()

        self._check_not_retroactive(employee_id, RESIDENCY_FIELD, effective_date)
        return self._apply_change(
            model,
            field_name=RESIDENCY_FIELD,
            action=AuditAction.RESIDENCY_CHANGED,
            old_value=model.residency_status,
            new_value=status.value,
            old_effective_date=model.residency_effective_date,
            effective_date=effective_date,
            actor_id=actor_id,
            reason=reason,
        )

    def set_overtime_opt_in(
        self,
        employee_id: UUID,
        opt_in: bool,
        effective_date: date,
        actor_id: UUID,
        reason: str | None = None,
    ) -> EmployeeTaxProfile:
        """
        Record an overtime special-rate opt-in (or opt-out).

        Raises:
            TaxProfileNotFoundError: No profile for the employee.
            RetroactiveProfileChangeError: ``effective_date`` is on or
                before the latest finalized pay date.
        """
        model = self._get_model(employee_id)
        if model.overtime_opt_in == opt_in and model.overtime_opt_in_date == effective_date:
            return model.to_dto()

        self._check_not_retroactive(employee_id, OVERTIME_OPT_IN_FIELD, effective_date)
        return self._apply_change(
            model,
            field_name=OVERTIME_OPT_IN_FIELD,
            action=AuditAction.OVERTIME_OPT_IN_CHANGED,
            old_value=_flag(model.overtime_opt_in),
            new_value=_flag(opt_in),
            old_effective_date=model.overtime_opt_in_date,
            effective_date=effective_date,
            actor_id=actor_id,
            reason=reason,
        )

    def get_changes(self, employee_id: UUID) -> list[TaxProfileChangeModel]:
        """Change history for an employee, oldest first."""
        return list(self._session.execute(
            select(TaxProfileChangeModel)
            .join(EmployeeTaxProfileModel, TaxProfileChangeModel.profile_id == EmployeeTaxProfileModel.id)
            .where(
                EmployeeTaxProfileModel.organization_id == self._organization_id,
                TaxProfileChangeModel.employee_id == employee_id,
            )
            .order_by(TaxProfileChangeModel.changed_at, TaxProfileChangeModel.created_at)
        ).scalars().all())

    # Internal helpers

    def _get_model(self, employee_id: UUID) -> EmployeeTaxProfileModel:
        model = self._session.execute(
            select(EmployeeTaxProfileModel).where(
                EmployeeTaxProfileModel.organization_id == self._organization_id,
                EmployeeTaxProfileModel.employee_id == employee_id,
            )
        ).scalar_one_or_none()
        if model is None:
            raise TaxProfileNotFoundError(str(employee_id))
        return model

    def _check_not_retroactive(self, employee_id: UUID, field: str, effective_date: date) -> None:
        last_pay_date = self._repository.last_finalized_pay_date(employee_id)
        if last_pay_date is not None and effective_date <= last_pay_date:
            logger.warning(
                "retroactive_profile_change_rejected",
                extra={
                    "employee_id": str(employee_id),
                    "field": field,
                    "effective_date": effective_date,
                    "last_finalized_pay_date": last_pay_date,
                },
            )
            raise RetroactiveProfileChangeError(
                str(employee_id), field, effective_date, last_pay_date,
            )

    def _apply_change(
        self,
        model: EmployeeTaxProfileModel,
        *,
        field_name: str,
        action: AuditAction,
        old_value: str | None,
        new_value: str,
        old_effective_date: date | None,
        effective_date: date,
        actor_id: UUID,
        reason: str | None,
    ) -> EmployeeTaxProfile:
        with LogContext.bind(employee_id=model.employee_id, actor_id=actor_id):
            with self._session.begin_nested():
                if field_name == RESIDENCY_FIELD:
                    model.prior_residency_status = old_value
                    model.residency_status = new_value
                    model.residency_effective_date = effective_date
                else:
                    model.prior_overtime_opt_in = old_value == "true"
                    model.overtime_opt_in = new_value == "true"
                    model.overtime_opt_in_date = effective_date
                model.updated_by_id = actor_id

                self._session.add(TaxProfileChangeModel(
                    profile_id=model.id,
                    employee_id=model.employee_id,
                    field_name=field_name,
                    old_value=old_value,
                    new_value=new_value,
                    old_effective_date=old_effective_date,
                    effective_date=effective_date,
                    reason=reason,
                    changed_at=self._clock.now(),
                    created_by_id=actor_id,
                ))
                self._session.flush()

                self._auditor.record_profile_change(
                    profile_id=model.id,
                    action=action,
                    employee_id=model.employee_id,
                    old_value=old_value,
                    new_value=new_value,
                    effective_date=effective_date,
                    reason=reason,
                    actor_id=actor_id,
                )

            logger.info(
                "tax_profile_changed",
                extra={
                    "field": field_name,
                    "old_value": old_value,
                    "new_value": new_value,
                    "effective_date": effective_date,
                },
            )
        return model.to_dto()
