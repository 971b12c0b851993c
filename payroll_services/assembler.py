"""
PaycheckAssembler -- atomic persistence of finalized paychecks.

Responsibility:
    Turns a ``PaycheckCalculationResult`` into a finalized paycheck row,
    its itemized component rows and a ``paycheck_finalized`` audit event.
    Voids paychecks and creates corrections that point back to the voided
    original.

Architecture position:
    Services -- imperative shell.  Consumes engine results and writes
    through the kernel models and AuditService.

Invariants enforced:
    - All-or-nothing: header, components and audit event are written in one
      SAVEPOINT.  A failure leaves no partial paycheck.
    - At most one finalized, non-voided paycheck per employee and pay
      period; an existing one is never overwritten.
    - Finalized rows change only through ``void_paycheck``; ORM listeners
      (db/immutability.py) block every other update or delete.

Failure modes:
    - PaycheckAlreadyFinalizedError: a finalized paycheck exists for the
      employee and period, or for the employee in the same run.
    - PaycheckNotFoundError / PaycheckNotFinalizedError on void/correct.

Audit relevance:
    The audit payload carries the applied rule-set and allowance versions
    and the input fingerprint, so a paycheck can be recomputed and compared.
"""

from __future__ import annotations

import json
from dataclasses import dataclass
from datetime import date, datetime
from decimal import Decimal
from typing import Any
from uuid import UUID, uuid4

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from payroll_engines.paycheck import PaycheckCalculationResult
from payroll_engines.pipeline import PaycheckComponentResult
from payroll_kernel.domain.clock import Clock, SystemClock
from payroll_kernel.exceptions import (
    InvalidPaycheckInputError,
    PaycheckAlreadyFinalizedError,
    PaycheckNotFinalizedError,
    PaycheckNotFoundError,
)
from payroll_kernel.logging_config import LogContext, get_logger
from payroll_kernel.models.paycheck import (
    PaycheckComponentModel,
    PaycheckModel,
    PaycheckStatus,
)
from payroll_kernel.services.audit_service import AuditService
from payroll_kernel.utils.hashing import canonicalize_json

logger = get_logger("services.assembler")


@dataclass(frozen=True)
class PaycheckRecord:
    """Immutable view of a persisted paycheck."""

    paycheck_id: UUID
    employee_id: UUID
    run_id: UUID | None
    status: PaycheckStatus
    pay_period_start: date
    pay_period_end: date
    pay_date: date
    currency: str
    gross_pay: Decimal
    taxable_income: Decimal
    total_tax: Decimal
    total_deductions: Decimal
    net_pay: Decimal
    input_fingerprint: str
    finalized_at: datetime
    applied_rule_versions: tuple[dict[str, Any], ...] = ()
    components: tuple[PaycheckComponentResult, ...] = ()
    bonus_fallback_applied: bool = False
    voided_at: datetime | None = None
    void_reason: str | None = None
    replaces_paycheck_id: UUID | None = None

    @property
    def is_finalized(self) -> bool:
        return self.status is PaycheckStatus.FINALIZED


class PaycheckAssembler:
    """
    Persists paychecks for one organization.

    Non-goals:
        - Does NOT calculate anything; it stores engine results verbatim.
        - Does NOT call ``session.commit()`` -- caller controls boundaries.
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

    def assemble(
        self,
        result: PaycheckCalculationResult,
        actor_id: UUID,
        run_id: UUID | None = None,
    ) -> PaycheckRecord:
        """
        Persist ``result`` as a finalized paycheck.

        Raises:
            PaycheckAlreadyFinalizedError: A finalized paycheck already
                exists for the employee and pay period (or run).
        """
        return self._assemble(result, actor_id, run_id=run_id)

    def void_paycheck(self, paycheck_id: UUID, reason: str, actor_id: UUID) -> PaycheckRecord:
        """
        Move a paycheck from finalized to voided.

        Raises:
            PaycheckNotFoundError: Unknown paycheck.
            PaycheckNotFinalizedError: The paycheck is already voided.
        """
        model = self._get_model(paycheck_id)
        if model.status != PaycheckStatus.FINALIZED.value:
            raise PaycheckNotFinalizedError(str(paycheck_id), model.status)

        with self._session.begin_nested():
            model.status = PaycheckStatus.VOIDED.value
            model.voided_at = self._clock.now()
            model.voided_by_id = actor_id
            model.void_reason = reason
            model.updated_by_id = actor_id
            self._session.flush()
            self._auditor.record_paycheck_voided(
                paycheck_id=model.id, reason=reason, actor_id=actor_id,
            )

        logger.info(
            "paycheck_voided",
            extra={
                "paycheck_id": str(model.id),
                "employee_id": str(model.employee_id),
                "reason": reason,
            },
        )
        return self._to_record(model)

    def correct_paycheck(
        self,
        paycheck_id: UUID,
        result: PaycheckCalculationResult,
        reason: str,
        actor_id: UUID,
    ) -> PaycheckRecord:
        """
        Void ``paycheck_id`` and persist ``result`` as its replacement,
        atomically.

        Raises:
            PaycheckNotFoundError / PaycheckNotFinalizedError: As for void.
            InvalidPaycheckInputError: ``result`` is for another employee.
        """
        original = self._get_model(paycheck_id)
        if original.employee_id != result.employee_id:
            raise InvalidPaycheckInputError(
                "employee_id", "a correction must be for the same employee",
            )

        with self._session.begin_nested():
            self.void_paycheck(paycheck_id, reason, actor_id)
            record = self._assemble(
                result, actor_id, run_id=None, replaces_paycheck_id=original.id,
            )
            self._auditor.record_paycheck_corrected(
                paycheck_id=record.paycheck_id,
                replaces_paycheck_id=original.id,
                reason=reason,
                actor_id=actor_id,
            )

        logger.info(
            "paycheck_corrected",
            extra={
                "paycheck_id": str(record.paycheck_id),
                "replaces_paycheck_id": str(original.id),
                "net_pay_before": original.net_pay,
                "net_pay_after": record.net_pay,
            },
        )
        return record

    def get_paycheck(self, paycheck_id: UUID) -> PaycheckRecord:
        return self._to_record(self._get_model(paycheck_id))

    def find_finalized(
        self,
        employee_id: UUID,
        pay_period_start: date,
        pay_period_end: date,
    ) -> PaycheckRecord | None:
        model = self._find_finalized_model(employee_id, pay_period_start, pay_period_end)
        return self._to_record(model) if model is not None else None

    # Internal helpers

    def _assemble(
        self,
        result: PaycheckCalculationResult,
        actor_id: UUID,
        run_id: UUID | None,
        replaces_paycheck_id: UUID | None = None,
    ) -> PaycheckRecord:
        existing = self._find_finalized_model(
            result.employee_id, result.pay_period_start, result.pay_period_end,
        )
        if existing is not None:
            logger.warning(
                "paycheck_already_finalized",
                extra={
                    "employee_id": str(result.employee_id),
                    "paycheck_id": str(existing.id),
                },
            )
            raise PaycheckAlreadyFinalizedError(
                str(result.employee_id),
                result.pay_period_start,
                result.pay_period_end,
                str(existing.id),
            )

        paycheck_id = uuid4()
        applied = [v.to_dict() for v in result.applied_rule_versions]

        with LogContext.bind(employee_id=result.employee_id, paycheck_id=paycheck_id):
            try:
                with self._session.begin_nested():
                    model = self._build_model(
                        paycheck_id, result, actor_id, run_id, replaces_paycheck_id, applied,
                    )
                    self._session.add(model)
                    self._session.flush()
                    self._auditor.record_paycheck_finalized(
                        paycheck_id=paycheck_id,
                        employee_id=result.employee_id,
                        pay_date=result.pay_date,
                        applied_rule_versions=applied,
                        input_fingerprint=result.input_fingerprint,
                        net_pay=result.net_pay,
                        actor_id=actor_id,
                        run_id=run_id,
                    )
            except IntegrityError:
                # UNIQUE(run_id, employee_id) lost a race within the run
                duplicate = self._session.execute(
                    select(PaycheckModel.id).where(
                        PaycheckModel.run_id == run_id,
                        PaycheckModel.employee_id == result.employee_id,
                    )
                ).scalar_one_or_none()
                raise PaycheckAlreadyFinalizedError(
                    str(result.employee_id),
                    result.pay_period_start,
                    result.pay_period_end,
                    str(duplicate),
                ) from None

            logger.info(
                "paycheck_finalized",
                extra={
                    "run_id": str(run_id) if run_id else None,
                    "net_pay": result.net_pay,
                    "component_count": len(result.components),
                    "input_fingerprint": result.input_fingerprint,
                },
            )
        return self._to_record(model)

    def _build_model(
        self,
        paycheck_id: UUID,
        result: PaycheckCalculationResult,
        actor_id: UUID,
        run_id: UUID | None,
        replaces_paycheck_id: UUID | None,
        applied: list[dict[str, Any]],
    ) -> PaycheckModel:
        wage_period = result.wage_period
        model = PaycheckModel(
            id=paycheck_id,
            organization_id=self._organization_id,
            employee_id=result.employee_id,
            run_id=run_id,
            pay_period_start=result.pay_period_start,
            pay_period_end=result.pay_period_end,
            pay_date=result.pay_date,
            status=PaycheckStatus.FINALIZED.value,
            currency=result.currency,
            gross_pay=result.gross_pay,
            taxable_income=result.taxable_income,
            income_tax=result.tax.income_tax,
            social_security_tax=result.tax.social_security_tax,
            medicare_tax=result.tax.medicare_tax,
            total_tax=result.total_tax,
            total_deductions=result.total_deductions,
            net_pay=result.net_pay,
            wage_period_type=wage_period.period_type.value,
            periods_covered=Decimal(wage_period.periods_covered),
            days_in_period=Decimal(wage_period.days_in_period),
            annual_fraction=wage_period.annual_fraction,
            allowance_applied=result.allowance_applied,
            applied_rule_versions=applied,
            # JSON columns cannot hold Decimal/date; store the canonical form
            calculation_details=json.loads(canonicalize_json(result.calculation_details)),
            input_fingerprint=result.input_fingerprint,
            bonus_fallback_applied=result.bonus_fallback_applied,
            finalized_at=self._clock.now(),
            replaces_paycheck_id=replaces_paycheck_id,
            created_by_id=actor_id,
        )
        model.components = [
            PaycheckComponentModel(
                line_no=line_no,
                component_code=line.component_code,
                category=line.category.value,
                amount=line.amount,
                is_deduction=line.is_deduction,
                is_taxable=line.is_taxable,
                exempt_amount=line.exempt_amount,
                allowance_type=line.allowance_type.value if line.allowance_type else None,
                created_by_id=actor_id,
            )
            for line_no, line in enumerate(result.components, start=1)
        ]
        return model

    def _get_model(self, paycheck_id: UUID) -> PaycheckModel:
        model = self._session.get(PaycheckModel, paycheck_id)
        if model is None or model.organization_id != self._organization_id:
            raise PaycheckNotFoundError(str(paycheck_id))
        return model

    def _find_finalized_model(
        self,
        employee_id: UUID,
        pay_period_start: date,
        pay_period_end: date,
    ) -> PaycheckModel | None:
        return self._session.execute(
            select(PaycheckModel).where(
                PaycheckModel.organization_id == self._organization_id,
                PaycheckModel.employee_id == employee_id,
                PaycheckModel.pay_period_start == pay_period_start,
                PaycheckModel.pay_period_end == pay_period_end,
                PaycheckModel.status == PaycheckStatus.FINALIZED.value,
            )
        ).scalars().first()

    @staticmethod
    def _to_record(model: PaycheckModel) -> PaycheckRecord:
        return PaycheckRecord(
            paycheck_id=model.id,
            employee_id=model.employee_id,
            run_id=model.run_id,
            status=PaycheckStatus(model.status),
            pay_period_start=model.pay_period_start,
            pay_period_end=model.pay_period_end,
            pay_date=model.pay_date,
            currency=model.currency,
            gross_pay=model.gross_pay,
            taxable_income=model.taxable_income,
            total_tax=model.total_tax,
            total_deductions=model.total_deductions,
            net_pay=model.net_pay,
            input_fingerprint=model.input_fingerprint,
            finalized_at=model.finalized_at,
            applied_rule_versions=tuple(model.applied_rule_versions or ()),
            components=tuple(c.to_dto() for c in model.components),
            bonus_fallback_applied=model.bonus_fallback_applied,
            voided_at=model.voided_at,
            void_reason=model.void_reason,
            replaces_paycheck_id=model.replaces_paycheck_id,
        )
