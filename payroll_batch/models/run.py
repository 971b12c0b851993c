"""
ORM models for payroll run persistence.

Contract:
    PayrollRunModel and PayrollRunItemModel persist run state and the
    per-employee outcomes.  Each has ``to_dto()`` / ``from_dto()``
    round-trip methods.

Architecture: payroll_batch/models.  Imports from payroll_kernel.db.base only.

Invariants enforced:
    - ``idempotency_key`` is UNIQUE on PayrollRunModel.
    - One item per employee per run: UNIQUE(run_id, employee_id).
"""

from __future__ import annotations

from datetime import date, datetime
from decimal import Decimal
from typing import TYPE_CHECKING
from uuid import UUID

from sqlalchemy import Date, DateTime, ForeignKey, Index, Integer, String, Text, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column, relationship

from payroll_kernel.db.base import TrackedBase, UUIDString

if TYPE_CHECKING:
    from payroll_batch.domain.types import EmployeeOutcome, PayrollRun


class PayrollRunModel(TrackedBase):
    """Persistent payroll run record."""

    __tablename__ = "payroll_runs"

    __table_args__ = (
        Index("ix_payroll_runs_status", "status"),
        Index("ix_payroll_runs_org_period", "organization_id", "pay_period_start", "pay_period_end"),
    )

    organization_id: Mapped[UUID] = mapped_column(nullable=False)
    run_name: Mapped[str] = mapped_column(String(200), nullable=False, default="")
    idempotency_key: Mapped[str] = mapped_column(String(200), nullable=False, unique=True)
    status: Mapped[str] = mapped_column(String(50), nullable=False)
    pay_period_start: Mapped[date] = mapped_column(Date, nullable=False)
    pay_period_end: Mapped[date] = mapped_column(Date, nullable=False)
    pay_date: Mapped[date] = mapped_column(Date, nullable=False)
    total_employees: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    succeeded_count: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    failed_count: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    cancelled_count: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    max_workers: Mapped[int] = mapped_column(Integer, default=1, nullable=False)
    started_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    completed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    error_summary: Mapped[str | None] = mapped_column(Text, nullable=True)

    items: Mapped[list["PayrollRunItemModel"]] = relationship(
        "PayrollRunItemModel",
        back_populates="run",
        order_by="PayrollRunItemModel.item_index",
    )

    def to_dto(self) -> PayrollRun:
        from payroll_batch.domain.types import PayrollRun, PayrollRunStatus

        return PayrollRun(
            run_id=self.id,
            organization_id=self.organization_id,
            run_name=self.run_name,
            idempotency_key=self.idempotency_key,
            status=PayrollRunStatus(self.status),
            pay_period_start=self.pay_period_start,
            pay_period_end=self.pay_period_end,
            pay_date=self.pay_date,
            total_employees=self.total_employees,
            succeeded_count=self.succeeded_count,
            failed_count=self.failed_count,
            cancelled_count=self.cancelled_count,
            max_workers=self.max_workers,
            started_at=self.started_at,
            completed_at=self.completed_at,
            error_summary=self.error_summary,
        )

    @classmethod
    def from_dto(cls, dto: PayrollRun, created_by_id: UUID) -> PayrollRunModel:
        return cls(
            id=dto.run_id,
            organization_id=dto.organization_id,
            run_name=dto.run_name,
            idempotency_key=dto.idempotency_key,
            status=dto.status.value,
            pay_period_start=dto.pay_period_start,
            pay_period_end=dto.pay_period_end,
            pay_date=dto.pay_date,
            total_employees=dto.total_employees,
            succeeded_count=dto.succeeded_count,
            failed_count=dto.failed_count,
            cancelled_count=dto.cancelled_count,
            max_workers=dto.max_workers,
            started_at=dto.started_at,
            completed_at=dto.completed_at,
            error_summary=dto.error_summary,
            created_by_id=created_by_id,
            updated_by_id=None,
        )


class PayrollRunItemModel(TrackedBase):
    """Per-employee outcome within a run."""

    __tablename__ = "payroll_run_items"

    __table_args__ = (
        UniqueConstraint("run_id", "employee_id", name="uq_payroll_run_item_employee"),
        Index("ix_payroll_run_items_run_status", "run_id", "status"),
    )

    run_id: Mapped[UUID] = mapped_column(
        UUIDString(),
        ForeignKey("payroll_runs.id", ondelete="CASCADE"),
        nullable=False,
    )
    item_index: Mapped[int] = mapped_column(Integer, nullable=False)
    employee_id: Mapped[UUID] = mapped_column(nullable=False)
    status: Mapped[str] = mapped_column(String(50), nullable=False)
    paycheck_id: Mapped[UUID | None] = mapped_column(UUIDString(), nullable=True)
    net_pay: Mapped[Decimal | None] = mapped_column(nullable=True)
    error_code: Mapped[str | None] = mapped_column(String(100), nullable=True)
    error_message: Mapped[str | None] = mapped_column(Text, nullable=True)
    duration_ms: Mapped[int] = mapped_column(Integer, default=0, nullable=False)

    run: Mapped["PayrollRunModel"] = relationship(
        "PayrollRunModel",
        back_populates="items",
        foreign_keys=[run_id],
    )

    def to_dto(self) -> EmployeeOutcome:
        from payroll_batch.domain.types import EmployeeOutcome, EmployeeOutcomeStatus

        return EmployeeOutcome(
            item_index=self.item_index,
            employee_id=self.employee_id,
            status=EmployeeOutcomeStatus(self.status),
            paycheck_id=self.paycheck_id,
            net_pay=self.net_pay,
            error_code=self.error_code,
            error_message=self.error_message,
            duration_ms=self.duration_ms,
        )

    @classmethod
    def from_dto(
        cls, dto: EmployeeOutcome, run_id: UUID, created_by_id: UUID,
    ) -> PayrollRunItemModel:
        return cls(
            run_id=run_id,
            item_index=dto.item_index,
            employee_id=dto.employee_id,
            status=dto.status.value,
            paycheck_id=dto.paycheck_id,
            net_pay=dto.net_pay,
            error_code=dto.error_code,
            error_message=dto.error_message,
            duration_ms=dto.duration_ms,
            created_by_id=created_by_id,
            updated_by_id=None,
        )
