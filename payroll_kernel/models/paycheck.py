"""
Module: payroll_kernel.models.paycheck
Responsibility: ORM persistence for finalized paychecks and their itemized
    component rows.
Architecture position: Kernel > Models.  May import from db/base.py only.

Invariants enforced:
    - A paycheck is written once, already FINALIZED.  The only permitted
      change afterwards is FINALIZED -> VOIDED (with voided_at, void_reason
      and the voiding actor); everything else is blocked by
      db/immutability.py.
    - Component rows are immutable from creation.
    - One paycheck per employee per run: UNIQUE(run_id, employee_id).

Failure modes:
    - ImmutabilityViolationError on any other UPDATE/DELETE.
    - IntegrityError if a run writes two paychecks for one employee.

Audit relevance:
    ``applied_rule_versions`` and the proration columns record exactly which
    rule set / allowance versions and which wage-period fraction produced
    the amounts; ``calculation_details`` holds the bracket, allowance, bonus
    smoothing and overtime tier breakdowns.  Corrections point back to the
    voided original through ``replaces_paycheck_id``.
"""

from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from uuid import UUID

from sqlalchemy import (
    JSON,
    Boolean,
    Date,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    String,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from payroll_kernel.db.base import TrackedBase, UUIDString


class PaycheckStatus(str, Enum):
    """Lifecycle status of a persisted paycheck.

    Transitions are one-way: FINALIZED -> VOIDED.
    """

    FINALIZED = "finalized"
    VOIDED = "voided"


class PaycheckModel(TrackedBase):
    """Persisted paycheck header."""

    __tablename__ = "payroll_paychecks"

    organization_id: Mapped[UUID] = mapped_column(nullable=False)
    employee_id: Mapped[UUID] = mapped_column(nullable=False)
    run_id: Mapped[UUID | None] = mapped_column(UUIDString(), nullable=True)
    pay_period_start: Mapped[date] = mapped_column(Date, nullable=False)
    pay_period_end: Mapped[date] = mapped_column(Date, nullable=False)
    pay_date: Mapped[date] = mapped_column(Date, nullable=False)
    status: Mapped[str] = mapped_column(String(20), nullable=False)
    currency: Mapped[str] = mapped_column(String(3), nullable=False)

    gross_pay: Mapped[Decimal] = mapped_column(nullable=False)
    taxable_income: Mapped[Decimal] = mapped_column(nullable=False)
    income_tax: Mapped[Decimal] = mapped_column(nullable=False)
    social_security_tax: Mapped[Decimal] = mapped_column(nullable=False)
    medicare_tax: Mapped[Decimal] = mapped_column(nullable=False)
    total_tax: Mapped[Decimal] = mapped_column(nullable=False)
    total_deductions: Mapped[Decimal] = mapped_column(nullable=False)
    net_pay: Mapped[Decimal] = mapped_column(nullable=False)

    # Wage-period proration figures
    wage_period_type: Mapped[str] = mapped_column(String(20), nullable=False)
    periods_covered: Mapped[Decimal] = mapped_column(nullable=False)
    days_in_period: Mapped[Decimal] = mapped_column(nullable=False)
    annual_fraction: Mapped[Decimal] = mapped_column(nullable=False)
    allowance_applied: Mapped[Decimal] = mapped_column(nullable=False)

    applied_rule_versions: Mapped[list] = mapped_column(JSON, nullable=False)
    calculation_details: Mapped[dict] = mapped_column(JSON, nullable=False)
    input_fingerprint: Mapped[str] = mapped_column(String(64), nullable=False)
    bonus_fallback_applied: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)

    finalized_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    voided_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    voided_by_id: Mapped[UUID | None] = mapped_column(UUIDString(), nullable=True)
    void_reason: Mapped[str | None] = mapped_column(String(500), nullable=True)
    replaces_paycheck_id: Mapped[UUID | None] = mapped_column(UUIDString(), nullable=True)

    components: Mapped[list["PaycheckComponentModel"]] = relationship(
        "PaycheckComponentModel",
        back_populates="paycheck",
        order_by="PaycheckComponentModel.line_no",
        lazy="selectin",
        cascade="save-update, merge",
    )

    __table_args__ = (
        UniqueConstraint("run_id", "employee_id", name="uq_payroll_paycheck_run_employee"),
        Index(
            "idx_payroll_paycheck_employee_period",
            "organization_id", "employee_id", "pay_period_start", "pay_period_end",
        ),
        Index("idx_payroll_paycheck_pay_date", "employee_id", "pay_date"),
    )

    @property
    def is_finalized(self) -> bool:
        return self.status == PaycheckStatus.FINALIZED.value

    def __repr__(self) -> str:
        return (
            f"<PaycheckModel {self.employee_id} {self.pay_period_start}.."
            f"{self.pay_period_end} {self.status} net={self.net_pay}>"
        )


class PaycheckComponentModel(TrackedBase):
    """One itemized line of a paycheck (``PaycheckComponentResult``)."""

    __tablename__ = "payroll_paycheck_components"

    paycheck_id: Mapped[UUID] = mapped_column(
        ForeignKey("payroll_paychecks.id"), nullable=False,
    )
    line_no: Mapped[int] = mapped_column(Integer, nullable=False)
    component_code: Mapped[str] = mapped_column(String(50), nullable=False)
    category: Mapped[str] = mapped_column(String(50), nullable=False)
    amount: Mapped[Decimal] = mapped_column(nullable=False)
    is_deduction: Mapped[bool] = mapped_column(Boolean, nullable=False)
    is_taxable: Mapped[bool] = mapped_column(Boolean, nullable=False)
    exempt_amount: Mapped[Decimal] = mapped_column(nullable=False, default=Decimal("0"))
    allowance_type: Mapped[str | None] = mapped_column(String(50), nullable=True)

    paycheck: Mapped["PaycheckModel"] = relationship(
        "PaycheckModel", back_populates="components",
    )

    __table_args__ = (
        UniqueConstraint("paycheck_id", "line_no", name="uq_payroll_paycheck_line"),
    )

    def to_dto(self):
        from payroll_engines.pipeline import PaycheckComponentResult
        from payroll_kernel.domain.types import AllowanceType, ComponentCategory
        return PaycheckComponentResult(
            component_code=self.component_code,
            amount=self.amount,
            is_deduction=self.is_deduction,
            is_taxable=self.is_taxable,
            category=ComponentCategory(self.category),
            exempt_amount=self.exempt_amount,
            allowance_type=AllowanceType(self.allowance_type) if self.allowance_type else None,
        )
