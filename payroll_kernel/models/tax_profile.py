"""
Module: payroll_kernel.models.tax_profile
Responsibility: ORM persistence for employee tax profiles and the
    append-only history of changes made to them.
Architecture position: Kernel > Models.  May import from db/base.py only.

Invariants enforced:
    - One profile per (organization_id, employee_id).
    - TaxProfileChangeModel rows are immutable (db/immutability.py); every
      residency or overtime opt-in change writes one, plus an audit event.

Audit relevance:
    The change rows record old value, new value, effective date, actor and
    reason so that any paycheck's residency/opt-in treatment can be traced.
"""

from datetime import date, datetime
from uuid import UUID

from sqlalchemy import Boolean, Date, DateTime, ForeignKey, Index, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column, relationship

from payroll_kernel.db.base import TrackedBase


class EmployeeTaxProfileModel(TrackedBase):
    """ORM model for ``EmployeeTaxProfile``."""

    __tablename__ = "payroll_tax_profiles"

    organization_id: Mapped[UUID] = mapped_column(nullable=False)
    employee_id: Mapped[UUID] = mapped_column(nullable=False)
    jurisdiction: Mapped[str] = mapped_column(String(20), nullable=False)
    residency_status: Mapped[str] = mapped_column(String(20), nullable=False)
    residency_effective_date: Mapped[date] = mapped_column(Date, nullable=False)
    overtime_opt_in: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    overtime_opt_in_date: Mapped[date | None] = mapped_column(Date, nullable=True)
    filing_status: Mapped[str | None] = mapped_column(String(50), nullable=True)
    wage_period_type: Mapped[str] = mapped_column(String(20), nullable=False, default="monthly")
    prior_residency_status: Mapped[str | None] = mapped_column(String(20), nullable=True)
    prior_overtime_opt_in: Mapped[bool | None] = mapped_column(Boolean, nullable=True)

    changes: Mapped[list["TaxProfileChangeModel"]] = relationship(
        "TaxProfileChangeModel",
        back_populates="profile",
        order_by="TaxProfileChangeModel.changed_at",
        lazy="select",
    )

    __table_args__ = (
        UniqueConstraint("organization_id", "employee_id", name="uq_payroll_tax_profile_employee"),
    )

    def to_dto(self):
        from payroll_kernel.domain.types import (
            EmployeeTaxProfile,
            ResidencyStatus,
            WagePeriodType,
        )
        return EmployeeTaxProfile(
            employee_id=self.employee_id,
            jurisdiction=self.jurisdiction,
            residency_status=ResidencyStatus(self.residency_status),
            residency_effective_date=self.residency_effective_date,
            overtime_opt_in=self.overtime_opt_in,
            overtime_opt_in_date=self.overtime_opt_in_date,
            filing_status=self.filing_status,
            wage_period_type=WagePeriodType(self.wage_period_type),
            prior_residency_status=(
                ResidencyStatus(self.prior_residency_status)
                if self.prior_residency_status else None
            ),
            prior_overtime_opt_in=self.prior_overtime_opt_in,
        )

    @classmethod
    def from_dto(cls, dto, organization_id: UUID, created_by_id: UUID) -> "EmployeeTaxProfileModel":
        return cls(
            organization_id=organization_id,
            employee_id=dto.employee_id,
            jurisdiction=dto.jurisdiction,
            residency_status=dto.residency_status.value,
            residency_effective_date=dto.residency_effective_date,
            overtime_opt_in=dto.overtime_opt_in,
            overtime_opt_in_date=dto.overtime_opt_in_date,
            filing_status=dto.filing_status,
            wage_period_type=dto.wage_period_type.value,
            prior_residency_status=(
                dto.prior_residency_status.value if dto.prior_residency_status else None
            ),
            prior_overtime_opt_in=dto.prior_overtime_opt_in,
            created_by_id=created_by_id,
        )

    def __repr__(self) -> str:
        return (
            f"<EmployeeTaxProfileModel {self.employee_id} "
            f"{self.jurisdiction} {self.residency_status}>"
        )


class TaxProfileChangeModel(TrackedBase):
    """Append-only record of one tax profile field change."""

    __tablename__ = "payroll_tax_profile_changes"

    profile_id: Mapped[UUID] = mapped_column(
        ForeignKey("payroll_tax_profiles.id"), nullable=False,
    )
    employee_id: Mapped[UUID] = mapped_column(nullable=False)
    field_name: Mapped[str] = mapped_column(String(50), nullable=False)
    old_value: Mapped[str | None] = mapped_column(String(50), nullable=True)
    new_value: Mapped[str] = mapped_column(String(50), nullable=False)
    old_effective_date: Mapped[date | None] = mapped_column(Date, nullable=True)
    effective_date: Mapped[date] = mapped_column(Date, nullable=False)
    reason: Mapped[str | None] = mapped_column(String(500), nullable=True)
    changed_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)

    profile: Mapped["EmployeeTaxProfileModel"] = relationship(
        "EmployeeTaxProfileModel", back_populates="changes",
    )

    __table_args__ = (
        Index("idx_payroll_profile_change_employee", "employee_id"),
    )
