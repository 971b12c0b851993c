"""
Module: payroll_kernel.models.pay_component
Responsibility: ORM persistence for an organization's pay component graph.
Architecture position: Kernel > Models.  May import from db/base.py only.

Invariants enforced:
    - Component codes are unique per organization.
    - ``depends_on`` is stored as a JSON list of codes; the dependency graph
      is validated (unknown codes, cycles) when the pipeline is built, not
      at write time.
"""

from decimal import Decimal
from uuid import UUID

from sqlalchemy import JSON, Boolean, Integer, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from payroll_kernel.db.base import TrackedBase


class PayComponentModel(TrackedBase):
    """ORM model for ``PayComponent``."""

    __tablename__ = "payroll_pay_components"

    organization_id: Mapped[UUID] = mapped_column(nullable=False)
    code: Mapped[str] = mapped_column(String(50), nullable=False)
    name: Mapped[str] = mapped_column(String(200), nullable=False, default="")
    category: Mapped[str] = mapped_column(String(50), nullable=False)
    calculation_type: Mapped[str] = mapped_column(String(50), nullable=False)
    sequence_order: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    depends_on: Mapped[list] = mapped_column(JSON, nullable=False, default=list)
    is_taxable: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    affects_gross_pay: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    affects_net_pay: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    is_pre_tax: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    income_kind: Mapped[str] = mapped_column(String(20), nullable=False, default="regular")
    tax_kind: Mapped[str | None] = mapped_column(String(30), nullable=True)
    amount: Mapped[Decimal | None] = mapped_column(nullable=True)
    rate: Mapped[Decimal | None] = mapped_column(nullable=True)
    percentage: Mapped[Decimal | None] = mapped_column(nullable=True)
    formula: Mapped[str | None] = mapped_column(String(1000), nullable=True)
    tiers: Mapped[list] = mapped_column(JSON, nullable=False, default=list)
    allowance_type: Mapped[str | None] = mapped_column(String(50), nullable=True)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)

    __table_args__ = (
        UniqueConstraint("organization_id", "code", name="uq_payroll_component_code"),
    )

    def to_dto(self):
        from payroll_kernel.domain.types import (
            AllowanceType,
            CalculationType,
            ComponentCategory,
            ComponentTier,
            IncomeKind,
            PayComponent,
            TaxKind,
        )
        return PayComponent(
            code=self.code,
            name=self.name,
            category=ComponentCategory(self.category),
            calculation_type=CalculationType(self.calculation_type),
            sequence_order=self.sequence_order,
            depends_on=tuple(self.depends_on or ()),
            is_taxable=self.is_taxable,
            affects_gross_pay=self.affects_gross_pay,
            affects_net_pay=self.affects_net_pay,
            is_pre_tax=self.is_pre_tax,
            income_kind=IncomeKind(self.income_kind),
            tax_kind=TaxKind(self.tax_kind) if self.tax_kind else None,
            amount=self.amount,
            rate=self.rate,
            percentage=self.percentage,
            formula=self.formula,
            tiers=tuple(
                ComponentTier(
                    lower=Decimal(t["lower"]),
                    upper=Decimal(t["upper"]) if t.get("upper") is not None else None,
                    rate_percentage=Decimal(t["rate_percentage"]),
                )
                for t in (self.tiers or ())
            ),
            allowance_type=AllowanceType(self.allowance_type) if self.allowance_type else None,
        )

    @classmethod
    def from_dto(cls, dto, organization_id: UUID, created_by_id: UUID) -> "PayComponentModel":
        return cls(
            organization_id=organization_id,
            code=dto.code,
            name=dto.name,
            category=dto.category.value,
            calculation_type=dto.calculation_type.value,
            sequence_order=dto.sequence_order,
            depends_on=list(dto.depends_on),
            is_taxable=dto.is_taxable,
            affects_gross_pay=dto.affects_gross_pay,
            affects_net_pay=dto.affects_net_pay,
            is_pre_tax=dto.is_pre_tax,
            income_kind=dto.income_kind.value,
            tax_kind=dto.tax_kind.value if dto.tax_kind else None,
            amount=dto.amount,
            rate=dto.rate,
            percentage=dto.percentage,
            formula=dto.formula,
            tiers=[
                {
                    "lower": str(t.lower),
                    "upper": str(t.upper) if t.upper is not None else None,
                    "rate_percentage": str(t.rate_percentage),
                }
                for t in dto.tiers
            ],
            allowance_type=dto.allowance_type.value if dto.allowance_type else None,
            created_by_id=created_by_id,
        )

    def __repr__(self) -> str:
        return f"<PayComponentModel {self.code} ({self.category}/{self.calculation_type})>"
