"""
Module: payroll_kernel.models.rule_set
Responsibility: ORM persistence for published tax rule sets, their brackets,
    and tax-free allowances.
Architecture position: Kernel > Models.  May import from db/base.py; the
    ``to_dto()`` converters import kernel domain types lazily.

Invariants enforced:
    - Append-only versioning: (organization_id, jurisdiction, tax_type,
      version) is unique.  A new effective-dated version supersedes an old
      one; the old row is never edited except for the one-time close of its
      open-ended ``effective_to`` (db/immutability.py).
    - Brackets are immutable once their rule set is published.

Audit relevance:
    Paychecks store ``rule_set_id`` / ``allowance_id`` / ``version`` of the
    rows used, so every historical paycheck can be recomputed exactly.
"""

from datetime import date
from decimal import Decimal
from uuid import UUID

from sqlalchemy import Boolean, Date, ForeignKey, Index, Integer, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column, relationship

from payroll_kernel.db.base import TrackedBase


class TaxRuleSetModel(TrackedBase):
    """
    ORM model for ``TaxRuleSet``.

    Contract:
        One row per published version of a jurisdiction's schedule for one
        tax type.  ``effective_to`` is exclusive; NULL means open-ended.
    """

    __tablename__ = "payroll_tax_rule_sets"

    organization_id: Mapped[UUID] = mapped_column(nullable=False)
    jurisdiction: Mapped[str] = mapped_column(String(20), nullable=False)
    tax_type: Mapped[str] = mapped_column(String(50), nullable=False)
    name: Mapped[str] = mapped_column(String(200), nullable=False, default="")
    calculation_method: Mapped[str] = mapped_column(String(50), nullable=False)
    bracket_period: Mapped[str] = mapped_column(String(20), nullable=False)
    effective_from: Mapped[date] = mapped_column(Date, nullable=False)
    effective_to: Mapped[date | None] = mapped_column(Date, nullable=True)
    annual_cap: Mapped[Decimal | None] = mapped_column(nullable=True)
    version: Mapped[int] = mapped_column(Integer, nullable=False, default=1)

    brackets: Mapped[list["TaxBracketModel"]] = relationship(
        "TaxBracketModel",
        back_populates="rule_set",
        order_by="TaxBracketModel.order",
        lazy="selectin",
        cascade="save-update, merge",
    )

    __table_args__ = (
        UniqueConstraint(
            "organization_id", "jurisdiction", "tax_type", "version",
            name="uq_payroll_rule_set_version",
        ),
        Index(
            "idx_payroll_rule_set_lookup",
            "organization_id", "jurisdiction", "tax_type", "effective_from",
        ),
    )

    def to_dto(self):
        from payroll_kernel.domain.types import (
            CalculationMethod,
            TaxRuleSet,
            TaxType,
            WagePeriodType,
        )
        return TaxRuleSet(
            rule_set_id=self.id,
            jurisdiction=self.jurisdiction,
            tax_type=TaxType(self.tax_type),
            calculation_method=CalculationMethod(self.calculation_method),
            effective_from=self.effective_from,
            effective_to=self.effective_to,
            brackets=tuple(b.to_dto() for b in self.brackets),
            annual_cap=self.annual_cap,
            bracket_period=WagePeriodType(self.bracket_period),
            name=self.name,
            version=self.version,
        )

    @classmethod
    def from_dto(cls, dto, organization_id: UUID, created_by_id: UUID) -> "TaxRuleSetModel":
        model = cls(
            id=dto.rule_set_id,
            organization_id=organization_id,
            jurisdiction=dto.jurisdiction,
            tax_type=dto.tax_type.value,
            name=dto.name,
            calculation_method=dto.calculation_method.value,
            bracket_period=dto.bracket_period.value,
            effective_from=dto.effective_from,
            effective_to=dto.effective_to,
            annual_cap=dto.annual_cap,
            version=dto.version,
            created_by_id=created_by_id,
        )
        model.brackets = [
            TaxBracketModel.from_dto(b, created_by_id=created_by_id)
            for b in dto.brackets
        ]
        return model

    def __repr__(self) -> str:
        return (
            f"<TaxRuleSetModel {self.jurisdiction}:{self.tax_type} "
            f"v{self.version} [{self.effective_from}, {self.effective_to})>"
        )


class TaxBracketModel(TrackedBase):
    """ORM model for ``TaxBracket`` -- one row of a rule set's schedule."""

    __tablename__ = "payroll_tax_brackets"

    rule_set_id: Mapped[UUID] = mapped_column(
        ForeignKey("payroll_tax_rule_sets.id"), nullable=False,
    )
    order: Mapped[int] = mapped_column("bracket_order", Integer, nullable=False)
    income_min: Mapped[Decimal] = mapped_column(nullable=False)
    income_max: Mapped[Decimal | None] = mapped_column(nullable=True)
    rate_percentage: Mapped[Decimal] = mapped_column(nullable=False)
    fixed_amount: Mapped[Decimal] = mapped_column(nullable=False, default=Decimal("0"))

    rule_set: Mapped["TaxRuleSetModel"] = relationship(
        "TaxRuleSetModel", back_populates="brackets",
    )

    __table_args__ = (
        UniqueConstraint("rule_set_id", "bracket_order", name="uq_payroll_bracket_order"),
    )

    def to_dto(self):
        from payroll_kernel.domain.types import TaxBracket
        return TaxBracket(
            order=self.order,
            income_min=self.income_min,
            income_max=self.income_max,
            rate_percentage=self.rate_percentage,
            fixed_amount=self.fixed_amount,
        )

    @classmethod
    def from_dto(cls, dto, created_by_id: UUID) -> "TaxBracketModel":
        return cls(
            order=dto.order,
            income_min=dto.income_min,
            income_max=dto.income_max,
            rate_percentage=dto.rate_percentage,
            fixed_amount=dto.fixed_amount,
            created_by_id=created_by_id,
        )


class AllowanceModel(TrackedBase):
    """
    ORM model for ``Allowance``.

    Contract:
        Versioned like rule sets: (organization_id, jurisdiction,
        allowance_type, version) is unique.
    """

    __tablename__ = "payroll_allowances"

    organization_id: Mapped[UUID] = mapped_column(nullable=False)
    jurisdiction: Mapped[str] = mapped_column(String(20), nullable=False)
    allowance_type: Mapped[str] = mapped_column(String(50), nullable=False)
    name: Mapped[str] = mapped_column(String(200), nullable=False, default="")
    amount: Mapped[Decimal] = mapped_column(nullable=False)
    is_percentage: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    effective_from: Mapped[date] = mapped_column(Date, nullable=False)
    effective_to: Mapped[date | None] = mapped_column(Date, nullable=True)
    version: Mapped[int] = mapped_column(Integer, nullable=False, default=1)

    __table_args__ = (
        UniqueConstraint(
            "organization_id", "jurisdiction", "allowance_type", "version",
            name="uq_payroll_allowance_version",
        ),
        Index(
            "idx_payroll_allowance_lookup",
            "organization_id", "jurisdiction", "allowance_type", "effective_from",
        ),
    )

    def to_dto(self):
        from payroll_kernel.domain.types import Allowance, AllowanceType
        return Allowance(
            allowance_id=self.id,
            allowance_type=AllowanceType(self.allowance_type),
            jurisdiction=self.jurisdiction,
            amount=self.amount,
            effective_from=self.effective_from,
            is_percentage=self.is_percentage,
            effective_to=self.effective_to,
            name=self.name,
            version=self.version,
        )

    @classmethod
    def from_dto(cls, dto, organization_id: UUID, created_by_id: UUID) -> "AllowanceModel":
        return cls(
            id=dto.allowance_id,
            organization_id=organization_id,
            jurisdiction=dto.jurisdiction,
            allowance_type=dto.allowance_type.value,
            name=dto.name,
            amount=dto.amount,
            is_percentage=dto.is_percentage,
            effective_from=dto.effective_from,
            effective_to=dto.effective_to,
            version=dto.version,
            created_by_id=created_by_id,
        )

    def __repr__(self) -> str:
        return (
            f"<AllowanceModel {self.jurisdiction}:{self.allowance_type} "
            f"v{self.version} amount={self.amount}>"
        )
