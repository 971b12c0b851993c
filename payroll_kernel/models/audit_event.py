"""
Module: payroll_kernel.models.audit_event
Responsibility: ORM persistence for the tamper-evident audit hash chain.
Architecture position: Kernel > Models.  May import from db/base.py only.

Invariants enforced:
    - Audit records are append-only; no UPDATE or DELETE (ORM listeners).
    - hash = H(entity_type | entity_id | action | payload_hash | prev_hash),
      validated by AuditService.validate_chain().
    - seq is monotonically increasing, allocated by SequenceService.

Audit relevance:
    AuditEvent IS the audit trail.  Paycheck finalization (with the rule
    versions applied), voids, corrections, rule publication, tax profile
    changes and payroll run lifecycle all produce an AuditEvent.
"""

from datetime import datetime
from enum import Enum
from uuid import UUID

from sqlalchemy import JSON, BigInteger, DateTime, Index, String
from sqlalchemy.orm import Mapped, mapped_column

from payroll_kernel.db.base import Base, UUIDString


class AuditAction(str, Enum):
    """Types of auditable payroll actions."""

    # Paycheck lifecycle
    PAYCHECK_FINALIZED = "paycheck_finalized"
    PAYCHECK_VOIDED = "paycheck_voided"
    PAYCHECK_CORRECTED = "paycheck_corrected"

    # Rule catalog
    RULE_SET_PUBLISHED = "rule_set_published"
    RULE_SET_SUPERSEDED = "rule_set_superseded"
    ALLOWANCE_PUBLISHED = "allowance_published"

    # Tax profile
    RESIDENCY_CHANGED = "residency_changed"
    OVERTIME_OPT_IN_CHANGED = "overtime_opt_in_changed"

    # Payroll run lifecycle
    PAYROLL_RUN_STARTED = "payroll_run_started"
    PAYROLL_RUN_COMPLETED = "payroll_run_completed"
    PAYROLL_RUN_CANCELLED = "payroll_run_cancelled"


class AuditEvent(Base):
    """
    Audit event with hash chain for tamper evidence.

    Guarantees:
        - seq is globally unique and monotonically increasing.
        - prev_hash is None only for the genesis event.

    Non-goals:
        - This model does NOT enforce hash correctness at INSERT time;
          that is the responsibility of AuditService.
    """

    __tablename__ = "audit_events"

    __table_args__ = (
        Index("idx_audit_entity", "entity_type", "entity_id"),
        Index("idx_audit_action", "action"),
        Index("idx_audit_seq", "seq"),
    )

    seq: Mapped[int] = mapped_column(BigInteger, nullable=False, unique=True)

    # e.g. "Paycheck", "TaxRuleSet", "EmployeeTaxProfile", "PayrollRun"
    entity_type: Mapped[str] = mapped_column(String(50), nullable=False)

    entity_id: Mapped[UUID] = mapped_column(UUIDString(), nullable=False)

    action: Mapped[AuditAction] = mapped_column(String(50), nullable=False)

    actor_id: Mapped[UUID] = mapped_column(UUIDString(), nullable=False)

    occurred_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)

    payload: Mapped[dict | None] = mapped_column(JSON, nullable=True)

    payload_hash: Mapped[str] = mapped_column(String(64), nullable=False)

    prev_hash: Mapped[str | None] = mapped_column(String(64), nullable=True)

    hash: Mapped[str] = mapped_column(String(64), nullable=False)

    def __repr__(self) -> str:
        action = self.action.value if isinstance(self.action, AuditAction) else self.action
        return f"<AuditEvent {action} on {self.entity_type}:{self.entity_id}>"

    @property
    def is_genesis(self) -> bool:
        return self.prev_hash is None
