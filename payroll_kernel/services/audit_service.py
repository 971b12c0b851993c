"""
AuditService -- tamper-evident audit trail and hash chain maintenance.

Responsibility:
    Creates immutable, hash-chained audit events for every significant
    payroll state change: paycheck finalization (recording the rule-set and
    allowance versions applied), voids and corrections, rule publication,
    tax profile changes and payroll run lifecycle.  Provides chain
    validation for tamper detection and trace queries.

Architecture position:
    Kernel > Services -- imperative shell, called by PaycheckAssembler,
    RuleCatalogService, TaxProfileService and PayrollRunExecutor.

Invariants enforced:
    - Sequence monotonicity via SequenceService (never max+1).
    - Chain integrity: ``hash = H(entity_type | entity_id | action |
      payload_hash | prev_hash)``.
    - Append-only: AuditEvent rows are protected by ORM listeners.

Failure modes:
    - AuditChainBrokenError: Recomputed hash does not match stored hash,
      or prev_hash does not match the predecessor's hash.
"""

import json
from dataclasses import dataclass
from datetime import date, datetime
from decimal import Decimal
from typing import Any
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.orm import Session

from payroll_kernel.domain.clock import Clock, SystemClock
from payroll_kernel.exceptions import AuditChainBrokenError
from payroll_kernel.logging_config import get_logger
from payroll_kernel.models.audit_event import AuditAction, AuditEvent
from payroll_kernel.services.sequence_service import SequenceService
from payroll_kernel.utils.hashing import canonicalize_json, hash_audit_event, hash_payload

logger = get_logger("services.audit")


@dataclass(frozen=True)
class AuditTraceEntry:
    """A single entry in an audit trace."""

    seq: int
    action: AuditAction
    occurred_at: datetime
    actor_id: UUID
    payload: dict[str, Any]
    hash: str


@dataclass(frozen=True)
class AuditTrace:
    """All audit events for one entity, in chronological order."""

    entity_type: str
    entity_id: UUID
    entries: tuple[AuditTraceEntry, ...]

    @property
    def is_empty(self) -> bool:
        return len(self.entries) == 0

    @property
    def actions(self) -> tuple[AuditAction, ...]:
        return tuple(AuditAction(e.action) for e in self.entries)


class AuditService:
    """
    Service for creating and validating tamper-evident audit events.

    Non-goals:
        - Does NOT call ``session.commit()`` -- caller controls boundaries.
    """

    def __init__(self, session: Session, clock: Clock | None = None):
        self._session = session
        self._clock = clock or SystemClock()
        self._sequence_service = SequenceService(session)

    def _get_last_hash(self) -> str | None:
        last_event = self._session.execute(
            select(AuditEvent).order_by(AuditEvent.seq.desc()).limit(1)
        ).scalar_one_or_none()
        return last_event.hash if last_event else None

    def _create_audit_event(
        self,
        entity_type: str,
        entity_id: UUID,
        action: AuditAction,
        actor_id: UUID,
        payload: dict[str, Any] | None = None,
    ) -> AuditEvent:
        """
        Create a new audit event with hash chain linkage.

        Postconditions:
            - A new AuditEvent row is flushed with a monotonically
              increasing ``seq`` and a valid chain link.
        """
        seq = self._sequence_service.next_value(SequenceService.AUDIT_EVENT)
        prev_hash = self._get_last_hash()

        # JSON columns cannot hold Decimal/date; store the canonical form
        payload_data = json.loads(canonicalize_json(payload or {}))
        computed_payload_hash = hash_payload(payload_data)

        event_hash = hash_audit_event(
            entity_type=entity_type,
            entity_id=str(entity_id),
            action=action.value,
            payload_hash=computed_payload_hash,
            prev_hash=prev_hash,
        )

        audit_event = AuditEvent(
            seq=seq,
            entity_type=entity_type,
            entity_id=entity_id,
            action=action.value,
            actor_id=actor_id,
            occurred_at=self._clock.now(),
            payload=payload_data,
            payload_hash=computed_payload_hash,
            prev_hash=prev_hash,
            hash=event_hash,
        )

        self._session.add(audit_event)
        self._session.flush()

        logger.info(
            "audit_event_created",
            extra={
                "entity_type": entity_type,
                "entity_id": str(entity_id),
                "action": action.value,
                "seq": seq,
            },
        )
        return audit_event

    # Paycheck lifecycle

    def record_paycheck_finalized(
        self,
        paycheck_id: UUID,
        employee_id: UUID,
        pay_date: date,
        applied_rule_versions: list[dict[str, Any]],
        input_fingerprint: str,
        net_pay: Decimal,
        actor_id: UUID,
        run_id: UUID | None = None,
    ) -> AuditEvent:
        """Record a finalized paycheck and the rule versions used to compute it."""
        return self._create_audit_event(
            entity_type="Paycheck",
            entity_id=paycheck_id,
            action=AuditAction.PAYCHECK_FINALIZED,
            actor_id=actor_id,
            payload={
                "employee_id": employee_id,
                "pay_date": pay_date,
                "run_id": run_id,
                "applied_rule_versions": applied_rule_versions,
                "input_fingerprint": input_fingerprint,
                "net_pay": net_pay,
            },
        )

    def record_paycheck_voided(
        self,
        paycheck_id: UUID,
        reason: str,
        actor_id: UUID,
    ) -> AuditEvent:
        return self._create_audit_event(
            entity_type="Paycheck",
            entity_id=paycheck_id,
            action=AuditAction.PAYCHECK_VOIDED,
            actor_id=actor_id,
            payload={"reason": reason},
        )

    def record_paycheck_corrected(
        self,
        paycheck_id: UUID,
        replaces_paycheck_id: UUID,
        reason: str,
        actor_id: UUID,
    ) -> AuditEvent:
        return self._create_audit_event(
            entity_type="Paycheck",
            entity_id=paycheck_id,
            action=AuditAction.PAYCHECK_CORRECTED,
            actor_id=actor_id,
            payload={"replaces_paycheck_id": replaces_paycheck_id, "reason": reason},
        )

    # Rule catalog

    def record_rule_set_published(
        self,
        rule_set_id: UUID,
        jurisdiction: str,
        tax_type: str,
        version: int,
        effective_from: date,
        effective_to: date | None,
        actor_id: UUID,
    ) -> AuditEvent:
        return self._create_audit_event(
            entity_type="TaxRuleSet",
            entity_id=rule_set_id,
            action=AuditAction.RULE_SET_PUBLISHED,
            actor_id=actor_id,
            payload={
                "jurisdiction": jurisdiction,
                "tax_type": tax_type,
                "version": version,
                "effective_from": effective_from,
                "effective_to": effective_to,
            },
        )

    def record_rule_set_superseded(
        self,
        rule_set_id: UUID,
        effective_to: date,
        superseded_by: UUID,
        actor_id: UUID,
    ) -> AuditEvent:
        return self._create_audit_event(
            entity_type="TaxRuleSet",
            entity_id=rule_set_id,
            action=AuditAction.RULE_SET_SUPERSEDED,
            actor_id=actor_id,
            payload={"effective_to": effective_to, "superseded_by": superseded_by},
        )

    def record_allowance_published(
        self,
        allowance_id: UUID,
        jurisdiction: str,
        allowance_type: str,
        version: int,
        amount: Decimal,
        effective_from: date,
        actor_id: UUID,
    ) -> AuditEvent:
        return self._create_audit_event(
            entity_type="Allowance",
            entity_id=allowance_id,
            action=AuditAction.ALLOWANCE_PUBLISHED,
            actor_id=actor_id,
            payload={
                "jurisdiction": jurisdiction,
                "allowance_type": allowance_type,
                "version": version,
                "amount": amount,
                "effective_from": effective_from,
            },
        )

    # Tax profile

    def record_profile_change(
        self,
        profile_id: UUID,
        action: AuditAction,
        employee_id: UUID,
        old_value: str | None,
        new_value: str,
        effective_date: date,
        reason: str | None,
        actor_id: UUID,
    ) -> AuditEvent:
        """Record a residency or overtime opt-in change with old/new values."""
        return self._create_audit_event(
            entity_type="EmployeeTaxProfile",
            entity_id=profile_id,
            action=action,
            actor_id=actor_id,
            payload={
                "employee_id": employee_id,
                "old_value": old_value,
                "new_value": new_value,
                "effective_date": effective_date,
                "reason": reason,
            },
        )

    # Payroll run lifecycle

    def record_run_event(
        self,
        run_id: UUID,
        action: AuditAction,
        actor_id: UUID,
        payload: dict[str, Any] | None = None,
    ) -> AuditEvent:
        return self._create_audit_event(
            entity_type="PayrollRun",
            entity_id=run_id,
            action=action,
            actor_id=actor_id,
            payload=payload,
        )

    # Validation and queries

    def _chain_broken(self, event: AuditEvent, expected: str | None, actual: str | None):
        logger.critical(
            "audit_chain_broken",
            extra={"audit_event_id": str(event.id), "seq": event.seq},
        )
        return AuditChainBrokenError(str(event.id), expected or "None", actual or "None")

    def validate_chain(self) -> bool:
        """
        Walk every audit event in ``seq`` order and recompute the chain.

        Each event must point at its predecessor's hash (the first at
        nothing), and its own hash must match the recomputed one.

        Raises:
            AuditChainBrokenError: At the first event that fails either check.
        """
        events = self._session.execute(
            select(AuditEvent).order_by(AuditEvent.seq)
        ).scalars().all()

        previous_hash: str | None = None
        for event in events:
            if event.prev_hash != previous_hash:
                raise self._chain_broken(event, previous_hash, event.prev_hash)
            action = event.action.value if isinstance(event.action, AuditAction) else event.action
            recomputed = hash_audit_event(
                entity_type=event.entity_type,
                entity_id=str(event.entity_id),
                action=action,
                payload_hash=hash_payload(event.payload or {}),
                prev_hash=event.prev_hash,
            )
            if event.hash != recomputed:
                raise self._chain_broken(event, recomputed, event.hash)
            previous_hash = event.hash

        logger.info("audit_chain_valid", extra={"event_count": len(events)})
        return True
    def get_trace(self, entity_type: str, entity_id: UUID) -> AuditTrace:
        """All audit events for an entity in chronological order."""
        events = self._session.execute(
            select(AuditEvent)
            .where(
                AuditEvent.entity_type == entity_type,
                AuditEvent.entity_id == entity_id,
            )
            .order_by(AuditEvent.seq)
        ).scalars().all()

        return AuditTrace(
            entity_type=entity_type,
            entity_id=entity_id,
            entries=tuple(
                AuditTraceEntry(
                    seq=e.seq,
                    action=e.action,
                    occurred_at=e.occurred_at,
                    actor_id=e.actor_id,
                    payload=e.payload or {},
                    hash=e.hash,
                )
                for e in events
            ),
        )
