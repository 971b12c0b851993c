"""
Audit chain validation tests.

Verifies:
- Sequential linking from the genesis event
- Tamper detection via hash chain validation
- Audit events cannot be edited or deleted through the ORM
- Sequence numbers are strictly monotonic
"""

from datetime import date
from uuid import uuid4

import pytest
from sqlalchemy import select, update

from payroll_kernel.exceptions import AuditChainBrokenError, ImmutabilityViolationError
from payroll_kernel.models.audit_event import AuditAction, AuditEvent
from payroll_kernel.services.sequence_service import SequenceService


def _record_events(audit_service, actor_id, count=3):
    return [
        audit_service.record_profile_change(
            profile_id=uuid4(),
            action=AuditAction.RESIDENCY_CHANGED,
            employee_id=uuid4(),
            old_value="resident",
            new_value="non_resident",
            effective_date=date(2025, 6, 1),
            reason=None,
            actor_id=actor_id,
        )
        for _ in range(count)
    ]


class TestChainLinking:

    def test_empty_chain_is_valid(self, audit_service):
        assert audit_service.validate_chain() is True

    def test_events_are_linked(self, audit_service, test_actor_id):
        first, second, third = _record_events(audit_service, test_actor_id)

        assert first.prev_hash is None
        assert second.prev_hash == first.hash
        assert third.prev_hash == second.hash
        assert [e.seq for e in (first, second, third)] == [1, 2, 3]
        assert audit_service.validate_chain() is True

    def test_trace_for_entity(self, audit_service, test_actor_id):
        event = _record_events(audit_service, test_actor_id, count=1)[0]

        trace = audit_service.get_trace("EmployeeTaxProfile", event.entity_id)

        assert not trace.is_empty
        assert trace.entries[0].payload["new_value"] == "non_resident"
        assert audit_service.get_trace("EmployeeTaxProfile", uuid4()).is_empty


class TestTamperDetection:

    def _tamper(self, session, event_id, **values):
        # Bulk UPDATE bypasses the ORM immutability listeners
        session.execute(
            update(AuditEvent)
            .where(AuditEvent.id == event_id)
            .values(**values)
            .execution_options(synchronize_session=False)
        )
        session.expire_all()

    def test_modified_payload_detected(self, audit_service, session, test_actor_id):
        events = _record_events(audit_service, test_actor_id)
        self._tamper(session, events[1].id, payload={"new_value": "resident"})

        with pytest.raises(AuditChainBrokenError) as exc_info:
            audit_service.validate_chain()

        assert exc_info.value.audit_event_id == str(events[1].id)
        assert exc_info.value.code == "AUDIT_CHAIN_BROKEN"

    def test_broken_link_detected(self, audit_service, session, test_actor_id):
        events = _record_events(audit_service, test_actor_id)
        self._tamper(session, events[2].id, prev_hash="0" * 64)

        with pytest.raises(AuditChainBrokenError):
            audit_service.validate_chain()

    def test_failure_is_logged(self, audit_service, session, test_actor_id, captured_logs):
        events = _record_events(audit_service, test_actor_id)
        self._tamper(session, events[0].id, action="paycheck_voided")

        with pytest.raises(AuditChainBrokenError):
            audit_service.validate_chain()

        broken = [r for r in captured_logs() if r["message"] == "audit_chain_broken"]
        assert broken[0]["level"] == "CRITICAL"


class TestAuditEventImmutability:

    def test_update_blocked(self, audit_service, session, test_actor_id):
        event = _record_events(audit_service, test_actor_id, count=1)[0]

        event.payload = {"new_value": "resident"}
        with pytest.raises(ImmutabilityViolationError):
            session.flush()

    def test_delete_blocked(self, audit_service, session, test_actor_id):
        event = _record_events(audit_service, test_actor_id, count=1)[0]

        session.delete(event)
        with pytest.raises(ImmutabilityViolationError):
            session.flush()


class TestSequenceService:

    def test_monotonic_values(self, session):
        sequences = SequenceService(session)

        values = [sequences.next_value("test_sequence") for _ in range(4)]

        assert values == [1, 2, 3, 4]
        assert sequences.current_value("test_sequence") == 4

    def test_sequences_are_independent(self, session):
        sequences = SequenceService(session)
        sequences.next_value("a")
        sequences.next_value("a")

        assert sequences.next_value("b") == 1
        assert sequences.current_value("missing") is None

    def test_audit_events_use_the_audit_sequence(self, audit_service, session, test_actor_id):
        _record_events(audit_service, test_actor_id, count=2)

        assert SequenceService(session).current_value(SequenceService.AUDIT_EVENT) == 2
        seqs = session.execute(select(AuditEvent.seq).order_by(AuditEvent.seq)).scalars().all()
        assert seqs == [1, 2]
