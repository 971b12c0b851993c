"""
SequenceService -- gap-free counters for audit event ordering.

Each named sequence is one row in ``sequence_counters``.  The row is read
with ``SELECT ... FOR UPDATE`` and bumped inside the caller's transaction,
so two sessions never hand out the same value and a rolled-back
transaction gives its value back.  MAX()+1 over the audit table is never
used.
"""

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from payroll_kernel.logging_config import get_logger
from payroll_kernel.models.sequence import SequenceCounter

logger = get_logger("services.sequence")


class SequenceService:
    """Allocates the next value of a named counter; never commits."""

    AUDIT_EVENT = "audit_event"

    def __init__(self, session: Session):
        self._session = session

    def _select(self, sequence_name: str, *, lock: bool):
        stmt = select(SequenceCounter).where(SequenceCounter.name == sequence_name)
        if lock:
            stmt = stmt.with_for_update().execution_options(populate_existing=True)
        return self._session.execute(stmt).scalar_one_or_none()

    def _create_counter(self, sequence_name: str) -> SequenceCounter | None:
        """Insert the counter at 1; None if a concurrent session won the race."""
        try:
            with self._session.begin_nested():
                counter = SequenceCounter(name=sequence_name, current_value=1)
                self._session.add(counter)
            return counter
        except IntegrityError:
            logger.debug("sequence_counter_race_retry", extra={"sequence_name": sequence_name})
            return None

    def next_value(self, sequence_name: str) -> int:
        counter = self._select(sequence_name, lock=True)
        if counter is None:
            created = self._create_counter(sequence_name)
            if created is not None:
                value = created.current_value
                logger.debug("sequence_allocated", extra={"sequence_name": sequence_name, "value": value})
                return value
            counter = self._select(sequence_name, lock=True)
            if counter is None:
                raise RuntimeError(f"Sequence counter {sequence_name!r} vanished after insert race")

        counter.current_value += 1
        self._session.flush()
        value = counter.current_value
        logger.debug("sequence_allocated", extra={"sequence_name": sequence_name, "value": value})
        return value

    def current_value(self, sequence_name: str) -> int | None:
        """Last value handed out, without incrementing; None if never used."""
        counter = self._select(sequence_name, lock=False)
        return None if counter is None else counter.current_value
