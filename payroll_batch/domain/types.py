"""
payroll_batch.domain.types -- Pure frozen dataclasses for payroll runs.

ZERO I/O.  Frozen dataclasses with enum status fields and tuples for
immutable collections.

Invariants enforced:
    - All DTOs are frozen (immutable) so results can be shared across the
      worker threads of a run.
    - A run carries an idempotency key; re-submitting it is rejected.
"""

from __future__ import annotations

from collections import Counter
from dataclasses import dataclass
from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from uuid import UUID

from payroll_engines.bonus import BonusContext
from payroll_engines.pipeline import ComponentInput
from payroll_engines.wage_period import WagePeriodSpec


# =============================================================================
# Status enums
# =============================================================================


class PayrollRunStatus(str, Enum):
    """Run-level lifecycle status."""

    RUNNING = "running"
    COMPLETED = "completed"  # Every employee paid
    PARTIALLY_COMPLETED = "partially_completed"  # Some employees failed
    FAILED = "failed"  # No employee paid
    CANCELLED = "cancelled"  # Stopped before every employee was dispatched


class EmployeeOutcomeStatus(str, Enum):
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    CANCELLED = "cancelled"  # Never dispatched


# =============================================================================
# Request DTOs
# =============================================================================


@dataclass(frozen=True)
class EmployeePayInput:
    """Per-employee inputs of a run."""

    employee_id: UUID
    earnings: tuple[ComponentInput, ...] = ()
    deductions: tuple[ComponentInput, ...] = ()
    bonus_context: BonusContext | None = None
    wage_period: WagePeriodSpec | None = None


@dataclass(frozen=True)
class PayrollRunRequest:
    """One pay period for a set of employees."""

    pay_period_start: date
    pay_period_end: date
    pay_date: date
    employees: tuple[EmployeePayInput, ...]
    run_name: str = ""


# =============================================================================
# Result DTOs
# =============================================================================


@dataclass(frozen=True)
class EmployeeOutcome:
    """Outcome of one employee within a run."""

    item_index: int
    employee_id: UUID
    status: EmployeeOutcomeStatus
    paycheck_id: UUID | None = None
    net_pay: Decimal | None = None
    error_code: str | None = None
    error_message: str | None = None
    duration_ms: int = 0


@dataclass(frozen=True)
class PayrollRun:
    """Immutable snapshot of a persisted run."""

    run_id: UUID
    organization_id: UUID
    run_name: str
    idempotency_key: str
    status: PayrollRunStatus
    pay_period_start: date
    pay_period_end: date
    pay_date: date
    total_employees: int = 0
    succeeded_count: int = 0
    failed_count: int = 0
    cancelled_count: int = 0
    max_workers: int = 1
    started_at: datetime | None = None
    completed_at: datetime | None = None
    error_summary: str | None = None


@dataclass(frozen=True)
class PayrollRunResult:
    """Returned by ``PayrollRunExecutor.run()``."""

    run_id: UUID
    status: PayrollRunStatus
    total: int
    succeeded: int
    failed: int
    cancelled: int
    outcomes: tuple[EmployeeOutcome, ...] = ()
    started_at: datetime | None = None
    completed_at: datetime | None = None
    duration_ms: int = 0

    @property
    def failures_by_code(self) -> dict[str, int]:
        return dict(Counter(
            o.error_code or "UNKNOWN"
            for o in self.outcomes
            if o.status is EmployeeOutcomeStatus.FAILED
        ))

    def outcome_for(self, employee_id: UUID) -> EmployeeOutcome | None:
        for outcome in self.outcomes:
            if outcome.employee_id == employee_id:
                return outcome
        return None
