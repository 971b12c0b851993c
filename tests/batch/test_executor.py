"""
Tests for payroll_batch.services.executor.

Validates PayrollRunExecutor: run (bounded workers, SAVEPOINT-per-employee
persistence), failure isolation with error codes, idempotency,
cancellation, get_run and get_run_items.
"""

import threading
import time
from datetime import date
from decimal import Decimal
from uuid import uuid4

import pytest

from payroll_batch.domain.types import (
    EmployeeOutcomeStatus,
    EmployeePayInput,
    PayrollRunRequest,
    PayrollRunStatus,
)
from payroll_batch.services.executor import (
    UNHANDLED_EXCEPTION,
    PayrollRunExecutor,
    RunCancellation,
)
from payroll_config.schema import EngineSettings
from payroll_engines.paycheck import PaycheckCalculator
from payroll_engines.pipeline import ComponentInput
from payroll_kernel.exceptions import PayrollRunIdempotencyError, PayrollRunNotFoundError
from payroll_kernel.models.audit_event import AuditAction
from tests.factories import JANUARY, profile


# =============================================================================
# Test calculators
# =============================================================================


class CrashingCalculator(PaycheckCalculator):
    """Raises a non-domain error for selected employees."""

    def __init__(self, crash_for):
        super().__init__()
        self._crash_for = set(crash_for)

    def calculate(self, request, context):
        if request.employee_id in self._crash_for:
            raise RuntimeError("worker exploded")
        return super().calculate(request, context)


class CancellingCalculator(PaycheckCalculator):
    """Fires the cancellation token on its first call."""

    def __init__(self, token):
        super().__init__()
        self._token = token

    def calculate(self, request, context):
        self._token.cancel()
        return super().calculate(request, context)


class ConcurrencyTracker(PaycheckCalculator):
    """Records the peak number of concurrent calculations."""

    def __init__(self):
        super().__init__()
        self._lock = threading.Lock()
        self._active = 0
        self.peak = 0

    def calculate(self, request, context):
        with self._lock:
            self._active += 1
            self.peak = max(self.peak, self._active)
        try:
            time.sleep(0.02)
            return super().calculate(request, context)
        finally:
            with self._lock:
                self._active -= 1


# =============================================================================
# Fixtures
# =============================================================================


@pytest.fixture
def employees(profile_service, published_catalog, test_actor_id):
    return [
        profile_service.create_profile(profile(), test_actor_id).employee_id
        for _ in range(3)
    ]


@pytest.fixture
def make_executor(session, organization_id, deterministic_clock, audit_service):
    def _make(max_workers=2, calculator=None):
        return PayrollRunExecutor(
            session,
            organization_id,
            settings=EngineSettings(max_workers=max_workers),
            calculator=calculator,
            clock=deterministic_clock,
            auditor=audit_service,
        )
    return _make


def _request(employee_ids, salary="5000"):
    start, end, pay_date = JANUARY
    return PayrollRunRequest(
        pay_period_start=start,
        pay_period_end=end,
        pay_date=pay_date,
        employees=tuple(
            EmployeePayInput(
                employee_id=employee_id,
                earnings=(ComponentInput("BASE_SALARY", amount=Decimal(salary)),),
            )
            for employee_id in employee_ids
        ),
        run_name="January 2025",
    )


# =============================================================================
# Tests
# =============================================================================


class TestRun:

    def test_all_employees_paid(self, make_executor, employees, test_actor_id):
        executor = make_executor()

        result = executor.run(_request(employees), test_actor_id, "jan-2025")

        assert result.status is PayrollRunStatus.COMPLETED
        assert (result.total, result.succeeded, result.failed, result.cancelled) == (3, 3, 0, 0)
        assert [o.employee_id for o in result.outcomes] == employees
        assert all(o.net_pay == Decimal("4842.64") for o in result.outcomes)
        assert all(o.paycheck_id is not None for o in result.outcomes)
        assert result.failures_by_code == {}

    def test_paychecks_are_linked_to_the_run(self, make_executor, assembler, employees, test_actor_id):
        result = make_executor().run(_request(employees), test_actor_id, "jan-2025")

        for outcome in result.outcomes:
            record = assembler.get_paycheck(outcome.paycheck_id)
            assert record.run_id == result.run_id
            assert record.is_finalized

    def test_missing_profile_is_isolated(self, make_executor, employees, test_actor_id):
        stranger = uuid4()

        result = make_executor().run(_request([*employees, stranger]), test_actor_id, "jan-2025")

        assert result.status is PayrollRunStatus.PARTIALLY_COMPLETED
        assert result.succeeded == 3
        assert result.failures_by_code == {"TAX_PROFILE_NOT_FOUND": 1}
        failed = result.outcome_for(stranger)
        assert failed.status is EmployeeOutcomeStatus.FAILED
        assert failed.paycheck_id is None

    def test_unhandled_exception_is_isolated(self, make_executor, employees, test_actor_id, captured_logs):
        executor = make_executor(calculator=CrashingCalculator([employees[1]]))

        result = executor.run(_request(employees), test_actor_id, "jan-2025")

        assert result.status is PayrollRunStatus.PARTIALLY_COMPLETED
        assert result.failures_by_code == {UNHANDLED_EXCEPTION: 1}
        crashed = result.outcome_for(employees[1])
        assert crashed.error_message == "worker exploded"
        assert any(r["message"] == "payroll_run_employee_crashed" for r in captured_logs())

    def test_already_finalized_period(self, make_executor, employees, test_actor_id):
        executor = make_executor()
        executor.run(_request(employees), test_actor_id, "jan-2025")

        rerun = executor.run(_request(employees), test_actor_id, "jan-2025-rerun")

        assert rerun.status is PayrollRunStatus.FAILED
        assert rerun.failures_by_code == {"PAYCHECK_ALREADY_FINALIZED": 3}

    def test_empty_run(self, make_executor, published_catalog, test_actor_id):
        result = make_executor().run(_request([]), test_actor_id, "empty")

        assert result.status is PayrollRunStatus.COMPLETED
        assert result.total == 0

    def test_max_workers_must_be_positive(self, make_executor):
        with pytest.raises(ValueError, match="max_workers"):
            make_executor(max_workers=0)

    def test_run_is_audited(self, make_executor, audit_service, employees, test_actor_id):
        result = make_executor().run(_request(employees), test_actor_id, "jan-2025")

        trace = audit_service.get_trace("PayrollRun", result.run_id)

        assert trace.actions == (
            AuditAction.PAYROLL_RUN_STARTED,
            AuditAction.PAYROLL_RUN_COMPLETED,
        )
        assert trace.entries[1].payload["succeeded"] == 3
        assert audit_service.validate_chain() is True

    def test_completion_is_logged(self, make_executor, employees, test_actor_id, captured_logs):
        result = make_executor().run(_request([*employees, uuid4()]), test_actor_id, "jan-2025")

        completed = [r for r in captured_logs() if r["message"] == "payroll_run_completed"]
        assert completed[0]["status"] == "partially_completed"
        assert completed[0]["failures_by_code"] == {"TAX_PROFILE_NOT_FOUND": 1}
        assert completed[0]["run_id"] == str(result.run_id)


class TestIdempotency:

    def test_same_key_rejected(self, make_executor, employees, test_actor_id):
        executor = make_executor()
        first = executor.run(_request(employees), test_actor_id, "jan-2025")

        with pytest.raises(PayrollRunIdempotencyError) as exc_info:
            executor.run(_request(employees), test_actor_id, "jan-2025")

        assert exc_info.value.existing_run_id == str(first.run_id)
        assert exc_info.value.code == "PAYROLL_RUN_DUPLICATE"


class TestConcurrency:

    def test_in_flight_never_exceeds_max_workers(
        self, make_executor, profile_service, published_catalog, test_actor_id,
    ):
        employee_ids = [
            profile_service.create_profile(profile(), test_actor_id).employee_id
            for _ in range(6)
        ]
        tracker = ConcurrencyTracker()

        result = make_executor(max_workers=2, calculator=tracker).run(
            _request(employee_ids), test_actor_id, "jan-2025",
        )

        assert result.succeeded == 6
        assert 1 <= tracker.peak <= 2

    def test_single_worker(self, make_executor, employees, test_actor_id):
        tracker = ConcurrencyTracker()

        make_executor(max_workers=1, calculator=tracker).run(_request(employees), test_actor_id, "jan-2025")

        assert tracker.peak == 1


class TestCancellation:

    def test_cancel_stops_new_dispatches(self, make_executor, employees, test_actor_id):
        token = RunCancellation()
        executor = make_executor(max_workers=1, calculator=CancellingCalculator(token))

        result = executor.run(_request(employees), test_actor_id, "jan-2025", cancellation=token)

        assert result.status is PayrollRunStatus.CANCELLED
        assert result.succeeded == 1
        assert result.cancelled == 2
        assert [o.status for o in result.outcomes] == [
            EmployeeOutcomeStatus.SUCCEEDED,
            EmployeeOutcomeStatus.CANCELLED,
            EmployeeOutcomeStatus.CANCELLED,
        ]

    def test_cancellation_is_audited(self, make_executor, audit_service, employees, test_actor_id):
        token = RunCancellation()
        executor = make_executor(max_workers=1, calculator=CancellingCalculator(token))

        result = executor.run(_request(employees), test_actor_id, "jan-2025", cancellation=token)

        assert audit_service.get_trace("PayrollRun", result.run_id).actions[-1] is (
            AuditAction.PAYROLL_RUN_CANCELLED
        )

    def test_cancel_unknown_run(self, make_executor):
        with pytest.raises(PayrollRunNotFoundError):
            make_executor().cancel(uuid4())

    def test_cancel_finished_run(self, make_executor, employees, test_actor_id):
        executor = make_executor()
        result = executor.run(_request(employees), test_actor_id, "jan-2025")

        assert executor.cancel(result.run_id) is False


class TestQueries:

    def test_get_run(self, make_executor, employees, test_actor_id):
        executor = make_executor(max_workers=3)
        result = executor.run(_request([*employees, uuid4()]), test_actor_id, "jan-2025")

        run = executor.get_run(result.run_id)

        assert run.status is PayrollRunStatus.PARTIALLY_COMPLETED
        assert run.run_name == "January 2025"
        assert run.idempotency_key == "jan-2025"
        assert run.pay_date == date(2025, 1, 31)
        assert (run.total_employees, run.succeeded_count, run.failed_count) == (4, 3, 1)
        assert run.max_workers == 3
        assert run.error_summary == "1 employee(s) failed"

    def test_get_run_items(self, make_executor, employees, test_actor_id):
        executor = make_executor()
        result = executor.run(_request(employees), test_actor_id, "jan-2025")

        items = executor.get_run_items(result.run_id)

        assert [i.item_index for i in items] == [0, 1, 2]
        assert [i.employee_id for i in items] == employees
        assert all(i.status is EmployeeOutcomeStatus.SUCCEEDED for i in items)

    def test_get_unknown_run(self, make_executor):
        with pytest.raises(PayrollRunNotFoundError):
            make_executor().get_run(uuid4())
