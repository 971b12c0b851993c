"""
PayrollRunExecutor -- bounded concurrent payroll runs.

Contract:
    Runs one pay period for many employees: idempotent submission,
    per-employee failure isolation, cooperative cancellation and
    persistence of the run, its items and its paychecks.

Architecture: payroll_batch/services.  Imports from payroll_batch.domain,
    payroll_batch.models, payroll_services, payroll_engines and kernel
    services.

Concurrency model:
    - Contexts (profile, catalog, components, year-to-date usage) are
      loaded on the coordinating thread before dispatch.
    - Pure calculations run on a ``ThreadPoolExecutor``; at most
      ``max_workers`` are in flight at any time.
    - Every completed calculation is persisted on the coordinating thread
      in its own SAVEPOINT, so the session is never shared across threads
      and writes are serialized.  UNIQUE(run_id, employee_id) on paychecks
      enforces one paycheck per employee per run.

Invariants enforced:
    - Idempotency via UNIQUE ``idempotency_key``.
    - One employee's failure never aborts the run; it is recorded with the
      error's ``code``.
    - Cancellation stops new dispatches only.  In-flight calculations
      finish and are persisted; undispatched employees are ``cancelled``.
    - All timestamps come from the injected Clock.
    - Run start and end are audited.
"""

from __future__ import annotations

import threading
import time
from concurrent.futures import FIRST_COMPLETED, Future, ThreadPoolExecutor, wait
from uuid import UUID, uuid4

from sqlalchemy import select
from sqlalchemy.orm import Session

from payroll_batch.domain.types import (
    EmployeeOutcome,
    EmployeeOutcomeStatus,
    EmployeePayInput,
    PayrollRun,
    PayrollRunRequest,
    PayrollRunResult,
    PayrollRunStatus,
)
from payroll_batch.models.run import PayrollRunItemModel, PayrollRunModel
from payroll_config.schema import EngineSettings
from payroll_engines.paycheck import (
    PaycheckCalculationResult,
    PaycheckCalculator,
    PaycheckContext,
    PaycheckRequest,
)
from payroll_kernel.domain.clock import Clock, SystemClock
from payroll_kernel.exceptions import (
    PayrollEngineError,
    PayrollRunIdempotencyError,
    PayrollRunNotFoundError,
)
from payroll_kernel.logging_config import LogContext, get_logger
from payroll_kernel.models.audit_event import AuditAction
from payroll_kernel.services.audit_service import AuditService
from payroll_services.assembler import PaycheckAssembler
from payroll_services.paycheck_service import PaycheckService
from payroll_services.repositories import PayrollRepository, SqlPayrollRepository

logger = get_logger("batch.executor")

UNHANDLED_EXCEPTION = "UNHANDLED_EXCEPTION"


class RunCancellation:
    """Thread-safe cancellation token for one run."""

    def __init__(self):
        self._event = threading.Event()

    def cancel(self) -> None:
        self._event.set()

    @property
    def is_cancelled(self) -> bool:
        return self._event.is_set()


class PayrollRunExecutor:
    """Payroll run engine with bounded concurrency and per-employee SAVEPOINTs.

    Contract:
        - ``run()`` executes a full run and returns its result.
        - ``cancel()`` stops dispatching for an active run.
        - ``get_run()`` / ``get_run_items()`` for queries.

    Non-goals:
        - Does NOT call ``session.commit()`` -- caller controls boundaries.
        - Does NOT schedule runs.
    """

    def __init__(
        self,
        session: Session,
        organization_id: UUID,
        settings: EngineSettings | None = None,
        repository: PayrollRepository | None = None,
        calculator: PaycheckCalculator | None = None,
        clock: Clock | None = None,
        auditor: AuditService | None = None,
    ):
        self._settings = settings or EngineSettings()
        if self._settings.max_workers < 1:
            raise ValueError(f"max_workers must be >= 1, got {self._settings.max_workers}")
        self._session = session
        self._organization_id = organization_id
        self._clock = clock or SystemClock()
        self._auditor = auditor or AuditService(session, self._clock)
        self._repository = repository or SqlPayrollRepository(
            session, organization_id, self._settings.currency,
        )
        self._calculator = calculator or PaycheckCalculator()
        self._assembler = PaycheckAssembler(session, organization_id, self._clock, self._auditor)
        self._paychecks = PaycheckService(self._repository, self._calculator, self._assembler)
        self._active: dict[UUID, RunCancellation] = {}
        self._lock = threading.Lock()

    @property
    def max_workers(self) -> int:
        return self._settings.max_workers

    # -------------------------------------------------------------------------
    # Run
    # -------------------------------------------------------------------------

    def run(
        self,
        request: PayrollRunRequest,
        actor_id: UUID,
        idempotency_key: str,
        cancellation: RunCancellation | None = None,
    ) -> PayrollRunResult:
        """Execute a payroll run.

        Raises:
            PayrollRunIdempotencyError: ``idempotency_key`` is already used.
        """
        start_time = time.monotonic()

        existing = self._session.execute(
            select(PayrollRunModel).where(PayrollRunModel.idempotency_key == idempotency_key)
        ).scalar_one_or_none()
        if existing is not None:
            raise PayrollRunIdempotencyError(idempotency_key, str(existing.id))

        run_id = uuid4()
        token = cancellation or RunCancellation()
        run_model = PayrollRunModel.from_dto(
            PayrollRun(
                run_id=run_id,
                organization_id=self._organization_id,
                run_name=request.run_name,
                idempotency_key=idempotency_key,
                status=PayrollRunStatus.RUNNING,
                pay_period_start=request.pay_period_start,
                pay_period_end=request.pay_period_end,
                pay_date=request.pay_date,
                total_employees=len(request.employees),
                max_workers=self.max_workers,
                started_at=self._clock.now(),
            ),
            created_by_id=actor_id,
        )
        self._session.add(run_model)
        self._session.flush()

        with LogContext.bind(run_id=run_id, actor_id=actor_id):
            self._auditor.record_run_event(
                run_id, AuditAction.PAYROLL_RUN_STARTED, actor_id,
                {
                    "idempotency_key": idempotency_key,
                    "pay_period_start": request.pay_period_start,
                    "pay_period_end": request.pay_period_end,
                    "pay_date": request.pay_date,
                    "total_employees": len(request.employees),
                    "max_workers": self.max_workers,
                },
            )
            logger.info(
                "payroll_run_started",
                extra={
                    "idempotency_key": idempotency_key,
                    "total_employees": len(request.employees),
                    "max_workers": self.max_workers,
                },
            )

            with self._lock:
                self._active[run_id] = token
            try:
                outcomes = self._execute(run_id, request, actor_id, token)
            finally:
                with self._lock:
                    self._active.pop(run_id, None)

            return self._finish(run_model, outcomes, token, actor_id, start_time)

    def cancel(self, run_id: UUID) -> bool:
        """Stop dispatching for an active run.

        Returns False when the run exists but is no longer active.

        Raises:
            PayrollRunNotFoundError: Unknown run.
        """
        with self._lock:
            token = self._active.get(run_id)
        if token is not None:
            token.cancel()
            logger.info("payroll_run_cancel_requested", extra={"run_id": str(run_id)})
            return True
        if self._session.get(PayrollRunModel, run_id) is None:
            raise PayrollRunNotFoundError(str(run_id))
        return False

    # -------------------------------------------------------------------------
    # Queries
    # -------------------------------------------------------------------------

    def get_run(self, run_id: UUID) -> PayrollRun:
        """
        Raises:
            PayrollRunNotFoundError: Unknown run.
        """
        model = self._session.get(PayrollRunModel, run_id)
        if model is None:
            raise PayrollRunNotFoundError(str(run_id))
        return model.to_dto()

    def get_run_items(self, run_id: UUID) -> tuple[EmployeeOutcome, ...]:
        models = self._session.execute(
            select(PayrollRunItemModel)
            .where(PayrollRunItemModel.run_id == run_id)
            .order_by(PayrollRunItemModel.item_index)
        ).scalars().all()
        return tuple(m.to_dto() for m in models)

    # -------------------------------------------------------------------------
    # Internal helpers
    # -------------------------------------------------------------------------

    def _execute(
        self,
        run_id: UUID,
        request: PayrollRunRequest,
        actor_id: UUID,
        token: RunCancellation,
    ) -> list[EmployeeOutcome]:
        outcomes: dict[int, EmployeeOutcome] = {}
        pending: list[tuple[int, EmployeePayInput, PaycheckContext]] = []

        catalog = self._repository.load_catalog()
        components = self._repository.load_components()
        for index, employee in enumerate(request.employees):
            try:
                context = self._paychecks.build_context(
                    employee.employee_id, request.pay_date,
                    catalog=catalog, components=components,
                )
            except PayrollEngineError as exc:
                outcomes[index] = self._failure(index, employee, exc.code, str(exc), 0)
                continue
            pending.append((index, employee, context))

        queue = iter(pending)
        in_flight: dict[Future, tuple[int, EmployeePayInput, float]] = {}
        with ThreadPoolExecutor(
            max_workers=self.max_workers, thread_name_prefix=f"payroll-run-{run_id.hex[:8]}",
        ) as pool:
            while True:
                while len(in_flight) < self.max_workers and not token.is_cancelled:
                    item = next(queue, None)
                    if item is None:
                        break
                    index, employee, context = item
                    future = pool.submit(
                        self._calculate, run_id, request, employee, context,
                    )
                    in_flight[future] = (index, employee, time.monotonic())

                if not in_flight:
                    break

                done, _ = wait(in_flight, return_when=FIRST_COMPLETED)
                for future in done:
                    index, employee, started = in_flight.pop(future)
                    outcomes[index] = self._persist(
                        run_id, index, employee, future, started, actor_id,
                    )

        for index, employee, _ in queue:
            outcomes[index] = EmployeeOutcome(
                item_index=index,
                employee_id=employee.employee_id,
                status=EmployeeOutcomeStatus.CANCELLED,
            )

        ordered = [outcomes[i] for i in sorted(outcomes)]
        for outcome in ordered:
            self._session.add(
                PayrollRunItemModel.from_dto(outcome, run_id=run_id, created_by_id=actor_id)
            )
        self._session.flush()
        return ordered

    def _calculate(
        self,
        run_id: UUID,
        request: PayrollRunRequest,
        employee: EmployeePayInput,
        context: PaycheckContext,
    ) -> PaycheckCalculationResult:
        # Worker thread: pure calculation only, no session access
        with LogContext.bind(run_id=run_id):
            return self._calculator.calculate(
                PaycheckRequest(
                    employee_id=employee.employee_id,
                    pay_period_start=request.pay_period_start,
                    pay_period_end=request.pay_period_end,
                    pay_date=request.pay_date,
                    earnings=employee.earnings,
                    bonus_context=employee.bonus_context,
                    deductions=employee.deductions,
                    wage_period=employee.wage_period,
                ),
                context,
            )

    def _persist(
        self,
        run_id: UUID,
        index: int,
        employee: EmployeePayInput,
        future: Future,
        started: float,
        actor_id: UUID,
    ) -> EmployeeOutcome:
        try:
            result = future.result()
            record = self._assembler.assemble(result, actor_id, run_id=run_id)
        except PayrollEngineError as exc:
            return self._failure(index, employee, exc.code, str(exc), started)
        except Exception as exc:
            logger.exception(
                "payroll_run_employee_crashed",
                extra={"employee_id": str(employee.employee_id)},
            )
            return self._failure(index, employee, UNHANDLED_EXCEPTION, str(exc), started)

        return EmployeeOutcome(
            item_index=index,
            employee_id=employee.employee_id,
            status=EmployeeOutcomeStatus.SUCCEEDED,
            paycheck_id=record.paycheck_id,
            net_pay=record.net_pay,
            duration_ms=self._elapsed_ms(started),
        )

    def _failure(
        self,
        index: int,
        employee: EmployeePayInput,
        error_code: str,
        error_message: str,
        started: float,
    ) -> EmployeeOutcome:
        logger.warning(
            "payroll_run_employee_failed",
            extra={
                "employee_id": str(employee.employee_id),
                "error_code": error_code,
                "error": error_message,
            },
        )
        return EmployeeOutcome(
            item_index=index,
            employee_id=employee.employee_id,
            status=EmployeeOutcomeStatus.FAILED,
            error_code=error_code,
            error_message=error_message,
            duration_ms=self._elapsed_ms(started) if started else 0,
        )

    def _finish(
        self,
        run_model: PayrollRunModel,
        outcomes: list[EmployeeOutcome],
        token: RunCancellation,
        actor_id: UUID,
        start_time: float,
    ) -> PayrollRunResult:
        succeeded = sum(1 for o in outcomes if o.status is EmployeeOutcomeStatus.SUCCEEDED)
        failed = sum(1 for o in outcomes if o.status is EmployeeOutcomeStatus.FAILED)
        cancelled = sum(1 for o in outcomes if o.status is EmployeeOutcomeStatus.CANCELLED)

        if token.is_cancelled:
            status = PayrollRunStatus.CANCELLED
        elif failed == 0:
            status = PayrollRunStatus.COMPLETED
        elif succeeded == 0:
            status = PayrollRunStatus.FAILED
        else:
            status = PayrollRunStatus.PARTIALLY_COMPLETED

        completed_at = self._clock.now()
        run_model.status = status.value
        run_model.succeeded_count = succeeded
        run_model.failed_count = failed
        run_model.cancelled_count = cancelled
        run_model.completed_at = completed_at
        if failed:
            run_model.error_summary = f"{failed} employee(s) failed"
        self._session.flush()

        result = PayrollRunResult(
            run_id=run_model.id,
            status=status,
            total=len(outcomes),
            succeeded=succeeded,
            failed=failed,
            cancelled=cancelled,
            outcomes=tuple(outcomes),
            started_at=run_model.started_at,
            completed_at=completed_at,
            duration_ms=self._elapsed_ms(start_time),
        )

        action = (
            AuditAction.PAYROLL_RUN_CANCELLED
            if status is PayrollRunStatus.CANCELLED
            else AuditAction.PAYROLL_RUN_COMPLETED
        )
        self._auditor.record_run_event(
            run_model.id, action, actor_id,
            {
                "status": status.value,
                "succeeded": succeeded,
                "failed": failed,
                "cancelled": cancelled,
                "failures_by_code": result.failures_by_code,
            },
        )
        logger.info(
            "payroll_run_completed",
            extra={
                "status": status.value,
                "succeeded": succeeded,
                "failed": failed,
                "cancelled": cancelled,
                "failures_by_code": result.failures_by_code,
                "duration_ms": result.duration_ms,
            },
        )
        return result

    @staticmethod
    def _elapsed_ms(started: float) -> int:
        return int((time.monotonic() - started) * 1000)
