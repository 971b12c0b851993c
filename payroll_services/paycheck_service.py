"""
PaycheckService -- the public calculation entry point.

Responsibility:
    Loads a paycheck's inputs through a ``PayrollRepository`` (profile,
    rule catalog, pay components, year-to-date capped allowance usage),
    hands them to the pure ``PaycheckCalculator`` and, on request,
    persists the result through ``PaycheckAssembler``.

Architecture position:
    Services -- thin orchestration.  All arithmetic lives in
    ``payroll_engines``; all persistence in the assembler.

Failure modes:
    - Any ``PayrollEngineError`` subclass: input errors, missing or
      ambiguous rules, invalid component graphs, duplicate finalization.
"""

from __future__ import annotations

from collections.abc import Iterable
from datetime import date
from uuid import UUID

from payroll_engines.bonus import BonusContext
from payroll_engines.paycheck import (
    PaycheckCalculationResult,
    PaycheckCalculator,
    PaycheckContext,
    PaycheckRequest,
)
from payroll_engines.pipeline import ComponentInput
from payroll_engines.rule_resolver import RuleCatalog
from payroll_engines.wage_period import WagePeriodSpec
from payroll_kernel.domain.types import PayComponent
from payroll_kernel.exceptions import PayrollEngineError
from payroll_kernel.logging_config import LogContext, get_logger
from payroll_services.assembler import PaycheckAssembler, PaycheckRecord
from payroll_services.repositories import PayrollRepository

logger = get_logger("services.paycheck")


class PaycheckService:
    """
    Calculates (and optionally finalizes) single paychecks.

    ``catalog`` pins a rule snapshot for the service's lifetime; without
    it the catalog is loaded from the repository on every call.
    """

    def __init__(
        self,
        repository: PayrollRepository,
        calculator: PaycheckCalculator | None = None,
        assembler: PaycheckAssembler | None = None,
        catalog: RuleCatalog | None = None,
    ):
        self._repository = repository
        self._calculator = calculator or PaycheckCalculator()
        self._assembler = assembler
        self._catalog = catalog

    def build_context(
        self,
        employee_id: UUID,
        pay_date: date,
        catalog: RuleCatalog | None = None,
        components: Iterable[PayComponent] | None = None,
    ) -> PaycheckContext:
        """Load everything one calculation needs, in the calling thread."""
        catalog = catalog or self._catalog or self._repository.load_catalog()
        return PaycheckContext(
            profile=self._repository.get_profile(employee_id),
            components=tuple(components) if components is not None else self._repository.load_components(),
            catalog=catalog,
            ytd_capped_usage=self._repository.ytd_capped_usage(employee_id, pay_date),
            currency=catalog.currency,
        )

    def calculate_paycheck(
        self,
        employee_id: UUID,
        pay_period_start: date,
        pay_period_end: date,
        pay_date: date,
        earnings: Iterable[ComponentInput],
        bonus_context: BonusContext | None = None,
        deductions: Iterable[ComponentInput] = (),
        wage_period: WagePeriodSpec | None = None,
    ) -> PaycheckCalculationResult:
        """
        Calculate one paycheck without persisting it.

        Raises:
            PayrollEngineError: Input, configuration or resolution failure.
        """
        request = PaycheckRequest(
            employee_id=employee_id,
            pay_period_start=pay_period_start,
            pay_period_end=pay_period_end,
            pay_date=pay_date,
            earnings=tuple(earnings),
            bonus_context=bonus_context,
            deductions=tuple(deductions),
            wage_period=wage_period,
        )
        with LogContext.bind(employee_id=employee_id):
            try:
                context = self.build_context(employee_id, pay_date)
                return self._calculator.calculate(request, context)
            except PayrollEngineError as exc:
                logger.warning(
                    "paycheck_calculation_failed",
                    extra={"error_code": exc.code, "error": str(exc)},
                )
                raise

    def calculate_and_finalize(
        self,
        employee_id: UUID,
        pay_period_start: date,
        pay_period_end: date,
        pay_date: date,
        earnings: Iterable[ComponentInput],
        actor_id: UUID,
        bonus_context: BonusContext | None = None,
        deductions: Iterable[ComponentInput] = (),
        wage_period: WagePeriodSpec | None = None,
    ) -> PaycheckRecord:
        """
        Calculate and persist one paycheck.

        Raises:
            RuntimeError: The service was built without an assembler.
            PayrollEngineError: As for ``calculate_paycheck`` and
                ``PaycheckAssembler.assemble``.
        """
        if self._assembler is None:
            raise RuntimeError("PaycheckService was created without a PaycheckAssembler")
        result = self.calculate_paycheck(
            employee_id,
            pay_period_start,
            pay_period_end,
            pay_date,
            earnings,
            bonus_context=bonus_context,
            deductions=deductions,
            wage_period=wage_period,
        )
        return self._assembler.assemble(result, actor_id)
