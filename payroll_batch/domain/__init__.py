"""
payroll_batch.domain -- Pure types and value objects for payroll runs.

ZERO I/O.  All types are frozen dataclasses.
"""

from payroll_batch.domain.types import (
    EmployeeOutcome,
    EmployeeOutcomeStatus,
    EmployeePayInput,
    PayrollRun,
    PayrollRunRequest,
    PayrollRunResult,
    PayrollRunStatus,
)

__all__ = [
    "EmployeeOutcome",
    "EmployeeOutcomeStatus",
    "EmployeePayInput",
    "PayrollRun",
    "PayrollRunRequest",
    "PayrollRunResult",
    "PayrollRunStatus",
]
