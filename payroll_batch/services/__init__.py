"""
payroll_batch.services -- Payroll run execution.
"""

from payroll_batch.services.executor import PayrollRunExecutor, RunCancellation

__all__ = [
    "PayrollRunExecutor",
    "RunCancellation",
]
