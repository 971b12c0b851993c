"""
payroll_batch.models -- ORM models for payroll run persistence.

Architecture: payroll_batch/models.  Imports from payroll_kernel.db.base only.
"""

from payroll_batch.models.run import PayrollRunItemModel, PayrollRunModel

__all__ = [
    "PayrollRunItemModel",
    "PayrollRunModel",
]
