"""ORM models for the payroll kernel."""

from payroll_kernel.models.audit_event import AuditAction, AuditEvent
from payroll_kernel.models.pay_component import PayComponentModel
from payroll_kernel.models.paycheck import (
    PaycheckComponentModel,
    PaycheckModel,
    PaycheckStatus,
)
from payroll_kernel.models.rule_set import (
    AllowanceModel,
    TaxBracketModel,
    TaxRuleSetModel,
)
from payroll_kernel.models.sequence import SequenceCounter
from payroll_kernel.models.tax_profile import (
    EmployeeTaxProfileModel,
    TaxProfileChangeModel,
)

__all__ = [
    "AllowanceModel",
    "AuditAction",
    "AuditEvent",
    "EmployeeTaxProfileModel",
    "PayComponentModel",
    "PaycheckComponentModel",
    "PaycheckModel",
    "PaycheckStatus",
    "SequenceCounter",
    "TaxBracketModel",
    "TaxProfileChangeModel",
    "TaxRuleSetModel",
]
