"""
payroll_services -- Package init and public API.

Responsibility:
    Stateful orchestration that composes the pure calculation engines
    (payroll_engines/) with database sessions, audit and configuration.
    This is the only layer (with payroll_batch) that holds sessions or
    reads the wall clock.

Architecture position:
    Services -- stateful orchestration over engines + kernel.

    Dependency direction:
        payroll_services/ -> payroll_engines/  (allowed)
        payroll_services/ -> payroll_kernel/   (allowed)
        payroll_services/ -> payroll_config/   (allowed)
        payroll_engines/  -> payroll_services/ (FORBIDDEN)
        payroll_kernel/   -> payroll_services/ (FORBIDDEN)
"""

from payroll_kernel.logging_config import get_logger

logger = get_logger("services")

from payroll_services.assembler import PaycheckAssembler, PaycheckRecord
from payroll_services.paycheck_service import PaycheckService
from payroll_services.profile_service import TaxProfileService
from payroll_services.repositories import (
    InMemoryPayrollRepository,
    PayrollRepository,
    SqlPayrollRepository,
)
from payroll_services.rule_catalog import (
    BracketChange,
    PackImportResult,
    RuleCatalogService,
    RuleSetDiff,
    compare_rule_sets,
)

__all__ = [
    "BracketChange",
    "InMemoryPayrollRepository",
    "PackImportResult",
    "PaycheckAssembler",
    "PaycheckRecord",
    "PaycheckService",
    "PayrollRepository",
    "RuleCatalogService",
    "RuleSetDiff",
    "SqlPayrollRepository",
    "TaxProfileService",
    "compare_rule_sets",
]
