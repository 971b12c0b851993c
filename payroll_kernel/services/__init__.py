"""Kernel services: audit hash chain and sequence allocation."""

from payroll_kernel.services.audit_service import AuditService, AuditTrace, AuditTraceEntry
from payroll_kernel.services.sequence_service import SequenceService

__all__ = [
    "AuditService",
    "AuditTrace",
    "AuditTraceEntry",
    "SequenceService",
]
