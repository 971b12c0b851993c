"""
Payroll Kernel

Shared foundations for the payroll tax engine:
- Typed exceptions with machine-readable codes
- Structured JSON logging
- Decimal money rounding and deterministic hashing
- Append-only persistence with ORM-level immutability
- Tamper-evident audit hash chain
"""

__version__ = "0.1.0"
