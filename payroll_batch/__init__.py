"""
payroll_batch -- Concurrent payroll runs.

Runs one pay period for many employees on a bounded worker pool, with
per-employee SAVEPOINT isolation, idempotent submission, cooperative
cancellation and an audit trail for the run lifecycle.

Architecture:
    payroll_batch/ is a top-level package.  Nothing in kernel/, engines/,
    config/ or services/ imports from payroll_batch (the kernel's
    ``create_tables`` registers its models by module path only).

Invariants:
    - SAVEPOINT isolation per employee
    - Run idempotency (UNIQUE idempotency_key)
    - At most ``max_workers`` calculations in flight
    - Session access only on the coordinating thread
    - Clock injection (no datetime.now() calls)
    - Audit trail for run start, completion and cancellation
"""
