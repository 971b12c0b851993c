"""Database layer - engine, base classes, and immutability enforcement."""

from payroll_kernel.db.base import UUID, Base, TrackedBase, UUIDString
from payroll_kernel.db.engine import (
    create_sqlite_engine,
    create_tables,
    get_engine,
    get_session,
    session_scope,
)

__all__ = [
    "UUID",
    "Base",
    "TrackedBase",
    "UUIDString",
    "create_sqlite_engine",
    "create_tables",
    "get_engine",
    "get_session",
    "session_scope",
]
