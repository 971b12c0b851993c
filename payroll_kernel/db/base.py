"""
Module: payroll_kernel.db.base
Responsibility: Declarative base shared by every payroll table.
Architecture position: Kernel > DB.  Imports nothing from the rest of the
    kernel; every models/ module imports from here.

Column conventions:
    - Primary keys are uuid4 values stored as String(36) (UUIDString), so the
      same schema runs on SQLite and PostgreSQL.
    - Money is Numeric(38, 9).  Amounts are stored already rounded to the
      currency's minor unit; the extra scale only keeps bracket bounds and
      rates exact.
    - TrackedBase rows carry who created them and when.  updated_at and
      updated_by_id are bookkeeping and may change even on append-only
      tables (see db/immutability.py).
"""

from datetime import date, datetime
from decimal import Decimal
from typing import ClassVar
from uuid import UUID as PyUUID, uuid4

from sqlalchemy import BigInteger, Date, DateTime, Numeric, String, func
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column
from sqlalchemy.types import TypeDecorator


class UUIDString(TypeDecorator):
    """uuid.UUID in Python, String(36) in the database."""

    impl = String(36)
    cache_ok = True

    def process_bind_param(self, value, dialect):
        return None if value is None else str(value)

    def process_result_value(self, value, dialect):
        return None if value is None else PyUUID(value)


class Base(DeclarativeBase):
    type_annotation_map: ClassVar[dict] = {
        Decimal: Numeric(38, 9),
        datetime: DateTime(timezone=True),
        date: Date,
        PyUUID: UUIDString(),
        int: BigInteger,
    }

    id: Mapped[PyUUID] = mapped_column(UUIDString(), primary_key=True, default=uuid4)


class TrackedBase(Base):
    """Adds creation and last-update stamps; created_by_id is mandatory."""

    __abstract__ = True

    created_at: Mapped[datetime] = mapped_column(server_default=func.now(), nullable=False)
    updated_at: Mapped[datetime] = mapped_column(
        server_default=func.now(), onupdate=func.now(), nullable=False,
    )
    created_by_id: Mapped[PyUUID] = mapped_column(nullable=False)
    updated_by_id: Mapped[PyUUID | None] = mapped_column(nullable=True)


UUID = PyUUID
