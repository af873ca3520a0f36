"""
Module: payroll_kernel.db.base
Responsibility: Declarative base for every payroll table -- UUID primary
    keys stored as text, Decimal columns as Numeric(38, 9), and the audit
    columns shared by all rows that people or batches write.
Architecture position: Kernel > DB.  Lowest import target in the kernel;
    must not import from models/, services/, domain/ or outer layers.

Invariants enforced:
    - Salary amounts are never stored as float: a ``Mapped[Decimal]`` column
      without an explicit type becomes Numeric(38, 9).
    - Every tracked row records who created it; ``updated_by_id`` and
      ``updated_at`` are the only columns a posted run snapshot may still
      change (see db/immutability.py).
"""

from datetime import datetime
from decimal import Decimal
from typing import ClassVar
from uuid import UUID, uuid4

from sqlalchemy import BigInteger, DateTime, Numeric, String, func
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column
from sqlalchemy.types import TypeDecorator


class UUIDString(TypeDecorator):
    """UUID held in a String(36) column so SQLite and PostgreSQL agree."""

    impl = String(36)
    cache_ok = True

    def process_bind_param(self, value, dialect):
        return None if value is None else str(value)

    def process_result_value(self, value, dialect):
        return None if value is None else UUID(value)


class Base(DeclarativeBase):
    """Declarative base; every table gets a uuid4 ``id``."""

    type_annotation_map: ClassVar[dict] = {
        Decimal: Numeric(38, 9),
        datetime: DateTime(timezone=True),
        UUID: UUIDString(),
        int: BigInteger,
    }

    id: Mapped[UUID] = mapped_column(UUIDString(), primary_key=True, default=uuid4)


class TrackedBase(Base):
    """Adds creation and last-update stamps plus the acting user or batch."""

    __abstract__ = True

    created_at: Mapped[datetime] = mapped_column(server_default=func.now())
    updated_at: Mapped[datetime] = mapped_column(
        server_default=func.now(), onupdate=func.now()
    )
    created_by_id: Mapped[UUID] = mapped_column(UUIDString())
    updated_by_id: Mapped[UUID | None] = mapped_column(UUIDString(), nullable=True)
