"""
Module: gst_kernel.db.base
Responsibility: Declarative base and mixins shared by every ledger model.
Architecture position: Kernel > DB.  ALL model files import from here.  This
    module MUST NOT import from models/, services/, selectors/, or domain/.

Invariants enforced:
    - Every row has a uuid4 primary key stored as String(36), so SQLite and
      PostgreSQL share one schema.
    - A bare ``Decimal`` annotation maps to MoneyType (two places, half-up).
      Quantities and rates declare their own scale explicitly.
    - Tenant-owned rows carry a NOT NULL ``tenant_id``; every query and lock
      key starts with it.
    - Tracked rows record who created them (NOT NULL) and who last touched
      them.
"""

from datetime import date, datetime
from decimal import Decimal
from typing import ClassVar
from uuid import UUID as PyUUID, uuid4

from sqlalchemy import BigInteger, Date, DateTime, String, func
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column
from sqlalchemy.types import TypeDecorator

from gst_kernel.db.types import MoneyType


class UUIDString(TypeDecorator):
    """UUID <-> String(36)."""

    impl = String(36)
    cache_ok = True

    def process_bind_param(self, value, dialect):
        if value is None:
            return None
        return str(value)

    def process_result_value(self, value, dialect):
        if value is None:
            return None
        return PyUUID(value)


class Base(DeclarativeBase):
    """Declarative base for all ledger tables."""

    type_annotation_map: ClassVar[dict] = {
        Decimal: MoneyType(),
        datetime: DateTime(timezone=True),
        date: Date(),
        PyUUID: UUIDString(),
        int: BigInteger,
    }

    id: Mapped[PyUUID] = mapped_column(
        UUIDString(),
        primary_key=True,
        default=uuid4,
    )


class TenantScoped:
    """Mixin for rows owned by exactly one tenant."""

    tenant_id: Mapped[PyUUID] = mapped_column(UUIDString(), nullable=False)


class TrackedBase(Base):
    """
    Abstract base for rows that record their author.

    created_at and updated_at come from the database clock; the actor ids
    come from the ActorContext of the operation that wrote the row.
    """

    __abstract__ = True

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        nullable=False,
    )

    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        onupdate=func.now(),
        nullable=False,
    )

    created_by_id: Mapped[PyUUID] = mapped_column(
        UUIDString(),
        nullable=False,
    )

    updated_by_id: Mapped[PyUUID | None] = mapped_column(
        UUIDString(),
        nullable=True,
    )
