"""
Module: gst_kernel.models.period_lock
Responsibility: ORM persistence for period locks and the per-tenant guard row
    that serializes lock changes against document mutations.
Architecture position: Kernel > Models.  May import from db/ and domain/.

Invariants enforced:
    - No two ACTIVE locks of one tenant overlap (checked by PeriodLockService
      while holding the tenant's guard row exclusively).
    - Locks are released, never deleted: unlock sets is_active=False and
      records who released it (ORM listener blocks deletes).
    - Every document mutation holds the guard row in share mode while it
      checks locks, so a lock cannot appear between the check and the write.

Audit relevance:
    Active and released locks together form the history of which periods
    were frozen, by whom, and for which filed return.
"""

from datetime import date, datetime
from uuid import UUID

from sqlalchemy import (
    Boolean,
    Date,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column

from gst_kernel.db.base import Base, TenantScoped, TrackedBase, UUIDString
from gst_kernel.db.types import enum_column
from gst_kernel.domain.enums import PeriodType


class PeriodLock(TenantScoped, TrackedBase):
    """
    An immutability constraint over an inclusive date range.

    created_by_id is the actor who locked the period.
    """

    __tablename__ = "period_locks"

    __table_args__ = (
        Index("idx_period_lock_active", "tenant_id", "is_active"),
        Index("idx_period_lock_dates", "tenant_id", "period_start", "period_end"),
    )

    period_start: Mapped[date] = mapped_column(Date, nullable=False)
    period_end: Mapped[date] = mapped_column(Date, nullable=False)

    period_type: Mapped[PeriodType] = mapped_column(
        enum_column(PeriodType),
        nullable=False,
    )

    locked_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
    )

    reason: Mapped[str | None] = mapped_column(Text, nullable=True)

    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)

    # Set when the lock was created by filing a GST return
    gst_return_id: Mapped[UUID | None] = mapped_column(
        UUIDString(),
        ForeignKey("gst_returns.id"),
        nullable=True,
    )

    unlocked_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    unlocked_by_id: Mapped[UUID | None] = mapped_column(UUIDString(), nullable=True)
    unlock_reason: Mapped[str | None] = mapped_column(Text, nullable=True)

    def __repr__(self) -> str:
        state = "active" if self.is_active else "released"
        return f"<PeriodLock {self.period_start}..{self.period_end} {state}>"

    def contains_date(self, check_date: date) -> bool:
        return self.period_start <= check_date <= self.period_end


class PeriodLockGuard(TenantScoped, Base):
    """
    One row per tenant.

    Mutations read it FOR SHARE before checking locks; lock and unlock take
    it FOR UPDATE.  version counts lock changes.
    """

    __tablename__ = "period_lock_guards"

    __table_args__ = (
        UniqueConstraint("tenant_id", name="uq_period_lock_guard_tenant"),
    )

    version: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
