"""
Module: gst_kernel.models.gst_return
Responsibility: ORM persistence for GST returns and their amendment history.
Architecture position: Kernel > Models.  May import from db/ and domain/.

Invariants enforced:
    - A return is filed exactly once.  From then on its period, type and
      figures are frozen (ORM listener); only status, approval fields and
      audit metadata may change.
    - Only DRAFT returns may be deleted (ORM listener).
    - Amendments are append-only rows; they never rewrite the filed figures.

Audit relevance:
    The filed figures are the numbers reported to the tax authority.  The
    period lock created at filing references the return by gst_return_id.
"""

from datetime import date, datetime
from decimal import Decimal
from typing import Any
from uuid import UUID

from sqlalchemy import (
    JSON,
    Date,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from gst_kernel.db.base import TenantScoped, TrackedBase, UUIDString
from gst_kernel.db.types import ZERO, enum_column
from gst_kernel.domain.enums import PeriodType, ReturnStatus

# Fields frozen once a return leaves DRAFT
FROZEN_RETURN_FIELDS = frozenset({
    "tenant_id",
    "return_number",
    "return_type",
    "period_start",
    "period_end",
    "due_date",
    "output_gst",
    "input_gst",
    "net_gst_payable",
    "adjustments",
    "previous_period_balance",
    "penalties",
    "interest",
    "total_payable",
    "sales_breakdown",
    "purchases_breakdown",
    "filing_date",
    "filed_at",
    "filed_by_id",
})


class GstReturn(TenantScoped, TrackedBase):
    """GST return for a calendar month, quarter or year."""

    __tablename__ = "gst_returns"

    __table_args__ = (
        Index("idx_gst_return_period", "tenant_id", "period_start", "period_end"),
        Index("idx_gst_return_status", "tenant_id", "status"),
    )

    # GST-YYYY-MM, GST-YYYY-Qn or GST-YYYY-ANNUAL
    return_number: Mapped[str] = mapped_column(String(20), nullable=False)

    return_type: Mapped[PeriodType] = mapped_column(
        enum_column(PeriodType),
        nullable=False,
    )

    period_start: Mapped[date] = mapped_column(Date, nullable=False)
    period_end: Mapped[date] = mapped_column(Date, nullable=False)
    due_date: Mapped[date] = mapped_column(Date, nullable=False)

    status: Mapped[ReturnStatus] = mapped_column(
        enum_column(ReturnStatus),
        default=ReturnStatus.DRAFT,
        nullable=False,
    )

    output_gst: Mapped[Decimal] = mapped_column(nullable=False, default=ZERO)
    input_gst: Mapped[Decimal] = mapped_column(nullable=False, default=ZERO)
    net_gst_payable: Mapped[Decimal] = mapped_column(nullable=False, default=ZERO)
    adjustments: Mapped[Decimal] = mapped_column(nullable=False, default=ZERO)
    previous_period_balance: Mapped[Decimal] = mapped_column(nullable=False, default=ZERO)
    penalties: Mapped[Decimal] = mapped_column(nullable=False, default=ZERO)
    interest: Mapped[Decimal] = mapped_column(nullable=False, default=ZERO)
    total_payable: Mapped[Decimal] = mapped_column(nullable=False, default=ZERO)

    sales_breakdown: Mapped[dict[str, Any]] = mapped_column(JSON, nullable=False)
    purchases_breakdown: Mapped[dict[str, Any]] = mapped_column(JSON, nullable=False)

    filing_date: Mapped[date | None] = mapped_column(Date, nullable=True)
    filed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    filed_by_id: Mapped[UUID | None] = mapped_column(UUIDString(), nullable=True)

    approved_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    approved_by_id: Mapped[UUID | None] = mapped_column(UUIDString(), nullable=True)

    amendments: Mapped[list["GstReturnAmendment"]] = relationship(
        back_populates="gst_return",
        order_by="GstReturnAmendment.amendment_number",
        lazy="selectin",
    )

    def __repr__(self) -> str:
        return f"<GstReturn {self.return_number}: {self.status}>"

    @property
    def is_draft(self) -> bool:
        return self.status == ReturnStatus.DRAFT


class GstReturnAmendment(TrackedBase):
    """Append-only amendment record; created_by_id is the amending actor."""

    __tablename__ = "gst_return_amendments"

    __table_args__ = (
        UniqueConstraint(
            "gst_return_id", "amendment_number", name="uq_gst_return_amendment"
        ),
    )

    gst_return_id: Mapped[UUID] = mapped_column(
        UUIDString(),
        ForeignKey("gst_returns.id"),
        nullable=False,
    )

    amendment_number: Mapped[int] = mapped_column(Integer, nullable=False)

    previous_adjustments: Mapped[Decimal] = mapped_column(nullable=False)
    new_adjustments: Mapped[Decimal] = mapped_column(nullable=False)
    previous_total_payable: Mapped[Decimal] = mapped_column(nullable=False)
    new_total_payable: Mapped[Decimal] = mapped_column(nullable=False)

    reason: Mapped[str] = mapped_column(Text, nullable=False)

    amended_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)

    gst_return: Mapped[GstReturn] = relationship(back_populates="amendments")
