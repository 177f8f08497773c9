"""
Module: gst_kernel.models.payment
Responsibility: ORM persistence for payments, advances, and the allocations
    that apply them to ledger documents.
Architecture position: Kernel > Models.  May import from db/ and domain/.

Invariants enforced:
    - allocated_amount == sum(allocations.amount) for every payment.
    - unallocated_amount == source_amount - allocated_amount >= 0.
    - Allocation amounts are > 0 and never updated in place (ORM listener);
      an allocation is removed only by reversing it.

Audit relevance:
    An allocation row and the document balance update it represents are
    always written in the same transaction.
"""

from datetime import date
from decimal import Decimal
from uuid import UUID

from sqlalchemy import Date, ForeignKey, Index, String, Text, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column, relationship

from gst_kernel.db.base import TenantScoped, TrackedBase, UUIDString
from gst_kernel.db.types import ZERO, enum_column
from gst_kernel.domain.enums import PaymentDirection, SourceType


class Payment(TenantScoped, TrackedBase):
    """
    Money received from a customer or paid to a supplier.

    Contract:
        An ADVANCE starts fully unallocated.  A PAYMENT is allocated when
        recorded, and may keep an unallocated remainder for later allocate
        calls.
    """

    __tablename__ = "payments"

    __table_args__ = (
        UniqueConstraint("tenant_id", "payment_number", name="uq_payment_number"),
        Index("idx_payment_party", "tenant_id", "party_id"),
    )

    direction: Mapped[PaymentDirection] = mapped_column(
        enum_column(PaymentDirection),
        nullable=False,
    )

    source_type: Mapped[SourceType] = mapped_column(
        enum_column(SourceType),
        nullable=False,
    )

    party_id: Mapped[UUID] = mapped_column(UUIDString(), nullable=False)

    # ADV-C / ADV-S / RCP number; supplier payments are unnumbered
    payment_number: Mapped[str | None] = mapped_column(String(40), nullable=True)

    source_amount: Mapped[Decimal] = mapped_column(nullable=False)
    allocated_amount: Mapped[Decimal] = mapped_column(nullable=False, default=ZERO)
    unallocated_amount: Mapped[Decimal] = mapped_column(nullable=False)

    currency: Mapped[str] = mapped_column(String(3), nullable=False)

    payment_date: Mapped[date] = mapped_column(Date, nullable=False)

    method: Mapped[str | None] = mapped_column(String(50), nullable=True)
    reference: Mapped[str | None] = mapped_column(String(100), nullable=True)
    notes: Mapped[str | None] = mapped_column(Text, nullable=True)

    allocations: Mapped[list["Allocation"]] = relationship(
        back_populates="payment",
        cascade="all, delete-orphan",
        lazy="selectin",
    )

    def __repr__(self) -> str:
        return (
            f"<Payment {self.payment_number or self.id}: "
            f"{self.allocated_amount}/{self.source_amount}>"
        )

    def set_allocated(self, allocated_amount: Decimal) -> None:
        """
        Set allocated_amount and rederive unallocated_amount.

        Raises:
            ValueError: If the allocated amount leaves [0, source_amount].
        """
        if allocated_amount < 0 or allocated_amount > self.source_amount:
            raise ValueError(
                f"allocated_amount {allocated_amount} outside 0..{self.source_amount}"
            )
        self.allocated_amount = allocated_amount
        self.unallocated_amount = self.source_amount - allocated_amount


class Allocation(TrackedBase):
    """Application of part or all of a payment to one document."""

    __tablename__ = "allocations"

    __table_args__ = (
        Index("idx_allocation_payment", "payment_id"),
        Index("idx_allocation_document", "document_id"),
    )

    payment_id: Mapped[UUID] = mapped_column(
        UUIDString(),
        ForeignKey("payments.id"),
        nullable=False,
    )

    document_id: Mapped[UUID] = mapped_column(
        UUIDString(),
        ForeignKey("ledger_documents.id"),
        nullable=False,
    )

    amount: Mapped[Decimal] = mapped_column(nullable=False)

    # Effective date checked against period locks
    allocation_date: Mapped[date] = mapped_column(Date, nullable=False)

    payment: Mapped[Payment] = relationship(back_populates="allocations")
