"""
Module: gst_kernel.models.document
Responsibility: ORM persistence for ledger documents (sales invoices and
    supplier bills), their tax-bearing line items, and signed adjustments.
Architecture position: Kernel > Models.  May import from db/ and domain/.

Invariants enforced:
    - amount_due == total_amount - amount_paid and amount_due >= 0.
    - payment_status is recomputed from (amount_paid, total_amount) on every
      balance change via set_balances(); it is never assigned on its own.
    - total_amount == subtotal + tax_total + adjustment_total.
    - A document that carries payments is never deleted (ORM listener).

Failure modes:
    - ValueError from set_balances() if a caller bypasses the service checks
      and would drive amount_due or amount_paid negative.

Audit relevance:
    document_number and sequence_value are minted from the tenant's gap-free
    sequence in the same transaction that inserts the row.
"""

from datetime import date, datetime
from decimal import Decimal
from uuid import UUID

from sqlalchemy import (
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

from gst_kernel.db.base import Base, TenantScoped, TrackedBase, UUIDString
from gst_kernel.db.types import ZERO, QuantityType, RateType, enum_column
from gst_kernel.domain.enums import (
    AdjustmentType,
    DocumentKind,
    DocumentStatus,
    PaymentStatus,
    TaxClassification,
)
from gst_kernel.domain.tax import derive_payment_status


class LedgerDocument(TenantScoped, TrackedBase):
    """
    Sales invoice or supplier bill with its paid/due balances.

    Contract:
        Balances change only through DocumentService.apply_payment,
        reverse_payment and adjust, each under a row lock.
    """

    __tablename__ = "ledger_documents"

    __table_args__ = (
        UniqueConstraint(
            "tenant_id", "kind", "document_number", name="uq_document_number"
        ),
        Index("idx_document_tenant_date", "tenant_id", "document_date"),
        Index("idx_document_party", "tenant_id", "party_id"),
    )

    kind: Mapped[DocumentKind] = mapped_column(
        enum_column(DocumentKind),
        nullable=False,
    )

    # Customer for invoices, supplier for bills
    party_id: Mapped[UUID] = mapped_column(UUIDString(), nullable=False)

    document_number: Mapped[str] = mapped_column(String(40), nullable=False)

    sequence_value: Mapped[int] = mapped_column(Integer, nullable=False)

    document_date: Mapped[date] = mapped_column(Date, nullable=False)

    due_date: Mapped[date | None] = mapped_column(Date, nullable=True)

    currency: Mapped[str] = mapped_column(String(3), nullable=False)

    subtotal: Mapped[Decimal] = mapped_column(nullable=False, default=ZERO)
    discount_total: Mapped[Decimal] = mapped_column(nullable=False, default=ZERO)
    tax_total: Mapped[Decimal] = mapped_column(nullable=False, default=ZERO)
    adjustment_total: Mapped[Decimal] = mapped_column(nullable=False, default=ZERO)
    total_amount: Mapped[Decimal] = mapped_column(nullable=False)
    amount_paid: Mapped[Decimal] = mapped_column(nullable=False, default=ZERO)
    amount_due: Mapped[Decimal] = mapped_column(nullable=False)

    payment_status: Mapped[PaymentStatus] = mapped_column(
        enum_column(PaymentStatus),
        default=PaymentStatus.UNPAID,
        nullable=False,
    )

    status: Mapped[DocumentStatus] = mapped_column(
        enum_column(DocumentStatus),
        default=DocumentStatus.SENT,
        nullable=False,
    )

    reference: Mapped[str | None] = mapped_column(String(100), nullable=True)
    notes: Mapped[str | None] = mapped_column(Text, nullable=True)

    cancelled_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    cancelled_by_id: Mapped[UUID | None] = mapped_column(UUIDString(), nullable=True)
    cancel_reason: Mapped[str | None] = mapped_column(Text, nullable=True)

    lines: Mapped[list["DocumentLine"]] = relationship(
        back_populates="document",
        cascade="all, delete-orphan",
        order_by="DocumentLine.line_number",
        lazy="selectin",
    )

    adjustments: Mapped[list["DocumentAdjustment"]] = relationship(
        back_populates="document",
        cascade="all, delete-orphan",
        order_by="DocumentAdjustment.created_at",
        lazy="selectin",
    )

    def __repr__(self) -> str:
        return (
            f"<LedgerDocument {self.document_number}: "
            f"due={self.amount_due} {self.payment_status}>"
        )

    @property
    def is_cancelled(self) -> bool:
        return self.status == DocumentStatus.CANCELLED

    def set_balances(self, total_amount: Decimal, amount_paid: Decimal) -> None:
        """
        Set total and paid together and rederive everything that depends on them.

        Raises:
            ValueError: If amount_paid < 0 or amount_paid > total_amount.
        """
        if amount_paid < 0:
            raise ValueError(f"amount_paid would be negative: {amount_paid}")
        if amount_paid > total_amount:
            raise ValueError(
                f"amount_paid {amount_paid} would exceed total {total_amount}"
            )
        self.total_amount = total_amount
        self.amount_paid = amount_paid
        self.amount_due = total_amount - amount_paid
        self.payment_status = derive_payment_status(amount_paid, total_amount)
        if self.payment_status == PaymentStatus.PAID:
            self.status = DocumentStatus.PAID
        elif self.status == DocumentStatus.PAID:
            self.status = DocumentStatus.SENT


class DocumentLine(Base):
    """Line item with its computed, rounded tax amounts."""

    __tablename__ = "document_lines"

    __table_args__ = (
        UniqueConstraint("document_id", "line_number", name="uq_document_line_number"),
    )

    document_id: Mapped[UUID] = mapped_column(
        UUIDString(),
        ForeignKey("ledger_documents.id", ondelete="CASCADE"),
        nullable=False,
    )

    line_number: Mapped[int] = mapped_column(Integer, nullable=False)

    description: Mapped[str] = mapped_column(String(255), nullable=False)

    quantity: Mapped[Decimal] = mapped_column(QuantityType(), nullable=False)
    unit_price: Mapped[Decimal] = mapped_column(nullable=False)
    discount_percent: Mapped[Decimal] = mapped_column(RateType(), nullable=False)
    tax_rate: Mapped[Decimal] = mapped_column(RateType(), nullable=False)

    classification: Mapped[TaxClassification] = mapped_column(
        enum_column(TaxClassification),
        nullable=False,
    )

    subtotal: Mapped[Decimal] = mapped_column(nullable=False)
    discount_amount: Mapped[Decimal] = mapped_column(nullable=False)
    taxable_amount: Mapped[Decimal] = mapped_column(nullable=False)
    tax_amount: Mapped[Decimal] = mapped_column(nullable=False)

    document: Mapped[LedgerDocument] = relationship(back_populates="lines")


class DocumentAdjustment(TrackedBase):
    """
    Signed change to a document's total (discount, fee, credit/debit note).

    payment_id is set when the adjustment was folded into a payment.
    """

    __tablename__ = "document_adjustments"

    __table_args__ = (
        Index("idx_adjustment_document", "document_id"),
    )

    document_id: Mapped[UUID] = mapped_column(
        UUIDString(),
        ForeignKey("ledger_documents.id", ondelete="CASCADE"),
        nullable=False,
    )

    adjustment_type: Mapped[AdjustmentType] = mapped_column(
        enum_column(AdjustmentType),
        nullable=False,
    )

    amount: Mapped[Decimal] = mapped_column(nullable=False)

    adjustment_date: Mapped[date] = mapped_column(Date, nullable=False)

    reason: Mapped[str | None] = mapped_column(Text, nullable=True)

    payment_id: Mapped[UUID | None] = mapped_column(UUIDString(), nullable=True)

    document: Mapped[LedgerDocument] = relationship(back_populates="adjustments")
