"""
Module: gst_kernel.models.sequence
Responsibility: ORM persistence for document numbering -- one durable counter
    row per (tenant, document type, year), plus tenant prefix preferences.
Architecture position: Kernel > Models.  May import from db/ and domain/enums.

Invariants enforced:
    - One counter row per key (uq_document_sequence_key).
    - For a key, every value 1..next_value-1 has been issued exactly once.
      The row is mutated only by SequenceService under SELECT ... FOR UPDATE.
    - Counter rows are never deleted; a new year starts a new key.
"""

from sqlalchemy import Integer, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from gst_kernel.db.base import Base, TenantScoped, TrackedBase
from gst_kernel.db.types import enum_column
from gst_kernel.domain.enums import DocumentType


class DocumentSequence(TenantScoped, Base):
    """
    Locked counter row for gap-free numbering.

    next_value is the value the next issuance will return.
    """

    __tablename__ = "document_sequences"

    __table_args__ = (
        UniqueConstraint(
            "tenant_id", "document_type", "year", name="uq_document_sequence_key"
        ),
    )

    document_type: Mapped[DocumentType] = mapped_column(
        enum_column(DocumentType),
        nullable=False,
    )

    year: Mapped[int] = mapped_column(Integer, nullable=False)

    next_value: Mapped[int] = mapped_column(
        Integer,
        default=1,
        nullable=False,
    )

    # Prefix used for the most recent issuance
    prefix: Mapped[str] = mapped_column(String(20), nullable=False)

    def __repr__(self) -> str:
        return (
            f"<DocumentSequence {self.document_type} {self.year}: "
            f"next={self.next_value}>"
        )


class TenantNumbering(TenantScoped, TrackedBase):
    """Tenant-chosen prefix for a configurable document type."""

    __tablename__ = "tenant_numbering"

    __table_args__ = (
        UniqueConstraint("tenant_id", "document_type", name="uq_tenant_numbering"),
    )

    document_type: Mapped[DocumentType] = mapped_column(
        enum_column(DocumentType),
        nullable=False,
    )

    prefix: Mapped[str] = mapped_column(String(20), nullable=False)
