"""
Module: gst_kernel.selectors.ledger_selector
Responsibility: Read-only queries over ledger documents, payments and
    allocations: single lookups, outstanding documents of a party, and the
    allocation history of a source or a document.
Architecture position: Kernel > Selectors.

Failure modes:
    - DocumentNotFoundError / PaymentNotFoundError when a lookup misses or
      the record belongs to another tenant.
"""

from datetime import date
from uuid import UUID

from sqlalchemy import select

from gst_kernel.domain.dtos import AllocationInfo, DocumentInfo, PaymentInfo
from gst_kernel.domain.enums import DocumentKind, DocumentStatus, PaymentStatus
from gst_kernel.exceptions import DocumentNotFoundError, PaymentNotFoundError
from gst_kernel.models.document import LedgerDocument
from gst_kernel.models.payment import Allocation, Payment
from gst_kernel.selectors.base import BaseSelector


class LedgerSelector(BaseSelector[LedgerDocument]):
    """Read-only access to documents, payments and allocations of a tenant."""

    def get_document(self, tenant_id: UUID, document_id: UUID) -> DocumentInfo:
        document = self._get_owned(LedgerDocument, document_id, tenant_id, DocumentNotFoundError)
        return DocumentInfo.from_model(document)

    def get_payment(self, tenant_id: UUID, payment_id: UUID) -> PaymentInfo:
        payment = self._get_owned(Payment, payment_id, tenant_id, PaymentNotFoundError)
        return PaymentInfo.from_model(payment)

    def list_documents(
        self,
        tenant_id: UUID,
        kind: DocumentKind | None = None,
        start: date | None = None,
        end: date | None = None,
    ) -> list[DocumentInfo]:
        query = self._for_tenant(LedgerDocument, tenant_id)
        if kind is not None:
            query = query.where(LedgerDocument.kind == DocumentKind(kind))
        if start is not None:
            query = query.where(LedgerDocument.document_date >= start)
        if end is not None:
            query = query.where(LedgerDocument.document_date <= end)
        query = query.order_by(LedgerDocument.document_date, LedgerDocument.sequence_value)
        return [DocumentInfo.from_model(d) for d in self.session.scalars(query)]

    def outstanding_documents(
        self,
        tenant_id: UUID,
        party_id: UUID,
        kind: DocumentKind | None = None,
    ) -> list[DocumentInfo]:
        """
        Documents of a party with an amount still due, oldest first.

        Order is informational; allocation never picks targets on its own.
        """
        query = self._for_tenant(LedgerDocument, tenant_id).where(
            LedgerDocument.party_id == party_id,
            LedgerDocument.payment_status != PaymentStatus.PAID,
            LedgerDocument.status != DocumentStatus.CANCELLED,
        )
        if kind is not None:
            query = query.where(LedgerDocument.kind == DocumentKind(kind))
        query = query.order_by(LedgerDocument.document_date, LedgerDocument.sequence_value)
        return [DocumentInfo.from_model(d) for d in self.session.scalars(query)]

    def list_payments(
        self,
        tenant_id: UUID,
        party_id: UUID | None = None,
        with_unallocated: bool = False,
    ) -> list[PaymentInfo]:
        query = self._for_tenant(Payment, tenant_id)
        if party_id is not None:
            query = query.where(Payment.party_id == party_id)
        query = query.order_by(Payment.payment_date, Payment.created_at)
        payments = [PaymentInfo.from_model(p) for p in self.session.scalars(query)]
        if with_unallocated:
            # Money columns are strings on SQLite; compare in Python
            payments = [p for p in payments if p.unallocated_amount > 0]
        return payments

    def allocations_for_source(self, tenant_id: UUID, source_id: UUID) -> list[AllocationInfo]:
        self.get_payment(tenant_id, source_id)
        query = (
            select(Allocation)
            .where(Allocation.payment_id == source_id)
            .order_by(Allocation.allocation_date, Allocation.created_at)
        )
        return [AllocationInfo.from_model(a) for a in self.session.scalars(query)]

    def allocations_for_document(self, tenant_id: UUID, document_id: UUID) -> list[AllocationInfo]:
        self.get_document(tenant_id, document_id)
        query = (
            select(Allocation)
            .where(Allocation.document_id == document_id)
            .order_by(Allocation.allocation_date, Allocation.created_at)
        )
        return [AllocationInfo.from_model(a) for a in self.session.scalars(query)]
