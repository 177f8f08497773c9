"""
Module: gst_kernel.selectors.gst_selector
Responsibility: GST aggregation over a date range, plus read access to GST
    returns.  summarise() is the single computation behind preparing,
    filing and previewing a return.
Architecture position: Kernel > Selectors.

Invariants enforced:
    - Output GST counts line tax of PAID, non-cancelled sales invoices dated
      in the period.  Unpaid and partially paid invoices do not count until
      they are fully paid.
    - Input GST counts line tax of every non-cancelled supplier bill dated in
      the period, paid or not.
    - Sums are exact Decimal additions of the persisted, already-rounded line
      amounts; no rounding happens here.

Audit relevance:
    The figures frozen on a filed return are the output of summarise() at
    the moment of filing, read under the tenant's exclusive lock guard.
"""

from collections import defaultdict
from datetime import date
from decimal import Decimal
from uuid import UUID

from sqlalchemy import select

from gst_kernel.db.types import ZERO
from gst_kernel.domain.dtos import GstBreakdown, GstReturnInfo, GstSummary
from gst_kernel.domain.enums import (
    DocumentKind,
    DocumentStatus,
    PaymentStatus,
    ReturnStatus,
    TaxClassification,
)
from gst_kernel.exceptions import GstReturnNotFoundError
from gst_kernel.models.document import DocumentLine, LedgerDocument
from gst_kernel.models.gst_return import GstReturn
from gst_kernel.selectors.base import BaseSelector


class GstSelector(BaseSelector[GstReturn]):
    """GST summaries and return lookups."""

    def summarise(self, tenant_id: UUID, period_start: date, period_end: date) -> GstSummary:
        sales = self._breakdown(
            tenant_id, DocumentKind.SALES_INVOICE, period_start, period_end, paid_only=True
        )
        purchases = self._breakdown(
            tenant_id, DocumentKind.SUPPLIER_BILL, period_start, period_end, paid_only=False
        )
        return GstSummary(
            period_start=period_start,
            period_end=period_end,
            sales=sales,
            purchases=purchases,
        )

    def _breakdown(
        self,
        tenant_id: UUID,
        kind: DocumentKind,
        period_start: date,
        period_end: date,
        paid_only: bool,
    ) -> GstBreakdown:
        query = (
            select(
                DocumentLine.document_id,
                DocumentLine.classification,
                DocumentLine.taxable_amount,
                DocumentLine.tax_amount,
            )
            .join(LedgerDocument, DocumentLine.document_id == LedgerDocument.id)
            .where(
                LedgerDocument.tenant_id == tenant_id,
                LedgerDocument.kind == kind,
                LedgerDocument.status != DocumentStatus.CANCELLED,
                LedgerDocument.document_date >= period_start,
                LedgerDocument.document_date <= period_end,
            )
        )
        if paid_only:
            query = query.where(LedgerDocument.payment_status == PaymentStatus.PAID)

        taxable: dict[TaxClassification, Decimal] = defaultdict(lambda: ZERO)
        tax = ZERO
        documents = set()
        for document_id, classification, taxable_amount, tax_amount in self.session.execute(query):
            classification = TaxClassification(classification)
            documents.add(document_id)
            taxable[classification] += taxable_amount
            if classification is TaxClassification.STANDARD:
                tax += tax_amount

        return GstBreakdown(
            standard_taxable=taxable[TaxClassification.STANDARD],
            standard_tax=tax,
            zero_rated_taxable=taxable[TaxClassification.ZERO_RATED],
            exempt_taxable=taxable[TaxClassification.EXEMPT],
            document_count=len(documents),
        )

    def get_return(self, tenant_id: UUID, return_id: UUID) -> GstReturnInfo:
        gst_return = self._get_owned(GstReturn, return_id, tenant_id, GstReturnNotFoundError)
        return GstReturnInfo.from_model(gst_return)

    def list_returns(
        self,
        tenant_id: UUID,
        status: ReturnStatus | None = None,
    ) -> list[GstReturnInfo]:
        """Returns newest period first."""
        query = self._for_tenant(GstReturn, tenant_id)
        if status is not None:
            query = query.where(GstReturn.status == ReturnStatus(status))
        query = query.order_by(GstReturn.period_start.desc(), GstReturn.created_at.desc())
        return [GstReturnInfo.from_model(r) for r in self.session.scalars(query)]
