"""
DTOs -- Pure domain data transfer objects.

Responsibility:
    Defines the immutable inputs accepted by the ledger core (ActorContext,
    DocumentDraft, LineItemDraft, AllocationTarget, PaymentDetails,
    AdjustmentDraft) and the immutable snapshots it returns (DocumentInfo,
    PaymentInfo, AllocationInfo, PeriodLockInfo, GstSummary, GstReturnInfo).

Architecture position:
    Kernel > Domain -- pure functional core, zero I/O.
    from_model() class methods are boundary converters, only invoked from
    the service and selector layers.

Invariants enforced:
    - Callers never receive ORM instances: every result crossing the
      LedgerCore boundary is one of these frozen dataclasses.
    - Monetary fields are Decimal at ledger scale, never float.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date, datetime
from decimal import Decimal
from typing import TYPE_CHECKING, Any
from uuid import UUID

from gst_kernel.db.types import ZERO
from gst_kernel.domain.enums import (
    ActorRole,
    AdjustmentType,
    DocumentKind,
    DocumentStatus,
    PaymentDirection,
    PaymentStatus,
    PeriodType,
    ReturnStatus,
    SourceType,
    TaxClassification,
)

if TYPE_CHECKING:
    from gst_kernel.models.document import (
        DocumentAdjustment as DocumentAdjustmentModel,
        DocumentLine as DocumentLineModel,
        LedgerDocument as LedgerDocumentModel,
    )
    from gst_kernel.models.gst_return import (
        GstReturn as GstReturnModel,
        GstReturnAmendment as GstReturnAmendmentModel,
    )
    from gst_kernel.models.payment import (
        Allocation as AllocationModel,
        Payment as PaymentModel,
    )
    from gst_kernel.models.period_lock import PeriodLock as PeriodLockModel


# =============================================================================
# Caller identity
# =============================================================================


@dataclass(frozen=True)
class ActorContext:
    """
    Authenticated caller.  Every operation is scoped to ``tenant_id``.

    The surrounding application authenticates; the core only checks the role
    for period management (lock, unlock, file, approve, amend).
    """

    tenant_id: UUID
    actor_id: UUID
    role: ActorRole = ActorRole.OWNER

    @property
    def can_manage_periods(self) -> bool:
        return ActorRole(self.role).can_manage_periods


# =============================================================================
# Inputs
# =============================================================================


@dataclass(frozen=True)
class LineItemDraft:
    description: str
    quantity: Decimal
    unit_price: Decimal
    tax_rate: Decimal
    discount_percent: Decimal = ZERO
    is_exempt: bool = False
    classification: TaxClassification | None = None


@dataclass(frozen=True)
class DocumentDraft:
    """
    A sales invoice or supplier bill to be issued.

    The document number is never supplied by the caller; it is minted from
    the tenant's sequence for the document year.
    """

    kind: DocumentKind
    party_id: UUID
    document_date: date
    lines: tuple[LineItemDraft, ...]
    currency: str | None = None
    due_date: date | None = None
    status: DocumentStatus = DocumentStatus.SENT
    reference: str | None = None
    notes: str | None = None


@dataclass(frozen=True)
class AllocationTarget:
    document_id: UUID
    amount: Decimal


@dataclass(frozen=True)
class PaymentDetails:
    method: str | None = None
    reference: str | None = None
    notes: str | None = None


@dataclass(frozen=True)
class AdjustmentDraft:
    """Signed delta on a document's total: positive raises it, negative lowers it."""

    amount: Decimal
    adjustment_type: AdjustmentType = AdjustmentType.OTHER
    reason: str | None = None


# =============================================================================
# Sequence
# =============================================================================


@dataclass(frozen=True)
class IssuedNumber:
    document_type: str
    year: int
    sequence_value: int
    formatted_number: str

    def __str__(self) -> str:
        return self.formatted_number


# =============================================================================
# Documents
# =============================================================================


@dataclass(frozen=True)
class DocumentLineInfo:
    id: UUID
    line_number: int
    description: str
    quantity: Decimal
    unit_price: Decimal
    discount_percent: Decimal
    tax_rate: Decimal
    classification: TaxClassification
    subtotal: Decimal
    discount_amount: Decimal
    taxable_amount: Decimal
    tax_amount: Decimal

    @classmethod
    def from_model(cls, model: DocumentLineModel) -> DocumentLineInfo:
        return cls(
            id=model.id,
            line_number=model.line_number,
            description=model.description,
            quantity=model.quantity,
            unit_price=model.unit_price,
            discount_percent=model.discount_percent,
            tax_rate=model.tax_rate,
            classification=TaxClassification(model.classification),
            subtotal=model.subtotal,
            discount_amount=model.discount_amount,
            taxable_amount=model.taxable_amount,
            tax_amount=model.tax_amount,
        )


@dataclass(frozen=True)
class AdjustmentInfo:
    id: UUID
    document_id: UUID
    adjustment_type: AdjustmentType
    amount: Decimal
    adjustment_date: date
    reason: str | None

    @classmethod
    def from_model(cls, model: DocumentAdjustmentModel) -> AdjustmentInfo:
        return cls(
            id=model.id,
            document_id=model.document_id,
            adjustment_type=AdjustmentType(model.adjustment_type),
            amount=model.amount,
            adjustment_date=model.adjustment_date,
            reason=model.reason,
        )


@dataclass(frozen=True)
class DocumentInfo:
    """
    Snapshot of a ledger document.

    Guarantees:
        - amount_due == total_amount - amount_paid >= 0
        - payment_status derived from amount_paid vs total_amount
    """

    id: UUID
    tenant_id: UUID
    kind: DocumentKind
    party_id: UUID
    document_number: str
    sequence_value: int
    document_date: date
    due_date: date | None
    currency: str
    subtotal: Decimal
    discount_total: Decimal
    tax_total: Decimal
    adjustment_total: Decimal
    total_amount: Decimal
    amount_paid: Decimal
    amount_due: Decimal
    payment_status: PaymentStatus
    status: DocumentStatus
    reference: str | None = None
    cancelled_at: datetime | None = None
    cancel_reason: str | None = None
    lines: tuple[DocumentLineInfo, ...] = ()
    adjustments: tuple[AdjustmentInfo, ...] = ()

    @property
    def is_cancelled(self) -> bool:
        return self.status == DocumentStatus.CANCELLED

    @classmethod
    def from_model(cls, model: LedgerDocumentModel) -> DocumentInfo:
        return cls(
            id=model.id,
            tenant_id=model.tenant_id,
            kind=DocumentKind(model.kind),
            party_id=model.party_id,
            document_number=model.document_number,
            sequence_value=model.sequence_value,
            document_date=model.document_date,
            due_date=model.due_date,
            currency=model.currency,
            subtotal=model.subtotal,
            discount_total=model.discount_total,
            tax_total=model.tax_total,
            adjustment_total=model.adjustment_total,
            total_amount=model.total_amount,
            amount_paid=model.amount_paid,
            amount_due=model.amount_due,
            payment_status=PaymentStatus(model.payment_status),
            status=DocumentStatus(model.status),
            reference=model.reference,
            cancelled_at=model.cancelled_at,
            cancel_reason=model.cancel_reason,
            lines=tuple(
                DocumentLineInfo.from_model(line)
                for line in sorted(model.lines, key=lambda l: l.line_number)
            ),
            adjustments=tuple(
                AdjustmentInfo.from_model(adj) for adj in model.adjustments
            ),
        )


# =============================================================================
# Payments and allocations
# =============================================================================


@dataclass(frozen=True)
class AllocationInfo:
    id: UUID
    payment_id: UUID
    document_id: UUID
    amount: Decimal
    allocation_date: date

    @classmethod
    def from_model(cls, model: AllocationModel) -> AllocationInfo:
        return cls(
            id=model.id,
            payment_id=model.payment_id,
            document_id=model.document_id,
            amount=model.amount,
            allocation_date=model.allocation_date,
        )


@dataclass(frozen=True)
class PaymentInfo:
    """
    Snapshot of a payment or advance.

    Guarantees:
        - allocated_amount == sum(allocation amounts)
        - unallocated_amount == source_amount - allocated_amount >= 0
    """

    id: UUID
    tenant_id: UUID
    direction: PaymentDirection
    source_type: SourceType
    party_id: UUID
    payment_number: str | None
    source_amount: Decimal
    allocated_amount: Decimal
    unallocated_amount: Decimal
    currency: str
    payment_date: date
    method: str | None = None
    reference: str | None = None
    notes: str | None = None

    @property
    def is_advance(self) -> bool:
        return self.source_type == SourceType.ADVANCE

    @classmethod
    def from_model(cls, model: PaymentModel) -> PaymentInfo:
        return cls(
            id=model.id,
            tenant_id=model.tenant_id,
            direction=PaymentDirection(model.direction),
            source_type=SourceType(model.source_type),
            party_id=model.party_id,
            payment_number=model.payment_number,
            source_amount=model.source_amount,
            allocated_amount=model.allocated_amount,
            unallocated_amount=model.unallocated_amount,
            currency=model.currency,
            payment_date=model.payment_date,
            method=model.method,
            reference=model.reference,
            notes=model.notes,
        )


@dataclass(frozen=True)
class PaymentSnapshot:
    """A payment together with the allocations and documents it touched."""

    payment: PaymentInfo
    allocations: tuple[AllocationInfo, ...]
    documents: tuple[DocumentInfo, ...]

    @property
    def document(self) -> DocumentInfo:
        """The single document of a one-document payment."""
        if len(self.documents) != 1:
            raise ValueError(
                f"Payment touched {len(self.documents)} documents, not one"
            )
        return self.documents[0]


# =============================================================================
# Period locks
# =============================================================================


@dataclass(frozen=True)
class PeriodLockInfo:
    id: UUID
    tenant_id: UUID
    period_start: date
    period_end: date
    period_type: PeriodType
    locked_at: datetime
    locked_by_id: UUID
    reason: str | None
    is_active: bool
    gst_return_id: UUID | None = None
    unlocked_at: datetime | None = None
    unlocked_by_id: UUID | None = None
    unlock_reason: str | None = None

    def contains_date(self, check_date: date) -> bool:
        return self.period_start <= check_date <= self.period_end

    @classmethod
    def from_model(cls, model: PeriodLockModel) -> PeriodLockInfo:
        return cls(
            id=model.id,
            tenant_id=model.tenant_id,
            period_start=model.period_start,
            period_end=model.period_end,
            period_type=PeriodType(model.period_type),
            locked_at=model.locked_at,
            locked_by_id=model.created_by_id,
            reason=model.reason,
            is_active=model.is_active,
            gst_return_id=model.gst_return_id,
            unlocked_at=model.unlocked_at,
            unlocked_by_id=model.unlocked_by_id,
            unlock_reason=model.unlock_reason,
        )


# =============================================================================
# GST aggregation and returns
# =============================================================================


@dataclass(frozen=True)
class GstBreakdown:
    """Taxable value and tax per classification for one side of the return."""

    standard_taxable: Decimal = ZERO
    standard_tax: Decimal = ZERO
    zero_rated_taxable: Decimal = ZERO
    exempt_taxable: Decimal = ZERO
    document_count: int = 0

    @property
    def total_taxable(self) -> Decimal:
        return self.standard_taxable + self.zero_rated_taxable + self.exempt_taxable

    @property
    def total_tax(self) -> Decimal:
        return self.standard_tax

    def to_dict(self) -> dict[str, Any]:
        return {
            "standard_taxable": str(self.standard_taxable),
            "standard_tax": str(self.standard_tax),
            "zero_rated_taxable": str(self.zero_rated_taxable),
            "exempt_taxable": str(self.exempt_taxable),
            "document_count": self.document_count,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any] | None) -> GstBreakdown:
        if not data:
            return cls()
        return cls(
            standard_taxable=Decimal(data["standard_taxable"]),
            standard_tax=Decimal(data["standard_tax"]),
            zero_rated_taxable=Decimal(data["zero_rated_taxable"]),
            exempt_taxable=Decimal(data["exempt_taxable"]),
            document_count=int(data["document_count"]),
        )


@dataclass(frozen=True)
class GstSummary:
    """
    GST figures for a period.

    output_gst comes from paid sales invoices, input_gst from all supplier
    bills, both excluding cancelled documents.
    """

    period_start: date
    period_end: date
    sales: GstBreakdown
    purchases: GstBreakdown

    @property
    def output_gst(self) -> Decimal:
        return self.sales.total_tax

    @property
    def input_gst(self) -> Decimal:
        return self.purchases.total_tax

    @property
    def net_gst_payable(self) -> Decimal:
        return self.output_gst - self.input_gst


@dataclass(frozen=True)
class GstAmendmentInfo:
    id: UUID
    amendment_number: int
    previous_adjustments: Decimal
    new_adjustments: Decimal
    previous_total_payable: Decimal
    new_total_payable: Decimal
    reason: str
    amended_at: datetime
    amended_by_id: UUID

    @classmethod
    def from_model(cls, model: GstReturnAmendmentModel) -> GstAmendmentInfo:
        return cls(
            id=model.id,
            amendment_number=model.amendment_number,
            previous_adjustments=model.previous_adjustments,
            new_adjustments=model.new_adjustments,
            previous_total_payable=model.previous_total_payable,
            new_total_payable=model.new_total_payable,
            reason=model.reason,
            amended_at=model.amended_at,
            amended_by_id=model.created_by_id,
        )


@dataclass(frozen=True)
class GstReturnInfo:
    """
    Snapshot of a GST return.

    Figures on a filed return are the ones frozen at filing.  Amendments are
    listed separately; ``current_total_payable`` reflects the latest one.
    """

    id: UUID
    tenant_id: UUID
    return_number: str
    return_type: PeriodType
    period_start: date
    period_end: date
    due_date: date
    status: ReturnStatus
    output_gst: Decimal
    input_gst: Decimal
    net_gst_payable: Decimal
    adjustments: Decimal
    previous_period_balance: Decimal
    penalties: Decimal
    interest: Decimal
    total_payable: Decimal
    sales: GstBreakdown
    purchases: GstBreakdown
    filing_date: date | None = None
    filed_at: datetime | None = None
    filed_by_id: UUID | None = None
    approved_at: datetime | None = None
    amendments: tuple[GstAmendmentInfo, ...] = field(default_factory=tuple)

    @property
    def current_total_payable(self) -> Decimal:
        if self.amendments:
            return self.amendments[-1].new_total_payable
        return self.total_payable

    @classmethod
    def from_model(cls, model: GstReturnModel) -> GstReturnInfo:
        return cls(
            id=model.id,
            tenant_id=model.tenant_id,
            return_number=model.return_number,
            return_type=PeriodType(model.return_type),
            period_start=model.period_start,
            period_end=model.period_end,
            due_date=model.due_date,
            status=ReturnStatus(model.status),
            output_gst=model.output_gst,
            input_gst=model.input_gst,
            net_gst_payable=model.net_gst_payable,
            adjustments=model.adjustments,
            previous_period_balance=model.previous_period_balance,
            penalties=model.penalties,
            interest=model.interest,
            total_payable=model.total_payable,
            sales=GstBreakdown.from_dict(model.sales_breakdown),
            purchases=GstBreakdown.from_dict(model.purchases_breakdown),
            filing_date=model.filing_date,
            filed_at=model.filed_at,
            filed_by_id=model.filed_by_id,
            approved_at=model.approved_at,
            amendments=tuple(
                GstAmendmentInfo.from_model(a)
                for a in sorted(model.amendments, key=lambda a: a.amendment_number)
            ),
        )
