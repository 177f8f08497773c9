"""
DocumentService -- the ledger document store.

Responsibility:
    Issues sales invoices and supplier bills (numbered from the tenant's
    gap-free sequence), and owns the only primitives that change a
    document's balances: apply_payment, reverse_payment and adjust.  Also
    cancels documents that carry no payments.

Architecture position:
    Kernel > Services -- imperative shell.
    Uses SequenceService for numbering and PeriodLockService for the lock
    gate.  AllocationService calls the *_locked primitives on rows it has
    already locked.

Invariants enforced:
    - amount_due == total_amount - amount_paid >= 0 after every mutation;
      any amount that would break it raises ExceedsBalanceError and changes
      nothing.
    - payment_status is rederived on every balance change.
    - No mutation whose document date or effective date lies in an active
      period lock (checked under the lock guard, in the same transaction).
    - Lock order: lock guard, sequence counter, document row.
    - A direct reversal never takes back money that came from an
      allocation: amount_paid >= sum(allocations) for every document.
    - Cancellation only while amount_paid == 0 and no allocation remains.
    - Flush-only: never commits or rolls back the session.

Failure modes:
    - ExceedsBalanceError, PeriodLockedError, DocumentNotFoundError,
      DocumentCancelledError, InvalidTransitionError, LedgerValidationError.
"""

from datetime import date
from decimal import Decimal
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.orm import Session

from gst_kernel.db.types import ZERO, to_decimal
from gst_kernel.domain.clock import Clock
from gst_kernel.domain.dtos import ActorContext, DocumentDraft, DocumentInfo
from gst_kernel.domain.enums import AdjustmentType, DocumentKind, DocumentStatus
from gst_kernel.domain.tax import compute_line, sum_lines
from gst_kernel.exceptions import (
    DocumentCancelledError,
    DocumentNotFoundError,
    ExceedsBalanceError,
    InvalidTransitionError,
    LedgerValidationError,
)
from gst_kernel.logging_config import get_logger
from gst_kernel.models.document import DocumentAdjustment, DocumentLine, LedgerDocument
from gst_kernel.models.payment import Allocation
from gst_kernel.services.base import BaseService, require_amount, require_currency
from gst_kernel.services.period_lock_service import PeriodLockService
from gst_kernel.services.sequence_service import SequenceService

logger = get_logger("services.document")


class DocumentService(BaseService[LedgerDocument]):
    """
    Ledger document store.

    Contract:
        Public methods take an ActorContext and return DocumentInfo DTOs.
        The ``*_locked`` primitives take an ORM row the caller has locked
        via ``lock_document()`` and return nothing.
    """

    def __init__(
        self,
        session: Session,
        clock: Clock | None = None,
        sequences: SequenceService | None = None,
        period_locks: PeriodLockService | None = None,
        default_currency: str = "BTN",
    ):
        super().__init__(session, clock)
        self._sequences = sequences or SequenceService(session, self.clock)
        self._period_locks = period_locks or PeriodLockService(session, self.clock)
        self._default_currency = default_currency

    # -------------------------------------------------------------------------
    # Loading
    # -------------------------------------------------------------------------

    def lock_document(self, tenant_id: UUID, document_id: UUID) -> LedgerDocument:
        """SELECT ... FOR UPDATE the document row, refreshed from the database."""
        document = self.session.execute(
            select(LedgerDocument)
            .where(LedgerDocument.id == document_id)
            .with_for_update()
            .execution_options(populate_existing=True)
        ).scalar_one_or_none()
        if document is None or document.tenant_id != tenant_id:
            raise DocumentNotFoundError(str(document_id))
        return document

    def get_document(self, tenant_id: UUID, document_id: UUID) -> LedgerDocument:
        document = self.session.get(LedgerDocument, document_id)
        if document is None or document.tenant_id != tenant_id:
            raise DocumentNotFoundError(str(document_id))
        return document

    # -------------------------------------------------------------------------
    # Issuance
    # -------------------------------------------------------------------------

    def create_document(self, actor: ActorContext, draft: DocumentDraft) -> DocumentInfo:
        """
        Issue a sales invoice or supplier bill.

        The number is minted in this transaction: if the insert fails the
        increment rolls back with it, so no number is ever skipped.
        """
        kind = DocumentKind(draft.kind)
        status = DocumentStatus(draft.status)
        if status not in (DocumentStatus.DRAFT, DocumentStatus.SENT):
            raise LedgerValidationError("status", f"cannot issue a {status.value} document")
        if not draft.lines:
            raise LedgerValidationError("lines", "a document needs at least one line item")
        if draft.due_date is not None and draft.due_date < draft.document_date:
            raise LedgerValidationError("due_date", "is before the document date")
        currency = require_currency(draft.currency or self._default_currency)

        computed = []
        for index, item in enumerate(draft.lines, start=1):
            try:
                amounts = compute_line(
                    quantity=to_decimal(item.quantity),
                    unit_price=to_decimal(item.unit_price),
                    tax_rate=to_decimal(item.tax_rate),
                    discount_percent=to_decimal(item.discount_percent),
                    is_exempt=item.is_exempt,
                    classification=item.classification,
                )
            except (TypeError, ValueError) as e:
                raise LedgerValidationError(f"lines[{index}]", str(e)) from e
            computed.append((index, item, amounts))
        totals = sum_lines(amounts for _, _, amounts in computed)

        self._period_locks.assert_unlocked(actor.tenant_id, draft.document_date)

        issued = self._sequences.next_number(
            actor.tenant_id, kind.document_type, draft.document_date.year
        )

        document = LedgerDocument(
            tenant_id=actor.tenant_id,
            kind=kind,
            party_id=draft.party_id,
            document_number=issued.formatted_number,
            sequence_value=issued.sequence_value,
            document_date=draft.document_date,
            due_date=draft.due_date,
            currency=currency,
            subtotal=totals.subtotal,
            discount_total=totals.discount_total,
            tax_total=totals.tax_total,
            adjustment_total=ZERO,
            status=status,
            reference=draft.reference,
            notes=draft.notes,
            created_by_id=actor.actor_id,
        )
        document.set_balances(totals.total, ZERO)
        document.lines = [
            DocumentLine(
                line_number=index,
                description=item.description,
                quantity=to_decimal(item.quantity),
                unit_price=to_decimal(item.unit_price),
                discount_percent=to_decimal(item.discount_percent),
                tax_rate=to_decimal(item.tax_rate),
                classification=amounts.classification,
                subtotal=amounts.subtotal,
                discount_amount=amounts.discount_amount,
                taxable_amount=amounts.taxable_amount,
                tax_amount=amounts.tax_amount,
            )
            for index, item, amounts in computed
        ]
        self.session.add(document)
        self.session.flush()

        logger.info(
            "document_created",
            extra={
                "document_id": document.id,
                "kind": kind.value,
                "document_number": document.document_number,
                "total_amount": document.total_amount,
                "tax_total": document.tax_total,
            },
        )
        return DocumentInfo.from_model(document)

    # -------------------------------------------------------------------------
    # Balance primitives
    # -------------------------------------------------------------------------

    def apply_payment(
        self,
        actor: ActorContext,
        document_id: UUID,
        amount: Decimal,
        effective_date: date,
    ) -> DocumentInfo:
        """Increase amount_paid by amount.  Direct payments use this path."""
        amount = require_amount("amount", amount)
        self._period_locks.acquire_guard(actor.tenant_id)
        document = self.lock_document(actor.tenant_id, document_id)
        self.apply_payment_locked(document, amount, effective_date, actor.actor_id)
        return DocumentInfo.from_model(document)

    def reverse_payment(
        self,
        actor: ActorContext,
        document_id: UUID,
        amount: Decimal,
        effective_date: date,
    ) -> DocumentInfo:
        """
        Decrease amount_paid by amount.

        Only the directly applied part of amount_paid can be reversed here;
        money that arrived through allocations goes back through
        reverse_allocation or delete_payment.
        """
        amount = require_amount("amount", amount)
        self._period_locks.acquire_guard(actor.tenant_id)
        document = self.lock_document(actor.tenant_id, document_id)
        direct_paid = document.amount_paid - self.allocated_total(document.id)
        if amount > direct_paid:
            logger.warning(
                "reversal_exceeds_direct_payments",
                extra={
                    "document_id": document.id,
                    "amount": amount,
                    "direct_paid": direct_paid,
                    "amount_paid": document.amount_paid,
                },
            )
            raise ExceedsBalanceError(str(document.id), amount, direct_paid)
        self.reverse_payment_locked(document, amount, effective_date, actor.actor_id)
        return DocumentInfo.from_model(document)

    def allocated_total(self, document_id: UUID) -> Decimal:
        """Sum of the live allocations settling a document."""
        amounts = self.session.scalars(
            select(Allocation.amount).where(Allocation.document_id == document_id)
        )
        return sum(amounts, ZERO)

    def apply_payment_locked(
        self,
        document: LedgerDocument,
        amount: Decimal,
        effective_date: date,
        actor_id: UUID,
    ) -> None:
        if document.is_cancelled:
            raise DocumentCancelledError(str(document.id), "apply a payment to")
        self._period_locks.assert_unlocked(
            document.tenant_id, document.document_date, effective_date
        )
        if amount > document.amount_due:
            logger.warning(
                "payment_exceeds_balance",
                extra={
                    "document_id": document.id,
                    "amount": amount,
                    "amount_due": document.amount_due,
                },
            )
            raise ExceedsBalanceError(str(document.id), amount, document.amount_due)

        document.set_balances(document.total_amount, document.amount_paid + amount)
        document.updated_by_id = actor_id
        self.session.flush()

        logger.info(
            "payment_applied",
            extra={
                "document_id": document.id,
                "amount": amount,
                "amount_paid": document.amount_paid,
                "amount_due": document.amount_due,
                "payment_status": document.payment_status,
            },
        )

    def reverse_payment_locked(
        self,
        document: LedgerDocument,
        amount: Decimal,
        effective_date: date,
        actor_id: UUID,
    ) -> None:
        self._period_locks.assert_unlocked(
            document.tenant_id, document.document_date, effective_date
        )
        if amount > document.amount_paid:
            raise ExceedsBalanceError(str(document.id), amount, document.amount_paid)

        document.set_balances(document.total_amount, document.amount_paid - amount)
        document.updated_by_id = actor_id
        self.session.flush()

        logger.info(
            "payment_reversed",
            extra={
                "document_id": document.id,
                "amount": amount,
                "amount_paid": document.amount_paid,
                "amount_due": document.amount_due,
                "payment_status": document.payment_status,
            },
        )

    # -------------------------------------------------------------------------
    # Adjustments and cancellation
    # -------------------------------------------------------------------------

    def adjust(
        self,
        actor: ActorContext,
        document_id: UUID,
        amount: Decimal,
        adjustment_type: AdjustmentType,
        adjustment_date: date,
        reason: str | None = None,
    ) -> DocumentInfo:
        """
        Apply a signed adjustment to a document's total.

        Positive amounts (late fees, debit notes) raise the total and the
        amount due; negative ones (discounts, credit notes) lower them.
        """
        amount = require_amount("amount", amount, allow_negative=True)
        self._period_locks.acquire_guard(actor.tenant_id)
        document = self.lock_document(actor.tenant_id, document_id)
        self.adjust_locked(
            document, amount, AdjustmentType(adjustment_type), adjustment_date,
            actor.actor_id, reason,
        )
        return DocumentInfo.from_model(document)

    def adjust_locked(
        self,
        document: LedgerDocument,
        amount: Decimal,
        adjustment_type: AdjustmentType,
        adjustment_date: date,
        actor_id: UUID,
        reason: str | None = None,
        payment_id: UUID | None = None,
    ) -> None:
        if document.is_cancelled:
            raise DocumentCancelledError(str(document.id), "adjust")
        self._period_locks.assert_unlocked(
            document.tenant_id, document.document_date, adjustment_date
        )
        new_total = document.total_amount + amount
        if new_total < document.amount_paid:
            raise ExceedsBalanceError(str(document.id), -amount, document.amount_due)

        document.adjustments.append(
            DocumentAdjustment(
                adjustment_type=adjustment_type,
                amount=amount,
                adjustment_date=adjustment_date,
                reason=reason,
                payment_id=payment_id,
                created_by_id=actor_id,
            )
        )
        document.adjustment_total = document.adjustment_total + amount
        document.set_balances(new_total, document.amount_paid)
        document.updated_by_id = actor_id
        self.session.flush()

        logger.info(
            "document_adjusted",
            extra={
                "document_id": document.id,
                "adjustment_type": adjustment_type.value,
                "amount": amount,
                "total_amount": document.total_amount,
                "amount_due": document.amount_due,
            },
        )

    def cancel(
        self,
        actor: ActorContext,
        document_id: UUID,
        reason: str | None = None,
    ) -> DocumentInfo:
        """Cancel a document that carries no payments."""
        self._period_locks.acquire_guard(actor.tenant_id)
        document = self.lock_document(actor.tenant_id, document_id)
        if document.is_cancelled:
            raise InvalidTransitionError(str(document.id), "cancelled", "cancel")
        if document.amount_paid != 0:
            raise InvalidTransitionError(
                str(document.id),
                document.payment_status.value,
                "cancel (reverse its payments first)",
            )
        if self.allocated_total(document.id) != 0:
            raise InvalidTransitionError(
                str(document.id), "allocated", "cancel (reverse its allocations first)"
            )
        self._period_locks.assert_unlocked(document.tenant_id, document.document_date)

        document.status = DocumentStatus.CANCELLED
        document.cancelled_at = self.clock.now()
        document.cancelled_by_id = actor.actor_id
        document.cancel_reason = reason
        document.updated_by_id = actor.actor_id
        self.session.flush()

        logger.info(
            "document_cancelled",
            extra={
                "document_id": document.id,
                "document_number": document.document_number,
                "reason": reason,
            },
        )
        return DocumentInfo.from_model(document)
