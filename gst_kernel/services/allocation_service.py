"""
AllocationService -- payments, advances, and their allocation to documents.

Responsibility:
    Records advances (unallocated money from a customer or to a supplier),
    direct payments against one document, and multi-document receipts, and
    applies them to outstanding documents.  Reverses single allocations and
    whole payments.

Architecture position:
    Kernel > Services -- imperative shell.
    Uses DocumentService's locked balance primitives, SequenceService for
    ADV-C / ADV-S / RCP numbers, PeriodLockService for the lock gate.

Invariants enforced:
    - allocated_amount == sum(allocations) and unallocated_amount ==
      source_amount - allocated_amount >= 0 for every source.
    - Each allocation inserts its row and applies the same amount to the
      document in one transaction; a failed target rolls back the batch.
    - Targets are chosen by the caller; the engine never reorders or
      auto-distributes.
    - Lock order: lock guard, sequence counter, source row, documents in
      ascending id order.  Concurrent allocations against the same document
      serialize on its row lock.

Failure modes:
    - ExceedsUnallocatedError: targets sum to more than the source holds.
    - ExceedsBalanceError: a target amount exceeds its document's amount due.
    - PeriodLockedError: a document date, the allocation date or the
      payment date is inside an active lock.
    - LedgerValidationError: duplicate targets, wrong document kind for the
      source direction, party or currency mismatch, an allocation date
      before the payment date.
    - PaymentNotFoundError, AllocationNotFoundError, DocumentNotFoundError.
    - InvalidTransitionError: deleting an advance that is allocated, or
      deleting an advance through delete_payment.
"""

from datetime import date
from decimal import Decimal
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.orm import Session

from gst_kernel.db.types import ZERO
from gst_kernel.domain.clock import Clock
from gst_kernel.domain.dtos import (
    ActorContext,
    AdjustmentDraft,
    AllocationInfo,
    AllocationTarget,
    DocumentInfo,
    PaymentDetails,
    PaymentInfo,
    PaymentSnapshot,
)
from gst_kernel.domain.enums import (
    AdjustmentType,
    DocumentType,
    PaymentDirection,
    SourceType,
)
from gst_kernel.exceptions import (
    AllocationNotFoundError,
    DocumentCancelledError,
    ExceedsBalanceError,
    ExceedsUnallocatedError,
    InvalidTransitionError,
    LedgerValidationError,
    PaymentNotFoundError,
)
from gst_kernel.logging_config import get_logger
from gst_kernel.models.document import DocumentAdjustment, LedgerDocument
from gst_kernel.models.payment import Allocation, Payment
from gst_kernel.services.base import BaseService, require_amount, require_currency
from gst_kernel.services.document_service import DocumentService
from gst_kernel.services.period_lock_service import PeriodLockService
from gst_kernel.services.sequence_service import SequenceService

logger = get_logger("services.allocation")


class AllocationService(BaseService[Payment]):
    """
    Allocation engine.

    Contract:
        Every public method runs inside the caller's transaction and
        returns DTOs.  On any raised error the caller rolls back, so a
        rejected call leaves no allocation, balance or number behind.
    """

    def __init__(
        self,
        session: Session,
        clock: Clock | None = None,
        sequences: SequenceService | None = None,
        period_locks: PeriodLockService | None = None,
        documents: DocumentService | None = None,
        default_currency: str = "BTN",
    ):
        super().__init__(session, clock)
        self._sequences = sequences or SequenceService(session, self.clock)
        self._period_locks = period_locks or PeriodLockService(session, self.clock)
        self._documents = documents or DocumentService(
            session,
            self.clock,
            sequences=self._sequences,
            period_locks=self._period_locks,
            default_currency=default_currency,
        )
        self._default_currency = default_currency

    # -------------------------------------------------------------------------
    # Loading
    # -------------------------------------------------------------------------

    def lock_source(self, tenant_id: UUID, source_id: UUID) -> Payment:
        payment = self.session.execute(
            select(Payment)
            .where(Payment.id == source_id)
            .with_for_update()
            .execution_options(populate_existing=True)
        ).scalar_one_or_none()
        if payment is None or payment.tenant_id != tenant_id:
            raise PaymentNotFoundError(str(source_id))
        return payment

    def _lock_documents(self, tenant_id: UUID, document_ids) -> dict[UUID, LedgerDocument]:
        """Row-lock documents in ascending id order so concurrent batches never deadlock."""
        return {
            document_id: self._documents.lock_document(tenant_id, document_id)
            for document_id in sorted(set(document_ids), key=str)
        }

    # -------------------------------------------------------------------------
    # Sources
    # -------------------------------------------------------------------------

    def record_advance(
        self,
        actor: ActorContext,
        direction: PaymentDirection,
        party_id: UUID,
        amount: Decimal,
        payment_date: date,
        currency: str | None = None,
        details: PaymentDetails | None = None,
    ) -> PaymentInfo:
        """Record money received (customer) or paid (supplier) ahead of any document."""
        direction = PaymentDirection(direction)
        amount = require_amount("amount", amount)
        currency = require_currency(currency or self._default_currency)

        self._period_locks.assert_unlocked(actor.tenant_id, payment_date)
        issued = self._sequences.next_number(
            actor.tenant_id, direction.advance_document_type, payment_date.year
        )
        payment = self._insert_source(
            actor, direction, SourceType.ADVANCE, party_id, amount, payment_date,
            currency, details, issued.formatted_number,
        )

        logger.info(
            "advance_recorded",
            extra={
                "payment_id": payment.id,
                "payment_number": payment.payment_number,
                "direction": direction.value,
                "amount": amount,
            },
        )
        return PaymentInfo.from_model(payment)

    def receive_payment(
        self,
        actor: ActorContext,
        direction: PaymentDirection,
        party_id: UUID,
        amount: Decimal,
        payment_date: date,
        targets: list[AllocationTarget] | tuple[AllocationTarget, ...] = (),
        currency: str | None = None,
        details: PaymentDetails | None = None,
    ) -> PaymentSnapshot:
        """
        Record one payment and allocate it across several documents.

        Whatever the targets leave over stays on the payment as its
        unallocated amount for later allocate() calls.
        """
        direction = PaymentDirection(direction)
        amount = require_amount("amount", amount)
        currency = require_currency(currency or self._default_currency)
        targets = self._validate_targets(targets, allow_empty=True)

        self._period_locks.assert_unlocked(actor.tenant_id, payment_date)
        number = None
        if direction is PaymentDirection.CUSTOMER:
            number = self._sequences.next_number(
                actor.tenant_id, DocumentType.CUSTOMER_RECEIPT, payment_date.year
            ).formatted_number

        payment = self._insert_source(
            actor, direction, SourceType.PAYMENT, party_id, amount, payment_date,
            currency, details, number,
        )
        logger.info(
            "payment_received",
            extra={
                "payment_id": payment.id,
                "payment_number": number,
                "direction": direction.value,
                "amount": amount,
                "target_count": len(targets),
            },
        )

        allocations, documents = self._allocate_locked(actor, payment, targets, payment_date)
        return PaymentSnapshot(
            payment=PaymentInfo.from_model(payment),
            allocations=allocations,
            documents=documents,
        )

    def record_payment(
        self,
        actor: ActorContext,
        document_id: UUID,
        amount: Decimal,
        payment_date: date,
        details: PaymentDetails | None = None,
        adjustment: AdjustmentDraft | None = None,
    ) -> PaymentSnapshot:
        """
        Record a payment against a single document.

        An optional signed adjustment (early-payment discount, late fee) is
        applied to the document total first, in the same balance update;
        the payment amount must then fit the adjusted amount due.
        """
        amount = require_amount("amount", amount)
        adjustment_amount = ZERO
        if adjustment is not None:
            adjustment_amount = require_amount(
                "adjustment.amount", adjustment.amount, allow_zero=True, allow_negative=True
            )

        # kind, party and currency never change after issuance
        document = self._documents.get_document(actor.tenant_id, document_id)
        if document.is_cancelled:
            raise DocumentCancelledError(str(document.id), "record a payment on")
        direction = document.kind.payment_direction

        self._period_locks.assert_unlocked(
            actor.tenant_id, document.document_date, payment_date
        )
        number = None
        if direction is PaymentDirection.CUSTOMER:
            number = self._sequences.next_number(
                actor.tenant_id, DocumentType.CUSTOMER_RECEIPT, payment_date.year
            ).formatted_number

        document = self._documents.lock_document(actor.tenant_id, document_id)
        payment = self._insert_source(
            actor, direction, SourceType.PAYMENT, document.party_id, amount,
            payment_date, document.currency, details, number,
        )
        if adjustment_amount != 0:
            self._documents.adjust_locked(
                document,
                adjustment_amount,
                AdjustmentType(adjustment.adjustment_type),
                payment_date,
                actor.actor_id,
                reason=adjustment.reason,
                payment_id=payment.id,
            )

        allocations, documents = self._allocate_locked(
            actor,
            payment,
            (AllocationTarget(document_id=document.id, amount=amount),),
            payment_date,
        )
        logger.info(
            "payment_recorded",
            extra={
                "payment_id": payment.id,
                "document_id": document.id,
                "amount": amount,
                "adjustment": adjustment_amount,
            },
        )
        return PaymentSnapshot(
            payment=PaymentInfo.from_model(payment),
            allocations=allocations,
            documents=documents,
        )

    def _insert_source(
        self,
        actor: ActorContext,
        direction: PaymentDirection,
        source_type: SourceType,
        party_id: UUID,
        amount: Decimal,
        payment_date: date,
        currency: str,
        details: PaymentDetails | None,
        payment_number: str | None,
    ) -> Payment:
        details = details or PaymentDetails()
        payment = Payment(
            tenant_id=actor.tenant_id,
            direction=direction,
            source_type=source_type,
            party_id=party_id,
            payment_number=payment_number,
            source_amount=amount,
            allocated_amount=ZERO,
            unallocated_amount=amount,
            currency=currency,
            payment_date=payment_date,
            method=details.method,
            reference=details.reference,
            notes=details.notes,
            created_by_id=actor.actor_id,
        )
        self.session.add(payment)
        self.session.flush()
        return payment

    # -------------------------------------------------------------------------
    # Allocation
    # -------------------------------------------------------------------------

    def allocate(
        self,
        actor: ActorContext,
        source_id: UUID,
        targets: list[AllocationTarget] | tuple[AllocationTarget, ...],
        allocation_date: date | None = None,
    ) -> tuple[AllocationInfo, ...]:
        """
        Apply part of a source's unallocated amount to the given documents.

        allocation_date defaults to the source's payment date and may not
        precede it.
        """
        targets = self._validate_targets(targets)
        self._period_locks.acquire_guard(actor.tenant_id)
        payment = self.lock_source(actor.tenant_id, source_id)
        if allocation_date is not None and allocation_date < payment.payment_date:
            raise LedgerValidationError(
                "allocation_date",
                f"{allocation_date} is before the payment date {payment.payment_date}",
            )
        allocations, _ = self._allocate_locked(
            actor, payment, targets, allocation_date or payment.payment_date
        )
        return allocations

    def _validate_targets(self, targets, allow_empty: bool = False) -> tuple[AllocationTarget, ...]:
        targets = tuple(targets)
        if not targets and not allow_empty:
            raise LedgerValidationError("targets", "at least one target is required")
        seen = set()
        validated = []
        for index, target in enumerate(targets):
            if target.document_id in seen:
                raise LedgerValidationError(
                    "targets", f"document {target.document_id} appears more than once"
                )
            seen.add(target.document_id)
            validated.append(
                AllocationTarget(
                    document_id=target.document_id,
                    amount=require_amount(f"targets[{index}].amount", target.amount),
                )
            )
        return tuple(validated)

    def _allocate_locked(
        self,
        actor: ActorContext,
        payment: Payment,
        targets: tuple[AllocationTarget, ...],
        allocation_date: date,
    ) -> tuple[tuple[AllocationInfo, ...], tuple[DocumentInfo, ...]]:
        """
        Allocate from a locked source.  Every target is checked before the
        first balance moves.
        """
        if not targets:
            return (), ()

        requested = sum((t.amount for t in targets), ZERO)
        if requested > payment.unallocated_amount:
            logger.warning(
                "allocation_exceeds_unallocated",
                extra={
                    "payment_id": payment.id,
                    "requested": requested,
                    "unallocated": payment.unallocated_amount,
                },
            )
            raise ExceedsUnallocatedError(
                str(payment.id), requested, payment.unallocated_amount
            )

        self._period_locks.assert_unlocked(
            payment.tenant_id, payment.payment_date, allocation_date
        )
        documents = self._lock_documents(payment.tenant_id, [t.document_id for t in targets])

        expected_kind = PaymentDirection(payment.direction).document_kind
        for target in targets:
            document = documents[target.document_id]
            if document.is_cancelled:
                raise DocumentCancelledError(str(document.id), "allocate to")
            if document.kind != expected_kind:
                raise LedgerValidationError(
                    "targets",
                    f"{payment.direction.value} money cannot settle "
                    f"{document.kind.value} {document.document_number}",
                )
            if document.party_id != payment.party_id:
                raise LedgerValidationError(
                    "targets",
                    f"{document.document_number} belongs to a different party",
                )
            if document.currency != payment.currency:
                raise LedgerValidationError(
                    "currency",
                    f"{document.document_number} is in {document.currency}, "
                    f"source is in {payment.currency}",
                )
            if target.amount > document.amount_due:
                raise ExceedsBalanceError(str(document.id), target.amount, document.amount_due)
            self._period_locks.assert_unlocked(payment.tenant_id, document.document_date)

        created = []
        for target in targets:
            document = documents[target.document_id]
            allocation = Allocation(
                payment_id=payment.id,
                document_id=document.id,
                amount=target.amount,
                allocation_date=allocation_date,
                created_by_id=actor.actor_id,
            )
            self.session.add(allocation)
            self._documents.apply_payment_locked(
                document, target.amount, allocation_date, actor.actor_id
            )
            created.append(allocation)

        payment.set_allocated(payment.allocated_amount + requested)
        payment.updated_by_id = actor.actor_id
        self.session.flush()

        logger.info(
            "allocation_applied",
            extra={
                "payment_id": payment.id,
                "allocation_count": len(created),
                "allocated": requested,
                "unallocated": payment.unallocated_amount,
            },
        )
        return (
            tuple(AllocationInfo.from_model(a) for a in created),
            tuple(DocumentInfo.from_model(documents[t.document_id]) for t in targets),
        )

    # -------------------------------------------------------------------------
    # Reversal
    # -------------------------------------------------------------------------

    def reverse_allocation(self, actor: ActorContext, allocation_id: UUID) -> PaymentSnapshot:
        """
        Undo one allocation: the document's amount paid and the source's
        allocated amount both drop by the allocation amount.
        """
        found = self.session.get(Allocation, allocation_id)
        if found is None:
            raise AllocationNotFoundError(str(allocation_id))
        payment_id = found.payment_id

        self._period_locks.acquire_guard(actor.tenant_id)
        try:
            payment = self.lock_source(actor.tenant_id, payment_id)
        except PaymentNotFoundError as e:
            raise AllocationNotFoundError(str(allocation_id)) from e

        allocation = self.session.execute(
            select(Allocation)
            .where(Allocation.id == allocation_id)
            .execution_options(populate_existing=True)
        ).scalar_one_or_none()
        if allocation is None:
            raise AllocationNotFoundError(str(allocation_id))

        info = AllocationInfo.from_model(allocation)
        self._period_locks.assert_unlocked(actor.tenant_id, payment.payment_date)
        document = self._documents.lock_document(actor.tenant_id, allocation.document_id)
        self._reverse_locked(actor, payment, allocation, document)
        self.session.flush()

        return PaymentSnapshot(
            payment=PaymentInfo.from_model(payment),
            allocations=(info,),
            documents=(DocumentInfo.from_model(document),),
        )

    def _reverse_locked(
        self,
        actor: ActorContext,
        payment: Payment,
        allocation: Allocation,
        document: LedgerDocument,
    ) -> None:
        self._documents.reverse_payment_locked(
            document, allocation.amount, allocation.allocation_date, actor.actor_id
        )
        payment.set_allocated(payment.allocated_amount - allocation.amount)
        payment.updated_by_id = actor.actor_id
        if allocation in payment.allocations:
            payment.allocations.remove(allocation)
        else:
            self.session.delete(allocation)

        logger.info(
            "allocation_reversed",
            extra={
                "allocation_id": allocation.id,
                "payment_id": payment.id,
                "document_id": document.id,
                "amount": allocation.amount,
            },
        )

    def delete_payment(self, actor: ActorContext, payment_id: UUID) -> tuple[DocumentInfo, ...]:
        """
        Delete a payment, reversing every allocation it made and any
        adjustment recorded with it.

        Returns the documents it had settled, with their restored balances.
        """
        self._period_locks.acquire_guard(actor.tenant_id)
        payment = self.lock_source(actor.tenant_id, payment_id)
        if payment.source_type != SourceType.PAYMENT:
            raise InvalidTransitionError(
                str(payment.id), payment.source_type.value, "delete as a payment"
            )
        self._period_locks.assert_unlocked(actor.tenant_id, payment.payment_date)

        allocations = list(payment.allocations)
        # an allocation reversed earlier no longer leads to its document,
        # so adjustments are found by payment id
        adjustments = self.session.scalars(
            select(DocumentAdjustment)
            .where(DocumentAdjustment.payment_id == payment.id)
            .order_by(DocumentAdjustment.created_at)
        ).all()
        documents = self._lock_documents(
            actor.tenant_id,
            [a.document_id for a in allocations] + [a.document_id for a in adjustments],
        )
        for allocation in sorted(allocations, key=lambda a: str(a.document_id)):
            self._reverse_locked(actor, payment, allocation, documents[allocation.document_id])

        for adjustment in adjustments:
            self._documents.adjust_locked(
                documents[adjustment.document_id],
                -adjustment.amount,
                AdjustmentType(adjustment.adjustment_type),
                payment.payment_date,
                actor.actor_id,
                reason=f"Reversed with payment {payment.payment_number or payment.id}",
            )

        self.session.delete(payment)
        self.session.flush()

        logger.info(
            "payment_deleted",
            extra={
                "payment_id": payment.id,
                "payment_number": payment.payment_number,
                "amount": payment.source_amount,
                "document_count": len(documents),
            },
        )
        return tuple(DocumentInfo.from_model(d) for d in documents.values())

    def delete_advance(self, actor: ActorContext, advance_id: UUID) -> PaymentInfo:
        """Delete an advance that has not been allocated to anything."""
        self._period_locks.acquire_guard(actor.tenant_id)
        payment = self.lock_source(actor.tenant_id, advance_id)
        if payment.source_type != SourceType.ADVANCE:
            raise InvalidTransitionError(
                str(payment.id), payment.source_type.value, "delete as an advance"
            )
        if payment.allocated_amount != 0 or payment.allocations:
            raise InvalidTransitionError(
                str(payment.id), "allocated", "delete (reverse its allocations first)"
            )
        self._period_locks.assert_unlocked(actor.tenant_id, payment.payment_date)

        info = PaymentInfo.from_model(payment)
        self.session.delete(payment)
        self.session.flush()

        logger.info(
            "advance_deleted",
            extra={"payment_id": payment.id, "payment_number": payment.payment_number},
        )
        return info
