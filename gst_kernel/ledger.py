"""
LedgerCore -- the transactional entry point of the GST ledger kernel.

Responsibility:
    Exposes every ledger operation to the surrounding application.  Each
    call runs in its own transaction on a fresh session: services do the
    work and flush, LedgerCore commits on success and rolls back on any
    failure.

Architecture position:
    Kernel > Facade.  Composes services/ and selectors/; nothing in the
    kernel imports this module.

Invariants enforced:
    - No partial commits.  A rejected or failed call leaves the store
      exactly as it was.
    - Every LedgerError becomes OperationResult(status=REJECTED, error_code)
      instead of propagating.  Programming errors propagate after rollback.
    - Transactions that lose a race (deadlock, serialization failure, lock
      timeout, busy SQLite database) are re-run up to retry_attempts times
      with exponential backoff and full jitter, then rejected with
      CONCURRENCY_CONFLICT.
    - Callers never receive ORM instances, only DTOs.

Usage:
    core = bootstrap(load_config("ledger.yaml"))
    result = core.create_ledger_document(actor, draft)
    if result.is_success:
        print(result.value.document_number)
    else:
        print(result.error_code, result.message)
"""

import random
import time
from dataclasses import dataclass
from datetime import date
from decimal import Decimal
from enum import Enum
from typing import Callable, Generic, TypeVar
from uuid import UUID, uuid4

from sqlalchemy.exc import OperationalError
from sqlalchemy.orm import Session, sessionmaker

from gst_kernel.config import LedgerConfig
from gst_kernel.db.engine import (
    create_tables,
    get_session_factory,
    init_engine_from_url,
    is_retryable_error,
)
from gst_kernel.db.immutability import register_immutability_listeners
from gst_kernel.db.types import ZERO
from gst_kernel.domain.clock import Clock, SystemClock
from gst_kernel.domain.dtos import (
    ActorContext,
    AdjustmentDraft,
    AllocationTarget,
    DocumentDraft,
    PaymentDetails,
)
from gst_kernel.domain.enums import (
    AdjustmentType,
    DocumentKind,
    DocumentType,
    PaymentDirection,
    PeriodType,
    ReturnStatus,
)
from gst_kernel.exceptions import ConcurrencyConflictError, LedgerError
from gst_kernel.logging_config import LogContext, configure_logging, get_logger
from gst_kernel.selectors.gst_selector import GstSelector
from gst_kernel.selectors.ledger_selector import LedgerSelector
from gst_kernel.selectors.period_selector import PeriodSelector
from gst_kernel.services.allocation_service import AllocationService
from gst_kernel.services.document_service import DocumentService
from gst_kernel.services.gst_return_service import GstReturnService
from gst_kernel.services.period_lock_service import PeriodLockService
from gst_kernel.services.sequence_service import SequenceService

logger = get_logger("ledger")

T = TypeVar("T")


class OperationStatus(str, Enum):
    SUCCEEDED = "succeeded"
    REJECTED = "rejected"


@dataclass(frozen=True)
class OperationResult(Generic[T]):
    """
    Outcome of one ledger operation.

    ``error_code`` is the LedgerError code (EXCEEDS_BALANCE, PERIOD_LOCKED,
    ...) of a rejection; ``error`` is the typed exception itself.
    """

    status: OperationStatus
    value: T | None = None
    error_code: str | None = None
    message: str | None = None
    error: LedgerError | None = None
    attempts: int = 1

    @property
    def is_success(self) -> bool:
        return self.status == OperationStatus.SUCCEEDED

    def unwrap(self) -> T:
        """The value of a successful result; re-raises the error otherwise."""
        if self.is_success:
            return self.value
        if self.error is not None:
            raise self.error
        raise LedgerError(self.message or "operation rejected")

    @classmethod
    def succeeded(cls, value: T, attempts: int = 1) -> "OperationResult[T]":
        return cls(status=OperationStatus.SUCCEEDED, value=value, attempts=attempts)

    @classmethod
    def rejected(cls, error: LedgerError, attempts: int = 1) -> "OperationResult[T]":
        return cls(
            status=OperationStatus.REJECTED,
            error_code=error.code,
            message=str(error),
            error=error,
            attempts=attempts,
        )


@dataclass
class _Services:
    """Services and selectors wired onto one session."""

    session: Session
    sequences: SequenceService
    period_locks: PeriodLockService
    documents: DocumentService
    allocations: AllocationService
    returns: GstReturnService
    ledger: LedgerSelector
    periods: PeriodSelector
    gst: GstSelector


class LedgerCore:
    """
    Transactional facade over the ledger services.

    Thread-safe: every call opens its own session from the factory, so one
    LedgerCore may be shared by any number of threads.
    """

    def __init__(
        self,
        session_factory: sessionmaker[Session],
        config: LedgerConfig | None = None,
        clock: Clock | None = None,
        sleep: Callable[[float], None] = time.sleep,
        rng: Callable[[], float] = random.random,
    ):
        self._session_factory = session_factory
        self.config = config or LedgerConfig()
        self.clock = clock or SystemClock()
        self._sleep = sleep
        self._rng = rng
        register_immutability_listeners()

    # -------------------------------------------------------------------------
    # Transaction boundary
    # -------------------------------------------------------------------------

    def _wire(self, session: Session) -> _Services:
        sequences = SequenceService(
            session,
            self.clock,
            invoice_prefix=self.config.invoice_prefix,
            padding=self.config.number_padding,
        )
        period_locks = PeriodLockService(session, self.clock)
        documents = DocumentService(
            session,
            self.clock,
            sequences=sequences,
            period_locks=period_locks,
            default_currency=self.config.default_currency,
        )
        return _Services(
            session=session,
            sequences=sequences,
            period_locks=period_locks,
            documents=documents,
            allocations=AllocationService(
                session,
                self.clock,
                sequences=sequences,
                period_locks=period_locks,
                documents=documents,
                default_currency=self.config.default_currency,
            ),
            returns=GstReturnService(
                session,
                self.clock,
                period_locks=period_locks,
                filing_due_day=self.config.filing_due_day,
            ),
            ledger=LedgerSelector(session),
            periods=PeriodSelector(session),
            gst=GstSelector(session),
        )

    def _backoff(self, attempt: int) -> float:
        ceiling = min(
            self.config.retry_max_delay,
            self.config.retry_base_delay * (2 ** (attempt - 1)),
        )
        return self._rng() * ceiling

    def _run(
        self,
        operation: str,
        actor: ActorContext,
        fn: Callable[[_Services], T],
    ) -> OperationResult[T]:
        """
        Run fn in a transaction, retrying when the database reports a
        lost race.
        """
        max_attempts = self.config.retry_attempts
        with LogContext.bind(
            correlation_id=str(uuid4()),
            tenant_id=actor.tenant_id,
            actor_id=actor.actor_id,
        ):
            for attempt in range(1, max_attempts + 1):
                session = self._session_factory()
                try:
                    value = fn(self._wire(session))
                    session.commit()
                except LedgerError as e:
                    session.rollback()
                    logger.warning(
                        "operation_rejected",
                        extra={
                            "operation": operation,
                            "error_code": e.code,
                            "reason": str(e),
                            "attempt": attempt,
                        },
                    )
                    return OperationResult.rejected(e, attempts=attempt)
                except OperationalError as e:
                    session.rollback()
                    if not is_retryable_error(e):
                        raise
                    if attempt == max_attempts:
                        conflict = ConcurrencyConflictError(
                            operation, attempt, reason=str(e.orig or e)
                        )
                        logger.warning(
                            "operation_rejected",
                            extra={
                                "operation": operation,
                                "error_code": conflict.code,
                                "reason": str(conflict),
                                "attempt": attempt,
                            },
                        )
                        return OperationResult.rejected(conflict, attempts=attempt)
                    delay = self._backoff(attempt)
                    logger.warning(
                        "transaction_retry",
                        extra={
                            "operation": operation,
                            "attempt": attempt,
                            "delay_seconds": round(delay, 4),
                            "reason": str(e.orig or e),
                        },
                    )
                    self._sleep(delay)
                    continue
                except Exception:
                    session.rollback()
                    logger.exception("operation_failed", extra={"operation": operation})
                    raise
                finally:
                    session.close()

                logger.debug(
                    "operation_committed",
                    extra={"operation": operation, "attempt": attempt},
                )
                return OperationResult.succeeded(value, attempts=attempt)

        raise AssertionError("unreachable: retry loop always returns")

    # -------------------------------------------------------------------------
    # Sequence generator
    # -------------------------------------------------------------------------

    def issue_document_number(self, actor: ActorContext, document_type: DocumentType, year: int):
        """Mint the next number.  The value is consumed when this call commits."""
        return self._run(
            "issue_document_number",
            actor,
            lambda s: s.sequences.next_number(actor.tenant_id, document_type, year),
        )

    def preview_document_number(self, actor: ActorContext, document_type: DocumentType, year: int):
        return self._run(
            "preview_document_number",
            actor,
            lambda s: s.sequences.preview_number(actor.tenant_id, document_type, year),
        )

    def current_sequence_value(self, actor: ActorContext, document_type: DocumentType, year: int):
        return self._run(
            "current_sequence_value",
            actor,
            lambda s: s.sequences.current_value(actor.tenant_id, document_type, year),
        )

    def set_numbering_prefix(self, actor: ActorContext, document_type: DocumentType, prefix: str):
        return self._run(
            "set_numbering_prefix",
            actor,
            lambda s: s.sequences.set_prefix(
                actor.tenant_id, actor.actor_id, document_type, prefix
            ),
        )

    # -------------------------------------------------------------------------
    # Ledger documents
    # -------------------------------------------------------------------------

    def create_ledger_document(self, actor: ActorContext, draft: DocumentDraft):
        return self._run(
            "create_ledger_document", actor, lambda s: s.documents.create_document(actor, draft)
        )

    def apply_payment(
        self, actor: ActorContext, document_id: UUID, amount: Decimal, effective_date: date
    ):
        """Direct balance change without a payment record."""
        return self._run(
            "apply_payment",
            actor,
            lambda s: s.documents.apply_payment(actor, document_id, amount, effective_date),
        )

    def reverse_payment(
        self, actor: ActorContext, document_id: UUID, amount: Decimal, effective_date: date
    ):
        return self._run(
            "reverse_payment",
            actor,
            lambda s: s.documents.reverse_payment(actor, document_id, amount, effective_date),
        )

    def adjust_document(
        self,
        actor: ActorContext,
        document_id: UUID,
        amount: Decimal,
        adjustment_type: AdjustmentType,
        adjustment_date: date,
        reason: str | None = None,
    ):
        return self._run(
            "adjust_document",
            actor,
            lambda s: s.documents.adjust(
                actor, document_id, amount, adjustment_type, adjustment_date, reason
            ),
        )

    def cancel_document(self, actor: ActorContext, document_id: UUID, reason: str | None = None):
        return self._run(
            "cancel_document", actor, lambda s: s.documents.cancel(actor, document_id, reason)
        )

    # -------------------------------------------------------------------------
    # Payments, advances, allocations
    # -------------------------------------------------------------------------

    def record_payment(
        self,
        actor: ActorContext,
        document_id: UUID,
        amount: Decimal,
        payment_date: date,
        details: PaymentDetails | None = None,
        adjustment: AdjustmentDraft | None = None,
    ):
        return self._run(
            "record_payment",
            actor,
            lambda s: s.allocations.record_payment(
                actor, document_id, amount, payment_date, details, adjustment
            ),
        )

    def delete_payment(self, actor: ActorContext, payment_id: UUID):
        return self._run(
            "delete_payment", actor, lambda s: s.allocations.delete_payment(actor, payment_id)
        )

    def record_advance(
        self,
        actor: ActorContext,
        direction: PaymentDirection,
        party_id: UUID,
        amount: Decimal,
        payment_date: date,
        currency: str | None = None,
        details: PaymentDetails | None = None,
    ):
        return self._run(
            "record_advance",
            actor,
            lambda s: s.allocations.record_advance(
                actor, direction, party_id, amount, payment_date, currency, details
            ),
        )

    def delete_advance(self, actor: ActorContext, advance_id: UUID):
        return self._run(
            "delete_advance", actor, lambda s: s.allocations.delete_advance(actor, advance_id)
        )

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
    ):
        return self._run(
            "receive_payment",
            actor,
            lambda s: s.allocations.receive_payment(
                actor, direction, party_id, amount, payment_date, targets, currency, details
            ),
        )

    def allocate(
        self,
        actor: ActorContext,
        source_id: UUID,
        targets: list[AllocationTarget] | tuple[AllocationTarget, ...],
        allocation_date: date | None = None,
    ):
        return self._run(
            "allocate",
            actor,
            lambda s: s.allocations.allocate(actor, source_id, targets, allocation_date),
        )

    def reverse_allocation(self, actor: ActorContext, allocation_id: UUID):
        return self._run(
            "reverse_allocation",
            actor,
            lambda s: s.allocations.reverse_allocation(actor, allocation_id),
        )

    # -------------------------------------------------------------------------
    # Period locks
    # -------------------------------------------------------------------------

    def lock_period(
        self,
        actor: ActorContext,
        period_start: date,
        period_end: date,
        reason: str | None = None,
        period_type: PeriodType | None = None,
    ):
        return self._run(
            "lock_period",
            actor,
            lambda s: s.period_locks.lock(actor, period_start, period_end, reason, period_type),
        )

    def unlock_period(self, actor: ActorContext, lock_id: UUID, reason: str | None = None):
        return self._run(
            "unlock_period", actor, lambda s: s.period_locks.unlock(actor, lock_id, reason)
        )

    def is_period_locked(self, actor: ActorContext, check_date: date):
        return self._run(
            "is_period_locked",
            actor,
            lambda s: s.period_locks.is_locked(actor.tenant_id, check_date),
        )

    # -------------------------------------------------------------------------
    # GST returns
    # -------------------------------------------------------------------------

    def summarise_period(self, actor: ActorContext, period_start: date, period_end: date):
        """GST figures for a range without creating a return."""
        return self._run(
            "summarise_period",
            actor,
            lambda s: s.returns.summarise(actor.tenant_id, period_start, period_end),
        )

    def prepare_gst_return(
        self,
        actor: ActorContext,
        period_start: date,
        period_end: date,
        return_type: PeriodType,
    ):
        return self._run(
            "prepare_gst_return",
            actor,
            lambda s: s.returns.prepare(actor, period_start, period_end, return_type),
        )

    def file_gst_return(
        self,
        actor: ActorContext,
        return_id: UUID,
        filing_date: date | None = None,
        adjustments: Decimal = ZERO,
        previous_period_balance: Decimal = ZERO,
        penalties: Decimal = ZERO,
        interest: Decimal = ZERO,
    ):
        return self._run(
            "file_gst_return",
            actor,
            lambda s: s.returns.file(
                actor,
                return_id,
                filing_date=filing_date,
                adjustments=adjustments,
                previous_period_balance=previous_period_balance,
                penalties=penalties,
                interest=interest,
            ),
        )

    def approve_gst_return(self, actor: ActorContext, return_id: UUID):
        return self._run(
            "approve_gst_return", actor, lambda s: s.returns.approve(actor, return_id)
        )

    def amend_gst_return(
        self, actor: ActorContext, return_id: UUID, adjustments: Decimal, reason: str
    ):
        return self._run(
            "amend_gst_return",
            actor,
            lambda s: s.returns.amend(actor, return_id, adjustments, reason),
        )

    def delete_gst_return(self, actor: ActorContext, return_id: UUID):
        return self._run(
            "delete_gst_return", actor, lambda s: s.returns.delete(actor, return_id)
        )

    # -------------------------------------------------------------------------
    # Listings
    # -------------------------------------------------------------------------

    def get_document(self, actor: ActorContext, document_id: UUID):
        return self._run(
            "get_document", actor, lambda s: s.ledger.get_document(actor.tenant_id, document_id)
        )

    def list_documents(
        self,
        actor: ActorContext,
        kind: DocumentKind | None = None,
        start: date | None = None,
        end: date | None = None,
    ):
        return self._run(
            "list_documents",
            actor,
            lambda s: s.ledger.list_documents(actor.tenant_id, kind, start, end),
        )

    def outstanding_documents(
        self, actor: ActorContext, party_id: UUID, kind: DocumentKind | None = None
    ):
        return self._run(
            "outstanding_documents",
            actor,
            lambda s: s.ledger.outstanding_documents(actor.tenant_id, party_id, kind),
        )

    def get_payment(self, actor: ActorContext, payment_id: UUID):
        return self._run(
            "get_payment", actor, lambda s: s.ledger.get_payment(actor.tenant_id, payment_id)
        )

    def list_payments(
        self, actor: ActorContext, party_id: UUID | None = None, with_unallocated: bool = False
    ):
        return self._run(
            "list_payments",
            actor,
            lambda s: s.ledger.list_payments(actor.tenant_id, party_id, with_unallocated),
        )

    def allocations_for_source(self, actor: ActorContext, source_id: UUID):
        return self._run(
            "allocations_for_source",
            actor,
            lambda s: s.ledger.allocations_for_source(actor.tenant_id, source_id),
        )

    def allocations_for_document(self, actor: ActorContext, document_id: UUID):
        return self._run(
            "allocations_for_document",
            actor,
            lambda s: s.ledger.allocations_for_document(actor.tenant_id, document_id),
        )

    def get_period_lock(self, actor: ActorContext, lock_id: UUID):
        return self._run(
            "get_period_lock", actor, lambda s: s.periods.get_lock(actor.tenant_id, lock_id)
        )

    def list_period_locks(self, actor: ActorContext, active_only: bool = False):
        return self._run(
            "list_period_locks",
            actor,
            lambda s: s.periods.list_locks(actor.tenant_id, active_only),
        )

    def get_gst_return(self, actor: ActorContext, return_id: UUID):
        return self._run(
            "get_gst_return", actor, lambda s: s.gst.get_return(actor.tenant_id, return_id)
        )

    def list_gst_returns(self, actor: ActorContext, status: ReturnStatus | None = None):
        return self._run(
            "list_gst_returns", actor, lambda s: s.gst.list_returns(actor.tenant_id, status)
        )


def bootstrap(config: LedgerConfig | None = None, clock: Clock | None = None) -> LedgerCore:
    """
    Configure logging, open the engine, create missing tables and return
    a ready LedgerCore.
    """
    config = config or LedgerConfig()
    configure_logging(level=config.log_level.upper())
    init_engine_from_url(
        config.database_url,
        echo=config.echo,
        pool_size=config.pool_size,
        max_overflow=config.max_overflow,
        pool_timeout=config.pool_timeout,
        lock_timeout_ms=config.lock_timeout_ms,
    )
    create_tables()
    return LedgerCore(get_session_factory(), config=config, clock=clock)


__all__ = [
    "LedgerCore",
    "OperationResult",
    "OperationStatus",
    "bootstrap",
]
