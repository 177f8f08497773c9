"""
Typed Exception Hierarchy for the GST Ledger Kernel.

===============================================================================
WHY TYPED EXCEPTIONS
===============================================================================

Callers of the ledger core must be able to tell a rejected allocation from a
locked period without reading message text.  Every error therefore has:
  1. A TYPED exception class (catch by type, not message)
  2. A CODE class attribute (machine-readable, API-safe)
  3. Structured DATA attributes (ids, amounts, dates)

Example - WRONG way to handle errors:
    try:
        allocations.allocate(source_id, targets)
    except Exception as e:
        if "locked" in str(e):
            ...

Example - RIGHT way:
    try:
        allocations.allocate(source_id, targets)
    except PeriodLockedError as e:
        respond(code=e.code, date=e.effective_date, lock=e.lock_id)

===============================================================================
EXCEPTION HIERARCHY
===============================================================================

    LedgerError (base)
    |
    +-- BalanceError
    |   +-- ExceedsBalanceError
    |   +-- ExceedsUnallocatedError
    |
    +-- PeriodLockError
    |   +-- PeriodLockedError
    |   +-- OverlappingLockError
    |
    +-- NotFoundError
    |   +-- DocumentNotFoundError
    |   +-- PaymentNotFoundError
    |   +-- AllocationNotFoundError
    |   +-- GstReturnNotFoundError
    |   +-- PeriodLockNotFoundError
    |
    +-- InvalidTransitionError
    |   +-- DocumentCancelledError
    |   +-- ReturnNotDraftError
    |
    +-- ConcurrencyConflictError
    +-- LedgerValidationError
    +-- NotAuthorizedError
    +-- ImmutabilityViolationError

===============================================================================
ERROR CODES - QUICK REFERENCE
===============================================================================

Code                  | When Raised
----------------------|-------------------------------------------------------
EXCEEDS_BALANCE       | Payment/allocation would overdraw a document or source
PERIOD_LOCKED         | Mutation date falls inside an active period lock
OVERLAPPING_LOCK      | New lock collides with an active lock
NOT_FOUND             | Referenced document/payment/return/lock is missing
INVALID_TRANSITION    | Filing a non-draft return, cancelling a paid document
CONCURRENCY_CONFLICT  | Transaction could not be serialized within the budget
VALIDATION_FAILED     | Non-positive amount, currency mismatch, bad range
NOT_AUTHORIZED        | Actor role may not lock, unlock, file or amend
IMMUTABILITY_VIOLATION| ORM-level attempt to rewrite frozen records

===============================================================================
HANDLING PATTERNS
===============================================================================

Services raise these exceptions.  LedgerCore catches LedgerError at the
transaction boundary, rolls back, and returns a rejected OperationResult
carrying ``error.code``.  ConcurrencyConflictError is the only kind the core
retries on its own.
"""

from datetime import date
from decimal import Decimal


class LedgerError(Exception):
    """
    Base exception for all ledger kernel errors.

    All subclasses must have a `code` class attribute for machine-readable
    error identification.
    """

    code: str = "LEDGER_ERROR"


# Balance exceptions


class BalanceError(LedgerError):
    """Base exception for balance invariant violations."""

    code: str = "EXCEEDS_BALANCE"


class ExceedsBalanceError(BalanceError):
    """
    Amount would overdraw a document.

    ``available`` is the amount due for a payment or adjustment, and the
    amount paid for a reversal.
    """

    code: str = "EXCEEDS_BALANCE"

    def __init__(self, document_id: str, amount: Decimal, available: Decimal):
        self.document_id = document_id
        self.amount = amount
        self.available = available
        super().__init__(
            f"Amount {amount} exceeds available balance {available} "
            f"on document {document_id}"
        )


class ExceedsUnallocatedError(BalanceError):
    """Allocation total exceeds the source's unallocated amount."""

    code: str = "EXCEEDS_BALANCE"

    def __init__(self, source_id: str, amount: Decimal, unallocated: Decimal):
        self.source_id = source_id
        self.amount = amount
        self.unallocated = unallocated
        super().__init__(
            f"Allocation total {amount} exceeds unallocated amount "
            f"{unallocated} of source {source_id}"
        )


# Period lock exceptions


class PeriodLockError(LedgerError):
    """Base exception for period lock errors."""

    code: str = "PERIOD_LOCK_ERROR"


class PeriodLockedError(PeriodLockError):
    """A mutation's date falls inside an active period lock."""

    code: str = "PERIOD_LOCKED"

    def __init__(
        self,
        effective_date: date,
        lock_id: str,
        period_start: date,
        period_end: date,
    ):
        self.effective_date = effective_date
        self.lock_id = lock_id
        self.period_start = period_start
        self.period_end = period_end
        super().__init__(
            f"Date {effective_date} falls in locked period "
            f"{period_start}..{period_end}"
        )


class OverlappingLockError(PeriodLockError):
    """Requested lock overlaps an active lock for the same tenant."""

    code: str = "OVERLAPPING_LOCK"

    def __init__(
        self,
        period_start: date,
        period_end: date,
        existing_lock_id: str,
        existing_start: date,
        existing_end: date,
    ):
        self.period_start = period_start
        self.period_end = period_end
        self.existing_lock_id = existing_lock_id
        self.existing_start = existing_start
        self.existing_end = existing_end
        super().__init__(
            f"Lock {period_start}..{period_end} overlaps active lock "
            f"{existing_start}..{existing_end}"
        )


# Not-found exceptions


class NotFoundError(LedgerError):
    """Base exception for missing records."""

    code: str = "NOT_FOUND"
    entity: str = "Record"

    def __init__(self, entity_id: str):
        self.entity_id = entity_id
        super().__init__(f"{self.entity} not found: {entity_id}")


class DocumentNotFoundError(NotFoundError):
    entity = "Document"


class PaymentNotFoundError(NotFoundError):
    entity = "Payment"


class AllocationNotFoundError(NotFoundError):
    entity = "Allocation"


class GstReturnNotFoundError(NotFoundError):
    entity = "GST return"


class PeriodLockNotFoundError(NotFoundError):
    entity = "Period lock"


# Lifecycle exceptions


class InvalidTransitionError(LedgerError):
    """A lifecycle transition is not permitted from the current state."""

    code: str = "INVALID_TRANSITION"

    def __init__(self, entity_id: str, current_status: str, action: str):
        self.entity_id = entity_id
        self.current_status = current_status
        self.action = action
        super().__init__(
            f"Cannot {action} {entity_id} in status '{current_status}'"
        )


class DocumentCancelledError(InvalidTransitionError):
    """Document is cancelled and accepts no further mutation."""

    def __init__(self, entity_id: str, action: str):
        super().__init__(entity_id, "cancelled", action)


class ReturnNotDraftError(InvalidTransitionError):
    """GST return operation requires status draft."""


# Concurrency


class ConcurrencyConflictError(LedgerError):
    """Transaction could not be serialized within the retry budget."""

    code: str = "CONCURRENCY_CONFLICT"

    def __init__(self, operation: str, attempts: int, reason: str = ""):
        self.operation = operation
        self.attempts = attempts
        self.reason = reason
        super().__init__(
            f"{operation} failed after {attempts} attempt(s)"
            + (f": {reason}" if reason else "")
        )


# Input validation


class LedgerValidationError(LedgerError):
    """Input rejected before touching the ledger."""

    code: str = "VALIDATION_FAILED"

    def __init__(self, field: str, reason: str):
        self.field = field
        self.reason = reason
        super().__init__(f"Invalid {field}: {reason}")


# Authorization


class NotAuthorizedError(LedgerError):
    """Actor's role does not permit the requested action."""

    code: str = "NOT_AUTHORIZED"

    def __init__(self, actor_id: str, role: str, action: str):
        self.actor_id = actor_id
        self.role = role
        self.action = action
        super().__init__(f"Actor {actor_id} with role '{role}' may not {action}")


# Immutability


class ImmutabilityViolationError(LedgerError):
    """Attempt to modify or delete a frozen ledger record."""

    code: str = "IMMUTABILITY_VIOLATION"

    def __init__(self, entity_type: str, entity_id: str, reason: str):
        self.entity_type = entity_type
        self.entity_id = entity_id
        self.reason = reason
        super().__init__(f"Cannot modify {entity_type} {entity_id}: {reason}")
