"""
BaseService -- abstract base for all kernel services.

Responsibility:
    Provides the common constructor and session-handling contract for
    every service in the kernel layer, plus the shared input checks for
    amounts, currencies and actor roles.  All concrete services receive a
    SQLAlchemy ``Session`` that they use via ``session.flush()`` -- never
    ``session.commit()``.

Architecture position:
    Kernel > Services -- imperative shell infrastructure.

Invariants enforced:
    Transaction boundaries: services flush within the caller's transaction
    and never commit or rollback themselves.  LedgerCore (or the test
    harness) owns commit/rollback, so a multi-step operation either commits
    as a whole or leaves no trace.

Failure modes:
    - LedgerValidationError from the amount and currency checks.
    - NotAuthorizedError from require_period_manager().
"""

from abc import ABC
from decimal import Decimal
from typing import Generic, TypeVar

from sqlalchemy.orm import Session

from gst_kernel.db.base import Base
from gst_kernel.db.types import (
    InvalidCurrencyError,
    has_money_scale,
    to_decimal,
    validate_currency,
)
from gst_kernel.domain.clock import Clock, SystemClock
from gst_kernel.domain.dtos import ActorContext
from gst_kernel.exceptions import LedgerValidationError, NotAuthorizedError

ModelType = TypeVar("ModelType", bound=Base)


class BaseService(ABC, Generic[ModelType]):
    """
    Abstract base class for all kernel services.

    Guarantees:
        - The service never calls ``session.commit()`` or
          ``session.rollback()``.

    Non-goals:
        - Does NOT provide query-only (read) methods -- those belong
          in ``gst_kernel/selectors/``.
    """

    def __init__(self, session: Session, clock: Clock | None = None):
        self.session = session
        self.clock = clock or SystemClock()


def require_amount(
    field: str,
    value: Decimal | str | int,
    *,
    allow_zero: bool = False,
    allow_negative: bool = False,
) -> Decimal:
    """
    Validate a monetary input and return it as Decimal.

    Amounts must be exact at ledger scale: 10.005 is rejected rather than
    silently rounded.
    """
    try:
        amount = to_decimal(value)
    except (TypeError, ValueError) as e:
        raise LedgerValidationError(field, str(e)) from e
    if not amount.is_finite():
        raise LedgerValidationError(field, f"must be a finite amount, got {amount}")
    if not has_money_scale(amount):
        raise LedgerValidationError(field, f"more than 2 decimal places: {amount}")
    if amount < 0 and not allow_negative:
        raise LedgerValidationError(field, f"must not be negative: {amount}")
    if amount == 0 and not allow_zero:
        raise LedgerValidationError(field, "must not be zero")
    return amount


def require_currency(currency: str) -> str:
    try:
        return validate_currency(currency)
    except InvalidCurrencyError as e:
        raise LedgerValidationError("currency", str(e)) from e


def require_period_manager(actor: ActorContext, action: str) -> None:
    """Lock, unlock, file, approve and amend are reserved to owners and admins."""
    if not actor.can_manage_periods:
        raise NotAuthorizedError(
            actor_id=str(actor.actor_id),
            role=str(getattr(actor.role, "value", actor.role)),
            action=action,
        )
