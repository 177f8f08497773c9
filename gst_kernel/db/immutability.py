"""
ORM-Level Immutability Enforcement.

===============================================================================
WHY THIS EXISTS
===============================================================================

Filed GST figures are what the tenant reported to the tax authority, and an
allocation row is the record of money applied to a document.  Services never
rewrite either, but a bug or an ad-hoc script could.  These listeners make
such writes fail at flush time, before SQL reaches the database.

===============================================================================
HOW IT WORKS
===============================================================================

    session.flush()
         |
         v
    [before_update] --> _check_*_immutability() --> ImmutabilityViolationError
         |
         v
    [before_delete] --> _check_*_delete() --------> ImmutabilityViolationError
         |
         v
    SQL sent to database (only if checks pass)

The error aborts the flush; LedgerCore rolls the transaction back.

===============================================================================
PROTECTED ENTITIES
===============================================================================

Entity              | Rule
--------------------|---------------------------------------------------------
GstReturn           | Period, type and figures frozen once not DRAFT;
                    | only DRAFT may be deleted; status only moves forward
GstReturnAmendment  | Never updated or deleted
Allocation          | Amount, payment, document and date never updated
PeriodLock          | Range and origin never updated; never deleted
LedgerDocument      | Not deletable once it carries payments

===============================================================================
USAGE
===============================================================================

    from gst_kernel.db.immutability import register_immutability_listeners
    register_immutability_listeners()  # idempotent; LedgerCore calls it

To temporarily disable (TESTS ONLY):

    unregister_immutability_listeners()
"""

from sqlalchemy import event, func, inspect, select
from sqlalchemy.orm.attributes import get_history

from gst_kernel.exceptions import ImmutabilityViolationError
from gst_kernel.logging_config import get_logger

logger = get_logger("db.immutability")

_AUDIT_FIELDS = frozenset({"updated_at", "updated_by_id"})


def _block(entity_type: str, target, operation: str, reason: str, field: str | None = None):
    logger.error(
        "immutability_violation_blocked",
        extra={
            "entity_type": entity_type,
            "entity_id": str(target.id),
            "operation": operation,
            "field": field,
        },
    )
    raise ImmutabilityViolationError(
        entity_type=entity_type,
        entity_id=str(target.id),
        reason=reason,
    )


def _changed_columns(target) -> list[str]:
    insp = inspect(target)
    return [
        attr.key
        for attr in insp.mapper.column_attrs
        if attr.key not in _AUDIT_FIELDS and insp.attrs[attr.key].history.has_changes()
    ]


# =============================================================================
# GstReturn
# =============================================================================


def _check_gst_return_immutability(mapper, connection, target):
    """
    Block changes to a return that has left DRAFT.

    Allowed status moves after filing: FILED -> APPROVED, FILED -> AMENDED,
    APPROVED -> AMENDED.  The DRAFT -> FILED update itself is allowed; it is
    the one that writes the figures.
    """
    from gst_kernel.domain.enums import ReturnStatus
    from gst_kernel.models.gst_return import FROZEN_RETURN_FIELDS

    status_history = get_history(target, "status")
    if status_history.deleted:
        old_status = ReturnStatus(status_history.deleted[0])
    else:
        old_status = ReturnStatus(target.status)

    if old_status == ReturnStatus.DRAFT:
        return

    if status_history.added:
        new_status = ReturnStatus(status_history.added[0])
        allowed = {
            (ReturnStatus.FILED, ReturnStatus.APPROVED),
            (ReturnStatus.FILED, ReturnStatus.AMENDED),
            (ReturnStatus.APPROVED, ReturnStatus.AMENDED),
        }
        if new_status != old_status and (old_status, new_status) not in allowed:
            _block(
                "GstReturn",
                target,
                "UPDATE",
                f"Cannot move return from {old_status.value} to {new_status.value}",
                field="status",
            )

    for key in _changed_columns(target):
        if key in FROZEN_RETURN_FIELDS:
            _block(
                "GstReturn",
                target,
                "UPDATE",
                f"Cannot modify field '{key}' on {old_status.value} return",
                field=key,
            )


def _check_gst_return_delete(mapper, connection, target):
    from gst_kernel.domain.enums import ReturnStatus

    status_history = get_history(target, "status")
    status = status_history.deleted[0] if status_history.deleted else target.status
    if ReturnStatus(status) != ReturnStatus.DRAFT:
        _block("GstReturn", target, "DELETE", "Only draft returns can be deleted")


def _check_amendment_immutability(mapper, connection, target):
    if _changed_columns(target):
        _block("GstReturnAmendment", target, "UPDATE", "Amendments are append-only")


def _check_amendment_delete(mapper, connection, target):
    _block("GstReturnAmendment", target, "DELETE", "Amendments are append-only")


# =============================================================================
# Allocation
# =============================================================================


def _check_allocation_immutability(mapper, connection, target):
    """Allocations are inserted or reversed (deleted), never edited."""
    changed = _changed_columns(target)
    if changed:
        _block(
            "Allocation",
            target,
            "UPDATE",
            "Allocations cannot be edited; reverse and re-allocate",
            field=changed[0],
        )


# =============================================================================
# PeriodLock
# =============================================================================

_MUTABLE_LOCK_FIELDS = frozenset({
    "is_active",
    "unlocked_at",
    "unlocked_by_id",
    "unlock_reason",
})


def _check_period_lock_immutability(mapper, connection, target):
    for key in _changed_columns(target):
        if key not in _MUTABLE_LOCK_FIELDS:
            _block(
                "PeriodLock",
                target,
                "UPDATE",
                f"Cannot modify field '{key}' on a period lock",
                field=key,
            )


def _check_period_lock_delete(mapper, connection, target):
    _block("PeriodLock", target, "DELETE", "Period locks are released, never deleted")


# =============================================================================
# LedgerDocument
# =============================================================================


def _check_document_delete(mapper, connection, target):
    from gst_kernel.models.payment import Allocation

    allocation_count = connection.execute(
        select(func.count())
        .select_from(Allocation)
        .where(Allocation.document_id == target.id)
    ).scalar_one()
    if allocation_count or target.amount_paid != 0:
        _block(
            "LedgerDocument",
            target,
            "DELETE",
            "Documents that carry payments cannot be deleted",
        )


# =============================================================================
# Registration
# =============================================================================


def _listeners():
    from gst_kernel.models.document import LedgerDocument
    from gst_kernel.models.gst_return import GstReturn, GstReturnAmendment
    from gst_kernel.models.payment import Allocation
    from gst_kernel.models.period_lock import PeriodLock

    return [
        (GstReturn, "before_update", _check_gst_return_immutability),
        (GstReturn, "before_delete", _check_gst_return_delete),
        (GstReturnAmendment, "before_update", _check_amendment_immutability),
        (GstReturnAmendment, "before_delete", _check_amendment_delete),
        (Allocation, "before_update", _check_allocation_immutability),
        (PeriodLock, "before_update", _check_period_lock_immutability),
        (PeriodLock, "before_delete", _check_period_lock_delete),
        (LedgerDocument, "before_delete", _check_document_delete),
    ]


def register_immutability_listeners():
    """
    Register all immutability enforcement event listeners.

    Idempotent: listeners already registered are left alone.
    """
    for target, event_name, listener_fn in _listeners():
        if not event.contains(target, event_name, listener_fn):
            event.listen(target, event_name, listener_fn)


def unregister_immutability_listeners():
    """
    Remove immutability enforcement event listeners.

    WARNING: Only use this in tests where you need to intentionally
    violate immutability rules to verify detection.
    """
    for target, event_name, listener_fn in _listeners():
        if event.contains(target, event_name, listener_fn):
            event.remove(target, event_name, listener_fn)
