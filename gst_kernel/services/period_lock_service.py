"""
PeriodLockService -- period locks and the lock gate for ledger mutations.

Responsibility:
    Creates and releases period locks, and answers "is this date locked?"
    for every document-mutating operation inside that operation's own
    transaction.

Architecture position:
    Kernel > Services -- imperative shell.
    Called by DocumentService and AllocationService before every balance
    mutation, and by GstReturnService when a return is filed.

Invariants enforced:
    - No two active locks of a tenant overlap.  lock() checks this while
      holding the tenant's guard row FOR UPDATE, so two concurrent lock()
      calls cannot both pass the check.
    - Check-then-write safety: assert_unlocked() holds the guard row FOR
      SHARE until the mutating transaction ends.  A concurrent lock() must
      wait for that transaction, and every mutation that starts after the
      lock commits sees it.
    - Locks are released (is_active=False), never deleted.
    - Flush-only: never commits or rolls back the session.

Failure modes:
    - PeriodLockedError: a mutation date falls inside an active lock.
    - OverlappingLockError: new lock collides with an active lock.
    - PeriodLockNotFoundError: unlock of an unknown lock.
    - InvalidTransitionError: unlock of a lock already released.
    - NotAuthorizedError: actor is not owner/admin.
    - LedgerValidationError: period_start after period_end.

Audit relevance:
    Lock and unlock are logged at INFO with range, reason and actor.  An
    unlock does not revalidate documents created while unlocked; that is
    the caller's compliance decision.
"""

from datetime import date
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError

from gst_kernel.domain.dtos import ActorContext, PeriodLockInfo
from gst_kernel.domain.enums import PeriodType
from gst_kernel.domain.periods import infer_period_type
from gst_kernel.exceptions import (
    InvalidTransitionError,
    LedgerValidationError,
    OverlappingLockError,
    PeriodLockedError,
    PeriodLockNotFoundError,
)
from gst_kernel.logging_config import get_logger
from gst_kernel.models.period_lock import PeriodLock, PeriodLockGuard
from gst_kernel.services.base import BaseService, require_period_manager

logger = get_logger("services.period_lock")

GST_FILED_REASON = "GST return filed"


class PeriodLockService(BaseService[PeriodLock]):
    """
    Period lock manager.

    State machine per (tenant, range): Unlocked -> Locked -> Unlocked, and
    re-lockable after release.
    """

    # -------------------------------------------------------------------------
    # Guard row
    # -------------------------------------------------------------------------

    def acquire_guard(self, tenant_id: UUID, exclusive: bool = False) -> PeriodLockGuard:
        """
        Lock the tenant's guard row, creating it on first use.

        Shared mode is for mutations that only check locks; exclusive mode
        is for lock() and unlock().  Every mutating operation takes the
        guard before any other row lock.
        """
        guard = self._select_guard(tenant_id, exclusive)
        if guard is not None:
            return guard

        savepoint = self.session.begin_nested()
        try:
            self.session.add(PeriodLockGuard(tenant_id=tenant_id, version=0))
            self.session.flush()
            savepoint.commit()
        except IntegrityError:
            savepoint.rollback()
            logger.debug("period_lock_guard_race_retry")

        guard = self._select_guard(tenant_id, exclusive)
        if guard is None:
            raise RuntimeError(f"Period lock guard missing for tenant {tenant_id}")
        return guard

    def _select_guard(self, tenant_id: UUID, exclusive: bool) -> PeriodLockGuard | None:
        return self.session.execute(
            select(PeriodLockGuard)
            .where(PeriodLockGuard.tenant_id == tenant_id)
            .with_for_update(read=not exclusive)
            .execution_options(populate_existing=True)
        ).scalar_one_or_none()

    # -------------------------------------------------------------------------
    # Queries
    # -------------------------------------------------------------------------

    def find_active_lock(self, tenant_id: UUID, check_date: date) -> PeriodLock | None:
        return self.session.execute(
            select(PeriodLock)
            .where(
                PeriodLock.tenant_id == tenant_id,
                PeriodLock.is_active.is_(True),
                PeriodLock.period_start <= check_date,
                PeriodLock.period_end >= check_date,
            )
            .order_by(PeriodLock.period_start)
            .limit(1)
        ).scalar_one_or_none()

    def find_overlapping_lock(
        self, tenant_id: UUID, period_start: date, period_end: date
    ) -> PeriodLock | None:
        """Active lock whose range overlaps [period_start, period_end]."""
        return self.session.execute(
            select(PeriodLock)
            .where(
                PeriodLock.tenant_id == tenant_id,
                PeriodLock.is_active.is_(True),
                PeriodLock.period_start <= period_end,
                PeriodLock.period_end >= period_start,
            )
            .order_by(PeriodLock.period_start)
            .limit(1)
        ).scalar_one_or_none()

    def is_locked(self, tenant_id: UUID, check_date: date) -> bool:
        return self.find_active_lock(tenant_id, check_date) is not None

    def assert_unlocked(self, tenant_id: UUID, *dates: date | None) -> None:
        """
        Raise PeriodLockedError if any given date is inside an active lock.

        Takes the guard row in share mode first, so the answer stays true
        until the calling transaction ends.  None entries are skipped.
        """
        self.acquire_guard(tenant_id)
        for check_date in dict.fromkeys(d for d in dates if d is not None):
            lock = self.find_active_lock(tenant_id, check_date)
            logger.debug(
                "period_lock_checked",
                extra={"date": check_date, "locked": lock is not None},
            )
            if lock is not None:
                logger.warning(
                    "period_locked_violation",
                    extra={
                        "date": check_date,
                        "lock_id": lock.id,
                        "period_start": lock.period_start,
                        "period_end": lock.period_end,
                    },
                )
                raise PeriodLockedError(
                    effective_date=check_date,
                    lock_id=str(lock.id),
                    period_start=lock.period_start,
                    period_end=lock.period_end,
                )

    # -------------------------------------------------------------------------
    # Transitions
    # -------------------------------------------------------------------------

    def lock(
        self,
        actor: ActorContext,
        period_start: date,
        period_end: date,
        reason: str | None = None,
        period_type: PeriodType | None = None,
        gst_return_id: UUID | None = None,
    ) -> PeriodLockInfo:
        """
        Lock [period_start, period_end] for the actor's tenant.

        period_type defaults to the calendar granularity of the range
        (CUSTOM when the range is not a calendar month, quarter or year).
        """
        require_period_manager(actor, "lock periods")
        if period_start > period_end:
            raise LedgerValidationError(
                "period",
                f"period_start ({period_start}) is after period_end ({period_end})",
            )
        resolved_type = (
            PeriodType(period_type) if period_type is not None
            else infer_period_type(period_start, period_end)
        )

        guard = self.acquire_guard(actor.tenant_id, exclusive=True)

        existing = self.find_overlapping_lock(actor.tenant_id, period_start, period_end)
        if existing is not None:
            logger.warning(
                "overlapping_lock_rejected",
                extra={
                    "period_start": period_start,
                    "period_end": period_end,
                    "existing_lock_id": existing.id,
                },
            )
            raise OverlappingLockError(
                period_start=period_start,
                period_end=period_end,
                existing_lock_id=str(existing.id),
                existing_start=existing.period_start,
                existing_end=existing.period_end,
            )

        lock = PeriodLock(
            tenant_id=actor.tenant_id,
            period_start=period_start,
            period_end=period_end,
            period_type=resolved_type,
            locked_at=self.clock.now(),
            reason=reason,
            is_active=True,
            gst_return_id=gst_return_id,
            created_by_id=actor.actor_id,
        )
        self.session.add(lock)
        guard.version += 1
        self.session.flush()

        logger.info(
            "period_locked",
            extra={
                "lock_id": lock.id,
                "period_start": period_start,
                "period_end": period_end,
                "period_type": resolved_type.value,
                "reason": reason,
                "gst_return_id": gst_return_id,
            },
        )
        return PeriodLockInfo.from_model(lock)

    def unlock(
        self,
        actor: ActorContext,
        lock_id: UUID,
        reason: str | None = None,
    ) -> PeriodLockInfo:
        """
        Release an active lock.

        Documents in the range become mutable again; a filed return that
        created the lock keeps its frozen figures.
        """
        require_period_manager(actor, "unlock periods")
        guard = self.acquire_guard(actor.tenant_id, exclusive=True)

        lock = self.session.execute(
            select(PeriodLock)
            .where(PeriodLock.id == lock_id)
            .with_for_update()
            .execution_options(populate_existing=True)
        ).scalar_one_or_none()
        if lock is None or lock.tenant_id != actor.tenant_id:
            raise PeriodLockNotFoundError(str(lock_id))
        if not lock.is_active:
            raise InvalidTransitionError(str(lock_id), "released", "unlock")

        lock.is_active = False
        lock.unlocked_at = self.clock.now()
        lock.unlocked_by_id = actor.actor_id
        lock.unlock_reason = reason
        guard.version += 1
        self.session.flush()

        logger.info(
            "period_unlocked",
            extra={
                "lock_id": lock.id,
                "period_start": lock.period_start,
                "period_end": lock.period_end,
                "reason": reason,
            },
        )
        return PeriodLockInfo.from_model(lock)
