"""
Module: gst_kernel.selectors.period_selector
Responsibility: Read-only listing of a tenant's period locks, active and
    released, for audit screens and the period-lock page.
Architecture position: Kernel > Selectors.
"""

from uuid import UUID

from gst_kernel.domain.dtos import PeriodLockInfo
from gst_kernel.exceptions import PeriodLockNotFoundError
from gst_kernel.models.period_lock import PeriodLock
from gst_kernel.selectors.base import BaseSelector


class PeriodSelector(BaseSelector[PeriodLock]):

    def get_lock(self, tenant_id: UUID, lock_id: UUID) -> PeriodLockInfo:
        lock = self._get_owned(PeriodLock, lock_id, tenant_id, PeriodLockNotFoundError)
        return PeriodLockInfo.from_model(lock)

    def list_locks(self, tenant_id: UUID, active_only: bool = False) -> list[PeriodLockInfo]:
        """Locks ordered by period start, then by when they were taken."""
        query = self._for_tenant(PeriodLock, tenant_id)
        if active_only:
            query = query.where(PeriodLock.is_active.is_(True))
        query = query.order_by(PeriodLock.period_start, PeriodLock.locked_at)
        return [PeriodLockInfo.from_model(lock) for lock in self.session.scalars(query)]
