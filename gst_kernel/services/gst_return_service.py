"""
GstReturnService -- GST return lifecycle.

Responsibility:
    Prepares draft returns from the GST aggregation of a calendar period,
    files them (freezing the figures and locking the period in the same
    transaction), approves and amends filed returns, and deletes drafts.

Architecture position:
    Kernel > Services -- imperative shell.
    Reads figures through GstSelector; locks periods through
    PeriodLockService.

Invariants enforced:
    - A return is filed exactly once, and only from DRAFT.  Filing twice
      fails with ReturnNotDraftError and leaves the first figures untouched.
    - Filing creates a period lock over exactly [period_start, period_end]
      with reason "GST return filed" in the same transaction.  If the range
      overlaps an active lock the filing is rejected; amending a filed
      period means unlocking it and filing a new return.
    - Figures are recomputed at filing under the exclusive lock guard, so no
      document mutation can slip in between aggregation and lock.
    - Amendments append a record; the figures frozen at filing never change.
    - Only DRAFT returns are deleted.

Failure modes:
    - ReturnNotDraftError, InvalidTransitionError, GstReturnNotFoundError,
      OverlappingLockError, PeriodLockedError, NotAuthorizedError,
      LedgerValidationError.
"""

from datetime import date
from decimal import Decimal
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.orm import Session

from gst_kernel.db.types import ZERO
from gst_kernel.domain.clock import Clock
from gst_kernel.domain.dtos import ActorContext, GstReturnInfo, GstSummary
from gst_kernel.domain.enums import PeriodType, ReturnStatus
from gst_kernel.domain.periods import filing_due_date, infer_period_type, return_number
from gst_kernel.exceptions import (
    GstReturnNotFoundError,
    InvalidTransitionError,
    LedgerValidationError,
    PeriodLockedError,
    ReturnNotDraftError,
)
from gst_kernel.logging_config import LogContext, get_logger
from gst_kernel.models.gst_return import GstReturn, GstReturnAmendment
from gst_kernel.selectors.gst_selector import GstSelector
from gst_kernel.services.base import BaseService, require_amount, require_period_manager
from gst_kernel.services.period_lock_service import GST_FILED_REASON, PeriodLockService

logger = get_logger("services.gst_return")


class GstReturnService(BaseService[GstReturn]):
    """Return aggregator and GST return state machine."""

    def __init__(
        self,
        session: Session,
        clock: Clock | None = None,
        period_locks: PeriodLockService | None = None,
        filing_due_day: int = 20,
    ):
        super().__init__(session, clock)
        self._period_locks = period_locks or PeriodLockService(session, self.clock)
        self._selector = GstSelector(session)
        self._filing_due_day = filing_due_day

    def _lock_return(self, tenant_id: UUID, return_id: UUID) -> GstReturn:
        gst_return = self.session.execute(
            select(GstReturn)
            .where(GstReturn.id == return_id)
            .with_for_update()
            .execution_options(populate_existing=True)
        ).scalar_one_or_none()
        if gst_return is None or gst_return.tenant_id != tenant_id:
            raise GstReturnNotFoundError(str(return_id))
        return gst_return

    # -------------------------------------------------------------------------
    # Aggregation
    # -------------------------------------------------------------------------

    def summarise(self, tenant_id: UUID, period_start: date, period_end: date) -> GstSummary:
        if period_start > period_end:
            raise LedgerValidationError(
                "period",
                f"period_start ({period_start}) is after period_end ({period_end})",
            )
        return self._selector.summarise(tenant_id, period_start, period_end)

    # -------------------------------------------------------------------------
    # Lifecycle
    # -------------------------------------------------------------------------

    def prepare(
        self,
        actor: ActorContext,
        period_start: date,
        period_end: date,
        return_type: PeriodType,
    ) -> GstReturnInfo:
        """
        Create a draft return with the current figures for the period.

        The range must be exactly the calendar month, quarter or year that
        return_type names.
        """
        return_type = PeriodType(return_type)
        if return_type is PeriodType.CUSTOM:
            raise LedgerValidationError("return_type", "GST returns cannot be custom")
        summary = self.summarise(actor.tenant_id, period_start, period_end)
        actual = infer_period_type(period_start, period_end)
        if actual is not return_type:
            raise LedgerValidationError(
                "period",
                f"{period_start}..{period_end} is not a {return_type.value} period",
            )

        existing = self._period_locks.find_overlapping_lock(
            actor.tenant_id, period_start, period_end
        )
        if existing is not None:
            raise PeriodLockedError(
                effective_date=max(period_start, existing.period_start),
                lock_id=str(existing.id),
                period_start=existing.period_start,
                period_end=existing.period_end,
            )

        gst_return = GstReturn(
            tenant_id=actor.tenant_id,
            return_number=return_number(return_type, period_start),
            return_type=return_type,
            period_start=period_start,
            period_end=period_end,
            due_date=filing_due_date(period_end, self._filing_due_day),
            status=ReturnStatus.DRAFT,
            created_by_id=actor.actor_id,
        )
        self._apply_summary(gst_return, summary)
        gst_return.total_payable = gst_return.net_gst_payable
        self.session.add(gst_return)
        self.session.flush()

        logger.info(
            "gst_return_prepared",
            extra={
                "return_id": gst_return.id,
                "return_number": gst_return.return_number,
                "output_gst": gst_return.output_gst,
                "input_gst": gst_return.input_gst,
                "net_gst_payable": gst_return.net_gst_payable,
            },
        )
        return GstReturnInfo.from_model(gst_return)

    def file(
        self,
        actor: ActorContext,
        return_id: UUID,
        filing_date: date | None = None,
        adjustments: Decimal = ZERO,
        previous_period_balance: Decimal = ZERO,
        penalties: Decimal = ZERO,
        interest: Decimal = ZERO,
    ) -> GstReturnInfo:
        """
        File a draft return: freeze its figures and lock its period.

        total_payable = net GST + adjustments + previous period balance
        + penalties + interest.
        """
        require_period_manager(actor, "file GST returns")
        adjustments = require_amount(
            "adjustments", adjustments, allow_zero=True, allow_negative=True
        )
        previous_period_balance = require_amount(
            "previous_period_balance", previous_period_balance,
            allow_zero=True, allow_negative=True,
        )
        penalties = require_amount("penalties", penalties, allow_zero=True)
        interest = require_amount("interest", interest, allow_zero=True)

        self._period_locks.acquire_guard(actor.tenant_id, exclusive=True)
        gst_return = self._lock_return(actor.tenant_id, return_id)
        with LogContext.bind(return_id=gst_return.id):
            if not gst_return.is_draft:
                logger.warning(
                    "gst_return_refiling_rejected",
                    extra={"status": gst_return.status},
                )
                raise ReturnNotDraftError(str(gst_return.id), gst_return.status.value, "file")

            lock = self._period_locks.lock(
                actor,
                gst_return.period_start,
                gst_return.period_end,
                reason=GST_FILED_REASON,
                period_type=gst_return.return_type,
                gst_return_id=gst_return.id,
            )

            summary = self._selector.summarise(
                actor.tenant_id, gst_return.period_start, gst_return.period_end
            )
            self._apply_summary(gst_return, summary)
            gst_return.adjustments = adjustments
            gst_return.previous_period_balance = previous_period_balance
            gst_return.penalties = penalties
            gst_return.interest = interest
            gst_return.total_payable = (
                gst_return.net_gst_payable
                + adjustments
                + previous_period_balance
                + penalties
                + interest
            )
            gst_return.filing_date = filing_date or self.clock.today()
            gst_return.filed_at = self.clock.now()
            gst_return.filed_by_id = actor.actor_id
            gst_return.status = ReturnStatus.FILED
            gst_return.updated_by_id = actor.actor_id
            self.session.flush()

            logger.info(
                "gst_return_filed",
                extra={
                    "return_number": gst_return.return_number,
                    "lock_id": lock.id,
                    "output_gst": gst_return.output_gst,
                    "input_gst": gst_return.input_gst,
                    "net_gst_payable": gst_return.net_gst_payable,
                    "total_payable": gst_return.total_payable,
                },
            )
        return GstReturnInfo.from_model(gst_return)

    def approve(self, actor: ActorContext, return_id: UUID) -> GstReturnInfo:
        require_period_manager(actor, "approve GST returns")
        gst_return = self._lock_return(actor.tenant_id, return_id)
        if gst_return.status != ReturnStatus.FILED:
            raise InvalidTransitionError(str(gst_return.id), gst_return.status.value, "approve")

        gst_return.status = ReturnStatus.APPROVED
        gst_return.approved_at = self.clock.now()
        gst_return.approved_by_id = actor.actor_id
        gst_return.updated_by_id = actor.actor_id
        self.session.flush()

        logger.info(
            "gst_return_approved",
            extra={"return_id": gst_return.id, "return_number": gst_return.return_number},
        )
        return GstReturnInfo.from_model(gst_return)

    def amend(
        self,
        actor: ActorContext,
        return_id: UUID,
        adjustments: Decimal,
        reason: str,
    ) -> GstReturnInfo:
        """
        Record new adjustments against a filed or approved return.

        Appends an amendment carrying the recomputed total; the figures
        frozen at filing stay as they were.
        """
        require_period_manager(actor, "amend GST returns")
        adjustments = require_amount(
            "adjustments", adjustments, allow_zero=True, allow_negative=True
        )
        if not reason or not reason.strip():
            raise LedgerValidationError("reason", "an amendment needs a reason")

        gst_return = self._lock_return(actor.tenant_id, return_id)
        if gst_return.status not in (
            ReturnStatus.FILED, ReturnStatus.APPROVED, ReturnStatus.AMENDED,
        ):
            raise InvalidTransitionError(str(gst_return.id), gst_return.status.value, "amend")

        if gst_return.amendments:
            latest = gst_return.amendments[-1]
            previous_adjustments = latest.new_adjustments
            previous_total = latest.new_total_payable
        else:
            previous_adjustments = gst_return.adjustments
            previous_total = gst_return.total_payable
        new_total = gst_return.total_payable - gst_return.adjustments + adjustments

        amendment = GstReturnAmendment(
            amendment_number=len(gst_return.amendments) + 1,
            previous_adjustments=previous_adjustments,
            new_adjustments=adjustments,
            previous_total_payable=previous_total,
            new_total_payable=new_total,
            reason=reason.strip(),
            amended_at=self.clock.now(),
            created_by_id=actor.actor_id,
        )
        gst_return.amendments.append(amendment)
        if gst_return.status != ReturnStatus.AMENDED:
            gst_return.status = ReturnStatus.AMENDED
        gst_return.updated_by_id = actor.actor_id
        self.session.flush()

        logger.info(
            "gst_return_amended",
            extra={
                "return_id": gst_return.id,
                "amendment_number": amendment.amendment_number,
                "previous_total_payable": previous_total,
                "new_total_payable": new_total,
            },
        )
        return GstReturnInfo.from_model(gst_return)

    def delete(self, actor: ActorContext, return_id: UUID) -> GstReturnInfo:
        """Delete a draft return.  Filed returns are permanent."""
        gst_return = self._lock_return(actor.tenant_id, return_id)
        if not gst_return.is_draft:
            raise ReturnNotDraftError(str(gst_return.id), gst_return.status.value, "delete")

        info = GstReturnInfo.from_model(gst_return)
        self.session.delete(gst_return)
        self.session.flush()

        logger.info(
            "gst_return_deleted",
            extra={"return_id": info.id, "return_number": info.return_number},
        )
        return info

    @staticmethod
    def _apply_summary(gst_return: GstReturn, summary: GstSummary) -> None:
        gst_return.output_gst = summary.output_gst
        gst_return.input_gst = summary.input_gst
        gst_return.net_gst_payable = summary.net_gst_payable
        gst_return.sales_breakdown = summary.sales.to_dict()
        gst_return.purchases_breakdown = summary.purchases.to_dict()
