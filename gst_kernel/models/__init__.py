"""ORM models for the GST ledger kernel."""

from gst_kernel.models.document import DocumentAdjustment, DocumentLine, LedgerDocument
from gst_kernel.models.gst_return import GstReturn, GstReturnAmendment
from gst_kernel.models.payment import Allocation, Payment
from gst_kernel.models.period_lock import PeriodLock, PeriodLockGuard
from gst_kernel.models.sequence import DocumentSequence, TenantNumbering

__all__ = [
    "Allocation",
    "DocumentAdjustment",
    "DocumentLine",
    "DocumentSequence",
    "GstReturn",
    "GstReturnAmendment",
    "LedgerDocument",
    "Payment",
    "PeriodLock",
    "PeriodLockGuard",
    "TenantNumbering",
]
