"""Flush-only kernel services (the write side)."""

from gst_kernel.services.allocation_service import AllocationService
from gst_kernel.services.base import BaseService
from gst_kernel.services.document_service import DocumentService
from gst_kernel.services.gst_return_service import GstReturnService
from gst_kernel.services.period_lock_service import GST_FILED_REASON, PeriodLockService
from gst_kernel.services.sequence_service import SequenceService, format_number

__all__ = [
    "AllocationService",
    "BaseService",
    "DocumentService",
    "GST_FILED_REASON",
    "GstReturnService",
    "PeriodLockService",
    "SequenceService",
    "format_number",
]
