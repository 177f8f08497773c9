"""Read-only query selectors."""

from gst_kernel.selectors.base import BaseSelector
from gst_kernel.selectors.gst_selector import GstSelector
from gst_kernel.selectors.ledger_selector import LedgerSelector
from gst_kernel.selectors.period_selector import PeriodSelector

__all__ = [
    "BaseSelector",
    "GstSelector",
    "LedgerSelector",
    "PeriodSelector",
]
