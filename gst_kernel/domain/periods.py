"""
Periods -- calendar period arithmetic for locks and GST returns.

Responsibility:
    Classify a date range as a calendar month, quarter or year, build GST
    return numbers, compute filing due dates, and test range overlap.

Architecture position:
    Kernel > Domain -- pure functional core, zero I/O.
"""

import calendar
from datetime import date

from gst_kernel.domain.enums import PeriodType


def month_end(day: date) -> date:
    return day.replace(day=calendar.monthrange(day.year, day.month)[1])


def ranges_overlap(start_a: date, end_a: date, start_b: date, end_b: date) -> bool:
    """Inclusive ranges overlap iff each starts on or before the other ends."""
    return start_a <= end_b and end_a >= start_b


def period_bounds(period_type: PeriodType, year: int, index: int = 1) -> tuple[date, date]:
    """
    Inclusive bounds of a calendar period.

    ``index`` is the month (1..12) for MONTHLY, the quarter (1..4) for
    QUARTERLY, and ignored for ANNUAL.
    """
    if period_type is PeriodType.MONTHLY:
        start = date(year, index, 1)
        return start, month_end(start)
    if period_type is PeriodType.QUARTERLY:
        if not 1 <= index <= 4:
            raise ValueError(f"Quarter must be within 1..4: {index}")
        start = date(year, 3 * (index - 1) + 1, 1)
        return start, month_end(date(year, 3 * index, 1))
    if period_type is PeriodType.ANNUAL:
        return date(year, 1, 1), date(year, 12, 31)
    raise ValueError(f"No calendar bounds for period type {period_type.value}")


def infer_period_type(start: date, end: date) -> PeriodType:
    """Calendar granularity of [start, end], or CUSTOM if it is not one."""
    if start.day != 1 or end != month_end(end) or start > end:
        return PeriodType.CUSTOM
    if start.year != end.year:
        return PeriodType.CUSTOM
    months = end.month - start.month + 1
    if months == 1:
        return PeriodType.MONTHLY
    if months == 3 and start.month % 3 == 1:
        return PeriodType.QUARTERLY
    if months == 12:
        return PeriodType.ANNUAL
    return PeriodType.CUSTOM


def return_number(period_type: PeriodType, period_start: date) -> str:
    """GST-YYYY-MM, GST-YYYY-Qn or GST-YYYY-ANNUAL."""
    if period_type is PeriodType.MONTHLY:
        return f"GST-{period_start.year}-{period_start.month:02d}"
    if period_type is PeriodType.QUARTERLY:
        return f"GST-{period_start.year}-Q{(period_start.month - 1) // 3 + 1}"
    if period_type is PeriodType.ANNUAL:
        return f"GST-{period_start.year}-ANNUAL"
    raise ValueError(f"GST returns cannot be {period_type.value}")


def filing_due_date(period_end: date, due_day: int = 20) -> date:
    """``due_day`` of the month after the period ends, clamped to month length."""
    if period_end.month == 12:
        year, month = period_end.year + 1, 1
    else:
        year, month = period_end.year, period_end.month + 1
    last_day = calendar.monthrange(year, month)[1]
    return date(year, month, min(due_day, last_day))
