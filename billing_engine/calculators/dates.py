"""
Calendar Arithmetic

Month stepping with day-of-month clamping. Every due date in the engine is
derived through ``add_months_clamped`` so the whole system follows one
convention.
"""

from datetime import date

from dateutil.relativedelta import relativedelta


def add_months_clamped(start: date, months: int) -> date:
    """
    Advance ``start`` by ``months`` whole months.

    If the day of month does not exist in the target month it is clamped to
    the month's last day: 31 Jan + 1 -> 28/29 Feb, never March.

    The step is always taken directly from ``start``. Callers derive cycle N
    from the anchor, not from cycle N-1, so a clamp on one cycle never leaks
    into the next: 31 Jan + 2 -> 31 Mar, whereas stepping through February
    would give 28 Mar.
    """
    return start + relativedelta(months=months)
