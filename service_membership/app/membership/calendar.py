"""
Calendar-month arithmetic.
"""

import calendar
from datetime import datetime


def add_months(moment: datetime, months: int) -> datetime:
    """Add calendar months to ``moment``, keeping the time of day.

    The day of month is preserved where the target month has it and
    clamped to the target month's last day otherwise, so Jan 31 + 1 month
    is Feb 29 in leap years and Feb 28 elsewhere.
    """
    month_index = moment.month - 1 + months
    year = moment.year + month_index // 12
    month = month_index % 12 + 1
    day = min(moment.day, calendar.monthrange(year, month)[1])
    return moment.replace(year=year, month=month, day=day)
