"""Working-day arithmetic used to derive monthly attendance facts.

Weekends are Saturday and Sunday. Holidays only reduce working days when
they fall on a weekday.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date, timedelta
from decimal import Decimal
from typing import Iterable

from payrun_engine.calculators.types import AttendanceFacts, PayPeriod

WEEKEND = (5, 6)  # date.weekday(): Saturday, Sunday


def _count_working_days(start: date, end: date, holidays: set[date]) -> int:
    count = 0
    day = start
    while day <= end:
        if day.weekday() not in WEEKEND and day not in holidays:
            count += 1
        day += timedelta(days=1)
    return count


def working_days_in_month(period: PayPeriod, holidays: Iterable[date] = ()) -> int:
    """Count weekdays in the month that are not holidays."""
    return _count_working_days(period.start, period.end, set(holidays))


def leave_days_in_period(
    period: PayPeriod,
    leave_start: date,
    leave_end: date,
    holidays: Iterable[date] = (),
) -> int:
    """Count working days of a leave range that fall inside the month."""
    if leave_end < leave_start:
        raise ValueError("leave_end is before leave_start")

    start = max(period.start, leave_start)
    end = min(period.end, leave_end)
    if start > end:
        return 0
    return _count_working_days(start, end, set(holidays))


@dataclass(frozen=True)
class LeaveRecord:
    """An approved leave range."""

    start: date
    end: date
    is_paid: bool


def monthly_facts(
    period: PayPeriod,
    present_days: Decimal,
    leaves: Iterable[LeaveRecord] = (),
    holidays: Iterable[date] = (),
    approved_ot_minutes: int = 0,
) -> AttendanceFacts:
    """Build monthly facts from attendance, approved leave and holidays.

    Paid leave counts towards presence; unpaid leave becomes LOP days.
    """
    holiday_set = set(holidays)
    working_days = working_days_in_month(period, holiday_set)

    paid = 0
    unpaid = 0
    for leave in leaves:
        days = leave_days_in_period(period, leave.start, leave.end, holiday_set)
        if leave.is_paid:
            paid += days
        else:
            unpaid += days

    effective_present = min(Decimal(present_days) + paid, Decimal(working_days))
    return AttendanceFacts(
        working_days=Decimal(working_days),
        present_days=effective_present,
        leave_days=Decimal(paid + unpaid),
        lop_days=Decimal(unpaid),
        approved_ot_minutes=approved_ot_minutes,
    )
