# app/utils/periods.py
# Calendar helpers for monthly billing periods.

import calendar
from dataclasses import dataclass
from datetime import date, datetime, timezone
from typing import Iterator, Optional, Tuple
from zoneinfo import ZoneInfo


def today_in(tz_name: str, now: Optional[datetime] = None) -> date:
    """The calendar date in `tz_name`, which may differ from the server's."""
    return (now or datetime.now(timezone.utc)).astimezone(ZoneInfo(tz_name)).date()


def period_start(year: int, month: int) -> date:
    return date(year, month, 1)


def period_end(year: int, month: int) -> date:
    return date(year, month, calendar.monthrange(year, month)[1])


def due_date_for(year: int, month: int, due_day: int) -> date:
    """Day `due_day` of the month, clamped to the last day."""
    last_day = calendar.monthrange(year, month)[1]
    return date(year, month, max(1, min(due_day, last_day)))


def billing_date(year: int, month: int, admission_date: date) -> date:
    """
    The as-of date used for every lookup in a month: the 1st, or the
    admission date when the student joined during that month.
    """
    return max(period_start(year, month), admission_date)


def quarter_of(month: int) -> int:
    return (month - 1) // 3 + 1


def month_index(year: int, month: int) -> int:
    return year * 12 + (month - 1)


@dataclass(frozen=True)
class MonthRange:
    """
    Inclusive range of (year, month) pairs. Iterating twice gives the
    same sequence; nothing is materialised up front.

        for year, month in MonthRange(date(2024, 3, 10), date(2024, 6, 1)):
            ...
    """
    start: date
    end: date

    def __iter__(self) -> Iterator[Tuple[int, int]]:
        current = month_index(self.start.year, self.start.month)
        last = month_index(self.end.year, self.end.month)
        while current <= last:
            yield current // 12, current % 12 + 1
            current += 1

    def __len__(self) -> int:
        return max(
            0,
            month_index(self.end.year, self.end.month)
            - month_index(self.start.year, self.start.month)
            + 1,
        )
