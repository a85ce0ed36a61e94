from dataclasses import dataclass
from datetime import date, datetime
from typing import Optional
from zoneinfo import ZoneInfo


@dataclass(frozen=True)
class Period:
    start: date
    end: date


def local_today(timezone: str) -> date:
    return datetime.now(ZoneInfo(timezone)).date()


def month_start(year: int, month: int) -> date:
    return date(year, month, 1)


def month_end(year: int, month: int) -> date:
    if month == 12:
        return date(year + 1, 1, 1) - date.resolution
    return date(year, month + 1, 1) - date.resolution


def add_months(d: date, count: int) -> date:
    month_index = (d.year * 12) + (d.month - 1) + count
    year = month_index // 12
    month = (month_index % 12) + 1
    return date(year, month, 1)


def month_label(year: int, month: int) -> str:
    """Short label used on trend charts, e.g. ``Mar 2024``."""
    return date(year, month, 1).strftime("%b %Y")


def month_period(year: int, month: int) -> Period:
    if not 1 <= month <= 12:
        raise ValueError("Month must be between 1 and 12")
    if not 1 <= year <= 9999:
        raise ValueError("Invalid year")
    return Period(month_start(year, month), month_end(year, month))


def trailing_months(count: int = 6, *, today: Optional[date] = None) -> Period:
    """Calendar months ending with the current one, both ends inclusive."""
    today = today or date.today()
    first = add_months(today.replace(day=1), -(count - 1))
    return Period(first, month_end(today.year, today.month))
