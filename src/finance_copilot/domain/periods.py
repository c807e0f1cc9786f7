from datetime import date, timedelta
from typing import Literal

Timeframe = Literal["this_month", "last_month", "this_year", "last_30_days", "all_time"]
ComparablePeriod = Literal["this_month", "last_month", "this_week", "last_week"]

DateRange = tuple[str | None, str | None]


def _month_start(day: date) -> date:
    return day.replace(day=1)


def _next_month(day: date) -> date:
    if day.month == 12:
        return date(day.year + 1, 1, 1)
    return date(day.year, day.month + 1, 1)


def _prev_month(day: date) -> date:
    if day.month == 1:
        return date(day.year - 1, 12, 1)
    return date(day.year, day.month - 1, 1)


def resolve_period(name: str | None, today: date | None = None) -> DateRange:
    """
    Map a named period to an ISO ``[start, end)`` date range.

    Weeks start on Monday. ``all_time`` and unknown names yield ``(None, None)``.
    """
    today = today or date.today()
    month_start = _month_start(today)
    week_start = today - timedelta(days=today.weekday())

    if name == "this_month":
        start, end = month_start, _next_month(month_start)
    elif name == "last_month":
        start, end = _prev_month(month_start), month_start
    elif name == "this_year":
        start, end = date(today.year, 1, 1), date(today.year + 1, 1, 1)
    elif name == "last_30_days":
        start, end = today - timedelta(days=30), today + timedelta(days=1)
    elif name == "this_week":
        start, end = week_start, week_start + timedelta(days=7)
    elif name == "last_week":
        start, end = week_start - timedelta(days=7), week_start
    else:
        return None, None
    return start.isoformat(), end.isoformat()


def months_back(months: int, today: date | None = None) -> str:
    """First day of the month ``months - 1`` months before today's month."""
    start = _month_start(today or date.today())
    for _ in range(max(months, 1) - 1):
        start = _prev_month(start)
    return start.isoformat()


def format_duration(seconds: float) -> str:
    if seconds <= 0:
        return "0 ms"
    if seconds < 1:
        return f"{seconds * 1000:.1f} ms"
    if seconds < 60:
        return f"{seconds:.2f} s"
    return f"{seconds / 60:.2f} min"
