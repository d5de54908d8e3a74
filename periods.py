from dataclasses import dataclass
from datetime import date, datetime, time, timedelta
from typing import Optional, Union

Moment = Union[date, datetime]

# Last representable millisecond of a day; month ranges are inclusive of it.
END_OF_DAY = time(23, 59, 59, 999000)

HISTORY_WINDOWS = ("1W", "1M", "3M", "YTD", "1Y", "ALL")


@dataclass(frozen=True)
class Period:
    slug: str
    start: date
    end: date


@dataclass(frozen=True)
class MonthRange:
    start: datetime
    end: datetime


def days_in_month(year: int, month: int) -> int:
    if month == 12:
        next_month = date(year + 1, 1, 1)
    else:
        next_month = date(year, month + 1, 1)
    return (next_month - date(year, month, 1)).days


def _as_datetime(moment: Moment) -> datetime:
    if isinstance(moment, datetime):
        return moment
    return datetime.combine(moment, time.min)


def month_range(moment: Moment) -> MonthRange:
    moment = _as_datetime(moment)
    last_day = days_in_month(moment.year, moment.month)
    start = datetime(moment.year, moment.month, 1)
    end = datetime.combine(date(moment.year, moment.month, last_day), END_OF_DAY)
    return MonthRange(start=start, end=end)


def shift_months(moment: Moment, months: int) -> Moment:
    """Move ``moment`` by whole calendar months, keeping day and time of day.

    A day that does not exist in the target month is clamped to that month's
    last day (Mar 31 minus one month is Feb 29 in a leap year).
    """
    total_months = moment.month - 1 + months
    year = moment.year + total_months // 12
    month = total_months % 12 + 1
    day = min(moment.day, days_in_month(year, month))
    return moment.replace(year=year, month=month, day=day)


def previous_month(moment: Moment) -> Moment:
    return shift_months(moment, -1)


def history_start(
    window: str, now: datetime, *, created_at: Optional[datetime] = None
) -> datetime:
    if window == "1W":
        return now - timedelta(days=7)
    if window == "1M":
        return shift_months(now, -1)
    if window == "3M":
        return shift_months(now, -3)
    if window == "YTD":
        return datetime(now.year, 1, 1)
    if window == "1Y":
        return shift_months(now, -12)
    if window == "ALL":
        if created_at is not None:
            return created_at
        return shift_months(now, -120)
    raise ValueError(f"Unsupported history window: {window}")


def resolve_period(
    period: Optional[str],
    start: Optional[str],
    end: Optional[str],
    *,
    today: Optional[date] = None,
) -> Period:
    today = today or date.today()
    if not period or period == "all":
        return Period("all", date(1970, 1, 1), today)
    if period == "last_month":
        first_this = today.replace(day=1)
        last_month_end = first_this - date.resolution
        last_month_start = last_month_end.replace(day=1)
        return Period("last_month", last_month_start, last_month_end)
    if period == "custom":
        if not start or not end:
            raise ValueError("Custom period requires start and end dates")
        start_date = date.fromisoformat(start)
        end_date = date.fromisoformat(end)
        if start_date > end_date:
            raise ValueError("Start date must be before end date")
        return Period("custom", start_date, end_date)

    # this month
    span = month_range(today)
    return Period("this_month", span.start.date(), span.end.date())
