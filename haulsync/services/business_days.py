"""Business-day arithmetic over US federal holidays (weekend-observed dates)."""

from __future__ import annotations

import calendar
from datetime import date, timedelta
from functools import lru_cache

MONDAY, THURSDAY = 0, 3


def _nth_weekday(year: int, month: int, weekday: int, n: int) -> date:
    first = date(year, month, 1)
    offset = (weekday - first.weekday()) % 7
    return first + timedelta(days=offset + (n - 1) * 7)


def _last_weekday(year: int, month: int, weekday: int) -> date:
    last = date(year, month, calendar.monthrange(year, month)[1])
    return last - timedelta(days=(last.weekday() - weekday) % 7)


def observed(holiday: date) -> date:
    """Saturday holidays are observed Friday, Sunday holidays Monday."""
    if holiday.weekday() == 5:
        return holiday - timedelta(days=1)
    if holiday.weekday() == 6:
        return holiday + timedelta(days=1)
    return holiday


@lru_cache(maxsize=64)
def us_federal_holidays(year: int) -> frozenset[date]:
    return frozenset(
        {
            observed(date(year, 1, 1)),
            _nth_weekday(year, 1, MONDAY, 3),   # MLK Day
            _nth_weekday(year, 2, MONDAY, 3),   # Presidents' Day
            _last_weekday(year, 5, MONDAY),     # Memorial Day
            observed(date(year, 6, 19)),
            observed(date(year, 7, 4)),
            _nth_weekday(year, 9, MONDAY, 1),   # Labor Day
            _nth_weekday(year, 10, MONDAY, 2),  # Columbus Day
            observed(date(year, 11, 11)),
            _nth_weekday(year, 11, THURSDAY, 4),  # Thanksgiving
            observed(date(year, 12, 25)),
        }
    )


def is_us_federal_holiday(day: date) -> bool:
    # New Year's Day on a Saturday is observed on Dec 31 of the prior year
    return any(day in us_federal_holidays(year) for year in (day.year - 1, day.year, day.year + 1))


def is_weekend(day: date) -> bool:
    return day.weekday() >= 5


def is_business_day(day: date) -> bool:
    return not is_weekend(day) and not is_us_federal_holiday(day)


def add_business_days(start: date, days: int) -> date:
    result = start
    step = timedelta(days=1 if days > 0 else -1)
    added = 0
    while added < abs(days):
        result += step
        if is_business_day(result):
            added += 1
    return result


def add_calendar_days(start: date, days: int) -> date:
    return start + timedelta(days=days)


def days_until(target: date, today: date | None = None) -> int:
    return (target - (today or date.today())).days


def business_days_until(target: date, today: date | None = None) -> int:
    """Business days after today up to target; negative when target is in the past."""
    today = today or date.today()
    if target == today:
        return 0
    sign = 1 if target > today else -1
    lo, hi = (today, target) if sign > 0 else (target, today)
    count = 0
    day = lo + timedelta(days=1)
    while day <= hi:
        if is_business_day(day):
            count += 1
        day += timedelta(days=1)
    return sign * count


def calculate_delivery_deadline(rfd_date: date, days_to_deliver: int, use_business_days: bool) -> date:
    if use_business_days:
        return add_business_days(rfd_date, days_to_deliver)
    return add_calendar_days(rfd_date, days_to_deliver)
