"""
Demand Calendar — fixed-date holidays that move retail demand.

Only four fixed-date events are treated as demand-relevant:
New Year's Day, Independence Day, Halloween and Christmas Day.
A forecast horizon "contains a holiday" if any of them, in the
horizon's start year or the following year, falls inside the window.
"""

from datetime import date, timedelta
from functools import lru_cache


@lru_cache(maxsize=32)
def get_demand_holidays(year: int) -> dict[date, str]:
    """Return the demand-relevant fixed holidays for a year."""
    return {
        date(year, 1, 1): "New Year's Day",
        date(year, 7, 4): "Independence Day",
        date(year, 10, 31): "Halloween",
        date(year, 12, 25): "Christmas Day",
    }


def holidays_in_window(start: date, horizon_days: int) -> list[tuple[date, str]]:
    """Holidays falling within [start, start + horizon_days], oldest first."""
    end = start + timedelta(days=horizon_days)
    found = []
    for year in (start.year, start.year + 1):
        for day, name in get_demand_holidays(year).items():
            if start <= day <= end:
                found.append((day, name))
    return sorted(found)


def has_upcoming_holiday(start: date, horizon_days: int) -> bool:
    return bool(holidays_in_window(start, horizon_days))


def is_weekend(day: date) -> bool:
    return day.weekday() >= 5
