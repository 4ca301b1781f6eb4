"""
Report period date ranges, computed in the tenant's timezone
"""

from datetime import date, datetime, timedelta
from typing import Optional, Tuple
from zoneinfo import ZoneInfo

from models.base import ReportPeriod

DateRange = Tuple[date, date]


def today_in(tz: Optional[ZoneInfo] = None, now: Optional[datetime] = None) -> date:
    if now is None:
        now = datetime.now(tz or ZoneInfo("UTC"))
    elif tz is not None and now.tzinfo is not None:
        now = now.astimezone(tz)
    return now.date()


def previous_complete_range(
    period: ReportPeriod,
    tz: Optional[ZoneInfo] = None,
    now: Optional[datetime] = None,
) -> DateRange:
    """
    Last fully elapsed period before today.

    WEEK is Sunday through Saturday, MONTH and QUARTER are calendar based.
    """
    today = today_in(tz, now)
    period = ReportPeriod(period)

    if period == ReportPeriod.WEEK:
        sunday_based_dow = (today.weekday() + 1) % 7
        days_since_saturday = (sunday_based_dow + 1) % 7 or 7
        end = today - timedelta(days=days_since_saturday)
        return end - timedelta(days=6), end

    if period == ReportPeriod.MONTH:
        end = today.replace(day=1) - timedelta(days=1)
        return end.replace(day=1), end

    current_quarter_start_month = ((today.month - 1) // 3) * 3 + 1
    end = today.replace(month=current_quarter_start_month, day=1) - timedelta(days=1)
    start = end.replace(month=end.month - 2, day=1)
    return start, end


def format_range(start: date, end: date) -> str:
    """Rollup text for a covered range, e.g. '2025-01-05 - 2025-01-11'"""
    return f"{start.isoformat()} - {end.isoformat()}"


def is_current_period(
    period: ReportPeriod,
    start: date,
    end: date,
    tz: Optional[ZoneInfo] = None,
    now: Optional[datetime] = None,
) -> bool:
    return (start, end) == previous_complete_range(period, tz, now)
