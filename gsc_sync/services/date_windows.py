"""
Date window computation for Search Console fetches.

Search Console data for a date is only stable after a reporting lag, so every
window produced here stops at ``today - lag``. Windows are half-open:
``start`` is the first day fetched and ``end`` is the first day NOT fetched.
Use ``last_day`` when building an API request (the API takes inclusive dates).
"""
from dataclasses import dataclass
from datetime import date, datetime, timedelta
from typing import Iterator, List, Optional, Union

import pytz
from dateutil.relativedelta import relativedelta

from gsc_sync.config import get_settings
from gsc_sync.exceptions import ConfigurationError

settings = get_settings()

REPORTING_LAG_DAYS = 3
INITIAL_POSITION_DAYS = 7
TRAFFIC_MONTHS = 12

DateLike = Union[date, datetime]


@dataclass(frozen=True)
class DateWindow:
    """Half-open date interval [start, end)"""
    start: date
    end: date

    def __post_init__(self):
        if self.end < self.start:
            raise ValueError(f"Window end {self.end} is before start {self.start}")

    @property
    def last_day(self) -> date:
        return self.end - timedelta(days=1)

    @property
    def num_days(self) -> int:
        return (self.end - self.start).days

    @property
    def label(self) -> str:
        return f"{self.start.isoformat()}..{self.last_day.isoformat()}"

    def days(self) -> List[date]:
        return list(self.iter_days())

    def iter_days(self) -> Iterator[date]:
        day = self.start
        while day < self.end:
            yield day
            day += timedelta(days=1)

    def __contains__(self, day: date) -> bool:
        return self.start <= day < self.end


@dataclass(frozen=True)
class TrafficWindows:
    """Windows for the site traffic flow"""
    monthly: List[DateWindow]
    # Oldest first, each a full calendar month
    current_month: Optional[DateWindow]

    @property
    def monthly_span(self) -> Optional[DateWindow]:
        """One window covering every monthly window (a single API call)"""
        if not self.monthly:
            return None
        return DateWindow(self.monthly[0].start, self.monthly[-1].end)


def _as_date(value: DateLike) -> date:
    if isinstance(value, datetime):
        return value.date()
    return value


def _month_start(day: date) -> date:
    return day.replace(day=1)


def _next_month_start(day: date) -> date:
    return _month_start(day) + relativedelta(months=1)


def reporting_today(tz_name: Optional[str] = None) -> date:
    """Current calendar date in the timezone Search Console reports in"""
    tz = pytz.timezone(tz_name or settings.gsc_reporting_timezone)
    return datetime.now(tz).date()


def lag_boundary(today: Optional[date] = None, lag_days: Optional[int] = None) -> date:
    """Most recent date whose data is considered stable"""
    if lag_days is None:
        lag_days = settings.gsc_reporting_lag_days
    if lag_days < 0:
        raise ValueError("Reporting lag cannot be negative")
    today = _as_date(today) if today is not None else reporting_today()
    return today - timedelta(days=lag_days)


def daily_target_window(today: Optional[date] = None, lag_days: Optional[int] = None) -> DateWindow:
    """The single day at today - lag"""
    target = lag_boundary(today, lag_days)
    return DateWindow(target, target + timedelta(days=1))


def monthly_backfill_windows(
    campaign_start: Optional[DateLike],
    lag_days: Optional[int] = None,
    today: Optional[date] = None
) -> List[DateWindow]:
    """
    Month-bounded windows from the campaign start month through the lag boundary.

    The first window starts on the campaign start date and the last one ends
    after the lag boundary day; every window in between is a full calendar
    month. Returned oldest first.

    Raises:
        ConfigurationError: campaign has no start date
    """
    if campaign_start is None:
        raise ConfigurationError("Campaign has no start date, cannot compute backfill windows")

    start = _as_date(campaign_start)
    stop = lag_boundary(today, lag_days) + timedelta(days=1)

    windows = []
    cursor = start
    while cursor < stop:
        month_end = _next_month_start(cursor)
        windows.append(DateWindow(cursor, min(month_end, stop)))
        cursor = month_end
    return windows


def initial_position_window(
    campaign_start: Optional[DateLike],
    days: Optional[int] = None,
    lag_days: Optional[int] = None,
    today: Optional[date] = None
) -> Optional[DateWindow]:
    """
    The days immediately preceding the campaign start.

    Returns None until every day of the window has passed the reporting lag.
    """
    if campaign_start is None:
        raise ConfigurationError("Campaign has no start date, cannot compute initial position window")
    if days is None:
        days = settings.gsc_initial_position_days

    start_date = _as_date(campaign_start)
    if start_date - timedelta(days=1) > lag_boundary(today, lag_days):
        return None
    return DateWindow(start_date - timedelta(days=days), start_date)


def traffic_windows(
    today: Optional[date] = None,
    lag_days: Optional[int] = None,
    months: Optional[int] = None
) -> TrafficWindows:
    """
    Rolling traffic windows: the last N fully elapsed calendar months plus the
    running month containing the lag boundary.

    A month counts as elapsed only once its last day is on or before the lag
    boundary, so the month still being reported is never summarised.
    """
    if months is None:
        months = settings.gsc_traffic_months

    boundary = lag_boundary(today, lag_days)
    stop = boundary + timedelta(days=1)

    # Boundary on the last day of a month: that month is already over
    newest_end = stop if stop.day == 1 else _month_start(boundary)

    monthly = []
    end = newest_end
    for _ in range(months):
        start = end - relativedelta(months=1)
        monthly.append(DateWindow(start, end))
        end = start
    monthly.reverse()

    # Nothing of the running month is reportable yet
    current_month = None if stop.day == 1 else DateWindow(_month_start(boundary), stop)

    return TrafficWindows(monthly=monthly, current_month=current_month)
