"""
Calendar date ranges for usage queries.
"""

from dataclasses import dataclass
from datetime import date, datetime, timedelta
from typing import Optional, Tuple


def yyyymmdd(value: date) -> str:
    return value.strftime("%Y%m%d")


def parse_yyyymmdd(value: str) -> Optional[date]:
    """Parse a compact ``YYYYMMDD`` date, returning None when malformed."""
    if len(value) != 8 or not value.isascii() or not value.isdigit():
        return None
    try:
        return datetime.strptime(value, "%Y%m%d").date()
    except ValueError:
        return None


@dataclass(frozen=True)
class DateRange:
    """Inclusive local-date range with a display label.

    Dates are kept as ``YYYYMMDD`` strings so a malformed range can be
    represented; querying a malformed range yields zero totals.
    """
    since: str
    until: str
    label: str

    @classmethod
    def from_dates(cls, since: date, until: date, label: str) -> "DateRange":
        return cls(since=yyyymmdd(since), until=yyyymmdd(until), label=label)

    def bounds(self) -> Optional[Tuple[date, date]]:
        """Return (since, until) as dates, or None if either is malformed."""
        since = parse_yyyymmdd(self.since)
        until = parse_yyyymmdd(self.until)
        if since is None or until is None:
            return None
        return since, until


def _today(today: Optional[date]) -> date:
    return today if today is not None else datetime.now().date()


def range_today(today: Optional[date] = None) -> DateRange:
    day = _today(today)
    return DateRange.from_dates(day, day, "Today")


def range_week_monday(today: Optional[date] = None) -> DateRange:
    """Monday of the current week through today."""
    day = _today(today)
    since = day - timedelta(days=day.weekday())
    return DateRange.from_dates(since, day, "Week")


def range_month(today: Optional[date] = None) -> DateRange:
    day = _today(today)
    return DateRange.from_dates(day.replace(day=1), day, "Month")


def range_year(today: Optional[date] = None) -> DateRange:
    day = _today(today)
    return DateRange.from_dates(day.replace(month=1, day=1), day, "Year")
