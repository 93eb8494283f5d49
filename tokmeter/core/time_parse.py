"""
Timestamp parsing for log entries.

Log files from different tools and tool versions write timestamps in
several textual forms. Every accepted form is normalized to an absolute
instant (epoch milliseconds) plus the calendar date it falls on in the
viewer's local timezone.

Accepted forms, tried in order:
1. RFC 3339 date-time with ``Z`` or ``+HH:MM`` offset
2. ``YYYY-MM-DDTHH:MM:SS[.fff]`` (or with a space) without offset, local time
3. ``YYYY-MM-DD``, UTC midnight
4. ``YYYY/MM/DD``, local midnight

Pure digit strings are rejected; they are never read as epoch values.
"""

import re
from dataclasses import dataclass
from datetime import date, datetime, timedelta, timezone, tzinfo
from typing import Optional

_EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)

_RFC3339_RE = re.compile(
    r"^(\d{4})-(\d{2})-(\d{2})[Tt ](\d{2}):(\d{2}):(\d{2})(?:\.(\d+))?([Zz]|[+-]\d{2}:\d{2})$"
)
_LOCAL_DATETIME_RE = re.compile(
    r"^(\d{4})-(\d{1,2})-(\d{1,2})[T ](\d{1,2}):(\d{1,2}):(\d{1,2})(?:\.(\d+))?$"
)
_DASH_DATE_RE = re.compile(r"^(\d{4})-(\d{1,2})-(\d{1,2})$")
_SLASH_DATE_RE = re.compile(r"^(\d{4})/(\d{1,2})/(\d{1,2})$")


@dataclass(frozen=True)
class ParsedTimestamp:
    """An absolute instant and its local calendar date."""
    millis: int
    local_date: date


def _microseconds(fraction: Optional[str]) -> int:
    if not fraction:
        return 0
    return int((fraction + "000000")[:6])


def _offset(text: str) -> timezone:
    if text in ("Z", "z"):
        return timezone.utc
    sign = -1 if text[0] == "-" else 1
    hours, minutes = int(text[1:3]), int(text[4:6])
    if hours > 23 or minutes > 59:
        raise ValueError(f"invalid offset: {text}")
    return timezone(sign * timedelta(hours=hours, minutes=minutes))


def _to_millis(instant: datetime) -> int:
    return (instant - _EPOCH) // timedelta(milliseconds=1)


def _from_aware(instant: datetime, tz: Optional[tzinfo]) -> ParsedTimestamp:
    return ParsedTimestamp(
        millis=_to_millis(instant),
        local_date=instant.astimezone(tz).date(),
    )


def _from_local_naive(naive: datetime, tz: Optional[tzinfo]) -> ParsedTimestamp:
    # A naive datetime passed to astimezone() is read as system local time.
    local = naive.astimezone() if tz is None else naive.replace(tzinfo=tz)
    return ParsedTimestamp(millis=_to_millis(local), local_date=local.date())


def _parse_rfc3339(match: "re.Match[str]", tz: Optional[tzinfo]) -> ParsedTimestamp:
    year, month, day, hour, minute, second = (int(g) for g in match.groups()[:6])
    instant = datetime(
        year, month, day, hour, minute, second,
        _microseconds(match.group(7)),
        tzinfo=_offset(match.group(8)),
    )
    return _from_aware(instant, tz)


def _parse_local_datetime(match: "re.Match[str]", tz: Optional[tzinfo]) -> ParsedTimestamp:
    year, month, day, hour, minute, second = (int(g) for g in match.groups()[:6])
    naive = datetime(year, month, day, hour, minute, second, _microseconds(match.group(7)))
    return _from_local_naive(naive, tz)


def parse_timestamp(value: str, tz: Optional[tzinfo] = None) -> Optional[ParsedTimestamp]:
    """Parse a log timestamp.

    Args:
        value: Raw timestamp text
        tz: Timezone used as "local"; defaults to the system timezone

    Returns:
        ParsedTimestamp, or None if the text is not an accepted form
    """
    trimmed = value.strip()
    if not trimmed:
        return None

    if trimmed.isascii() and trimmed.isdigit():
        return None

    try:
        match = _RFC3339_RE.match(trimmed)
        if match:
            return _parse_rfc3339(match, tz)

        match = _LOCAL_DATETIME_RE.match(trimmed)
        if match:
            return _parse_local_datetime(match, tz)

        match = _DASH_DATE_RE.match(trimmed)
        if match:
            year, month, day = (int(g) for g in match.groups())
            return _from_aware(datetime(year, month, day, tzinfo=timezone.utc), tz)

        match = _SLASH_DATE_RE.match(trimmed)
        if match:
            year, month, day = (int(g) for g in match.groups())
            return _from_local_naive(datetime(year, month, day), tz)
    except (ValueError, OverflowError):
        return None

    return None


def local_date_in_range(
    value: str,
    since: date,
    until: date,
    tz: Optional[tzinfo] = None,
) -> bool:
    """Whether a timestamp's local date falls inside [since, until].

    Unparseable timestamps are never in range.
    """
    parsed = parse_timestamp(value, tz)
    if parsed is None:
        return False
    return since <= parsed.local_date <= until
