"""
Date and time utilities for FolioImport.

Provides timezone-aware datetime helpers and the lenient trade-date parser
used when importing broker exports.
"""
from __future__ import annotations

import re
from datetime import datetime, timezone, date, time
from typing import Optional, Tuple, Union


def utcnow() -> datetime:
    """
    Get current UTC datetime with timezone info.

    Returns:
        datetime: Current datetime in UTC with tzinfo set to timezone.utc

    Note:
        Always use this function instead of datetime.now() to ensure
        timezone-aware timestamps across the application.
    """
    return datetime.now(timezone.utc)


def parse_ISO_date(v) -> date:
    if isinstance(v, datetime):
        return v.date()
    if isinstance(v, date):
        return v
    if isinstance(v, str):
        try:
            return date.fromisoformat(v)
        except ValueError as e:
            raise ValueError(f"Input must be an ISO date string (YYYY-MM-DD). Error: {e}")
    raise TypeError(f"Input must be a str, date or datetime, got {type(v)}")


def as_utc(value: datetime) -> datetime:
    """Attach UTC to naive datetimes (SQLite returns naive values) or convert aware ones."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


# ============================================================================
# TRADE DATE PARSING
# ============================================================================

# Formats carrying an explicit time of day
DATETIME_FORMATS = [
    "%Y-%m-%d %H:%M:%S",  # 2024-01-15 10:30:00
    "%Y-%m-%d %H:%M",  # 2024-01-15 10:30
    "%Y-%m-%d, %H:%M:%S",  # IBKR: 2024-01-15, 10:30:00
    "%Y%m%d;%H%M%S",  # IBKR flex: 20240115;103000
    "%d/%m/%Y %H:%M:%S",  # eToro: 15/01/2024 10:30:00
    "%d/%m/%Y %H:%M",
    ]

# Date-only formats, first match wins (US slash before European slash)
DATE_FORMATS = [
    "%Y-%m-%d",  # ISO: 2024-01-15
    "%m/%d/%Y",  # US: 01/15/2024
    "%d/%m/%Y",  # European: 15/01/2024 (only reached when day > 12)
    "%m-%d-%Y",  # US dash: 01-15-2024
    "%d-%m-%Y",  # European dash
    "%Y/%m/%d",  # ISO slash: 2024/01/15
    "%d.%m.%Y",  # German: 15.01.2024
    "%Y%m%d",  # Compact: 20240115
    "%b %d, %Y",  # Text: Jan 15, 2024
    "%b %d %Y",  # Text without comma: Jan 15 2024
    "%d %b %Y",  # Text: 15 Jan 2024
    "%B %d, %Y",  # Full text: January 15, 2024
    ]

_ISO_WITH_TIME = re.compile(r"^\d{4}-\d{2}-\d{2}T\d{2}:\d{2}")


def parse_trade_datetime(
    value: Union[str, date, datetime, None],
    now: Optional[datetime] = None,
    ) -> Optional[Tuple[datetime, bool]]:
    """
    Parse a free-text trade date into a UTC timestamp.

    When the source only carries a calendar date, the time of day is taken
    from ``now`` (the processing instant) so that imported rows keep a full
    timestamp.

    Args:
        value: Raw date cell (string, date or datetime)
        now: Processing instant (defaults to utcnow())

    Returns:
        (timestamp, has_time) where has_time tells whether the source carried
        a time of day, or None when the value cannot be parsed
    """
    if value is None:
        return None

    now = now or utcnow()

    if isinstance(value, datetime):
        return as_utc(value), True
    if isinstance(value, date):
        return _with_time_of(value, now), False

    cleaned = str(value).strip()
    if not cleaned:
        return None

    if _ISO_WITH_TIME.match(cleaned):
        try:
            return as_utc(datetime.fromisoformat(cleaned.replace("Z", "+00:00"))), True
        except ValueError:
            pass

    for fmt in DATETIME_FORMATS:
        try:
            return datetime.strptime(cleaned, fmt).replace(tzinfo=timezone.utc), True
        except ValueError:
            continue

    for fmt in DATE_FORMATS:
        try:
            parsed = datetime.strptime(cleaned, fmt).date()
        except ValueError:
            continue
        return _with_time_of(parsed, now), False

    return None


def _with_time_of(day: date, now: datetime) -> datetime:
    clock = as_utc(now).timetz()
    return datetime.combine(day, time(clock.hour, clock.minute, clock.second, clock.microsecond), tzinfo=timezone.utc)


def detect_date_format(sample: Optional[str]) -> Optional[str]:
    """
    Describe the date layout of a sample value (used as a hint for the operator).

    Slash dates are disambiguated by the component that exceeds 12; ambiguous
    values are reported as US (MM/DD/YYYY).

    Returns:
        A layout string such as "YYYY-MM-DD" or None when unrecognized
    """
    if not sample:
        return None
    sample = sample.strip()

    if re.match(r"^\d{4}-\d{2}-\d{2}", sample):
        return "YYYY-MM-DD"

    if re.match(r"^\d{1,2}/\d{1,2}/\d{4}", sample):
        first, second = (int(part) for part in sample.split("/")[:2])
        if first > 12:
            return "DD/MM/YYYY"
        if second > 12:
            return "MM/DD/YYYY"
        return "MM/DD/YYYY"

    if re.match(r"^\d{1,2}-\d{1,2}-\d{4}", sample):
        return "DD-MM-YYYY"

    if re.match(r"^[A-Za-z]{3}\s+\d{1,2}", sample):
        return "MMM DD, YYYY"

    return None
