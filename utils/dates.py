"""
Date and time utilities.

Snapshot dates are calendar days in one operator-chosen zone; every
date-sensitive decision receives ``clock_today`` explicitly.
"""

import logging
from datetime import date, datetime, timedelta, timezone
from typing import Iterator, Optional
from zoneinfo import ZoneInfo

logger = logging.getLogger(__name__)


def today_in_zone(tz_name: str, now: Optional[datetime] = None) -> date:
    """
    Return the current calendar date in the given IANA time zone.

    Args:
        tz_name: Zone such as "America/New_York".
        now: Optional aware datetime to convert (defaults to current UTC time).

    Returns:
        The local calendar date in ``tz_name``.

    Example:
        >>> today_in_zone("America/New_York", datetime(2026, 2, 3, 2, 0, tzinfo=timezone.utc))
        datetime.date(2026, 2, 2)
    """
    now = now or datetime.now(timezone.utc)
    if now.tzinfo is None:
        now = now.replace(tzinfo=timezone.utc)
    return now.astimezone(ZoneInfo(tz_name)).date()


def parse_recorded_at(value) -> Optional[date]:
    """
    Parse a stored ``recorded_at`` value into a date.

    Accepts date objects, "YYYY-MM-DD" strings and full ISO timestamps
    (only the date part is kept). Returns None for anything unparseable.
    """
    if value is None:
        return None
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value

    try:
        return date.fromisoformat(str(value).strip()[:10])
    except ValueError:
        logger.warning(f"Unparseable recorded_at value: {value!r}")
        return None


def iter_days_back(anchor: date, days: int) -> Iterator[date]:
    """Yield ``anchor`` and the ``days - 1`` calendar days before it, newest first."""
    for offset in range(days):
        yield anchor - timedelta(days=offset)
