"""
Utility functions for StatTrack.

This package contains pure utility functions organized by domain:
- dates: Operating-zone calendar dates and recorded_at parsing
"""

from .dates import iter_days_back, parse_recorded_at, today_in_zone

__all__ = [
    "iter_days_back",
    "parse_recorded_at",
    "today_in_zone",
]
