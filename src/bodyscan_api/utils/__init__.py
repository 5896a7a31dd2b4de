"""Utility functions."""

from .dates import day_range, days_between, format_day, local_today, parse_day, utc_now

__all__ = ["day_range", "days_between", "format_day", "local_today", "parse_day", "utc_now"]
