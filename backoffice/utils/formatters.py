"""
Date and month formatting for exported documents and reports
(Japanese business style).
"""
import calendar
from datetime import date
from typing import Optional


def date_ja(value: Optional[date]) -> str:
    """Format a date as 2024年1月15日."""
    if value is None:
        return ""
    return f"{value.year}年{value.month}月{value.day}日"


def month_label(year: int, month: int) -> str:
    return f"{year}年{month}月"


def month_bounds(year: int, month: int):
    """First and last day of a month."""
    last_day = calendar.monthrange(year, month)[1]
    return date(year, month, 1), date(year, month, last_day)
