"""
Filtering and pagination over fetched cloudcasts.

Pure functions: no I/O, no cache, no clock unless one is passed in.

Handles:
- Explicit date ranges: "2024-01-01" to "2024-03-31", both ends inclusive
- Day windows: shows from the last N days
- Page slicing with navigation metadata
"""

import math
from dataclasses import dataclass
from datetime import date, datetime, time, timedelta, timezone
from typing import List, Optional, Union

from models import CloudcastRecord

DateLike = Union[date, str, None]


def parse_date(value: DateLike) -> Optional[date]:
    """
    Parse a YYYY-MM-DD string (or pass a date through).

    Raises:
        ValueError: for malformed or impossible dates
    """
    if value is None or value == '':
        return None
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    return datetime.strptime(value.strip(), '%Y-%m-%d').date()


def filter_by_date_range(
    records: List[CloudcastRecord],
    start_date: DateLike = None,
    end_date: DateLike = None,
    tz: timezone = timezone.utc,
) -> List[CloudcastRecord]:
    """
    Keep records created within [start_date 00:00:00, end_date 23:59:59].

    Args:
        records: Records to filter
        start_date: Start date (inclusive), open if None
        end_date: End date (inclusive), open if None
        tz: Timezone the calendar dates are read in

    Returns:
        Filtered list; the input itself when no bound is given
    """
    start = parse_date(start_date)
    end = parse_date(end_date)
    if start is None and end is None:
        return records

    lower = datetime.combine(start, time(0, 0, 0), tzinfo=tz) if start else None
    upper = datetime.combine(end, time(23, 59, 59), tzinfo=tz) if end else None

    filtered = []
    for record in records:
        if lower and record.created_at < lower:
            continue
        if upper and record.created_at > upper:
            continue
        filtered.append(record)
    return filtered


def filter_by_recency_window(
    records: List[CloudcastRecord],
    days: int,
    now: Optional[datetime] = None,
) -> List[CloudcastRecord]:
    """Keep records created in the last `days` days."""
    now = now or datetime.now(timezone.utc)
    cutoff = now - timedelta(days=days)
    return [r for r in records if r.created_at >= cutoff]


def apply_date_filters(
    records: List[CloudcastRecord],
    start_date: DateLike = None,
    end_date: DateLike = None,
    days: int = 0,
    now: Optional[datetime] = None,
) -> List[CloudcastRecord]:
    """Explicit date range wins over the day window; days <= 0 means no window."""
    if parse_date(start_date) or parse_date(end_date):
        return filter_by_date_range(records, start_date, end_date)
    if days and days > 0:
        return filter_by_recency_window(records, days, now)
    return records


@dataclass
class Page:
    """One page of records plus navigation metadata."""

    items: List[CloudcastRecord]
    total_items: int
    total_pages: int
    current_page: int
    per_page: int

    @property
    def has_prev(self) -> bool:
        return self.current_page > 1

    @property
    def has_next(self) -> bool:
        return self.current_page < self.total_pages

    def meta(self) -> dict:
        return {
            'total_items': self.total_items,
            'total_pages': self.total_pages,
            'current_page': self.current_page,
            'per_page': self.per_page,
            'has_prev': self.has_prev,
            'has_next': self.has_next,
        }


def paginate(records: List[CloudcastRecord], page: int = 1, per_page: int = 10) -> Page:
    """
    Slice one page out of records.

    page is clamped to [1, total_pages]; per_page below 1 is treated as 1.
    An empty input gives total_pages=0 and an empty page 1.
    """
    per_page = max(1, int(per_page))
    total_items = len(records)
    total_pages = math.ceil(total_items / per_page)

    current = max(1, min(int(page), max(1, total_pages)))
    start = (current - 1) * per_page
    return Page(
        items=records[start:start + per_page],
        total_items=total_items,
        total_pages=total_pages,
        current_page=current,
        per_page=per_page,
    )
