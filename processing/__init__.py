"""Processing module - Date filtering and pagination."""

from .filters import (
    Page,
    apply_date_filters,
    filter_by_date_range,
    filter_by_recency_window,
    paginate,
    parse_date,
)

__all__ = [
    'Page',
    'apply_date_filters',
    'filter_by_date_range',
    'filter_by_recency_window',
    'paginate',
    'parse_date',
]
