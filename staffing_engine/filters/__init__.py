"""
Filters

Status, substring and date-range filtering over denormalised records.
"""

from .filter_engine import FilterSpec, SortSpec, apply_filter

__all__ = [
    'FilterSpec',
    'SortSpec',
    'apply_filter'
]
