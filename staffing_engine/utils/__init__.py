"""
Engine utilities

Shared helpers for value coercion and async fan-out. ``serialization``
depends on the models and is imported from its own module.
"""

from .async_utils import AsyncTimer, gather_with_concurrency
from .coercion import coerce_quantity, normalize_token, parse_datetime, parse_status

__all__ = [
    'AsyncTimer',
    'gather_with_concurrency',
    'coerce_quantity',
    'normalize_token',
    'parse_datetime',
    'parse_status'
]
