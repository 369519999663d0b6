"""
Value coercion helpers

Gateway payloads are loosely typed: numbers arrive as strings, dates as ISO
text with or without a zone, statuses in whatever case the screen that wrote
them used. These helpers turn them into engine values without raising.
"""

import math
from datetime import datetime, date, timezone
from enum import Enum
from typing import Any, Dict, Iterable, Optional, Tuple, Type, TypeVar

E = TypeVar('E', bound=Enum)


def coerce_quantity(value: Any) -> Tuple[float, bool]:
    """Coerce a money or hours value to a non-negative float.

    Returns:
        Tuple[float, bool]: the value and whether it had to be coerced.
        Missing values (None) become 0.0 without being flagged.
    """
    if value is None:
        return 0.0, False
    if isinstance(value, bool):
        return 0.0, True
    try:
        number = float(value)
    except (TypeError, ValueError):
        return 0.0, True
    if math.isnan(number) or math.isinf(number) or number < 0:
        return 0.0, True
    return number, False


def coerce_count(value: Any) -> Tuple[int, bool]:
    """Coerce a counter (completed jobs etc.) to a non-negative int."""
    number, coerced = coerce_quantity(value)
    return int(number), coerced


def coerce_rating(value: Any, maximum: float = 5.0) -> Tuple[float, bool]:
    """Coerce a rating into [0, maximum]."""
    number, coerced = coerce_quantity(value)
    if number > maximum:
        return maximum, True
    return number, coerced


def parse_datetime(value: Any) -> Optional[datetime]:
    """Parse ISO text, dates or epoch seconds into an aware UTC datetime.

    Unparsable input yields None.
    """
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        parsed = value
    elif isinstance(value, date):
        parsed = datetime(value.year, value.month, value.day)
    elif isinstance(value, (int, float)) and not isinstance(value, bool):
        try:
            return datetime.fromtimestamp(float(value), tz=timezone.utc)
        except (OverflowError, OSError, ValueError):
            return None
    else:
        text = str(value).strip()
        if not text:
            return None
        try:
            parsed = datetime.fromisoformat(text.replace("Z", "+00:00"))
        except ValueError:
            return None
    if parsed.tzinfo is None:
        return parsed.replace(tzinfo=timezone.utc)
    return parsed.astimezone(timezone.utc)


def normalize_token(value: Any) -> str:
    """Lower-case a status-like value and fold separators to underscores."""
    if value is None:
        return ""
    text = str(value).strip().lower()
    for separator in ("-", " "):
        text = text.replace(separator, "_")
    return text


def parse_status(enum_cls: Type[E], value: Any,
                 aliases: Optional[Dict[str, str]] = None) -> Optional[E]:
    """Match a raw status against an enumeration.

    Matching is case-insensitive on member values; ``aliases`` maps extra
    normalised tokens to member values. Unknown values return None so the
    caller can place the record in the catch-all bucket.
    """
    token = normalize_token(value)
    if not token:
        return None
    if aliases and token in aliases:
        token = aliases[token]
    for member in enum_cls:
        if normalize_token(member.value) == token:
            return member
    return None


def as_text(value: Any, default: str = "") -> str:
    if value is None:
        return default
    return str(value)


def as_id(value: Any) -> Optional[str]:
    """Foreign keys may be ints on some endpoints; ids are compared as text."""
    if value is None or value == "":
        return None
    return str(value)


def as_string_tuple(values: Any) -> Tuple[str, ...]:
    """Normalise a skills/requirements list, preserving order."""
    if values is None:
        return ()
    if isinstance(values, str):
        values = [part for part in values.split(",")]
    if not isinstance(values, Iterable):
        return ()
    return tuple(str(item).strip() for item in values if item is not None and str(item).strip())
