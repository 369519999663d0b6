"""
Filter and search engine

Applies a ``FilterSpec`` to denormalised records: status equality (with an
``all`` wildcard), case-insensitive substring search over dotted field paths
and an inclusive date range, combined with AND. Output keeps snapshot order
unless a ``SortSpec`` is given. The input is never modified.
"""

from dataclasses import dataclass, is_dataclass
from datetime import datetime, timedelta
from enum import Enum
from typing import Any, Iterable, Mapping, Optional, Sequence, Tuple

from ..aggregators.metric_aggregator import field_getter
from ..models import OTHER_BUCKET
from ..utils.coercion import normalize_token, parse_datetime

ALL_STATUSES = "all"
RECORD_LABELS = ("full_name", "company_name", "title", "name", "id")


@dataclass(frozen=True)
class SortSpec:
    """Sort by one field; missing values go last and ties fall back to id ascending"""
    field: str
    descending: bool = False


NAMED_SORTS = {
    "soonest_expiry": SortSpec("expiry_date"),
    "latest_expiry": SortSpec("expiry_date", descending=True),
    "newest": SortSpec("created_at", descending=True),
    "oldest": SortSpec("created_at"),
    "week": SortSpec("week_starting", descending=True),
    "amount": SortSpec("amount", descending=True),
    "rating": SortSpec("rating", descending=True),
}


@dataclass(frozen=True)
class FilterSpec:
    status: str = ALL_STATUSES
    search: str = ""
    search_fields: Tuple[str, ...] = ("id",)
    date_field: Optional[str] = None
    date_from: Optional[datetime] = None
    date_to: Optional[datetime] = None
    sort: Optional[SortSpec] = None

    @property
    def is_empty(self) -> bool:
        return (self.status_token in ("", ALL_STATUSES) and not self.search.strip()
                and self.date_from is None and self.date_to is None and self.sort is None)

    @property
    def status_token(self) -> str:
        return normalize_token(self.status)

    @classmethod
    def from_query(cls, query: Mapping[str, str], search_fields: Sequence[str] = ("id",),
                   date_field: Optional[str] = None) -> "FilterSpec":
        """Build a spec from request query parameters

        Recognises ``status``, ``search``, ``from``, ``to`` and ``sort``
        (a name from ``NAMED_SORTS``, or a field with an optional leading
        ``-`` for descending). A bare ``to`` date covers the whole day.

        Raises:
            ValueError: unparsable date
        """
        date_from = _parse_bound(query.get("from"), end_of_day=False)
        date_to = _parse_bound(query.get("to"), end_of_day=True)
        return cls(
            status=query.get("status") or ALL_STATUSES,
            search=query.get("search") or "",
            search_fields=tuple(search_fields),
            date_field=date_field,
            date_from=date_from,
            date_to=date_to,
            sort=parse_sort(query.get("sort")),
        )


def parse_sort(value: Optional[str]) -> Optional[SortSpec]:
    if not value:
        return None
    if value in NAMED_SORTS:
        return NAMED_SORTS[value]
    if value.startswith("-"):
        return SortSpec(value[1:], descending=True)
    return SortSpec(value)


def _parse_bound(value: Optional[str], end_of_day: bool) -> Optional[datetime]:
    if not value:
        return None
    parsed = parse_datetime(value)
    if parsed is None:
        raise ValueError(f"Invalid date: {value}")
    if end_of_day and len(value.strip()) == 10:
        return parsed + timedelta(days=1) - timedelta(microseconds=1)
    return parsed


def resolve_field(record: Any, path: str) -> Any:
    """Value at a dotted path such as ``worker.full_name``, or None"""
    return field_getter(path)(record)


def _text(value: Any) -> str:
    if value is None:
        return ""
    if isinstance(value, Enum):
        return str(value.value)
    if isinstance(value, (list, tuple, set, frozenset)):
        return " ".join(sorted(_text(v) for v in value))
    return str(value)


def matches_status(record: Any, status: str) -> bool:
    token = normalize_token(status)
    if token in ("", ALL_STATUSES):
        return True
    current = getattr(record, "status", None)
    if current is None:
        return token == OTHER_BUCKET
    return normalize_token(_text(current)) == token


def matches_search(record: Any, search: str, fields: Sequence[str]) -> bool:
    needle = search.strip().lower()
    if not needle:
        return True
    return any(needle in _text(resolve_field(record, path)).lower() for path in fields)


def matches_dates(record: Any, date_field: Optional[str], date_from: Optional[datetime],
                  date_to: Optional[datetime]) -> bool:
    if date_field is None or (date_from is None and date_to is None):
        return True
    value = resolve_field(record, date_field)
    if not isinstance(value, datetime):
        return False
    if date_from is not None and value < date_from:
        return False
    if date_to is not None and value > date_to:
        return False
    return True


def sort_records(records: Iterable[Any], sort: SortSpec) -> Tuple[Any, ...]:
    present = []
    missing = []
    for record in records:
        (missing if resolve_field(record, sort.field) is None else present).append(record)
    present.sort(key=lambda r: _text(getattr(r, "id", "")))
    present.sort(key=lambda r: _sort_value(resolve_field(r, sort.field)), reverse=sort.descending)
    return tuple(present + missing)


def _sort_value(value: Any) -> Tuple[int, float, str]:
    """Comparable key: numbers, then dates, then text; records sort by their label"""
    if isinstance(value, (bool, int, float)):
        return 0, float(value), ""
    if isinstance(value, datetime):
        return 1, value.timestamp(), ""
    if is_dataclass(value):
        value = next((label for label in (getattr(value, name, None) for name in RECORD_LABELS) if label), "")
    return 2, 0.0, _text(value).lower()


def apply_filter(records: Iterable[Any], spec: FilterSpec) -> Tuple[Any, ...]:
    """Records satisfying every active predicate of ``spec``"""
    selected = tuple(
        record for record in records
        if matches_status(record, spec.status)
        and matches_search(record, spec.search, spec.search_fields)
        and matches_dates(record, spec.date_field, spec.date_from, spec.date_to)
    )
    if spec.sort is not None:
        return sort_records(selected, spec.sort)
    return selected
