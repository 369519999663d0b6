"""
Metric aggregator

Pure reductions over snapshot records (raw entities or ``JoinedRecord``s):
status-bucket counts, sums with a rate fallback chain, clamped rates,
expiry windows and period buckets. Nothing here mutates its input.

Field arguments accept either a callable or a dotted attribute path such as
``"worker.rating"``.
"""

from collections import OrderedDict
from datetime import datetime, timedelta
from enum import Enum
from typing import Any, Callable, Dict, Iterable, List, Mapping, Optional, Sequence, Tuple, Type, Union

from ..models import OTHER_BUCKET, ExpiryBreakdown, PeriodBucket, StatusCounts, first_positive
from ..utils.coercion import coerce_quantity, normalize_token

Field = Union[str, Callable[[Any], Any]]
Predicate = Callable[[Any], bool]

UNDATED_BUCKET = "undated"
PERIODS = ("day", "week", "month")


def field_getter(spec: Optional[Field]) -> Callable[[Any], Any]:
    """Turn a dotted path or callable into a getter returning None on gaps"""
    if spec is None:
        return lambda record: record
    if callable(spec):
        return spec
    path = spec.split(".")

    def _get(record):
        value = record
        for part in path:
            if value is None:
                return None
            if isinstance(value, Mapping):
                value = value.get(part)
            else:
                value = getattr(value, part, None)
        return value
    return _get


def _where(records: Iterable[Any], where: Optional[Predicate]) -> List[Any]:
    return [record for record in records if where is None or where(record)]


def _status_token(record: Any) -> str:
    status = record.get("status") if isinstance(record, Mapping) else getattr(record, "status", None)
    if isinstance(status, Enum):
        return status.value
    if status is None:
        return OTHER_BUCKET
    return str(status)


def status_counts(records: Iterable[Any],
                  statuses: Union[Type[Enum], Iterable[str], None] = None,
                  where: Optional[Predicate] = None) -> StatusCounts:
    """Partition records by status.

    Args:
        records: records to count
        statuses: the status enumeration (or the bucket names) to report;
            every known status gets a bucket even when empty
        where: optional pre-filter

    Returns:
        StatusCounts: one bucket per known status plus ``other``; the buckets
        always sum to ``total``
    """
    selected = _where(records, where)
    if statuses is None:
        known = []
        for record in selected:
            enum_cls = getattr(record, "STATUS_ENUM", None)
            if enum_cls is not None:
                known = [member.value for member in enum_cls]
                break
    elif isinstance(statuses, type) and issubclass(statuses, Enum):
        known = [member.value for member in statuses]
    else:
        known = list(statuses)

    lookup = {normalize_token(name): name for name in known}
    buckets: Dict[str, int] = OrderedDict((name, 0) for name in known)
    buckets[OTHER_BUCKET] = 0
    for record in selected:
        bucket = lookup.get(normalize_token(_status_token(record)), OTHER_BUCKET)
        buckets[bucket] += 1
    return StatusCounts(buckets=buckets, total=len(selected))


def _quantity(value: Any) -> float:
    number, _ = coerce_quantity(value)
    return number


def total_of(records: Iterable[Any], value: Field, where: Optional[Predicate] = None) -> float:
    """Σ value over the records matching ``where``; invalid values count as 0"""
    getter = field_getter(value)
    return sum(_quantity(getter(record)) for record in _where(records, where))


def labour_cost(records: Iterable[Any], hours: Field, rates: Sequence[Field],
                where: Optional[Predicate] = None) -> float:
    """Σ hours × rate, where rate is the first present positive value of
    ``rates`` (e.g. the timesheet rate, then the assignment rate), else 0.
    """
    hours_getter = field_getter(hours)
    rate_getters = [field_getter(rate) for rate in rates]
    total = 0.0
    for record in _where(records, where):
        rate = first_positive(*(_quantity(getter(record)) for getter in rate_getters))
        total += _quantity(hours_getter(record)) * rate
    return total


def ratio(numerator: float, denominator: float) -> float:
    """numerator / denominator clamped to [0, 1]; 0 when the denominator is not positive"""
    if not denominator or denominator <= 0:
        return 0.0
    value = numerator / denominator
    if value != value:
        return 0.0
    return max(0.0, min(1.0, value))


def _dated(records: Iterable[Any], date: Field) -> List[Tuple[Any, Optional[datetime]]]:
    getter = field_getter(date)
    return [(record, getter(record)) for record in records]


def expiring_soon(records: Iterable[Any], now: datetime, days: int = 30,
                  date: Field = "expiry_date") -> Tuple[Any, ...]:
    """Records whose date lies in (now, now + days]"""
    horizon = now + timedelta(days=days)
    return tuple(record for record, when in _dated(records, date)
                 if when is not None and now < when <= horizon)


def overdue(records: Iterable[Any], now: datetime, date: Field = "expiry_date") -> Tuple[Any, ...]:
    """Records whose date is strictly before now"""
    return tuple(record for record, when in _dated(records, date)
                 if when is not None and when < now)


def due_for_renewal(records: Iterable[Any], now: datetime, soon_days: int = 30,
                    renewal_days: int = 90, date: Field = "expiry_date") -> Tuple[Any, ...]:
    """Records whose date lies in (now + soon_days, now + renewal_days]"""
    start = now + timedelta(days=soon_days)
    end = now + timedelta(days=renewal_days)
    return tuple(record for record, when in _dated(records, date)
                 if when is not None and start < when <= end)


def expiry_breakdown(records: Iterable[Any], now: datetime, soon_days: int = 30,
                     renewal_days: int = 90, date: Field = "expiry_date") -> ExpiryBreakdown:
    """Partition records by distance to their expiry date.

    A date exactly equal to ``now`` is neither overdue nor expiring soon and
    is counted under ``expires_now``.
    """
    soon = now + timedelta(days=soon_days)
    renewal = now + timedelta(days=renewal_days)
    counts = dict(overdue=0, expires_now=0, expiring_soon=0, due_for_renewal=0,
                  up_to_date=0, no_expiry=0)
    for _, when in _dated(records, date):
        if when is None:
            counts["no_expiry"] += 1
        elif when < now:
            counts["overdue"] += 1
        elif when == now:
            counts["expires_now"] += 1
        elif when <= soon:
            counts["expiring_soon"] += 1
        elif when <= renewal:
            counts["due_for_renewal"] += 1
        else:
            counts["up_to_date"] += 1
    return ExpiryBreakdown(**counts)


def period_key(when: Optional[datetime], period: str = "month") -> str:
    if when is None:
        return UNDATED_BUCKET
    if period == "day":
        return when.strftime("%Y-%m-%d")
    if period == "week":
        year, week, _ = when.isocalendar()
        return f"{year}-W{week:02d}"
    if period == "month":
        return when.strftime("%Y-%m")
    raise ValueError(f"Unsupported period: {period}")


def bucket_by_period(records: Iterable[Any], date: Field, value: Optional[Field] = None,
                     period: str = "month", where: Optional[Predicate] = None) -> Tuple[PeriodBucket, ...]:
    """Group records by the period of ``date``.

    Buckets come back in chronological order with ``undated`` last. Summing
    ``count`` and ``total`` across buckets gives the ungrouped count and sum.

    Raises:
        ValueError: unknown ``period``
    """
    if period not in PERIODS:
        raise ValueError(f"Unsupported period: {period}")
    value_getter = field_getter(value) if value is not None else None
    counts: Dict[str, int] = {}
    totals: Dict[str, float] = {}
    for record, when in _dated(_where(records, where), date):
        key = period_key(when, period)
        counts[key] = counts.get(key, 0) + 1
        totals[key] = totals.get(key, 0.0) + (_quantity(value_getter(record)) if value_getter else 0.0)

    ordered = sorted(k for k in counts if k != UNDATED_BUCKET)
    if UNDATED_BUCKET in counts:
        ordered.append(UNDATED_BUCKET)
    return tuple(PeriodBucket(period=key, count=counts[key], total=totals[key]) for key in ordered)


def average(values: Iterable[Any]) -> float:
    numbers = [_quantity(value) for value in values]
    if not numbers:
        return 0.0
    return sum(numbers) / len(numbers)


def top_n(scores: Union[Mapping[str, float], Iterable[Tuple[str, float]]], n: int = 5) -> List[Tuple[str, float]]:
    """Highest ``n`` scores, ties broken by key ascending"""
    items = scores.items() if isinstance(scores, Mapping) else scores
    return sorted(items, key=lambda item: (-item[1], item[0]))[:max(0, n)]


def distribution(records: Iterable[Any], key: Field, where: Optional[Predicate] = None) -> Dict[str, int]:
    """Count occurrences of ``key``; iterable values (skill sets) count each member once.

    Ordered by count descending, then key ascending.
    """
    getter = field_getter(key)
    counts: Dict[str, int] = {}
    for record in _where(records, where):
        value = getter(record)
        if value is None:
            continue
        members = value if isinstance(value, (list, tuple, set, frozenset)) else (value,)
        for member in set(members):
            label = member.value if isinstance(member, Enum) else str(member)
            counts[label] = counts.get(label, 0) + 1
    return dict(top_n(counts, len(counts)))


def group_by(records: Iterable[Any], key: Field) -> Dict[Optional[str], Tuple[Any, ...]]:
    """Group records by ``key`` preserving input order within each group"""
    getter = field_getter(key)
    groups: Dict[Optional[str], List[Any]] = {}
    for record in records:
        groups.setdefault(getter(record), []).append(record)
    return {k: tuple(v) for k, v in groups.items()}
