"""
JSON serialisation of engine values
"""

from dataclasses import fields, is_dataclass
from datetime import date, datetime
from enum import Enum
from typing import Any, Mapping

from ..models import JoinedRecord


def to_jsonable(value: Any) -> Any:
    """Convert engine values (dataclasses, enums, datetimes, mapping proxies,
    tuples and sets) into plain JSON types.

    A ``JoinedRecord`` is flattened: the record's fields with the related
    records nested under their relation names, plus ``missing``.
    """
    if value is None or isinstance(value, (str, int, float, bool)):
        return value
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    if isinstance(value, JoinedRecord):
        body = to_jsonable(value.record)
        if not isinstance(body, dict):
            body = {'record': body}
        for name, related in value.related.items():
            body[name] = to_jsonable(related)
        body['missing'] = list(value.missing)
        return body
    if is_dataclass(value) and not isinstance(value, type):
        return {f.name: to_jsonable(getattr(value, f.name)) for f in fields(value)}
    if isinstance(value, Mapping):
        return {str(k): to_jsonable(v) for k, v in value.items()}
    if isinstance(value, frozenset) or isinstance(value, set):
        return sorted(to_jsonable(v) for v in value)
    if isinstance(value, (list, tuple)):
        return [to_jsonable(v) for v in value]
    return str(value)
