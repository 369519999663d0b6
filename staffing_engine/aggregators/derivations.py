"""
Derivations

A derivation is a named join or aggregate with declared inputs. Inputs name
either a snapshot collection or an earlier derivation. ``derive`` evaluates a
list of derivations in definition order and, given the set of changed inputs,
recomputes only the derivations that depend on them (transitively), reusing
every other previously computed value.
"""

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Callable, Dict, Iterable, List, Mapping, Optional, Sequence, Set, Tuple

from ..models import Snapshot

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Derivation:
    """Named derived value.

    Attributes:
        name: key in ``ViewState.derived``
        depends_on: snapshot collection keys or earlier derivation names
        compute: ``compute(inputs, as_of)`` where ``inputs`` maps each
            dependency to its records or derived value
    """
    name: str
    depends_on: Tuple[str, ...]
    compute: Callable[[Mapping[str, Any], datetime], Any]


def _inputs(derivation: Derivation, snapshot: Snapshot, values: Mapping[str, Any]) -> Dict[str, Any]:
    inputs = {}
    for dependency in derivation.depends_on:
        if dependency in values:
            inputs[dependency] = values[dependency]
        else:
            inputs[dependency] = snapshot.records(dependency)
    return inputs


def derive(snapshot: Snapshot, derivations: Sequence[Derivation], as_of: datetime,
           previous: Optional[Mapping[str, Any]] = None,
           changed: Optional[Iterable[str]] = None) -> Tuple[Dict[str, Any], Tuple[str, ...]]:
    """Evaluate derivations against a snapshot.

    Args:
        snapshot: source snapshot
        derivations: derivations in dependency order
        as_of: reference instant for time-windowed aggregates
        previous: values from the prior evaluation of the same derivations
        changed: collection keys that changed since ``previous``; None
            recomputes everything

    Returns:
        Tuple[Dict[str, Any], Tuple[str, ...]]: derived values and the names
        that were recomputed
    """
    values: Dict[str, Any] = {}
    recomputed: List[str] = []
    dirty: Optional[Set[str]] = set(changed) if changed is not None else None

    for derivation in derivations:
        stale = (
            dirty is None
            or previous is None
            or derivation.name not in previous
            or any(dependency in dirty for dependency in derivation.depends_on)
        )
        if stale:
            values[derivation.name] = derivation.compute(_inputs(derivation, snapshot, values), as_of)
            recomputed.append(derivation.name)
            if dirty is not None:
                dirty.add(derivation.name)
        else:
            values[derivation.name] = previous[derivation.name]

    logger.debug(f"Recomputed {len(recomputed)}/{len(derivations)} derivation(s)")
    return values, tuple(recomputed)


def dependents_of(derivations: Sequence[Derivation], changed: Iterable[str]) -> Tuple[str, ...]:
    """Names of the derivations affected by ``changed``, in definition order"""
    dirty = set(changed)
    affected = []
    for derivation in derivations:
        if any(dependency in dirty for dependency in derivation.depends_on):
            dirty.add(derivation.name)
            affected.append(derivation.name)
    return tuple(affected)
