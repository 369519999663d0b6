"""
Join resolver

Builds denormalised records by exact id lookup across the collections of one
snapshot. A reference to a record that is not in the snapshot resolves to the
entity's placeholder (``Unknown Worker``, ``Unknown Job``...) and is listed in
``JoinedRecord.missing``; the record itself is never dropped.

All functions here are pure: identical inputs give equal outputs in input
order.
"""

import logging
from dataclasses import dataclass
from typing import Any, Callable, Dict, Iterable, List, Mapping, Optional, Sequence, Tuple

from ..models import Assignment, Client, Job, JoinedRecord, Worker

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Relation:
    """One foreign key to resolve.

    Attributes:
        name: attribute under which the referenced record is embedded
        key: returns the foreign key of a record (or of the partially joined
            record, so later relations can follow earlier ones)
        target: id index of the referenced collection
        placeholder: builds the stand-in for a missing reference
    """
    name: str
    key: Callable[[Any], Optional[str]]
    target: Mapping[str, Any]
    placeholder: Optional[Callable[[Optional[str]], Any]] = None


def index_by_id(records: Iterable[Any]) -> Dict[str, Any]:
    """Map id -> record, keeping the first record for a repeated id."""
    index: Dict[str, Any] = {}
    for record in records:
        record_id = getattr(record, "id", None)
        if record_id is None or record_id in index:
            continue
        index[record_id] = record
    return index


def resolve(index: Mapping[str, Any], record_id: Optional[str],
            placeholder: Optional[Callable[[Optional[str]], Any]] = None) -> Tuple[Any, bool]:
    """Look up ``record_id``.

    Returns:
        Tuple[Any, bool]: the referenced record (or placeholder, or None when
        no placeholder factory is given) and whether the lookup missed
    """
    if record_id is not None and record_id in index:
        return index[record_id], False
    return (placeholder(record_id) if placeholder else None), True


def denormalize(records: Iterable[Any], relations: Sequence[Relation]) -> Tuple[JoinedRecord, ...]:
    """Embed every relation into each record.

    Relations are resolved in order; a relation's ``key`` receives a
    ``JoinedRecord`` holding the relations resolved so far, which lets a
    timesheet reach its job through its assignment.
    """
    joined: List[JoinedRecord] = []
    for record in records:
        related: Dict[str, Any] = {}
        missing: List[str] = []
        for relation in relations:
            partial = JoinedRecord(record=record, related=related)
            value, missed = resolve(relation.target, relation.key(partial), relation.placeholder)
            related[relation.name] = value
            if missed:
                missing.append(relation.name)
        joined.append(JoinedRecord(record=record, related=related, missing=tuple(missing)))
    return tuple(joined)


def count_gaps(joined: Iterable[JoinedRecord]) -> int:
    return sum(1 for record in joined if record.has_gaps)


def join_assignments(assignments: Iterable[Assignment], jobs: Iterable[Job] = (),
                     workers: Iterable[Worker] = (), clients: Iterable[Client] = ()) -> Tuple[JoinedRecord, ...]:
    """Assignments with their job, worker and client inline"""
    job_index = index_by_id(jobs)
    return denormalize(assignments, (
        Relation("job", lambda r: r.job_id, job_index, Job.placeholder),
        Relation("worker", lambda r: r.worker_id, index_by_id(workers), Worker.placeholder),
        Relation("client", lambda r: r.client_id or _job_client(job_index, r.job_id),
                 index_by_id(clients), Client.placeholder),
    ))


def join_timesheets(timesheets: Iterable[Any], assignments: Iterable[Assignment] = (),
                    workers: Iterable[Worker] = (), jobs: Iterable[Job] = (),
                    clients: Iterable[Client] = ()) -> Tuple[JoinedRecord, ...]:
    """Timesheets with assignment, worker, job and client inline.

    The job comes from the timesheet's own ``job_id`` when present, otherwise
    from its assignment.
    """
    return denormalize(timesheets, (
        Relation("assignment", lambda r: r.assignment_id, index_by_id(assignments), Assignment.placeholder),
        Relation("worker", lambda r: r.worker_id or r.assignment.worker_id,
                 index_by_id(workers), Worker.placeholder),
        Relation("job", lambda r: r.job_id or r.assignment.job_id, index_by_id(jobs), Job.placeholder),
        Relation("client", lambda r: r.client_id or r.assignment.client_id or r.job.client_id,
                 index_by_id(clients), Client.placeholder),
    ))


def join_documents(documents: Iterable[Any], workers: Iterable[Worker] = ()) -> Tuple[JoinedRecord, ...]:
    return denormalize(documents, (
        Relation("worker", lambda r: r.worker_id, index_by_id(workers), Worker.placeholder),
    ))


def join_payments(payments: Iterable[Any], workers: Iterable[Worker] = ()) -> Tuple[JoinedRecord, ...]:
    return denormalize(payments, (
        Relation("worker", lambda r: r.worker_id, index_by_id(workers), Worker.placeholder),
    ))


def join_referrals(referrals: Iterable[Any], workers: Iterable[Worker] = ()) -> Tuple[JoinedRecord, ...]:
    """Referrals with the referring worker inline as ``referrer``"""
    return denormalize(referrals, (
        Relation("referrer", lambda r: r.referrer_id, index_by_id(workers), Worker.placeholder),
    ))


def _job_client(job_index: Mapping[str, Job], job_id: Optional[str]) -> Optional[str]:
    job = job_index.get(job_id) if job_id else None
    return job.client_id if job is not None else None
