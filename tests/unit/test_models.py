from datetime import datetime, timezone

import pytest

from staffing_engine.models import (
    Assignment,
    AssignmentStatus,
    CollectionResult,
    Job,
    JoinedRecord,
    Snapshot,
    StatusCounts,
    ViewState,
    Worker,
    WorkerStatus,
)

FETCHED_AT = datetime(2024, 6, 1, tzinfo=timezone.utc)


def test_worker_from_payload():
    worker = Worker.from_payload({
        'id': 'w1', 'firstName': 'Alex', 'lastName': 'Morgan', 'rating': '4.5',
        'completedJobs': 12, 'skills': ['Nursing', 'Nursing', 'Care'], 'status': 'Approved',
    })

    assert worker.full_name == "Alex Morgan"
    assert worker.rating == 4.5
    assert worker.skills == frozenset({'Nursing', 'Care'})
    assert worker.status is WorkerStatus.ACTIVE
    assert worker.raw_status == "Approved"
    assert not worker.is_flagged


def test_invalid_quantity_is_zeroed_and_flagged():
    assignment = Assignment.from_payload({'id': 'a1', 'rate': 'abc', 'hourlyRate': 18, 'hoursPerWeek': -4})

    assert assignment.rate == 0.0
    assert assignment.hours_per_week == 0.0
    assert assignment.coerced_fields == ('rate', 'hours_per_week')
    assert assignment.is_flagged
    assert assignment.effective_rate == 18.0


def test_unknown_status_falls_into_other_bucket():
    assignment = Assignment.from_payload({'id': 'a1', 'status': 'on_hold'})

    assert assignment.status is None
    assert assignment.raw_status == "on_hold"
    assert assignment.status_key == "other"


def test_job_salary_from_nested_object():
    job = Job.from_payload({'id': 'j1', 'salary': {'min': 18, 'max': '24'}, 'skills': 'Nursing, Care'})

    assert job.salary_min == 18.0
    assert job.salary_max == 24.0
    assert job.skills == ('Nursing', 'Care')


def test_placeholders_are_marked():
    worker = Worker.placeholder('w9')

    assert worker.id == 'w9'
    assert worker.full_name == "Unknown Worker"
    assert worker.is_placeholder
    assert Job.placeholder(None).title == "Unknown Job"


def test_with_status_returns_a_new_record():
    original = Assignment.from_payload({'id': 'a1', 'status': 'pending'})
    updated = original.with_status(AssignmentStatus.ACTIVE)

    assert original.status is AssignmentStatus.PENDING
    assert updated.status is AssignmentStatus.ACTIVE
    assert updated.raw_status == "active"


def test_collection_result_warnings():
    assert CollectionResult.failure('workers', 'HTTP 500').warning() == "workers: unavailable (HTTP 500)"
    truncated = CollectionResult.success('workers', [Worker('w1'), Worker('w2')], total=5, truncated=True)
    assert truncated.warning() == "workers: truncated at 2 of 5 records"
    assert not truncated.degraded
    partial = CollectionResult(name='documents', partial=True, failed_keys=('w2',))
    assert partial.degraded
    assert CollectionResult.success('workers', []).warning() is None


def test_snapshot_is_read_only_and_reports_degradation():
    snapshot = Snapshot(generation=1, fetched_at=FETCHED_AT, collections={
        'workers': CollectionResult.success('workers', [Worker('w1')]),
        'assignments': CollectionResult.failure('assignments', 'HTTP 500'),
    })

    with pytest.raises(TypeError):
        snapshot.collections['jobs'] = CollectionResult.success('jobs', [])

    assert snapshot.is_degraded
    assert snapshot.degraded_collections == ('assignments',)
    assert snapshot.records('assignments') == ()
    assert snapshot.records('jobs') == ()
    assert snapshot.warnings == ["assignments: unavailable (HTTP 500)"]


def test_replace_collection_keeps_the_original_snapshot():
    snapshot = Snapshot(generation=3, fetched_at=FETCHED_AT, collections={
        'workers': CollectionResult.success('workers', [Worker('w1')]),
    })
    replaced = snapshot.replace_collection(CollectionResult.success('workers', [Worker('w2')]))

    assert [w.id for w in snapshot.records('workers')] == ['w1']
    assert [w.id for w in replaced.records('workers')] == ['w2']
    assert replaced.generation == 3


def test_joined_record_attribute_fallthrough():
    assignment = Assignment(id='a1', worker_id='w1', status=AssignmentStatus.ACTIVE)
    joined = JoinedRecord(record=assignment, related={'worker': Worker('w1', first_name='Alex')})

    assert joined.worker.first_name == "Alex"
    assert joined.status is AssignmentStatus.ACTIVE
    assert joined.COLLECTION == "assignments"
    assert not joined.has_gaps
    with pytest.raises(AttributeError):
        joined.no_such_field


def test_status_counts_access():
    counts = StatusCounts(buckets={'pending': 1, 'active': 2, 'other': 0}, total=3)

    assert counts['active'] == 2
    assert counts['missing'] == 0
    assert counts.is_consistent
    assert counts.to_dict() == {'pending': 1, 'active': 2, 'other': 0, 'total': 3}


def test_view_state_value_prefers_derived_then_snapshot():
    snapshot = Snapshot(generation=1, fetched_at=FETCHED_AT, collections={
        'workers': CollectionResult.success('workers', [Worker('w1')]),
    })
    state = ViewState(view='v', snapshot=snapshot, derived={'total': 1})

    assert state.value('total') == 1
    assert state.value('workers')[0].id == 'w1'
    assert state.value('nothing', 'default') == 'default'
    assert state.generation == 1
