from datetime import datetime, timezone

from staffing_engine.aggregators.derivations import Derivation, dependents_of, derive
from staffing_engine.models import CollectionResult, Snapshot

NOW = datetime(2024, 6, 1, tzinfo=timezone.utc)


def _snapshot(**collections):
    return Snapshot(generation=1, fetched_at=NOW, collections={
        name: CollectionResult.success(name, records) for name, records in collections.items()
    })


def _tracking(calls):
    return (
        Derivation('job_count', ('jobs',), lambda i, _: calls.append('job_count') or len(i['jobs'])),
        Derivation('worker_count', ('workers',), lambda i, _: calls.append('worker_count') or len(i['workers'])),
        Derivation('headline', ('job_count',), lambda i, _: calls.append('headline') or f"{i['job_count']} jobs"),
    )


def test_derive_computes_everything_in_order():
    calls = []
    values, recomputed = derive(_snapshot(jobs=[1, 2], workers=[1]), _tracking(calls), NOW)

    assert values == {'job_count': 2, 'worker_count': 1, 'headline': "2 jobs"}
    assert recomputed == ('job_count', 'worker_count', 'headline')
    assert calls == ['job_count', 'worker_count', 'headline']


def test_derive_recomputes_only_dependents_of_changed_inputs():
    calls = []
    derivations = _tracking(calls)
    previous, _ = derive(_snapshot(jobs=[1, 2], workers=[1]), derivations, NOW)
    calls.clear()

    values, recomputed = derive(_snapshot(jobs=[1, 2, 3], workers=[1]), derivations, NOW,
                                previous=previous, changed={'jobs'})

    assert recomputed == ('job_count', 'headline')
    assert calls == ['job_count', 'headline']
    assert values['headline'] == "3 jobs"
    assert values['worker_count'] == 1


def test_missing_collection_is_an_empty_input():
    values, _ = derive(_snapshot(), _tracking([]), NOW)

    assert values['job_count'] == 0


def test_as_of_is_passed_through():
    seen = []
    derive(_snapshot(), [Derivation('clock', (), lambda i, as_of: seen.append(as_of))], NOW)

    assert seen == [NOW]


def test_dependents_of():
    derivations = _tracking([])

    assert dependents_of(derivations, {'jobs'}) == ('job_count', 'headline')
    assert dependents_of(derivations, {'clients'}) == ()
