import asyncio

import pytest

from staffing_engine.coordinators.fetch_orchestrator import (
    FanOutRequest,
    FetchOrchestrator,
    ResourceRequest,
    attribute_name,
    extract_page,
)
from staffing_engine.exceptions import AuthExpiredException, TransportFailure
from staffing_engine.models import GatewayResponse, Worker

DOCUMENTS = FanOutRequest('documents', parent='workers', owner_field='workerId')


def _workers(count):
    return [{'id': f'w{i}', 'firstName': f'Worker{i}', 'status': 'active'} for i in range(1, count + 1)]


@pytest.mark.asyncio
async def test_fetch_builds_one_snapshot(gateway, config):
    orchestrator = FetchOrchestrator(gateway, config, name="test")

    snapshot = await orchestrator.fetch([ResourceRequest('workers'), ResourceRequest('clients')])

    assert snapshot.generation == 1
    assert not snapshot.is_degraded
    assert all(isinstance(w, Worker) for w in snapshot.records('workers'))
    assert [c.id for c in snapshot.records('clients')] == ['c1', 'c2']
    assert snapshot.get('workers').total == 2
    assert orchestrator.latest is snapshot


@pytest.mark.asyncio
async def test_failed_collection_does_not_affect_siblings(gateway, config):
    gateway.fail('assignments', "HTTP 500: upstream down")
    orchestrator = FetchOrchestrator(gateway, config)

    snapshot = await orchestrator.fetch([
        ResourceRequest('workers'), ResourceRequest('assignments'), ResourceRequest('clients'),
    ])

    failed = snapshot.get('assignments')
    assert not failed.ok
    assert failed.records == ()
    assert failed.error == "HTTP 500: upstream down"
    assert len(snapshot.records('workers')) == 2
    assert len(snapshot.records('clients')) == 2
    assert snapshot.is_degraded
    assert snapshot.degraded_collections == ('assignments',)


@pytest.mark.asyncio
async def test_raised_errors_degrade_only_their_collection(gateway, config, monkeypatch):
    original_list = gateway.list

    async def flaky(collection, filters=None):
        if collection == 'payments':
            raise TransportFailure('payments', "connection reset")
        if collection == 'referrals':
            raise KeyError('items')
        return await original_list(collection, filters)

    monkeypatch.setattr(gateway, 'list', flaky)

    snapshot = await FetchOrchestrator(gateway, config).fetch([
        ResourceRequest('payments'), ResourceRequest('referrals'), ResourceRequest('workers'),
    ])

    assert snapshot.get('payments').error == "Request for payments failed: connection reset"
    assert snapshot.get('referrals').error.startswith("unexpected error")
    assert snapshot.degraded_collections == ('payments', 'referrals')
    assert len(snapshot.records('workers')) == 2


@pytest.mark.asyncio
async def test_pages_are_followed_until_has_next_is_false(make_gateway, config):
    gateway = make_gateway({'workers': _workers(5)})

    snapshot = await FetchOrchestrator(gateway, config).fetch([ResourceRequest('workers')])

    assert [filters['page'] for _, filters in gateway.calls] == [1, 2, 3]
    assert all(filters['limit'] == 2 for _, filters in gateway.calls)
    assert [w.id for w in snapshot.records('workers')] == ['w1', 'w2', 'w3', 'w4', 'w5']
    assert snapshot.get('workers').total == 5
    assert not snapshot.get('workers').truncated


@pytest.mark.asyncio
async def test_fetch_stops_at_max_records_and_flags_truncation(make_gateway, config):
    gateway = make_gateway({'workers': _workers(5)})
    config.fetch.max_records = 3

    snapshot = await FetchOrchestrator(gateway, config).fetch([ResourceRequest('workers')])

    result = snapshot.get('workers')
    assert len(result.records) == 3
    assert result.truncated
    assert result.total == 5
    assert snapshot.warnings == ["workers: truncated at 3 of 5 records"]


@pytest.mark.asyncio
async def test_later_page_failure_gives_partial_result(make_gateway, config):
    gateway = make_gateway({'workers': _workers(5)})
    gateway.fail('workers', page=2)

    snapshot = await FetchOrchestrator(gateway, config).fetch([ResourceRequest('workers')])

    result = snapshot.get('workers')
    assert result.ok
    assert result.partial
    assert result.failed_keys == ('page:2',)
    assert [w.id for w in result.records] == ['w1', 'w2']


@pytest.mark.asyncio
async def test_overshooting_last_page_is_cut_and_flagged(make_gateway, config):
    gateway = make_gateway({'workers': _workers(1200)})
    config.fetch.page_size = 300
    config.fetch.max_records = 1000

    snapshot = await FetchOrchestrator(gateway, config).fetch([ResourceRequest('workers')])

    result = snapshot.get('workers')
    assert [filters['page'] for _, filters in gateway.calls] == [1, 2, 3, 4]
    assert len(result.records) == 1000
    assert result.total == 1200
    assert result.truncated
    assert snapshot.is_degraded is False
    assert snapshot.warnings == ["workers: truncated at 1000 of 1200 records"]


@pytest.mark.asyncio
async def test_bare_array_over_the_cap_is_flagged(gateway, config):
    gateway.collections['workers'] = _workers(4)
    config.fetch.max_records = 3

    snapshot = await FetchOrchestrator(gateway, config).fetch([ResourceRequest('workers', paginated=False)])

    assert len(snapshot.records('workers')) == 3
    assert snapshot.get('workers').truncated


@pytest.mark.asyncio
@pytest.mark.parametrize('data', [{'message': 'maintenance'}, None, {'raw': '<html>down</html>'}])
async def test_unreadable_list_payload_degrades_the_collection(gateway, config, monkeypatch, data):
    original_list = gateway.list

    async def odd_reply(collection, filters=None):
        if collection == 'workers':
            return GatewayResponse.ok(data)
        return await original_list(collection, filters)

    monkeypatch.setattr(gateway, 'list', odd_reply)

    snapshot = await FetchOrchestrator(gateway, config).fetch([ResourceRequest('workers'), ResourceRequest('clients')])

    assert not snapshot.get('workers').ok
    assert snapshot.get('workers').error == "unrecognised list payload"
    assert snapshot.degraded_collections == ('workers',)
    assert len(snapshot.records('clients')) == 2


@pytest.mark.asyncio
async def test_unreadable_later_page_gives_partial_result(make_gateway, config, monkeypatch):
    gateway = make_gateway({'workers': _workers(5)})
    original_list = gateway.list

    async def second_page_garbled(collection, filters=None):
        if (filters or {}).get('page') == 2:
            return GatewayResponse.ok({'message': 'maintenance'})
        return await original_list(collection, filters)

    monkeypatch.setattr(gateway, 'list', second_page_garbled)

    snapshot = await FetchOrchestrator(gateway, config).fetch([ResourceRequest('workers')])

    result = snapshot.get('workers')
    assert result.ok
    assert result.partial
    assert result.failed_keys == ('page:2',)
    assert [w.id for w in result.records] == ['w1', 'w2']


@pytest.mark.asyncio
async def test_bare_array_reply_is_accepted(gateway, config):
    gateway.bare_arrays.add('workers')

    snapshot = await FetchOrchestrator(gateway, config).fetch([ResourceRequest('workers')])

    assert len(gateway.calls) == 1
    assert len(snapshot.records('workers')) == 2


@pytest.mark.asyncio
async def test_newer_cycle_discards_the_older_one(gateway, config):
    orchestrator = FetchOrchestrator(gateway, config)
    gate = gateway.gate('workers')

    first = asyncio.create_task(orchestrator.fetch([ResourceRequest('workers')]))
    await asyncio.sleep(0)
    second = asyncio.create_task(orchestrator.fetch([ResourceRequest('workers')]))
    await asyncio.sleep(0)
    gate.set()
    stale, fresh = await asyncio.gather(first, second)

    assert stale is None
    assert fresh.generation == 2
    assert orchestrator.latest is fresh
    assert orchestrator.discarded_count == 1


@pytest.mark.asyncio
async def test_late_stale_cycle_never_overwrites_newer_snapshot(gateway, config):
    orchestrator = FetchOrchestrator(gateway, config)
    gate = gateway.gate('workers')

    slow = asyncio.create_task(orchestrator.fetch([ResourceRequest('workers')]))
    await asyncio.sleep(0)
    fresh = await orchestrator.fetch([ResourceRequest('clients')])
    gate.set()
    stale = await slow

    assert stale is None
    assert orchestrator.latest is fresh
    assert fresh.get('workers') is None


@pytest.mark.asyncio
async def test_auth_expired_propagates(gateway, config):
    gateway.expired.add('workers')
    orchestrator = FetchOrchestrator(gateway, config)

    with pytest.raises(AuthExpiredException):
        await orchestrator.fetch([ResourceRequest('workers'), ResourceRequest('clients')])

    assert orchestrator.latest is None


@pytest.mark.asyncio
async def test_owner_scope_is_sent_and_enforced_locally(gateway, config, monkeypatch):
    gateway.collections['assignments'].append(
        {'id': 'a3', 'jobId': 'j1', 'workerId': 'w2', 'status': 'active'})
    original_list = gateway.list

    async def ignores_owner_filter(collection, filters=None):
        kept = {k: v for k, v in (filters or {}).items() if k in ('page', 'limit')}
        return await original_list(collection, kept)

    monkeypatch.setattr(gateway, 'list', ignores_owner_filter)
    request = ResourceRequest('assignments', owner_field='workerId').scoped('w1')

    snapshot = await FetchOrchestrator(gateway, config).fetch([request])

    assert [a.id for a in snapshot.records('assignments')] == ['a1']


@pytest.mark.asyncio
async def test_owner_filter_reaches_the_gateway(gateway, config):
    request = ResourceRequest('assignments', owner_field='workerId', owner_id='w2')

    snapshot = await FetchOrchestrator(gateway, config).fetch([request])

    assert gateway.calls[0] == ('assignments', {'workerId': 'w2', 'page': 1, 'limit': 2})
    assert [a.id for a in snapshot.records('assignments')] == ['a2']


@pytest.mark.asyncio
async def test_duplicate_and_malformed_items_are_dropped(gateway, config):
    gateway.bare_arrays.add('workers')
    gateway.collections['workers'] += [{'id': 'w1', 'firstName': 'Duplicate'}, 'junk', {'firstName': 'NoId'}]

    snapshot = await FetchOrchestrator(gateway, config).fetch([ResourceRequest('workers')])

    workers = snapshot.records('workers')
    assert [w.id for w in workers] == ['w1', 'w2']
    assert workers[0].first_name == "Alex"


@pytest.mark.asyncio
async def test_fan_out_fetches_per_parent_within_the_concurrency_bound(make_gateway, config):
    documents = [{'id': f'd{i}', 'workerId': f'w{i}', 'status': 'VALID'} for i in range(1, 6)]
    gateway = make_gateway({'workers': _workers(5), 'documents': documents})
    config.fetch.page_size = 10

    snapshot = await FetchOrchestrator(gateway, config).fetch([ResourceRequest('workers')], [DOCUMENTS])

    result = snapshot.get('documents')
    assert result.ok and not result.partial
    assert sorted(d.id for d in result.records) == ['d1', 'd2', 'd3', 'd4', 'd5']
    assert len([c for c in gateway.calls if c[0] == 'documents']) == 5
    assert gateway.max_in_flight <= config.fetch.fan_out_concurrency


@pytest.mark.asyncio
async def test_fan_out_marks_failed_parents(gateway, config):
    gateway.fail('documents', workerId='w2')

    snapshot = await FetchOrchestrator(gateway, config).fetch([ResourceRequest('workers')], [DOCUMENTS])

    result = snapshot.get('documents')
    assert result.ok
    assert result.partial
    assert result.failed_keys == ('w2',)
    assert sorted(d.id for d in result.records) == ['d1', 'd2']
    assert snapshot.degraded_collections == ('documents',)


@pytest.mark.asyncio
async def test_fan_out_fails_when_every_sub_request_fails(gateway, config):
    gateway.fail('documents')

    snapshot = await FetchOrchestrator(gateway, config).fetch([ResourceRequest('workers')], [DOCUMENTS])

    assert not snapshot.get('documents').ok
    assert snapshot.get('workers').ok


@pytest.mark.asyncio
async def test_fan_out_without_parent_is_unavailable(gateway, config):
    gateway.fail('workers')

    snapshot = await FetchOrchestrator(gateway, config).fetch([ResourceRequest('workers')], [DOCUMENTS])

    result = snapshot.get('documents')
    assert not result.ok
    assert result.error == "parent collection workers unavailable"
    assert not any(c[0] == 'documents' for c in gateway.calls)


@pytest.mark.asyncio
async def test_fan_out_auth_expired_propagates(gateway, config):
    gateway.expired.add('documents')

    with pytest.raises(AuthExpiredException):
        await FetchOrchestrator(gateway, config).fetch([ResourceRequest('workers')], [DOCUMENTS])


def test_extract_page_shapes():
    assert extract_page([{'id': 1}], 'workers') == ([{'id': 1}], {})
    assert extract_page({'items': [{'id': 1}], 'total': 1}, 'workers') == ([{'id': 1}], {'total': 1})
    assert extract_page({'workers': [{'id': 2}]}, 'workers') == ([{'id': 2}], {})
    assert extract_page({'items': [], 'total': 0}, 'workers') == ([], {'total': 0})
    assert extract_page({'unexpected': True}, 'workers') is None
    assert extract_page(None, 'workers') is None


def test_attribute_name():
    assert attribute_name('clientId') == 'client_id'
    assert attribute_name('referrerId') == 'referrer_id'
