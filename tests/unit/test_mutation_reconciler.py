from dataclasses import replace
from datetime import datetime, timezone

import pytest

from staffing_engine.aggregators.derivations import Derivation, derive
from staffing_engine.aggregators.metric_aggregator import status_counts
from staffing_engine.exceptions import AuthExpiredException, InvalidMutationException, TransportFailure
from staffing_engine.managers.mutation_reconciler import GATEWAY_REJECTED, MutationReconciler
from staffing_engine.models import (
    Assignment,
    AssignmentStatus,
    CollectionResult,
    GatewayResponse,
    MutationIntent,
    Snapshot,
    ViewState,
    Worker,
)

NOW = datetime(2024, 6, 1, 12, 0, tzinfo=timezone.utc)

DERIVATIONS = (
    Derivation('assignment_counts', ('assignments',),
               lambda i, _: status_counts(i['assignments'], AssignmentStatus)),
    Derivation('worker_count', ('workers',), lambda i, _: len(i['workers'])),
    Derivation('assignment_total', ('assignment_counts',), lambda i, _: i['assignment_counts'].total),
)

APPROVE = MutationIntent('assignments', 'a1', 'approve')


def _state(*assignments):
    snapshot = Snapshot(generation=1, fetched_at=NOW, collections={
        'assignments': CollectionResult.success('assignments', assignments),
        'workers': CollectionResult.success('workers', [Worker('w1')]),
    })
    derived, _ = derive(snapshot, DERIVATIONS, NOW)
    return ViewState(view='admin_assignments', snapshot=snapshot, derived=derived, as_of=NOW)


def _pending_state():
    return _state(Assignment('a1', worker_id='w1', status=AssignmentStatus.PENDING, raw_status='pending'))


def test_approve_moves_record_between_buckets():
    state = _pending_state()
    reconciler = MutationReconciler()

    result = reconciler.reconcile(state, APPROVE, DERIVATIONS)

    before = state.derived['assignment_counts']
    after = result.state.derived['assignment_counts']
    assert result.ok
    assert (before['pending'], before['active']) == (1, 0)
    assert (after['pending'], after['active']) == (0, 1)
    assert after.total == before.total == 1
    assert result.recomputed == ('assignment_counts', 'assignment_total')
    assert reconciler.applied_count == 1


def test_reconcile_leaves_the_original_state_untouched():
    state = _pending_state()

    result = MutationReconciler().reconcile(state, APPROVE, DERIVATIONS)

    assert state.snapshot.records('assignments')[0].status is AssignmentStatus.PENDING
    assert result.state.snapshot.records('assignments')[0].status is AssignmentStatus.ACTIVE
    assert result.state.derived['worker_count'] == state.derived['worker_count']
    assert result.pending.previous.status is AssignmentStatus.PENDING


@pytest.mark.parametrize("intent", [
    MutationIntent('assignments', 'a404', 'approve'),
    MutationIntent('assignments', 'a1', 'complete'),
    MutationIntent('assignments', 'a1', 'teleport'),
    MutationIntent('payments', 'p1', 'mark_paid'),
])
def test_invalid_mutations_leave_state_unchanged(intent):
    state = _pending_state()
    reconciler = MutationReconciler()

    result = reconciler.reconcile(state, intent, DERIVATIONS)

    assert not result.ok
    assert result.state is state
    assert result.error_code == "INVALID_MUTATION"
    assert result.pending is None
    assert reconciler.rejected_count == 1


def test_transition_for_reports_the_current_status():
    record = Assignment('a1', status=AssignmentStatus.COMPLETED, raw_status='completed')

    with pytest.raises(InvalidMutationException) as exc_info:
        MutationReconciler().transition_for(APPROVE, record)

    assert "completed" in exc_info.value.reason


def test_actions_for_collection():
    reconciler = MutationReconciler()

    assert reconciler.actions_for('timesheets') == ('approve', 'reject')
    assert reconciler.actions_for('unknown') == ()


def test_rollback_restores_previous_record():
    reconciler = MutationReconciler()
    applied = reconciler.reconcile(_pending_state(), APPROVE, DERIVATIONS)

    rolled = reconciler.rollback(applied.state, applied.pending, DERIVATIONS)

    assert rolled.ok
    assert rolled.rolled_back
    assert rolled.state.derived['assignment_counts']['pending'] == 1
    assert rolled.state.snapshot.records('assignments')[0] == applied.pending.previous
    assert reconciler.rollback_count == 1


def test_rollback_skips_a_record_replaced_since():
    reconciler = MutationReconciler()
    applied = reconciler.reconcile(_pending_state(), APPROVE, DERIVATIONS)
    newer = _state(replace(applied.pending.applied, status=AssignmentStatus.COMPLETED, raw_status='completed'))

    rolled = reconciler.rollback(newer, applied.pending, DERIVATIONS)

    assert not rolled.ok
    assert rolled.state is newer
    assert reconciler.rollback_count == 0


@pytest.mark.asyncio
async def test_apply_and_confirm_sends_update(gateway):
    published = []

    result = await MutationReconciler().apply_and_confirm(
        _pending_state(), APPROVE, gateway, DERIVATIONS, publish=published.append)

    assert result.ok
    assert gateway.updates == [('assignments', 'a1', {'status': 'active'})]
    assert published == [result.state]


@pytest.mark.asyncio
async def test_rejected_update_is_rolled_back(gateway):
    gateway.update_response = GatewayResponse.fail("assignment is locked", status=422)
    published = []

    result = await MutationReconciler().apply_and_confirm(
        _pending_state(), APPROVE, gateway, DERIVATIONS, publish=published.append)

    assert not result.ok
    assert result.rolled_back
    assert result.error_code == GATEWAY_REJECTED
    assert result.error == "assignment is locked"
    assert result.state.derived['assignment_counts']['pending'] == 1
    assert len(published) == 2
    assert published[-1] is result.state


@pytest.mark.asyncio
async def test_transport_failure_is_rolled_back(gateway):
    gateway.update_error = TransportFailure('assignments/a1', "HTTP 503", status=503)

    result = await MutationReconciler().apply_and_confirm(_pending_state(), APPROVE, gateway, DERIVATIONS)

    assert not result.ok
    assert result.rolled_back
    assert result.error_code == "TRANSPORT_FAILURE"
    assert result.state.snapshot.records('assignments')[0].status is AssignmentStatus.PENDING


@pytest.mark.asyncio
async def test_auth_expired_rolls_back_then_propagates(gateway):
    gateway.update_error = AuthExpiredException()
    published = []

    with pytest.raises(AuthExpiredException):
        await MutationReconciler().apply_and_confirm(
            _pending_state(), APPROVE, gateway, DERIVATIONS, publish=published.append)

    assert len(published) == 2
    assert published[-1].derived['assignment_counts']['pending'] == 1


@pytest.mark.asyncio
async def test_failed_update_does_not_clobber_a_newer_state(gateway):
    gateway.update_response = GatewayResponse.fail("conflict", status=409)
    newer = _state(Assignment('a1', status=AssignmentStatus.CANCELLED, raw_status='cancelled'))

    result = await MutationReconciler().apply_and_confirm(
        _pending_state(), APPROVE, gateway, DERIVATIONS, current=lambda: newer)

    assert not result.ok
    assert not result.rolled_back
    assert result.state is newer
