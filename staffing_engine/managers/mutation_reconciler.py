"""
Mutation reconciler

Applies a status transition optimistically to a published view state. The
mutated record is swapped for a copy carrying the new status, the snapshot is
rebuilt around it and only the derivations that depend on the mutated
collection are recomputed, so status buckets move the record from one bucket
to another in a single step. A ``PendingMutation`` token allows the change to
be rolled back if the gateway later refuses it.
"""

import logging
from enum import Enum
from typing import Any, Callable, Dict, FrozenSet, Mapping, Optional, Sequence, Tuple

from ..aggregators.derivations import Derivation, derive
from ..exceptions import AuthExpiredException, InvalidMutationException, TransportFailure
from ..interfaces import IResourceGateway
from ..models import (
    AssignmentStatus,
    ClientStatus,
    DocumentStatus,
    JobStatus,
    MutationIntent,
    MutationResult,
    PaymentStatus,
    PendingMutation,
    ReferralStatus,
    TimesheetStatus,
    ViewState,
    WorkerStatus,
)

logger = logging.getLogger(__name__)

Transition = Tuple[FrozenSet[Enum], Enum]

GATEWAY_REJECTED = "GATEWAY_REJECTED"


def _t(sources, target) -> Transition:
    return frozenset(sources), target


# collection -> action -> (allowed source statuses, target status)
TRANSITIONS: Dict[str, Dict[str, Transition]] = {
    "assignments": {
        "approve": _t({AssignmentStatus.PENDING}, AssignmentStatus.ACTIVE),
        "complete": _t({AssignmentStatus.ACTIVE}, AssignmentStatus.COMPLETED),
        "cancel": _t({AssignmentStatus.PENDING, AssignmentStatus.ACTIVE}, AssignmentStatus.CANCELLED),
    },
    "timesheets": {
        "approve": _t({TimesheetStatus.PENDING}, TimesheetStatus.APPROVED),
        "reject": _t({TimesheetStatus.PENDING}, TimesheetStatus.REJECTED),
    },
    "clients": {
        "activate": _t({ClientStatus.INACTIVE, ClientStatus.TRIAL, ClientStatus.SUSPENDED}, ClientStatus.ACTIVE),
        "suspend": _t({ClientStatus.ACTIVE, ClientStatus.TRIAL}, ClientStatus.SUSPENDED),
        "deactivate": _t({ClientStatus.ACTIVE, ClientStatus.TRIAL, ClientStatus.SUSPENDED}, ClientStatus.INACTIVE),
    },
    "workers": {
        "approve": _t({WorkerStatus.PENDING}, WorkerStatus.ACTIVE),
        "activate": _t({WorkerStatus.INACTIVE, WorkerStatus.SUSPENDED}, WorkerStatus.ACTIVE),
        "suspend": _t({WorkerStatus.ACTIVE}, WorkerStatus.SUSPENDED),
        "deactivate": _t({WorkerStatus.ACTIVE, WorkerStatus.PENDING, WorkerStatus.SUSPENDED}, WorkerStatus.INACTIVE),
    },
    "jobs": {
        "approve": _t({JobStatus.PENDING}, JobStatus.ACTIVE),
        "reject": _t({JobStatus.PENDING}, JobStatus.REJECTED),
        "complete": _t({JobStatus.ACTIVE}, JobStatus.COMPLETED),
        "cancel": _t({JobStatus.PENDING, JobStatus.ACTIVE}, JobStatus.CANCELLED),
    },
    "documents": {
        "verify": _t({DocumentStatus.PENDING_REVIEW, DocumentStatus.EXPIRED}, DocumentStatus.VALID),
        "expire": _t({DocumentStatus.VALID, DocumentStatus.PENDING_REVIEW}, DocumentStatus.EXPIRED),
    },
    "payments": {
        "mark_paid": _t({PaymentStatus.PENDING}, PaymentStatus.PAID),
        "fail": _t({PaymentStatus.PENDING}, PaymentStatus.FAILED),
        "retry": _t({PaymentStatus.FAILED}, PaymentStatus.PENDING),
    },
    "referrals": {
        "send": _t({ReferralStatus.PENDING}, ReferralStatus.SENT),
        "register": _t({ReferralStatus.PENDING, ReferralStatus.SENT}, ReferralStatus.REGISTERED),
        "complete": _t({ReferralStatus.REGISTERED}, ReferralStatus.COMPLETED),
        "expire": _t({ReferralStatus.PENDING, ReferralStatus.SENT}, ReferralStatus.EXPIRED),
    },
}


class MutationReconciler:
    """Optimistic status transitions with targeted recomputation and rollback"""

    def __init__(self, transitions: Optional[Mapping[str, Mapping[str, Transition]]] = None):
        self.transitions = transitions if transitions is not None else TRANSITIONS
        self.applied_count = 0
        self.rejected_count = 0
        self.rollback_count = 0

    def actions_for(self, collection: str) -> Tuple[str, ...]:
        return tuple(self.transitions.get(collection, {}))

    def transition_for(self, intent: MutationIntent, record: Any) -> Enum:
        """Target status for ``intent`` applied to ``record``

        Raises:
            InvalidMutationException: undefined action or disallowed source status
        """
        collection = getattr(record, "COLLECTION", "") or intent.collection
        actions = self.transitions.get(collection)
        if not actions or intent.action not in actions:
            raise InvalidMutationException(intent.collection, intent.record_id, intent.action,
                                           f"action '{intent.action}' is not defined for {collection}")
        sources, target = actions[intent.action]
        current = getattr(record, "status", None)
        if current not in sources:
            shown = current.value if isinstance(current, Enum) else (getattr(record, "raw_status", "") or "unknown")
            raise InvalidMutationException(intent.collection, intent.record_id, intent.action,
                                           f"cannot {intent.action} a record in status '{shown}'")
        return target

    def reconcile(self, state: ViewState, intent: MutationIntent,
                  derivations: Sequence[Derivation]) -> MutationResult:
        """Apply ``intent`` to ``state`` without contacting the gateway

        Returns:
            MutationResult: ``ok=False`` with ``state`` untouched when the
            record is missing or the transition is undefined
        """
        try:
            index, record = self._locate(state, intent)
            target = self.transition_for(intent, record)
        except InvalidMutationException as e:
            self.rejected_count += 1
            logger.warning(f"Rejected mutation on {state.view}: {e.message}")
            return MutationResult(ok=False, state=state, error=e.message, error_code=e.error_code)

        applied = record.with_status(target)
        new_state, recomputed = self._replace(state, intent.collection, index, applied, derivations)
        self.applied_count += 1
        logger.info(
            f"Applied {intent.action} to {intent.collection}/{intent.record_id} "
            f"({record.status_key} -> {applied.status_key}); recomputed {', '.join(recomputed) or 'nothing'}"
        )
        return MutationResult(
            ok=True,
            state=new_state,
            pending=PendingMutation(intent=intent, previous=record, applied=applied),
            recomputed=recomputed,
        )

    def rollback(self, state: ViewState, pending: PendingMutation,
                 derivations: Sequence[Derivation]) -> MutationResult:
        """Restore the pre-mutation record in ``state``

        Skipped (``ok=False``) when the record is gone or no longer the one
        this mutation produced, e.g. after a newer fetch.
        """
        intent = pending.intent
        try:
            index, record = self._locate(state, intent)
        except InvalidMutationException as e:
            logger.warning(f"Rollback of {intent.collection}/{intent.record_id} skipped: {e.message}")
            return MutationResult(ok=False, state=state, error=e.message, error_code=e.error_code)
        if record != pending.applied:
            logger.warning(f"Rollback of {intent.collection}/{intent.record_id} skipped: record was replaced")
            return MutationResult(ok=False, state=state, error="record changed since the mutation was applied")

        new_state, recomputed = self._replace(state, intent.collection, index, pending.previous, derivations)
        self.rollback_count += 1
        logger.warning(f"Rolled back {intent.action} on {intent.collection}/{intent.record_id}")
        return MutationResult(ok=True, state=new_state, recomputed=recomputed, rolled_back=True)

    async def apply_and_confirm(self, state: ViewState, intent: MutationIntent,
                                gateway: IResourceGateway, derivations: Sequence[Derivation],
                                current: Optional[Callable[[], ViewState]] = None,
                                publish: Optional[Callable[[ViewState], None]] = None) -> MutationResult:
        """Apply optimistically, send the update, roll back if it is refused

        Args:
            state: state to mutate
            intent: requested transition
            gateway: gateway receiving the real update
            derivations: derivations of the view
            current: returns the latest published state when the reply arrives;
                rollback is applied to it so unrelated changes survive
            publish: called with the optimistic state and again with the
                rolled-back state

        Returns:
            MutationResult: the optimistic result on success, or ``ok=False``
            with the rolled-back state

        Raises:
            AuthExpiredException: after rolling back
            Exception: anything else the gateway raised, also after rolling back
        """
        result = self.reconcile(state, intent, derivations)
        if not result.ok:
            return result
        if publish:
            publish(result.state)

        pending = result.pending
        payload = {**dict(intent.payload), 'status': pending.applied.raw_status}
        collection = getattr(pending.applied, "COLLECTION", "") or intent.collection

        try:
            response = await gateway.update(collection, intent.record_id, payload)
        except AuthExpiredException:
            self._undo(result, derivations, current, publish)
            raise
        except TransportFailure as e:
            rolled = self._undo(result, derivations, current, publish)
            return MutationResult(ok=False, state=rolled.state, error=e.message,
                                  error_code=e.error_code, rolled_back=rolled.rolled_back,
                                  recomputed=rolled.recomputed)
        except Exception:
            self._undo(result, derivations, current, publish)
            raise

        if response.success:
            return result

        rolled = self._undo(result, derivations, current, publish)
        return MutationResult(ok=False, state=rolled.state, error=response.error or "update rejected",
                              error_code=GATEWAY_REJECTED, rolled_back=rolled.rolled_back,
                              recomputed=rolled.recomputed)

    def _undo(self, result: MutationResult, derivations: Sequence[Derivation],
              current: Optional[Callable[[], ViewState]],
              publish: Optional[Callable[[ViewState], None]]) -> MutationResult:
        base = current() if current else result.state
        rolled = self.rollback(base, result.pending, derivations)
        if publish and rolled.ok:
            publish(rolled.state)
        return rolled

    @staticmethod
    def _locate(state: ViewState, intent: MutationIntent) -> Tuple[int, Any]:
        collection = state.snapshot.get(intent.collection)
        if collection is None:
            raise InvalidMutationException(intent.collection, intent.record_id, intent.action,
                                           f"collection {intent.collection} is not part of view {state.view}")
        for index, record in enumerate(collection.records):
            if getattr(record, "id", None) == intent.record_id:
                return index, record
        raise InvalidMutationException(intent.collection, intent.record_id, intent.action,
                                       f"record {intent.record_id} not found in {intent.collection}")

    @staticmethod
    def _replace(state: ViewState, collection: str, index: int, record: Any,
                 derivations: Sequence[Derivation]) -> Tuple[ViewState, Tuple[str, ...]]:
        result = state.snapshot.get(collection)
        records = list(result.records)
        records[index] = record
        snapshot = state.snapshot.replace_collection(result.with_records(records))
        derived, recomputed = derive(snapshot, derivations, state.as_of,
                                     previous=state.derived, changed={collection})
        return ViewState(view=state.view, snapshot=snapshot, derived=derived,
                         as_of=state.as_of, owner_id=state.owner_id), recomputed
