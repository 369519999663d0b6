"""
Dashboard coordinator

Each portal screen is a ``ViewDefinition``: the collections it fetches (with
optional owner scope and per-parent fan-out) and the derivations (joins and
aggregates) computed from them. The coordinator keeps one fetch orchestrator
and one published ``ViewState`` per (view, owner) pair, so a slow view never
holds up another, and routes loads, mutations and filters through the engine.
"""

import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Mapping, Optional, Sequence, Tuple

from ..aggregators import dashboard_metrics as metrics
from ..aggregators.derivations import Derivation, derive
from ..aggregators.metric_aggregator import status_counts
from ..config import EngineConfig
from ..exceptions import UnknownViewException
from ..filters.filter_engine import FilterSpec, apply_filter
from ..interfaces import IResourceGateway
from ..managers.mutation_reconciler import MutationReconciler
from ..models import (
    AssignmentStatus,
    ClientStatus,
    DocumentStatus,
    JobStatus,
    MutationIntent,
    MutationResult,
    PaymentStatus,
    ReferralStatus,
    TimesheetStatus,
    ViewState,
    WorkerStatus,
)
from ..resolvers import join_resolver as joins
from .fetch_orchestrator import FanOutRequest, FetchOrchestrator, ResourceRequest

logger = logging.getLogger(__name__)

# Searchable fields per entity collection; dotted paths reach joined records.
SEARCH_FIELDS: Dict[str, Tuple[str, ...]] = {
    "clients": ("company_name", "email", "industry"),
    "workers": ("first_name", "last_name", "email", "skills"),
    "jobs": ("title", "skills"),
    "assignments": ("id", "job.title", "worker.full_name", "client.company_name"),
    "timesheets": ("id", "worker.full_name", "job.title", "client.company_name"),
    "documents": ("title", "category", "worker.full_name"),
    "payments": ("id", "worker.full_name"),
    "referrals": ("referred_name", "referrer.full_name"),
}

DATE_FIELDS: Dict[str, str] = {
    "clients": "created_at",
    "workers": "created_at",
    "jobs": "created_at",
    "assignments": "start_date",
    "timesheets": "week_starting",
    "documents": "expiry_date",
    "payments": "effective_date",
    "referrals": "created_at",
}


@dataclass(frozen=True)
class ViewDefinition:
    """What one dashboard screen fetches and derives"""
    name: str
    requests: Tuple[ResourceRequest, ...]
    derivations: Tuple[Derivation, ...]
    fan_out: Tuple[FanOutRequest, ...] = ()
    owner_field: Optional[str] = None
    description: str = ""

    @property
    def owner_required(self) -> bool:
        return self.owner_field is not None

    def describe(self) -> Dict[str, Any]:
        return {
            'name': self.name,
            'description': self.description,
            'owner_field': self.owner_field,
            'collections': [r.snapshot_key for r in self.requests] + [f.snapshot_key for f in self.fan_out],
            'derived': [d.name for d in self.derivations],
        }


def _counts(name: str, source: str, statuses) -> Derivation:
    return Derivation(name, (source,), lambda inputs, as_of: status_counts(inputs[source], statuses))


def build_views(config: EngineConfig) -> Dict[str, ViewDefinition]:
    """Built-in dashboard views, parameterised by the metrics configuration"""
    soon = config.metrics.expiring_soon_days
    renewal = config.metrics.renewal_window_days
    period = config.metrics.default_period
    top = config.metrics.top_n

    assignment_rows = Derivation(
        "assignment_rows", ("assignments", "jobs", "workers", "clients"),
        lambda i, _: joins.join_assignments(i["assignments"], i["jobs"], i["workers"], i["clients"]))
    timesheet_rows = Derivation(
        "timesheet_rows", ("timesheets", "assignments", "workers", "jobs", "clients"),
        lambda i, _: joins.join_timesheets(i["timesheets"], i["assignments"], i["workers"], i["jobs"], i["clients"]))
    document_rows = Derivation(
        "document_rows", ("documents", "workers"),
        lambda i, _: joins.join_documents(i["documents"], i["workers"]))
    payment_rows = Derivation(
        "payment_rows", ("payments", "workers"),
        lambda i, _: joins.join_payments(i["payments"], i["workers"]))
    referral_rows = Derivation(
        "referral_rows", ("referrals", "workers"),
        lambda i, _: joins.join_referrals(i["referrals"], i["workers"]))
    compliance = Derivation(
        "compliance", ("document_rows",),
        lambda i, as_of: metrics.compliance_stats(i["document_rows"], as_of, soon, renewal))
    referral_summary = Derivation(
        "referral_stats", ("referral_rows",),
        lambda i, _: metrics.referral_stats(i["referral_rows"], top))

    views = [
        ViewDefinition(
            name="admin_overview",
            description="Platform-wide counts and pending approvals",
            requests=(
                ResourceRequest("clients"),
                ResourceRequest("workers"),
                ResourceRequest("jobs"),
                ResourceRequest("assignments"),
                ResourceRequest("timesheets"),
            ),
            derivations=(
                _counts("client_counts", "clients", ClientStatus),
                _counts("worker_counts", "workers", WorkerStatus),
                _counts("job_counts", "jobs", JobStatus),
                _counts("assignment_counts", "assignments", AssignmentStatus),
                _counts("timesheet_counts", "timesheets", TimesheetStatus),
                Derivation(
                    "overview",
                    ("client_counts", "worker_counts", "job_counts", "assignment_counts",
                     "timesheet_counts", "assignments"),
                    lambda i, _: {
                        'clients': i["client_counts"].total,
                        'active_clients': i["client_counts"][ClientStatus.ACTIVE.value],
                        'workers': i["worker_counts"].total,
                        'active_workers': i["worker_counts"][WorkerStatus.ACTIVE.value],
                        'open_jobs': i["job_counts"][JobStatus.ACTIVE.value],
                        'active_assignments': i["assignment_counts"][AssignmentStatus.ACTIVE.value],
                        'pending_approvals': (
                            i["job_counts"][JobStatus.PENDING.value]
                            + i["worker_counts"][WorkerStatus.PENDING.value]
                            + i["timesheet_counts"][TimesheetStatus.PENDING.value]
                            + i["assignment_counts"][AssignmentStatus.PENDING.value]
                        ),
                        'weekly_labour_cost': metrics.assignment_stats(i["assignments"])['weekly_labour_cost'],
                    }),
            ),
        ),
        ViewDefinition(
            name="admin_clients",
            description="Client facilities with job and spend roll-ups",
            requests=(ResourceRequest("clients"), ResourceRequest("jobs"), ResourceRequest("assignments")),
            derivations=(
                _counts("client_counts", "clients", ClientStatus),
                Derivation("client_stats", ("clients", "jobs", "assignments"),
                           lambda i, _: metrics.client_stats(i["clients"], i["jobs"], i["assignments"])),
            ),
        ),
        ViewDefinition(
            name="admin_workers",
            description="Workers with ratings, skills and earnings",
            requests=(ResourceRequest("workers"), ResourceRequest("assignments"), ResourceRequest("timesheets"),
                      ResourceRequest("jobs"), ResourceRequest("clients")),
            derivations=(
                _counts("worker_counts", "workers", WorkerStatus),
                timesheet_rows,
                Derivation("worker_stats", ("workers", "assignments", "timesheet_rows"),
                           lambda i, _: metrics.worker_stats(i["workers"], i["assignments"],
                                                             i["timesheet_rows"], top)),
            ),
        ),
        ViewDefinition(
            name="admin_assignments",
            description="Assignments joined with job, worker and client",
            requests=(ResourceRequest("assignments"), ResourceRequest("jobs"),
                      ResourceRequest("workers"), ResourceRequest("clients")),
            derivations=(
                assignment_rows,
                _counts("assignment_counts", "assignments", AssignmentStatus),
                Derivation("assignment_stats", ("assignments",),
                           lambda i, _: metrics.assignment_stats(i["assignments"])),
                Derivation("job_stats", ("jobs", "assignments"),
                           lambda i, _: metrics.job_stats(i["jobs"], i["assignments"], top)),
            ),
        ),
        ViewDefinition(
            name="admin_compliance",
            description="Worker documents by status and expiry window",
            requests=(ResourceRequest("workers"),),
            fan_out=(FanOutRequest("documents", parent="workers", owner_field="workerId"),),
            derivations=(
                document_rows,
                _counts("document_counts", "documents", DocumentStatus),
                compliance,
            ),
        ),
        ViewDefinition(
            name="admin_referrals",
            description="Referral programme performance",
            requests=(ResourceRequest("referrals"), ResourceRequest("workers")),
            derivations=(
                referral_rows,
                _counts("referral_counts", "referrals", ReferralStatus),
                referral_summary,
            ),
        ),
        ViewDefinition(
            name="admin_payroll",
            description="Payments by status and period",
            requests=(ResourceRequest("payments"), ResourceRequest("workers")),
            derivations=(
                payment_rows,
                _counts("payment_counts", "payments", PaymentStatus),
                Derivation("payment_stats", ("payments",),
                           lambda i, _: metrics.payment_stats(i["payments"], period)),
            ),
        ),
        ViewDefinition(
            name="client_timesheets",
            description="Timesheets awaiting a client's approval",
            owner_field="clientId",
            requests=(
                ResourceRequest("timesheets", owner_field="clientId"),
                ResourceRequest("assignments", owner_field="clientId"),
                ResourceRequest("jobs", owner_field="clientId"),
                ResourceRequest("workers"),
                ResourceRequest("clients"),
            ),
            derivations=(
                timesheet_rows,
                _counts("timesheet_counts", "timesheets", TimesheetStatus),
                Derivation("timesheet_stats", ("timesheet_rows",),
                           lambda i, _: metrics.timesheet_stats(i["timesheet_rows"], "week")),
            ),
        ),
        ViewDefinition(
            name="client_billing",
            description="Approved hours and amounts billed to a client",
            owner_field="clientId",
            requests=(
                ResourceRequest("timesheets", owner_field="clientId"),
                ResourceRequest("assignments", owner_field="clientId"),
                ResourceRequest("jobs", owner_field="clientId"),
                ResourceRequest("workers"),
                ResourceRequest("clients"),
            ),
            derivations=(
                timesheet_rows,
                Derivation("billing", ("timesheet_rows",),
                           lambda i, _: metrics.billing_summary(i["timesheet_rows"])),
                Derivation("assignment_stats", ("assignments",),
                           lambda i, _: metrics.assignment_stats(i["assignments"])),
            ),
        ),
        ViewDefinition(
            name="worker_assignments",
            description="A worker's assignments with job and client",
            owner_field="workerId",
            requests=(
                ResourceRequest("assignments", owner_field="workerId"),
                ResourceRequest("jobs"),
                ResourceRequest("clients"),
                ResourceRequest("workers"),
            ),
            derivations=(
                assignment_rows,
                _counts("assignment_counts", "assignments", AssignmentStatus),
                Derivation("assignment_stats", ("assignments",),
                           lambda i, _: metrics.assignment_stats(i["assignments"])),
            ),
        ),
        ViewDefinition(
            name="worker_documents",
            description="A worker's compliance documents",
            owner_field="workerId",
            requests=(ResourceRequest("documents", owner_field="workerId"), ResourceRequest("workers")),
            derivations=(
                document_rows,
                _counts("document_counts", "documents", DocumentStatus),
                compliance,
            ),
        ),
        ViewDefinition(
            name="worker_referrals",
            description="Referrals made by a worker",
            owner_field="referrerId",
            requests=(ResourceRequest("referrals", owner_field="referrerId"), ResourceRequest("workers")),
            derivations=(
                referral_rows,
                _counts("referral_counts", "referrals", ReferralStatus),
                referral_summary,
            ),
        ),
    ]
    return {view.name: view for view in views}


class DashboardCoordinator:
    """Loads, mutates and filters dashboard views"""

    def __init__(self, gateway: IResourceGateway, config: EngineConfig,
                 views: Optional[Mapping[str, ViewDefinition]] = None,
                 reconciler: Optional[MutationReconciler] = None,
                 clock: Optional[Callable[[], datetime]] = None):
        """Initialise the coordinator

        Args:
            gateway: resource gateway shared by every view
            config: engine configuration
            views: view definitions; defaults to ``build_views(config)``
            reconciler: mutation reconciler
            clock: returns the reference instant for time-windowed aggregates
        """
        self.gateway = gateway
        self.config = config
        self.views = dict(views) if views is not None else build_views(config)
        self.reconciler = reconciler or MutationReconciler()
        self._clock = clock or (lambda: datetime.now(timezone.utc))
        self._orchestrators: Dict[Tuple[str, Optional[str]], FetchOrchestrator] = {}
        self._states: Dict[Tuple[str, Optional[str]], ViewState] = {}

    def view_names(self) -> List[str]:
        return sorted(self.views)

    def definition(self, view: str) -> ViewDefinition:
        """
        Raises:
            UnknownViewException: view is not registered
        """
        definition = self.views.get(view)
        if definition is None:
            raise UnknownViewException(view, {'available': self.view_names()})
        return definition

    def state(self, view: str, owner_id: Optional[str] = None) -> Optional[ViewState]:
        return self._states.get((view, owner_id))

    def orchestrator(self, view: str, owner_id: Optional[str] = None) -> FetchOrchestrator:
        key = (view, owner_id)
        if key not in self._orchestrators:
            label = view if owner_id is None else f"{view}:{owner_id}"
            self._orchestrators[key] = FetchOrchestrator(self.gateway, self.config, name=label)
        return self._orchestrators[key]

    async def load(self, view: str, owner_id: Optional[str] = None) -> Optional[ViewState]:
        """Fetch a view and publish its derived state

        Returns:
            Optional[ViewState]: the new state, or the currently published one
            when this fetch was superseded by a newer load

        Raises:
            UnknownViewException: unknown view
            ValueError: the view is owner-scoped and ``owner_id`` is missing
            AuthExpiredException: the gateway rejected the session
        """
        definition = self.definition(view)
        if definition.owner_required and not owner_id:
            raise ValueError(f"View {view} requires an owner id ({definition.owner_field})")

        requests = [request.scoped(owner_id) for request in definition.requests]
        snapshot = await self.orchestrator(view, owner_id).fetch(requests, definition.fan_out)
        if snapshot is None:
            logger.info(f"Load of {view} superseded; keeping the published state")
            return self.state(view, owner_id)

        as_of = self._clock()
        derived, _ = derive(snapshot, definition.derivations, as_of)
        state = ViewState(view=view, snapshot=snapshot, derived=derived, as_of=as_of, owner_id=owner_id)
        self._publish((view, owner_id), state)
        logger.info(
            f"View {view} published (generation {snapshot.generation}, "
            f"{len(derived)} derived value(s), degraded={snapshot.is_degraded})"
        )
        return state

    async def mutate(self, view: str, intent: MutationIntent,
                     owner_id: Optional[str] = None) -> MutationResult:
        """Apply a status transition to the published state of a view

        The view is loaded first when it has no published state.
        """
        definition = self.definition(view)
        key = (view, owner_id)
        state = self._states.get(key) or await self.load(view, owner_id)
        if state is None:
            raise LookupError(f"View {view} has no published state to mutate")
        return await self.reconciler.apply_and_confirm(
            state,
            intent,
            self.gateway,
            definition.derivations,
            current=lambda: self._states.get(key, state),
            publish=lambda new_state: self._publish(key, new_state),
        )

    def filter(self, view: str, name: str, spec: FilterSpec,
               owner_id: Optional[str] = None) -> Tuple[Any, ...]:
        """Filter a collection or joined derivation of the published state"""
        return apply_filter(self.records(view, name, owner_id), spec)

    def filter_query(self, view: str, name: str, query: Mapping[str, str],
                     owner_id: Optional[str] = None) -> Tuple[Any, ...]:
        """Filter with a spec built from request query parameters

        Raises:
            ValueError: invalid date in the query
        """
        records = self.records(view, name, owner_id)
        return apply_filter(records, self.filter_spec(records, query))

    def records(self, view: str, name: str, owner_id: Optional[str] = None) -> Tuple[Any, ...]:
        """Records of a collection or joined derivation of the published state

        Raises:
            UnknownViewException: unknown view
            LookupError: the view is not loaded or has no such collection
            ValueError: ``name`` is an aggregate rather than a record list
        """
        self.definition(view)
        state = self.state(view, owner_id)
        if state is None:
            raise LookupError(f"View {view} has not been loaded")
        records = state.value(name)
        if records is None:
            raise LookupError(f"View {view} has no collection named {name}")
        if not isinstance(records, (tuple, list)):
            raise ValueError(f"{name} is an aggregate, not a record collection")
        return tuple(records)

    def filter_spec(self, records: Sequence[Any], query: Mapping[str, str]) -> FilterSpec:
        """Build a ``FilterSpec`` with the search and date fields of the records' entity"""
        collection = collection_of(records)
        return FilterSpec.from_query(
            query,
            search_fields=SEARCH_FIELDS.get(collection, ("id",)),
            date_field=DATE_FIELDS.get(collection),
        )

    def _publish(self, key: Tuple[str, Optional[str]], state: ViewState) -> None:
        self._states[key] = state


def collection_of(records: Sequence[Any]) -> str:
    """Entity collection of a record list (joined records report their base entity)"""
    for record in records:
        collection = getattr(record, "COLLECTION", None)
        if collection:
            return collection
    return ""
