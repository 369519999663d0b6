"""
Staffing dashboard aggregation engine

Fetches staffing collections (clients, workers, jobs, assignments,
timesheets, documents, payments, referrals) from the resource service, joins
them by foreign key, derives dashboard metrics and reconciles optimistic
status changes.

Submodules are not aggregated here so that importing the package does not pull
in aiohttp. Import what you need explicitly, for example:
- from staffing_engine.config import EngineConfig
- from staffing_engine.coordinators.dashboard_coordinator import DashboardCoordinator
- from staffing_engine.aggregators.metric_aggregator import status_counts
"""

__version__ = "1.0.0"

__all__: list[str] = []
