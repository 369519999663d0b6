"""
Coordinators

Fetch orchestration and per-view dashboard coordination.
"""

from .fetch_orchestrator import FanOutRequest, FetchOrchestrator, ResourceRequest
from .dashboard_coordinator import DashboardCoordinator, Derivation, ViewDefinition

__all__ = [
    'FetchOrchestrator',
    'ResourceRequest',
    'FanOutRequest',
    'DashboardCoordinator',
    'Derivation',
    'ViewDefinition'
]
