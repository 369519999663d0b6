"""
HTTP handlers

Request handlers for the dashboard API.
"""

from .health import HealthHandler
from .dashboard import DashboardHandler

__all__ = [
    'HealthHandler',
    'DashboardHandler'
]
