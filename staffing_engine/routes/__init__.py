"""
Routes

Registers every API route on the application.
"""

from aiohttp import web
from aiohttp_cors import CorsConfig

from .health import setup_health_routes
from .dashboard import setup_dashboard_routes


def setup_routes(app: web.Application, cors: CorsConfig = None):
    """Register all routes

    Args:
        app: aiohttp application
        cors: CORS configuration
    """
    setup_health_routes(app, cors)
    setup_dashboard_routes(app, cors)
