"""
Dashboard routes
"""

from aiohttp import web
from aiohttp_cors import CorsConfig

from ..handlers.dashboard import DashboardHandler

API_PREFIX = '/api/v1/dashboards'


def setup_dashboard_routes(app: web.Application, cors: CorsConfig = None):
    """Register the dashboard API

    Args:
        app: aiohttp application
        cors: CORS configuration
    """
    dashboard_handler = DashboardHandler()
    app['dashboard_handler'] = dashboard_handler

    routes = [
        app.router.add_get(API_PREFIX, dashboard_handler.list_views),
        app.router.add_get(API_PREFIX + '/{view}', dashboard_handler.load_view),
        app.router.add_get(API_PREFIX + '/{view}/records/{name}', dashboard_handler.list_records),
        app.router.add_post(API_PREFIX + '/{view}/mutations', dashboard_handler.mutate),
    ]
    if cors:
        for route in routes:
            cors.add(route)
