"""
Health routes
"""

from aiohttp import web
from aiohttp_cors import CorsConfig

from ..handlers.health import HealthHandler


def setup_health_routes(app: web.Application, cors: CorsConfig = None):
    health_handler = HealthHandler()
    app['health_handler'] = health_handler

    route = app.router.add_get('/health', health_handler.health_check)
    if cors:
        cors.add(route)
