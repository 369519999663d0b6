"""
Application factory

Builds the aiohttp application around a dashboard coordinator. Without an
explicit gateway, a ``SessionContext`` and an HTTP ``ResourceGateway`` are
created and the session is opened on startup and closed on cleanup.
"""

import logging
from typing import Optional

from aiohttp import web
from aiohttp_cors import setup as cors_setup, ResourceOptions

from .adapters.resource_gateway import ResourceGateway
from .config import EngineConfig
from .coordinators.dashboard_coordinator import DashboardCoordinator
from .interfaces import IResourceGateway
from .middleware import setup_middleware
from .routes import setup_routes
from .session import SessionContext

logger = logging.getLogger(__name__)


async def create_app(config: EngineConfig, gateway: Optional[IResourceGateway] = None) -> web.Application:
    """Create the application

    Args:
        config: engine configuration
        gateway: gateway to use instead of the HTTP one

    Returns:
        web.Application: configured application
    """
    logger.info("Creating staffing engine application")

    app = web.Application()
    app['config'] = config

    cors = cors_setup(app, defaults={
        config.service.cors_origins: ResourceOptions(
            allow_credentials=True,
            expose_headers="*",
            allow_headers="*",
            allow_methods="*"
        )
    })

    setup_middleware(app)
    setup_routes(app, cors)
    init_components(app, config, gateway)

    app.on_startup.append(startup_handler)
    app.on_cleanup.append(cleanup_handler)

    logger.info("Staffing engine application created successfully")
    return app


def init_components(app: web.Application, config: EngineConfig,
                    gateway: Optional[IResourceGateway] = None):
    """Create the session, gateway and coordinator"""
    if gateway is None:
        session = SessionContext(config)
        app['session'] = session
        gateway = ResourceGateway(session, config)

    app['gateway'] = gateway
    app['dashboard_coordinator'] = DashboardCoordinator(gateway, config)
    logger.info(f"Registered {len(app['dashboard_coordinator'].views)} dashboard view(s)")


async def startup_handler(app: web.Application):
    if 'session' in app:
        await app['session'].open()
    logger.info("Staffing engine started")


async def cleanup_handler(app: web.Application):
    if 'session' in app:
        await app['session'].close()
    logger.info("Staffing engine stopped")
