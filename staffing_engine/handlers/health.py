"""
Health check handler
"""

import time
from datetime import datetime, timezone

from aiohttp import web

from .. import __version__
from .base import BaseHandler


class HealthHandler(BaseHandler):
    """Liveness endpoint"""

    def __init__(self):
        super().__init__()
        self.start_time = time.time()

    async def health_check(self, request: web.Request) -> web.Response:
        """Basic health check

        Args:
            request: HTTP request

        Returns:
            web.Response: service status, uptime and gateway counters
        """
        app = request.app
        config = app.get('config')
        coordinator = app.get('dashboard_coordinator')
        gateway = app.get('gateway')

        health_data = {
            'status': 'healthy',
            'timestamp': datetime.now(timezone.utc).isoformat(),
            'uptime': time.time() - self.start_time,
            'version': __version__,
            'environment': config.environment if config else 'unknown',
            'views': len(coordinator.views) if coordinator else 0,
        }
        if gateway is not None and hasattr(gateway, 'get_statistics'):
            health_data['gateway'] = gateway.get_statistics()

        return self.success_response(health_data)
