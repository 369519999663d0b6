"""
Base handler

Common JSON envelope and request helpers shared by every handler.
"""

import json
import logging
from datetime import datetime, timezone
from typing import Any, Dict, Optional

from aiohttp import web

from ..utils.serialization import to_jsonable


class BaseHandler:
    """Base class for request handlers"""

    def __init__(self):
        self.logger = logging.getLogger(self.__class__.__name__)

    def success_response(self, data: Any = None, message: str = "OK", status: int = 200) -> web.Response:
        """Success envelope

        Args:
            data: payload; engine values are converted to JSON types
            message: human readable message
            status: HTTP status

        Returns:
            web.Response: JSON response
        """
        response_data = {
            'success': True,
            'data': to_jsonable(data),
            'message': message,
            'timestamp': datetime.now(timezone.utc).isoformat()
        }

        return web.json_response(response_data, status=status)

    def error_response(self, message: str, code: int = 400, error_code: str = None,
                       details: Optional[Dict[str, Any]] = None) -> web.Response:
        """Error envelope

        Args:
            message: error message
            code: HTTP status
            error_code: machine readable code
            details: extra context

        Returns:
            web.Response: JSON error response
        """
        response_data = {
            'success': False,
            'error': message,
            'error_code': error_code,
            'timestamp': datetime.now(timezone.utc).isoformat()
        }
        if details:
            response_data['details'] = to_jsonable(details)

        return web.json_response(response_data, status=code)

    async def get_request_json(self, request: web.Request) -> Dict[str, Any]:
        """Decoded JSON body, or an empty dict for other content types

        Raises:
            web.HTTPBadRequest: malformed JSON
        """
        if request.content_type != 'application/json':
            return {}
        try:
            data = await request.json()
        except json.JSONDecodeError as e:
            self.logger.error(f"JSON decode error: {e}")
            raise web.HTTPBadRequest(text="Invalid JSON format")
        if not isinstance(data, dict):
            raise web.HTTPBadRequest(text="Request body must be a JSON object")
        return data

    def validate_required_fields(self, data: Dict[str, Any], required_fields: list) -> Optional[str]:
        """Message naming the missing fields, or None"""
        missing_fields = [field for field in required_fields if data.get(field) in (None, "")]
        if missing_fields:
            return f"Missing required fields: {', '.join(missing_fields)}"
        return None

    def get_app_component(self, request: web.Request, component_name: str) -> Any:
        """
        Raises:
            web.HTTPInternalServerError: component not registered on the app
        """
        app = request.app
        if component_name not in app:
            self.logger.error(f"Component '{component_name}' not found in app")
            raise web.HTTPInternalServerError(text=f"Component '{component_name}' not available")

        return app[component_name]
