"""
Resource gateway over HTTP

Maps collection CRUD onto REST routes of the resource service and normalises
every reply into a ``GatewayResponse`` envelope. Transport failures become
``success=False`` envelopes; authorization failures keep propagating.
"""

import logging
from typing import Any, Dict, Optional

from ..config import EngineConfig
from ..exceptions import TransportFailure
from ..interfaces import IResourceGateway
from ..models import GatewayResponse
from ..session import SessionContext
from .http_client import HttpClient

logger = logging.getLogger(__name__)


class ResourceGateway(IResourceGateway):
    """HTTP implementation of ``IResourceGateway``"""

    def __init__(self, session: SessionContext, config: EngineConfig,
                 http_client: Optional[HttpClient] = None):
        self.config = config
        self._http = http_client or HttpClient(session, config)
        self._paths = dict(config.gateway.collection_paths or {})

    def path_for(self, collection: str, record_id: Optional[str] = None) -> str:
        base = self._paths.get(collection, collection).strip('/')
        if record_id is None:
            return base
        return f"{base}/{record_id}"

    async def list(self, collection: str, filters: Optional[Dict[str, Any]] = None) -> GatewayResponse:
        return await self._call(collection, self._http.get(self.path_for(collection), params=filters or None))

    async def get(self, collection: str, record_id: str) -> GatewayResponse:
        return await self._call(collection, self._http.get(self.path_for(collection, record_id)))

    async def create(self, collection: str, payload: Dict[str, Any]) -> GatewayResponse:
        return await self._call(collection, self._http.post(self.path_for(collection), payload))

    async def update(self, collection: str, record_id: str, payload: Dict[str, Any]) -> GatewayResponse:
        return await self._call(collection, self._http.put(self.path_for(collection, record_id), payload))

    async def delete(self, collection: str, record_id: str) -> GatewayResponse:
        return await self._call(collection, self._http.delete(self.path_for(collection, record_id)))

    async def _call(self, collection: str, request) -> GatewayResponse:
        try:
            payload = await request
        except TransportFailure as e:
            logger.warning(f"Gateway call for {collection} failed: {e.message}")
            return GatewayResponse.fail(e.message, status=e.status)
        return self.unwrap(payload)

    @staticmethod
    def unwrap(payload: Any) -> GatewayResponse:
        """Normalise a decoded body into an envelope

        Bodies that already carry ``success`` are taken at their word; anything
        else is treated as bare data.
        """
        if isinstance(payload, dict) and 'success' in payload:
            if not payload.get('success'):
                message = payload.get('error') or payload.get('message') or 'request failed'
                return GatewayResponse.fail(str(message))
            return GatewayResponse.ok(payload.get('data'))
        return GatewayResponse.ok(payload)

    def get_statistics(self) -> Dict[str, Any]:
        return self._http.get_statistics()
