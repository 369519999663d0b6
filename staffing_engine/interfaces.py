"""
Engine interfaces

Abstract boundary between the aggregation engine and the remote resource
service. Anything that returns ``GatewayResponse`` envelopes can stand in for
the HTTP gateway.
"""

from abc import ABC, abstractmethod
from typing import Any, Dict, Optional

from .models import GatewayResponse


class IResourceGateway(ABC):
    """Uniform CRUD access to remote collections.

    Implementations report per-call failures as ``success=False`` envelopes
    and raise ``AuthExpiredException`` only for authorization failures.
    """

    @abstractmethod
    async def list(self, collection: str, filters: Optional[Dict[str, Any]] = None) -> GatewayResponse:
        """List a collection

        Args:
            collection: collection name, e.g. ``assignments``
            filters: query filters including ``page`` and ``limit``

        Returns:
            GatewayResponse: data is a page dict
                (items, total, page, limit, pages, hasNext, hasPrev) or a bare list
        """
        pass

    @abstractmethod
    async def get(self, collection: str, record_id: str) -> GatewayResponse:
        """Fetch one record"""
        pass

    @abstractmethod
    async def create(self, collection: str, payload: Dict[str, Any]) -> GatewayResponse:
        """Create a record"""
        pass

    @abstractmethod
    async def update(self, collection: str, record_id: str, payload: Dict[str, Any]) -> GatewayResponse:
        """Update a record"""
        pass

    @abstractmethod
    async def delete(self, collection: str, record_id: str) -> GatewayResponse:
        """Delete a record"""
        pass
