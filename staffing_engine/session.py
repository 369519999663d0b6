"""
Session context

Holds the bearer token and the aiohttp client session for one authenticated
principal. It is created, opened and closed by whoever owns the session and
passed explicitly to the gateway; nothing here is module-level state.
"""

import logging
from typing import Dict, Optional

import aiohttp

from .config import EngineConfig
from .exceptions import AuthExpiredException

logger = logging.getLogger(__name__)


class SessionContext:
    """Authenticated session used by the resource gateway"""

    def __init__(self, config: EngineConfig, token: Optional[str] = None,
                 user_id: Optional[str] = None, role: Optional[str] = None):
        """Create an unopened session

        Args:
            config: engine configuration
            token: bearer token; defaults to ``gateway.token``
            user_id: id of the authenticated user
            role: admin, client or worker
        """
        self.config = config
        self.base_url = config.gateway.base_url.rstrip('/')
        self.user_id = user_id
        self.role = role
        self._token = token if token is not None else config.gateway.token
        self._http: Optional[aiohttp.ClientSession] = None
        self._expired = False

    @property
    def token(self) -> Optional[str]:
        return self._token

    @property
    def is_open(self) -> bool:
        return self._http is not None and not self._http.closed

    @property
    def is_expired(self) -> bool:
        return self._expired

    def auth_headers(self) -> Dict[str, str]:
        if not self._token:
            return {}
        return {'Authorization': f"Bearer {self._token}"}

    async def open(self) -> "SessionContext":
        """Create the underlying HTTP session"""
        if self.is_open:
            return self

        timeout = aiohttp.ClientTimeout(
            total=self.config.gateway.request_timeout,
            connect=self.config.gateway.connection_timeout,
        )
        connector = aiohttp.TCPConnector(limit=self.config.gateway.pool_size)
        self._http = aiohttp.ClientSession(
            timeout=timeout,
            connector=connector,
            headers={'Content-Type': 'application/json'},
        )
        self._expired = False
        logger.info(f"Session opened for {self.base_url} (user={self.user_id}, role={self.role})")
        return self

    async def close(self) -> None:
        """Close the HTTP session; safe to call twice"""
        if self._http is not None:
            await self._http.close()
            self._http = None
            logger.info("Session closed")

    def http(self) -> aiohttp.ClientSession:
        """The open client session

        Raises:
            AuthExpiredException: the session was invalidated
            RuntimeError: the session was never opened
        """
        if self._expired:
            raise AuthExpiredException("Session was invalidated; re-authentication required")
        if not self.is_open:
            raise RuntimeError("Session is not open")
        return self._http

    def invalidate(self) -> None:
        """Forget the token after the gateway reported an authorization failure"""
        if not self._expired:
            logger.warning(f"Session invalidated for user={self.user_id}")
        self._token = None
        self._expired = True

    async def __aenter__(self) -> "SessionContext":
        return await self.open()

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.close()
