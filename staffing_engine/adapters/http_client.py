"""
HTTP client for the resource service

Issues JSON requests through the session's aiohttp client with bounded
retries. Authorization failures raise ``AuthExpiredException``; everything
else that goes wrong raises ``TransportFailure``.
"""

import asyncio
import json
import logging
from typing import Dict, Any

import aiohttp

from ..config import EngineConfig
from ..exceptions import AuthExpiredException, TransportFailure
from ..session import SessionContext

AUTH_FAILURE_STATUSES = (401, 403)


class HttpClient:
    """JSON HTTP client bound to one session"""

    def __init__(self, session: SessionContext, config: EngineConfig):
        """Initialise the client

        Args:
            session: open session context
            config: engine configuration
        """
        self.session = session
        self.config = config
        self.logger = logging.getLogger(f"{__name__}.HttpClient")
        self._base_url = session.base_url
        self._api_prefix = '/' + config.gateway.api_prefix.strip('/') if config.gateway.api_prefix.strip('/') else ''

        self._request_count = 0
        self._success_count = 0
        self._error_count = 0

    def build_url(self, path: str) -> str:
        return f"{self._base_url}{self._api_prefix}/{path.lstrip('/')}"

    async def get(self, path: str, params: Dict[str, Any] = None) -> Any:
        return await self._request('GET', path, params=params)

    async def post(self, path: str, data: Dict[str, Any] = None) -> Any:
        return await self._request('POST', path, json=data)

    async def put(self, path: str, data: Dict[str, Any] = None) -> Any:
        return await self._request('PUT', path, json=data)

    async def delete(self, path: str) -> Any:
        return await self._request('DELETE', path)

    async def _request(self, method: str, path: str, **kwargs) -> Any:
        """Execute a request with retries

        Args:
            method: HTTP method
            path: collection path relative to the API prefix
            **kwargs: forwarded to ``aiohttp.ClientSession.request``

        Returns:
            Any: decoded JSON body (empty dict for an empty body)

        Raises:
            AuthExpiredException: 401/403 from the service
            TransportFailure: network error, 4xx, or 5xx after retries
        """
        url = self.build_url(path)
        http = self.session.http()
        headers = self.session.auth_headers()
        if kwargs.get('params'):
            kwargs['params'] = {k: str(v) for k, v in kwargs['params'].items() if v is not None}

        self._request_count += 1
        max_retries = self.config.gateway.max_retries

        for attempt in range(max_retries + 1):
            try:
                self.logger.debug(f"{method} {url} (attempt {attempt + 1})")

                async with http.request(method, url, headers=headers, **kwargs) as response:
                    if response.status in AUTH_FAILURE_STATUSES:
                        self._error_count += 1
                        self.session.invalidate()
                        raise AuthExpiredException(f"{method} {path} rejected with HTTP {response.status}",
                                                   status=response.status)

                    text = await response.text()
                    if response.status < 400:
                        self._success_count += 1
                        return self._decode(text)

                    if response.status >= 500 and attempt < max_retries:
                        await asyncio.sleep(self.config.gateway.retry_delay * (attempt + 1))
                        continue

                    self._error_count += 1
                    raise TransportFailure(path, self._error_message(text, response.status),
                                           status=response.status)

            except aiohttp.ClientError as e:
                if attempt < max_retries:
                    self.logger.warning(f"Request failed (attempt {attempt + 1}): {e}")
                    await asyncio.sleep(self.config.gateway.retry_delay * (attempt + 1))
                    continue
                self._error_count += 1
                raise TransportFailure(path, f"connection failed: {e}")

            except asyncio.TimeoutError:
                self._error_count += 1
                raise TransportFailure(path, "request timed out")

        self._error_count += 1
        raise TransportFailure(path, "max retries exceeded")

    @staticmethod
    def _decode(text: str) -> Any:
        if not text:
            return {}
        try:
            return json.loads(text)
        except ValueError:
            return {"raw": text}

    @classmethod
    def _error_message(cls, text: str, status: int) -> str:
        payload = cls._decode(text)
        if isinstance(payload, dict):
            message = payload.get('error') or payload.get('message')
            if message:
                return f"HTTP {status}: {message}"
        return f"HTTP {status}"

    def get_statistics(self) -> Dict[str, Any]:
        return {
            'request_count': self._request_count,
            'success_count': self._success_count,
            'error_count': self._error_count,
            'success_rate': self._success_count / max(self._request_count, 1)
        }
