"""
HTTP middleware

Every request carries an ``X-Request-ID`` (taken from the caller or minted
here). Engine errors are rendered as the standard JSON error envelope:
an expired gateway session is 401 ``AUTH_EXPIRED`` so the client
re-authenticates, any other engine error is 502, and anything unexpected
is 500.
"""

import time
import uuid
import logging
import traceback
from datetime import datetime, timezone
from typing import Any, Callable, Dict

from aiohttp import web
from aiohttp.web_middlewares import middleware

from .exceptions import AuthExpiredException, EngineException, create_error_response

logger = logging.getLogger(__name__)

REQUEST_ID_HEADER = 'X-Request-ID'

SECURITY_HEADERS = {
    'X-Content-Type-Options': 'nosniff',
    'X-Frame-Options': 'DENY',
    'Referrer-Policy': 'strict-origin-when-cross-origin',
    # dashboard payloads are per-session snapshots
    'Cache-Control': 'no-store',
}


def _request_id(request: web.Request) -> str:
    return request.get('request_id', 'unknown')


@middleware
async def request_id_middleware(request: web.Request, handler: Callable) -> web.Response:
    """Propagate the caller's request id, or mint one"""
    request_id = request.headers.get(REQUEST_ID_HEADER) or uuid.uuid4().hex
    request['request_id'] = request_id

    try:
        response = await handler(request)
    except web.HTTPException as e:
        e.headers[REQUEST_ID_HEADER] = request_id
        raise
    response.headers[REQUEST_ID_HEADER] = request_id
    return response


@middleware
async def logging_middleware(request: web.Request, handler: Callable) -> web.Response:
    """One access-log line per request; 4xx log at WARNING and 5xx at ERROR"""
    started = time.monotonic()
    label = f"{request.method} {request.path_qs} [{_request_id(request)}]"
    logger.debug(f"{label} from {request.remote}")

    try:
        response = await handler(request)
    except Exception as e:
        logger.error(f"{label} raised {type(e).__name__} after {time.monotonic() - started:.3f}s: {e}")
        raise

    elapsed = time.monotonic() - started
    if response.status >= 500:
        level = logging.ERROR
    elif response.status >= 400:
        level = logging.WARNING
    else:
        level = logging.INFO
    logger.log(level, f"{label} -> {response.status} in {elapsed:.3f}s")
    response.headers['X-Response-Time'] = f"{elapsed:.3f}s"
    return response


def _engine_error(request: web.Request, error: EngineException, status: int) -> web.Response:
    body = create_error_response(error)
    body['request_id'] = _request_id(request)
    return web.json_response(body, status=status)


def _internal_error(request: web.Request, error: Exception) -> web.Response:
    body: Dict[str, Any] = {
        'success': False,
        'error': 'Internal server error',
        'error_code': 'INTERNAL_ERROR',
        'error_type': type(error).__name__,
        'request_id': _request_id(request),
        'timestamp': datetime.now(timezone.utc).isoformat(),
    }
    config = request.app.get('config')
    if config is not None and config.service.debug:
        body['error_detail'] = str(error)
        body['traceback'] = traceback.format_exc()
    return web.json_response(body, status=500)


@middleware
async def error_handling_middleware(request: web.Request, handler: Callable) -> web.Response:
    """Render exceptions that escaped the handlers as JSON envelopes"""
    try:
        return await handler(request)
    except web.HTTPException:
        raise
    except AuthExpiredException as e:
        logger.warning(f"Gateway session expired while serving {request.path} [{_request_id(request)}]")
        return _engine_error(request, e, 401)
    except EngineException as e:
        logger.error(f"{e.component} failed while serving {request.path}: {e.message} "
                     f"[{_request_id(request)}]")
        return _engine_error(request, e, 502)
    except Exception as e:
        logger.exception(f"Unhandled {type(e).__name__} while serving {request.path} [{_request_id(request)}]")
        return _internal_error(request, e)


@middleware
async def security_middleware(request: web.Request, handler: Callable) -> web.Response:
    response = await handler(request)
    response.headers.update(SECURITY_HEADERS)
    return response


MIDDLEWARE = (
    request_id_middleware,
    error_handling_middleware,
    logging_middleware,
    security_middleware,
)


def setup_middleware(app: web.Application):
    """Install ``MIDDLEWARE``; requests pass through it top to bottom

    Args:
        app: aiohttp application
    """
    app.middlewares.extend(MIDDLEWARE)
    logger.info(f"Installed {len(MIDDLEWARE)} middleware")
