import pytest
from aiohttp import web
from aiohttp.test_utils import TestServer

from staffing_engine.adapters.resource_gateway import ResourceGateway
from staffing_engine.exceptions import AuthExpiredException
from staffing_engine.session import SessionContext


def _service():
    seen = []

    async def list_workers(request):
        seen.append(('GET', request.path, dict(request.query), request.headers.get('Authorization')))
        return web.json_response({'success': True, 'data': {'items': [{'id': 'w1'}], 'hasNext': False}})

    async def update_document(request):
        seen.append(('PUT', request.path, await request.json(), request.headers.get('Authorization')))
        return web.json_response({'success': False, 'error': 'document is locked'})

    async def broken(request):
        return web.json_response({'error': 'database unavailable'}, status=500)

    async def unauthorized(request):
        return web.json_response({'error': 'token expired'}, status=401)

    app = web.Application()
    app.router.add_get('/api/workers', list_workers)
    app.router.add_put('/api/worker-documents/{id}', update_document)
    app.router.add_get('/api/payments', broken)
    app.router.add_get('/api/referrals', unauthorized)
    return app, seen


def _configure(config, server):
    config.gateway.base_url = str(server.make_url('/')).rstrip('/')
    config.gateway.collection_paths = {'documents': 'worker-documents'}
    config.gateway.max_retries = 1
    config.gateway.retry_delay = 0
    config.gateway.token = 'token-1'


@pytest.mark.asyncio
async def test_list_is_unwrapped_and_authorized(config):
    app, seen = _service()
    async with TestServer(app) as server:
        _configure(config, server)
        async with SessionContext(config) as session:
            gateway = ResourceGateway(session, config)
            response = await gateway.list('workers', {'page': 1, 'limit': 2, 'status': None})

    assert response.success
    assert response.data['items'] == [{'id': 'w1'}]
    assert seen == [('GET', '/api/workers', {'page': '1', 'limit': '2'}, 'Bearer token-1')]
    assert gateway.get_statistics()['success_count'] == 1


@pytest.mark.asyncio
async def test_refused_update_and_collection_paths(config):
    app, seen = _service()
    async with TestServer(app) as server:
        _configure(config, server)
        async with SessionContext(config) as session:
            response = await ResourceGateway(session, config).update('documents', 'd1', {'status': 'VALID'})

    assert not response.success
    assert response.error == 'document is locked'
    assert seen[0][:3] == ('PUT', '/api/worker-documents/d1', {'status': 'VALID'})


@pytest.mark.asyncio
async def test_server_error_becomes_failed_envelope_after_retries(config):
    app, _ = _service()
    async with TestServer(app) as server:
        _configure(config, server)
        async with SessionContext(config) as session:
            gateway = ResourceGateway(session, config)
            response = await gateway.list('payments')

    assert not response.success
    assert response.status == 500
    assert 'database unavailable' in response.error
    assert gateway.get_statistics()['error_count'] == 1


@pytest.mark.asyncio
async def test_unauthorized_invalidates_session(config):
    app, _ = _service()
    async with TestServer(app) as server:
        _configure(config, server)
        async with SessionContext(config) as session:
            gateway = ResourceGateway(session, config)
            with pytest.raises(AuthExpiredException):
                await gateway.list('referrals')

            assert session.is_expired
            assert session.token is None
            with pytest.raises(AuthExpiredException):
                await gateway.list('workers')


def test_unwrap_and_paths(config):
    gateway = ResourceGateway(SessionContext(config), config)

    assert ResourceGateway.unwrap([{'id': 1}]).data == [{'id': 1}]
    assert ResourceGateway.unwrap({'success': True, 'data': {'id': 1}}).data == {'id': 1}
    assert ResourceGateway.unwrap({'success': False, 'message': 'nope'}).error == 'nope'
    assert gateway.path_for('workers') == 'workers'
    assert gateway.path_for('workers', 'w1') == 'workers/w1'


@pytest.mark.asyncio
async def test_session_must_be_open(config):
    session = SessionContext(config)

    with pytest.raises(RuntimeError):
        session.http()
    assert session.auth_headers() == {}
