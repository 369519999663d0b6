"""
Dashboard handler

Loads dashboard views, serves filtered record lists and accepts status
mutations. An expired session is not handled here; it propagates to the error
middleware, which answers 401 so the caller re-authenticates.
"""

from typing import Any, Dict

from aiohttp import web

from ..coordinators.dashboard_coordinator import DashboardCoordinator
from ..exceptions import UnknownViewException
from ..models import MutationIntent, MutationResult, ViewState
from .base import BaseHandler

# MutationResult error codes answered with 409; anything else is a gateway refusal.
CONFLICT_CODES = {'INVALID_MUTATION', None}


def _is_record_list(value: Any) -> bool:
    return isinstance(value, (tuple, list))


def view_payload(state: ViewState) -> Dict[str, Any]:
    """Aggregates, collection health and degradation flags of a view state"""
    snapshot = state.snapshot
    return {
        'view': state.view,
        'owner_id': state.owner_id,
        'generation': state.generation,
        'as_of': state.as_of,
        'fetched_at': snapshot.fetched_at,
        'degraded': snapshot.is_degraded,
        'degraded_collections': list(snapshot.degraded_collections),
        'warnings': snapshot.warnings,
        'collections': {
            name: {
                'ok': result.ok,
                'count': len(result.records),
                'total': result.total,
                'truncated': result.truncated,
                'partial': result.partial,
                'error': result.error,
            }
            for name, result in snapshot.collections.items()
        },
        'record_sets': [name for name, value in state.derived.items() if _is_record_list(value)],
        'aggregates': {name: value for name, value in state.derived.items() if not _is_record_list(value)},
    }


class DashboardHandler(BaseHandler):
    """Dashboard API"""

    def _coordinator(self, request: web.Request) -> DashboardCoordinator:
        return self.get_app_component(request, 'dashboard_coordinator')

    async def list_views(self, request: web.Request) -> web.Response:
        coordinator = self._coordinator(request)
        views = [coordinator.definition(name).describe() for name in coordinator.view_names()]
        return self.success_response({'views': views, 'count': len(views)})

    async def load_view(self, request: web.Request) -> web.Response:
        """GET /api/v1/dashboards/{view}

        Query:
            owner_id: required for client and worker views
        """
        coordinator = self._coordinator(request)
        view = request.match_info['view']
        owner_id = request.query.get('owner_id') or None

        try:
            state = await coordinator.load(view, owner_id)
        except UnknownViewException as e:
            return self.error_response(e.message, 404, e.error_code)
        except ValueError as e:
            return self.error_response(str(e), 400, 'INVALID_REQUEST')

        if state is None:
            return self.error_response(f"Load of {view} was superseded by a newer request", 409, 'SUPERSEDED')

        message = "Loaded with partial data" if state.snapshot.is_degraded else "OK"
        return self.success_response(view_payload(state), message)

    async def list_records(self, request: web.Request) -> web.Response:
        """GET /api/v1/dashboards/{view}/records/{name}

        Query:
            owner_id, status, search, from, to, sort, limit, offset
        """
        coordinator = self._coordinator(request)
        view = request.match_info['view']
        name = request.match_info['name']
        query = dict(request.query)
        owner_id = query.pop('owner_id', None) or None

        try:
            limit = int(query.pop('limit')) if 'limit' in query else None
            offset = int(query.pop('offset', 0))
        except ValueError:
            return self.error_response("limit and offset must be integers", 400, 'INVALID_REQUEST')
        if offset < 0 or (limit is not None and limit < 0):
            return self.error_response("limit and offset must not be negative", 400, 'INVALID_REQUEST')

        try:
            if coordinator.state(view, owner_id) is None:
                await coordinator.load(view, owner_id)
            records = coordinator.filter_query(view, name, query, owner_id)
        except UnknownViewException as e:
            return self.error_response(e.message, 404, e.error_code)
        except LookupError as e:
            return self.error_response(str(e), 404, 'NOT_FOUND')
        except ValueError as e:
            return self.error_response(str(e), 400, 'INVALID_REQUEST')

        page = records[offset:offset + limit] if limit is not None else records[offset:]
        return self.success_response({
            'view': view,
            'name': name,
            'count': len(records),
            'records': page,
        })

    async def mutate(self, request: web.Request) -> web.Response:
        """POST /api/v1/dashboards/{view}/mutations

        Body:
            collection, record_id, action, optional payload and owner_id
        """
        coordinator = self._coordinator(request)
        view = request.match_info['view']
        data = await self.get_request_json(request)

        error = self.validate_required_fields(data, ['collection', 'record_id', 'action'])
        if error:
            return self.error_response(error, 400, 'INVALID_REQUEST')

        payload = data.get('payload') or {}
        if not isinstance(payload, dict):
            return self.error_response("payload must be a JSON object", 400, 'INVALID_REQUEST')

        owner_id = data.get('owner_id') or request.query.get('owner_id') or None
        intent = MutationIntent(
            collection=str(data['collection']),
            record_id=str(data['record_id']),
            action=str(data['action']),
            payload=payload,
        )

        try:
            result = await coordinator.mutate(view, intent, owner_id)
        except UnknownViewException as e:
            return self.error_response(e.message, 404, e.error_code)
        except LookupError as e:
            return self.error_response(str(e), 404, 'NOT_FOUND')
        except ValueError as e:
            return self.error_response(str(e), 400, 'INVALID_REQUEST')

        return self._mutation_response(result)

    def _mutation_response(self, result: MutationResult) -> web.Response:
        body = {
            'recomputed': list(result.recomputed),
            'rolled_back': result.rolled_back,
            'view': view_payload(result.state),
        }
        if result.ok:
            return self.success_response(body, "Mutation applied")
        status = 409 if result.error_code in CONFLICT_CODES else 502
        return self.error_response(result.error or "Mutation failed", status, result.error_code, body)
