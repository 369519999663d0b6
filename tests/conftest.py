"""
Shared fixtures

``FakeGateway`` implements ``IResourceGateway`` over in-memory collections
with page slicing, owner filters, injectable failures and gates that hold a
collection's reply until the test releases it.
"""

import asyncio
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

import pytest

from staffing_engine.config import EngineConfig
from staffing_engine.exceptions import AuthExpiredException
from staffing_engine.interfaces import IResourceGateway
from staffing_engine.models import GatewayResponse

NOW = datetime(2024, 6, 1, 12, 0, tzinfo=timezone.utc)

PAGING_KEYS = ('page', 'limit')


class FakeGateway(IResourceGateway):
    def __init__(self, collections: Optional[Dict[str, List[Dict[str, Any]]]] = None):
        self.collections: Dict[str, List[Dict[str, Any]]] = {k: list(v) for k, v in (collections or {}).items()}
        self.failures: List[tuple] = []
        self.expired: set = set()
        self.gates: Dict[str, asyncio.Event] = {}
        self.calls: List[tuple] = []
        self.updates: List[tuple] = []
        self.update_response = GatewayResponse.ok({})
        self.update_error: Optional[BaseException] = None
        self.bare_arrays: set = set()
        self.in_flight = 0
        self.max_in_flight = 0

    def fail(self, collection: str, message: str = "HTTP 500", **match):
        """Fail list calls on ``collection`` whose filters contain ``match``"""
        self.failures.append((collection, match, message))

    def gate(self, collection: str) -> asyncio.Event:
        event = asyncio.Event()
        self.gates[collection] = event
        return event

    async def list(self, collection, filters=None):
        filters = dict(filters or {})
        self.calls.append((collection, filters))
        self.in_flight += 1
        self.max_in_flight = max(self.max_in_flight, self.in_flight)
        try:
            gate = self.gates.get(collection)
            if gate is not None:
                await gate.wait()
            await asyncio.sleep(0)

            if collection in self.expired:
                raise AuthExpiredException(f"{collection} rejected with HTTP 401")
            for failing, match, message in self.failures:
                if failing == collection and all(str(filters.get(k)) == str(v) for k, v in match.items()):
                    return GatewayResponse.fail(message, status=500)

            items = [
                item for item in self.collections.get(collection, [])
                if all(str(item.get(k)) == str(v) for k, v in filters.items() if k not in PAGING_KEYS)
            ]
            if collection in self.bare_arrays or 'page' not in filters:
                return GatewayResponse.ok(items)

            page, limit = int(filters['page']), int(filters['limit'])
            start = (page - 1) * limit
            pages = max(1, -(-len(items) // limit))
            return GatewayResponse.ok({
                'items': items[start:start + limit],
                'total': len(items),
                'page': page,
                'limit': limit,
                'pages': pages,
                'hasNext': page < pages,
                'hasPrev': page > 1,
            })
        finally:
            self.in_flight -= 1

    async def get(self, collection, record_id):
        for item in self.collections.get(collection, []):
            if str(item.get('id')) == str(record_id):
                return GatewayResponse.ok(item)
        return GatewayResponse.fail("not found", status=404)

    async def create(self, collection, payload):
        self.collections.setdefault(collection, []).append(dict(payload))
        return GatewayResponse.ok(payload, status=201)

    async def update(self, collection, record_id, payload):
        self.updates.append((collection, record_id, dict(payload)))
        await asyncio.sleep(0)
        if self.update_error is not None:
            raise self.update_error
        return self.update_response

    async def delete(self, collection, record_id):
        self.collections[collection] = [
            item for item in self.collections.get(collection, []) if str(item.get('id')) != str(record_id)
        ]
        return GatewayResponse.ok()


@pytest.fixture
def now() -> datetime:
    return NOW


@pytest.fixture
def config(monkeypatch) -> EngineConfig:
    for name in ('GATEWAY_BASE_URL', 'GATEWAY_TOKEN', 'FETCH_PAGE_SIZE', 'FETCH_MAX_RECORDS',
                 'FETCH_FAN_OUT_CONCURRENCY', 'ENGINE_PORT', 'LOG_LEVEL'):
        monkeypatch.delenv(name, raising=False)
    config = EngineConfig(environment="testing")
    config.fetch.page_size = 2
    config.fetch.max_records = 50
    config.fetch.fan_out_concurrency = 2
    return config


@pytest.fixture
def staffing_data() -> Dict[str, List[Dict[str, Any]]]:
    """A small, internally consistent staffing dataset"""
    return {
        'clients': [
            {'id': 'c1', 'companyName': 'St Mary Care Home', 'status': 'ACTIVE', 'industry': 'HEALTHCARE',
             'email': 'ops@stmary.example', 'createdAt': '2024-01-10T09:00:00Z'},
            {'id': 'c2', 'companyName': 'Riverside Clinic', 'status': 'TRIAL', 'industry': 'HEALTHCARE',
             'createdAt': '2024-03-02T09:00:00Z'},
        ],
        'workers': [
            {'id': 'w1', 'firstName': 'Alex', 'lastName': 'Morgan', 'rating': 4.5, 'completedJobs': 12,
             'skills': ['Nursing', 'Dementia Care'], 'status': 'active'},
            {'id': 'w2', 'firstName': 'Sam', 'lastName': 'Patel', 'rating': 3.5, 'completedJobs': 3,
             'skills': ['Nursing'], 'status': 'pending'},
        ],
        'jobs': [
            {'id': 'j1', 'clientId': 'c1', 'title': 'Night Nurse', 'status': 'active',
             'salary': {'min': 18, 'max': 24}, 'skills': ['Nursing']},
            {'id': 'j2', 'clientId': 'c2', 'title': 'Care Assistant', 'status': 'pending',
             'skills': ['Dementia Care']},
        ],
        'assignments': [
            {'id': 'a1', 'jobId': 'j1', 'workerId': 'w1', 'clientId': 'c1', 'status': 'active',
             'rate': 20, 'hoursPerWeek': 30, 'startDate': '2024-05-01'},
            {'id': 'a2', 'jobId': 'j2', 'workerId': 'w2', 'clientId': 'c2', 'status': 'pending',
             'hourlyRate': 15, 'hoursPerWeek': 20, 'startDate': '2024-06-10'},
        ],
        'timesheets': [
            {'id': 't1', 'assignmentId': 'a1', 'workerId': 'w1', 'clientId': 'c1',
             'weekStarting': '2024-05-20', 'totalHours': 30, 'status': 'approved'},
            {'id': 't2', 'assignmentId': 'a1', 'workerId': 'w1', 'clientId': 'c1',
             'weekStarting': '2024-05-27', 'totalHours': 25, 'rate': 22, 'status': 'pending'},
        ],
        'documents': [
            {'id': 'd1', 'workerId': 'w1', 'title': 'DBS Certificate', 'category': 'dbs',
             'status': 'VALID', 'expiryDate': '2024-06-16T12:00:00Z'},
            {'id': 'd2', 'workerId': 'w1', 'title': 'Right to Work', 'category': 'rtw',
             'status': 'VALID', 'expiryDate': '2024-05-27T12:00:00Z'},
            {'id': 'd3', 'workerId': 'w2', 'title': 'Training Record', 'category': 'training',
             'status': 'PENDING_REVIEW'},
        ],
        'payments': [
            {'id': 'p1', 'workerId': 'w1', 'amount': 600, 'netAmount': 480, 'hours': 30, 'rate': 20,
             'status': 'paid', 'paymentDate': '2024-05-24T10:00:00Z'},
            {'id': 'p2', 'workerId': 'w1', 'amount': 550, 'netAmount': 440, 'hours': 25, 'rate': 22,
             'status': 'pending', 'createdAt': '2024-05-31T10:00:00Z'},
        ],
        'referrals': [
            {'id': 'r1', 'referrerId': 'w1', 'referredName': 'Jo Bloggs', 'status': 'COMPLETED',
             'bonusAmount': 100, 'bonusStatus': 'PAID', 'createdAt': '2024-04-03T10:00:00Z'},
            {'id': 'r2', 'referrerId': 'w1', 'referredName': 'Kim Lee', 'status': 'PENDING',
             'bonusAmount': 100, 'bonusStatus': 'PENDING', 'createdAt': '2024-05-05T10:00:00Z'},
        ],
    }


@pytest.fixture
def gateway(staffing_data) -> FakeGateway:
    return FakeGateway(staffing_data)


@pytest.fixture
def make_gateway():
    return FakeGateway
