"""
Fetch orchestrator

Issues a batch of independent collection requests concurrently and folds the
replies into one immutable ``Snapshot``. A failed collection becomes an empty
``CollectionResult`` with ``ok=False``; siblings are unaffected. Fan-out
requests fetch a sub-collection once per parent record under a concurrency
bound. Each call to ``fetch`` takes a new generation and only the newest
generation may publish.
"""

import asyncio
import logging
import re
from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from typing import Any, Dict, Iterable, List, Mapping, Optional, Sequence, Tuple

from ..config import EngineConfig
from ..exceptions import AuthExpiredException, is_recoverable_error
from ..interfaces import IResourceGateway
from ..models import ENTITY_TYPES, CollectionResult, Snapshot
from ..utils.async_utils import AsyncTimer, gather_with_concurrency

logger = logging.getLogger(__name__)

_CAMEL_BOUNDARY = re.compile(r'(?<!^)(?=[A-Z])')


def attribute_name(gateway_field: str) -> str:
    """``clientId`` -> ``client_id``"""
    return _CAMEL_BOUNDARY.sub('_', gateway_field).lower()


@dataclass(frozen=True)
class ResourceRequest:
    """One collection to fetch, optionally scoped to an owner"""
    collection: str
    key: Optional[str] = None
    owner_field: Optional[str] = None
    owner_id: Optional[str] = None
    filters: Mapping[str, Any] = field(default_factory=dict)
    paginated: bool = True

    @property
    def snapshot_key(self) -> str:
        return self.key or self.collection

    def scoped(self, owner_id: Optional[str]) -> "ResourceRequest":
        if self.owner_field is None or owner_id is None:
            return self
        return replace(self, owner_id=owner_id)


@dataclass(frozen=True)
class FanOutRequest:
    """Sub-collection fetched once per record of a parent collection"""
    collection: str
    parent: str
    owner_field: str
    key: Optional[str] = None
    filters: Mapping[str, Any] = field(default_factory=dict)

    @property
    def snapshot_key(self) -> str:
        return self.key or self.collection


def extract_page(data: Any, collection: str) -> Optional[Tuple[List[Any], Dict[str, Any]]]:
    """Split a list response into items and pagination metadata.

    Accepts a bare array, a page dict with ``items``, or a dict keyed by the
    collection name. Returns None for any other shape.
    """
    if isinstance(data, list):
        return data, {}
    if isinstance(data, dict):
        for key in ('items', collection, 'results', 'data'):
            items = data.get(key)
            if isinstance(items, list):
                meta = {k: v for k, v in data.items() if k != key}
                return items, meta
    return None


class FetchOrchestrator:
    """Concurrent, failure-tolerant snapshot builder for one view"""

    def __init__(self, gateway: IResourceGateway, config: EngineConfig, name: str = "default"):
        """Initialise the orchestrator

        Args:
            gateway: resource gateway
            config: engine configuration
            name: label used in logs (normally the view key)
        """
        self.gateway = gateway
        self.config = config
        self.name = name
        self._generation = 0
        self._published: Optional[Snapshot] = None
        self._discarded = 0

    @property
    def generation(self) -> int:
        return self._generation

    @property
    def latest(self) -> Optional[Snapshot]:
        return self._published

    @property
    def discarded_count(self) -> int:
        return self._discarded

    async def fetch(self, requests: Sequence[ResourceRequest],
                    fan_out: Sequence[FanOutRequest] = ()) -> Optional[Snapshot]:
        """Run one fetch cycle

        Args:
            requests: root collection requests, issued concurrently
            fan_out: per-parent sub-collection requests, run after the roots

        Returns:
            Optional[Snapshot]: the published snapshot, or None when a newer
            cycle was started before this one finished

        Raises:
            AuthExpiredException: any call reported an authorization failure
        """
        self._generation += 1
        generation = self._generation
        logger.debug(f"[{self.name}] fetch cycle {generation} started with {len(requests)} request(s)")

        async with AsyncTimer() as timer:
            replies = await asyncio.gather(
                *(self._fetch_collection(request) for request in requests),
                return_exceptions=True,
            )
            results = self._collect(requests, replies)

            if fan_out and generation == self._generation:
                fan_replies = await asyncio.gather(
                    *(self._fan_out(request, results.get(request.parent)) for request in fan_out),
                    return_exceptions=True,
                )
                for request, reply in zip(fan_out, fan_replies):
                    results[request.snapshot_key] = self._as_result(request.snapshot_key, reply)

        if generation != self._generation:
            self._discarded += 1
            logger.info(
                f"[{self.name}] discarded fetch cycle {generation}; "
                f"cycle {self._generation} is newer"
            )
            return None

        snapshot = Snapshot(
            generation=generation,
            fetched_at=datetime.now(timezone.utc),
            collections=results,
        )
        self._published = snapshot

        if snapshot.is_degraded:
            logger.warning(f"[{self.name}] cycle {generation} degraded: {'; '.join(snapshot.warnings)}")
        logger.info(
            f"[{self.name}] published cycle {generation} "
            f"({len(results)} collection(s), {timer.elapsed_seconds or 0:.3f}s)"
        )
        return snapshot

    def _collect(self, requests: Sequence[ResourceRequest], replies: Sequence[Any]) -> Dict[str, CollectionResult]:
        results: Dict[str, CollectionResult] = {}
        for request, reply in zip(requests, replies):
            results[request.snapshot_key] = self._as_result(request.snapshot_key, reply)
        return results

    def _as_result(self, key: str, reply: Any) -> CollectionResult:
        if isinstance(reply, AuthExpiredException):
            raise reply
        if isinstance(reply, BaseException):
            if is_recoverable_error(reply):
                logger.warning(f"[{self.name}] {key} unavailable: {reply}")
                return CollectionResult.failure(key, str(reply))
            logger.error(f"[{self.name}] unexpected error fetching {key}: {reply!r}")
            return CollectionResult.failure(key, f"unexpected error: {reply}")
        return reply

    async def _fetch_collection(self, request: ResourceRequest) -> CollectionResult:
        """Walk the pages of one collection

        Returns a failure result when the first page fails, and a partial
        result when a later page fails.
        """
        key = request.snapshot_key
        page_size = min(self.config.fetch.page_size, self.config.fetch.max_records)
        max_records = self.config.fetch.max_records
        raw_items: List[Any] = []
        total: Optional[int] = None
        truncated = False
        failed_pages: List[str] = []
        page = 1

        while True:
            filters = dict(request.filters)
            if request.owner_field and request.owner_id is not None:
                filters[request.owner_field] = request.owner_id
            if request.paginated:
                filters.update({'page': page, 'limit': page_size})

            response = await self.gateway.list(request.collection, filters)
            if not response.success:
                error = response.error or 'request failed'
                if page == 1:
                    logger.warning(f"[{self.name}] {key} unavailable: {error}")
                    return CollectionResult.failure(key, error)
                logger.warning(f"[{self.name}] {key} page {page} failed: {error}")
                failed_pages.append(f"page:{page}")
                break

            page_data = extract_page(response.data, request.collection)
            if page_data is None:
                if page == 1:
                    logger.warning(f"[{self.name}] {key} returned an unrecognised list payload")
                    return CollectionResult.failure(key, "unrecognised list payload")
                logger.warning(f"[{self.name}] {key} page {page} returned an unrecognised list payload")
                failed_pages.append(f"page:{page}")
                break
            items, meta = page_data
            raw_items.extend(items)
            if isinstance(meta.get('total'), int):
                total = meta['total']

            if not request.paginated or not items or not meta.get('hasNext'):
                break
            if len(raw_items) >= max_records:
                truncated = True
                logger.warning(
                    f"[{self.name}] {key} truncated at {len(raw_items)} record(s) "
                    f"(server total {total})"
                )
                break
            page += 1

        if len(raw_items) > max_records and not truncated:
            truncated = True
            logger.warning(
                f"[{self.name}] {key} truncated at {max_records} of {len(raw_items)} fetched record(s) "
                f"(server total {total})"
            )

        records = self._parse(request.collection, raw_items[:max_records])
        if request.owner_field and request.owner_id is not None:
            records = self._scope(records, request.owner_field, request.owner_id)

        return CollectionResult(
            name=key,
            records=tuple(records),
            total=total if total is not None else len(records),
            truncated=truncated,
            partial=bool(failed_pages),
            failed_keys=tuple(failed_pages),
        )

    async def _fan_out(self, request: FanOutRequest, parent: Optional[CollectionResult]) -> CollectionResult:
        """Fetch ``request.collection`` once per parent record"""
        key = request.snapshot_key
        if parent is None or not parent.ok:
            return CollectionResult.failure(key, f"parent collection {request.parent} unavailable")

        parent_ids = [record.id for record in parent.records if getattr(record, 'id', None)]
        if len(parent_ids) > self.config.fetch.fan_out_warn_threshold:
            logger.warning(
                f"[{self.name}] fan-out of {key} over {len(parent_ids)} {request.parent} "
                f"exceeds {self.config.fetch.fan_out_warn_threshold} sub-requests"
            )

        sub_requests = [
            ResourceRequest(
                collection=request.collection,
                key=key,
                owner_field=request.owner_field,
                owner_id=parent_id,
                filters=request.filters,
            )
            for parent_id in parent_ids
        ]
        replies = await gather_with_concurrency(
            (self._fetch_collection(sub) for sub in sub_requests),
            max_concurrency=self.config.fetch.fan_out_concurrency,
        )

        records: List[Any] = []
        failed: List[str] = []
        for parent_id, reply in zip(parent_ids, replies):
            if isinstance(reply, AuthExpiredException):
                raise reply
            if isinstance(reply, BaseException):
                logger.warning(f"[{self.name}] {key} for {request.parent}/{parent_id} raised: {reply!r}")
                failed.append(parent_id)
                continue
            if not reply.ok:
                logger.warning(f"[{self.name}] {key} for {request.parent}/{parent_id} failed: {reply.error}")
                failed.append(parent_id)
                continue
            records.extend(reply.records)

        if parent_ids and len(failed) == len(parent_ids):
            return CollectionResult.failure(key, f"all {len(failed)} sub-request(s) failed")

        unique = self._unique(records)
        return CollectionResult(
            name=key,
            records=tuple(unique),
            total=len(unique),
            partial=bool(failed),
            failed_keys=tuple(failed),
        )

    def _parse(self, collection: str, items: Iterable[Any]) -> List[Any]:
        entity = ENTITY_TYPES.get(collection)
        if entity is None:
            return [item for item in items if isinstance(item, dict)]
        records = []
        skipped = 0
        for item in items:
            if not isinstance(item, dict):
                skipped += 1
                continue
            record = entity.from_payload(item)
            if not record.id:
                skipped += 1
                continue
            records.append(record)
        if skipped:
            logger.warning(f"[{self.name}] skipped {skipped} malformed {collection} item(s)")
        flagged = sum(1 for record in records if record.is_flagged)
        if flagged:
            logger.warning(f"[{self.name}] {flagged} {collection} record(s) had invalid quantities coerced to 0")
        return self._unique(records)

    def _unique(self, records: Iterable[Any]) -> List[Any]:
        seen = set()
        unique = []
        for record in records:
            record_id = record.get('id') if isinstance(record, dict) else record.id
            if record_id in seen:
                logger.warning(f"[{self.name}] duplicate id {record_id} ignored")
                continue
            seen.add(record_id)
            unique.append(record)
        return unique

    @staticmethod
    def _scope(records: Iterable[Any], owner_field: str, owner_id: str) -> List[Any]:
        attribute = attribute_name(owner_field)
        scoped = []
        for record in records:
            value = record.get(owner_field) if isinstance(record, dict) else getattr(record, attribute, None)
            if value is not None and str(value) == str(owner_id):
                scoped.append(record)
        return scoped
