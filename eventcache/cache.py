"""
Read-through cache query layer.

`fetch_all` answers from the store. `fetch_cached` first checks the freshness
budget and, when the cached data for a kind is too old, triggers an ingestion
pass before answering. Refreshes are single-flight per kind: concurrent callers
share one in-flight pass and wait for it for at most `refresh_wait_seconds`,
after which they are served the best data already in the store.
"""

from __future__ import annotations

import asyncio
from datetime import datetime, timedelta, timezone
from typing import Callable, Dict, List, Optional, Sequence

from eventcache.config import CacheConfig
from eventcache.coordinator import IngestionCoordinator, IngestionReport
from eventcache.domain.entities import BaseEntity, BoundingBox, GeoPoint
from eventcache.domain.registry import schema_for_kind
from eventcache.errors import UnknownKindError
from eventcache.infrastructure.geo_store import EntityFilter, GeoStore, WindowCursor
from eventcache.sources.abstract import RelaySource
from eventcache.utils.logging import get_logger

log = get_logger(__name__)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class CacheQueryService:
    """
    Outbound read API for the web layer.

    Parameters
    ----------
    store : GeoStore
        Entity store to read from.
    coordinator : IngestionCoordinator
        Used to refresh stale kinds.
    sources : sequence of RelaySource
        Sources queried by refresh passes.
    config : CacheConfig
        Default freshness budget and the refresh wait budget.
    clock : callable
        Returns the current aware UTC datetime; injectable for tests.
    """

    def __init__(
        self,
        store: GeoStore,
        coordinator: IngestionCoordinator,
        sources: Sequence[RelaySource],
        config: Optional[CacheConfig] = None,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self._store = store
        self._coordinator = coordinator
        self._sources = list(sources)
        self.config = config or CacheConfig()
        self._clock = clock
        self._inflight: Dict[int, asyncio.Task[IngestionReport]] = {}
        self._last_refresh: Dict[int, datetime] = {}

    @staticmethod
    def _entity_class(kind: int) -> str:
        schema = schema_for_kind(kind)
        if schema is None:
            raise UnknownKindError(kind)
        return schema.entity_class

    # ------------------------------------------------------------- freshness

    def _is_fresh(self, kind: int, newest: Optional[datetime], budget: timedelta) -> bool:
        now = self._clock()
        marks = [mark for mark in (newest, self._last_refresh.get(kind)) if mark is not None]
        return any(now - mark <= budget for mark in marks)

    def _on_refresh_done(self, kind: int, task: asyncio.Task[IngestionReport]) -> None:
        if self._inflight.get(kind) is task:
            del self._inflight[kind]
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            log.warning(
                "Refresh pass failed",
                extra={"kind": kind, "error": str(exc) or repr(exc)},
            )

    async def _run_refresh(self, kind: int) -> IngestionReport:
        # Sources resume from their own high-water marks.
        report = await self._coordinator.ingest(kind, self._sources, resume=True)
        if not self._sources or len(report.unreachable_sources) < len(self._sources):
            self._last_refresh[kind] = self._clock()
        return report

    def refresh(self, kind: int) -> asyncio.Task[IngestionReport]:
        """
        Start a refresh pass for `kind`, or join the one already in flight.
        """
        task = self._inflight.get(kind)
        if task is None:
            task = asyncio.create_task(self._run_refresh(kind))
            self._inflight[kind] = task
            task.add_done_callback(lambda done: self._on_refresh_done(kind, done))
            log.info("Refresh started", extra={"kind": kind})
        return task

    def refresh_in_flight(self, kind: int) -> bool:
        return kind in self._inflight

    async def _await_refresh(self, kind: int) -> None:
        task = self.refresh(kind)
        try:
            await asyncio.wait_for(asyncio.shield(task), timeout=self.config.refresh_wait_seconds)
        except asyncio.TimeoutError:
            log.warning(
                "Refresh did not finish within wait budget; serving cached data",
                extra={"kind": kind, "wait_seconds": self.config.refresh_wait_seconds},
            )
        except Exception as exc:  # noqa: BLE001 - a failed refresh degrades to cached data
            log.warning(
                "Refresh failed; serving cached data",
                extra={"kind": kind, "error": str(exc) or repr(exc)},
            )

    # ----------------------------------------------------------------- reads

    async def fetch_all(
        self, kind: int, filters: Optional[EntityFilter] = None
    ) -> List[BaseEntity]:
        """Current state (latest row per id) of every cached entity of `kind`."""
        return await self._store.fetch_latest(self._entity_class(kind), filters)

    async def fetch_cached(
        self,
        kind: int,
        freshness_budget: Optional[timedelta] = None,
        filters: Optional[EntityFilter] = None,
    ) -> List[BaseEntity]:
        """
        Like `fetch_all`, but refresh from the sources first when the newest
        cached data for `kind` is older than `freshness_budget`.
        """
        entity_class = self._entity_class(kind)
        budget = self.config.default_freshness if freshness_budget is None else freshness_budget
        newest = await self._store.newest_time(entity_class)
        if not self._is_fresh(kind, newest, budget):
            await self._await_refresh(kind)
        return await self._store.fetch_latest(entity_class, filters)

    async def fetch_current(self, kind: int, entity_id: str) -> Optional[BaseEntity]:
        return await self._store.fetch_current(self._entity_class(kind), entity_id)

    async def fetch_history(self, kind: int, entity_id: str) -> List[BaseEntity]:
        return await self._store.fetch_history(self._entity_class(kind), entity_id)

    async def fetch_window(
        self,
        kind: int,
        filters: Optional[EntityFilter] = None,
        after: Optional[WindowCursor] = None,
    ) -> List[BaseEntity]:
        return await self._store.fetch_window(self._entity_class(kind), filters, after)

    async def search_bbox(
        self, kind: int, bbox: BoundingBox, filters: Optional[EntityFilter] = None
    ) -> List[BaseEntity]:
        return await self._store.fetch_in_bbox(self._entity_class(kind), bbox, filters)

    async def search_near(
        self,
        kind: int,
        point: GeoPoint,
        radius_m: float,
        filters: Optional[EntityFilter] = None,
    ) -> List[BaseEntity]:
        return await self._store.fetch_near(self._entity_class(kind), point, radius_m, filters)


__all__ = ["CacheQueryService"]
