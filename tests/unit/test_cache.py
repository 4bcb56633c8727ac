from __future__ import annotations

import asyncio
import time
from datetime import timedelta
from typing import Any, List, Optional, Sequence

import pytest

from eventcache.cache import CacheQueryService
from eventcache.config import CacheConfig
from eventcache.coordinator import IngestionCoordinator
from eventcache.domain.registry import KIND_PRODUCT
from eventcache.errors import SourceUnreachable, UnknownKindError
from eventcache.sources.static import StaticSource

CONCURRENT_CALLERS = 10
ONE_HOUR = timedelta(hours=1)
ONE_MINUTE = timedelta(minutes=1)
ALWAYS_STALE = timedelta(seconds=-1)


class _GatedSource:
    """Blocks every fetch until `gate` is set; counts fetches."""

    def __init__(self, records: Sequence[Any]) -> None:
        self.name = "gated"
        self.gate = asyncio.Event()
        self.calls = 0
        self._records = list(records)

    async def fetch(self, kind: int, since: Optional[int]) -> Sequence[Any]:
        self.calls += 1
        await self.gate.wait()
        return [raw for raw in self._records if raw["kind"] == kind]


class _CountingSource(StaticSource):
    def __init__(self, name: str, records: Sequence[Any]) -> None:
        super().__init__(name, records)
        self.calls = 0
        self.since: List[Optional[int]] = []

    async def fetch(self, kind: int, since: Optional[int]) -> Sequence[Any]:
        self.calls += 1
        self.since.append(since)
        return await super().fetch(kind, since)


class _DownSource:
    name = "down"

    def __init__(self) -> None:
        self.calls = 0

    async def fetch(self, kind: int, since: Optional[int]) -> Sequence[Any]:
        self.calls += 1
        raise SourceUnreachable(self.name, "connection refused")


class _SwitchableSource(StaticSource):
    """Unreachable while `down` is set."""

    def __init__(self, name: str, records: Sequence[Any]) -> None:
        super().__init__(name, records)
        self.down = True

    async def fetch(self, kind: int, since: Optional[int]) -> Sequence[Any]:
        if self.down:
            raise SourceUnreachable(self.name, "connection refused")
        return await super().fetch(kind, since)


class _FailingCoordinator:
    async def ingest(self, kind, sources, since=None, resume=False):
        raise RuntimeError("coordinator exploded")


def _product(make_record, d: str, age_seconds: int) -> dict:
    return make_record(
        KIND_PRODUCT,
        [["d", d], ["price", "5", "USD"]],
        created_at=int(time.time()) - age_seconds,
    )


async def _seed(store, records) -> None:
    await IngestionCoordinator(store).ingest(KIND_PRODUCT, [StaticSource("seed", records)])


@pytest.mark.asyncio
async def test_concurrent_stale_reads_share_one_refresh(memory_store, make_record) -> None:
    await _seed(memory_store, [_product(make_record, "p0", 120)])
    source = _GatedSource([_product(make_record, "p1", 10), _product(make_record, "p2", 10)])
    service = CacheQueryService(memory_store, IngestionCoordinator(memory_store), [source])

    asyncio.get_running_loop().call_later(0.05, source.gate.set)
    results = await asyncio.gather(
        *(service.fetch_cached(KIND_PRODUCT, ONE_MINUTE) for _ in range(CONCURRENT_CALLERS))
    )

    assert source.calls == 1
    assert all(len(entities) == 3 for entities in results)
    assert not service.refresh_in_flight(KIND_PRODUCT)


@pytest.mark.asyncio
async def test_fresh_cache_skips_refresh(memory_store, make_record) -> None:
    await _seed(memory_store, [_product(make_record, "p1", 120)])
    source = _CountingSource("relay", [])
    service = CacheQueryService(memory_store, IngestionCoordinator(memory_store), [source])

    entities = await service.fetch_cached(KIND_PRODUCT, ONE_HOUR)

    assert source.calls == 0
    assert [e.entity_id.split(":")[-1] for e in entities] == ["p1"]


@pytest.mark.asyncio
async def test_stale_cache_refresh_resumes_from_source_mark(memory_store, make_record) -> None:
    old = _product(make_record, "p1", 7200)
    await _seed(memory_store, [old])
    newer = _product(make_record, "p2", 3600)
    source = _CountingSource("relay", [old, newer])
    coordinator = IngestionCoordinator(memory_store)
    service = CacheQueryService(memory_store, coordinator, [source])

    entities = await service.fetch_cached(KIND_PRODUCT, ONE_MINUTE)

    assert source.calls == 1
    assert source.since == [None]
    assert len(entities) == 2

    # A successful refresh counts as fresh even though the newest row is old.
    await service.fetch_cached(KIND_PRODUCT, ONE_MINUTE)
    assert source.calls == 1

    await service.fetch_cached(KIND_PRODUCT, ALWAYS_STALE)
    overlap = coordinator.config.resume_overlap_seconds
    assert source.since == [None, newer["created_at"] - overlap]


@pytest.mark.asyncio
async def test_source_down_during_refresh_catches_up_later(memory_store, make_record) -> None:
    relay_a = _CountingSource("a", [_product(make_record, "a", 300)])
    relay_b = _SwitchableSource("b", [_product(make_record, "b", 600)])
    service = CacheQueryService(
        memory_store, IngestionCoordinator(memory_store), [relay_a, relay_b]
    )

    first = await service.fetch_cached(KIND_PRODUCT, ALWAYS_STALE)
    relay_b.down = False
    second = await service.fetch_cached(KIND_PRODUCT, ALWAYS_STALE)

    assert [e.entity_id.split(":")[-1] for e in first] == ["a"]
    assert sorted(e.entity_id.split(":")[-1] for e in second) == ["a", "b"]


@pytest.mark.asyncio
async def test_unreachable_refresh_does_not_mark_fresh(memory_store, make_record) -> None:
    await _seed(memory_store, [_product(make_record, "p1", 7200)])
    source = _DownSource()
    service = CacheQueryService(memory_store, IngestionCoordinator(memory_store), [source])

    first = await service.fetch_cached(KIND_PRODUCT, ONE_MINUTE)
    await service.fetch_cached(KIND_PRODUCT, ONE_MINUTE)

    assert len(first) == 1
    assert source.calls == 2


@pytest.mark.asyncio
async def test_slow_refresh_serves_cached_data(memory_store, make_record) -> None:
    await _seed(memory_store, [_product(make_record, "p1", 7200)])
    source = _GatedSource([_product(make_record, "p2", 5)])
    service = CacheQueryService(
        memory_store,
        IngestionCoordinator(memory_store),
        [source],
        CacheConfig(refresh_wait_seconds=0.05),
    )

    entities = await service.fetch_cached(KIND_PRODUCT, ONE_MINUTE)

    assert len(entities) == 1
    assert service.refresh_in_flight(KIND_PRODUCT)

    # The pass keeps running in the background and lands later.
    task = service.refresh(KIND_PRODUCT)
    source.gate.set()
    await task
    assert len(await service.fetch_all(KIND_PRODUCT)) == 2


@pytest.mark.asyncio
async def test_failed_refresh_serves_cached_data(memory_store, make_record) -> None:
    await _seed(memory_store, [_product(make_record, "p1", 7200)])
    service = CacheQueryService(memory_store, _FailingCoordinator(), [StaticSource("a", [])])

    entities = await service.fetch_cached(KIND_PRODUCT, ONE_MINUTE)

    assert len(entities) == 1
    assert not service.refresh_in_flight(KIND_PRODUCT)


@pytest.mark.asyncio
async def test_fetch_all_never_refreshes(memory_store, make_record) -> None:
    await _seed(memory_store, [_product(make_record, "p1", 7200)])
    source = _CountingSource("relay", [])
    service = CacheQueryService(memory_store, IngestionCoordinator(memory_store), [source])

    assert len(await service.fetch_all(KIND_PRODUCT)) == 1
    assert source.calls == 0


@pytest.mark.asyncio
async def test_unregistered_kind_raises(memory_store) -> None:
    service = CacheQueryService(memory_store, IngestionCoordinator(memory_store), [])

    with pytest.raises(UnknownKindError):
        await service.fetch_all(12345)
    with pytest.raises(UnknownKindError):
        await service.fetch_cached(12345, ONE_MINUTE)
