from __future__ import annotations

from contextlib import AbstractAsyncContextManager
from datetime import datetime, timezone
from decimal import Decimal
from typing import Any, Dict, List, Optional, Tuple

import psycopg
import pytest

from eventcache.domain.entities import BoundingBox, GeoPoint, ProductEntity
from eventcache.errors import StoreError
from eventcache.infrastructure.geo_store import EntityFilter, GeoStore

AUTHOR = "a" * 64
STAMP = datetime(2024, 5, 1, 12, 0, tzinfo=timezone.utc)
BERLIN = GeoPoint(latitude=52.52, longitude=13.405)
BERLIN_BOX = BoundingBox(
    min_latitude=52.3, min_longitude=13.0, max_latitude=52.7, max_longitude=13.8
)


def _product_row(entity_id: str = "30402:aaa:widget") -> Dict[str, Any]:
    return {
        "entity_id": entity_id,
        "time": STAMP,
        "record_id": "f" * 64,
        "author": AUTHOR,
        "kind": 30402,
        "payload": {"title": "Widget"},
        "relays": ["wss://relay.example"],
        "merchant_id": AUTHOR,
        "price": Decimal("9.50"),
        "currency": "EUR",
        "category": None,
        "location_lat": BERLIN.latitude,
        "location_lon": BERLIN.longitude,
    }


class _FakeCursor(AbstractAsyncContextManager["_FakeCursor"]):
    def __init__(self, pool: "_FakePool") -> None:
        self._pool = pool

    async def __aenter__(self) -> "_FakeCursor":
        return self

    async def __aexit__(self, exc_type, exc, tb) -> bool:
        del exc_type, exc, tb
        return False

    async def execute(self, query: Any, params: Optional[Dict[str, Any]] = None) -> None:
        self._pool.executed.append((query.as_string(None), dict(params or {})))
        if self._pool.error is not None:
            raise self._pool.error

    async def fetchall(self) -> List[Dict[str, Any]]:
        return list(self._pool.rows)


class _FakeConnection:
    def __init__(self, pool: "_FakePool") -> None:
        self._pool = pool

    def cursor(self, row_factory: Any = None) -> _FakeCursor:
        del row_factory
        return _FakeCursor(self._pool)


class _ConnectionContext(AbstractAsyncContextManager[_FakeConnection]):
    def __init__(self, conn: _FakeConnection) -> None:
        self._conn = conn

    async def __aenter__(self) -> _FakeConnection:
        return self._conn

    async def __aexit__(self, exc_type, exc, tb) -> bool:
        del exc_type, exc, tb
        return False


class _FakePool:
    """Records rendered SQL and parameters; serves canned rows."""

    def __init__(
        self, rows: Optional[List[Dict[str, Any]]] = None, error: Optional[Exception] = None
    ) -> None:
        self.rows = rows or []
        self.error = error
        self.executed: List[Tuple[str, Dict[str, Any]]] = []

    def connection(self) -> _ConnectionContext:
        return _ConnectionContext(_FakeConnection(self))

    async def close(self) -> None:
        return None


def _collapse(query: str) -> str:
    return " ".join(query.split())


@pytest.mark.asyncio
async def test_fetch_latest_selects_newest_row_per_entity() -> None:
    pool = _FakePool(rows=[_product_row()])
    store = GeoStore(pool)  # type: ignore[arg-type]

    entities = await store.fetch_latest("product", EntityFilter(author=AUTHOR, limit=5))

    [(query, params)] = pool.executed
    query = _collapse(query)
    assert 'SELECT DISTINCT ON (entity_id) * FROM "products" WHERE author = %(author)s' in query
    assert "ORDER BY entity_id, time DESC) latest" in query
    assert query.endswith("ORDER BY time DESC, entity_id LIMIT %(limit)s")
    assert 'ST_Y("location") AS "location_lat"' in query
    assert params == {"author": AUTHOR, "limit": 5}

    (entity,) = entities
    assert isinstance(entity, ProductEntity)
    assert entity.location == BERLIN
    assert entity.price == Decimal("9.50")


@pytest.mark.asyncio
async def test_fetch_latest_without_filter_has_no_where_or_limit() -> None:
    pool = _FakePool()
    store = GeoStore(pool)  # type: ignore[arg-type]

    assert await store.fetch_latest("product") == []

    [(query, params)] = pool.executed
    assert "WHERE" not in query
    assert "LIMIT" not in query
    assert params == {}


@pytest.mark.asyncio
async def test_bbox_search_rechecks_area_on_latest_rows() -> None:
    pool = _FakePool(rows=[_product_row()])
    store = GeoStore(pool)  # type: ignore[arg-type]

    await store.fetch_in_bbox("product", BERLIN_BOX, EntityFilter(limit=10))

    [(query, params)] = pool.executed
    query = _collapse(query)
    candidates, _, rest = query.partition("), latest AS (")
    latest_cte, _, outer = rest.partition(") SELECT ")
    assert candidates.startswith('WITH candidates AS (SELECT DISTINCT entity_id FROM "products"')
    assert '"location" && ST_MakeEnvelope(' in candidates
    assert "SELECT DISTINCT ON (entity_id) *" in latest_cte
    assert "entity_id IN (SELECT entity_id FROM candidates)" in latest_cte
    assert "ORDER BY entity_id, time DESC" in latest_cte
    recheck = outer.partition("FROM latest WHERE ")[2]
    assert recheck.startswith('"location" && ST_MakeEnvelope(%(min_lon)s::float8')
    assert recheck.endswith("ORDER BY time DESC, entity_id LIMIT %(limit)s")
    assert params == {
        "min_lon": 13.0,
        "min_lat": 52.3,
        "max_lon": 13.8,
        "max_lat": 52.7,
        "limit": 10,
    }


@pytest.mark.asyncio
async def test_near_search_uses_geodesic_distance_on_latest_rows() -> None:
    pool = _FakePool()
    store = GeoStore(pool)  # type: ignore[arg-type]

    await store.fetch_near("listing", BERLIN, 2_500.0)

    [(query, params)] = pool.executed
    recheck = _collapse(query).partition("FROM latest WHERE ")[2]
    assert recheck.startswith('ST_DWithin("merchant_location"::geography,')
    assert "%(radius_m)s::float8" in recheck
    assert params == {"center_lon": 13.405, "center_lat": 52.52, "radius_m": 2_500.0}


@pytest.mark.asyncio
async def test_spatial_search_requires_location_column() -> None:
    store = GeoStore(_FakePool())  # type: ignore[arg-type]

    with pytest.raises(ValueError):
        await store.fetch_in_bbox("review", BERLIN_BOX)


@pytest.mark.asyncio
async def test_merchant_filter_requires_merchant_column() -> None:
    pool = _FakePool()
    store = GeoStore(pool)  # type: ignore[arg-type]

    with pytest.raises(ValueError):
        await store.fetch_latest("review", EntityFilter(merchant_id=AUTHOR))
    assert pool.executed == []


@pytest.mark.asyncio
async def test_insert_is_conflict_free_on_entity_and_time() -> None:
    pool = _FakePool(rows=[{"entity_id": "30402:aaa:widget"}])
    store = GeoStore(pool)  # type: ignore[arg-type]
    row = _product_row()
    del row["location_lat"], row["location_lon"]
    entity = ProductEntity(**row, location=BERLIN)

    assert await store.insert_if_absent(entity) is True

    [(query, params)] = pool.executed
    query = _collapse(query)
    assert query.startswith('INSERT INTO "products" (')
    assert query.endswith("ON CONFLICT (entity_id, time) DO NOTHING RETURNING entity_id")
    assert "ST_SetSRID(ST_MakePoint(%(geo_lon)s::float8, %(geo_lat)s::float8), 4326)" in query
    assert params["geo_lat"] == BERLIN.latitude
    assert params["geo_lon"] == BERLIN.longitude
    assert params["payload"].obj == {"title": "Widget"}


@pytest.mark.asyncio
async def test_insert_reports_existing_key() -> None:
    store = GeoStore(_FakePool(rows=[]))  # type: ignore[arg-type]
    row = _product_row()
    del row["location_lat"], row["location_lon"]

    assert await store.insert_if_absent(ProductEntity(**row)) is False


@pytest.mark.asyncio
async def test_driver_error_becomes_store_error() -> None:
    pool = _FakePool(error=psycopg.OperationalError("server closed the connection"))
    store = GeoStore(pool)  # type: ignore[arg-type]

    with pytest.raises(StoreError, match="server closed the connection"):
        await store.fetch_latest("product")
