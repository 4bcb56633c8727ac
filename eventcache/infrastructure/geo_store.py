"""
Time-partitioned, geo-indexed entity store on PostgreSQL/PostGIS.

Writes are insert-if-absent on `(entity_id, time)` using the database's
conflict clause, so concurrent ingestion passes never race between a
presence check and an insert. Reads cover the two access patterns the
cache needs: time-window range scans and spatial filters combined with a
time window, plus "latest row per id" via DISTINCT ON over the primary key.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Any, Dict, List, Optional, Sequence, Tuple

import psycopg
from psycopg import sql
from psycopg.rows import dict_row
from psycopg.types.json import Jsonb
from psycopg_pool import AsyncConnectionPool

from eventcache.domain.entities import BaseEntity, BoundingBox, GeoPoint
from eventcache.domain.registry import ENTITY_SCHEMAS, TableSchema
from eventcache.errors import StoreError
from eventcache.infrastructure.db_factory import open_async_pool
from eventcache.utils.logging import get_logger

log = get_logger(__name__)

WindowCursor = Tuple[datetime, str]


@dataclass(frozen=True)
class EntityFilter:
    """Row filter shared by the read operations. All fields are optional."""

    since: Optional[datetime] = None
    until: Optional[datetime] = None
    author: Optional[str] = None
    merchant_id: Optional[str] = None
    limit: Optional[int] = None


def _schema(entity_class: str) -> TableSchema:
    try:
        return ENTITY_SCHEMAS[entity_class]
    except KeyError:
        raise ValueError(f"Unknown entity class {entity_class!r}") from None


def _projection(schema: TableSchema) -> sql.Composable:
    """Select list: plain columns plus the geometry split into lat/lon."""
    fields: List[sql.Composable] = [sql.Identifier(name) for name in schema.column_names]
    if schema.geo_column:
        geo = sql.Identifier(schema.geo_column)
        fields.append(
            sql.SQL("ST_Y({}) AS {}").format(geo, sql.Identifier(f"{schema.geo_column}_lat"))
        )
        fields.append(
            sql.SQL("ST_X({}) AS {}").format(geo, sql.Identifier(f"{schema.geo_column}_lon"))
        )
    return sql.SQL(", ").join(fields)


def _filter_clauses(
    schema: TableSchema, flt: EntityFilter, params: Dict[str, Any]
) -> List[sql.Composable]:
    clauses: List[sql.Composable] = []
    if flt.since is not None:
        clauses.append(sql.SQL("time >= %(since)s"))
        params["since"] = flt.since
    if flt.until is not None:
        clauses.append(sql.SQL("time <= %(until)s"))
        params["until"] = flt.until
    if flt.author is not None:
        clauses.append(sql.SQL("author = %(author)s"))
        params["author"] = flt.author
    if flt.merchant_id is not None:
        if schema.merchant_column is None:
            raise ValueError(f"{schema.entity_class} has no merchant column to filter on")
        clauses.append(
            sql.SQL("{} = %(merchant_id)s").format(sql.Identifier(schema.merchant_column))
        )
        params["merchant_id"] = flt.merchant_id
    return clauses


def _where(clauses: Sequence[sql.Composable]) -> sql.Composable:
    if not clauses:
        return sql.SQL("")
    return sql.SQL(" WHERE ") + sql.SQL(" AND ").join(clauses)


def _limit(flt: EntityFilter, params: Dict[str, Any]) -> sql.Composable:
    if flt.limit is None:
        return sql.SQL("")
    params["limit"] = flt.limit
    return sql.SQL(" LIMIT %(limit)s")


def row_to_entity(schema: TableSchema, row: Dict[str, Any]) -> BaseEntity:
    data = dict(row)
    if schema.geo_column:
        latitude = data.pop(f"{schema.geo_column}_lat", None)
        longitude = data.pop(f"{schema.geo_column}_lon", None)
        data[schema.geo_column] = (
            GeoPoint(latitude=latitude, longitude=longitude)
            if latitude is not None and longitude is not None
            else None
        )
    return schema.model.model_validate(data)


class GeoStore:
    """
    Async entity store over a psycopg connection pool.

    Every database failure surfaces as `StoreError`; nothing is retried here.
    """

    def __init__(self, pool: AsyncConnectionPool) -> None:
        self._pool = pool

    @classmethod
    async def connect(
        cls,
        dsn: str,
        min_size: int = 1,
        max_size: int = 10,
        statement_timeout_ms: int = 0,
    ) -> "GeoStore":
        try:
            pool = await open_async_pool(
                dsn, min_size=min_size, max_size=max_size, statement_timeout_ms=statement_timeout_ms
            )
        except psycopg.Error as exc:
            raise StoreError(f"cannot open connection pool: {exc}") from exc
        return cls(pool)

    async def close(self) -> None:
        await self._pool.close()

    async def __aenter__(self) -> "GeoStore":
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.close()

    async def _fetch(self, query: sql.Composable, params: Dict[str, Any]) -> List[Dict[str, Any]]:
        try:
            async with self._pool.connection() as conn:
                async with conn.cursor(row_factory=dict_row) as cur:
                    await cur.execute(query, params)
                    return await cur.fetchall()
        except psycopg.Error as exc:
            log.exception("Store query failed")
            raise StoreError(str(exc)) from exc

    async def _select(
        self, schema: TableSchema, query: sql.Composable, params: Dict[str, Any]
    ) -> List[BaseEntity]:
        rows = await self._fetch(query, params)
        return [row_to_entity(schema, row) for row in rows]

    # ------------------------------------------------------------------ writes

    async def insert_if_absent(self, entity: BaseEntity) -> bool:
        """
        Insert the entity unless its `(entity_id, time)` key already exists.

        Returns True when a row was written.
        """
        schema = _schema(entity.entity_class)  # type: ignore[attr-defined]
        values = entity.model_dump()
        params: Dict[str, Any] = {name: values[name] for name in schema.column_names}
        params["payload"] = Jsonb(values["payload"])

        names: List[sql.Composable] = [sql.Identifier(name) for name in schema.column_names]
        placeholders: List[sql.Composable] = [
            sql.Placeholder(name) for name in schema.column_names
        ]
        if schema.geo_column:
            point = values.get(schema.geo_column)
            params["geo_lat"] = point["latitude"] if point else None
            params["geo_lon"] = point["longitude"] if point else None
            names.append(sql.Identifier(schema.geo_column))
            placeholders.append(
                sql.SQL(
                    "ST_SetSRID(ST_MakePoint(%(geo_lon)s::float8, %(geo_lat)s::float8), 4326)"
                )
            )

        query = sql.SQL(
            "INSERT INTO {} ({}) VALUES ({}) "
            "ON CONFLICT (entity_id, time) DO NOTHING RETURNING entity_id"
        ).format(
            sql.Identifier(schema.table),
            sql.SQL(", ").join(names),
            sql.SQL(", ").join(placeholders),
        )
        return bool(await self._fetch(query, params))

    # ------------------------------------------------------------------- reads

    async def stored_record_id(
        self, entity_class: str, entity_id: str, time: datetime
    ) -> Optional[str]:
        schema = _schema(entity_class)
        query = sql.SQL(
            "SELECT record_id FROM {} WHERE entity_id = %(entity_id)s AND time = %(time)s"
        ).format(sql.Identifier(schema.table))
        rows = await self._fetch(query, {"entity_id": entity_id, "time": time})
        return rows[0]["record_id"] if rows else None

    async def newest_time(self, entity_class: str) -> Optional[datetime]:
        schema = _schema(entity_class)
        query = sql.SQL("SELECT max(time) AS newest FROM {}").format(sql.Identifier(schema.table))
        rows = await self._fetch(query, {})
        return rows[0]["newest"] if rows else None

    async def fetch_latest(
        self, entity_class: str, flt: Optional[EntityFilter] = None
    ) -> List[BaseEntity]:
        """Current state: the newest row per entity id, newest first."""
        schema = _schema(entity_class)
        flt = flt or EntityFilter()
        params: Dict[str, Any] = {}
        where = _where(_filter_clauses(schema, flt, params))
        query = sql.SQL(
            "SELECT {proj} FROM ("
            "SELECT DISTINCT ON (entity_id) * FROM {table}{where} "
            "ORDER BY entity_id, time DESC"
            ") latest ORDER BY time DESC, entity_id{limit}"
        ).format(
            proj=_projection(schema),
            table=sql.Identifier(schema.table),
            where=where,
            limit=_limit(flt, params),
        )
        return await self._select(schema, query, params)

    async def fetch_current(self, entity_class: str, entity_id: str) -> Optional[BaseEntity]:
        schema = _schema(entity_class)
        query = sql.SQL(
            "SELECT {} FROM {} WHERE entity_id = %(entity_id)s ORDER BY time DESC LIMIT 1"
        ).format(_projection(schema), sql.Identifier(schema.table))
        entities = await self._select(schema, query, {"entity_id": entity_id})
        return entities[0] if entities else None

    async def fetch_history(self, entity_class: str, entity_id: str) -> List[BaseEntity]:
        schema = _schema(entity_class)
        query = sql.SQL("SELECT {} FROM {} WHERE entity_id = %(entity_id)s ORDER BY time").format(
            _projection(schema), sql.Identifier(schema.table)
        )
        return await self._select(schema, query, {"entity_id": entity_id})

    async def fetch_window(
        self,
        entity_class: str,
        flt: Optional[EntityFilter] = None,
        after: Optional[WindowCursor] = None,
    ) -> List[BaseEntity]:
        """
        Range scan newest first. Pass the last row's `(time, entity_id)` as
        `after` to fetch the next page.
        """
        schema = _schema(entity_class)
        flt = flt or EntityFilter()
        params: Dict[str, Any] = {}
        clauses = _filter_clauses(schema, flt, params)
        if after is not None:
            clauses.append(sql.SQL("(time, entity_id) < (%(after_time)s, %(after_id)s)"))
            params["after_time"], params["after_id"] = after
        query = sql.SQL("SELECT {} FROM {}{} ORDER BY time DESC, entity_id DESC{}").format(
            _projection(schema),
            sql.Identifier(schema.table),
            _where(clauses),
            _limit(flt, params),
        )
        return await self._select(schema, query, params)

    async def _fetch_spatial(
        self,
        schema: TableSchema,
        spatial: sql.Composable,
        params: Dict[str, Any],
        flt: EntityFilter,
    ) -> List[BaseEntity]:
        # Candidates come from the spatial index; the re-check after DISTINCT ON
        # drops entities whose current row has moved outside the area.
        clauses = _filter_clauses(schema, flt, params)
        query = sql.SQL(
            "WITH candidates AS ("
            "SELECT DISTINCT entity_id FROM {table}{candidate_where}"
            "), latest AS ("
            "SELECT DISTINCT ON (entity_id) * FROM {table}{latest_where} "
            "ORDER BY entity_id, time DESC"
            ") SELECT {proj} FROM latest WHERE {spatial} ORDER BY time DESC, entity_id{limit}"
        ).format(
            table=sql.Identifier(schema.table),
            candidate_where=_where([*clauses, spatial]),
            latest_where=_where(
                [*clauses, sql.SQL("entity_id IN (SELECT entity_id FROM candidates)")]
            ),
            proj=_projection(schema),
            spatial=spatial,
            limit=_limit(flt, params),
        )
        return await self._select(schema, query, params)

    async def fetch_in_bbox(
        self, entity_class: str, bbox: BoundingBox, flt: Optional[EntityFilter] = None
    ) -> List[BaseEntity]:
        """Current rows whose location lies inside the box (edges inclusive)."""
        schema = _schema(entity_class)
        if not schema.geo_column:
            raise ValueError(f"{entity_class} has no location column")
        params: Dict[str, Any] = {
            "min_lon": bbox.min_longitude,
            "min_lat": bbox.min_latitude,
            "max_lon": bbox.max_longitude,
            "max_lat": bbox.max_latitude,
        }
        spatial = sql.SQL(
            "{} && ST_MakeEnvelope(%(min_lon)s::float8, %(min_lat)s::float8, "
            "%(max_lon)s::float8, %(max_lat)s::float8, 4326)"
        ).format(sql.Identifier(schema.geo_column))
        return await self._fetch_spatial(schema, spatial, params, flt or EntityFilter())

    async def fetch_near(
        self,
        entity_class: str,
        point: GeoPoint,
        radius_m: float,
        flt: Optional[EntityFilter] = None,
    ) -> List[BaseEntity]:
        """Current rows within `radius_m` metres of `point` (geodesic distance)."""
        schema = _schema(entity_class)
        if not schema.geo_column:
            raise ValueError(f"{entity_class} has no location column")
        params: Dict[str, Any] = {
            "center_lon": point.longitude,
            "center_lat": point.latitude,
            "radius_m": radius_m,
        }
        spatial = sql.SQL(
            "ST_DWithin({}::geography, "
            "ST_SetSRID(ST_MakePoint(%(center_lon)s::float8, %(center_lat)s::float8), 4326)"
            "::geography, %(radius_m)s::float8)"
        ).format(sql.Identifier(schema.geo_column))
        return await self._fetch_spatial(schema, spatial, params, flt or EntityFilter())


__all__ = ["EntityFilter", "GeoStore", "WindowCursor", "row_to_entity"]
