"""
Streaming export of an entity time window.

Uses asyncpg directly (rather than the psycopg pool) because a server-side
cursor over a long window is a streaming workload: rows are fetched in batches
inside one transaction and never held in memory all at once.
"""

from __future__ import annotations

import json
from datetime import datetime
from typing import AsyncIterator, List, Optional

import asyncpg

from eventcache.domain.entities import BaseEntity
from eventcache.domain.registry import ENTITY_SCHEMAS
from eventcache.errors import StoreError
from eventcache.infrastructure.geo_store import row_to_entity


def _quote(identifier: str) -> str:
    return '"' + identifier.replace('"', '""') + '"'


def window_query(entity_class: str) -> str:
    """`$1`/`$2` are the inclusive lower/upper time bounds; either may be NULL."""
    schema = ENTITY_SCHEMAS[entity_class]
    fields: List[str] = [_quote(name) for name in schema.column_names]
    if schema.geo_column:
        geo = _quote(schema.geo_column)
        fields.append(f"ST_Y({geo}) AS {_quote(schema.geo_column + '_lat')}")
        fields.append(f"ST_X({geo}) AS {_quote(schema.geo_column + '_lon')}")
    return (
        f"SELECT {', '.join(fields)} FROM {_quote(schema.table)} "
        "WHERE ($1::timestamptz IS NULL OR time >= $1) "
        "AND ($2::timestamptz IS NULL OR time <= $2) "
        "ORDER BY time, entity_id"
    )


async def stream_window(
    dsn: str,
    entity_class: str,
    since: Optional[datetime] = None,
    until: Optional[datetime] = None,
    batch_size: int = 1_000,
) -> AsyncIterator[BaseEntity]:
    """
    Yield every row of `entity_class` in the window, oldest first.
    """
    schema = ENTITY_SCHEMAS[entity_class]
    query = window_query(entity_class)
    try:
        conn = await asyncpg.connect(dsn)
    except (OSError, asyncpg.PostgresError) as exc:
        raise StoreError(f"cannot connect for export: {exc}") from exc

    try:
        async with conn.transaction():
            cursor = await conn.cursor(query, since, until)
            while True:
                batch = await cursor.fetch(batch_size)
                if not batch:
                    break
                for record in batch:
                    row = dict(record)
                    if isinstance(row.get("payload"), str):
                        row["payload"] = json.loads(row["payload"])
                    yield row_to_entity(schema, row)
    except asyncpg.PostgresError as exc:
        raise StoreError(str(exc)) from exc
    finally:
        await conn.close()


__all__ = ["stream_window", "window_query"]
