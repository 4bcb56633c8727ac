"""
Infrastructure package for the event cache.

Centralizes database concerns: connection factories, schema bootstrap, the
geo store and streaming export. Keep this layer focused on I/O and resource
management, decoupled from validation, mapping and coordination logic.
"""

from eventcache.infrastructure.db_factory import build_dsn, get_sync_connection, open_async_pool
from eventcache.infrastructure.geo_store import EntityFilter, GeoStore
from eventcache.infrastructure.schema import apply_schema
from eventcache.infrastructure.stream import stream_window

__all__ = [
    "EntityFilter",
    "GeoStore",
    "apply_schema",
    "build_dsn",
    "get_sync_connection",
    "open_async_pool",
    "stream_window",
]
