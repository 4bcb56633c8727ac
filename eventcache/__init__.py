"""
Event Cache - local cache of signed marketplace records gathered from relays.

Records arriving from several independent relays are checked for structure,
identity digest and signature, projected into typed entities, and stored
idempotently in a time-partitioned, geo-indexed Postgres store. Reads are
served from the cache, refreshed from the relays when data is too old.

- Record validation and entity mapping
- Idempotent upserts keyed by (entity id, time)
- Bounding-box and radius search over current state
- Concurrent ingestion with partial-failure tolerance
"""

from __future__ import annotations

__version__ = "0.1.0"
__license__ = "MIT"

# Public API exports
from eventcache.cache import CacheQueryService
from eventcache.config import Settings, get_settings
from eventcache.coordinator import IngestionCoordinator, IngestionReport
from eventcache.infrastructure.geo_store import EntityFilter, GeoStore
from eventcache.pipeline import EntityMapper, RecordValidator, UpsertEngine
from eventcache.utils.logging import configure_logging, get_logger
from eventcache.utils.profiler import ProfileStats, profile_block

__all__ = [
    # Version info
    "__version__",
    "__license__",
    # Configuration
    "Settings",
    "get_settings",
    # Pipeline
    "EntityMapper",
    "RecordValidator",
    "UpsertEngine",
    # Ingestion and reads
    "CacheQueryService",
    "IngestionCoordinator",
    "IngestionReport",
    # Storage
    "EntityFilter",
    "GeoStore",
    # Logging
    "configure_logging",
    "get_logger",
    # Profiling
    "ProfileStats",
    "profile_block",
]
