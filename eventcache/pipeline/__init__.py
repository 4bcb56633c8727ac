"""
Record pipeline: validation, mapping and idempotent upsert.
"""

from eventcache.pipeline.mapper import EntityMapper, MapResult
from eventcache.pipeline.upsert import UpsertEngine, UpsertOutcome
from eventcache.pipeline.validator import RecordValidator, ValidationResult

__all__ = [
    "EntityMapper",
    "MapResult",
    "RecordValidator",
    "UpsertEngine",
    "UpsertOutcome",
    "ValidationResult",
]
