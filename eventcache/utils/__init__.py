"""
Utilities package for the event cache.

Exports shared helpers for logging, profiling and geohash decoding.
Keep this package lightweight and free of domain-specific logic.
"""

from eventcache.utils.logging import configure_logging, get_logger
from eventcache.utils.profiler import ProfileStats, profile_block

__all__ = [
    "configure_logging",
    "get_logger",
    "ProfileStats",
    "profile_block",
]
