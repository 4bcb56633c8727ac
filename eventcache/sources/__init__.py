"""
Relay sources package.

Re-exports the source protocol and the bundled sources so downstream code can
import from `eventcache.sources` directly.
"""

from eventcache.sources.abstract import RelaySource
from eventcache.sources.static import JsonlSource, StaticSource

__all__ = [
    "JsonlSource",
    "RelaySource",
    "StaticSource",
]
