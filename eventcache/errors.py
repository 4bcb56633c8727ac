"""
Error taxonomy for the event cache.

Per-record problems are reported as `Rejection` values and counted by the
ingestion pass; they are never raised. Infrastructure failures (`StoreError`)
and caller mistakes (`UnknownKindError`) are exceptions.
"""

from __future__ import annotations

import enum
from dataclasses import dataclass
from typing import Optional


class RejectReason(str, enum.Enum):
    MALFORMED_RECORD = "malformed_record"
    SIGNATURE_INVALID = "signature_invalid"
    TIMESTAMP_OUT_OF_RANGE = "timestamp_out_of_range"
    UNKNOWN_KIND = "unknown_kind"
    SCHEMA_VIOLATION = "schema_violation"


@dataclass(frozen=True)
class Rejection:
    """Tagged result for a record that was dropped by validation or mapping."""

    reason: RejectReason
    detail: str
    field: Optional[str] = None

    def __str__(self) -> str:
        if self.field:
            return f"{self.reason.value} ({self.field}): {self.detail}"
        return f"{self.reason.value}: {self.detail}"


class EventCacheError(Exception):
    """Base class for exceptions raised by the event cache."""


class StoreError(EventCacheError):
    """The backing store is unavailable or rejected an operation."""


class SourceUnreachable(EventCacheError):
    """A relay source could not be reached or failed mid-fetch."""

    def __init__(self, source: str, message: str = "") -> None:
        self.source = source
        super().__init__(f"source {source!r} unreachable" + (f": {message}" if message else ""))


class UnknownKindError(EventCacheError, ValueError):
    """A read was requested for a kind with no registered entity schema."""

    def __init__(self, kind: int) -> None:
        self.kind = kind
        super().__init__(f"No entity schema registered for kind {kind}")


__all__ = [
    "EventCacheError",
    "RejectReason",
    "Rejection",
    "SourceUnreachable",
    "StoreError",
    "UnknownKindError",
]
