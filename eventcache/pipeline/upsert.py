"""
Deduplication and idempotent writes.

The first row stored for an `(entity_id, time)` key wins. Payloads are never
compared to pick a winner; a later duplicate whose record id differs from the
stored one is only reported as a data-quality anomaly.
"""

from __future__ import annotations

import enum
from datetime import datetime
from typing import Optional, Protocol

from eventcache.domain.entities import BaseEntity
from eventcache.utils.logging import get_logger

log = get_logger(__name__)


class UpsertOutcome(str, enum.Enum):
    INSERTED = "inserted"
    ALREADY_PRESENT = "already_present"


class WritableStore(Protocol):
    async def insert_if_absent(self, entity: BaseEntity) -> bool: ...

    async def stored_record_id(
        self, entity_class: str, entity_id: str, time: datetime
    ) -> Optional[str]: ...


class UpsertEngine:
    """Apply insert-if-absent writes; `StoreError` from the store propagates."""

    def __init__(self, store: WritableStore) -> None:
        self._store = store

    async def upsert(self, entity: BaseEntity) -> UpsertOutcome:
        if await self._store.insert_if_absent(entity):
            return UpsertOutcome.INSERTED

        entity_class = entity.entity_class  # type: ignore[attr-defined]
        stored = await self._store.stored_record_id(entity_class, entity.entity_id, entity.time)
        if stored is not None and stored != entity.record_id:
            log.warning(
                "Divergent payload for existing key; keeping first stored row",
                extra={
                    "entity_class": entity_class,
                    "entity_id": entity.entity_id,
                    "time": entity.time.isoformat(),
                    "stored_record_id": stored,
                    "incoming_record_id": entity.record_id,
                },
            )
        return UpsertOutcome.ALREADY_PRESENT


__all__ = ["UpsertEngine", "UpsertOutcome", "WritableStore"]
