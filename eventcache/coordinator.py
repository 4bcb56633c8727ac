"""
Ingestion coordinator: fan out to relay sources and push every record through
validation, mapping and idempotent upsert.

Usage:
    from eventcache.coordinator import IngestionCoordinator

    coordinator = IngestionCoordinator(store, settings.ingestion_config())
    report = await coordinator.ingest(30402, sources)
    print(report.as_dict())

Each source is fetched concurrently under its own timeout. A source that fails
or times out is listed in `unreachable_sources` and the records from healthy
sources are still committed. Per-record problems only increment counters;
a `StoreError` aborts the pass and propagates to the caller.
"""

from __future__ import annotations

import asyncio
import time
from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Sequence, Set

from tenacity import AsyncRetrying, retry_if_result, stop_after_attempt, wait_exponential

from eventcache.config import IngestionConfig
from eventcache.domain.records import Record
from eventcache.errors import RejectReason, Rejection
from eventcache.pipeline.mapper import EntityMapper
from eventcache.pipeline.upsert import UpsertEngine, UpsertOutcome, WritableStore
from eventcache.pipeline.validator import RecordValidator
from eventcache.sources.abstract import RelaySource
from eventcache.utils.logging import get_logger

log = get_logger(__name__)


@dataclass
class IngestionReport:
    """Outcome counts of one ingestion pass (or of a pass and its retries)."""

    kind: int
    accepted: int = 0
    duplicate: int = 0
    rejected: int = 0
    rejected_by_reason: Dict[RejectReason, int] = field(default_factory=dict)
    unreachable_sources: List[str] = field(default_factory=list)
    duration_seconds: float = 0.0

    def record_rejection(self, rejection: Rejection) -> None:
        self.rejected += 1
        self.rejected_by_reason[rejection.reason] = (
            self.rejected_by_reason.get(rejection.reason, 0) + 1
        )

    def rejected_for(self, reason: RejectReason) -> int:
        return self.rejected_by_reason.get(reason, 0)

    def merge(self, later: "IngestionReport") -> "IngestionReport":
        """
        Combine with a later attempt. Counts add up; unreachable sources are
        those still unreachable after the later attempt.
        """
        reasons = dict(self.rejected_by_reason)
        for reason, count in later.rejected_by_reason.items():
            reasons[reason] = reasons.get(reason, 0) + count
        return IngestionReport(
            kind=self.kind,
            accepted=self.accepted + later.accepted,
            duplicate=self.duplicate + later.duplicate,
            rejected=self.rejected + later.rejected,
            rejected_by_reason=reasons,
            unreachable_sources=list(later.unreachable_sources),
            duration_seconds=self.duration_seconds + later.duration_seconds,
        )

    def as_dict(self) -> Dict[str, Any]:
        return {
            "kind": self.kind,
            "accepted": self.accepted,
            "duplicate": self.duplicate,
            "rejected": self.rejected,
            "rejected_by_reason": {
                reason.value: count for reason, count in sorted(self.rejected_by_reason.items())
            },
            "unreachable_sources": list(self.unreachable_sources),
            "duration_seconds": round(self.duration_seconds, 3),
        }


@dataclass
class SourceHealth:
    """
    Reachability of one source, plus the newest `created_at` it has delivered
    per kind. The marks let a resumed pass ask each source only for what it
    has not delivered yet.
    """

    name: str
    consecutive_failures: int = 0
    total_failures: int = 0
    last_success: Optional[datetime] = None
    last_error: Optional[str] = None
    high_water: Dict[int, int] = field(default_factory=dict)

    def record_success(self) -> None:
        self.consecutive_failures = 0
        self.last_success = datetime.now(timezone.utc)

    def record_failure(self, error: str) -> None:
        self.consecutive_failures += 1
        self.total_failures += 1
        self.last_error = error

    def advance(self, kind: int, created_at: int) -> None:
        if created_at > self.high_water.get(kind, -1):
            self.high_water[kind] = created_at


class IngestionCoordinator:
    """
    Run ingestion passes against a set of relay sources.

    Parameters
    ----------
    store : WritableStore
        Target store (normally a `GeoStore`).
    config : IngestionConfig
        Per-source timeout, resume overlap and the retry policy used by
        `ingest_with_retry`.
    validator, mapper : optional
        Override the default pipeline stages (tests inject a fixed clock).
    """

    def __init__(
        self,
        store: WritableStore,
        config: Optional[IngestionConfig] = None,
        validator: Optional[RecordValidator] = None,
        mapper: Optional[EntityMapper] = None,
    ) -> None:
        self.config = config or IngestionConfig()
        self._validator = validator or RecordValidator()
        self._mapper = mapper or EntityMapper()
        self._engine = UpsertEngine(store)
        self._health: Dict[str, SourceHealth] = {}

    def health(self) -> Dict[str, SourceHealth]:
        """Snapshot of per-source health, keyed by source name."""
        return {
            name: replace(health, high_water=dict(health.high_water))
            for name, health in self._health.items()
        }

    def resume_point(self, source: str, kind: int) -> Optional[int]:
        """
        Lower bound for the next resumed fetch of `kind` from `source`: its
        high-water mark minus the overlap, or None when nothing was delivered yet.
        """
        health = self._health.get(source)
        mark = health.high_water.get(kind) if health else None
        if mark is None:
            return None
        return max(0, mark - self.config.resume_overlap_seconds)

    async def _process(
        self, raw: Any, source: str, report: IngestionReport, seen: Set[str]
    ) -> Optional[Record]:
        validated = self._validator.validate(raw)
        if isinstance(validated, Rejection):
            report.record_rejection(validated)
            log.debug("Record rejected", extra={"source": source, "reason": str(validated)})
            return None

        mapped = self._mapper.map(validated, source=source)
        if isinstance(mapped, Rejection):
            report.record_rejection(mapped)
            log.debug(
                "Record not mapped",
                extra={"source": source, "record_id": validated.id, "reason": str(mapped)},
            )
            return validated

        # Same record from another source in this pass: skip the store round trip.
        if validated.id in seen:
            report.duplicate += 1
            return validated
        seen.add(validated.id)

        outcome = await self._engine.upsert(mapped)
        if outcome is UpsertOutcome.INSERTED:
            report.accepted += 1
        else:
            report.duplicate += 1
        return validated

    async def _pull(
        self,
        source: RelaySource,
        kind: int,
        since: Optional[int],
        report: IngestionReport,
        seen: Set[str],
    ) -> None:
        health = self._health.setdefault(source.name, SourceHealth(source.name))
        try:
            records = list(
                await asyncio.wait_for(
                    source.fetch(kind, since), timeout=self.config.source_timeout_seconds
                )
            )
        except asyncio.CancelledError:
            raise
        except Exception as exc:  # noqa: BLE001 - any source failure marks it unreachable
            error = "timeout" if isinstance(exc, asyncio.TimeoutError) else str(exc) or repr(exc)
            health.record_failure(error)
            report.unreachable_sources.append(source.name)
            log.warning(
                f"[SOURCE UNREACHABLE] {source.name}",
                extra={"source": source.name, "kind": kind, "error": error},
            )
            return

        health.record_success()
        log.debug(
            f"[SOURCE FETCHED] {source.name}",
            extra={"source": source.name, "kind": kind, "records": len(records), "since": since},
        )
        newest: Optional[int] = None
        for raw in records:
            record = await self._process(raw, source.name, report, seen)
            if record is not None and record.kind == kind:
                newest = record.created_at if newest is None else max(newest, record.created_at)
        # Only advanced once every record of the batch is stored.
        if newest is not None:
            health.advance(kind, newest)

    async def ingest(
        self,
        kind: int,
        sources: Sequence[RelaySource],
        since: Optional[int] = None,
        resume: bool = False,
    ) -> IngestionReport:
        """
        Run one ingestion pass for `kind` across `sources`.

        With `resume=True` each source is asked for records from its own
        `resume_point`, falling back to `since` for sources that have not
        delivered anything yet. No retries happen here. Rows committed before a
        cancellation or a `StoreError` stay committed; re-running the pass is
        harmless.
        """
        report = IngestionReport(kind=kind)
        seen: Set[str] = set()
        start = time.perf_counter()
        log.info(
            f"[INGEST START] kind={kind}",
            extra={
                "kind": kind,
                "sources": [s.name for s in sources],
                "since": since,
                "resume": resume,
            },
        )

        tasks = []
        for source in sources:
            source_since = since
            if resume:
                point = self.resume_point(source.name, kind)
                source_since = since if point is None else point
            tasks.append(
                asyncio.create_task(self._pull(source, kind, source_since, report, seen))
            )
        try:
            await asyncio.gather(*tasks)
        except BaseException:
            for task in tasks:
                task.cancel()
            await asyncio.gather(*tasks, return_exceptions=True)
            raise
        finally:
            report.duration_seconds = time.perf_counter() - start

        log.info(f"[INGEST COMPLETE] kind={kind}", extra=report.as_dict())
        return report

    async def ingest_with_retry(
        self,
        kind: int,
        sources: Sequence[RelaySource],
        since: Optional[int] = None,
        resume: bool = False,
    ) -> IngestionReport:
        """
        Caller-side policy: re-run only the unreachable sources with exponential
        backoff, up to `retry_max_attempts` passes in total. Returns the merged
        report of all passes.
        """
        pending: List[RelaySource] = list(sources)
        combined: Optional[IngestionReport] = None

        async def attempt() -> IngestionReport:
            nonlocal pending, combined
            current = await self.ingest(kind, pending, since, resume=resume)
            combined = current if combined is None else combined.merge(current)
            pending = [s for s in pending if s.name in current.unreachable_sources]
            return combined

        retrying = AsyncRetrying(
            stop=stop_after_attempt(max(1, self.config.retry_max_attempts)),
            wait=wait_exponential(multiplier=self.config.retry_backoff_base_seconds),
            retry=retry_if_result(lambda report: bool(report.unreachable_sources)),
            retry_error_callback=lambda state: state.outcome.result(),
        )
        return await retrying(attempt)


__all__ = ["IngestionCoordinator", "IngestionReport", "SourceHealth"]
