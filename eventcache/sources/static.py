"""In-memory and file-backed relay sources."""

from __future__ import annotations

import asyncio
import json
from pathlib import Path
from typing import Any, Iterable, List, Mapping, Optional, Sequence

from eventcache.errors import SourceUnreachable


def _matches(raw: Mapping[str, Any], kind: int, since: Optional[int]) -> bool:
    if raw.get("kind") != kind:
        return False
    if since is None:
        return True
    created_at = raw.get("created_at")
    return isinstance(created_at, int) and created_at >= since


class StaticSource:
    """Serves a fixed list of raw records; handy for seeding and replays."""

    def __init__(self, name: str, records: Iterable[Mapping[str, Any]]) -> None:
        self.name = name
        self._records = list(records)

    async def fetch(self, kind: int, since: Optional[int]) -> Sequence[Mapping[str, Any]]:
        return [raw for raw in self._records if _matches(raw, kind, since)]


class JsonlSource:
    """
    Relay export in JSON Lines form, one record per line.

    Lines that are not JSON objects, or not even UTF-8, are passed through
    as-is (str or bytes) so the validator counts them as malformed instead of
    failing the whole file.
    """

    def __init__(self, path: Path | str, name: Optional[str] = None) -> None:
        self.path = Path(path)
        self.name = name or f"file://{self.path.name}"

    def _read(self, kind: int, since: Optional[int]) -> List[Any]:
        records: List[Any] = []
        with self.path.open("rb") as f:
            for raw_line in f:
                raw_line = raw_line.strip()
                if not raw_line:
                    continue
                try:
                    line = raw_line.decode("utf-8")
                except UnicodeDecodeError:
                    records.append(raw_line)
                    continue
                try:
                    raw = json.loads(line)
                except (json.JSONDecodeError, RecursionError):
                    records.append(line)
                    continue
                if not isinstance(raw, dict) or _matches(raw, kind, since):
                    records.append(raw)
        return records

    async def fetch(self, kind: int, since: Optional[int]) -> Sequence[Any]:
        try:
            return await asyncio.to_thread(self._read, kind, since)
        except OSError as exc:
            raise SourceUnreachable(self.name, str(exc)) from exc


__all__ = ["JsonlSource", "StaticSource"]
