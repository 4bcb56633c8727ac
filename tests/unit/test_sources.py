from __future__ import annotations

import json
from pathlib import Path

import pytest

from eventcache.domain.registry import KIND_PRODUCT, KIND_USER
from eventcache.errors import SourceUnreachable
from eventcache.sources import JsonlSource, RelaySource, StaticSource

SINCE = 1_700_000_000


@pytest.mark.asyncio
async def test_static_source_filters_by_kind_and_since(make_record) -> None:
    old = make_record(KIND_PRODUCT, created_at=SINCE - 1)
    new = make_record(KIND_PRODUCT, created_at=SINCE)
    other = make_record(KIND_USER, created_at=SINCE)
    source = StaticSource("static", [old, new, other])

    assert await source.fetch(KIND_PRODUCT, None) == [old, new]
    assert await source.fetch(KIND_PRODUCT, SINCE) == [new]
    assert isinstance(source, RelaySource)


@pytest.mark.asyncio
async def test_jsonl_source_reads_matching_lines(tmp_path: Path, make_record) -> None:
    product = make_record(KIND_PRODUCT, created_at=SINCE)
    user = make_record(KIND_USER, created_at=SINCE)
    path = tmp_path / "relay.jsonl"
    path.write_text(
        "\n".join([json.dumps(product), json.dumps(user), "", "{broken", "[1, 2]"]) + "\n",
        encoding="utf-8",
    )
    source = JsonlSource(path)

    records = await source.fetch(KIND_PRODUCT, None)

    assert source.name == "file://relay.jsonl"
    assert records == [product, "{broken", [1, 2]]


@pytest.mark.asyncio
async def test_jsonl_source_passes_undecodable_lines_through(tmp_path: Path, make_record) -> None:
    product = make_record(KIND_PRODUCT, created_at=SINCE)
    path = tmp_path / "relay.jsonl"
    path.write_bytes(json.dumps(product).encode("utf-8") + b"\n\xff\xfe garbage\n")

    records = await JsonlSource(path).fetch(KIND_PRODUCT, None)

    assert records == [product, b"\xff\xfe garbage"]


@pytest.mark.asyncio
async def test_jsonl_source_missing_file_is_unreachable(tmp_path: Path) -> None:
    source = JsonlSource(tmp_path / "missing.jsonl", name="relay-a")

    with pytest.raises(SourceUnreachable) as excinfo:
        await source.fetch(KIND_PRODUCT, None)

    assert excinfo.value.source == "relay-a"
