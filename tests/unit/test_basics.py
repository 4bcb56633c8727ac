import json
from datetime import date, timedelta
from pathlib import Path
from time import sleep

import pytest

from eventcache import config
from eventcache.domain.registry import ENTITY_SCHEMAS, KIND_REGISTRY, kind_for_class
from eventcache.domain.signing import compute_event_id, verify_signature
from eventcache.infrastructure.db_factory import build_dsn
from eventcache.infrastructure.schema import _month_starts, partition_statements
from eventcache.utils import profiler
from scripts import generate_events

SAMPLE_PRODUCTS = 3
SAMPLE_MERCHANTS = 2


def test_get_settings_defaults():
    settings = config.get_settings()
    assert settings.db_host == "localhost"
    assert settings.db_port == 5432
    assert settings.db_user == "postgres"
    assert settings.db_name == "event_cache"
    assert settings.source_timeout_seconds > 0
    assert settings.retry_max_attempts >= 1
    assert settings.default_freshness_seconds > 0


def test_settings_build_frozen_component_configs():
    settings = config.Settings(
        max_clock_skew_seconds=60,
        source_timeout_seconds=2.5,
        default_freshness_seconds=30,
        resume_overlap_seconds=120,
    )
    assert settings.validator_config().max_clock_skew_seconds == 60
    assert settings.ingestion_config().source_timeout_seconds == 2.5
    assert settings.ingestion_config().resume_overlap_seconds == 120
    assert settings.cache_config().default_freshness == timedelta(seconds=30)


def test_build_dsn_uses_settings():
    settings = config.Settings(db_host="db", db_port=6543, db_name="cache")
    assert build_dsn(settings) == "postgresql://postgres:postgres@db:6543/cache"


def test_registry_is_consistent():
    assert set(ENTITY_SCHEMAS) == {schema.entity_class for schema in KIND_REGISTRY.values()}
    for kind, schema in KIND_REGISTRY.items():
        assert kind_for_class(schema.entity_class) == kind
        assert schema.model.model_fields["entity_class"].default == schema.entity_class
        if schema.geo_column:
            assert schema.geo_column in schema.model.model_fields


def test_month_starts_cross_year_boundary():
    months = _month_starts(date(2024, 1, 15), months_back=1, months_ahead=1)
    assert months == [date(2023, 12, 1), date(2024, 1, 1), date(2024, 2, 1), date(2024, 3, 1)]
    # default partition plus one per consecutive month pair
    assert len(partition_statements(ENTITY_SCHEMAS["product"], months)) == 4


def test_profile_block_measures_time():
    with profiler.profile_block("sleep") as stats:
        sleep(0.05)
    assert stats.duration_seconds >= 0.05
    if stats.cpu_percent is not None:
        assert isinstance(stats.cpu_percent, float)


def test_generate_events_writes_signed_records(tmp_path: Path):
    records = generate_events._generate_records(
        SAMPLE_MERCHANTS, SAMPLE_PRODUCTS, seed=123, base_time=1_700_000_000
    )
    again = generate_events._generate_records(
        SAMPLE_MERCHANTS, SAMPLE_PRODUCTS, seed=123, base_time=1_700_000_000
    )
    assert records == again

    for raw in records:
        expected = compute_event_id(
            raw["pubkey"], raw["created_at"], raw["kind"], raw["tags"], raw["content"]
        )
        assert raw["id"] == expected
        assert verify_signature(raw["pubkey"], raw["id"], raw["sig"])

    kinds = {raw["kind"] for raw in records}
    assert kinds == set(KIND_REGISTRY)
    # every record survives a JSON round trip unchanged
    line = json.dumps(records[0])
    assert json.loads(line) == records[0]


@pytest.mark.parametrize("ratio", [0.0, 1.0])
def test_corrupt_ratio_bounds(ratio: float):
    records = generate_events._generate_records(1, 1, seed=7, base_time=1_700_000_000)
    corrupted = generate_events._corrupt(records, ratio, seed=7)
    assert corrupted == (len(records) if ratio else 0)
