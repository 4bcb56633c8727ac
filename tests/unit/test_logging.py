from __future__ import annotations

import json
import logging

from eventcache.utils.logging import JsonFormatter, _json_formatter, configure_logging

EXPECTED_ACCEPTED = 10
EXPECTED_KIND = 30402


def _record() -> logging.LogRecord:
    return logging.LogRecord(
        name="test.logger",
        level=logging.INFO,
        pathname=__file__,
        lineno=1,
        msg="hello",
        args=(),
        exc_info=None,
    )


def test_json_formatter_promotes_standard_extra_fields() -> None:
    record = _record()
    record.accepted = EXPECTED_ACCEPTED
    record.source = "wss://relay.example"

    payload = json.loads(_json_formatter(record))

    assert payload["level"] == "INFO"
    assert payload["logger"] == "test.logger"
    assert payload["message"] == "hello"
    assert payload["accepted"] == EXPECTED_ACCEPTED
    assert payload["source"] == "wss://relay.example"
    assert "lineno" not in payload


def test_json_formatter_supports_legacy_nested_extra_field() -> None:
    record = _record()
    record.extra = {"kind": EXPECTED_KIND}

    payload = json.loads(_json_formatter(record))

    assert payload["kind"] == EXPECTED_KIND


def test_json_formatter_stringifies_unserializable_values() -> None:
    record = _record()
    record.sources = {"a"}

    payload = json.loads(_json_formatter(record))

    assert payload["sources"] == "{'a'}"


def test_configure_logging_holds_driver_loggers_at_warning() -> None:
    configure_logging(level="DEBUG")
    try:
        assert logging.getLogger().level == logging.DEBUG
        assert logging.getLogger("psycopg.pool").level == logging.WARNING
        assert logging.getLogger("asyncio").level == logging.WARNING
    finally:
        configure_logging(level="WARNING")


def test_configure_logging_json_mode_uses_json_formatter() -> None:
    configure_logging(level="ERROR", json_logs=True)
    try:
        (handler,) = logging.getLogger().handlers
        assert isinstance(handler.formatter, JsonFormatter)
        assert logging.getLogger("asyncio").level == logging.ERROR
    finally:
        configure_logging(level="WARNING")
