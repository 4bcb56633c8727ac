"""
Logging setup for the event cache CLI.

Components only call `get_logger(__name__)` and attach per-pass context
(kind, source, counts, reject reason) through `extra=`. `configure_logging` is
called once by the CLI; with `LOG_JSON=1` every `extra` key becomes a
top-level field so ingestion reports can be grepped or shipped as-is.

Connection-pool and event-loop chatter from the driver libraries is held at
WARNING unless the requested level is more severe.
"""

from __future__ import annotations

import json
import logging
import logging.config
from typing import Any, Dict, Iterable, Optional

# Attributes every LogRecord carries; anything else arrived through `extra=`.
_STANDARD_ATTRS = frozenset(
    vars(logging.LogRecord("", logging.INFO, "", 0, "", (), None)).keys()
) | {"message", "asctime", "taskName"}

_NOISY_LOGGERS = ("psycopg.pool", "asyncio")


def _json_formatter(record: logging.LogRecord) -> str:
    """Render a log record as one JSON object; unserializable values use `str`."""
    payload: Dict[str, Any] = {
        "level": record.levelname,
        "logger": record.name,
        "message": record.getMessage(),
    }
    for key, value in vars(record).items():
        if key in _STANDARD_ATTRS or key == "extra":
            continue
        payload[key] = value
    # Older call sites pass `extra={"extra": {...}}`.
    if isinstance(getattr(record, "extra", None), dict):
        payload.update(record.extra)
    if record.exc_info:
        payload["exc_info"] = logging.Formatter().formatException(record.exc_info)
    if record.stack_info:
        payload["stack_info"] = record.stack_info
    return json.dumps(payload, default=str)


class JsonFormatter(logging.Formatter):
    def format(self, record: logging.LogRecord) -> str:  # type: ignore[override]
        return _json_formatter(record)


def _library_levels(level: str, names: Iterable[str]) -> Dict[str, Dict[str, str]]:
    floor = max(logging.getLevelName(level.upper()), logging.WARNING)
    return {name: {"level": logging.getLevelName(floor)} for name in names}


def configure_logging(level: str = "INFO", json_logs: bool = False) -> None:
    """
    Install a single stderr handler on the root logger.

    Parameters
    ----------
    level : str
        Level name applied to the root logger ("DEBUG" shows per-record rejections).
    json_logs : bool
        Emit one JSON object per line instead of the pipe-separated console format.
    """
    logging.config.dictConfig(
        {
            "version": 1,
            "disable_existing_loggers": False,
            "formatters": {
                "console": {
                    "format": "%(asctime)s | %(levelname)-7s | %(name)s | %(message)s",
                    "datefmt": "%H:%M:%S",
                },
                "json": {"()": JsonFormatter},
            },
            "handlers": {
                "stderr": {
                    "class": "logging.StreamHandler",
                    "formatter": "json" if json_logs else "console",
                    "level": level,
                }
            },
            "loggers": _library_levels(level, _NOISY_LOGGERS),
            "root": {"handlers": ["stderr"], "level": level},
        }
    )


def get_logger(name: Optional[str] = None) -> logging.Logger:
    return logging.getLogger(name)


__all__ = ["JsonFormatter", "configure_logging", "get_logger"]
