"""
Logging setup shared by the CLI, the orchestrator and the setup harness.

Bootstrap stages log with a bracketed tag (``[ESTABLISH]``, ``[PROBE]``,
``[MIGRATE]``) and pass attempt counters, strategy names and deadlines through
``extra=``. On a terminal those fields stay out of the way; with
``LOG_JSON=true`` each record becomes one JSON object so CI can pick the
harness retries out of the output.
"""

from __future__ import annotations

import json
import logging
import logging.config
from typing import Any, Dict, Optional

CONSOLE_FORMAT = "%(asctime)s %(levelname)-7s %(name)s: %(message)s"
CONSOLE_DATEFMT = "%H:%M:%S"

# Everything a bare LogRecord already has. Whatever is left on a record came from `extra=`.
_RESERVED_ATTRS = frozenset(
    vars(logging.LogRecord("", logging.INFO, "", 0, "", (), None)).keys()
) | {"message", "asctime", "extra"}


def _extra_fields(record: logging.LogRecord) -> Dict[str, Any]:
    fields = {
        key: value
        for key, value in vars(record).items()
        if key not in _RESERVED_ATTRS and not key.startswith("_")
    }
    # extra={"extra": {...}} is flattened into the same level.
    nested = getattr(record, "extra", None)
    if isinstance(nested, dict):
        fields.update(nested)
    return fields


def _json_formatter(record: logging.LogRecord) -> str:
    """Serialize one record, stage fields included, as a single JSON line."""
    payload: Dict[str, Any] = {
        "ts": record.created,
        "level": record.levelname,
        "logger": record.name,
        "message": record.getMessage(),
    }
    payload.update(_extra_fields(record))
    if record.exc_info:
        payload["exc_info"] = logging.Formatter().formatException(record.exc_info)
    if record.stack_info:
        payload["stack_info"] = record.stack_info
    # Errors and paths end up as their str().
    return json.dumps(payload, default=str)


class JsonFormatter(logging.Formatter):
    def format(self, record: logging.LogRecord) -> str:  # type: ignore[override]
        return _json_formatter(record)


def _logging_dict(level: str, json_logs: bool) -> Dict[str, Any]:
    return {
        "version": 1,
        # asyncpg, psycopg and websockets loggers are created at import time.
        "disable_existing_loggers": False,
        "formatters": {
            "console": {"format": CONSOLE_FORMAT, "datefmt": CONSOLE_DATEFMT},
            "json": {"()": JsonFormatter},
        },
        "handlers": {
            "stderr": {
                "class": "logging.StreamHandler",
                "formatter": "json" if json_logs else "console",
                "level": level,
            }
        },
        "root": {"handlers": ["stderr"], "level": level},
    }


def configure_logging(
    level: str = "INFO",
    json_logs: bool = False,
    force: bool = True,
) -> None:
    """
    Install the dbbootstrap handler on the root logger.

    With ``force=False`` a root logger that already has handlers (pytest's log
    capture, an embedding application) keeps them and only takes ``level``.
    """
    root = logging.getLogger()
    if not force and root.handlers:
        root.setLevel(level)
        return
    logging.config.dictConfig(_logging_dict(level, json_logs))


def get_logger(name: Optional[str] = None) -> logging.Logger:
    return logging.getLogger(name)


__all__ = ["CONSOLE_FORMAT", "configure_logging", "get_logger", "JsonFormatter"]
