"""Structured logging for the PMC workers.

``PMC_LOG_FORMAT`` selects one JSON object per line ("json", default) or
plain text; ``PMC_LOG_LEVEL`` sets the root level.
"""

import json
import logging
import sys
import traceback
from datetime import date, datetime, timezone
from typing import Any

EXTRA_PREFIX = "pmc_"


class JSONFormatter(logging.Formatter):
    """Emit log records as single-line JSON objects."""

    def format(self, record: logging.LogRecord) -> str:
        log_entry: dict[str, Any] = {
            "timestamp": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }

        if record.exc_info and record.exc_info[1] is not None:
            log_entry["exception"] = "".join(traceback.format_exception(*record.exc_info))

        # Calibration context passed via extra=calibration_context(...)
        for key, value in record.__dict__.items():
            if key.startswith(EXTRA_PREFIX):
                log_entry[key[len(EXTRA_PREFIX):]] = value

        return json.dumps(log_entry, default=str)


def calibration_context(
    *,
    record_id: str | None = None,
    effective_date: date | None = None,
    job_type: str | None = None,
    **fields: Any,
) -> dict[str, Any]:
    """Build an ``extra=`` mapping whose keys survive into JSON output."""
    context: dict[str, Any] = {}
    if record_id is not None:
        context["record_id"] = record_id
    if effective_date is not None:
        context["effective_date"] = effective_date.isoformat()
    if job_type is not None:
        context["job_type"] = job_type
    context.update({key: value for key, value in fields.items() if value is not None})
    return {f"{EXTRA_PREFIX}{key}": value for key, value in context.items()}


def parse_log_level(name: str | None, default: int = logging.INFO) -> int:
    level = logging.getLevelName((name or "").strip().upper())
    return level if isinstance(level, int) else default


def setup_logging(log_format: str, level: int = logging.INFO) -> None:
    """Replace the root handlers with one stderr handler in the chosen format."""
    root = logging.getLogger()
    root.setLevel(level)

    for handler in root.handlers[:]:
        root.removeHandler(handler)

    handler = logging.StreamHandler(sys.stderr)
    handler.setLevel(level)

    if log_format == "json":
        handler.setFormatter(JSONFormatter())
    else:
        handler.setFormatter(logging.Formatter("%(asctime)s %(levelname)s %(name)s: %(message)s"))

    root.addHandler(handler)
    # psycopg logs every connection attempt at INFO.
    logging.getLogger("psycopg").setLevel(max(level, logging.WARNING))
