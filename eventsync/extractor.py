"""Source extractor: reads every event from a trace log, oldest first.

A trace log is newline-delimited JSON, one event object per line. Files
ending in ``.gz`` are decompressed transparently. Each line is checked
against TRACE_EVENT_SCHEMA before an EventRecord is built from it.
"""

import gzip
import json
import logging
import os
import zlib

import jsonschema

from eventsync.errors import SourceNotFound, SourceReadFailure
from eventsync.models import EventRecord, record_from_dict

logger = logging.getLogger(__name__)

TRACE_EVENT_SCHEMA = {
    "$schema": "https://json-schema.org/draft/2020-12/schema",
    "type": "object",
    "required": ["time_created"],
    "properties": {
        "time_created": {"type": "string", "minLength": 1},
        "event_id": {"type": "integer", "minimum": 0},
        "provider": {"type": "string"},
        "level": {"type": "integer", "minimum": 0},
        "level_name": {"type": "string"},
        "host": {"type": "string"},
        "process_id": {"type": "integer", "minimum": 0},
        "user_id": {"type": ["string", "null"]},
        "log_name": {"type": "string"},
        "message": {"type": ["string", "null"]},
    },
}

_validator = jsonschema.Draft202012Validator(TRACE_EVENT_SCHEMA)


def _open_trace(path: str):
    if path.endswith(".gz"):
        return gzip.open(path, "rt", encoding="utf-8")
    return open(path, "r", encoding="utf-8")


def parse_line(line: str, line_num: int, path: str) -> EventRecord:
    """Parse one trace line. Raises SourceReadFailure naming the line on error."""
    try:
        data = json.loads(line)
    except json.JSONDecodeError as e:
        raise SourceReadFailure(f"{path}:{line_num}: invalid JSON: {e.msg}") from e

    error = jsonschema.exceptions.best_match(_validator.iter_errors(data))
    if error is not None:
        raise SourceReadFailure(f"{path}:{line_num}: {error.message}")

    try:
        return record_from_dict(data)
    except (KeyError, TypeError, ValueError, OverflowError) as e:
        raise SourceReadFailure(f"{path}:{line_num}: {e}") from e


def extract(source_path: str) -> list[EventRecord]:
    """Read all records from *source_path* and return them oldest first.

    The sort is stable, so records sharing a timestamp keep their file order
    regardless of whether the file itself was written newest-first.

    Raises:
        SourceNotFound: the path does not exist.
        SourceReadFailure: the file cannot be read or a line cannot be parsed.
    """
    if not os.path.exists(source_path):
        raise SourceNotFound(f"Source trace log not found: {source_path}")

    records: list[EventRecord] = []
    try:
        with _open_trace(source_path) as f:
            for line_num, line in enumerate(f, 1):
                line = line.strip()
                if not line:
                    continue
                records.append(parse_line(line, line_num, source_path))
    except (OSError, EOFError, UnicodeDecodeError, zlib.error) as e:
        raise SourceReadFailure(f"Cannot read {source_path}: {e}") from e

    records.sort(key=lambda r: r.time_created)
    logger.debug("Extracted %d record(s) from %s", len(records), source_path)
    return records
