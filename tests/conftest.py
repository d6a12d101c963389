import json
from datetime import datetime, timedelta, timezone

import pytest

from eventsync.models import EventRecord, record_to_dict
from eventsync.store import MemoryLogStore

BASE_TIME = datetime(2025, 1, 15, 12, 0, 0, tzinfo=timezone.utc)


@pytest.fixture
def at():
    """Turn an offset in seconds into a timestamp relative to BASE_TIME."""
    def _at(seconds: float) -> datetime:
        return BASE_TIME + timedelta(seconds=seconds)
    return _at


@pytest.fixture
def make_record(at):
    def _make(seconds: float, event_id: int = 1000, message: str = "", **overrides) -> EventRecord:
        fields = dict(
            time_created=at(seconds),
            event_id=event_id,
            provider="Microsoft-Windows-Kernel-Power",
            level=4,
            level_name="Information",
            host="build-agent-07",
            process_id=4,
            user_id="S-1-5-18",
            log_name="System",
            message=message or f"event at t={seconds}",
        )
        fields.update(overrides)
        return EventRecord(**fields)
    return _make


@pytest.fixture
def write_trace(tmp_path):
    """Write records (or raw dicts) as an NDJSON trace file and return its path."""
    def _write(items, name: str = "trace.ndjson") -> str:
        path = tmp_path / name
        with open(path, "w", encoding="utf-8") as f:
            for item in items:
                data = item if isinstance(item, dict) else record_to_dict(item)
                f.write(json.dumps(data) + "\n")
        return str(path)
    return _write


@pytest.fixture
def memory_store():
    return MemoryLogStore()


ENV_KEYS = (
    "EVENTSYNC_CONFIG", "SOURCE_PATH", "DESTINATION_NAME", "STORE_DIR",
    "MAX_SIZE_BYTES", "MAX_SIZE_KB", "OVERFLOW_POLICY", "SEGMENT_SIZE_BYTES",
    "SYNC_INTERVAL", "METRICS_FILE", "SYNC_LOCK", "VERBOSE",
)


@pytest.fixture(autouse=True)
def clean_env(monkeypatch):
    for key in ENV_KEYS:
        monkeypatch.delenv(key, raising=False)
