"""Event record model."""

from dataclasses import dataclass, asdict
from datetime import datetime, timezone
from enum import Enum


class OverflowPolicy(str, Enum):
    OVERWRITE_OLDEST = "overwrite-oldest"
    NEVER_OVERWRITE = "never-overwrite"


@dataclass(frozen=True)
class EventRecord:
    time_created: datetime
    event_id: int = 0
    provider: str = ""
    level: int = 4
    level_name: str = "Information"
    host: str = ""
    process_id: int = 0
    user_id: str = ""
    log_name: str = ""
    message: str = ""


def parse_timestamp(value: str) -> datetime:
    """Parse an ISO-8601 timestamp into an aware UTC datetime.

    A trailing ``Z`` is accepted; naive timestamps are taken to be UTC.
    """
    if not isinstance(value, str):
        raise TypeError(f"timestamp must be a string, got {type(value).__name__}")
    text = value.strip()
    if text.endswith("Z"):
        text = text[:-1] + "+00:00"
    ts = datetime.fromisoformat(text)
    if ts.tzinfo is None:
        return ts.replace(tzinfo=timezone.utc)
    try:
        return ts.astimezone(timezone.utc)
    except OverflowError as e:
        raise ValueError(f"timestamp out of range in UTC: {value!r}") from e


def format_timestamp(ts: datetime) -> str:
    return ts.astimezone(timezone.utc).isoformat(timespec="microseconds").replace("+00:00", "Z")


def record_from_dict(d: dict) -> EventRecord:
    """Build an EventRecord from a parsed trace line or stored entry."""
    return EventRecord(
        time_created=parse_timestamp(d["time_created"]),
        event_id=int(d.get("event_id", 0)),
        provider=str(d.get("provider", "")),
        level=int(d.get("level", 4)),
        level_name=str(d.get("level_name", "Information")),
        host=str(d.get("host", "")),
        process_id=int(d.get("process_id", 0)),
        user_id=str(d.get("user_id") or ""),
        log_name=str(d.get("log_name", "")),
        message=str(d.get("message") or ""),
    )


def record_to_dict(record: EventRecord) -> dict:
    """Convert an EventRecord to a JSON-ready dictionary."""
    d = asdict(record)
    d["time_created"] = format_timestamp(record.time_created)
    return d


def compose_message(record: EventRecord) -> str:
    """Message body carried to the destination log."""
    if record.message.strip():
        return record.message
    return f"Event {record.event_id} from {record.provider or 'unknown provider'}"
