"""Destination log store interface and the in-memory implementation."""

import json
import logging
from abc import ABC, abstractmethod
from collections import deque
from dataclasses import dataclass, field
from datetime import datetime

from eventsync.config import (
    DEFAULT_LOG_SIZE,
    MAX_LOG_SIZE,
    MIN_LOG_SIZE,
    SIZE_ALIGNMENT,
)
from eventsync.errors import (
    AppendFailure,
    DestinationConfigureFailure,
    DestinationCreateFailure,
    HighWaterMarkUnavailable,
)
from eventsync.models import EventRecord, OverflowPolicy, record_to_dict

logger = logging.getLogger(__name__)

# Only this many leading characters of a log name are significant to the store.
UNIQUENESS_PREFIX_LEN = 8


def uniqueness_key(name: str) -> str:
    return name[:UNIQUENESS_PREFIX_LEN].lower()


def check_new_name(name: str, existing: list[str]) -> None:
    """Raise DestinationCreateFailure if *name* clashes with an existing log."""
    if not name or not name.strip():
        raise DestinationCreateFailure("Destination log name may not be empty")
    key = uniqueness_key(name)
    for other in existing:
        if other == name:
            raise DestinationCreateFailure(f"Destination log {name!r} already exists")
        if uniqueness_key(other) == key:
            raise DestinationCreateFailure(
                f"Destination log {name!r} collides with existing log {other!r} "
                f"on its first {UNIQUENESS_PREFIX_LEN} characters"
            )


def check_limits(max_size_bytes: int, overflow) -> None:
    """Raise DestinationConfigureFailure for limits the store cannot apply."""
    if not MIN_LOG_SIZE <= max_size_bytes <= MAX_LOG_SIZE:
        raise DestinationConfigureFailure(
            f"max_size_bytes {max_size_bytes} outside [{MIN_LOG_SIZE}, {MAX_LOG_SIZE}]"
        )
    if max_size_bytes % SIZE_ALIGNMENT != 0:
        raise DestinationConfigureFailure(
            f"max_size_bytes {max_size_bytes} is not a multiple of {SIZE_ALIGNMENT}"
        )
    if not isinstance(overflow, OverflowPolicy):
        raise DestinationConfigureFailure(f"Unknown overflow policy: {overflow!r}")


def serialize_record(record: EventRecord) -> str:
    """One NDJSON line for *record*, newline included."""
    return json.dumps(record_to_dict(record), separators=(",", ":")) + "\n"


class LogStore(ABC):
    """A set of named, capacity-bounded, append-only event logs."""

    @abstractmethod
    def exists(self, name: str) -> bool:
        """Return True if a log called *name* exists."""

    @abstractmethod
    def create(self, name: str) -> None:
        """Create an empty log with default limits.

        Raises:
            DestinationCreateFailure: name exists, collides on the uniqueness
                prefix, or the log cannot be created.
        """

    @abstractmethod
    def configure(self, name: str, max_size_bytes: int, overflow: OverflowPolicy) -> None:
        """Apply size and overflow limits.

        Raises:
            DestinationConfigureFailure: limits are invalid or cannot be stored.
        """

    @abstractmethod
    def most_recent_timestamp(self, name: str) -> datetime:
        """Return ``time_created`` of the newest record in the log.

        Raises:
            HighWaterMarkUnavailable: the log is missing, empty, or unreadable.
        """

    @abstractmethod
    def append(self, name: str, record: EventRecord) -> None:
        """Append one record.

        Raises:
            AppendFailure: the record could not be stored.
        """


@dataclass
class _MemoryLog:
    name: str
    max_size_bytes: int = DEFAULT_LOG_SIZE
    overflow: OverflowPolicy = OverflowPolicy.OVERWRITE_OLDEST
    entries: deque = field(default_factory=deque)
    size_bytes: int = 0


class MemoryLogStore(LogStore):
    """Process-local store. Capacity is measured in serialized NDJSON bytes."""

    def __init__(self):
        self._logs: dict[str, _MemoryLog] = {}

    def exists(self, name: str) -> bool:
        return name in self._logs

    def create(self, name: str) -> None:
        check_new_name(name, list(self._logs))
        self._logs[name] = _MemoryLog(name=name)

    def configure(self, name: str, max_size_bytes: int, overflow: OverflowPolicy) -> None:
        log = self._logs.get(name)
        if log is None:
            raise DestinationConfigureFailure(f"No such log: {name!r}")
        check_limits(max_size_bytes, overflow)
        log.max_size_bytes = max_size_bytes
        log.overflow = overflow

    def most_recent_timestamp(self, name: str) -> datetime:
        log = self._logs.get(name)
        if log is None or not log.entries:
            raise HighWaterMarkUnavailable(f"Log {name!r} has no records")
        return log.entries[-1][0].time_created

    def append(self, name: str, record: EventRecord) -> None:
        log = self._logs.get(name)
        if log is None:
            raise AppendFailure(f"No such log: {name!r}")
        size = len(serialize_record(record).encode("utf-8"))
        if size > log.max_size_bytes:
            raise AppendFailure(f"Record of {size} bytes exceeds log capacity")

        if log.size_bytes + size > log.max_size_bytes:
            if log.overflow is OverflowPolicy.NEVER_OVERWRITE:
                raise AppendFailure(f"Log {name!r} is full ({log.size_bytes} bytes)")
            while log.entries and log.size_bytes + size > log.max_size_bytes:
                _, dropped = log.entries.popleft()
                log.size_bytes -= dropped

        log.entries.append((record, size))
        log.size_bytes += size

    def records(self, name: str) -> list[EventRecord]:
        """Stored records, oldest first."""
        return [record for record, _ in self._logs[name].entries]

    def limits(self, name: str) -> tuple[int, OverflowPolicy]:
        log = self._logs[name]
        return log.max_size_bytes, log.overflow
