"""Incremental sync engine.

One ``run`` copies every source record newer than the destination's
high-water mark into the destination log, in chronological order. The mark is
the timestamp of the newest record already in the destination; nothing else
is persisted between runs. Runs against the same destination must not
overlap (see FileLogStore.lock).
"""

import logging
from dataclasses import dataclass, replace
from datetime import datetime
from enum import Enum
from typing import Callable, Iterable

from eventsync.config import DEFAULT_LOG_SIZE, SyncConfig
from eventsync.errors import (
    AppendFailure,
    DestinationConfigureFailure,
    HighWaterMarkUnavailable,
)
from eventsync.extractor import extract
from eventsync.models import EventRecord, OverflowPolicy, compose_message
from eventsync.store import LogStore

logger = logging.getLogger(__name__)


class SyncState(Enum):
    INIT = "init"
    ENSURE_DESTINATION = "ensure_destination"
    COMPUTE_HIGH_WATER_MARK = "compute_high_water_mark"
    EXTRACT = "extract"
    FILTER = "filter"
    APPEND = "append"
    DONE = "done"
    FAILED = "failed"


@dataclass(frozen=True)
class SyncOptions:
    source_path: str
    destination: str
    max_size_bytes: int = DEFAULT_LOG_SIZE
    overflow: OverflowPolicy = OverflowPolicy.OVERWRITE_OLDEST

    @classmethod
    def from_config(cls, config: SyncConfig) -> "SyncOptions":
        return cls(
            source_path=config.source_path,
            destination=config.destination,
            max_size_bytes=config.max_size_bytes,
            overflow=config.overflow,
        )


@dataclass(frozen=True)
class SyncResult:
    imported: int
    appended: int
    failed: int
    high_water_mark: datetime | None
    created: bool = False


def filter_newer(records: Iterable[EventRecord], mark: datetime | None) -> list[EventRecord]:
    """Records strictly newer than *mark*, in their original order.

    A record whose timestamp equals the mark counts as already delivered.
    With no mark every record is kept.
    """
    if mark is None:
        return list(records)
    return [r for r in records if r.time_created > mark]


def _describe_mark(mark: datetime | None) -> str:
    return mark.isoformat() if mark is not None else "the beginning"


def to_destination_entry(record: EventRecord) -> EventRecord:
    return replace(record, message=compose_message(record))


class SyncEngine:
    def __init__(self, store: LogStore,
                 extractor: Callable[[str], list[EventRecord]] = extract):
        self._store = store
        self._extractor = extractor
        self.state = SyncState.INIT
        self.failure_reason: str | None = None
        self.failed_state: SyncState | None = None

    def _enter(self, state: SyncState) -> None:
        logger.debug("Sync state: %s -> %s", self.state.value, state.value)
        self.state = state

    def run(self, options: SyncOptions) -> SyncResult:
        """Run one sync pass.

        Raises:
            DestinationCreateFailure: the destination did not exist and could
                not be created.
            SourceNotFound, SourceReadFailure: the source could not be read.
        """
        self.state = SyncState.INIT
        self.failure_reason = None
        self.failed_state = None
        try:
            return self._run(options)
        except Exception as e:
            self.failure_reason = str(e)
            self.failed_state = self.state
            self.state = SyncState.FAILED
            raise

    def _run(self, options: SyncOptions) -> SyncResult:
        name = options.destination

        self._enter(SyncState.ENSURE_DESTINATION)
        created = self._ensure_destination(options)

        self._enter(SyncState.COMPUTE_HIGH_WATER_MARK)
        mark = self._high_water_mark(name)

        self._enter(SyncState.EXTRACT)
        records = self._extractor(options.source_path)

        self._enter(SyncState.FILTER)
        pending = filter_newer(records, mark)
        if not pending:
            logger.info("No new records since %s; nothing to append to %s",
                        _describe_mark(mark), name)

        self._enter(SyncState.APPEND)
        appended, failed = self._append_all(name, pending)

        self._enter(SyncState.DONE)
        logger.info("Imported %d record(s), appended %d to %s (%d failed)",
                    len(records), appended, name, failed)
        return SyncResult(
            imported=len(records),
            appended=appended,
            failed=failed,
            high_water_mark=mark,
            created=created,
        )

    def _ensure_destination(self, options: SyncOptions) -> bool:
        """Create and configure the destination if missing. Returns True if created."""
        name = options.destination
        if self._store.exists(name):
            logger.debug("Destination log %s exists; limits left unchanged", name)
            return False

        self._store.create(name)
        logger.info("Created destination log %s", name)
        try:
            self._store.configure(name, options.max_size_bytes, options.overflow)
        except DestinationConfigureFailure as e:
            logger.warning("Could not apply limits to %s, continuing with store defaults: %s",
                           name, e)
        else:
            logger.info("Applied limits to %s: max_size=%d bytes, overflow=%s",
                        name, options.max_size_bytes, options.overflow.value)
        return True

    def _high_water_mark(self, name: str) -> datetime | None:
        try:
            mark = self._store.most_recent_timestamp(name)
        except HighWaterMarkUnavailable as e:
            logger.debug("High-water mark unavailable for %s (%s); starting from the beginning",
                         name, e)
            return None
        logger.debug("High-water mark for %s is %s", name, mark.isoformat())
        return mark

    def _append_all(self, name: str, records: list[EventRecord]) -> tuple[int, int]:
        appended = 0
        failed = 0
        for record in records:
            try:
                self._store.append(name, to_destination_entry(record))
            except AppendFailure as e:
                failed += 1
                logger.warning("Skipping event %d at %s: %s",
                               record.event_id, record.time_created.isoformat(), e)
                continue
            appended += 1
        return appended, failed
