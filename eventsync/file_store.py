"""File-backed destination log store with segment rotation and capacity limits.

Layout under the store root::

    <root>/<name>/log.json                log metadata (name, limits, created_at)
    <root>/<name>/current.ndjson          active segment
    <root>/<name>/segment_00000001.ndjson rotated segments, oldest = lowest number
    <root>/.<name>.lock                   held while a sync run owns the log

Capacity is the total size of all segments. With ``overwrite-oldest`` the
oldest rotated segments are purged to make room; with ``never-overwrite`` an
append that would exceed capacity is refused.
"""

import json
import logging
import os
import tempfile
from datetime import datetime, timezone
from typing import Iterator

from eventsync.config import DEFAULT_LOG_SIZE, DEFAULT_SEGMENT_SIZE
from eventsync.errors import (
    AppendFailure,
    DestinationConfigureFailure,
    DestinationCreateFailure,
    HighWaterMarkUnavailable,
)
from eventsync.lock import DestinationLock
from eventsync.models import EventRecord, OverflowPolicy, record_from_dict
from eventsync.store import LogStore, check_limits, check_new_name, serialize_record

logger = logging.getLogger(__name__)

META_FILENAME = "log.json"
ACTIVE_FILENAME = "current.ndjson"
SEGMENT_PREFIX = "segment_"
SEGMENT_SUFFIX = ".ndjson"


def _write_json_atomic(path: str, data: dict) -> None:
    directory = os.path.dirname(path)
    fd, tmp = tempfile.mkstemp(dir=directory)
    try:
        with os.fdopen(fd, "w") as f:
            json.dump(data, f, indent=2)
        os.replace(tmp, path)
    except Exception:
        if os.path.exists(tmp):
            os.unlink(tmp)
        raise


def read_last_line(path: str, chunk_size: int = 4096) -> str | None:
    """Return the last non-empty line of a file, reading backwards from EOF."""
    with open(path, "rb") as f:
        f.seek(0, os.SEEK_END)
        pos = f.tell()
        buf = b""
        while pos > 0:
            step = min(chunk_size, pos)
            pos -= step
            f.seek(pos)
            buf = f.read(step) + buf
            stripped = buf.rstrip(b"\n")
            if b"\n" in stripped:
                return stripped.rsplit(b"\n", 1)[1].decode("utf-8")
        stripped = buf.rstrip(b"\n")
        return stripped.decode("utf-8") if stripped else None


class FileLogStore(LogStore):
    def __init__(self, root_dir: str, segment_size_bytes: int = DEFAULT_SEGMENT_SIZE):
        self._root = root_dir
        self._segment_size = segment_size_bytes
        os.makedirs(self._root, exist_ok=True)

    # ------------------------------------------------------------------ #
    # Paths and metadata
    # ------------------------------------------------------------------ #

    def _log_dir(self, name: str) -> str:
        return os.path.join(self._root, name)

    def _meta_path(self, name: str) -> str:
        return os.path.join(self._log_dir(name), META_FILENAME)

    def _active_path(self, name: str) -> str:
        return os.path.join(self._log_dir(name), ACTIVE_FILENAME)

    def _load_meta(self, name: str) -> dict:
        with open(self._meta_path(name), "r") as f:
            return json.load(f)

    def log_names(self) -> list[str]:
        """Names of all logs in the store, read from their metadata."""
        names = []
        for entry in sorted(os.listdir(self._root)):
            meta_path = os.path.join(self._root, entry, META_FILENAME)
            if not os.path.isfile(meta_path):
                continue
            try:
                with open(meta_path, "r") as f:
                    names.append(json.load(f).get("name", entry))
            except (OSError, ValueError):
                logger.warning("Unreadable log metadata: %s", meta_path)
                names.append(entry)
        return names

    def rotated_segments(self, name: str) -> list[str]:
        """Rotated segment filenames sorted oldest-first."""
        log_dir = self._log_dir(name)
        segments = [
            f for f in os.listdir(log_dir)
            if f.startswith(SEGMENT_PREFIX) and f.endswith(SEGMENT_SUFFIX)
            and f[len(SEGMENT_PREFIX):-len(SEGMENT_SUFFIX)].isdigit()
        ]
        segments.sort()
        return segments

    def size_bytes(self, name: str) -> int:
        log_dir = self._log_dir(name)
        total = 0
        for filename in self.rotated_segments(name) + [ACTIVE_FILENAME]:
            path = os.path.join(log_dir, filename)
            if os.path.exists(path):
                total += os.path.getsize(path)
        return total

    def limits(self, name: str) -> tuple[int, OverflowPolicy]:
        meta = self._load_meta(name)
        return meta["max_size_bytes"], OverflowPolicy(meta["overflow"])

    # ------------------------------------------------------------------ #
    # LogStore interface
    # ------------------------------------------------------------------ #

    def exists(self, name: str) -> bool:
        return os.path.isfile(self._meta_path(name))

    def create(self, name: str) -> None:
        if name in (".", "..") or os.sep in name or "/" in name:
            raise DestinationCreateFailure(f"Invalid destination log name: {name!r}")
        check_new_name(name, self.log_names())
        log_dir = self._log_dir(name)
        try:
            os.makedirs(log_dir, exist_ok=True)
            _write_json_atomic(self._meta_path(name), {
                "name": name,
                "max_size_bytes": DEFAULT_LOG_SIZE,
                "overflow": OverflowPolicy.OVERWRITE_OLDEST.value,
                "created_at": datetime.now(timezone.utc).isoformat(),
            })
        except OSError as e:
            raise DestinationCreateFailure(f"Cannot create log {name!r}: {e}") from e

    def configure(self, name: str, max_size_bytes: int, overflow: OverflowPolicy) -> None:
        check_limits(max_size_bytes, overflow)
        try:
            meta = self._load_meta(name)
            meta["max_size_bytes"] = max_size_bytes
            meta["overflow"] = overflow.value
            _write_json_atomic(self._meta_path(name), meta)
        except (OSError, ValueError) as e:
            raise DestinationConfigureFailure(f"Cannot configure log {name!r}: {e}") from e

    def most_recent_timestamp(self, name: str) -> datetime:
        if not self.exists(name):
            raise HighWaterMarkUnavailable(f"No such log: {name!r}")
        log_dir = self._log_dir(name)
        try:
            candidates = [ACTIVE_FILENAME] + list(reversed(self.rotated_segments(name)))
        except OSError as e:
            raise HighWaterMarkUnavailable(f"Cannot list segments of {name!r}: {e}") from e
        for filename in candidates:
            path = os.path.join(log_dir, filename)
            if not os.path.exists(path):
                continue
            try:
                line = read_last_line(path)
                if line is None:
                    continue
                return record_from_dict(json.loads(line)).time_created
            except (OSError, UnicodeDecodeError, KeyError, TypeError, ValueError) as e:
                raise HighWaterMarkUnavailable(f"Cannot read newest record of {name!r}: {e}") from e
        raise HighWaterMarkUnavailable(f"Log {name!r} has no records")

    def append(self, name: str, record: EventRecord) -> None:
        line = serialize_record(record)
        size = len(line.encode("utf-8"))
        try:
            max_size, overflow = self.limits(name)
        except (OSError, KeyError, ValueError) as e:
            raise AppendFailure(f"Cannot read limits of log {name!r}: {e}") from e
        if size > max_size:
            raise AppendFailure(f"Record of {size} bytes exceeds capacity of log {name!r}")

        try:
            self._make_room(name, size, max_size, overflow)
            active = self._active_path(name)
            with open(active, "a", encoding="utf-8") as f:
                f.write(line)
                f.flush()
            if os.path.getsize(active) >= self._segment_size:
                self._rotate(name)
        except OSError as e:
            raise AppendFailure(f"Cannot append to log {name!r}: {e}") from e

    # ------------------------------------------------------------------ #
    # Rotation and retention
    # ------------------------------------------------------------------ #

    def _make_room(self, name: str, needed: int, max_size: int, overflow: OverflowPolicy) -> None:
        used = self.size_bytes(name)
        if used + needed <= max_size:
            return
        if overflow is OverflowPolicy.NEVER_OVERWRITE:
            raise AppendFailure(f"Log {name!r} is full ({used} of {max_size} bytes)")

        log_dir = self._log_dir(name)
        segments = self.rotated_segments(name)
        while segments and used + needed > max_size:
            oldest = segments.pop(0)
            path = os.path.join(log_dir, oldest)
            used -= os.path.getsize(path)
            os.remove(path)
            logger.debug("Purged segment %s from log %s", oldest, name)

        if used + needed > max_size:
            # Only the active segment is left and it alone is too big.
            os.remove(self._active_path(name))
            logger.debug("Discarded active segment of log %s", name)

    def _rotate(self, name: str) -> str:
        """Move the active segment to the next numbered segment. Returns its path."""
        segments = self.rotated_segments(name)
        if segments:
            last = segments[-1][len(SEGMENT_PREFIX):-len(SEGMENT_SUFFIX)]
            seq = int(last) + 1
        else:
            seq = 1
        rotated = os.path.join(self._log_dir(name), f"{SEGMENT_PREFIX}{seq:08d}{SEGMENT_SUFFIX}")
        os.replace(self._active_path(name), rotated)
        logger.debug("Rotated log %s to %s", name, rotated)
        return rotated

    # ------------------------------------------------------------------ #
    # Inspection
    # ------------------------------------------------------------------ #

    def read_records(self, name: str) -> Iterator[EventRecord]:
        """Yield stored records, oldest first."""
        log_dir = self._log_dir(name)
        for filename in self.rotated_segments(name) + [ACTIVE_FILENAME]:
            path = os.path.join(log_dir, filename)
            if not os.path.exists(path):
                continue
            with open(path, "r", encoding="utf-8") as f:
                for line in f:
                    line = line.strip()
                    if line:
                        yield record_from_dict(json.loads(line))

    def lock(self, name: str) -> DestinationLock:
        return DestinationLock(os.path.join(self._root, f".{name}.lock"))
