"""Per-destination exclusive lock backed by an O_EXCL lock file."""

import logging
import os

from eventsync.errors import LockHeld

logger = logging.getLogger(__name__)


def _pid_alive(pid: int) -> bool:
    try:
        os.kill(pid, 0)
    except ProcessLookupError:
        return False
    except PermissionError:
        return True
    except OSError:
        return False
    return True


class DestinationLock:
    """Holds ``<path>`` for the duration of a ``with`` block.

    A lock file left behind by a process that no longer exists is removed
    and the acquisition retried once.
    """

    def __init__(self, path: str):
        self._path = path
        self._fd: int | None = None

    def _try_create(self) -> bool:
        try:
            self._fd = os.open(self._path, os.O_CREAT | os.O_EXCL | os.O_WRONLY)
        except FileExistsError:
            return False
        os.write(self._fd, str(os.getpid()).encode())
        return True

    def _holder_pid(self) -> int | None:
        try:
            with open(self._path, "r") as f:
                return int(f.read().strip() or 0) or None
        except (OSError, ValueError):
            return None

    def acquire(self) -> None:
        os.makedirs(os.path.dirname(os.path.abspath(self._path)), exist_ok=True)
        if self._try_create():
            return
        pid = self._holder_pid()
        if pid is not None and not _pid_alive(pid):
            logger.warning("Removing stale lock %s (pid %d)", self._path, pid)
            try:
                os.remove(self._path)
            except FileNotFoundError:
                pass
            if self._try_create():
                return
        raise LockHeld(f"Lock {self._path} is held by pid {pid}")

    def release(self) -> None:
        if self._fd is None:
            return
        os.close(self._fd)
        self._fd = None
        try:
            os.remove(self._path)
        except FileNotFoundError:
            pass

    def __enter__(self):
        self.acquire()
        return self

    def __exit__(self, *exc):
        self.release()
        return False
