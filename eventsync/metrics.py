"""Run counters persisted as a JSON file.

Counters are reloaded from the file on start so that totals accumulate across
separately scheduled invocations.
"""

import json
import logging
import os
import tempfile
from datetime import datetime, timezone

logger = logging.getLogger(__name__)


class Metrics:
    def __init__(self, path: str):
        self._path = path
        self._counters: dict[str, int] = {}
        self._last_run: dict = {}
        self._load()

    def _load(self) -> None:
        if not os.path.exists(self._path):
            return
        try:
            with open(self._path, "r") as f:
                data = json.load(f)
            self._counters = {k: int(v) for k, v in data.get("counters", {}).items()}
        except (OSError, ValueError, AttributeError) as e:
            logger.warning("Ignoring unreadable metrics file %s: %s", self._path, e)

    def increment(self, name: str, amount: int = 1) -> None:
        self._counters[name] = self._counters.get(name, 0) + amount

    def get(self, name: str) -> int:
        return self._counters.get(name, 0)

    def record_run(self, result) -> None:
        """Fold a SyncResult into the counters."""
        self.increment("runs")
        self.increment("records_imported", result.imported)
        self.increment("records_appended", result.appended)
        self.increment("append_failures", result.failed)
        if result.created:
            self.increment("logs_created")
        mark = result.high_water_mark
        self._last_run = {
            "imported": result.imported,
            "appended": result.appended,
            "failed": result.failed,
            "high_water_mark": mark.isoformat() if mark is not None else None,
        }

    def record_failure(self, reason: str) -> None:
        self.increment("runs")
        self.increment("runs_failed")
        self._last_run = {"error": reason}

    def get_all(self) -> dict:
        return {
            "counters": dict(self._counters),
            "last_run": dict(self._last_run),
            "last_updated": datetime.now(timezone.utc).isoformat(),
        }

    def save(self) -> None:
        directory = os.path.dirname(os.path.abspath(self._path))
        os.makedirs(directory, exist_ok=True)
        data = self.get_all()
        fd, tmp = tempfile.mkstemp(dir=directory)
        try:
            with os.fdopen(fd, "w") as f:
                json.dump(data, f, indent=2)
            os.replace(tmp, self._path)
        except Exception:
            if os.path.exists(tmp):
                os.unlink(tmp)
            raise
