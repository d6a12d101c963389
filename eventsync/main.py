"""Entry point: sync a trace log into a destination log, once or on an interval."""

import contextlib
import logging
import signal
import sys
import time

from eventsync.config import SyncConfig, load_config, validate_config
from eventsync.errors import ConfigError, SyncError
from eventsync.file_store import FileLogStore
from eventsync.metrics import Metrics
from eventsync.sync import SyncEngine, SyncOptions

logger = logging.getLogger("eventsync")

EXIT_OK = 0
EXIT_RUN_FAILED = 1
EXIT_CONFIG_ERROR = 2

_running = True


def _signal_handler(sig, _frame):
    global _running
    logger.info("Shutdown signal received (signal %d), stopping...", sig)
    _running = False


def run_once(config: SyncConfig, store: FileLogStore, metrics: Metrics | None = None) -> int:
    """Run one sync pass. Returns a process exit code."""
    engine = SyncEngine(store)
    lock = store.lock(config.destination) if config.lock else contextlib.nullcontext()
    try:
        with lock:
            result = engine.run(SyncOptions.from_config(config))
    except (SyncError, OSError) as e:
        stage = engine.failed_state.value if engine.failed_state else "lock"
        logger.error("Sync failed (%s): %s", stage, e)
        if metrics is not None:
            metrics.record_failure(str(e))
            _save_metrics(metrics)
        return EXIT_RUN_FAILED

    if metrics is not None:
        metrics.record_run(result)
        if not _save_metrics(metrics):
            return EXIT_RUN_FAILED
    return EXIT_OK


def _save_metrics(metrics: Metrics) -> bool:
    try:
        metrics.save()
    except OSError as e:
        logger.error("Could not save metrics: %s", e)
        return False
    return True


def main(argv=None) -> int:
    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s [eventsync] %(levelname)s %(message)s",
        stream=sys.stderr,
    )
    try:
        config = load_config(argv)
        validate_config(config)
    except ConfigError as e:
        logger.error("Invalid configuration: %s", e)
        return EXIT_CONFIG_ERROR

    if config.verbose:
        logging.getLogger().setLevel(logging.DEBUG)

    signal.signal(signal.SIGINT, _signal_handler)
    signal.signal(signal.SIGTERM, _signal_handler)

    logger.debug(
        "Config: source=%s, destination=%s, store_dir=%s, max_size=%d bytes, overflow=%s, interval=%ss",
        config.source_path, config.destination, config.store_dir,
        config.max_size_bytes, config.overflow.value, config.interval_seconds,
    )

    store = FileLogStore(config.store_dir, segment_size_bytes=config.segment_size_bytes)
    metrics = Metrics(config.metrics_file) if config.metrics_file else None

    code = run_once(config, store, metrics)
    if config.interval_seconds <= 0:
        return code

    while _running:
        deadline = time.monotonic() + config.interval_seconds
        while _running and time.monotonic() < deadline:
            time.sleep(min(0.5, config.interval_seconds))
        if not _running:
            break
        code = run_once(config, store, metrics)

    logger.info("Shut down cleanly")
    return code


if __name__ == "__main__":
    sys.exit(main())
