"""End-to-end tests for the command-line entry point."""

import json
import time

import pytest

import eventsync.main as main_module
from eventsync.file_store import FileLogStore
from eventsync.lock import DestinationLock
from eventsync.main import EXIT_CONFIG_ERROR, EXIT_OK, EXIT_RUN_FAILED, main
from eventsync.metrics import Metrics


@pytest.fixture
def store_dir(tmp_path):
    return str(tmp_path / "store")


@pytest.fixture(autouse=True)
def keep_running(monkeypatch):
    monkeypatch.setattr(main_module, "_running", True)
    monkeypatch.setattr(main_module.signal, "signal", lambda *args: None)


def _args(source, store_dir, *extra, destination="Replica"):
    return ["--source", source, "--destination", destination, "--store-dir", store_dir, *extra]


def test_single_run(make_record, write_trace, store_dir, tmp_path):
    source = write_trace([make_record(10), make_record(20), make_record(30)])
    metrics_path = tmp_path / "metrics.json"

    assert main(_args(source, store_dir, "--metrics-file", str(metrics_path))) == EXIT_OK
    assert main(_args(source, store_dir, "--metrics-file", str(metrics_path))) == EXIT_OK

    store = FileLogStore(store_dir)
    assert len(list(store.read_records("Replica"))) == 3
    counters = json.loads(metrics_path.read_text())["counters"]
    assert counters["runs"] == 2
    assert counters["records_imported"] == 6
    assert counters["records_appended"] == 3


def test_limits_applied_to_new_log(make_record, write_trace, store_dir):
    source = write_trace([make_record(1)])
    code = main(_args(source, store_dir, "--max-size", str(128 * 1024),
                      "--overflow", "never-overwrite"))
    assert code == EXIT_OK
    max_size, overflow = FileLogStore(store_dir).limits("Replica")
    assert max_size == 128 * 1024
    assert overflow.value == "never-overwrite"


def test_missing_source_fails_run(tmp_path, store_dir, caplog):
    metrics_path = tmp_path / "metrics.json"
    code = main(_args(str(tmp_path / "missing.ndjson"), store_dir,
                      "--metrics-file", str(metrics_path)))
    assert code == EXIT_RUN_FAILED
    assert "Sync failed (extract)" in caplog.text
    assert json.loads(metrics_path.read_text())["counters"]["runs_failed"] == 1


def test_invalid_size_is_config_error(make_record, write_trace, store_dir):
    source = write_trace([make_record(1)])
    assert main(_args(source, store_dir, "--max-size", "100000")) == EXIT_CONFIG_ERROR


def test_missing_destination_is_config_error(make_record, write_trace, store_dir):
    source = write_trace([make_record(1)])
    assert main(["--source", source, "--store-dir", store_dir]) == EXIT_CONFIG_ERROR


def test_prefix_collision_fails_run(make_record, write_trace, store_dir):
    source = write_trace([make_record(1)])
    assert main(_args(source, store_dir, destination="ReplicaLogA")) == EXIT_OK
    assert main(_args(source, store_dir, destination="ReplicaLogB")) == EXIT_RUN_FAILED
    assert not FileLogStore(store_dir).exists("ReplicaLogB")


def test_held_lock_fails_run(make_record, write_trace, store_dir):
    source = write_trace([make_record(1)])
    store = FileLogStore(store_dir)
    with store.lock("Replica"):
        assert main(_args(source, store_dir)) == EXIT_RUN_FAILED
        assert main(_args(source, store_dir, "--no-lock")) == EXIT_OK


def test_interval_repeats_until_stopped(make_record, write_trace, store_dir, monkeypatch, tmp_path):
    source = write_trace([make_record(1)])
    metrics_path = tmp_path / "metrics.json"
    real_sleep = time.sleep
    calls = []

    def fake_sleep(seconds):
        calls.append(seconds)
        if len(calls) == 1:
            real_sleep(0.02)
        else:
            main_module._running = False

    monkeypatch.setattr(main_module.time, "sleep", fake_sleep)
    code = main(_args(source, store_dir, "--interval", "0.01",
                      "--metrics-file", str(metrics_path)))

    assert code == EXIT_OK
    counters = json.loads(metrics_path.read_text())["counters"]
    assert counters["runs"] == 2
    assert counters["records_appended"] == 1


def test_lock_os_error_fails_run(make_record, write_trace, store_dir, monkeypatch, caplog):
    source = write_trace([make_record(1)])

    def denied(self):
        raise PermissionError(13, "Permission denied", "lockfile")

    monkeypatch.setattr(DestinationLock, "acquire", denied)
    assert main(_args(source, store_dir)) == EXIT_RUN_FAILED
    assert "Sync failed (lock)" in caplog.text


def test_metrics_save_error_fails_run(make_record, write_trace, store_dir, monkeypatch,
                                      tmp_path, caplog):
    source = write_trace([make_record(1)])

    def full_disk(self):
        raise OSError(28, "No space left on device")

    monkeypatch.setattr(Metrics, "save", full_disk)
    code = main(_args(source, store_dir, "--metrics-file", str(tmp_path / "metrics.json")))

    assert code == EXIT_RUN_FAILED
    assert "Could not save metrics" in caplog.text
    assert len(list(FileLogStore(store_dir).read_records("Replica"))) == 1


def test_out_of_range_timestamp_fails_run(write_trace, store_dir, caplog):
    source = write_trace([{"time_created": "0001-01-01T00:30:00+01:00"}])
    assert main(_args(source, store_dir)) == EXIT_RUN_FAILED
    assert "Sync failed (extract)" in caplog.text
