"""Tests for the configuration module."""

import pytest

from eventsync.config import (
    DEFAULT_LOG_SIZE,
    SyncConfig,
    _parse_bool,
    load_config,
    load_yaml_config,
    validate_config,
)
from eventsync.errors import ConfigError
from eventsync.models import OverflowPolicy


def _valid(**overrides):
    defaults = dict(source_path="/var/trace/system.ndjson", destination="Replica")
    defaults.update(overrides)
    return SyncConfig(**defaults)


def test_parse_bool():
    for val in ("true", "True", "1", "yes", " YES "):
        assert _parse_bool(val) is True
    for val in ("false", "0", "no", "", "anything"):
        assert _parse_bool(val) is False


def test_defaults():
    cfg = SyncConfig()
    assert cfg.store_dir == "./eventlogs"
    assert cfg.max_size_bytes == DEFAULT_LOG_SIZE
    assert cfg.overflow is OverflowPolicy.OVERWRITE_OLDEST
    assert cfg.interval_seconds == 0.0
    assert cfg.lock is True
    assert cfg.metrics_file is None


def test_frozen():
    cfg = SyncConfig()
    with pytest.raises(AttributeError):
        cfg.destination = "other"


def test_cli_args():
    cfg = load_config([
        "--source", "trace.ndjson", "--destination", "Replica",
        "--max-size", "131072", "--overflow", "never-overwrite",
        "--interval", "30", "--no-lock", "-v",
    ])
    assert cfg.source_path == "trace.ndjson"
    assert cfg.destination == "Replica"
    assert cfg.max_size_bytes == 131072
    assert cfg.overflow is OverflowPolicy.NEVER_OVERWRITE
    assert cfg.interval_seconds == 30.0
    assert cfg.lock is False
    assert cfg.verbose is True


def test_env_vars(monkeypatch):
    monkeypatch.setenv("SOURCE_PATH", "/data/trace.ndjson")
    monkeypatch.setenv("DESTINATION_NAME", "FromEnv")
    monkeypatch.setenv("MAX_SIZE_KB", "256")
    monkeypatch.setenv("OVERFLOW_POLICY", "never-overwrite")
    monkeypatch.setenv("SYNC_LOCK", "false")
    cfg = load_config([])
    assert cfg.source_path == "/data/trace.ndjson"
    assert cfg.destination == "FromEnv"
    assert cfg.max_size_bytes == 256 * 1024
    assert cfg.overflow is OverflowPolicy.NEVER_OVERWRITE
    assert cfg.lock is False


def test_max_size_bytes_takes_precedence_over_kb(monkeypatch):
    monkeypatch.setenv("MAX_SIZE_BYTES", "131072")
    monkeypatch.setenv("MAX_SIZE_KB", "1024")
    assert load_config([]).max_size_bytes == 131072


def test_cli_overrides_env(monkeypatch):
    monkeypatch.setenv("DESTINATION_NAME", "FromEnv")
    cfg = load_config(["--destination", "FromCli"])
    assert cfg.destination == "FromCli"


def test_yaml_file_lowest_precedence(tmp_path, monkeypatch):
    path = tmp_path / "sync.yml"
    path.write_text(
        "source_path: /yaml/trace.ndjson\n"
        "destination: FromYaml\n"
        "max_size_bytes: 196608\n"
        "overflow: never-overwrite\n"
        "unknown_key: 1\n"
    )
    monkeypatch.setenv("DESTINATION_NAME", "FromEnv")
    cfg = load_config(["--config", str(path)])
    assert cfg.source_path == "/yaml/trace.ndjson"
    assert cfg.destination == "FromEnv"
    assert cfg.max_size_bytes == 196608
    assert cfg.overflow is OverflowPolicy.NEVER_OVERWRITE


def test_yaml_path_from_env(tmp_path, monkeypatch):
    path = tmp_path / "sync.yml"
    path.write_text("destination: FromYaml\n")
    monkeypatch.setenv("EVENTSYNC_CONFIG", str(path))
    assert load_config([]).destination == "FromYaml"


def test_yaml_missing_file(tmp_path):
    with pytest.raises(ConfigError):
        load_yaml_config(str(tmp_path / "missing.yml"))


def test_yaml_not_a_mapping(tmp_path):
    path = tmp_path / "list.yml"
    path.write_text("- a\n- b\n")
    with pytest.raises(ConfigError):
        load_yaml_config(str(path))


def test_yaml_none_path():
    assert load_yaml_config(None) == {}


def test_bad_overflow_value(monkeypatch):
    monkeypatch.setenv("OVERFLOW_POLICY", "drop-newest")
    with pytest.raises(ConfigError):
        load_config([])


def test_bad_numeric_value(monkeypatch):
    monkeypatch.setenv("MAX_SIZE_BYTES", "lots")
    with pytest.raises(ConfigError):
        load_config([])


def test_validate_accepts_valid_config():
    validate_config(_valid())


@pytest.mark.parametrize("overrides", [
    {"source_path": ""},
    {"destination": ""},
    {"destination": "   "},
    {"destination": "a/b"},
    {"max_size_bytes": 0},
    {"max_size_bytes": 32 * 1024},
    {"max_size_bytes": 100_000},
    {"max_size_bytes": 8 * 1024 * 1024 * 1024},
    {"segment_size_bytes": 0},
    {"segment_size_bytes": 2 * 1024 * 1024},
    {"interval_seconds": -1},
])
def test_validate_rejects(overrides):
    with pytest.raises(ConfigError):
        validate_config(_valid(**overrides))


def test_validate_size_bounds_inclusive():
    validate_config(_valid(max_size_bytes=64 * 1024, segment_size_bytes=64 * 1024))
    validate_config(_valid(max_size_bytes=4 * 1024 * 1024 * 1024))
