"""Configuration loading from YAML, env vars, and CLI args.

Precedence (lowest to highest): dataclass defaults, YAML file, environment
variables, command-line flags.
"""

import argparse
import logging
import os
from dataclasses import dataclass, fields, replace

import yaml

from eventsync.errors import ConfigError
from eventsync.models import OverflowPolicy

logger = logging.getLogger(__name__)

SIZE_ALIGNMENT = 64 * 1024  # 64 KiB
MIN_LOG_SIZE = SIZE_ALIGNMENT
MAX_LOG_SIZE = 4 * 1024 * 1024 * 1024  # 4 GiB
DEFAULT_LOG_SIZE = 1024 * 1024  # 1 MiB
DEFAULT_SEGMENT_SIZE = 64 * 1024


def _parse_bool(value: str) -> bool:
    return value.strip().lower() in ("true", "1", "yes")


@dataclass(frozen=True)
class SyncConfig:
    source_path: str = ""
    destination: str = ""
    store_dir: str = "./eventlogs"
    max_size_bytes: int = DEFAULT_LOG_SIZE
    overflow: OverflowPolicy = OverflowPolicy.OVERWRITE_OLDEST
    segment_size_bytes: int = DEFAULT_SEGMENT_SIZE
    interval_seconds: float = 0.0
    metrics_file: str | None = None
    lock: bool = True
    verbose: bool = False


_FIELD_NAMES = {f.name for f in fields(SyncConfig)}


def load_yaml_config(path: str | None) -> dict:
    """Load settings from a YAML file. Returns empty dict if no path."""
    if not path:
        return {}
    try:
        with open(path, "r", encoding="utf-8") as f:
            data = yaml.safe_load(f) or {}
    except FileNotFoundError:
        raise ConfigError(f"Config file not found: {path}") from None
    except yaml.YAMLError as e:
        raise ConfigError(f"Invalid YAML in {path}: {e}") from e
    if not isinstance(data, dict):
        raise ConfigError(f"Config file {path} must contain a mapping")
    logger.info("Loaded YAML config from %s", path)

    known = {}
    for key, value in data.items():
        if key in _FIELD_NAMES:
            known[key] = value
        else:
            logger.warning("Ignoring unknown config key %r in %s", key, path)
    return known


def _env_overrides() -> dict:
    env = os.environ
    values: dict = {}
    if "SOURCE_PATH" in env:
        values["source_path"] = env["SOURCE_PATH"]
    if "DESTINATION_NAME" in env:
        values["destination"] = env["DESTINATION_NAME"]
    if "STORE_DIR" in env:
        values["store_dir"] = env["STORE_DIR"]

    # MAX_SIZE_BYTES takes precedence over MAX_SIZE_KB
    if "MAX_SIZE_BYTES" in env:
        values["max_size_bytes"] = env["MAX_SIZE_BYTES"]
    elif "MAX_SIZE_KB" in env:
        try:
            values["max_size_bytes"] = int(float(env["MAX_SIZE_KB"]) * 1024)
        except ValueError as e:
            raise ConfigError(f"Invalid MAX_SIZE_KB: {e}") from e

    if "OVERFLOW_POLICY" in env:
        values["overflow"] = env["OVERFLOW_POLICY"]
    if "SEGMENT_SIZE_BYTES" in env:
        values["segment_size_bytes"] = env["SEGMENT_SIZE_BYTES"]
    if "SYNC_INTERVAL" in env:
        values["interval_seconds"] = env["SYNC_INTERVAL"]
    if "METRICS_FILE" in env:
        values["metrics_file"] = env["METRICS_FILE"]
    if "SYNC_LOCK" in env:
        values["lock"] = _parse_bool(env["SYNC_LOCK"])
    if "VERBOSE" in env:
        values["verbose"] = _parse_bool(env["VERBOSE"])
    return values


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="eventsync",
        description="Replicate new trace-log events into a bounded destination log",
    )
    parser.add_argument("--config", default=None, help="Optional YAML config file")
    parser.add_argument("--source", dest="source_path", default=None,
                        help="Path to the source trace log (NDJSON, optionally .gz)")
    parser.add_argument("--destination", default=None, help="Destination log name")
    parser.add_argument("--store-dir", default=None, help="Root directory of the log store")
    parser.add_argument("--max-size", dest="max_size_bytes", type=int, default=None,
                        help="Maximum destination size in bytes (multiple of 64 KiB)")
    parser.add_argument("--overflow", default=None,
                        choices=[p.value for p in OverflowPolicy],
                        help="Behaviour when the destination is full")
    parser.add_argument("--segment-size", dest="segment_size_bytes", type=int, default=None,
                        help="Size in bytes at which the active segment is rotated")
    parser.add_argument("--interval", dest="interval_seconds", type=float, default=None,
                        help="Repeat the sync every N seconds (0 runs once)")
    parser.add_argument("--metrics-file", default=None, help="Write run counters to this JSON file")
    parser.add_argument("--no-lock", action="store_true", default=False,
                        help="Do not take the per-destination lock")
    parser.add_argument("-v", "--verbose", action="store_true", default=False)
    return parser


def _cli_overrides(args: argparse.Namespace) -> dict:
    values = {}
    for name in ("source_path", "destination", "store_dir", "max_size_bytes",
                 "overflow", "segment_size_bytes", "interval_seconds", "metrics_file"):
        value = getattr(args, name)
        if value is not None:
            values[name] = value
    if args.no_lock:
        values["lock"] = False
    if args.verbose:
        values["verbose"] = True
    return values


def _coerce(values: dict) -> dict:
    """Convert raw YAML/env strings into the dataclass field types."""
    out = dict(values)
    try:
        for key in ("max_size_bytes", "segment_size_bytes"):
            if key in out:
                out[key] = int(out[key])
        if "interval_seconds" in out:
            out["interval_seconds"] = float(out["interval_seconds"])
        if "overflow" in out:
            out["overflow"] = OverflowPolicy(out["overflow"])
        for key in ("lock", "verbose"):
            if key in out and isinstance(out[key], str):
                out[key] = _parse_bool(out[key])
        for key in ("source_path", "destination", "store_dir"):
            if key in out:
                out[key] = str(out[key])
    except (TypeError, ValueError) as e:
        raise ConfigError(f"Invalid configuration value: {e}") from e
    return out


def load_config(argv=None) -> SyncConfig:
    """Build SyncConfig from YAML, env vars and CLI args.

    Pass argv for testability; when None, argparse reads sys.argv.
    """
    args = build_parser().parse_args(argv)
    config_path = args.config or os.environ.get("EVENTSYNC_CONFIG")

    values = load_yaml_config(config_path)
    values.update(_env_overrides())
    values.update(_cli_overrides(args))
    return replace(SyncConfig(), **_coerce(values))


def validate_config(config: SyncConfig) -> None:
    """Reject invalid invocation parameters before any work is done."""
    if not config.source_path:
        raise ConfigError("A source path is required")
    if not config.destination or not config.destination.strip():
        raise ConfigError("A destination log name is required")
    if "/" in config.destination or "\\" in config.destination:
        raise ConfigError(f"Destination name may not contain path separators: {config.destination!r}")

    size = config.max_size_bytes
    if size < MIN_LOG_SIZE or size > MAX_LOG_SIZE:
        raise ConfigError(
            f"max_size_bytes must be between {MIN_LOG_SIZE} and {MAX_LOG_SIZE}, got {size}"
        )
    if size % SIZE_ALIGNMENT != 0:
        raise ConfigError(f"max_size_bytes must be a multiple of {SIZE_ALIGNMENT}, got {size}")

    if not isinstance(config.overflow, OverflowPolicy):
        raise ConfigError(f"Unknown overflow policy: {config.overflow!r}")
    if config.segment_size_bytes <= 0:
        raise ConfigError("segment_size_bytes must be positive")
    if config.segment_size_bytes > size:
        raise ConfigError("segment_size_bytes may not exceed max_size_bytes")
    if config.interval_seconds < 0:
        raise ConfigError("interval_seconds must be >= 0")
