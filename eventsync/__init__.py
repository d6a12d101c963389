"""Incremental replication of trace-log events into a bounded destination log."""

__version__ = "0.1.0"
