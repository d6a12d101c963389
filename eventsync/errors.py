"""Exception hierarchy for the sync pipeline.

Run-fatal: SourceNotFound, SourceReadFailure, DestinationCreateFailure.
Recoverable (logged by the engine, run continues): DestinationConfigureFailure,
HighWaterMarkUnavailable, AppendFailure.
"""


class SyncError(Exception):
    """Base class for every pipeline error."""


class SourceNotFound(SyncError):
    """Raised when the source trace log does not exist."""


class SourceReadFailure(SyncError):
    """Raised when the source trace log exists but cannot be read or parsed."""


class DestinationCreateFailure(SyncError):
    """Raised when a destination log cannot be created (name collision, bad name)."""


class DestinationConfigureFailure(SyncError):
    """Raised when size/overflow limits cannot be applied to a destination log."""


class HighWaterMarkUnavailable(SyncError):
    """Raised when the most recent destination timestamp cannot be determined."""


class AppendFailure(SyncError):
    """Raised when a single record cannot be appended to a destination log."""


class LockHeld(SyncError):
    """Raised when another run already holds the lock for a destination."""


class ConfigError(ValueError):
    """Raised when invocation parameters fail validation."""
