"""Exception types raised by Immersion Sync.

The engine never swallows these; the CLI catches :class:`ImmersionSyncError`
and turns it into a non-zero exit status.
"""


class ImmersionSyncError(Exception):
    """Base error for the project."""


class MarkerMissingError(ImmersionSyncError):
    """The marker file proving the target is the right device is absent."""


class InvalidPathError(ImmersionSyncError):
    pass


class MoveError(ImmersionSyncError):
    pass


class ConfigError(ImmersionSyncError):
    pass


class ProbeError(ImmersionSyncError):
    """The external genre probe could not be run at all."""
