"""Exception hierarchy for fatal export errors.

Only conditions that abort a run are raised as exceptions. Malformed option
values, per-frame read/convert failures and per-file write failures are
logged and skipped instead.
"""


class LBExportError(Exception):
    """Base class for errors that abort an export run."""


class ConfigError(LBExportError):
    """Raised when the configuration cannot be resolved (e.g. no source path)."""


class FatalInitError(LBExportError):
    """Raised when pipeline initialization fails before the frame loop.

    Covers context/session creation, stream open, header and probe-frame
    reads, buffer allocation and the initial seek.
    """
