"""
Error types shared across trunk-swift.

Every failure the tool knows how to describe derives from TrunkError, so
the CLI layer can catch one base class, print a clean diagnostic, and
exit non-zero instead of dumping a traceback.

Fatal vs. recoverable:
    ConfigError, ToolUnavailableError, NotFoundError
        Fatal for the invoking command. Raised before any work starts.
    AlreadyRunningError
        Programming error: a supervisor handle was started twice.
    TaskExecutionError
        Recorded on a RunResult with outcome "failure". Never raised out of
        the watch loop; watching continues with the next change.
    CancellationError
        Internal to the task worker. Marks a run that was deliberately
        superseded, so it is reported as "cancelled" and never as a failure.
"""


class TrunkError(Exception):
    """Base class for all errors raised by trunk-swift."""
    pass


class ConfigError(TrunkError):
    """
    Raised when configuration is missing, malformed, or invalid.

    Covers the TOML config file, WatchConfig values (empty path list,
    negative durations), and syntactically invalid glob patterns.
    """
    pass


class ToolUnavailableError(TrunkError):
    """
    Raised when a required external dependency cannot be used.

    The message is shown to the user as-is, so it should say what is missing
    and how to install it. Also raised when the filesystem-notification
    backend fails to initialize.
    """
    pass


class NotFoundError(TrunkError):
    """Raised when a named simulator device does not exist."""
    pass


class AlreadyRunningError(TrunkError):
    """Raised by WatchSupervisor.start() on a handle that is already started."""
    pass


class TaskExecutionError(TrunkError):
    """
    A task run ended with a non-zero exit status or could not be spawned.

    Attached to the RunResult of the failed run rather than raised, because
    a failing build must not stop the watch loop.
    """

    def __init__(self, message: str, exit_status: int | None = None):
        super().__init__(message)
        self.exit_status = exit_status


class CancellationError(TrunkError):
    """Raised inside the task worker when its run has been superseded or stopped."""
    pass
