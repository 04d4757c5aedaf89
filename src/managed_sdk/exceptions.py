"""Managed SDK exceptions.

Every failure kind is its own class so callers can tell an expected negative
(not installed, busy lock) apart from a genuine fault (I/O error).
"""


class ManagedSdkError(Exception):
    """Base exception for managed SDK operations."""

    def __init__(self, message: str, context: dict | None = None):
        """Initialize with message and optional context.

        Args:
            message: Human-readable error message
            context: Optional dict with additional context (paths, exit codes, etc.)
        """
        super().__init__(message)
        self.message = message
        self.context = context or {}


class UnsupportedOsError(ManagedSdkError):
    """Running operating system is not one the SDK ships for."""


class UnsupportedOperationError(ManagedSdkError):
    """Operation is not valid for this SDK instance (e.g. updating a fixed version)."""


# Process execution


class CommandLaunchError(ManagedSdkError):
    """Process could not be started (binary missing or not executable)."""


class CommandExecutionError(ManagedSdkError):
    """I/O fault while running a process or draining its output."""


class CommandExitError(ManagedSdkError):
    """Process ran to completion but exited with a non-zero code."""

    def __init__(self, message: str, exit_code: int, stderr: str = "", context: dict | None = None):
        super().__init__(message, context={"exit_code": exit_code, **(context or {})})
        self.exit_code = exit_code
        self.stderr = stderr


class CommandInterruptedError(ManagedSdkError):
    """Process was terminated before it finished on its own."""


class CommandTimeoutError(CommandInterruptedError):
    """Process exceeded its wall-clock timeout and was terminated."""


class CommandCancelledError(CommandInterruptedError):
    """Process was terminated because cancellation was requested."""


# Archive extraction


class ExtractionError(ManagedSdkError):
    """Archive could not be read or an entry could not be written."""


class PathTraversalError(ExtractionError):
    """Archive entry resolves outside of the extraction destination."""


# Installation state


class SdkVerificationError(ManagedSdkError):
    """On-disk or reported SDK state could not be determined."""


class SdkVersionMismatchError(SdkVerificationError):
    """Installed VERSION marker disagrees with the requested fixed version."""


class SdkInstallError(ManagedSdkError):
    """SDK installation failed."""


class SdkUpdateError(ManagedSdkError):
    """SDK update failed."""


# Install lock


class LockContentionError(ManagedSdkError):
    """Install lock is held by another owner."""

    def __init__(self, message: str, owner=None, owner_alive: bool = True, context: dict | None = None):
        super().__init__(message, context=context)
        self.owner = owner
        self.owner_alive = owner_alive


class StaleLockError(ManagedSdkError):
    """Install lock left behind by a dead owner could not be recovered."""
